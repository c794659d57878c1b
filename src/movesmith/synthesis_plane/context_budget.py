"""
movesmith — token-budget-aware context assembly.

File: src/movesmith/synthesis_plane/context_budget.py

Purpose
- Select the reference-documentation sections most relevant to a query and pack them
  into a hard token budget.
- Truncate conversation history to a budget while keeping the most recent turns.

Functional requirements
- Token estimates use a fixed characters-per-token ratio (default 4, rounded up).
- Assembled output never exceeds ``max_tokens`` by that estimate.
- Zero-score sections are never included.
- History truncation always keeps the newest message and preserves chronological order.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from movesmith.constants import DEFAULT_CHARS_PER_TOKEN
from movesmith.domain.models import ContextSection, SectionSource

if TYPE_CHECKING:
    from collections.abc import Sequence

    from movesmith.domain.models import Message

SECTION_SEPARATOR: Final[str] = "\n\n---\n\n"

STOP_WORDS: Final[frozenset[str]] = frozenset(
    {"what", "how", "when", "where", "why", "which", "that", "this", "with", "from"}
)

_SLUG_INVALID: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE: Final[re.Pattern[str]] = re.compile(r"\s+")


def estimate_tokens(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate token usage as ``ceil(len(text) / chars_per_token)``."""

    if chars_per_token <= 0:
        raise ValueError("chars_per_token must be > 0")
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def topic_slug(header: str) -> str:
    cleaned = header.lstrip("#").strip().lower()
    cleaned = _SLUG_INVALID.sub("", cleaned)
    return _WHITESPACE.sub("-", cleaned.strip())


def split_sections(
    document: str, source: SectionSource = SectionSource.PRIMARY
) -> list[ContextSection]:
    """Split ``document`` at heading lines; text before the first heading is dropped."""

    sections: list[ContextSection] = []
    header: str | None = None
    body: list[str] = []
    for line in document.splitlines():
        if line.startswith("#"):
            if header is not None:
                sections.append(_section(header, body, source))
            header = line
            body = []
        elif header is not None:
            body.append(line)
    if header is not None:
        sections.append(_section(header, body, source))
    return sections


def query_keywords(query: str) -> tuple[str, ...]:
    return tuple(
        token for token in query.lower().split() if len(token) > 3 and token not in STOP_WORDS
    )


def score_section(section: ContextSection, keywords: Sequence[str]) -> int:
    haystack = f"{section.header}\n{section.body}".lower()
    return sum(haystack.count(keyword) for keyword in keywords)


@dataclass(frozen=True, slots=True)
class ContextBudgetManager:
    """Pack relevant documentation and recent conversation into token budgets."""

    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN

    def __post_init__(self) -> None:
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def rank_sections(self, query: str, document: str) -> list[tuple[int, ContextSection]]:
        """Return ``(score, section)`` pairs with score > 0, best first."""

        keywords = query_keywords(query)
        if not keywords:
            return []
        scored = [
            (score_section(section, keywords), section) for section in split_sections(document)
        ]
        ranked = [item for item in scored if item[0] > 0]
        ranked.sort(key=lambda item: -item[0])
        return ranked

    def assemble_context(self, query: str, document: str, max_tokens: int) -> str:
        """Greedily pack the highest-scoring sections under ``max_tokens``.

        Packing stops at the first section that would push the total over the budget, so
        the result is empty when even the best section does not fit on its own.
        """

        if max_tokens <= 0:
            return ""
        max_chars = max_tokens * self.chars_per_token
        parts: list[str] = []
        used_chars = 0
        for _, section in self.rank_sections(query, document):
            text = section.text.strip()
            separator = len(SECTION_SEPARATOR) if parts else 0
            if used_chars + separator + len(text) > max_chars:
                break
            parts.append(text)
            used_chars += separator + len(text)
        return SECTION_SEPARATOR.join(parts)

    def truncate_history(
        self,
        messages: Sequence[Message],
        reserved_tokens: int,
        budget_tokens: int,
    ) -> list[Message]:
        """Keep the newest messages whose estimate plus ``reserved_tokens`` fits the budget."""

        kept: list[Message] = []
        accumulated = 0
        for message in reversed(messages):
            tokens = self.estimate(message.serialized_content())
            if kept and accumulated + tokens + reserved_tokens > budget_tokens:
                break
            kept.append(message)
            accumulated += tokens
        kept.reverse()
        return kept


def _section(header: str, body: list[str], source: SectionSource) -> ContextSection:
    return ContextSection(
        header=header,
        body="\n".join(body).strip("\n"),
        source=source,
        topic=topic_slug(header),
    )


__all__ = [
    "SECTION_SEPARATOR",
    "STOP_WORDS",
    "ContextBudgetManager",
    "estimate_tokens",
    "query_keywords",
    "score_section",
    "split_sections",
    "topic_slug",
]
