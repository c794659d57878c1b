"""
movesmith — reference documentation source and context assembly service.

File: src/movesmith/knowledge_plane/reference_docs.py

Purpose
- Download the published Aptos ``llms`` documentation (full or small variant) over
  HTTP and cache it for a day.
- Answer "what documentation is relevant to this prompt" under a token budget by
  delegating to ``ContextBudgetManager``.

Functional requirements
- The full variant is used only when the query shows complexity indicators.
- Fetch failures raise ``SourceFetchError``; callers decide whether they are fatal.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Final

import httpx
import structlog

from movesmith.constants import DEFAULT_CONTEXT_MAX_TOKENS, DOCS_CACHE_TTL_SECONDS
from movesmith.domain.errors import SourceFetchError
from movesmith.synthesis_plane.context_budget import ContextBudgetManager
from movesmith.utils.cache import TTLCache

DEFAULT_DOCS_FULL_URL: Final[str] = "https://aptos.dev/llms-full.txt"
DEFAULT_DOCS_SMALL_URL: Final[str] = "https://aptos.dev/llms-small.txt"

DOMAIN_KEYWORDS: Final[tuple[str, ...]] = (
    "move", "aptos", "blockchain", "smart contract", "dapp", "nft", "token",
    "fungible asset", "module", "resource", "signer", "account", "transaction",
    "deploy", "publish", "compile", "sdk", "wallet", "crypto", "web3",
    "validator", "staking", "gas", "coin", "collection", "digital asset",
)

COMPLEXITY_INDICATORS: Final[tuple[str, ...]] = (
    "complex", "detailed", "complete", "full", "comprehensive", "advanced",
    "multiple", "security", "best practice", "production", "optimization",
    "architecture", "integration", "implementation", "tutorial", "guide",
)


class DocVariant(StrEnum):
    FULL = "full"
    SMALL = "small"


def is_domain_query(query: str) -> bool:
    lowered = query.lower()
    return any(keyword in lowered for keyword in DOMAIN_KEYWORDS)


def select_variant(query: str) -> DocVariant:
    lowered = query.lower()
    if any(indicator in lowered for indicator in COMPLEXITY_INDICATORS):
        return DocVariant.FULL
    return DocVariant.SMALL


class ReferenceDocs:
    """Cached HTTP fetcher for the documentation variants."""

    def __init__(
        self,
        *,
        full_url: str = DEFAULT_DOCS_FULL_URL,
        small_url: str = DEFAULT_DOCS_SMALL_URL,
        cache_ttl_seconds: float = DOCS_CACHE_TTL_SECONDS,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._urls = {DocVariant.FULL: full_url, DocVariant.SMALL: small_url}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)
        self._cache: TTLCache[DocVariant, str] = TTLCache(cache_ttl_seconds, clock=clock)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, variant: DocVariant) -> str:
        cached = self._cache.get(variant)
        if cached is not None:
            return cached
        url = self._urls[variant]
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceFetchError(
                f"documentation fetch failed with HTTP {exc.response.status_code}", path=url
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"documentation fetch failed: {exc}", path=url) from exc
        document = response.text
        self._cache.put(variant, document)
        self._logger.info("reference_docs_fetched", variant=str(variant), chars=len(document))
        return document


class ContextService:
    """Relevant-documentation lookups for a prompt, bounded by a token budget."""

    def __init__(
        self,
        docs: ReferenceDocs,
        *,
        budget: ContextBudgetManager | None = None,
        max_tokens: int = DEFAULT_CONTEXT_MAX_TOKENS,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        self._docs = docs
        self._budget = budget or ContextBudgetManager()
        self._max_tokens = max_tokens

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    def is_domain_query(self, query: str) -> bool:
        return is_domain_query(query)

    async def relevant_context(self, query: str, *, max_tokens: int | None = None) -> str:
        document = await self._docs.fetch(select_variant(query))
        return self._budget.assemble_context(query, document, max_tokens or self._max_tokens)


__all__ = [
    "COMPLEXITY_INDICATORS",
    "DEFAULT_DOCS_FULL_URL",
    "DEFAULT_DOCS_SMALL_URL",
    "DOMAIN_KEYWORDS",
    "ContextService",
    "DocVariant",
    "ReferenceDocs",
    "is_domain_query",
    "select_variant",
]
