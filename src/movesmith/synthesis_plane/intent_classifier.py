"""Contract intent classifier for natural-language requests.

File: src/movesmith/synthesis_plane/intent_classifier.py

Purpose
- Score a free-text prompt against weighted keyword categories and produce a
  ``ContractIntent``: ranked categories, feature tags, confidence and suggested
  template paths.
- Pure-function classifier: deterministic, same input = same output.

Security
- No network calls, no secret access. Operates on the prompt text only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

import structlog

from movesmith.constants import (
    DEFAULT_CONFIDENCE_SCALE,
    DEFAULT_RELATED_THRESHOLD,
    MAX_SUGGESTED_CONTRACTS,
)
from movesmith.domain.errors import ClassificationAmbiguous
from movesmith.domain.models import ContractCategory, ContractIntent

# --- Category keyword phrases (weight = word count of the phrase) ---
CATEGORY_KEYWORDS: Final[dict[ContractCategory, tuple[str, ...]]] = {
    ContractCategory.NFT: (
        "nft", "non-fungible", "collection", "mint", "digital asset", "artwork",
        "collectible", "token id", "metadata", "royalty", "creator", "burn nft",
        "transfer nft", "nft marketplace",
    ),
    ContractCategory.TOKEN: (
        "token", "coin", "fungible", "erc20", "currency", "mint token", "burn token",
        "transfer", "balance", "supply", "decimal", "symbol", "fa", "fungible asset",
        "aptos coin",
    ),
    ContractCategory.MARKETPLACE: (
        "marketplace", "exchange", "trading", "auction", "listing", "buy", "sell",
        "offer", "bid", "escrow", "order book", "dex", "swap", "liquidity", "amm",
    ),
    ContractCategory.DEFI: (
        "staking", "lending", "borrowing", "yield", "farming", "pool", "liquidity",
        "vault", "interest", "collateral", "loan", "flash loan", "compound", "apy", "apr",
    ),
    ContractCategory.GOVERNANCE: (
        "dao", "voting", "proposal", "governance", "delegate", "treasury", "multisig",
        "timelock", "quorum", "election", "poll", "decision", "council",
    ),
    ContractCategory.GAMING: (
        "game", "play", "reward", "achievement", "score", "leaderboard", "tournament",
        "battle", "quest", "level", "experience", "xp", "item", "inventory", "character",
    ),
    ContractCategory.SOCIAL: (
        "social", "post", "comment", "like", "follow", "profile", "message", "chat",
        "friend", "group", "community", "content", "share", "feed",
    ),
    ContractCategory.UTILITY: (
        "utility", "tool", "service", "oracle", "random", "timelock", "vesting", "escrow",
        "payment", "subscription", "access control", "whitelist", "blacklist",
    ),
}

# --- Keyword fragment -> feature tags (applied when the fragment occurs in a matched keyword) ---
FEATURE_KEYWORDS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("mint", ("minting", "token_creation")),
    ("burn", ("burning", "token_destruction")),
    ("transfer", ("transfers", "send_receive")),
    ("marketplace", ("listing", "trading")),
    ("staking", ("stake", "rewards")),
    ("voting", ("proposals", "governance")),
    ("collection", ("collection_management",)),
    ("auction", ("bidding", "timed_sales")),
    ("swap", ("token_exchange", "liquidity")),
)

# --- Explicit contract-domain vocabulary ---
CONTRACT_DOMAIN_KEYWORDS: Final[tuple[str, ...]] = (
    "smart contract", "move contract", "deploy", "blockchain", "on-chain", "dapp",
    "web3", "aptos",
)

_BASE_SUGGESTIONS: Final[dict[ContractCategory, tuple[str, ...]]] = {
    ContractCategory.NFT: ("nft/collection.move", "nft/token.move"),
    ContractCategory.TOKEN: ("token/fa_coin.move", "token/managed_coin.move"),
    ContractCategory.MARKETPLACE: ("marketplace/simple_marketplace.move",),
    ContractCategory.DEFI: (),
    ContractCategory.GOVERNANCE: ("governance/dao.move", "governance/voting.move"),
    ContractCategory.GAMING: ("gaming/game_items.move", "gaming/rewards.move"),
    ContractCategory.SOCIAL: ("social/profile.move", "social/posts.move"),
    ContractCategory.UTILITY: ("utility/timelock.move", "utility/multisig.move"),
}

# (category, required signal fragments, suggestion)
_CONDITIONAL_SUGGESTIONS: Final[tuple[tuple[ContractCategory, tuple[str, ...], str], ...]] = (
    (ContractCategory.NFT, ("marketplace",), "marketplace/nft_marketplace.move"),
    (ContractCategory.MARKETPLACE, ("auction",), "marketplace/auction.move"),
    (ContractCategory.DEFI, ("stak",), "defi/staking.move"),
    (ContractCategory.DEFI, ("swap", "liquidity"), "defi/amm.move"),
)

_CATEGORY_ORDER: Final[tuple[ContractCategory, ...]] = tuple(ContractCategory)


@dataclass(frozen=True, slots=True)
class CategoryScore:
    category: ContractCategory
    raw_score: int
    matches: int
    normalized: float
    matched_keywords: tuple[str, ...]


class IntentClassifier:
    """Keyword-weighted classifier producing ``ContractIntent`` values.

    ``confidence_scale`` and ``related_threshold`` are tuning parameters; the defaults
    give ``min(top * 2, 1)`` and ``confidence > 0.3``.
    """

    def __init__(
        self,
        *,
        confidence_scale: float = DEFAULT_CONFIDENCE_SCALE,
        related_threshold: float = DEFAULT_RELATED_THRESHOLD,
        max_suggestions: int = MAX_SUGGESTED_CONTRACTS,
        logger: Any | None = None,
    ) -> None:
        if confidence_scale <= 0:
            raise ValueError("confidence_scale must be > 0")
        if not 0.0 <= related_threshold <= 1.0:
            raise ValueError("related_threshold must be within [0, 1]")
        if max_suggestions <= 0:
            raise ValueError("max_suggestions must be > 0")
        self._confidence_scale = confidence_scale
        self._related_threshold = related_threshold
        self._max_suggestions = max_suggestions
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def related_threshold(self) -> float:
        return self._related_threshold

    def score_categories(self, prompt: str) -> tuple[CategoryScore, ...]:
        """Return non-zero category scores ranked by normalized score, descending."""

        lowered = prompt.lower()
        scores: list[CategoryScore] = []
        for category in _CATEGORY_ORDER:
            keywords = CATEGORY_KEYWORDS[category]
            matched = tuple(keyword for keyword in keywords if keyword in lowered)
            if not matched:
                continue
            raw = sum(len(keyword.split()) for keyword in matched)
            scores.append(
                CategoryScore(
                    category=category,
                    raw_score=raw,
                    matches=len(matched),
                    normalized=raw / len(keywords),
                    matched_keywords=matched,
                )
            )
        # Stable sort keeps enum order for ties.
        scores.sort(key=lambda item: -item.normalized)
        return tuple(scores)

    def detect_intent(self, prompt: str) -> ContractIntent:
        ranked = self.score_categories(prompt)
        matched_keywords = tuple(
            keyword for score in ranked for keyword in score.matched_keywords
        )
        features = _features_for(matched_keywords)
        top = ranked[0].normalized if ranked else 0.0
        confidence = min(top * self._confidence_scale, 1.0)
        categories = tuple(score.category for score in ranked)

        intent = ContractIntent(
            categories=categories,
            features=features,
            confidence=confidence,
            suggested_contracts=self._suggest(categories, matched_keywords, features),
        )
        self._logger.debug(
            "intent_detected",
            categories=[str(item) for item in categories],
            features=sorted(features),
            confidence=round(confidence, 4),
        )
        return intent

    def is_contract_related(self, prompt: str) -> bool:
        lowered = prompt.lower()
        if any(keyword in lowered for keyword in CONTRACT_DOMAIN_KEYWORDS):
            return True
        intent = self.detect_intent(prompt)
        return intent.confidence > self._related_threshold and len(intent.categories) > 0

    def assess(self, intent: ContractIntent) -> ClassificationAmbiguous | None:
        """Return an ambiguity warning when the intent is too weak to target reliably."""

        if intent.categories and intent.confidence >= self._related_threshold:
            return None
        return ClassificationAmbiguous(
            confidence=intent.confidence,
            threshold=self._related_threshold,
            matched_categories=len(intent.categories),
        )

    def _suggest(
        self,
        categories: tuple[ContractCategory, ...],
        matched_keywords: tuple[str, ...],
        features: frozenset[str],
    ) -> tuple[str, ...]:
        signals = (*matched_keywords, *sorted(features))
        suggestions: list[str] = []
        for category in categories:
            candidates = list(_BASE_SUGGESTIONS[category])
            for target, fragments, path in _CONDITIONAL_SUGGESTIONS:
                if target is category and _any_fragment(fragments, signals):
                    candidates.append(path)
            for path in candidates:
                if path not in suggestions:
                    suggestions.append(path)
        return tuple(suggestions[: self._max_suggestions])


def _features_for(matched_keywords: tuple[str, ...]) -> frozenset[str]:
    features: set[str] = set()
    for keyword in matched_keywords:
        for fragment, tags in FEATURE_KEYWORDS:
            if fragment in keyword:
                features.update(tags)
    return frozenset(features)


def _any_fragment(fragments: tuple[str, ...], signals: tuple[str, ...]) -> bool:
    return any(fragment in signal for fragment in fragments for signal in signals)


__all__ = [
    "CATEGORY_KEYWORDS",
    "CONTRACT_DOMAIN_KEYWORDS",
    "FEATURE_KEYWORDS",
    "CategoryScore",
    "IntentClassifier",
]
