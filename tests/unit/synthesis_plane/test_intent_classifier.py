"""Unit tests for the keyword-weighted intent classifier."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from movesmith.domain.models import ContractCategory
from movesmith.synthesis_plane.intent_classifier import CATEGORY_KEYWORDS, IntentClassifier


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier()


def test_nft_collection_prompt(classifier: IntentClassifier) -> None:
    intent = classifier.detect_intent("Create an NFT collection with minting and royalties")

    assert intent.categories == (ContractCategory.NFT,)
    assert intent.features == frozenset({"collection_management", "minting", "token_creation"})
    assert intent.confidence == pytest.approx(min(3 / 14 * 2, 1.0))
    assert intent.suggested_contracts == ("nft/collection.move", "nft/token.move")
    assert classifier.assess(intent) is None
    assert classifier.is_contract_related("Create an NFT collection with minting and royalties")


def test_phrase_weight_counts_words(classifier: IntentClassifier) -> None:
    scores = classifier.score_categories("an nft marketplace with auctions")

    assert [score.category for score in scores] == [
        ContractCategory.NFT,
        ContractCategory.MARKETPLACE,
    ]
    nft = scores[0]
    assert nft.matched_keywords == ("nft", "nft marketplace")
    assert nft.raw_score == 3
    assert nft.normalized == pytest.approx(3 / len(CATEGORY_KEYWORDS[ContractCategory.NFT]))


def test_conditional_suggestions_follow_signals(classifier: IntentClassifier) -> None:
    intent = classifier.detect_intent("an nft marketplace with auctions")

    assert intent.suggested_contracts == (
        "nft/collection.move",
        "nft/token.move",
        "marketplace/nft_marketplace.move",
        "marketplace/simple_marketplace.move",
        "marketplace/auction.move",
    )
    assert {"listing", "trading", "bidding", "timed_sales"} <= intent.features


def test_suggestions_are_capped() -> None:
    capped = IntentClassifier(max_suggestions=2)
    intent = capped.detect_intent("an nft marketplace with auctions")
    assert intent.suggested_contracts == ("nft/collection.move", "nft/token.move")


def test_unrelated_prompt_is_ambiguous_with_no_categories(classifier: IntentClassifier) -> None:
    intent = classifier.detect_intent("hello there")

    assert intent.categories == ()
    assert intent.confidence == 0.0
    assert intent.suggested_contracts == ()
    warning = classifier.assess(intent)
    assert warning is not None
    assert warning.matched_categories == 0
    assert not classifier.is_contract_related("hello there")


def test_weak_match_is_flagged_but_keeps_categories(classifier: IntentClassifier) -> None:
    intent = classifier.detect_intent("I want a token")

    assert intent.categories == (ContractCategory.TOKEN,)
    assert intent.confidence < classifier.related_threshold
    warning = classifier.assess(intent)
    assert warning is not None
    assert warning.matched_categories == 1


def test_domain_vocabulary_marks_prompt_as_related(classifier: IntentClassifier) -> None:
    assert classifier.is_contract_related("please deploy my smart contract")


def test_confidence_scale_is_configurable() -> None:
    prompt = "Create an NFT collection with minting and royalties"
    doubled = IntentClassifier(confidence_scale=4.0).detect_intent(prompt)
    assert doubled.confidence == pytest.approx(min(3 / 14 * 4, 1.0))


@pytest.mark.parametrize(
    "kwargs",
    [{"confidence_scale": 0}, {"related_threshold": 1.5}, {"max_suggestions": 0}],
)
def test_constructor_validation(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        IntentClassifier(**kwargs)  # type: ignore[arg-type]


@settings(max_examples=100, deadline=None)
@given(st.text(max_size=200))
def test_classification_is_deterministic_and_bounded(prompt: str) -> None:
    classifier = IntentClassifier()
    first = classifier.detect_intent(prompt)
    second = classifier.detect_intent(prompt)

    assert first == second
    assert 0.0 <= first.confidence <= 1.0
    assert len(first.suggested_contracts) <= 5
    assert len(set(first.categories)) == len(first.categories)
