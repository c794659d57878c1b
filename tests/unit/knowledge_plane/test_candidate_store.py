"""
movesmith — unit tests for the local candidate store

File: tests/unit/knowledge_plane/test_candidate_store.py

Purpose
- Validate catalog seeding, index maintenance, weighted search and catalog parsing errors.

What this test file should cover
- Category / feature / tag lookups are case-insensitive and insertion ordered.
- Remove and update evict ids from every index they were registered under.
- Readers holding an old snapshot are unaffected by concurrent writers.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from movesmith.domain.models import CandidateOrigin, CompilationStatus, ContractCandidate
from movesmith.knowledge_plane.candidate_store import (
    DEFAULT_CATALOG_PATH,
    CandidateStore,
    load_catalog,
)
from movesmith.verification_plane.source_model import extract_model

if TYPE_CHECKING:
    from pathlib import Path


def _candidate(candidate_id: str, **overrides: object) -> ContractCandidate:
    payload: dict[str, object] = {
        "id": candidate_id,
        "origin": CandidateOrigin.LOCAL,
        "category": "token",
        "relevance": 1.0,
        "source": "module 0x1::m { fun f() {} }",
        "features": ("mint",),
        "tags": ("fungible",),
        "name": candidate_id,
    }
    payload.update(overrides)
    return ContractCandidate(**payload)  # type: ignore[arg-type]


def test_packaged_catalog_seeds_valid_templates() -> None:
    store = CandidateStore.from_catalog()

    assert len(store) == 3
    assert {item.category for item in store.all()} == {"nft", "token", "marketplace"}
    for candidate in store.all():
        assert candidate.origin is CandidateOrigin.LOCAL
        assert candidate.compilation_status is CompilationStatus.VERIFIED
        assert extract_model(candidate.source).is_valid, candidate.id


def test_index_lookups_are_case_insensitive() -> None:
    store = CandidateStore.from_catalog(DEFAULT_CATALOG_PATH)

    assert [item.id for item in store.by_category("NFT")] == ["nft-collection-basic"]
    assert [item.id for item in store.by_tag(" nft ")] == [
        "nft-collection-basic",
        "marketplace-basic",
    ]
    assert [item.id for item in store.by_feature("transfer")] == [
        "nft-collection-basic",
        "fungible-token-basic",
    ]
    assert store.by_category("defi") == []


def test_stats_reflect_indices() -> None:
    stats = CandidateStore.from_catalog().stats()
    assert stats.to_dict() == {
        "count": 3,
        "categories": 3,
        "features": 12,
        "tags": 8,
        "verified": 3,
    }


def test_search_scores_fields_and_excludes_zero() -> None:
    store = CandidateStore.from_catalog()

    assert [item.id for item in store.search("mint")] == [
        "nft-collection-basic",
        "fungible-token-basic",
    ]
    assert store.search("   ") == []
    assert store.search("governance") == []


def test_add_rejects_duplicates() -> None:
    store = CandidateStore([_candidate("a")])
    with pytest.raises(ValueError, match="already exists"):
        store.add(_candidate("a"))
    assert "a" in store
    assert store.get("missing") is None


def test_remove_evicts_from_every_index() -> None:
    store = CandidateStore([_candidate("a"), _candidate("b", tags=("other",))])

    assert store.remove("a") is True
    assert store.remove("a") is False
    assert [item.id for item in store.by_category("token")] == ["b"]
    assert [item.id for item in store.by_feature("mint")] == ["b"]
    assert store.by_tag("fungible") == []
    assert store.stats().tags == 1


def test_update_reindexes_candidate() -> None:
    store = CandidateStore([_candidate("a")])

    assert store.update(_candidate("a", category="defi", features=("stake",))) is True
    assert store.by_category("token") == []
    assert [item.id for item in store.by_category("defi")] == ["a"]
    assert [item.id for item in store.by_feature("stake")] == ["a"]
    assert store.by_feature("mint") == []
    assert store.update(_candidate("missing")) is False


def test_concurrent_writers_keep_indices_consistent() -> None:
    store = CandidateStore()

    def _writer(offset: int) -> None:
        for index in range(50):
            store.add(_candidate(f"c-{offset}-{index}"))

    threads = [threading.Thread(target=_writer, args=(offset,)) for offset in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 200
    assert len(store.by_category("token")) == 200
    assert len(store.by_feature("mint")) == 200


def test_load_catalog_reports_location_of_bad_entries(tmp_path: Path) -> None:
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(
        "schema_version: 1\ntemplates:\n  - id: ok\n    category: nft\n    source: x\n"
        "  - id: broken\n    category: nft\n",
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match=r"catalog.yaml\[1\]: missing required fields"):
        load_catalog(catalog)


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("schema_version: 2\ntemplates: []\n", "unsupported schema_version"),
        ("- just\n- a list\n", "expected top-level mapping"),
        ("schema_version: 1\ntemplates: {}\n", "must be a sequence"),
        ("schema_version: [1\n", "invalid YAML"),
        (
            "schema_version: 1\ntemplates:\n  - {id: a, category: x, source: y, bogus: 1}\n",
            "unexpected fields",
        ),
    ],
)
def test_load_catalog_rejects_malformed_files(tmp_path: Path, text: str, message: str) -> None:
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        load_catalog(catalog)


def test_load_catalog_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_catalog(tmp_path / "absent.yaml")
