"""
movesmith — local keyed store of contract candidates.

File: src/movesmith/knowledge_plane/candidate_store.py

Purpose
- Hold template contracts in memory with O(1) category / feature / tag index lookups.
- Seed itself from the packaged YAML catalog (``knowledge_plane/catalog/templates.yaml``).

Functional requirements
- Indices are maintained incrementally on add/update/remove; removal evicts an id from
  every index it was registered under.
- Concurrent readers never observe a partially-updated index: writers build a new
  immutable snapshot under a lock and publish it with a single reference swap.

Non-functional requirements
- Lookup results are ordered by insertion order for determinism.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Final, cast

import structlog
import yaml

from movesmith.constants import CATALOG_SCHEMA_VERSION
from movesmith.domain.models import CandidateOrigin, CompilationStatus, ContractCandidate

DEFAULT_CATALOG_PATH: Final[Path] = Path(__file__).resolve().parent / "catalog" / "templates.yaml"

_REQUIRED_TEMPLATE_FIELDS: Final[frozenset[str]] = frozenset({"id", "category", "source"})
_ALLOWED_TEMPLATE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "name",
        "path",
        "category",
        "description",
        "features",
        "dependencies",
        "tags",
        "compilation_status",
        "version",
        "relevance",
        "source",
    }
)

# Search weights per matched field.
_SCORE_NAME: Final[int] = 10
_SCORE_CATEGORY: Final[int] = 8
_SCORE_DESCRIPTION: Final[int] = 5
_SCORE_FEATURE: Final[int] = 3
_SCORE_TAG: Final[int] = 2


@dataclass(frozen=True, slots=True)
class StoreStats:
    count: int
    categories: int
    features: int
    tags: int
    verified: int

    def to_dict(self) -> dict[str, int]:
        return {
            "count": self.count,
            "categories": self.categories,
            "features": self.features,
            "tags": self.tags,
            "verified": self.verified,
        }


@dataclass(frozen=True, slots=True)
class _Snapshot:
    entries: Mapping[str, ContractCandidate] = field(default_factory=dict)
    by_category: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    by_feature: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    by_tag: Mapping[str, tuple[str, ...]] = field(default_factory=dict)


class CandidateStore:
    """In-memory candidate store with copy-on-write indices."""

    def __init__(
        self,
        candidates: Iterable[ContractCandidate] = (),
        *,
        logger: Any | None = None,
    ) -> None:
        self._write_lock = Lock()
        self._snapshot = _Snapshot()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        for candidate in candidates:
            self.add(candidate)

    @classmethod
    def from_catalog(
        cls,
        catalog_path: Path | str | None = None,
        *,
        logger: Any | None = None,
    ) -> CandidateStore:
        path = Path(catalog_path) if catalog_path is not None else DEFAULT_CATALOG_PATH
        store = cls(load_catalog(path), logger=logger)
        store._logger.info("candidate_store_seeded", catalog=str(path), count=len(store))
        return store

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._snapshot.entries

    def get(self, candidate_id: str) -> ContractCandidate | None:
        return self._snapshot.entries.get(candidate_id)

    def all(self) -> list[ContractCandidate]:
        return list(self._snapshot.entries.values())

    def by_category(self, category: str) -> list[ContractCandidate]:
        snapshot = self._snapshot
        return _resolve(snapshot, snapshot.by_category.get(_key(category), ()))

    def by_feature(self, feature: str) -> list[ContractCandidate]:
        snapshot = self._snapshot
        return _resolve(snapshot, snapshot.by_feature.get(_key(feature), ()))

    def by_tag(self, tag: str) -> list[ContractCandidate]:
        snapshot = self._snapshot
        return _resolve(snapshot, snapshot.by_tag.get(_key(tag), ()))

    def add(self, candidate: ContractCandidate) -> None:
        with self._write_lock:
            current = self._snapshot
            if candidate.id in current.entries:
                raise ValueError(f"candidate id already exists in store: {candidate.id!r}")
            self._snapshot = _with_candidate(current, candidate)
        self._logger.debug("candidate_store_added", candidate_id=candidate.id)

    def update(self, candidate: ContractCandidate) -> bool:
        """Replace an existing candidate, re-indexing it. Returns ``False`` if absent."""

        with self._write_lock:
            current = self._snapshot
            if candidate.id not in current.entries:
                return False
            self._snapshot = _with_candidate(_without(current, candidate.id), candidate)
        self._logger.debug("candidate_store_updated", candidate_id=candidate.id)
        return True

    def remove(self, candidate_id: str) -> bool:
        with self._write_lock:
            current = self._snapshot
            if candidate_id not in current.entries:
                return False
            self._snapshot = _without(current, candidate_id)
        self._logger.debug("candidate_store_removed", candidate_id=candidate_id)
        return True

    def search(self, query: str) -> list[ContractCandidate]:
        """Rank candidates by weighted substring matches of ``query``; zero scores excluded."""

        needle = query.strip().lower()
        if not needle:
            return []
        scored: list[tuple[int, ContractCandidate]] = []
        for candidate in self._snapshot.entries.values():
            score = 0
            if needle in candidate.name.lower():
                score += _SCORE_NAME
            if needle in candidate.description.lower():
                score += _SCORE_DESCRIPTION
            if needle in candidate.category.lower():
                score += _SCORE_CATEGORY
            score += _SCORE_FEATURE * sum(1 for item in candidate.features if needle in item.lower())
            score += _SCORE_TAG * sum(1 for item in candidate.tags if needle in item.lower())
            if score > 0:
                scored.append((score, candidate))
        scored.sort(key=lambda item: -item[0])
        return [candidate for _, candidate in scored]

    def stats(self) -> StoreStats:
        snapshot = self._snapshot
        return StoreStats(
            count=len(snapshot.entries),
            categories=len(snapshot.by_category),
            features=len(snapshot.by_feature),
            tags=len(snapshot.by_tag),
            verified=sum(
                1
                for item in snapshot.entries.values()
                if item.compilation_status is CompilationStatus.VERIFIED
            ),
        )


def load_catalog(path: Path | str) -> list[ContractCandidate]:
    """Parse a YAML template catalog into local candidates."""

    catalog_path = Path(path).expanduser()
    if not catalog_path.is_file():
        raise FileNotFoundError(f"candidate catalog does not exist: {catalog_path}")
    try:
        with catalog_path.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise ValueError(f"{catalog_path}: invalid YAML ({exc})") from exc

    if not isinstance(loaded, Mapping):
        raise ValueError(f"{catalog_path}: expected top-level mapping, got {type(loaded).__name__}")
    version = loaded.get("schema_version")
    if version != CATALOG_SCHEMA_VERSION:
        raise ValueError(
            f"{catalog_path}: unsupported schema_version {version!r}; "
            f"expected {CATALOG_SCHEMA_VERSION}"
        )
    templates = loaded.get("templates")
    if not isinstance(templates, list):
        raise ValueError(f"{catalog_path}: 'templates' must be a sequence")

    return [
        _parse_template(item, location=f"{catalog_path.name}[{index}]")
        for index, item in enumerate(templates)
    ]


def _parse_template(value: object, *, location: str) -> ContractCandidate:
    if not isinstance(value, Mapping):
        raise ValueError(f"{location}: expected mapping, got {type(value).__name__}")
    keys = {str(key) for key in value}
    missing = sorted(_REQUIRED_TEMPLATE_FIELDS - keys)
    if missing:
        raise ValueError(f"{location}: missing required fields: {missing}")
    unknown = sorted(keys - _ALLOWED_TEMPLATE_FIELDS)
    if unknown:
        raise ValueError(f"{location}: unexpected fields: {unknown}")

    try:
        return ContractCandidate(
            id=_as_text(value["id"], f"{location}.id"),
            origin=CandidateOrigin.LOCAL,
            category=_as_text(value["category"], f"{location}.category").lower(),
            relevance=float(value.get("relevance", 1.0)),
            source=_as_text(value["source"], f"{location}.source"),
            features=_as_text_tuple(value.get("features", ()), f"{location}.features"),
            dependencies=_as_text_tuple(value.get("dependencies", ()), f"{location}.dependencies"),
            name=str(value.get("name", "")),
            path=str(value.get("path", "")),
            description=str(value.get("description", "")),
            tags=_as_text_tuple(value.get("tags", ()), f"{location}.tags"),
            compilation_status=CompilationStatus(value.get("compilation_status", "untested")),
            version=str(value.get("version", "1.0.0")),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{location}: {exc}") from exc


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{path}: expected non-empty string")
    return value


def _as_text_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{path}: expected sequence, got {type(value).__name__}")
    return tuple(str(item) for item in value)


def _key(value: str) -> str:
    return value.strip().lower()


def _resolve(snapshot: _Snapshot, ids: tuple[str, ...]) -> list[ContractCandidate]:
    return [snapshot.entries[item] for item in ids if item in snapshot.entries]


def _with_candidate(snapshot: _Snapshot, candidate: ContractCandidate) -> _Snapshot:
    entries = dict(snapshot.entries)
    entries[candidate.id] = candidate
    return _Snapshot(
        entries=entries,
        by_category=_index_add(snapshot.by_category, (candidate.category,), candidate.id),
        by_feature=_index_add(snapshot.by_feature, candidate.features, candidate.id),
        by_tag=_index_add(snapshot.by_tag, candidate.tags, candidate.id),
    )


def _without(snapshot: _Snapshot, candidate_id: str) -> _Snapshot:
    candidate = snapshot.entries[candidate_id]
    entries = {key: value for key, value in snapshot.entries.items() if key != candidate_id}
    return _Snapshot(
        entries=entries,
        by_category=_index_remove(snapshot.by_category, (candidate.category,), candidate_id),
        by_feature=_index_remove(snapshot.by_feature, candidate.features, candidate_id),
        by_tag=_index_remove(snapshot.by_tag, candidate.tags, candidate_id),
    )


def _index_add(
    index: Mapping[str, tuple[str, ...]], keys: Iterable[str], candidate_id: str
) -> dict[str, tuple[str, ...]]:
    updated = dict(index)
    for raw in keys:
        key = _key(raw)
        if not key:
            continue
        existing = updated.get(key, ())
        if candidate_id not in existing:
            updated[key] = (*existing, candidate_id)
    return updated


def _index_remove(
    index: Mapping[str, tuple[str, ...]], keys: Iterable[str], candidate_id: str
) -> dict[str, tuple[str, ...]]:
    updated = dict(index)
    for raw in keys:
        key = _key(raw)
        remaining = tuple(item for item in updated.get(key, ()) if item != candidate_id)
        if remaining:
            updated[key] = remaining
        else:
            updated.pop(key, None)
    return updated


__all__ = [
    "DEFAULT_CATALOG_PATH",
    "CandidateStore",
    "StoreStats",
    "load_catalog",
]
