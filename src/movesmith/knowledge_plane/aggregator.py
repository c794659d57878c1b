"""
movesmith — candidate aggregation across the local store and a remote source.

File: src/movesmith/knowledge_plane/aggregator.py

Purpose
- Turn a ``ContractIntent`` into a short, ordered list of ``ContractCandidate`` values.

Functional requirements
- Local store lookups first, one per detected category in rank order, de-duplicated by id.
- Remote lookups only when remote use is enabled and fewer than ``min_local_candidates``
  local results were found; remote fetches run concurrently and each failure is logged
  and skipped.
- At most ``max_candidates`` results, local before remote.
- With no detected categories, fall back to keyword search over the local store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from movesmith.constants import MAX_CANDIDATES, MIN_LOCAL_CANDIDATES
from movesmith.synthesis_plane.context_budget import query_keywords
from movesmith.utils.concurrency import gather_settled

if TYPE_CHECKING:
    from movesmith.domain.models import ContractCandidate, ContractIntent
    from movesmith.knowledge_plane.candidate_store import CandidateStore


class RemoteContractSource(Protocol):
    async def fetch_by_path(
        self, path: str, credentials: str | None = None
    ) -> ContractCandidate: ...


@dataclass(frozen=True, slots=True)
class FetchOptions:
    use_remote: bool = False
    credentials: str | None = None


class ContractSourceAggregator:
    """Collect candidates for an intent from local and remote origins."""

    def __init__(
        self,
        store: CandidateStore,
        remote: RemoteContractSource | None = None,
        *,
        min_local_candidates: int = MIN_LOCAL_CANDIDATES,
        max_candidates: int = MAX_CANDIDATES,
        logger: Any | None = None,
    ) -> None:
        if max_candidates <= 0:
            raise ValueError("max_candidates must be > 0")
        if min_local_candidates < 0:
            raise ValueError("min_local_candidates must be >= 0")
        self._store = store
        self._remote = remote
        self._min_local = min_local_candidates
        self._max_candidates = max_candidates
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def fetch_candidates(
        self,
        intent: ContractIntent,
        options: FetchOptions | None = None,
        *,
        query: str | None = None,
    ) -> list[ContractCandidate]:
        opts = options or FetchOptions()
        local = self._local_candidates(intent, query)

        remote: list[ContractCandidate] = []
        if len(local) < self._min_local and opts.use_remote and self._remote is not None:
            known_paths = {item.path for item in local if item.path}
            paths = [path for path in intent.suggested_contracts if path not in known_paths]
            remote = await self._remote_candidates(paths, opts.credentials)

        seen = {item.id for item in local}
        merged = list(local)
        for candidate in remote:
            if candidate.id not in seen:
                seen.add(candidate.id)
                merged.append(candidate)
        selected = merged[: self._max_candidates]
        self._logger.info(
            "aggregator_candidates_selected",
            local=len(local),
            remote=len(remote),
            selected=len(selected),
        )
        return selected

    def _local_candidates(
        self, intent: ContractIntent, query: str | None
    ) -> list[ContractCandidate]:
        seen: set[str] = set()
        ordered: list[ContractCandidate] = []

        def _take(candidates: list[ContractCandidate]) -> None:
            for candidate in candidates:
                if candidate.id not in seen:
                    seen.add(candidate.id)
                    ordered.append(candidate)

        for category in intent.categories:
            _take(self._store.by_category(str(category)))
        if not intent.categories and query:
            # Keyword fallback for requests that matched no category.
            for keyword in query_keywords(query):
                _take(self._store.search(keyword))
        return ordered

    async def _remote_candidates(
        self, paths: list[str], credentials: str | None
    ) -> list[ContractCandidate]:
        if not paths or self._remote is None:
            return []
        remote = self._remote
        outcomes = await gather_settled(remote.fetch_by_path(path, credentials) for path in paths)
        fetched: list[ContractCandidate] = []
        for path, outcome in zip(paths, outcomes, strict=True):
            if outcome.ok and outcome.value is not None:
                fetched.append(outcome.value)
                continue
            error = outcome.error
            self._logger.warning(
                "aggregator_remote_fetch_failed",
                path=path,
                error=str(error),
                error_kind=getattr(error, "kind", type(error).__name__),
            )
        return fetched


__all__ = [
    "ContractSourceAggregator",
    "FetchOptions",
    "RemoteContractSource",
]
