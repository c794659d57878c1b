"""
movesmith — remote contract source backed by the GitHub REST API.

File: src/movesmith/knowledge_plane/remote_source.py

Purpose
- Fetch single Move sources by repository path and list ``.move`` files matching a
  pattern, turning them into ``ContractCandidate`` values with ``origin=remote``.

Functional requirements
- Not-found, authentication and rate-limit failures raise distinct ``SourceFetchError``
  subclasses; any other transport or decoding failure raises ``SourceFetchError``.
- Successful responses are cached for a TTL (default one hour).

Security
- Tokens are sent only as request headers and are never logged.
"""

from __future__ import annotations

import base64
import binascii
import time
from collections.abc import Callable, Mapping
from pathlib import PurePosixPath
from types import TracebackType
from typing import Any, Final

import httpx
import structlog

from movesmith.constants import (
    DEFAULT_REMOTE_RELEVANCE,
    REMOTE_CACHE_MAX_ENTRIES,
    REMOTE_CACHE_TTL_SECONDS,
)
from movesmith.domain.errors import (
    RemoteAuthError,
    RemoteNotFoundError,
    RemoteRateLimitError,
    SourceFetchError,
)
from movesmith.domain.models import CandidateOrigin, ContractCandidate
from movesmith.utils.cache import TTLCache
from movesmith.verification_plane.source_model import extract_model

DEFAULT_BASE_URL: Final[str] = "https://api.github.com"
DEFAULT_OWNER: Final[str] = "aptos-labs"
DEFAULT_REPO: Final[str] = "move-by-examples"
DEFAULT_BRANCH: Final[str] = "main"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
UNCATEGORIZED: Final[str] = "uncategorized"

_ACCEPT_HEADER: Final[str] = "application/vnd.github.v3+json"


class GitHubContractSource:
    """Read-only adapter over one GitHub repository of Move examples."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        owner: str = DEFAULT_OWNER,
        repo: str = DEFAULT_REPO,
        branch: str = DEFAULT_BRANCH,
        token: str | None = None,
        cache_ttl_seconds: float = REMOTE_CACHE_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        relevance: float = DEFAULT_REMOTE_RELEVANCE,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        if not owner or not repo:
            raise ValueError("owner and repo must be non-empty")
        self._owner = owner
        self._repo = repo
        self._branch = branch
        self._token = token
        self._relevance = relevance
        self._owns_client = client is None
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._contents_cache: TTLCache[str, ContractCandidate] = TTLCache(
            cache_ttl_seconds, maxsize=REMOTE_CACHE_MAX_ENTRIES, clock=clock
        )
        self._tree_cache: TTLCache[str, tuple[str, ...]] = TTLCache(cache_ttl_seconds, clock=clock)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def repository(self) -> str:
        return f"{self._owner}/{self._repo}"

    async def __aenter__(self) -> GitHubContractSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def clear_cache(self) -> None:
        self._contents_cache.clear()
        self._tree_cache.clear()

    async def fetch_by_path(self, path: str, credentials: str | None = None) -> ContractCandidate:
        """Fetch ``path`` from the repository and wrap it as a remote candidate."""

        normalized = path.strip().lstrip("/")
        if not normalized:
            raise SourceFetchError("remote path must be non-empty", path=path)
        cached = self._contents_cache.get(normalized)
        if cached is not None:
            self._logger.debug("remote_cache_hit", path=normalized)
            return cached

        payload = await self._get_json(
            f"{self._base_url}/repos/{self._owner}/{self._repo}/contents/{normalized}",
            credentials=credentials,
            path=normalized,
        )
        if not isinstance(payload, Mapping) or not isinstance(payload.get("content"), str):
            raise SourceFetchError(f"unexpected contents payload for {normalized!r}", path=normalized)
        source = _decode_content(payload["content"], path=normalized)
        candidate = self._to_candidate(str(payload.get("path") or normalized), source)
        self._contents_cache.put(normalized, candidate)
        self._logger.info("remote_contract_fetched", path=normalized, bytes=len(source))
        return candidate

    async def search_by_pattern(self, pattern: str, credentials: str | None = None) -> list[str]:
        """Return ``.move`` blob paths containing ``pattern`` (case-insensitive)."""

        paths = await self._move_paths(credentials)
        needle = pattern.strip().lower()
        matches = [item for item in paths if needle in item.lower()]
        self._logger.info("remote_search_completed", pattern=pattern, matches=len(matches))
        return matches

    async def _move_paths(self, credentials: str | None) -> tuple[str, ...]:
        cached = self._tree_cache.get(self._branch)
        if cached is not None:
            return cached
        payload = await self._get_json(
            f"{self._base_url}/repos/{self._owner}/{self._repo}/git/trees/{self._branch}",
            params={"recursive": "1"},
            credentials=credentials,
            path=None,
        )
        tree = payload.get("tree", []) if isinstance(payload, Mapping) else []
        paths = tuple(
            str(item["path"])
            for item in tree
            if isinstance(item, Mapping)
            and item.get("type") == "blob"
            and str(item.get("path", "")).endswith(".move")
        )
        self._tree_cache.put(self._branch, paths)
        return paths

    async def _get_json(
        self,
        url: str,
        *,
        credentials: str | None,
        path: str | None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        headers = {"Accept": _ACCEPT_HEADER}
        token = credentials or self._token
        if token:
            headers["Authorization"] = f"token {token}"
        try:
            response = await self._client.get(url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"request to {self.repository} failed: {exc}", path=path) from exc
        _raise_for_status(response, path=path)
        try:
            return response.json()
        except ValueError as exc:
            raise SourceFetchError(f"invalid JSON from {self.repository}", path=path) from exc

    def _to_candidate(self, path: str, source: str) -> ContractCandidate:
        model = extract_model(source, validate=False)
        return ContractCandidate(
            id=f"remote:{self.repository}:{path}",
            origin=CandidateOrigin.REMOTE,
            category=category_for_path(path),
            relevance=self._relevance,
            source=source,
            features=model.functions,
            dependencies=model.dependencies,
            name=PurePosixPath(path).stem,
            path=path,
            description=f"{path} from {self.repository}",
        )


def category_for_path(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    return parts[0].lower() if len(parts) > 1 else UNCATEGORIZED


def _decode_content(content: str, *, path: str) -> str:
    try:
        return base64.b64decode(content, validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise SourceFetchError(f"could not decode contents of {path!r}", path=path) from exc


def _raise_for_status(response: httpx.Response, *, path: str | None) -> None:
    status = response.status_code
    if status < 400:
        return
    target = path or str(response.request.url)
    if status == 404:
        raise RemoteNotFoundError(f"remote contract not found: {target}", path=path)
    if status == 429 or (status == 403 and response.headers.get("X-RateLimit-Remaining") == "0"):
        raise RemoteRateLimitError(f"GitHub rate limit exceeded while fetching {target}", path=path)
    if status in {401, 403}:
        raise RemoteAuthError(f"GitHub rejected credentials ({status}) for {target}", path=path)
    raise SourceFetchError(f"GitHub API error {status} for {target}", path=path)


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_BRANCH",
    "DEFAULT_OWNER",
    "DEFAULT_REPO",
    "GitHubContractSource",
    "UNCATEGORIZED",
    "category_for_path",
]
