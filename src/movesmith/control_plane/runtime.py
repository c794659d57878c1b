"""
movesmith — runtime wiring.

File: src/movesmith/control_plane/runtime.py

Purpose
- Build a ready-to-run ``PipelineOrchestrator`` from validated config.

Functional requirements
- Seed the candidate store from the packaged catalog or ``paths.catalog``.
- Create the remote source only when ``aggregator.use_remote`` is enabled; its token comes
  from the env var named by ``remote.token_env``.
- Share one HTTP client between the remote source and the documentation fetcher and close
  it exactly once.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx
import structlog

from movesmith.config.loader import resolve_remote_token
from movesmith.config.schema import assert_valid_config, default_config
from movesmith.control_plane.deployment import BuildDeployCollaborator
from movesmith.control_plane.orchestrator import PipelineOrchestrator
from movesmith.knowledge_plane.aggregator import ContractSourceAggregator
from movesmith.knowledge_plane.candidate_store import CandidateStore
from movesmith.knowledge_plane.reference_docs import ContextService, ReferenceDocs
from movesmith.knowledge_plane.remote_source import GitHubContractSource
from movesmith.synthesis_plane.context_budget import ContextBudgetManager
from movesmith.synthesis_plane.intent_classifier import IntentClassifier


@dataclass(slots=True)
class PipelineRuntime:
    """Orchestrator plus the resources it owns."""

    orchestrator: PipelineOrchestrator
    store: CandidateStore
    classifier: IntentClassifier
    remote: GitHubContractSource | None
    docs: ReferenceDocs
    client: httpx.AsyncClient | None
    use_remote: bool
    default_network: str
    remote_token: str | None = None

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.aclose()
        await self.docs.aclose()
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> PipelineRuntime:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def build_runtime(
    config: Mapping[str, object] | None = None,
    *,
    collaborator: BuildDeployCollaborator | None = None,
    client: httpx.AsyncClient | None = None,
    environ: Mapping[str, str] | None = None,
    logger: Any | None = None,
) -> PipelineRuntime:
    """Wire every plane from ``config``; defaults apply when ``config`` is ``None``.

    A caller-supplied ``client`` is shared by the remote source and documentation fetcher
    and is left open on :meth:`PipelineRuntime.aclose`.
    """

    cfg = assert_valid_config(config if config is not None else default_config())
    log = logger if logger is not None else structlog.get_logger(__name__)
    classifier_cfg = cfg["classifier"]
    context_cfg = cfg["context"]
    aggregator_cfg = cfg["aggregator"]
    remote_cfg = cfg["remote"]
    pipeline_cfg = cfg["pipeline"]

    owned_client: httpx.AsyncClient | None = None
    if client is None:
        owned_client = httpx.AsyncClient(
            timeout=remote_cfg["timeout_seconds"], follow_redirects=True
        )
    shared = client or owned_client

    store = CandidateStore.from_catalog(cfg["paths"].get("catalog"))
    classifier = IntentClassifier(
        confidence_scale=classifier_cfg["confidence_scale"],
        related_threshold=classifier_cfg["related_threshold"],
        max_suggestions=classifier_cfg["max_suggestions"],
    )
    budget = ContextBudgetManager(chars_per_token=context_cfg["chars_per_token"])

    use_remote = bool(aggregator_cfg["use_remote"])
    token = resolve_remote_token(cfg, environ)
    remote: GitHubContractSource | None = None
    if use_remote:
        remote = GitHubContractSource(
            base_url=remote_cfg["base_url"],
            owner=remote_cfg["owner"],
            repo=remote_cfg["repo"],
            branch=remote_cfg["branch"],
            token=token,
            cache_ttl_seconds=remote_cfg["cache_ttl_seconds"],
            timeout_seconds=remote_cfg["timeout_seconds"],
            client=shared,
        )

    docs = ReferenceDocs(
        full_url=context_cfg["docs_full_url"],
        small_url=context_cfg["docs_small_url"],
        cache_ttl_seconds=context_cfg["cache_ttl_seconds"],
        client=shared,
    )
    aggregator = ContractSourceAggregator(
        store,
        remote,
        min_local_candidates=aggregator_cfg["min_local_candidates"],
        max_candidates=aggregator_cfg["max_candidates"],
    )
    orchestrator = PipelineOrchestrator(
        classifier=classifier,
        aggregator=aggregator,
        context_service=ContextService(docs, budget=budget, max_tokens=context_cfg["max_tokens"]),
        collaborator=collaborator,
        budget=budget,
        timeout_seconds=pipeline_cfg["timeout_seconds"],
        progress_buffer_size=pipeline_cfg["progress_buffer_size"],
        context_max_tokens=context_cfg["max_tokens"],
        reserved_output_tokens=context_cfg["reserved_output_tokens"],
        max_context_tokens=context_cfg["max_context_tokens"],
    )
    log.info(
        "runtime_built",
        candidates=len(store),
        use_remote=use_remote,
        remote_repository=remote.repository if remote is not None else None,
        has_remote_token=token is not None,
        deploy_enabled=collaborator is not None,
    )
    return PipelineRuntime(
        orchestrator=orchestrator,
        store=store,
        classifier=classifier,
        remote=remote,
        docs=docs,
        client=owned_client,
        use_remote=use_remote,
        default_network=pipeline_cfg["default_network"],
        remote_token=token,
    )


__all__ = ["PipelineRuntime", "build_runtime"]
