"""
movesmith — unit tests for the pipeline orchestrator

File: tests/unit/control_plane/test_orchestrator.py

Purpose
- Drive full pipeline runs against the packaged catalog and fake collaborators.

What this test file should cover
- Happy path without deployment, with the expected bundle and step log.
- Progress monotonicity until failure and the reset to 0 on failure.
- Warning-only paths (ambiguity, docs outage, dropped candidates) and fatal paths
  (empty aggregation, build, deploy, timeout, cancellation) with their error kinds.
- Collaborator exceptions mapped to build or deploy failures.
- A blocked progress listener never stalls the run.
"""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from movesmith.control_plane.deployment import (
    DeploymentResult,
    DeploymentStatus,
    DeploymentUpdate,
    StatusCallback,
)
from movesmith.control_plane.orchestrator import (
    PipelineOrchestrator,
    PipelineRequest,
    PipelineResult,
)
from movesmith.control_plane.progress import ProgressChannel
from movesmith.domain.errors import SourceFetchError
from movesmith.domain.models import (
    CandidateOrigin,
    ContractCandidate,
    Message,
    PipelineStage,
    ProgressRecord,
    StepStatus,
)
from movesmith.knowledge_plane.aggregator import ContractSourceAggregator
from movesmith.knowledge_plane.candidate_store import CandidateStore
from movesmith.synthesis_plane.intent_classifier import IntentClassifier
from movesmith.utils.concurrency import CancellationToken
from movesmith.verification_plane.source_model import extract_model

NFT_PROMPT = "Create an NFT collection with minting and royalties"


class _FakeContext:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.queries: list[tuple[str, int | None]] = []

    def is_domain_query(self, query: str) -> bool:
        return True

    async def relevant_context(self, query: str, *, max_tokens: int | None = None) -> str:
        self.queries.append((query, max_tokens))
        if self.fail:
            raise SourceFetchError("documentation fetch failed with HTTP 503", path="docs")
        return "# Collections\nCollections group tokens."


class _SlowContext(_FakeContext):
    async def relevant_context(self, query: str, *, max_tokens: int | None = None) -> str:
        await asyncio.sleep(10)
        return ""


class _FakeCollaborator:
    def __init__(
        self,
        *,
        fail_at: DeploymentStatus | None = None,
        crash_at: DeploymentStatus | None = None,
        hang: bool = False,
    ) -> None:
        self.fail_at = fail_at
        self.crash_at = crash_at
        self.hang = hang
        self.calls: list[tuple[str, str]] = []

    async def deploy(
        self,
        module_name: str,
        source: str,
        network: str,
        on_status: StatusCallback,
    ) -> DeploymentResult:
        self.calls.append((module_name, network))
        assert extract_model(source).is_valid
        if self.hang:
            await asyncio.sleep(3600)
        on_status(DeploymentUpdate(DeploymentStatus.COMPILING, "Compiling", 50))
        if self.crash_at is DeploymentStatus.COMPILING:
            raise RuntimeError("compiler crashed")
        if self.fail_at is DeploymentStatus.COMPILING:
            return DeploymentResult(success=False, error="error[E03002]: unbound module")
        on_status(DeploymentUpdate(DeploymentStatus.DEPLOYING, "Publishing", 50))
        if self.crash_at is DeploymentStatus.DEPLOYING:
            raise RuntimeError("node unreachable")
        if self.fail_at is DeploymentStatus.DEPLOYING:
            on_status(DeploymentUpdate(DeploymentStatus.FAILED, "Publish rejected", 0))
            return DeploymentResult(success=False, error="INSUFFICIENT_BALANCE")
        on_status(DeploymentUpdate(DeploymentStatus.COMPLETED, "Published", 100))
        return DeploymentResult(success=True, transaction_id=f"0x{len(self.calls):04x}")


def _orchestrator(
    store: CandidateStore | None = None,
    **kwargs: object,
) -> PipelineOrchestrator:
    aggregator = ContractSourceAggregator(store or CandidateStore.from_catalog())
    return PipelineOrchestrator(
        classifier=IntentClassifier(),
        aggregator=aggregator,
        **kwargs,  # type: ignore[arg-type]
    )


async def _run(
    orchestrator: PipelineOrchestrator,
    request: PipelineRequest,
    *,
    cancel_token: CancellationToken | None = None,
) -> tuple[PipelineResult, list[ProgressRecord]]:
    channel = ProgressChannel(buffer_size=256)
    records: list[ProgressRecord] = []
    channel.subscribe(records.append)
    result = await orchestrator.execute(request, channel=channel, cancel_token=cancel_token)
    assert channel.closed
    return result, records


async def test_nft_prompt_generates_customized_bundle() -> None:
    context = _FakeContext()
    result, records = await _run(
        _orchestrator(context_service=context),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo", address="0xcafe"),
    )

    assert result.success, result.error
    assert result.execution.stage is PipelineStage.COMPLETED
    assert result.execution.progress == 100
    assert result.warnings == ()
    assert result.context.startswith("# Collections")
    assert context.queries == [(NFT_PROMPT, 4_000)]

    bundle = result.bundle
    assert bundle is not None
    assert bundle.modules == ("demo_collection",)
    assert [item.path for item in bundle.files] == ["sources/demo_collection.move", "Move.toml"]
    source = bundle.file("sources/demo_collection.move")
    assert source is not None
    model = extract_model(source.content)
    assert model.is_valid
    assert model.qualified_name == "0xcafe::demo_collection"
    manifest = bundle.file("Move.toml")
    assert manifest is not None and 'demo = "0xcafe"' in manifest.content

    assert "Create an NFT collection" in result.prompt_bundle
    assert "- demo_collection" in result.prompt_bundle

    steps = [(step.name, step.status) for step in result.execution.steps]
    assert steps == [
        ("analyzing", StepStatus.RUNNING),
        ("analyzing", StepStatus.COMPLETED),
        ("fetching-context", StepStatus.RUNNING),
        ("fetching-context", StepStatus.COMPLETED),
        ("generating", StepStatus.RUNNING),
        ("generating", StepStatus.COMPLETED),
    ]
    assert records[-1].stage is PipelineStage.COMPLETED
    assert records[-1].progress_percent == 100
    progress = [record.progress_percent for record in records]
    assert progress == sorted(progress)

    payload = result.to_dict()
    assert payload["success"] is True
    assert payload["summary"]["completed_steps"] == 3  # type: ignore[index]
    assert "error" not in payload


async def test_default_address_is_project_name() -> None:
    result, _ = await _run(
        _orchestrator(), PipelineRequest(prompt=NFT_PROMPT, project_name="My Demo")
    )
    assert result.bundle is not None
    assert result.bundle.address == "my_demo"
    assert result.bundle.modules == ("my_demo_collection",)


async def test_unmatched_prompt_fails_with_empty_aggregation() -> None:
    result, records = await _run(
        _orchestrator(), PipelineRequest(prompt="hello there", project_name="demo")
    )

    assert not result.success
    assert result.error_kind == "aggregation_empty"
    assert result.execution.stage is PipelineStage.FAILED
    assert result.execution.progress == 0
    assert result.warnings == ("no contract category matched the request",)
    assert result.execution.steps[-1].status is StepStatus.FAILED
    assert result.execution.steps[-1].name == "generating"

    last = records[-1]
    assert last.stage is PipelineStage.FAILED
    assert last.progress_percent == 0
    assert last.error_kind == "aggregation_empty"
    progress = [record.progress_percent for record in records[:-1]]
    assert progress == sorted(progress)


async def test_docs_outage_is_a_warning() -> None:
    result, _ = await _run(
        _orchestrator(context_service=_FakeContext(fail=True)),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo"),
    )

    assert result.success
    assert result.context == ""
    assert result.warnings == (
        "reference documentation unavailable: documentation fetch failed with HTTP 503",
    )


async def test_invalid_candidate_is_repaired_or_dropped() -> None:
    store = CandidateStore(
        [
            ContractCandidate(
                id="unclosed",
                origin=CandidateOrigin.LOCAL,
                category="nft",
                relevance=1.0,
                source="module 0x1::unclosed {\n    use std::signer;\n    public fun f() {}\n",
            ),
            ContractCandidate(
                id="empty",
                origin=CandidateOrigin.LOCAL,
                category="nft",
                relevance=1.0,
                source="// nothing to see\n",
            ),
        ]
    )

    result, _ = await _run(
        _orchestrator(store), PipelineRequest(prompt=NFT_PROMPT, project_name="demo")
    )

    assert result.success
    assert result.bundle is not None
    assert result.bundle.modules == ("demo_unclosed",)
    assert len(result.warnings) == 1
    assert result.warnings[0].startswith("candidate 'empty' failed validation")


async def test_history_is_rendered_into_prompt_bundle() -> None:
    result, _ = await _run(
        _orchestrator(),
        PipelineRequest(
            prompt=NFT_PROMPT,
            project_name="demo",
            history=(Message("user", "make it soulbound"),),
        ),
    )
    assert "[user] make it soulbound" in result.prompt_bundle


async def test_deploy_runs_collaborator_per_module() -> None:
    collaborator = _FakeCollaborator()
    result, records = await _run(
        _orchestrator(collaborator=collaborator),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo", deploy=True, network="testnet"),
    )

    assert result.success, result.error
    assert collaborator.calls == [("demo_collection", "testnet")]
    assert result.explorer_urls == (
        "https://explorer.aptoslabs.com/txn/0x0001?network=testnet",
    )
    stages = [step.name for step in result.execution.steps]
    assert stages[-4:] == ["building", "building", "deploying", "deploying"]
    progress = [record.progress_percent for record in records]
    assert progress == sorted(progress)
    assert 70 in progress and 90 in progress


@pytest.mark.parametrize(
    ("fail_at", "kind"),
    [(DeploymentStatus.COMPILING, "build"), (DeploymentStatus.DEPLOYING, "deploy")],
)
async def test_collaborator_failure_kinds(fail_at: DeploymentStatus, kind: str) -> None:
    result, _ = await _run(
        _orchestrator(collaborator=_FakeCollaborator(fail_at=fail_at)),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo", deploy=True),
    )

    assert not result.success
    assert result.error_kind == kind
    assert result.execution.progress == 0
    assert len(result.deployments) == 1


async def test_deploy_without_collaborator_is_a_build_failure() -> None:
    result, _ = await _run(
        _orchestrator(), PipelineRequest(prompt=NFT_PROMPT, project_name="demo", deploy=True)
    )
    assert result.error_kind == "build"
    assert result.bundle is not None


async def test_timeout_cancels_inflight_stage() -> None:
    result, records = await _run(
        _orchestrator(collaborator=_FakeCollaborator(hang=True), timeout_seconds=0.05),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo", deploy=True),
    )

    assert not result.success
    assert result.error_kind == "timeout"
    assert "timeout" in (result.error or "")
    assert records[-1].error_kind == "timeout"


@pytest.mark.parametrize(
    ("crash_at", "kind"),
    [(DeploymentStatus.COMPILING, "build"), (DeploymentStatus.DEPLOYING, "deploy")],
)
async def test_collaborator_exception_becomes_stage_failure(
    crash_at: DeploymentStatus, kind: str
) -> None:
    result, records = await _run(
        _orchestrator(collaborator=_FakeCollaborator(crash_at=crash_at)),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo", deploy=True),
    )

    assert not result.success
    assert result.error_kind == kind
    assert result.error is not None and result.error.startswith("demo_collection: ")
    assert result.execution.stage is PipelineStage.FAILED
    assert result.execution.progress == 0
    assert records[-1].error_kind == kind


async def test_cancel_token_fails_run_as_cancelled() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    result, records = await _run(
        _orchestrator(context_service=_SlowContext()),
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo"),
        cancel_token=token,
    )

    assert not result.success
    assert result.error_kind == "cancelled"
    assert result.execution.stage is PipelineStage.FAILED
    assert result.execution.progress == 0
    assert records[-1].stage is PipelineStage.FAILED
    assert records[-1].progress_percent == 0
    assert records[-1].error_kind == "cancelled"


async def test_cancelling_the_caller_task_still_propagates() -> None:
    orchestrator = _orchestrator(context_service=_SlowContext())
    task = asyncio.create_task(
        orchestrator.execute(
            PipelineRequest(prompt=NFT_PROMPT, project_name="demo"),
            cancel_token=CancellationToken(),
        )
    )
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


async def test_blocked_listener_does_not_stall_pipeline() -> None:
    channel = ProgressChannel(buffer_size=256, drain_timeout_seconds=0.1)
    gate = threading.Event()
    seen: list[ProgressRecord] = []

    def blocked(record: ProgressRecord) -> None:
        gate.wait(5.0)
        seen.append(record)

    channel.subscribe(blocked)
    started = time.monotonic()
    result = await _orchestrator().execute(
        PipelineRequest(prompt=NFT_PROMPT, project_name="demo"), channel=channel
    )

    assert result.success, result.error
    assert time.monotonic() - started < 2.0
    assert not channel.wait_drained(0)

    gate.set()
    assert channel.wait_drained(2.0)
    assert seen[-1].stage is PipelineStage.COMPLETED
    assert seen[-1].progress_percent == 100


@pytest.mark.parametrize(
    "kwargs",
    [
        {"prompt": " ", "project_name": "demo"},
        {"prompt": "nft", "project_name": ""},
        {"prompt": "nft", "project_name": "demo", "network": "localnet"},
    ],
)
def test_request_validation(kwargs: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        PipelineRequest(**kwargs)


def test_credentials_are_hidden_from_repr() -> None:
    request = PipelineRequest(prompt="nft", project_name="demo", credentials="ghp_secret")
    assert "ghp_secret" not in repr(request)
