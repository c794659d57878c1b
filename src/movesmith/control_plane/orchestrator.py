"""
movesmith — prompt-to-contract pipeline orchestrator.

File: src/movesmith/control_plane/orchestrator.py

Purpose
- Drive one request through the forward-only stage machine
  ``analyzing -> fetching-context -> generating -> [building -> deploying] -> completed``
  and publish a progress record at every step.

Functional requirements
- Each stage appends a running step, then a completed or failed step.
- Progress is monotonic within a run; entering ``failed`` resets it to 0.
- Classification ambiguity and context-fetch failures are warnings. Validation failures
  get one repair pass before the candidate is dropped.
- Empty aggregation, build and deploy failures and the overall timeout are fatal.
- Cancelling through the caller's token fails the run with kind ``cancelled``.
- Exceptions are converted into a failed ``PipelineResult`` here and nowhere else.

Non-functional requirements
- Stages run sequentially on a single task; only that task writes the step log.
- Progress listeners never run on the pipeline task.
- The overall wall-clock timeout cancels the in-flight stage.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

import structlog

from movesmith.constants import (
    DEFAULT_CONTEXT_MAX_TOKENS,
    DEFAULT_NETWORK,
    MAX_CONTEXT_TOKENS,
    MOVE_TOML_FILENAME,
    NETWORKS,
    PIPELINE_TIMEOUT_SECONDS,
    PROGRESS_BUFFER_SIZE,
    RESERVED_OUTPUT_TOKENS,
    SOURCES_DIR,
)
from movesmith.control_plane.deployment import (
    BuildDeployCollaborator,
    DeploymentResult,
    DeploymentStatus,
    DeploymentUpdate,
    explorer_url,
)
from movesmith.control_plane.progress import ProgressChannel
from movesmith.domain.errors import (
    AggregationEmptyError,
    BuildFailure,
    DeployFailure,
    MovesmithError,
    PipelineCancelledError,
    PipelineTimeoutError,
    SourceFetchError,
    ValidationFailure,
)
from movesmith.domain.ids import generate_execution_id
from movesmith.domain.models import (
    ContractBundle,
    ContractCandidate,
    ContractIntent,
    GeneratedFile,
    JSONValue,
    Message,
    PipelineExecution,
    PipelineStage,
    SourceModel,
    StepStatus,
)
from movesmith.knowledge_plane.aggregator import FetchOptions
from movesmith.observability.logging import correlation_scope
from movesmith.synthesis_plane.context_budget import ContextBudgetManager
from movesmith.synthesis_plane.customizer import (
    CustomizationOptions,
    customize,
    normalize_address,
    repair_source,
    sanitize_module_name,
)
from movesmith.synthesis_plane.prompt_templates import (
    TemplateRenderer,
    generate_move_toml,
    render_prompt_bundle,
)
from movesmith.utils.concurrency import CancellationToken, run_with_timeout
from movesmith.verification_plane.source_model import extract_model

if TYPE_CHECKING:
    from movesmith.knowledge_plane.aggregator import ContractSourceAggregator
    from movesmith.knowledge_plane.reference_docs import ContextService
    from movesmith.synthesis_plane.intent_classifier import IntentClassifier

# (start, end) progress per working stage.
STAGE_PROGRESS: Final[dict[PipelineStage, tuple[int, int]]] = {
    PipelineStage.ANALYZING: (10, 20),
    PipelineStage.FETCHING_CONTEXT: (20, 40),
    PipelineStage.GENERATING: (40, 60),
    PipelineStage.BUILDING: (60, 80),
    PipelineStage.DEPLOYING: (80, 100),
}
COMPLETED_PROGRESS: Final[int] = 100


@dataclass(frozen=True, slots=True)
class PipelineRequest:
    prompt: str
    project_name: str
    address: str | None = None
    network: str = DEFAULT_NETWORK
    deploy: bool = False
    use_remote: bool = False
    credentials: str | None = field(default=None, repr=False)
    history: tuple[Message, ...] = ()

    def __post_init__(self) -> None:
        if not self.prompt.strip():
            raise ValueError("prompt must not be empty")
        if not self.project_name.strip():
            raise ValueError("project_name must not be empty")
        if self.network not in NETWORKS:
            raise ValueError(f"network must be one of {', '.join(NETWORKS)}, got {self.network!r}")
        object.__setattr__(self, "history", tuple(self.history))


@dataclass(frozen=True, slots=True)
class PipelineResult:
    success: bool
    execution: PipelineExecution
    intent: ContractIntent | None = None
    bundle: ContractBundle | None = None
    deployments: tuple[DeploymentResult, ...] = ()
    context: str = ""
    prompt_bundle: str = ""
    warnings: tuple[str, ...] = ()
    error: str | None = None
    error_kind: str | None = None
    network: str = DEFAULT_NETWORK

    @property
    def explorer_urls(self) -> tuple[str, ...]:
        return tuple(
            explorer_url(item.transaction_id, self.network)
            for item in self.deployments
            if item.success and item.transaction_id
        )

    def summary(self) -> dict[str, JSONValue]:
        return self.execution.summary()

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "success": self.success,
            "execution_id": self.execution.execution_id,
            "stage": str(self.execution.stage),
            "progress_percent": self.execution.progress,
            "summary": self.summary(),
            "steps": [step.to_dict() for step in self.execution.steps],
            "warnings": list(self.warnings),
        }
        if self.intent is not None:
            payload["intent"] = self.intent.to_dict()
        if self.bundle is not None:
            payload["bundle"] = self.bundle.to_dict()
        if self.deployments:
            payload["deployments"] = [item.to_dict() for item in self.deployments]
            payload["explorer_urls"] = list(self.explorer_urls)
        if self.prompt_bundle:
            payload["prompt_bundle"] = self.prompt_bundle
        if self.error is not None:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload


@dataclass(slots=True)
class _RunState:
    request: PipelineRequest
    execution: PipelineExecution
    channel: ProgressChannel
    intent: ContractIntent | None = None
    context: str = ""
    bundle: ContractBundle | None = None
    prompt_bundle: str = ""
    deployments: list[DeploymentResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class _ValidatedSource:
    candidate: ContractCandidate
    source: str
    model: SourceModel
    repaired: bool


class PipelineOrchestrator:
    """Runs the staged prompt-to-contract pipeline for one request at a time."""

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        aggregator: ContractSourceAggregator,
        context_service: ContextService | None = None,
        collaborator: BuildDeployCollaborator | None = None,
        budget: ContextBudgetManager | None = None,
        renderer: TemplateRenderer | None = None,
        timeout_seconds: float = PIPELINE_TIMEOUT_SECONDS,
        progress_buffer_size: int = PROGRESS_BUFFER_SIZE,
        context_max_tokens: int = DEFAULT_CONTEXT_MAX_TOKENS,
        reserved_output_tokens: int = RESERVED_OUTPUT_TOKENS,
        max_context_tokens: int = MAX_CONTEXT_TOKENS,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._classifier = classifier
        self._aggregator = aggregator
        self._context_service = context_service
        self._collaborator = collaborator
        self._budget = budget or ContextBudgetManager()
        self._renderer = renderer or TemplateRenderer()
        self._timeout_seconds = timeout_seconds
        self._progress_buffer_size = progress_buffer_size
        self._context_max_tokens = context_max_tokens
        self._reserved_output_tokens = reserved_output_tokens
        self._max_context_tokens = max_context_tokens
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def new_channel(self) -> ProgressChannel:
        return ProgressChannel(buffer_size=self._progress_buffer_size)

    async def execute(
        self,
        request: PipelineRequest,
        *,
        channel: ProgressChannel | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PipelineResult:
        """Run ``request`` to completion or failure; the channel is closed on return."""

        state = _RunState(
            request=request,
            execution=PipelineExecution(execution_id=generate_execution_id()),
            channel=channel or self.new_channel(),
        )
        with correlation_scope(execution_id=state.execution.execution_id):
            self._logger.info(
                "pipeline_started",
                project=request.project_name,
                deploy=request.deploy,
                use_remote=request.use_remote,
            )
            try:
                await run_with_timeout(self._run_stages(state), self._timeout_seconds, cancel_token)
            except asyncio.CancelledError:
                if cancel_token is None or not cancel_token.is_cancelled or _task_cancelling():
                    raise
                return self._fail(state, PipelineCancelledError("pipeline cancelled by the caller"))
            except TimeoutError:
                return self._fail(
                    state,
                    PipelineTimeoutError(
                        f"pipeline exceeded its {self._timeout_seconds:g} second timeout"
                    ),
                )
            except MovesmithError as exc:
                return self._fail(state, exc)
            except Exception as exc:  # noqa: BLE001 - pipeline boundary normalization.
                self._logger.exception("pipeline_internal_error", error_type=type(exc).__name__)
                return self._fail(state, exc)
            finally:
                await state.channel.aclose()

            self._logger.info("pipeline_completed", **state.execution.summary())
            return PipelineResult(
                success=True,
                execution=state.execution,
                intent=state.intent,
                bundle=state.bundle,
                deployments=tuple(state.deployments),
                context=state.context,
                prompt_bundle=state.prompt_bundle,
                warnings=tuple(state.warnings),
                network=request.network,
            )

    async def _run_stages(self, state: _RunState) -> None:
        self._analyze(state)
        await self._fetch_context(state)
        await self._generate(state)
        if state.request.deploy:
            await self._build_and_deploy(state)
        state.execution.enter(PipelineStage.COMPLETED, COMPLETED_PROGRESS)
        self._publish(state, "Pipeline completed successfully")

    def _analyze(self, state: _RunState) -> None:
        self._begin(state, PipelineStage.ANALYZING, "Analyzing request")
        intent = self._classifier.detect_intent(state.request.prompt)
        state.intent = intent
        ambiguity = self._classifier.assess(intent)
        if ambiguity is not None:
            state.warnings.append(ambiguity.message)
            self._logger.warning(
                "classification_ambiguous",
                confidence=round(ambiguity.confidence, 4),
                threshold=ambiguity.threshold,
            )
        categories = ", ".join(str(item) for item in intent.categories) or "none"
        self._finish(
            state,
            PipelineStage.ANALYZING,
            f"Detected categories: {categories}",
            details=intent.to_dict(),
        )

    async def _fetch_context(self, state: _RunState) -> None:
        self._begin(state, PipelineStage.FETCHING_CONTEXT, "Fetching reference documentation")
        prompt = state.request.prompt
        service = self._context_service
        if service is None or not service.is_domain_query(prompt):
            self._finish(state, PipelineStage.FETCHING_CONTEXT, "No reference documentation needed")
            return
        try:
            state.context = await service.relevant_context(prompt, max_tokens=self._context_max_tokens)
        except SourceFetchError as exc:
            state.warnings.append(f"reference documentation unavailable: {exc}")
            self._logger.warning("context_fetch_failed", error=str(exc))
        tokens = self._budget.estimate(state.context)
        self._finish(
            state,
            PipelineStage.FETCHING_CONTEXT,
            f"Assembled {tokens} tokens of reference context",
            details={"context_tokens": tokens},
        )

    async def _generate(self, state: _RunState) -> None:
        self._begin(state, PipelineStage.GENERATING, "Collecting contract templates")
        request = state.request
        intent = state.intent
        if intent is None:
            raise RuntimeError("generating stage entered without an intent")

        candidates = await self._aggregator.fetch_candidates(
            intent,
            FetchOptions(use_remote=request.use_remote, credentials=request.credentials),
            query=request.prompt,
        )
        state.execution.advance(45)
        self._publish(state, f"Found {len(candidates)} candidate template(s)")

        address = _project_address(request)
        validated = self._validate_candidates(state, candidates, address)
        if not validated:
            raise AggregationEmptyError(
                "no valid contract templates matched the request"
                if candidates
                else "no contract templates matched the request"
            )
        state.execution.advance(50)
        self._publish(state, f"{len(validated)} template(s) passed validation")

        state.bundle = self._build_bundle(request, validated, address)
        state.execution.advance(55)

        history = self._budget.truncate_history(
            request.history, self._reserved_output_tokens, self._max_context_tokens
        )
        state.prompt_bundle = render_prompt_bundle(
            project_name=request.project_name,
            prompt=request.prompt,
            intent=intent,
            context=state.context,
            modules=state.bundle.modules,
            history=history,
            renderer=self._renderer,
        ).text
        self._finish(
            state,
            PipelineStage.GENERATING,
            f"Generated {len(state.bundle.modules)} module(s)",
            details={
                "candidates": [item.candidate.id for item in validated],
                "modules": list(state.bundle.modules),
                "history_messages": len(history),
            },
        )

    def _validate_candidates(
        self, state: _RunState, candidates: list[ContractCandidate], address: str
    ) -> list[_ValidatedSource]:
        project = sanitize_module_name(state.request.project_name)
        validated: list[_ValidatedSource] = []
        for candidate in candidates:
            model = extract_model(candidate.source)
            if model.is_valid:
                validated.append(_ValidatedSource(candidate, candidate.source, model, False))
                continue
            repaired = repair_source(
                candidate.source,
                model.diagnostics,
                address=address,
                module_name=f"{project}_{sanitize_module_name(candidate.base_name)}",
            )
            repaired_model = extract_model(repaired)
            if repaired_model.is_valid:
                self._logger.info("candidate_repaired", candidate_id=candidate.id)
                validated.append(_ValidatedSource(candidate, repaired, repaired_model, True))
                continue
            failure = ValidationFailure(candidate.id, repaired_model.diagnostics)
            state.warnings.append(str(failure))
            self._logger.warning(
                "candidate_dropped",
                candidate_id=candidate.id,
                diagnostics=list(repaired_model.diagnostics),
            )
        return validated

    def _build_bundle(
        self, request: PipelineRequest, validated: list[_ValidatedSource], address: str
    ) -> ContractBundle:
        project = sanitize_module_name(request.project_name)
        files: list[GeneratedFile] = []
        modules: list[str] = []
        dependencies: list[str] = []
        for item in validated:
            base = sanitize_module_name(item.candidate.base_name or item.model.module_name)
            module_name = _unique(
                base if base.startswith(f"{project}_") else f"{project}_{base}", modules
            )
            source = customize(
                item.source,
                CustomizationOptions(
                    project_name=request.project_name,
                    module_name=module_name,
                    address=address,
                ),
            )
            modules.append(module_name)
            files.append(GeneratedFile(path=f"{SOURCES_DIR}/{module_name}.move", content=source))
            for dep in item.model.dependencies:
                if dep not in dependencies:
                    dependencies.append(dep)

        manifest = generate_move_toml(
            request.project_name, dependencies, address=request.address, renderer=self._renderer
        )
        files.append(GeneratedFile(path=MOVE_TOML_FILENAME, content=manifest))
        return ContractBundle(
            project_name=request.project_name,
            address=address,
            files=tuple(files),
            modules=tuple(modules),
            dependencies=tuple(dependencies),
        )

    async def _build_and_deploy(self, state: _RunState) -> None:
        self._begin(state, PipelineStage.BUILDING, "Compiling modules")
        collaborator = self._collaborator
        bundle = state.bundle
        if collaborator is None:
            raise BuildFailure("build/deploy requested but no collaborator is configured")
        if bundle is None:
            raise RuntimeError("building stage entered without a generated bundle")

        network = state.request.network
        for module_name in bundle.modules:
            source_file = bundle.file(f"{SOURCES_DIR}/{module_name}.move")
            if source_file is None:
                raise RuntimeError(f"bundle is missing source for module {module_name}")
            try:
                result = await collaborator.deploy(
                    module_name,
                    source_file.content,
                    network,
                    lambda update: self._on_deploy_status(state, update),
                )
            except MovesmithError:
                raise
            except Exception as exc:  # noqa: BLE001 - collaborator boundary.
                message = f"{module_name}: {str(exc) or type(exc).__name__}"
                if state.execution.stage is PipelineStage.BUILDING:
                    raise BuildFailure(message) from exc
                raise DeployFailure(message) from exc
            state.deployments.append(result)
            if not result.success:
                message = result.error or f"{module_name}: collaborator reported failure"
                if state.execution.stage is PipelineStage.BUILDING:
                    raise BuildFailure(message)
                raise DeployFailure(message)

        if state.execution.stage is PipelineStage.BUILDING:
            self._finish(state, PipelineStage.BUILDING, "Build succeeded")
            self._begin(state, PipelineStage.DEPLOYING, "Publishing modules")
        transactions = [item.transaction_id for item in state.deployments if item.transaction_id]
        self._finish(
            state,
            PipelineStage.DEPLOYING,
            f"Deployed {len(state.deployments)} module(s) to {network}",
            details={"network": network, "transactions": list(transactions)},
        )

    def _on_deploy_status(self, state: _RunState, update: DeploymentUpdate) -> None:
        execution = state.execution
        if execution.is_terminal:
            return
        if update.status is DeploymentStatus.FAILED:
            self._publish(state, update.message)
            return
        if not update.status.is_build_phase and execution.stage is PipelineStage.BUILDING:
            self._finish(state, PipelineStage.BUILDING, "Build succeeded")
            self._begin(state, PipelineStage.DEPLOYING, "Publishing modules")
        start, end = STAGE_PROGRESS[execution.stage]
        mapped = start + round(update.progress_percent * (end - start) / 100)
        if mapped > execution.progress:
            execution.advance(min(mapped, end))
        self._publish(state, update.message)

    def _begin(self, state: _RunState, stage: PipelineStage, message: str) -> None:
        state.execution.enter(stage, STAGE_PROGRESS[stage][0])
        state.execution.record(str(stage), StepStatus.RUNNING, message)
        self._logger.info("pipeline_stage_started", stage=str(stage))
        self._publish(state, message)

    def _finish(
        self,
        state: _RunState,
        stage: PipelineStage,
        message: str,
        *,
        details: dict[str, JSONValue] | None = None,
    ) -> None:
        state.execution.advance(max(STAGE_PROGRESS[stage][1], state.execution.progress))
        state.execution.record(str(stage), StepStatus.COMPLETED, message, details)
        self._publish(state, message)

    def _publish(self, state: _RunState, message: str, *, error_kind: str | None = None) -> None:
        if state.channel.closed:
            return
        state.channel.publish(state.execution.snapshot(message, error_kind=error_kind))

    def _fail(self, state: _RunState, exc: BaseException) -> PipelineResult:
        kind = getattr(exc, "kind", "internal")
        message = str(exc) or type(exc).__name__
        execution = state.execution
        if not execution.is_terminal:
            execution.record(str(execution.stage), StepStatus.FAILED, message, {"error_kind": kind})
            execution.fail()
        self._publish(state, message, error_kind=kind)
        self._logger.error("pipeline_failed", error_kind=kind, error=message)
        return PipelineResult(
            success=False,
            execution=execution,
            intent=state.intent,
            bundle=state.bundle,
            deployments=tuple(state.deployments),
            context=state.context,
            prompt_bundle=state.prompt_bundle,
            warnings=tuple(state.warnings),
            error=message,
            error_kind=kind,
            network=state.request.network,
        )


def _task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _project_address(request: PipelineRequest) -> str:
    if request.address:
        return normalize_address(request.address)
    return sanitize_module_name(request.project_name)


def _unique(name: str, taken: list[str]) -> str:
    if name not in taken:
        return name
    suffix = 2
    while f"{name}_{suffix}" in taken:
        suffix += 1
    return f"{name}_{suffix}"


__all__ = [
    "COMPLETED_PROGRESS",
    "STAGE_PROGRESS",
    "PipelineOrchestrator",
    "PipelineRequest",
    "PipelineResult",
]
