"""Dataclass domain models for the prompt-to-contract pipeline."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class ContractCategory(StrEnum):
    NFT = "nft"
    TOKEN = "token"
    MARKETPLACE = "marketplace"
    DEFI = "defi"
    GOVERNANCE = "governance"
    GAMING = "gaming"
    SOCIAL = "social"
    UTILITY = "utility"


class CandidateOrigin(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class CompilationStatus(StrEnum):
    VERIFIED = "verified"
    UNTESTED = "untested"
    FAILED = "failed"


class SectionSource(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(StrEnum):
    ANALYZING = "analyzing"
    FETCHING_CONTEXT = "fetching-context"
    GENERATING = "generating"
    BUILDING = "building"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {PipelineStage.COMPLETED, PipelineStage.FAILED}


_STAGE_ORDER: Final[tuple[PipelineStage, ...]] = (
    PipelineStage.ANALYZING,
    PipelineStage.FETCHING_CONTEXT,
    PipelineStage.GENERATING,
    PipelineStage.BUILDING,
    PipelineStage.DEPLOYING,
    PipelineStage.COMPLETED,
)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class ContractIntent:
    """Classified category/feature/confidence summary of a request."""

    categories: tuple[ContractCategory, ...]
    features: frozenset[str]
    confidence: float
    suggested_contracts: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if len(set(self.categories)) != len(self.categories):
            raise ValueError("categories must not repeat")

    @property
    def primary_category(self) -> ContractCategory | None:
        return self.categories[0] if self.categories else None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "categories": [str(item) for item in self.categories],
            "features": sorted(self.features),
            "confidence": self.confidence,
            "suggested_contracts": list(self.suggested_contracts),
        }


@dataclass(frozen=True, slots=True)
class SourceModel:
    """Structural summary scanned from contract source text.

    Instances are produced by ``extract_model`` and never mutated; customization yields
    a new source string that is re-scanned when re-validation is needed.
    """

    address: str
    module_name: str
    imports: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    structs: tuple[str, ...] = ()
    functions: tuple[str, ...] = ()
    events: tuple[str, ...] = ()
    errors: tuple[tuple[str, int], ...] = ()
    is_valid: bool = False
    diagnostics: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.is_valid and not (self.address and self.module_name):
            raise ValueError("a valid source model requires both address and module name")

    @property
    def error_codes(self) -> dict[str, int]:
        return dict(self.errors)

    @property
    def qualified_name(self) -> str:
        return f"{self.address}::{self.module_name}"

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(item for item in self.diagnostics if item.startswith("Warning:"))


@dataclass(frozen=True, slots=True)
class ContractCandidate:
    """A stored or fetched contract source considered for a generated project."""

    id: str
    origin: CandidateOrigin
    category: str
    relevance: float
    source: str
    features: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    name: str = ""
    path: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()
    compilation_status: CompilationStatus = CompilationStatus.UNTESTED
    version: str = "1.0.0"

    def __post_init__(self) -> None:
        if not self.id.strip():
            raise ValueError("candidate id must not be empty")
        if not 0.0 <= self.relevance <= 1.0:
            raise ValueError(f"relevance must be within [0, 1], got {self.relevance}")

    @property
    def base_name(self) -> str:
        """File stem of the candidate path, falling back to its name or id."""
        raw = self.path or self.name or self.id
        stem = raw.rsplit("/", 1)[-1]
        return stem.removesuffix(".move")

    def to_dict(self, *, include_source: bool = False) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "origin": str(self.origin),
            "category": self.category,
            "relevance": self.relevance,
            "features": list(self.features),
            "dependencies": list(self.dependencies),
            "name": self.name,
            "path": self.path,
            "tags": list(self.tags),
            "compilation_status": str(self.compilation_status),
            "version": self.version,
        }
        if include_source:
            payload["source"] = self.source
        return payload


@dataclass(frozen=True, slots=True)
class ContextSection:
    header: str
    body: str
    source: SectionSource
    topic: str

    @property
    def text(self) -> str:
        return f"{self.header}\n{self.body}"


@dataclass(frozen=True, slots=True)
class Message:
    """One conversation turn; ``content`` may be text or structured parts."""

    role: str
    content: str | Mapping[str, Any] | list[Any]

    def serialized_content(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True, slots=True)
class ExecutionStep:
    name: str
    status: StepStatus
    message: str
    progress_percent: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    details: Mapping[str, JSONValue] | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "step": self.name,
            "status": str(self.status),
            "message": self.message,
            "progress_percent": self.progress_percent,
            "timestamp": _iso8601z(self.timestamp),
            "details": dict(self.details) if self.details is not None else None,
        }


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """JSON-serializable progress event pushed to stream consumers."""

    execution_id: str
    stage: PipelineStage
    message: str
    progress_percent: int
    steps: tuple[ExecutionStep, ...]
    error_kind: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "execution_id": self.execution_id,
            "stage": str(self.stage),
            "message": self.message,
            "progress_percent": self.progress_percent,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.error_kind is not None:
            payload["error_kind"] = self.error_kind
        return payload


@dataclass(slots=True)
class PipelineExecution:
    """Mutable execution state owned by the single task driving one pipeline run.

    Stages only move forward, progress never decreases, and steps are append-only.
    Entering ``failed`` is the one transition allowed to reset progress (to 0).
    """

    execution_id: str
    stage: PipelineStage = PipelineStage.ANALYZING
    progress: int = 0
    steps: list[ExecutionStep] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def enter(self, stage: PipelineStage, progress: int) -> None:
        if self.is_terminal:
            raise RuntimeError(f"execution already terminated in stage {self.stage}")
        if stage is PipelineStage.FAILED:
            raise ValueError("use fail() to enter the failed stage")
        if _STAGE_ORDER.index(stage) < _STAGE_ORDER.index(self.stage):
            raise RuntimeError(f"stage {stage} would revisit an earlier stage than {self.stage}")
        self.advance(progress)
        self.stage = stage
        if stage is PipelineStage.COMPLETED:
            self.finished_at = _utcnow()

    def advance(self, progress: int) -> None:
        if not 0 <= progress <= 100:
            raise ValueError(f"progress must be within [0, 100], got {progress}")
        if progress < self.progress:
            raise RuntimeError(f"progress must not decrease ({self.progress} -> {progress})")
        self.progress = progress

    def fail(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"execution already terminated in stage {self.stage}")
        self.stage = PipelineStage.FAILED
        self.progress = 0
        self.finished_at = _utcnow()

    def record(
        self,
        name: str,
        status: StepStatus,
        message: str,
        details: Mapping[str, JSONValue] | None = None,
    ) -> ExecutionStep:
        step = ExecutionStep(
            name=name,
            status=status,
            message=message,
            progress_percent=self.progress,
            details=details,
        )
        self.steps.append(step)
        return step

    def snapshot(self, message: str, *, error_kind: str | None = None) -> ProgressRecord:
        return ProgressRecord(
            execution_id=self.execution_id,
            stage=self.stage,
            message=message,
            progress_percent=self.progress,
            steps=tuple(self.steps),
            error_kind=error_kind,
        )

    def summary(self) -> dict[str, JSONValue]:
        """Step counts and duration, mirroring what progress consumers display."""
        end = self.finished_at or _utcnow()
        return {
            "total_steps": len(self.steps),
            "completed_steps": sum(1 for s in self.steps if s.status is StepStatus.COMPLETED),
            "failed_steps": sum(1 for s in self.steps if s.status is StepStatus.FAILED),
            "duration_seconds": round((end - self.started_at).total_seconds(), 3),
        }


@dataclass(frozen=True, slots=True)
class GeneratedFile:
    path: str
    content: str


@dataclass(frozen=True, slots=True)
class ContractBundle:
    """Customized sources plus the manifest that builds them."""

    project_name: str
    address: str
    files: tuple[GeneratedFile, ...]
    modules: tuple[str, ...]
    dependencies: tuple[str, ...]

    def file(self, path: str) -> GeneratedFile | None:
        for item in self.files:
            if item.path == path:
                return item
        return None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "project_name": self.project_name,
            "address": self.address,
            "modules": list(self.modules),
            "dependencies": list(self.dependencies),
            "files": [{"path": item.path, "content": item.content} for item in self.files],
        }


__all__ = [
    "CandidateOrigin",
    "CompilationStatus",
    "ContextSection",
    "ContractBundle",
    "ContractCandidate",
    "ContractCategory",
    "ContractIntent",
    "ExecutionStep",
    "GeneratedFile",
    "JSONScalar",
    "JSONValue",
    "Message",
    "PipelineExecution",
    "PipelineStage",
    "ProgressRecord",
    "SectionSource",
    "SourceModel",
    "StepStatus",
]
