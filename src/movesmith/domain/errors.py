"""
movesmith — pipeline error taxonomy.

File: src/movesmith/domain/errors.py

Purpose
- Name every failure the prompt-to-contract pipeline can observe, with a stable ``kind``
  string that is surfaced in pipeline results and progress records.

Functional requirements
- Remote fetch failures must be distinguishable (not-found vs auth vs rate-limit) even
  though the aggregator treats them identically.
- Ambiguous classification is a warning record, never an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


class MovesmithError(Exception):
    """Base class for all pipeline errors."""

    kind: ClassVar[str] = "internal"


class SourceFetchError(MovesmithError):
    """A single candidate could not be fetched from its origin."""

    kind: ClassVar[str] = "source_fetch"

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class RemoteNotFoundError(SourceFetchError):
    kind: ClassVar[str] = "remote_not_found"


class RemoteAuthError(SourceFetchError):
    kind: ClassVar[str] = "remote_auth"


class RemoteRateLimitError(SourceFetchError):
    kind: ClassVar[str] = "remote_rate_limit"


class ValidationFailure(MovesmithError):
    """A candidate failed structural validation, including after the repair pass."""

    kind: ClassVar[str] = "validation"

    def __init__(self, candidate_id: str, diagnostics: tuple[str, ...]) -> None:
        rendered = "; ".join(diagnostics) if diagnostics else "unknown validation failure"
        super().__init__(f"candidate {candidate_id!r} failed validation: {rendered}")
        self.candidate_id = candidate_id
        self.diagnostics = diagnostics


class AggregationEmptyError(MovesmithError):
    """No usable candidates remained after fetch and validation."""

    kind: ClassVar[str] = "aggregation_empty"


class BuildFailure(MovesmithError):
    kind: ClassVar[str] = "build"


class DeployFailure(MovesmithError):
    kind: ClassVar[str] = "deploy"


class PipelineTimeoutError(MovesmithError, TimeoutError):
    """The overall wall-clock budget for an execution was exceeded."""

    kind: ClassVar[str] = "timeout"


class PipelineCancelledError(MovesmithError):
    """The caller cancelled the execution through its cancellation token."""

    kind: ClassVar[str] = "cancelled"


@dataclass(frozen=True, slots=True)
class ClassificationAmbiguous:
    """Warning emitted when an intent is too weak to target categories reliably."""

    confidence: float
    threshold: float
    matched_categories: int

    @property
    def message(self) -> str:
        if self.matched_categories == 0:
            return "no contract category matched the request"
        return (
            f"classification confidence {self.confidence:.2f} is below "
            f"threshold {self.threshold:.2f}"
        )


__all__ = [
    "AggregationEmptyError",
    "BuildFailure",
    "ClassificationAmbiguous",
    "DeployFailure",
    "MovesmithError",
    "PipelineCancelledError",
    "PipelineTimeoutError",
    "RemoteAuthError",
    "RemoteNotFoundError",
    "RemoteRateLimitError",
    "SourceFetchError",
    "ValidationFailure",
]
