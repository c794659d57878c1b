"""
movesmith — domain types

File: src/movesmith/domain/__init__.py

Purpose
- Domain types shared across planes: intents, source models, candidates, context
  sections, execution state and the error taxonomy.

Functional requirements
- Domain layer stays free of IO side effects.
"""

from movesmith.domain.errors import (
    AggregationEmptyError,
    BuildFailure,
    ClassificationAmbiguous,
    DeployFailure,
    MovesmithError,
    PipelineCancelledError,
    PipelineTimeoutError,
    RemoteAuthError,
    RemoteNotFoundError,
    RemoteRateLimitError,
    SourceFetchError,
    ValidationFailure,
)
from movesmith.domain.ids import generate_execution_id, generate_session_id
from movesmith.domain.models import (
    CandidateOrigin,
    CompilationStatus,
    ContextSection,
    ContractBundle,
    ContractCandidate,
    ContractCategory,
    ContractIntent,
    ExecutionStep,
    GeneratedFile,
    Message,
    PipelineExecution,
    PipelineStage,
    ProgressRecord,
    SectionSource,
    SourceModel,
    StepStatus,
)

__all__ = [
    "AggregationEmptyError",
    "BuildFailure",
    "CandidateOrigin",
    "ClassificationAmbiguous",
    "CompilationStatus",
    "ContextSection",
    "ContractBundle",
    "ContractCandidate",
    "ContractCategory",
    "ContractIntent",
    "DeployFailure",
    "ExecutionStep",
    "GeneratedFile",
    "Message",
    "MovesmithError",
    "PipelineExecution",
    "PipelineStage",
    "PipelineCancelledError",
    "PipelineTimeoutError",
    "ProgressRecord",
    "RemoteAuthError",
    "RemoteNotFoundError",
    "RemoteRateLimitError",
    "SectionSource",
    "SourceFetchError",
    "SourceModel",
    "StepStatus",
    "ValidationFailure",
    "generate_execution_id",
    "generate_session_id",
]
