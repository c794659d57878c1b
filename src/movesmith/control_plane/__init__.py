"""Control-plane public API."""

from movesmith.control_plane.deployment import (
    BuildDeployCollaborator,
    DeploymentResult,
    DeploymentStatus,
    DeploymentUpdate,
    explorer_url,
)
from movesmith.control_plane.orchestrator import (
    PipelineOrchestrator,
    PipelineRequest,
    PipelineResult,
)
from movesmith.control_plane.progress import ListenerError, ProgressChannel
from movesmith.control_plane.runtime import PipelineRuntime, build_runtime

__all__ = [
    "BuildDeployCollaborator",
    "DeploymentResult",
    "DeploymentStatus",
    "DeploymentUpdate",
    "ListenerError",
    "PipelineOrchestrator",
    "PipelineRequest",
    "PipelineResult",
    "PipelineRuntime",
    "ProgressChannel",
    "build_runtime",
    "explorer_url",
]
