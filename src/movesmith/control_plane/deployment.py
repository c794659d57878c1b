"""
movesmith — build/deploy collaborator contract.

File: src/movesmith/control_plane/deployment.py

Purpose
- Describe the external collaborator that compiles and publishes one Move module, and
  the status updates it reports while doing so.

What should be included in this file
- Status enum, update/result records, the collaborator protocol, explorer links.
- No chain SDK or signing code; implementations live outside this package.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final, Protocol

from movesmith.constants import DEFAULT_NETWORK, NETWORKS
from movesmith.domain.models import JSONValue

EXPLORER_BASE_URL: Final[str] = "https://explorer.aptoslabs.com"


class DeploymentStatus(StrEnum):
    COMPILING = "compiling"
    FUNDING = "funding"
    DEPLOYING = "deploying"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_build_phase(self) -> bool:
        return self is DeploymentStatus.COMPILING


@dataclass(frozen=True, slots=True)
class DeploymentUpdate:
    status: DeploymentStatus
    message: str
    progress_percent: int = 0
    details: Mapping[str, JSONValue] | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.progress_percent <= 100:
            raise ValueError("progress_percent must be within [0, 100]")


@dataclass(frozen=True, slots=True)
class DeploymentResult:
    success: bool
    transaction_id: str | None = None
    deployed_address: str | None = None
    error: str | None = None
    gas_used: int | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {"success": self.success}
        if self.transaction_id is not None:
            payload["transaction_id"] = self.transaction_id
        if self.deployed_address is not None:
            payload["deployed_address"] = self.deployed_address
        if self.error is not None:
            payload["error"] = self.error
        if self.gas_used is not None:
            payload["gas_used"] = self.gas_used
        return payload


StatusCallback = Callable[[DeploymentUpdate], None]


class BuildDeployCollaborator(Protocol):
    """Compiles and publishes a single module, reporting status as it goes."""

    async def deploy(
        self,
        module_name: str,
        source: str,
        network: str,
        on_status: StatusCallback,
    ) -> DeploymentResult: ...


def explorer_url(transaction_id: str, network: str = DEFAULT_NETWORK) -> str:
    if not transaction_id:
        raise ValueError("transaction_id must be non-empty")
    if network not in NETWORKS:
        raise ValueError(f"unknown network {network!r}; expected one of {', '.join(NETWORKS)}")
    return f"{EXPLORER_BASE_URL}/txn/{transaction_id}?network={network}"


__all__ = [
    "EXPLORER_BASE_URL",
    "BuildDeployCollaborator",
    "DeploymentResult",
    "DeploymentStatus",
    "DeploymentUpdate",
    "StatusCallback",
    "explorer_url",
]
