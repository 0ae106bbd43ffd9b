"""Orchestrator-facing types: node claims, node pools and instance types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class NodeClaim:
    """Cloud-agnostic representation of a provisioned node.

    On ``Create`` input only ``name``, ``labels`` and ``nodeclass_ref`` are
    read. The provider fills in the remaining fields from the instance.
    """

    name: str = ""
    nodeclass_ref: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    provider_id: str = ""
    image_id: str = ""
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class NodePool:
    name: str
    nodeclass_ref: str | None = None


# =============================================================================
# Instance Types
# =============================================================================

type Requirements = Mapping[str, tuple[str, ...]]


@dataclass(frozen=True, slots=True)
class Resources:
    """Resource quantities: CPU in millicores, memory in bytes."""

    cpu_millis: int = 0
    memory_bytes: int = 0
    pods: int = 0


@dataclass(frozen=True, slots=True)
class Offering:
    requirements: Requirements
    price: float
    available: bool = True


@dataclass(frozen=True, slots=True)
class InstanceType:
    name: str
    requirements: Requirements
    offerings: tuple[Offering, ...]
    capacity: Resources
    kube_reserved: Resources = field(default_factory=Resources)

    def allocatable(self) -> Resources:
        return Resources(
            cpu_millis=self.capacity.cpu_millis - self.kube_reserved.cpu_millis,
            memory_bytes=self.capacity.memory_bytes - self.kube_reserved.memory_bytes,
            pods=self.capacity.pods,
        )


@dataclass(frozen=True, slots=True)
class RepairPolicy:
    condition_type: str
    condition_status: str
    toleration_seconds: float
