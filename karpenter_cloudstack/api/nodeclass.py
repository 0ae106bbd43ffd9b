"""CloudStackNodeClass: the declarative node configuration.

The ``spec`` field describes where and how nodes are launched (zone, selector terms
for networks, service offerings and templates, user data, tags). The
status carries the resolved resources and readiness conditions written by
the NodeClass reconciler.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from karpenter_cloudstack.constants import NODECLASS_HASH_VERSION
from karpenter_cloudstack.hashing import hash_structure

type ConditionStatus = Literal["True", "False", "Unknown"]

CONDITION_READY = "Ready"


# =============================================================================
# Selector Terms
# =============================================================================


@dataclass(frozen=True, slots=True)
class SelectorTerm:
    """One OR-branch of a resource selector.

    Within a term, ``id`` is tried first, then ``name``, then ``tags``
    (every key must be present; a value of ``"*"`` accepts any value).
    Fields may coexist; they are tried in that priority order.
    """

    id: str = ""
    name: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TemplateSelectorTerm(SelectorTerm):
    """Template selector; ``os_type`` matches the OS type ID or name."""

    os_type: str = ""


NetworkSelectorTerm = SelectorTerm
ServiceOfferingSelectorTerm = SelectorTerm
ZoneSelectorTerm = SelectorTerm


# =============================================================================
# Spec
# =============================================================================


@dataclass(frozen=True, slots=True)
class NodeClassSpec:
    """Desired configuration of nodes launched for a NodeClass.

    Args:
        zone: CloudStack zone name where VMs are launched.
        network_selector_terms: Network selectors, ORed.
        service_offering_selector_terms: Service offering selectors, ORed.
        template_selector_terms: Template selectors, ORed.
        user_data: Cloud-init user data, base64-encoded before deploy.
        tags: Extra tags applied to instances.
        root_disk_size: Root disk size in GB (1-1000).
        disk_offering: Disk offering name for data disks.
        ssh_key_pair: Name of the SSH key pair for the instances.
    """

    zone: str
    network_selector_terms: tuple[SelectorTerm, ...] = ()
    service_offering_selector_terms: tuple[SelectorTerm, ...] = ()
    template_selector_terms: tuple[TemplateSelectorTerm, ...] = ()
    user_data: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    root_disk_size: int | None = None
    disk_offering: str | None = None
    ssh_key_pair: str | None = None


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class ResolvedNetwork:
    id: str
    name: str
    zone: str
    type: str = ""


@dataclass(frozen=True, slots=True)
class ResolvedServiceOffering:
    id: str
    name: str
    cpu_number: int
    memory: int
    cpu_speed: int = 0
    network_rate: int = 0


@dataclass(frozen=True, slots=True)
class ResolvedTemplate:
    id: str
    name: str
    zone: str
    os_type: str = ""


@dataclass(frozen=True, slots=True)
class Condition:
    type: str
    status: ConditionStatus
    reason: str
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int = 0


@dataclass(slots=True)
class NodeClassStatus:
    networks: tuple[ResolvedNetwork, ...] = ()
    service_offerings: tuple[ResolvedServiceOffering, ...] = ()
    templates: tuple[ResolvedTemplate, ...] = ()
    conditions: list[Condition] = field(default_factory=list)


# =============================================================================
# NodeClass
# =============================================================================


@dataclass(slots=True)
class NodeClass:
    name: str
    spec: NodeClassSpec
    status: NodeClassStatus = field(default_factory=NodeClassStatus)
    generation: int = 1
    deletion_timestamp: datetime | None = None

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def hash(self) -> str:
        """Order-independent hash of ``spec``, used for drift detection.

        Bump ``NODECLASS_HASH_VERSION`` whenever hashed fields or hashing
        rules change.
        """
        return str(hash_structure(self.spec))

    @staticmethod
    def hash_version() -> str:
        return NODECLASS_HASH_VERSION

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.status.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition: Condition) -> None:
        for i, existing in enumerate(self.status.conditions):
            if existing.type == condition.type:
                self.status.conditions[i] = condition
                return
        self.status.conditions.append(condition)

    @property
    def ready(self) -> bool:
        condition = self.get_condition(CONDITION_READY)
        return condition is not None and condition.status == "True"
