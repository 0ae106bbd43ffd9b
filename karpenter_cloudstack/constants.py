"""Centralized constants and enums for the CloudStack provider.

Label keys, tag keys, annotations, remote state names and timing defaults
are defined here so every component agrees on the same strings.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

PROVIDER_NAME: Final = "cloudstack"
PROVIDER_ID_SCHEME: Final = "cloudstack"

# =============================================================================
# Well-known Labels
# =============================================================================


class Label(StrEnum):
    """Node labels set on claims built from CloudStack instances."""

    TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
    INSTANCE_TYPE = "node.kubernetes.io/instance-type"
    ARCH = "kubernetes.io/arch"
    OS = "kubernetes.io/os"
    CAPACITY_TYPE = "karpenter.sh/capacity-type"
    NODEPOOL = "karpenter.sh/nodepool"

    ZONE_ID = "karpenter.k8s.cloudstack/zone-id"
    ZONE_NAME = "karpenter.k8s.cloudstack/zone-name"
    NETWORK_ID = "karpenter.k8s.cloudstack/network-id"
    SERVICE_OFFERING_ID = "karpenter.k8s.cloudstack/service-offering-id"
    SERVICE_OFFERING_NAME = "karpenter.k8s.cloudstack/service-offering-name"
    TEMPLATE_ID = "karpenter.k8s.cloudstack/template-id"
    TEMPLATE_NAME = "karpenter.k8s.cloudstack/template-name"


CAPACITY_TYPE_ON_DEMAND: Final = "on-demand"
ARCH_AMD64: Final = "amd64"
OS_LINUX: Final = "linux"


# =============================================================================
# Resource Tags
# =============================================================================


class Tag(StrEnum):
    """CloudStack resource tag keys used for ownership and discovery."""

    MANAGED_BY = "karpenter.sh/managed-by"
    NODEPOOL = "karpenter.sh/nodepool"
    NODECLAIM = "karpenter.sh/nodeclaim"
    NODECLASS = "karpenter.k8s.cloudstack/nodeclass"
    CLUSTER_NAME = "kubernetes.io/cluster"


MANAGED_BY_VALUE: Final = "karpenter"
CLUSTER_OWNED_VALUE: Final = "owned"


class ResourceType(StrEnum):
    """CloudStack resource type names accepted by the tag API."""

    USER_VM = "UserVm"
    NETWORK = "Network"
    TEMPLATE = "Template"
    SERVICE_OFFERING = "ServiceOffering"


# =============================================================================
# Annotations
# =============================================================================


class Annotation(StrEnum):
    NODECLASS_HASH = "karpenter.k8s.cloudstack/nodeclass-hash"
    NODECLASS_HASH_VERSION = "karpenter.k8s.cloudstack/nodeclass-hash-version"


# Bump whenever the hashed NodeClass fields or the hashing rules change.
NODECLASS_HASH_VERSION: Final = "v1"


# =============================================================================
# Remote States
# =============================================================================


class VMState(StrEnum):
    """CloudStack virtual machine states."""

    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    DESTROYED = "Destroyed"
    EXPUNGING = "Expunging"
    ERROR = "Error"


TERMINATING_VM_STATES: Final = frozenset({VMState.DESTROYED, VMState.EXPUNGING})

ZONE_ENABLED: Final = "Enabled"
USABLE_NETWORK_STATES: Final = frozenset({"Implemented", "Setup"})
TEMPLATE_READY_STATUS: Final = "Download Complete"
TEMPLATE_FILTERS: Final = ("featured", "community", "self")


class JobStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# Timing (seconds)
# =============================================================================

DEFAULT_CACHE_TTL: Final = 15 * 60
DEFAULT_CACHE_CLEANUP_INTERVAL: Final = 30 * 60
POLL_INTERVAL: Final = 5.0
INSTANCE_READY_TIMEOUT: Final = 5 * 60.0
DEFAULT_ASYNC_JOB_TIMEOUT: Final = 5 * 60.0
DEFAULT_REQUEST_TIMEOUT: Final = 60.0

INSTANCE_NAME_PREFIX: Final = "karpenter"
DEFAULT_POD_CAPACITY: Final = 110
