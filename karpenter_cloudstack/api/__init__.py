"""Declarative and orchestrator-facing types."""

from karpenter_cloudstack.api.nodeclaim import (
    InstanceType,
    NodeClaim,
    NodePool,
    Offering,
    RepairPolicy,
    Resources,
)
from karpenter_cloudstack.api.nodeclass import (
    CONDITION_READY,
    Condition,
    NodeClass,
    NodeClassSpec,
    NodeClassStatus,
    ResolvedNetwork,
    ResolvedServiceOffering,
    ResolvedTemplate,
    SelectorTerm,
    TemplateSelectorTerm,
)

__all__ = [
    "CONDITION_READY",
    "Condition",
    "InstanceType",
    "NodeClaim",
    "NodeClass",
    "NodeClassSpec",
    "NodeClassStatus",
    "NodePool",
    "Offering",
    "RepairPolicy",
    "ResolvedNetwork",
    "ResolvedServiceOffering",
    "ResolvedTemplate",
    "Resources",
    "SelectorTerm",
    "TemplateSelectorTerm",
]
