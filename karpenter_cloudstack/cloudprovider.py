"""Orchestrator-facing cloud provider.

Translates node claims into CloudStack instances and back, reports the
instance types a NodeClass offers, and detects drift by comparing the
NodeClass hash recorded on a claim with the current one.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final, Protocol

from loguru import logger

from karpenter_cloudstack.api.nodeclaim import InstanceType, NodeClaim, NodePool, RepairPolicy
from karpenter_cloudstack.api.nodeclass import NodeClass
from karpenter_cloudstack.constants import (
    ARCH_AMD64,
    CAPACITY_TYPE_ON_DEMAND,
    OS_LINUX,
    PROVIDER_ID_SCHEME,
    PROVIDER_NAME,
    TERMINATING_VM_STATES,
    Annotation,
    Label,
    Tag,
)
from karpenter_cloudstack.errors import (
    CloudStackProviderError,
    CreateError,
    InsufficientCapacityError,
    InvalidProviderIDError,
    NodeClassNotReadyError,
)
from karpenter_cloudstack.providers.instance import Instance, InstanceProvider
from karpenter_cloudstack.providers.instancetype import InstanceTypeProvider

NODECLASS_DRIFTED: Final = "NodeClassDrifted"
INSTANCE_TYPE_RESOLUTION_FAILED: Final = "InstanceTypeResolutionFailed"

NODE_READY: Final = "Ready"
REPAIR_TOLERATION: Final = 30 * 60.0


class NodeClassStore(Protocol):
    """Lookup of NodeClass and NodePool objects owned by the orchestrator.

    Both methods return ``None`` when the object does not exist.
    """

    async def get_nodeclass(self, name: str) -> NodeClass | None: ...

    async def get_nodepool(self, name: str) -> NodePool | None: ...


# =============================================================================
# Provider IDs
# =============================================================================


def format_provider_id(zone: str, instance_id: str) -> str:
    return f"{PROVIDER_ID_SCHEME}://{zone}/{instance_id}"


def parse_provider_id(provider_id: str) -> str:
    """Return the instance ID, the last ``/``-separated segment."""
    if not provider_id:
        raise InvalidProviderIDError("provider ID is empty")
    return provider_id.rsplit("/", 1)[-1]


# =============================================================================
# Mapping
# =============================================================================


def instance_to_nodeclaim(
    instance: Instance,
    nodeclass: NodeClass | None = None,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> NodeClaim:
    labels = {
        Label.TOPOLOGY_ZONE.value: instance.zone,
        Label.INSTANCE_TYPE.value: instance.service_offering,
        Label.CAPACITY_TYPE.value: CAPACITY_TYPE_ON_DEMAND,
        Label.ARCH.value: ARCH_AMD64,
        Label.OS.value: OS_LINUX,
        Label.ZONE_ID.value: instance.zone_id,
        Label.ZONE_NAME.value: instance.zone,
        Label.NETWORK_ID.value: instance.network_id,
        Label.SERVICE_OFFERING_ID.value: instance.service_offering_id,
        Label.SERVICE_OFFERING_NAME.value: instance.service_offering,
        Label.TEMPLATE_ID.value: instance.template_id,
        Label.TEMPLATE_NAME.value: instance.template,
    }
    if nodepool := instance.tags.get(Tag.NODEPOOL):
        labels[Label.NODEPOOL.value] = nodepool

    return NodeClaim(
        name=instance.tags.get(Tag.NODECLAIM, ""),
        nodeclass_ref=nodeclass.name if nodeclass else instance.tags.get(Tag.NODECLASS, ""),
        labels=labels,
        annotations={},
        provider_id=format_provider_id(instance.zone, instance.id),
        image_id=instance.template_id,
        creation_timestamp=instance.created_time,
        deletion_timestamp=now() if instance.state in TERMINATING_VM_STATES else None,
    )


# =============================================================================
# Cloud Provider
# =============================================================================


class CloudProvider:
    def __init__(
        self,
        instance_type_provider: InstanceTypeProvider,
        instance_provider: InstanceProvider,
        store: NodeClassStore,
    ) -> None:
        self._instance_types = instance_type_provider
        self._instances = instance_provider
        self._store = store
        self._log = logger.bind(component="cloudprovider")

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def repair_policies(self) -> list[RepairPolicy]:
        return [
            RepairPolicy(NODE_READY, "False", REPAIR_TOLERATION),
            RepairPolicy(NODE_READY, "Unknown", REPAIR_TOLERATION),
        ]

    async def _nodeclass(self, name: str) -> NodeClass | None:
        if not name:
            return None
        nodeclass = await self._store.get_nodeclass(name)
        if nodeclass is None or nodeclass.deleting:
            return None
        return nodeclass

    async def create(self, nodeclaim: NodeClaim) -> NodeClaim:
        """Launch an instance for ``nodeclaim``.

        Raises:
            InsufficientCapacityError: The NodeClass is missing or being deleted.
            NodeClassNotReadyError: The NodeClass has no True ``Ready`` condition.
            CreateError: Instance types could not be resolved.
        """
        nodeclass = await self._nodeclass(nodeclaim.nodeclass_ref)
        if nodeclass is None:
            raise InsufficientCapacityError(
                f"resolving nodeclass: nodeclass {nodeclaim.nodeclass_ref!r} not found"
            )
        if not nodeclass.ready:
            raise NodeClassNotReadyError(f"nodeclass {nodeclass.name} is not ready")

        try:
            instance_types = await self._instance_types.list(nodeclass)
        except CloudStackProviderError as e:
            raise CreateError(
                INSTANCE_TYPE_RESOLUTION_FAILED, f"resolving instance types: {e}"
            ) from e

        instance = await self._instances.create(nodeclass, nodeclaim, instance_types)

        created = instance_to_nodeclaim(instance, nodeclass)
        created.annotations.update({
            Annotation.NODECLASS_HASH.value: nodeclass.hash(),
            Annotation.NODECLASS_HASH_VERSION.value: nodeclass.hash_version(),
        })
        self._log.info(
            "Created node nodeclaim={name} instance={id}", name=nodeclaim.name, id=instance.id
        )
        return created

    async def get(self, provider_id: str) -> NodeClaim:
        instance = await self._instances.get(parse_provider_id(provider_id))
        nodeclass = await self._nodeclass(instance.tags.get(Tag.NODECLASS, ""))
        return instance_to_nodeclaim(instance, nodeclass)

    async def list(self) -> list[NodeClaim]:
        claims = []
        for instance in await self._instances.list():
            nodeclass = await self._nodeclass(instance.tags.get(Tag.NODECLASS, ""))
            claims.append(instance_to_nodeclaim(instance, nodeclass))
        return claims

    async def delete(self, nodeclaim: NodeClaim) -> None:
        instance_id = parse_provider_id(nodeclaim.provider_id)
        await self._instances.delete(instance_id)
        self._log.info(
            "Deleted node nodeclaim={name} instance={id}", name=nodeclaim.name, id=instance_id
        )

    async def get_instance_types(self, nodepool: NodePool) -> list[InstanceType]:
        if not nodepool.nodeclass_ref:
            return []
        nodeclass = await self._nodeclass(nodepool.nodeclass_ref)
        if nodeclass is None:
            return []
        return await self._instance_types.list(nodeclass)

    async def is_drifted(self, nodeclaim: NodeClaim) -> str | None:
        """``"NodeClassDrifted"`` when the recorded NodeClass hash is stale."""
        nodepool_name = nodeclaim.labels.get(Label.NODEPOOL)
        if not nodepool_name:
            return None
        nodepool = await self._store.get_nodepool(nodepool_name)
        if nodepool is None or not nodepool.nodeclass_ref:
            return None
        nodeclass = await self._nodeclass(nodepool.nodeclass_ref)
        if nodeclass is None:
            return None

        if nodeclaim.annotations.get(Annotation.NODECLASS_HASH) != nodeclass.hash():
            return NODECLASS_DRIFTED
        return None
