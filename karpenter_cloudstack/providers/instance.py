"""Virtual machine lifecycle: deploy, wait, tag, look up and destroy.

Create runs in a fixed order: pick the service offering, resolve the zone,
network and template, deploy, poll until the VM is ``Running``, then tag
it. A deploy that never reaches ``Running`` fails with
``WaitTimeoutError`` and the VM is left as it is; nothing is tagged.
Tagging failures are logged and do not fail the create.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_delay, wait_fixed

from karpenter_cloudstack.api.nodeclaim import InstanceType, NodeClaim
from karpenter_cloudstack.api.nodeclass import NodeClass
from karpenter_cloudstack.cloudstack.api import (
    CreateTagsParams,
    DeployVirtualMachineParams,
    DestroyVirtualMachineParams,
    InventoryClient,
    ListDiskOfferingsParams,
    ListTagsParams,
    ListVirtualMachinesParams,
    VirtualMachine,
    tags_to_dict,
)
from karpenter_cloudstack.constants import (
    CLUSTER_OWNED_VALUE,
    INSTANCE_NAME_PREFIX,
    INSTANCE_READY_TIMEOUT,
    MANAGED_BY_VALUE,
    POLL_INTERVAL,
    Label,
    ResourceType,
    Tag,
    VMState,
)
from karpenter_cloudstack.errors import (
    BackendError,
    CloudStackProviderError,
    InsufficientCapacityError,
    NodeClaimNotFoundError,
    NotFoundError,
    WaitTimeoutError,
)
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.network import NetworkProvider
from karpenter_cloudstack.providers.selectors import fetch_tags
from karpenter_cloudstack.providers.template import TemplateProvider

type InstanceTypeSelector = Callable[[NodeClaim, Sequence[InstanceType]], InstanceType | None]


def first_available(_: NodeClaim, instance_types: Sequence[InstanceType]) -> InstanceType | None:
    """Pick the first candidate. Requirements, price and zone are not consulted."""
    return instance_types[0] if instance_types else None


@dataclass(frozen=True, slots=True)
class Instance:
    id: str
    name: str
    state: str
    zone: str = ""
    zone_id: str = ""
    service_offering: str = ""
    service_offering_id: str = ""
    template: str = ""
    template_id: str = ""
    network_id: str = ""
    ip_address: str = ""
    created_time: datetime | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def managed(self) -> bool:
        return Tag.MANAGED_BY in self.tags

    @classmethod
    def from_vm(cls, vm: VirtualMachine, tags: dict[str, str]) -> Instance:
        nic = vm.nics[0] if vm.nics else None
        return cls(
            id=vm.id,
            name=vm.name,
            state=vm.state,
            zone=vm.zone_name,
            zone_id=vm.zone_id,
            service_offering=vm.service_offering_name,
            service_offering_id=vm.service_offering_id,
            template=vm.template_name,
            template_id=vm.template_id,
            network_id=nic.network_id if nic else "",
            ip_address=nic.ip_address if nic else "",
            created_time=parse_created(vm.created),
            tags=tags,
        )


def parse_created(value: str) -> datetime | None:
    """Parse CloudStack's ``created`` timestamp (``2024-01-02T15:04:05+0000``)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return None


class _NotInState(Exception):
    pass


class InstanceProvider:
    """Creates and tracks CloudStack VMs backing node claims.

    Args:
        client: Inventory client.
        network_provider: Resolves the network a VM attaches to.
        template_provider: Resolves the template a VM boots from.
        cache: Cache for instance lookups, keyed by instance ID.
        cluster_name: Cluster name used in the ownership tag.
        poll_interval: Seconds between state polls after deploy.
        ready_timeout: Seconds to wait for the VM to reach ``Running``.
        selector: Picks the instance type to launch from the candidates.
    """

    def __init__(
        self,
        client: InventoryClient,
        network_provider: NetworkProvider,
        template_provider: TemplateProvider,
        cache: TTLCache,
        cluster_name: str,
        *,
        poll_interval: float = POLL_INTERVAL,
        ready_timeout: float = INSTANCE_READY_TIMEOUT,
        selector: InstanceTypeSelector = first_available,
    ) -> None:
        self._client = client
        self._networks = network_provider
        self._templates = template_provider
        self._cache = cache
        self._cluster_name = cluster_name
        self._poll_interval = poll_interval
        self._ready_timeout = ready_timeout
        self._selector = selector
        self._log = logger.bind(component="instance")

    # ─── Create ──────────────────────────────────────────────────────

    async def create(
        self,
        nodeclass: NodeClass,
        nodeclaim: NodeClaim,
        instance_types: Sequence[InstanceType],
    ) -> Instance:
        self._log.info("Creating instance nodeclaim={name}", name=nodeclaim.name)
        spec = nodeclass.spec

        instance_type = self._selector(nodeclaim, instance_types)
        if instance_type is None:
            raise InsufficientCapacityError("no suitable instance type found")

        try:
            zone_id = await self._client.get_zone_id(spec.zone)
        except BackendError as e:
            raise BackendError("getting zone ID", e) from e

        networks = await self._networks.resolve(spec.network_selector_terms, spec.zone)
        templates = await self._templates.resolve(spec.template_selector_terms, spec.zone)

        try:
            offering_id = await self._client.get_service_offering_id(instance_type.name)
        except BackendError as e:
            raise BackendError("getting service offering ID", e) from e

        disk_offering_id = None
        if spec.disk_offering:
            disk_offering_id = await self._disk_offering_id(spec.disk_offering)

        name = f"{INSTANCE_NAME_PREFIX}-{nodeclaim.name}"
        params = DeployVirtualMachineParams(
            service_offering_id=offering_id,
            template_id=templates[0].id,
            zone_id=zone_id,
            network_ids=(networks[0].id,),
            name=name,
            display_name=name,
            user_data=base64.b64encode(spec.user_data.encode()).decode() if spec.user_data else None,
            root_disk_size=spec.root_disk_size,
            key_pair=spec.ssh_key_pair,
            disk_offering_id=disk_offering_id,
        )
        try:
            deployed = await self._client.deploy_virtual_machine(params)
        except BackendError as e:
            raise BackendError("deploying virtual machine", e) from e

        vm = await self._wait_for_state(deployed.id, VMState.RUNNING)

        tags = self._build_tags(nodeclass, nodeclaim)
        try:
            await self._client.create_tags(
                CreateTagsParams(resource_ids=(vm.id,), resource_type=ResourceType.USER_VM, tags=tags)
            )
        except CloudStackProviderError as e:
            self._log.warning("Failed to create tags vm={vm_id}: {error}", vm_id=vm.id, error=e)

        instance = Instance.from_vm(vm, tags)
        self._log.info(
            "Instance created id={id} name={name}", id=instance.id, name=instance.name
        )
        return instance

    async def _disk_offering_id(self, name: str) -> str:
        try:
            offerings = await self._client.list_disk_offerings(ListDiskOfferingsParams(name=name))
        except BackendError as e:
            raise BackendError("getting disk offering ID", e) from e
        for offering in offerings:
            if offering.name == name:
                return offering.id
        raise NotFoundError(f"disk offering {name} not found")

    async def _wait_for_state(self, vm_id: str, target: str) -> VirtualMachine:
        """Poll ``vm_id`` until its state equals ``target``.

        Raises:
            WaitTimeoutError: The VM did not reach ``target`` in time.
            NodeClaimNotFoundError: The VM disappeared while waiting.
        """

        @retry(
            stop=stop_after_delay(self._ready_timeout),
            wait=wait_fixed(self._poll_interval),
            retry=retry_if_exception_type(_NotInState),
        )
        async def _poll() -> VirtualMachine:
            try:
                resp = await self._client.list_virtual_machines(ListVirtualMachinesParams(id=vm_id))
            except BackendError as e:
                raise BackendError("querying VM state", e) from e
            if resp.count == 0 or not resp.virtual_machines:
                raise NodeClaimNotFoundError(vm_id)
            vm = resp.virtual_machines[0]
            if vm.state != target:
                self._log.debug("VM {vm_id} is {state}", vm_id=vm_id, state=vm.state)
                raise _NotInState()
            return vm

        try:
            return await _poll()
        except RetryError as e:
            raise WaitTimeoutError(
                f"timeout waiting for VM {vm_id} to reach state {target}"
            ) from e

    def _build_tags(self, nodeclass: NodeClass, nodeclaim: NodeClaim) -> dict[str, str]:
        tags = {
            Tag.MANAGED_BY.value: MANAGED_BY_VALUE,
            f"{Tag.CLUSTER_NAME}/{self._cluster_name}": CLUSTER_OWNED_VALUE,
            Tag.NODECLASS.value: nodeclass.name,
            Tag.NODECLAIM.value: nodeclaim.name,
        }
        if nodepool := nodeclaim.labels.get(Label.NODEPOOL):
            tags[Tag.NODEPOOL.value] = nodepool
        tags.update(nodeclass.spec.tags)
        return tags

    # ─── Read ────────────────────────────────────────────────────────

    async def get(self, instance_id: str) -> Instance:
        """Look up one instance, served from cache when possible.

        Raises:
            NodeClaimNotFoundError: No VM has this ID.
        """
        found, cached = self._cache.get(("instance", instance_id))
        if found:
            return cached

        try:
            resp = await self._client.list_virtual_machines(ListVirtualMachinesParams(id=instance_id))
        except BackendError as e:
            raise BackendError(f"getting instance {instance_id}", e) from e
        if resp.count == 0 or not resp.virtual_machines:
            raise NodeClaimNotFoundError(instance_id)

        vm = resp.virtual_machines[0]
        tags = await fetch_tags(self._client, vm.id, ResourceType.USER_VM)
        instance = Instance.from_vm(vm, tags)
        self._cache.set(("instance", instance_id), instance)
        return instance

    async def list(self) -> list[Instance]:
        """Every VM carrying the managed-by tag."""
        try:
            resp = await self._client.list_virtual_machines(ListVirtualMachinesParams())
        except BackendError as e:
            raise BackendError("listing instances", e) from e

        instances: list[Instance] = []
        for vm in resp.virtual_machines:
            try:
                tags = tags_to_dict(
                    await self._client.list_tags(
                        ListTagsParams(resource_id=vm.id, resource_type=ResourceType.USER_VM)
                    )
                )
            except CloudStackProviderError as e:
                self._log.warning("Failed to get tags vm={vm_id}: {error}", vm_id=vm.id, error=e)
                continue
            instance = Instance.from_vm(vm, tags)
            if instance.managed:
                instances.append(instance)

        self._log.info("Listed instances count={count}", count=len(instances))
        return instances

    # ─── Delete ──────────────────────────────────────────────────────

    async def delete(self, instance_id: str) -> None:
        """Destroy and expunge an instance. An absent instance is not an error."""
        self._log.info("Deleting instance id={id}", id=instance_id)
        try:
            await self.get(instance_id)
        except NodeClaimNotFoundError:
            self._log.debug("Instance {id} already gone", id=instance_id)
            return

        try:
            await self._client.destroy_virtual_machine(
                DestroyVirtualMachineParams(id=instance_id, expunge=True)
            )
        except BackendError as e:
            raise BackendError(f"destroying instance {instance_id}", e) from e

        self._cache.delete(("instance", instance_id))
        self._log.info("Instance deleted id={id}", id=instance_id)
