"""In-memory CloudStack inventory for tests."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from karpenter_cloudstack.api.nodeclaim import NodePool
from karpenter_cloudstack.api.nodeclass import (
    CONDITION_READY,
    Condition,
    NodeClass,
    NodeClassSpec,
    SelectorTerm,
    TemplateSelectorTerm,
)
from karpenter_cloudstack.cloudstack.api import (
    AsyncJobResult,
    CreateTagsParams,
    DeleteTagsParams,
    DeployVirtualMachineParams,
    DeployVirtualMachineResponse,
    DestroyVirtualMachineParams,
    DiskOfferingRecord,
    ListDiskOfferingsParams,
    ListNetworksParams,
    ListServiceOfferingsParams,
    ListTagsParams,
    ListTemplatesParams,
    ListVirtualMachinesParams,
    ListVirtualMachinesResponse,
    ListZonesParams,
    NetworkRecord,
    Nic,
    ResourceTag,
    ServiceOfferingRecord,
    TemplateRecord,
    VirtualMachine,
    ZoneRecord,
)
from karpenter_cloudstack.constants import JobStatus
from karpenter_cloudstack.errors import BackendError, NotFoundError

ZONE_NAME = "zone-a"
ZONE_ID = "zone-1"


@dataclass
class FakeInventory:
    """Implements ``InventoryClient`` over plain lists and dicts.

    Every call is counted in ``calls``. Put an exception in ``errors`` under
    a method name to make that method raise; put a resource ID in
    ``failing_tag_ids`` to make ``list_tags`` fail for that resource only.
    """

    zones: list[ZoneRecord] = field(default_factory=list)
    networks: list[NetworkRecord] = field(default_factory=list)
    templates: dict[str, list[TemplateRecord]] = field(default_factory=dict)
    service_offerings: list[ServiceOfferingRecord] = field(default_factory=list)
    disk_offerings: list[DiskOfferingRecord] = field(default_factory=list)
    vms: dict[str, VirtualMachine] = field(default_factory=dict)
    tags: dict[str, dict[str, str]] = field(default_factory=dict)
    jobs: dict[str, list[AsyncJobResult]] = field(default_factory=dict)

    errors: dict[str, Exception] = field(default_factory=dict)
    failing_tag_ids: set[str] = field(default_factory=set)
    deployed_state: str = "Running"

    calls: Counter[str] = field(default_factory=Counter)
    deployed: list[DeployVirtualMachineParams] = field(default_factory=list)
    destroyed: list[DestroyVirtualMachineParams] = field(default_factory=list)
    tagged: list[CreateTagsParams] = field(default_factory=list)
    closed: bool = False

    async def _enter(self, method: str) -> None:
        self.calls[method] += 1
        # Yield so concurrent callers interleave as they would on real I/O.
        await asyncio.sleep(0)
        if method in self.errors:
            raise self.errors[method]

    # ─── Virtual Machines ────────────────────────────────────────────

    async def deploy_virtual_machine(
        self, params: DeployVirtualMachineParams
    ) -> DeployVirtualMachineResponse:
        await self._enter("deploy_virtual_machine")
        self.deployed.append(params)
        vm_id = f"vm-{len(self.deployed)}"
        zone = next((z for z in self.zones if z.id == params.zone_id), None)
        offering = next(
            (o for o in self.service_offerings if o.id == params.service_offering_id), None
        )
        template = next(
            (t for ts in self.templates.values() for t in ts if t.id == params.template_id), None
        )
        self.vms[vm_id] = VirtualMachine(
            id=vm_id,
            name=params.name or vm_id,
            state=self.deployed_state,
            zone_id=params.zone_id,
            zone_name=zone.name if zone else "",
            service_offering_id=params.service_offering_id,
            service_offering_name=offering.name if offering else "",
            template_id=params.template_id,
            template_name=template.name if template else "",
            nics=tuple(
                Nic(network_id=n, ip_address=f"10.0.0.{i + 10}")
                for i, n in enumerate(params.network_ids)
            ),
            created="2024-05-01T10:00:00+0000",
        )
        return DeployVirtualMachineResponse(id=vm_id)

    async def list_virtual_machines(
        self, params: ListVirtualMachinesParams
    ) -> ListVirtualMachinesResponse:
        await self._enter("list_virtual_machines")
        vms = tuple(
            vm
            for vm in self.vms.values()
            if (params.id is None or vm.id == params.id)
            and (params.zone_id is None or vm.zone_id == params.zone_id)
        )
        return ListVirtualMachinesResponse(count=len(vms), virtual_machines=vms)

    async def destroy_virtual_machine(self, params: DestroyVirtualMachineParams) -> None:
        await self._enter("destroy_virtual_machine")
        self.destroyed.append(params)
        self.vms.pop(params.id, None)

    def set_state(self, vm_id: str, state: str) -> None:
        self.vms[vm_id] = replace(self.vms[vm_id], state=state)

    # ─── Inventory ───────────────────────────────────────────────────

    async def list_service_offerings(
        self, params: ListServiceOfferingsParams
    ) -> list[ServiceOfferingRecord]:
        await self._enter("list_service_offerings")
        return [
            o
            for o in self.service_offerings
            if (params.id is None or o.id == params.id)
            and (params.name is None or o.name == params.name)
        ]

    async def list_templates(self, params: ListTemplatesParams) -> list[TemplateRecord]:
        await self._enter("list_templates")
        failing = self.errors.get(f"list_templates:{params.template_filter}")
        if failing is not None:
            raise failing
        return [
            t
            for t in self.templates.get(params.template_filter, [])
            if params.zone_id is None or t.zone_id == params.zone_id
        ]

    async def list_networks(self, params: ListNetworksParams) -> list[NetworkRecord]:
        await self._enter("list_networks")
        return [
            n
            for n in self.networks
            if (params.zone_id is None or n.zone_id == params.zone_id)
            and (params.id is None or n.id == params.id)
        ]

    async def list_zones(self, params: ListZonesParams) -> list[ZoneRecord]:
        await self._enter("list_zones")
        return [
            z
            for z in self.zones
            if (params.id is None or z.id == params.id)
            and (params.name is None or z.name == params.name)
        ]

    async def list_disk_offerings(self, params: ListDiskOfferingsParams) -> list[DiskOfferingRecord]:
        await self._enter("list_disk_offerings")
        return [d for d in self.disk_offerings if params.name is None or d.name == params.name]

    # ─── Tags ────────────────────────────────────────────────────────

    async def create_tags(self, params: CreateTagsParams) -> None:
        await self._enter("create_tags")
        self.tagged.append(params)
        for resource_id in params.resource_ids:
            self.tags.setdefault(resource_id, {}).update(params.tags)

    async def list_tags(self, params: ListTagsParams) -> list[ResourceTag]:
        await self._enter("list_tags")
        if params.resource_id in self.failing_tag_ids:
            raise BackendError("listTags", "HTTP 500: boom")
        return [
            ResourceTag(key=k, value=v, resource_id=params.resource_id or "")
            for k, v in self.tags.get(params.resource_id or "", {}).items()
        ]

    async def delete_tags(self, params: DeleteTagsParams) -> None:
        await self._enter("delete_tags")
        for resource_id in params.resource_ids:
            current = self.tags.get(resource_id, {})
            for key in params.tags:
                current.pop(key, None)

    # ─── Jobs & Lookups ──────────────────────────────────────────────

    async def query_async_job_result(self, job_id: str) -> AsyncJobResult:
        await self._enter("query_async_job_result")
        results = self.jobs[job_id]
        return results.pop(0) if len(results) > 1 else results[0]

    async def get_zone_id(self, name: str) -> str:
        await self._enter("get_zone_id")
        for zone in self.zones:
            if zone.name == name:
                return zone.id
        raise NotFoundError(f"zone {name} not found")

    async def get_service_offering_id(self, name: str) -> str:
        await self._enter("get_service_offering_id")
        for offering in self.service_offerings:
            if offering.name == name:
                return offering.id
        raise NotFoundError(f"service offering {name} not found")

    async def close(self) -> None:
        self.closed = True


def job(job_id: str, status: JobStatus, error: str | None = None) -> AsyncJobResult:
    return AsyncJobResult(job_id=job_id, status=status, error=error)


def make_inventory() -> FakeInventory:
    """One enabled zone with a usable network, a ready Ubuntu template and two offerings."""
    return FakeInventory(
        zones=[ZoneRecord(id=ZONE_ID, name=ZONE_NAME, network_type="Advanced", allocation_state="Enabled")],
        networks=[
            NetworkRecord(
                id="net-1",
                name="k8s-net",
                zone_name=ZONE_NAME,
                zone_id=ZONE_ID,
                type="Isolated",
                state="Implemented",
                cidr="10.0.0.0/24",
                gateway="10.0.0.1",
            ),
            NetworkRecord(
                id="net-2",
                name="mgmt-net",
                zone_name=ZONE_NAME,
                zone_id=ZONE_ID,
                type="Isolated",
                state="Allocated",
            ),
        ],
        templates={
            "featured": [
                TemplateRecord(
                    id="tmpl-1",
                    name="ubuntu-22.04",
                    zone_name=ZONE_NAME,
                    zone_id=ZONE_ID,
                    os_type_id="os-ubuntu",
                    os_type_name="ubuntu",
                    status="Download Complete",
                    is_ready=True,
                    is_featured=True,
                ),
            ],
            "self": [
                TemplateRecord(
                    id="tmpl-2",
                    name="rocky-9",
                    zone_name=ZONE_NAME,
                    zone_id=ZONE_ID,
                    os_type_id="os-rocky",
                    os_type_name="rocky",
                    status="Download Complete",
                    is_ready=True,
                ),
            ],
        },
        service_offerings=[
            ServiceOfferingRecord(id="off-1", name="medium", cpu_number=2, cpu_speed=2000, memory=4096),
            ServiceOfferingRecord(id="off-2", name="large", cpu_number=4, cpu_speed=2000, memory=8192),
        ],
    )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_nodeclass(name: str = "default", *, ready: bool = True, **spec: Any) -> NodeClass:
    """NodeClass selecting ``k8s-net``, ``medium`` and any ubuntu template in zone-a."""
    base = NodeClassSpec(
        zone=ZONE_NAME,
        network_selector_terms=(SelectorTerm(name="k8s-net"),),
        service_offering_selector_terms=(SelectorTerm(name="medium"),),
        template_selector_terms=(TemplateSelectorTerm(os_type="ubuntu"),),
    )
    nodeclass = NodeClass(name=name, spec=replace(base, **spec))
    if ready:
        nodeclass.set_condition(Condition(type=CONDITION_READY, status="True", reason="Ready"))
    return nodeclass


@dataclass
class FakeStore:
    """Implements ``NodeClassStore`` over dicts."""

    nodeclasses: dict[str, NodeClass] = field(default_factory=dict)
    nodepools: dict[str, NodePool] = field(default_factory=dict)

    async def get_nodeclass(self, name: str) -> NodeClass | None:
        return self.nodeclasses.get(name)

    async def get_nodepool(self, name: str) -> NodePool | None:
        return self.nodepools.get(name)
