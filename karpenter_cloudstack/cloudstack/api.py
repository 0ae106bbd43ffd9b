"""Inventory client contract.

Everything the provider needs from CloudStack goes through the
``InventoryClient`` protocol. Request parameters are frozen dataclasses
defined here, so callers build requests against the contract itself and
never need the concrete client type.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from karpenter_cloudstack.constants import JobStatus

# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True, slots=True)
class ZoneRecord:
    id: str
    name: str
    network_type: str = ""
    allocation_state: str = ""
    local_storage_enabled: bool = False
    security_groups_enabled: bool = False


@dataclass(frozen=True, slots=True)
class NetworkRecord:
    id: str
    name: str
    zone_name: str = ""
    zone_id: str = ""
    type: str = ""
    state: str = ""
    cidr: str = ""
    gateway: str = ""


@dataclass(frozen=True, slots=True)
class TemplateRecord:
    id: str
    name: str
    display_text: str = ""
    zone_name: str = ""
    zone_id: str = ""
    os_type_id: str = ""
    os_type_name: str = ""
    status: str = ""
    is_ready: bool = False
    is_public: bool = False
    is_featured: bool = False


@dataclass(frozen=True, slots=True)
class ServiceOfferingRecord:
    id: str
    name: str
    cpu_number: int = 0
    cpu_speed: int = 0
    memory: int = 0  # MB
    network_rate: int = 0


@dataclass(frozen=True, slots=True)
class DiskOfferingRecord:
    id: str
    name: str
    disk_size: int = 0  # GB


@dataclass(frozen=True, slots=True)
class Nic:
    network_id: str
    ip_address: str = ""


@dataclass(frozen=True, slots=True)
class VirtualMachine:
    id: str
    name: str
    state: str
    zone_id: str = ""
    zone_name: str = ""
    service_offering_id: str = ""
    service_offering_name: str = ""
    template_id: str = ""
    template_name: str = ""
    nics: tuple[Nic, ...] = ()
    created: str = ""


@dataclass(frozen=True, slots=True)
class ResourceTag:
    key: str
    value: str
    resource_id: str = ""
    resource_type: str = ""


@dataclass(frozen=True, slots=True)
class ListVirtualMachinesResponse:
    count: int
    virtual_machines: tuple[VirtualMachine, ...] = ()


@dataclass(frozen=True, slots=True)
class DeployVirtualMachineResponse:
    id: str
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class AsyncJobResult:
    job_id: str
    status: JobStatus
    result: Mapping[str, Any] | None = None
    error: str | None = None


# =============================================================================
# Request Parameters
# =============================================================================


@dataclass(frozen=True, slots=True)
class ListZonesParams:
    available: bool | None = None
    id: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ListNetworksParams:
    zone_id: str | None = None
    id: str | None = None


@dataclass(frozen=True, slots=True)
class ListTemplatesParams:
    template_filter: str
    zone_id: str | None = None
    id: str | None = None


@dataclass(frozen=True, slots=True)
class ListServiceOfferingsParams:
    id: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ListDiskOfferingsParams:
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ListVirtualMachinesParams:
    id: str | None = None
    zone_id: str | None = None


@dataclass(frozen=True, slots=True)
class DeployVirtualMachineParams:
    service_offering_id: str
    template_id: str
    zone_id: str
    network_ids: tuple[str, ...] = ()
    name: str | None = None
    display_name: str | None = None
    user_data: str | None = None  # base64
    root_disk_size: int | None = None  # GB
    key_pair: str | None = None
    disk_offering_id: str | None = None


@dataclass(frozen=True, slots=True)
class DestroyVirtualMachineParams:
    id: str
    expunge: bool = False


@dataclass(frozen=True, slots=True)
class CreateTagsParams:
    resource_ids: tuple[str, ...]
    resource_type: str
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ListTagsParams:
    resource_id: str | None = None
    resource_type: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteTagsParams:
    resource_ids: tuple[str, ...]
    resource_type: str
    tags: Mapping[str, str] = field(default_factory=dict)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class InventoryClient(Protocol):
    """Operations the provider consumes from the remote inventory."""

    async def deploy_virtual_machine(
        self, params: DeployVirtualMachineParams
    ) -> DeployVirtualMachineResponse: ...

    async def list_virtual_machines(
        self, params: ListVirtualMachinesParams
    ) -> ListVirtualMachinesResponse: ...

    async def destroy_virtual_machine(self, params: DestroyVirtualMachineParams) -> None: ...

    async def list_service_offerings(
        self, params: ListServiceOfferingsParams
    ) -> Sequence[ServiceOfferingRecord]: ...

    async def list_templates(self, params: ListTemplatesParams) -> Sequence[TemplateRecord]: ...

    async def list_networks(self, params: ListNetworksParams) -> Sequence[NetworkRecord]: ...

    async def list_zones(self, params: ListZonesParams) -> Sequence[ZoneRecord]: ...

    async def list_disk_offerings(
        self, params: ListDiskOfferingsParams
    ) -> Sequence[DiskOfferingRecord]: ...

    async def create_tags(self, params: CreateTagsParams) -> None: ...

    async def list_tags(self, params: ListTagsParams) -> Sequence[ResourceTag]: ...

    async def delete_tags(self, params: DeleteTagsParams) -> None: ...

    async def query_async_job_result(self, job_id: str) -> AsyncJobResult: ...

    async def get_zone_id(self, name: str) -> str: ...

    async def get_service_offering_id(self, name: str) -> str: ...

    async def close(self) -> None: ...


def tags_to_dict(tags: Sequence[ResourceTag]) -> dict[str, str]:
    return {t.key: t.value for t in tags}
