"""Service offerings exposed as instance types.

CloudStack only sells on-demand capacity and reports no prices, so every
offering becomes one on-demand instance type priced by a flat formula.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from loguru import logger

from karpenter_cloudstack.api.nodeclaim import InstanceType, Offering, Resources
from karpenter_cloudstack.api.nodeclass import NodeClass, SelectorTerm
from karpenter_cloudstack.cloudstack.api import (
    InventoryClient,
    ListServiceOfferingsParams,
    ServiceOfferingRecord,
)
from karpenter_cloudstack.constants import (
    ARCH_AMD64,
    CAPACITY_TYPE_ON_DEMAND,
    DEFAULT_POD_CAPACITY,
    OS_LINUX,
    Label,
    ResourceType,
)
from karpenter_cloudstack.errors import BackendError, NotFoundError
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.selectors import fetch_tags, resolve_terms

MIB: Final = 1024 * 1024

# Hourly placeholder prices.
PRICE_PER_CPU: Final = 0.04
PRICE_PER_GB_MEMORY: Final = 0.005

KUBE_RESERVED: Final = Resources(cpu_millis=100, memory_bytes=256 * MIB)


@dataclass(frozen=True, slots=True)
class ServiceOffering:
    id: str
    name: str
    cpu_number: int = 0
    cpu_speed: int = 0
    memory: int = 0  # MB
    network_rate: int = 0
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ServiceOfferingRecord, tags: dict[str, str]) -> ServiceOffering:
        return cls(
            id=record.id,
            name=record.name,
            cpu_number=record.cpu_number,
            cpu_speed=record.cpu_speed,
            memory=record.memory,
            network_rate=record.network_rate,
            tags=tags,
        )


def price(offering: ServiceOffering) -> float:
    return offering.cpu_number * PRICE_PER_CPU + offering.memory / 1024 * PRICE_PER_GB_MEMORY


def to_instance_type(offering: ServiceOffering, zone: str) -> InstanceType:
    return InstanceType(
        name=offering.name,
        requirements={
            Label.INSTANCE_TYPE: (offering.name,),
            Label.TOPOLOGY_ZONE: (zone,),
            Label.CAPACITY_TYPE: (CAPACITY_TYPE_ON_DEMAND,),
            Label.ARCH: (ARCH_AMD64,),
            Label.OS: (OS_LINUX,),
        },
        offerings=(
            Offering(
                requirements={
                    Label.TOPOLOGY_ZONE: (zone,),
                    Label.CAPACITY_TYPE: (CAPACITY_TYPE_ON_DEMAND,),
                },
                price=price(offering),
                available=True,
            ),
        ),
        capacity=Resources(
            cpu_millis=offering.cpu_number * 1000,
            memory_bytes=offering.memory * MIB,
            pods=DEFAULT_POD_CAPACITY,
        ),
        kube_reserved=KUBE_RESERVED,
    )


class InstanceTypeProvider:
    def __init__(self, client: InventoryClient, cache: TTLCache) -> None:
        self._client = client
        self._cache = cache
        self._log = logger.bind(component="instancetype")

    async def list_offerings(self, zone: str) -> tuple[ServiceOffering, ...]:
        return await self._cache.get_or_fetch(
            ("service-offerings", zone), self._fetch_offerings
        )

    async def _fetch_offerings(self) -> tuple[ServiceOffering, ...]:
        try:
            records = await self._client.list_service_offerings(ListServiceOfferingsParams())
        except BackendError as e:
            raise BackendError("listing service offerings", e) from e
        return tuple([
            ServiceOffering.from_record(
                r, await fetch_tags(self._client, r.id, ResourceType.SERVICE_OFFERING)
            )
            for r in records
        ])

    async def resolve_offerings(
        self, terms: Sequence[SelectorTerm], zone: str
    ) -> list[ServiceOffering]:
        """Service offerings selected by ``terms``.

        Raises:
            NoSelectorMatchError: No offering matched.
        """
        offerings = await self.list_offerings(zone)
        resolved = resolve_terms(terms, offerings, kind="service offering", zone=zone)
        self._log.info(
            "Resolved service offerings zone={zone} total={total} matched={matched}",
            zone=zone, total=len(offerings), matched=len(resolved),
        )
        return resolved

    async def list(self, nodeclass: NodeClass) -> list[InstanceType]:
        zone = nodeclass.spec.zone
        offerings = await self.resolve_offerings(nodeclass.spec.service_offering_selector_terms, zone)
        instance_types = [to_instance_type(o, zone) for o in offerings]
        self._log.info("Listed instance types count={count}", count=len(instance_types))
        return instance_types

    async def get(self, nodeclass: NodeClass, name: str) -> InstanceType:
        for instance_type in await self.list(nodeclass):
            if instance_type.name == name:
                return instance_type
        raise NotFoundError(f"instance type {name} not found")
