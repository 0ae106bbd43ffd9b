"""Zone lookup and validation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from loguru import logger

from karpenter_cloudstack.api.nodeclass import SelectorTerm
from karpenter_cloudstack.cloudstack.api import InventoryClient, ListZonesParams, ZoneRecord
from karpenter_cloudstack.constants import ZONE_ENABLED
from karpenter_cloudstack.errors import ConfigValidationError, NotFoundError
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.selectors import resolve_terms

ZONE_VALIDATION_FAILED: Final = "ZoneValidationFailed"

_CACHE_KEY: Final = ("zones", "")


@dataclass(frozen=True, slots=True)
class Zone:
    id: str
    name: str
    network_type: str = ""
    allocation_state: str = ""
    local_storage_enabled: bool = False
    security_groups_enabled: bool = False
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return self.allocation_state == ZONE_ENABLED

    @classmethod
    def from_record(cls, record: ZoneRecord) -> Zone:
        return cls(
            id=record.id,
            name=record.name,
            network_type=record.network_type,
            allocation_state=record.allocation_state,
            local_storage_enabled=record.local_storage_enabled,
            security_groups_enabled=record.security_groups_enabled,
        )


class ZoneProvider:
    def __init__(self, client: InventoryClient, cache: TTLCache) -> None:
        self._client = client
        self._cache = cache
        self._log = logger.bind(component="zone")

    async def list(self) -> tuple[Zone, ...]:
        return await self._cache.get_or_fetch(_CACHE_KEY, self._fetch)

    async def _fetch(self) -> tuple[Zone, ...]:
        records = await self._client.list_zones(ListZonesParams(available=True))
        zones = tuple(Zone.from_record(r) for r in records)
        self._log.info("Listed zones count={count}", count=len(zones))
        return zones

    async def get(self, zone_id: str) -> Zone:
        for zone in await self.list():
            if zone.id == zone_id:
                return zone
        raise NotFoundError(f"zone {zone_id} not found")

    async def get_by_name(self, name: str) -> Zone:
        for zone in await self.list():
            if zone.name == name:
                return zone
        raise NotFoundError(f"zone {name} not found")

    async def validate_zone(self, identifier: str) -> Zone:
        """Return the zone named or identified by ``identifier`` if it is enabled.

        Raises:
            ConfigValidationError: The zone is absent or not enabled.
        """
        zones = await self.list()
        zone = next((z for z in zones if identifier in (z.id, z.name)), None)
        if zone is None:
            raise ConfigValidationError(ZONE_VALIDATION_FAILED, f"zone {identifier} not found")
        if not zone.enabled:
            raise ConfigValidationError(
                ZONE_VALIDATION_FAILED,
                f"zone {identifier} is not enabled (state: {zone.allocation_state})",
            )
        return zone

    async def resolve(self, terms: Sequence[SelectorTerm]) -> list[Zone]:
        zones = await self.list()
        return resolve_terms(
            terms, zones, kind="zone", zone="all", usable=lambda z: z.enabled
        )
