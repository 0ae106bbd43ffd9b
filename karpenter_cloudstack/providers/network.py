"""Network listing and selector resolution."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from karpenter_cloudstack.api.nodeclass import SelectorTerm
from karpenter_cloudstack.cloudstack.api import InventoryClient, ListNetworksParams, NetworkRecord
from karpenter_cloudstack.constants import USABLE_NETWORK_STATES, ResourceType
from karpenter_cloudstack.errors import BackendError
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.selectors import fetch_tags, resolve_terms


@dataclass(frozen=True, slots=True)
class Network:
    id: str
    name: str
    zone: str = ""
    zone_id: str = ""
    type: str = ""
    state: str = ""
    cidr: str = ""
    gateway: str = ""
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        return self.state in USABLE_NETWORK_STATES

    @classmethod
    def from_record(cls, record: NetworkRecord, tags: dict[str, str]) -> Network:
        return cls(
            id=record.id,
            name=record.name,
            zone=record.zone_name,
            zone_id=record.zone_id,
            type=record.type,
            state=record.state,
            cidr=record.cidr,
            gateway=record.gateway,
            tags=tags,
        )


class NetworkProvider:
    def __init__(self, client: InventoryClient, cache: TTLCache) -> None:
        self._client = client
        self._cache = cache
        self._log = logger.bind(component="network")

    async def list(self, zone: str) -> tuple[Network, ...]:
        """All networks in ``zone``, each with its tags, cached per zone."""
        return await self._cache.get_or_fetch(("networks", zone), lambda: self._fetch(zone))

    async def _fetch(self, zone: str) -> tuple[Network, ...]:
        try:
            zone_id = await self._client.get_zone_id(zone)
            records = await self._client.list_networks(ListNetworksParams(zone_id=zone_id))
        except BackendError as e:
            raise BackendError(f"listing networks in zone {zone}", e) from e

        networks = tuple([
            Network.from_record(r, await fetch_tags(self._client, r.id, ResourceType.NETWORK))
            for r in records
        ])
        self._log.info("Listed networks zone={zone} count={count}", zone=zone, count=len(networks))
        return networks

    async def resolve(self, terms: Sequence[SelectorTerm], zone: str) -> list[Network]:
        """Networks selected by ``terms`` in ``zone`` that are implemented or set up.

        Raises:
            NoSelectorMatchError: No usable network matched.
        """
        networks = await self.list(zone)
        resolved = resolve_terms(
            terms, networks, kind="network", zone=zone, usable=lambda n: n.usable
        )
        self._log.info("Resolved networks zone={zone} count={count}", zone=zone, count=len(resolved))
        return resolved
