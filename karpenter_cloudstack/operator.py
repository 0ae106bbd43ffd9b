"""Component wiring.

Usage:
    options = load_options()
    async with Operator.create(options, store) as op:
        claim = await op.cloud_provider.create(request)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from karpenter_cloudstack.cloudprovider import CloudProvider, NodeClassStore
from karpenter_cloudstack.cloudstack.api import InventoryClient
from karpenter_cloudstack.cloudstack.client import CloudStackClient
from karpenter_cloudstack.config import Options
from karpenter_cloudstack.controllers.nodeclass import NodeClassReconciler
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.instance import InstanceProvider
from karpenter_cloudstack.providers.instancetype import InstanceTypeProvider
from karpenter_cloudstack.providers.network import NetworkProvider
from karpenter_cloudstack.providers.template import TemplateProvider
from karpenter_cloudstack.providers.zone import ZoneProvider


@dataclass(slots=True)
class Operator:
    options: Options
    client: InventoryClient
    caches: dict[str, TTLCache]
    zones: ZoneProvider
    networks: NetworkProvider
    templates: TemplateProvider
    instance_types: InstanceTypeProvider
    instances: InstanceProvider
    reconciler: NodeClassReconciler
    cloud_provider: CloudProvider

    @classmethod
    def create(
        cls,
        options: Options,
        store: NodeClassStore,
        *,
        client: InventoryClient | None = None,
    ) -> Operator:
        client = client or CloudStackClient(options)
        caches = {
            name: TTLCache(options.cache_ttl, name=name)
            for name in ("zone", "network", "template", "instancetype", "instance")
        }
        zones = ZoneProvider(client, caches["zone"])
        networks = NetworkProvider(client, caches["network"])
        templates = TemplateProvider(client, caches["template"])
        instance_types = InstanceTypeProvider(client, caches["instancetype"])
        instances = InstanceProvider(
            client, networks, templates, caches["instance"], options.cluster_name
        )
        logger.bind(component="operator").info(
            "Operator ready cluster={cluster}", cluster=options.cluster_name
        )
        return cls(
            options=options,
            client=client,
            caches=caches,
            zones=zones,
            networks=networks,
            templates=templates,
            instance_types=instance_types,
            instances=instances,
            reconciler=NodeClassReconciler(zones, networks, templates),
            cloud_provider=CloudProvider(instance_types, instances, store),
        )

    def cleanup_caches(self) -> int:
        return sum(cache.cleanup() for cache in self.caches.values())

    async def run_cache_cleanup(self) -> None:
        """Sweep expired cache entries every ``cache_cleanup_interval`` until cancelled."""
        while True:
            await asyncio.sleep(self.options.cache_cleanup_interval)
            self.cleanup_caches()

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> Operator:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
