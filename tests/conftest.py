from __future__ import annotations

import pytest
from fakes import FakeClock, FakeInventory, make_inventory, make_nodeclass

from karpenter_cloudstack.api.nodeclass import NodeClass
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.instance import InstanceProvider
from karpenter_cloudstack.providers.instancetype import InstanceTypeProvider
from karpenter_cloudstack.providers.network import NetworkProvider
from karpenter_cloudstack.providers.template import TemplateProvider
from karpenter_cloudstack.providers.zone import ZoneProvider


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def inventory() -> FakeInventory:
    return make_inventory()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(900, clock=clock, name="test")


@pytest.fixture
def zones(inventory: FakeInventory, cache: TTLCache) -> ZoneProvider:
    return ZoneProvider(inventory, cache)


@pytest.fixture
def networks(inventory: FakeInventory, cache: TTLCache) -> NetworkProvider:
    return NetworkProvider(inventory, cache)


@pytest.fixture
def templates(inventory: FakeInventory, cache: TTLCache) -> TemplateProvider:
    return TemplateProvider(inventory, cache)


@pytest.fixture
def instance_types(inventory: FakeInventory, cache: TTLCache) -> InstanceTypeProvider:
    return InstanceTypeProvider(inventory, cache)


@pytest.fixture
def instances(
    inventory: FakeInventory, networks: NetworkProvider, templates: TemplateProvider
) -> InstanceProvider:
    return InstanceProvider(
        inventory,
        networks,
        templates,
        TTLCache(900, name="instances"),
        "prod",
        poll_interval=0.001,
        ready_timeout=0.05,
    )


@pytest.fixture
def nodeclass() -> NodeClass:
    return make_nodeclass()
