"""Inventory-backed resolvers and the instance lifecycle manager."""

from karpenter_cloudstack.providers.instance import Instance, InstanceProvider, first_available
from karpenter_cloudstack.providers.instancetype import InstanceTypeProvider, ServiceOffering
from karpenter_cloudstack.providers.network import Network, NetworkProvider
from karpenter_cloudstack.providers.template import Template, TemplateProvider
from karpenter_cloudstack.providers.zone import Zone, ZoneProvider

__all__ = [
    "Instance",
    "InstanceProvider",
    "InstanceTypeProvider",
    "Network",
    "NetworkProvider",
    "ServiceOffering",
    "Template",
    "TemplateProvider",
    "Zone",
    "ZoneProvider",
    "first_available",
]
