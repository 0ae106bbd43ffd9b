"""CloudStack inventory client contract and HTTP implementation."""

from karpenter_cloudstack.cloudstack.api import InventoryClient
from karpenter_cloudstack.cloudstack.client import CloudStackClient
from karpenter_cloudstack.cloudstack.jobs import wait_for_async_job

__all__ = ["CloudStackClient", "InventoryClient", "wait_for_async_job"]
