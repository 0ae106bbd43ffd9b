"""CloudStack provider core for the Karpenter node autoscaler."""

from karpenter_cloudstack.cloudprovider import (
    CloudProvider,
    NodeClassStore,
    format_provider_id,
    instance_to_nodeclaim,
    parse_provider_id,
)
from karpenter_cloudstack.config import Options, load_options
from karpenter_cloudstack.logging import LogConfig, setup_logging, teardown_logging
from karpenter_cloudstack.operator import Operator

__version__ = "0.1.0"

__all__ = [
    "CloudProvider",
    "LogConfig",
    "NodeClassStore",
    "Operator",
    "Options",
    "format_provider_id",
    "instance_to_nodeclaim",
    "load_options",
    "parse_provider_id",
    "setup_logging",
    "teardown_logging",
]
