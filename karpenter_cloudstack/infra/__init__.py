from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.infra.http import HttpClient, HttpError

__all__ = ["HttpClient", "HttpError", "TTLCache"]
