"""Operator options.

Options are read once at startup from an optional TOML file and the
process environment (environment wins), validated, and then passed
explicitly into every component constructor.

TOML layout::

    [cloudstack]
    api_url = "https://cloud.example.com/client/api"
    api_key = "..."
    secret_key = "..."
    verify_ssl = true
    cluster_name = "prod"

    [cache]
    ttl = 900
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from karpenter_cloudstack.constants import (
    DEFAULT_ASYNC_JOB_TIMEOUT,
    DEFAULT_CACHE_CLEANUP_INTERVAL,
    DEFAULT_CACHE_TTL,
    DEFAULT_REQUEST_TIMEOUT,
)
from karpenter_cloudstack.errors import OptionsError

type RawConfig = dict[str, Any]

# (environment variable, section, key)
_ENV_KEYS: tuple[tuple[str, str, str], ...] = (
    ("CLOUDSTACK_API_URL", "cloudstack", "api_url"),
    ("CLOUDSTACK_API_KEY", "cloudstack", "api_key"),
    ("CLOUDSTACK_SECRET_KEY", "cloudstack", "secret_key"),
    ("CLOUDSTACK_VERIFY_SSL", "cloudstack", "verify_ssl"),
    ("CLUSTER_NAME", "cloudstack", "cluster_name"),
)

_REQUIRED: tuple[tuple[str, str], ...] = (
    ("api_url", "CLOUDSTACK_API_URL"),
    ("api_key", "CLOUDSTACK_API_KEY"),
    ("secret_key", "CLOUDSTACK_SECRET_KEY"),
    ("cluster_name", "CLUSTER_NAME"),
)


@dataclass(frozen=True, slots=True)
class Options:
    """Immutable operator configuration.

    Args:
        api_url: CloudStack API endpoint.
        api_key: CloudStack API key.
        secret_key: CloudStack secret key used to sign requests.
        cluster_name: Cluster name, used in the ownership tag.
        verify_ssl: Verify the API endpoint certificate.
        request_timeout: HTTP request timeout in seconds.
        async_job_timeout: Deadline for asynchronous API jobs in seconds.
        cache_ttl: Lifetime of cached inventory lists in seconds.
        cache_cleanup_interval: Interval of the optional expired-entry sweep.
    """

    api_url: str
    api_key: str = field(repr=False)
    secret_key: str = field(repr=False)
    cluster_name: str
    verify_ssl: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    async_job_timeout: float = DEFAULT_ASYNC_JOB_TIMEOUT
    cache_ttl: float = DEFAULT_CACHE_TTL
    cache_cleanup_interval: float = DEFAULT_CACHE_CLEANUP_INTERVAL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Options:
        return _build_options(_env_config(os.environ if environ is None else environ))


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def _env_config(environ: Mapping[str, str]) -> RawConfig:
    config: RawConfig = {}
    for env_name, section, key in _ENV_KEYS:
        value = environ.get(env_name)
        if value:
            config.setdefault(section, {})[key] = value
    return config


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() != "false"


def _build_options(raw: RawConfig) -> Options:
    cs = raw.get("cloudstack", {})
    cache = raw.get("cache", {})

    problems = [f"{env_name} is required" for key, env_name in _REQUIRED if not cs.get(key)]
    if problems:
        raise OptionsError(problems)

    try:
        return Options(
            api_url=str(cs["api_url"]),
            api_key=str(cs["api_key"]),
            secret_key=str(cs["secret_key"]),
            cluster_name=str(cs["cluster_name"]),
            verify_ssl=_as_bool(cs.get("verify_ssl", True)),
            request_timeout=float(cs.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
            async_job_timeout=float(cs.get("async_job_timeout", DEFAULT_ASYNC_JOB_TIMEOUT)),
            cache_ttl=float(cache.get("ttl", DEFAULT_CACHE_TTL)),
            cache_cleanup_interval=float(
                cache.get("cleanup_interval", DEFAULT_CACHE_CLEANUP_INTERVAL)
            ),
        )
    except (TypeError, ValueError) as e:
        raise OptionsError([f"invalid option value: {e}"]) from e


def load_options(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Options:
    """Load options from a TOML file overlaid with environment variables."""
    file_cfg = _read_toml(path) if path else {}
    env_cfg = _env_config(os.environ if environ is None else environ)
    return _build_options(_deep_merge(file_cfg, env_cfg))
