"""Operator configuration read once at process start."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}

DEFAULT_SYNC_PERIOD_SECONDS = 150.0


def parse_duration(value: str) -> float:
    """Parse a duration such as ``150s``, ``2m30s`` or ``90`` into seconds.

    Raises:
        ValueError: If the value is not a duration
    """
    value = value.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        return float(value)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(value):
        raise ValueError(f"invalid duration {value!r}")
    return total


def _env_duration(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if not raw:
        return default
    try:
        return parse_duration(raw)
    except ValueError:
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, default))
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env.get(key, default))
    except ValueError:
        return default


@dataclass(frozen=True)
class OperatorConfig:
    """Read-only configuration snapshot shared by every reconciler.

    Attributes:
        sync_period: Steady-state requeue interval in seconds
        requeue_fast: Requeue interval while waiting on a dependency
        dns_backoff: Requeue interval after a provider name-resolution failure
        max_concurrent_reconciles: Size of the handler worker pool
        controller_namespace: Namespace the operator runs in
        metrics_port: Port for the metrics and health endpoints
        provider_request_timeout: Timeout for each provider HTTP request
        provider_rate_limit_per_second: Client-side cap on provider requests
        iam_endpoint: IAM token and role API base URL
        resource_controller_endpoint: Resource controller API base URL
        global_catalog_endpoint: Global catalog API base URL
        cf_endpoint_template: Cloud Foundry API URL, formatted with the region
    """

    sync_period: float = DEFAULT_SYNC_PERIOD_SECONDS
    requeue_fast: float = 10.0
    dns_backoff: float = 300.0
    max_concurrent_reconciles: int = 1
    controller_namespace: str = ""
    metrics_port: int = 8080
    provider_request_timeout: float = 60.0
    provider_rate_limit_per_second: float = 5.0
    iam_endpoint: str = "https://iam.cloud.ibm.com"
    resource_controller_endpoint: str = "https://resource-controller.cloud.ibm.com"
    global_catalog_endpoint: str = "https://globalcatalog.cloud.ibm.com"
    cf_endpoint_template: str = "https://api.{region}.cf.cloud.ibm.com"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build the configuration from environment variables."""
        if env is None:
            env = os.environ
        defaults = cls()
        return cls(
            sync_period=_env_duration(env, "SYNC_PERIOD", defaults.sync_period),
            requeue_fast=_env_duration(env, "REQUEUE_FAST_SECONDS", defaults.requeue_fast),
            dns_backoff=_env_duration(env, "DNS_BACKOFF_SECONDS", defaults.dns_backoff),
            max_concurrent_reconciles=max(
                1, _env_int(env, "MAX_CONCURRENT_RECONCILES", defaults.max_concurrent_reconciles)
            ),
            controller_namespace=env.get("CONTROLLER_NAMESPACE", defaults.controller_namespace),
            metrics_port=_env_int(env, "METRICS_PORT", defaults.metrics_port),
            provider_request_timeout=_env_float(
                env, "PROVIDER_REQUEST_TIMEOUT", defaults.provider_request_timeout
            ),
            provider_rate_limit_per_second=_env_float(
                env, "PROVIDER_RATE_LIMIT_PER_SECOND", defaults.provider_rate_limit_per_second
            ),
            iam_endpoint=env.get("IAM_ENDPOINT", defaults.iam_endpoint),
            resource_controller_endpoint=env.get(
                "RESOURCE_CONTROLLER_ENDPOINT", defaults.resource_controller_endpoint
            ),
            global_catalog_endpoint=env.get("GLOBAL_CATALOG_ENDPOINT", defaults.global_catalog_endpoint),
            cf_endpoint_template=env.get("CF_ENDPOINT_TEMPLATE", defaults.cf_endpoint_template),
        )
