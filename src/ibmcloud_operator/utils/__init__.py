"""Utility functions for the IBM Cloud Operator."""

from .cache import TTLCache, make_cache_key
from .conditions import (
    ready_condition_for_state,
    remove_condition,
    set_parent_not_ready_condition,
    update_condition,
)
from .context import (
    get_context_dict,
    get_correlation_id,
    new_correlation_id,
    with_correlation_id,
)
from .events import emit_event
from .params import param_to_json, resolve_params
from .rate_limit import RateLimiter
from .secrets import build_binding_secret, flatten_credentials, secret_matches

__all__ = [
    "TTLCache",
    "make_cache_key",
    "update_condition",
    "remove_condition",
    "ready_condition_for_state",
    "set_parent_not_ready_condition",
    "new_correlation_id",
    "get_correlation_id",
    "with_correlation_id",
    "get_context_dict",
    "emit_event",
    "param_to_json",
    "resolve_params",
    "RateLimiter",
    "build_binding_secret",
    "flatten_credentials",
    "secret_matches",
]
