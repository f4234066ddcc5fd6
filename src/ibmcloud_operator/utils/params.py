"""Resolution of Service and Binding parameters into JSON values."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from ..models import Param, ParamSource
from .errors import NotFoundError, OperatorError, SpecError
from .secrets import decode_secret_value

if TYPE_CHECKING:
    from ..services.kube.store import ResourceStore


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON values
    raise json.JSONDecodeError(f"invalid constant {name}", name, 0)


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def parse_indirect_value(content: str) -> Any:
    """Interpret a value read from a Secret or ConfigMap.

    Content forming exactly one JSON document (surrounding whitespace
    allowed) is decoded; anything else is taken as an unquoted string.
    """
    try:
        value, end = _decoder.raw_decode(content.lstrip())
    except json.JSONDecodeError:
        return content
    if content.lstrip()[end:].strip():
        return content
    return value


def _read_secret_key(store: ResourceStore, namespace: str, name: str, key: str) -> str:
    try:
        secret = store.get_secret_with_fallback(namespace, name)
    except NotFoundError as e:
        raise OperatorError(f"Missing secret {name}") from e
    data = secret.data or {}
    if key not in data:
        raise OperatorError(f"Missing secret {name}")
    return decode_secret_value(data[key])


def _read_config_map_key(store: ResourceStore, namespace: str, name: str, key: str) -> str:
    try:
        config_map = store.get_config_map_with_fallback(namespace, name)
    except NotFoundError as e:
        raise OperatorError(f"Missing configmap {name}") from e
    data = config_map.data or {}
    if key not in data:
        raise OperatorError(f"Missing configmap {name}")
    return data[key]


def param_source_to_json(store: ResourceStore, source: ParamSource, namespace: str) -> Any:
    """Resolve an indirect parameter value.

    Raises:
        SpecError: If the source names neither a secret nor a config map key
        OperatorError: If the referenced secret or config map is missing
    """
    if source.secret_key_ref is not None:
        ref = source.secret_key_ref
        return parse_indirect_value(_read_secret_key(store, namespace, ref.name, ref.key))
    if source.config_map_key_ref is not None:
        ref = source.config_map_key_ref
        return parse_indirect_value(_read_config_map_key(store, namespace, ref.name, ref.key))
    raise SpecError("Missing secretKeyRef or configMapKeyRef")


def param_to_json(store: ResourceStore, param: Param, namespace: str) -> Any:
    """Resolve one parameter to its JSON value, None when it has no value.

    Raises:
        SpecError: If both an inline value and a source are given
    """
    if param.value is not None and param.value_from is not None:
        raise SpecError(
            f"Value and ValueFrom properties are mutually exclusive (for {param.name} variable)"
        )
    if param.value_from is not None:
        return param_source_to_json(store, param.value_from, namespace)
    return param.value


def resolve_params(store: ResourceStore, params: list[Param], namespace: str) -> dict[str, Any]:
    """Resolve a parameter list into the map sent to the provider."""
    return {param.name: param_to_json(store, param, namespace) for param in params}
