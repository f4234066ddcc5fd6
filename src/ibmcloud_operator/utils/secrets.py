"""Utilities for the credentials secrets materialized from service keys."""

from __future__ import annotations

import base64
import json
from typing import Any

from kubernetes import client

from ..constants import (
    API_GROUP_VERSION,
    CONTROLLER_NAME,
    KIND_BINDING,
    LABEL_MANAGED_BY,
    SECRET_ANNOTATION_BINDING_FROM,
    SECRET_ANNOTATION_INSTANCE_ID,
    SECRET_ANNOTATION_KEY_ID,
)


def decode_secret_value(value: str | bytes) -> str:
    """Decode one value of a secret's ``data`` map."""
    # Handle both string and bytes (different versions of kubernetes client)
    if isinstance(value, bytes):
        return value.decode("utf-8")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        # Not base64, assume it's already decoded
        return value


def decode_secret_data(data: dict[str, Any] | None) -> dict[str, str]:
    """Decode all values of a secret's ``data`` map."""
    return {key: decode_secret_value(value) for key, value in (data or {}).items()}


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def flatten_value(value: Any) -> str:
    """Serialize one credential value as JSON, unquoting top-level strings."""
    text = json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return text


def flatten_credentials(credentials: dict[str, Any]) -> dict[str, str]:
    """Turn a provider credential map into secret string data.

    Keys have spaces replaced by underscores. Values are serialized as JSON
    with one leading and one trailing double quote removed, so plain strings
    are stored bare while numbers, booleans, objects and lists keep their
    JSON form.

    Args:
        credentials: Credentials as returned by the provider

    Returns:
        Secret data (not yet base64 encoded)
    """
    return {key.replace(" ", "_"): flatten_value(value) for key, value in credentials.items()}


def binding_owner_reference(binding_meta: dict[str, Any]) -> dict[str, Any]:
    """Controller owner reference pointing at a Binding."""
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_BINDING,
        "name": binding_meta.get("name"),
        "uid": binding_meta.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_binding_secret(
    binding_meta: dict[str, Any],
    secret_name: str,
    service_name: str,
    instance_id: str,
    key_id: str,
    credentials: dict[str, Any],
) -> client.V1Secret:
    """Build the credentials secret for a Binding.

    Args:
        binding_meta: Metadata of the owning Binding
        secret_name: Name of the secret to create
        service_name: Name of the Service the Binding reads from
        instance_id: Service instance the key belongs to
        key_id: Service key the credentials come from
        credentials: Credentials as returned by the provider

    Returns:
        Secret object ready to be created in the Binding's namespace
    """
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=binding_meta.get("namespace"),
            annotations={
                SECRET_ANNOTATION_INSTANCE_ID: instance_id,
                SECRET_ANNOTATION_KEY_ID: key_id,
                SECRET_ANNOTATION_BINDING_FROM: service_name,
            },
            labels={LABEL_MANAGED_BY: CONTROLLER_NAME},
            owner_references=[binding_owner_reference(binding_meta)],
        ),
        type="Opaque",
        data=encode_secret_data(flatten_credentials(credentials)),
    )


def secret_matches(secret: client.V1Secret, key_id: str, credentials: dict[str, Any]) -> bool:
    """Tell whether a secret still holds exactly the given key's credentials."""
    annotations = (secret.metadata.annotations or {}) if secret.metadata else {}
    if annotations.get(SECRET_ANNOTATION_KEY_ID) != key_id:
        return False
    return decode_secret_data(secret.data) == flatten_credentials(credentials)
