"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_INSTANCE_ADOPTED,
    EVENT_REASON_INSTANCE_CREATED,
    EVENT_REASON_INSTANCE_DELETED,
    EVENT_REASON_INSTANCE_MISSING,
    EVENT_REASON_KEY_CREATED,
    EVENT_REASON_KEY_DELETED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_SECRET_RECREATED,
    EVENT_REASON_SPEC_RESTORED,
)
from .errors import sanitize_error_message


def emit_event(
    meta: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        meta: Resource object or metadata
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        meta,
        reason=reason,
        message=sanitize_error_message(message),
        type=type_,
    )


def emit_reconcile_failed(meta: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(meta, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_instance_created(meta: dict[str, Any], instance_id: str) -> None:
    emit_event(meta, EVENT_REASON_INSTANCE_CREATED, f"Service instance {instance_id} created")


def emit_instance_adopted(meta: dict[str, Any], instance_id: str) -> None:
    emit_event(meta, EVENT_REASON_INSTANCE_ADOPTED, f"Existing service instance {instance_id} adopted")


def emit_instance_deleted(meta: dict[str, Any], instance_id: str) -> None:
    emit_event(meta, EVENT_REASON_INSTANCE_DELETED, f"Service instance {instance_id} deleted")


def emit_instance_missing(meta: dict[str, Any], instance_id: str) -> None:
    """Emit a warning for a tracked instance that disappeared from the provider."""
    emit_event(
        meta,
        EVENT_REASON_INSTANCE_MISSING,
        f"Service instance {instance_id} no longer exists and self-healing is disabled",
        type_="Warning",
    )


def emit_key_created(meta: dict[str, Any], key_id: str) -> None:
    emit_event(meta, EVENT_REASON_KEY_CREATED, f"Service key {key_id} created")


def emit_key_deleted(meta: dict[str, Any], key_id: str) -> None:
    emit_event(meta, EVENT_REASON_KEY_DELETED, f"Service key {key_id} deleted")


def emit_secret_recreated(meta: dict[str, Any], secret_name: str) -> None:
    """Emit a warning when a drifted credentials secret is rebuilt."""
    emit_event(
        meta,
        EVENT_REASON_SECRET_RECREATED,
        f"Secret {secret_name} diverged from the service key and was recreated",
        type_="Warning",
    )


def emit_spec_restored(meta: dict[str, Any]) -> None:
    emit_event(
        meta,
        EVENT_REASON_SPEC_RESTORED,
        "Immutable spec fields were changed and have been restored",
        type_="Warning",
    )
