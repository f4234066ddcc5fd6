"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_CREATION_FAILED,
    COND_PARENT_NOT_READY,
    COND_READY,
    STATE_ONLINE,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    existing_idx = next(
        (idx for idx, cond in enumerate(conditions) if cond.get("type") == condition_type),
        None,
    )

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }
    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is None:
        conditions.append(new_condition)
        return conditions

    existing = conditions[existing_idx]
    # lastTransitionTime only moves when the status flips
    if existing.get("status") == status:
        new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
    conditions[existing_idx] = new_condition
    return conditions


def remove_condition(conditions: list[dict[str, Any]], condition_type: str) -> list[dict[str, Any]]:
    """Drop a condition type from the list."""
    return [cond for cond in conditions if cond.get("type") != condition_type]


def set_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition."""
    return update_condition(
        conditions,
        COND_READY,
        "True" if status else "False",
        "Ready" if status else "NotReady",
        message,
        observed_generation,
    )


def ready_condition_for_state(
    conditions: list[dict[str, Any]],
    state: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Mirror a resource state into the Ready condition."""
    return set_ready_condition(conditions, state == STATE_ONLINE, message or state, observed_generation)


def set_parent_not_ready_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the ParentNotReady condition."""
    return update_condition(
        conditions,
        COND_PARENT_NOT_READY,
        "True",
        "ParentNotReady",
        message,
        observed_generation,
    )


def set_creation_failed_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the CreationFailed condition."""
    return update_condition(
        conditions,
        COND_CREATION_FAILED,
        "True",
        "CreationFailed",
        message,
        observed_generation,
    )

