"""Structured logging configuration for the IBM Cloud Operator."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from .utils.context import get_context_dict
from .utils.errors import sanitize_dict, sanitize_error_message


def setup_structured_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stdout."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def log_resource_event(
    logger: logging.Logger,
    controller: str,
    resource_kind: str,
    resource_name: str,
    namespace: str,
    uid: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a structured resource event.

    The message and every extra field are sanitized before being written, so
    provider error texts carrying API keys or tokens never reach the log. The
    correlation ID of the current reconcile pass is attached when one is set.
    """
    log_data = {
        "controller": controller,
        "resource": resource_kind,
        "name": resource_name,
        "namespace": namespace,
        "uid": uid,
        "event": event,
        "reason": reason,
        "message": sanitize_error_message(message),
    }
    log_data.update(sanitize_secrets(get_context_dict(kwargs)))
    logger.log(level, json.dumps(log_data, default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Remove secret fields from log data."""
    return sanitize_dict(log_data)
