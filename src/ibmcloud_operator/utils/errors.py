"""Error types and error sanitization utilities."""

from __future__ import annotations

import re
import socket
from typing import Any


class OperatorError(Exception):
    """Base class for errors raised by the operator."""


class NotFoundError(OperatorError):
    """The resource never existed or was already removed."""


class RedactedCredentialsError(NotFoundError):
    """The provider returned a placeholder instead of the real credentials."""


class ConflictError(OperatorError):
    """The store rejected a write because the record changed concurrently."""


class AlreadyExistsError(OperatorError):
    """The store rejected a create because the record already exists."""


class StoreError(OperatorError):
    """The Kubernetes API rejected a request.

    Attributes:
        status_code: HTTP status code returned by the API server
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SpecError(OperatorError):
    """The desired state itself is invalid; retrying cannot fix it."""


class AmbiguousAliasError(SpecError):
    """Several remote instances match an alias plan and none is selected."""


class ProviderError(OperatorError):
    """A provider API call failed.

    Attributes:
        status_code: HTTP status code, when the provider answered
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


_DNS_FAILURE_MARKERS = (
    "no such host",
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "failed to resolve",
    "nameresolutionerror",
)


def is_dns_failure(error: BaseException) -> bool:
    """Tell whether an error comes from resolving the provider's host names.

    Walks the exception chain so wrapped ``socket.gaierror`` and urllib3
    ``NameResolutionError`` instances are recognized.
    """
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        text = f"{type(current).__name__} {current}".lower()
        if any(marker in text for marker in _DNS_FAILURE_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    (r"(bearer\s+)[A-Za-z0-9\-_\.=]+", r"\1[REDACTED]"),
    (r"(apikey=)[^&\s]+", r"\1[REDACTED]"),
    (r"(refresh_token=)[^&\s]+", r"\1[REDACTED]"),
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "api-key",
    "apikey",
    "api_key",
    "access_token",
    "refresh_token",
    "password",
    "secret",
    "credentials",
    "token",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"(\b{re.escape(field)}[\"']?\s*[:=]\s*)[\"']?[^\s,;\)\"']+[\"']?",
            r"\1[REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )
    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value
    return sanitized
