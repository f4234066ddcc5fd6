"""HTTP plumbing shared by the provider API clients."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from ... import metrics
from ...tracing import trace_span
from ...utils.errors import NotFoundError, ProviderError, sanitize_error_message
from ...utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

_NOT_FOUND_STATUSES = (404, 410)


def _error_text(response: requests.Response) -> str:
    """Extract the provider's error description from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or ""
    if not isinstance(body, dict):
        return str(body)
    for key in ("message", "description", "error_description", "errorMessage"):
        if body.get(key):
            return str(body[key])
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        return str(first.get("message", first)) if isinstance(first, dict) else str(first)
    if body.get("error"):
        return str(body["error"])
    return response.text


class ProviderHTTPClient:
    """JSON over HTTP against one provider endpoint.

    Every call is rate limited, traced and counted. Failed responses are
    translated into ``NotFoundError`` (404 and 410) or ``ProviderError``;
    connection failures become ``ProviderError`` chained to the original
    exception so name-resolution failures stay recognizable.
    """

    def __init__(
        self,
        base_url: str,
        api_type: str,
        token: Callable[[], str] | None = None,
        timeout: float = 60.0,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_type = api_type
        self._token = token
        self._timeout = timeout
        self._rate_limiter = rate_limiter
        self._session = session or requests.Session()

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body (None when empty).

        Raises:
            NotFoundError: On 404 or 410 responses
            ProviderError: On any other failure
        """
        all_headers = {"Accept": "application/json"}
        if self._token is not None:
            all_headers["Authorization"] = f"Bearer {self._token()}"
        all_headers.update(headers or {})

        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        start_time = time.time()
        result = "error"
        with trace_span(f"{self.api_type}.{operation}", attributes={"http.method": method}):
            try:
                response = self._send(method, path, operation, params, json_body, data, all_headers)
                if response.status_code in _NOT_FOUND_STATUSES:
                    result = "not_found"
                    raise NotFoundError(
                        f"{operation}: Request failed with status code: {response.status_code}, "
                        f"{sanitize_error_message(_error_text(response))}"
                    )
                if response.status_code >= 400:
                    raise ProviderError(
                        f"{operation}: Request failed with status code: {response.status_code}, "
                        f"{sanitize_error_message(_error_text(response))}",
                        status_code=response.status_code,
                    )
                result = "success"
            finally:
                metrics.api_call_total.labels(
                    api_type=self.api_type, operation=operation, result=result
                ).inc()
                metrics.api_call_duration_seconds.labels(
                    api_type=self.api_type, operation=operation
                ).observe(time.time() - start_time)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{operation}: response is not JSON") from e

    def _send(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None,
        json_body: Any,
        data: dict[str, Any] | None,
        headers: dict[str, str],
    ) -> requests.Response:
        try:
            return self._session.request(
                method,
                self.url(path),
                params={k: v for k, v in (params or {}).items() if v not in (None, "")},
                json=json_body,
                data=data,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{operation} failed: {sanitize_error_message(str(e))}") from e

    def get(self, path: str, operation: str, **kwargs: Any) -> Any:
        return self.request("GET", path, operation, **kwargs)

    def post(self, path: str, operation: str, **kwargs: Any) -> Any:
        return self.request("POST", path, operation, **kwargs)

    def patch(self, path: str, operation: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, operation, **kwargs)

    def put(self, path: str, operation: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, operation, **kwargs)

    def delete(self, path: str, operation: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, operation, **kwargs)
