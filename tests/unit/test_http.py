"""Tests for the provider HTTP plumbing and IAM token exchange."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from ibmcloud_operator.services.ibmcloud.http import ProviderHTTPClient
from ibmcloud_operator.services.ibmcloud.iam import IAMTokenProvider
from ibmcloud_operator.utils.cache import TTLCache
from ibmcloud_operator.utils.errors import NotFoundError, ProviderError, is_dns_failure


def make_response(status_code: int = 200, body=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.reason = "Reason"
    if body is None:
        response.content = text.encode("utf-8")
        response.text = text
        response.json.side_effect = ValueError("no json")
    else:
        response.content = b"{...}"
        response.text = str(body)
        response.json.return_value = body
    return response


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def http(session) -> ProviderHTTPClient:
    return ProviderHTTPClient(
        "https://resource-controller.cloud.ibm.com/",
        "resource_controller",
        token=lambda: "tok-1",
        session=session,
    )


class TestProviderHTTPClient:
    """Test cases for ProviderHTTPClient."""

    def test_url_joining(self, http):
        assert http.url("/v2/resource_instances") == "https://resource-controller.cloud.ibm.com/v2/resource_instances"
        assert http.url("https://other.example.com/x") == "https://other.example.com/x"

    def test_get_returns_json(self, http, session):
        session.request.return_value = make_response(body={"resources": []})

        result = http.get("/v2/resource_instances", "list_instances", params={"name": "mydb", "type": None})

        assert result == {"resources": []}
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://resource-controller.cloud.ibm.com/v2/resource_instances")
        assert kwargs["params"] == {"name": "mydb"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok-1"
        assert kwargs["headers"]["Accept"] == "application/json"

    def test_empty_body_returns_none(self, http, session):
        session.request.return_value = make_response(status_code=204)

        assert http.delete("/v2/resource_instances/x", "delete_instance") is None

    @pytest.mark.parametrize("status", [404, 410])
    def test_not_found(self, http, session, status):
        session.request.return_value = make_response(status, body={"message": "Instance is gone"})

        with pytest.raises(NotFoundError, match="Instance is gone"):
            http.get("/v2/resource_instances/x", "get_instance")

    def test_error_carries_status_and_message(self, http, session):
        session.request.return_value = make_response(400, body={"errors": [{"message": "bad plan"}]})

        with pytest.raises(ProviderError) as exc_info:
            http.post("/v2/resource_instances", "create_instance", json_body={})

        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == "create_instance: Request failed with status code: 400, bad plan"

    def test_error_text_not_json(self, http, session):
        session.request.return_value = make_response(502, text="Bad Gateway")

        with pytest.raises(ProviderError, match="Bad Gateway"):
            http.get("/v2/x", "get_x")

    def test_connection_error_keeps_cause(self, http, session):
        session.request.side_effect = requests.exceptions.ConnectionError(
            "Failed to resolve 'resource-controller.cloud.ibm.com'"
        )

        with pytest.raises(ProviderError) as exc_info:
            http.get("/v2/x", "get_x")

        assert isinstance(exc_info.value.__cause__, requests.exceptions.ConnectionError)
        assert is_dns_failure(exc_info.value)

    def test_rate_limiter_consulted(self, session):
        limiter = MagicMock()
        http = ProviderHTTPClient("https://x", "test", session=session, rate_limiter=limiter)
        session.request.return_value = make_response(body={})

        http.get("/a", "get_a")

        limiter.acquire.assert_called_once()
        assert "Authorization" not in session.request.call_args.kwargs["headers"]


class TestIAMTokenProvider:
    """Test cases for IAMTokenProvider."""

    def test_exchanges_api_key(self):
        http = MagicMock()
        http.post.return_value = {"access_token": "tok-1", "expires_in": 3600}
        provider = IAMTokenProvider(http)

        assert provider.token("key-abc") == "tok-1"

        args, kwargs = http.post.call_args
        assert args[0] == "/identity/token"
        assert kwargs["data"]["apikey"] == "key-abc"
        assert kwargs["data"]["grant_type"] == "urn:ibm:params:oauth:grant-type:apikey"

    def test_token_cached_per_key(self):
        http = MagicMock()
        http.post.side_effect = [
            {"access_token": "tok-1", "expires_in": 3600},
            {"access_token": "tok-2", "expires_in": 3600},
        ]
        provider = IAMTokenProvider(http)

        assert provider.token("key-a") == "tok-1"
        assert provider.token("key-a") == "tok-1"
        assert provider.token("key-b") == "tok-2"
        assert http.post.call_count == 2

    def test_token_refreshed_before_expiry(self):
        now = [0.0]
        http = MagicMock()
        http.post.side_effect = [
            {"access_token": "tok-1", "expires_in": 120},
            {"access_token": "tok-2", "expires_in": 120},
        ]
        provider = IAMTokenProvider(http, TTLCache(clock=lambda: now[0]))

        provider.token("key-a")
        now[0] = 61.0

        assert provider.token("key-a") == "tok-2"

    def test_missing_token_is_error(self):
        http = MagicMock()
        http.post.return_value = {"errorMessage": "nope"}

        with pytest.raises(ProviderError):
            IAMTokenProvider(http).token("key-a")

    def test_bind(self):
        http = MagicMock()
        http.post.return_value = {"access_token": "tok-1"}

        assert IAMTokenProvider(http).bind("key-a")() == "tok-1"
