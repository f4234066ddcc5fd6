"""IAM API key to bearer token exchange."""

from __future__ import annotations

import hashlib
import logging

from ...utils.cache import TTLCache
from ...utils.errors import ProviderError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"

# Tokens are refreshed this long before the issuer's expiry
EXPIRY_MARGIN_SECONDS = 60.0


class IAMTokenProvider:
    """Hands out bearer tokens for an API key, exchanging it only when needed.

    Tokens are cached per API key until shortly before they expire. The
    cache is owned by the session resolver and shared across reconciles.
    """

    def __init__(self, http: ProviderHTTPClient, cache: TTLCache | None = None) -> None:
        self._http = http
        self._cache = cache or TTLCache()

    @staticmethod
    def _cache_key(api_key: str) -> str:
        return "iam-token:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    def token(self, api_key: str) -> str:
        """Return a valid access token for ``api_key``.

        Raises:
            ProviderError: If the exchange fails or returns no token
        """
        key = self._cache_key(api_key)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        body = self._http.post(
            "/identity/token",
            "iam_token",
            data={"grant_type": _GRANT_TYPE, "apikey": api_key},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        access_token = (body or {}).get("access_token")
        if not access_token:
            raise ProviderError("IAM token exchange returned no access token")

        expires_in = float((body or {}).get("expires_in", 3600))
        self._cache.set(key, access_token, ttl=max(expires_in - EXPIRY_MARGIN_SECONDS, 0.0))
        logger.debug("Obtained IAM access token")
        return access_token

    def bind(self, api_key: str):
        """Return a zero-argument callable producing tokens for ``api_key``."""
        return lambda: self.token(api_key)
