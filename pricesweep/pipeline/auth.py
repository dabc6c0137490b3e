"""
Price Sweep - eBay Credential Manager

OAuth2 client-credentials exchange using EBAY_APP_ID + EBAY_CERT_ID.

There is no expiry tracking: a data call that comes back 401 raises
TokenExpiredError, and the orchestrator calls refresh() and retries that one
item. refresh() is serialised so concurrent workers hitting the same expired
token cause a single exchange.
"""

from __future__ import annotations

import asyncio
import base64

import httpx
import structlog

from pricesweep.config import Settings, settings as default_settings
from pricesweep.errors import AuthError, TransientNetworkError
from pricesweep.pipeline.retry import RetryPolicy, jittered_exponential

logger = structlog.get_logger(__name__)

TOKEN_EXCHANGE_ATTEMPTS = 3


class CredentialManager:
    """
    Shared bearer-token holder for all workers.

    Usage:
        credentials = CredentialManager(http_client)
        token = await credentials.current()
        ...
        token = await credentials.refresh(token)   # after a 401
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._settings = config or default_settings
        self._retry = retry_policy or RetryPolicy(
            max_attempts=TOKEN_EXCHANGE_ATTEMPTS,
            backoff=jittered_exponential(base=0.5, jitter=0.5),
            retryable=lambda e: isinstance(e, TransientNetworkError),
            name="ebay_token_exchange",
        )
        self._token: str | None = None
        self._lock = asyncio.Lock()
        self.exchanges = 0

    def _basic_auth_header(self) -> str:
        credentials = f"{self._settings.EBAY_APP_ID}:{self._settings.EBAY_CERT_ID}"
        return "Basic " + base64.b64encode(credentials.encode()).decode()

    async def _exchange_once(self) -> str:
        try:
            response = await self._client.post(
                self._settings.EBAY_OAUTH_URL,
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                    "User-Agent": self._settings.USER_AGENT,
                },
                data={
                    "grant_type": "client_credentials",
                    "scope": self._settings.EBAY_OAUTH_SCOPE,
                },
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(f"token exchange transport error: {e}") from e

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"token exchange failed: {response.status_code}"
            )
        if not response.is_success:
            raise AuthError(
                f"eBay OAuth failed: {response.status_code} {response.text[:200]}"
            )

        try:
            token = response.json().get("access_token")
        except ValueError as e:
            raise AuthError("eBay OAuth returned a non-JSON body") from e
        if not token:
            raise AuthError("eBay OAuth response has no access_token")
        return str(token)

    async def get_token(self) -> str:
        """
        Perform a client-credentials exchange and return the bearer token.

        Raises:
            AuthError: Credentials missing, non-2xx answer, or transient
                failures beyond the retry cap.
        """
        if not self._settings.EBAY_APP_ID or not self._settings.EBAY_CERT_ID:
            raise AuthError("Missing EBAY_APP_ID / EBAY_CERT_ID")

        try:
            token = await self._retry.run(self._exchange_once)
        except TransientNetworkError as e:
            logger.error("ebay_token_fetch_failed", error=str(e))
            raise AuthError(f"eBay OAuth unavailable: {e}") from e

        self._token = token
        self.exchanges += 1
        logger.info("ebay_token_refreshed", exchanges=self.exchanges)
        return token

    async def current(self) -> str:
        """Current token, exchanging for one on first use."""
        if self._token:
            return self._token
        async with self._lock:
            if self._token:
                return self._token
            return await self.get_token()

    async def refresh(self, stale_token: str | None) -> str:
        """
        Replace a token rejected with 401.

        If another worker already replaced stale_token, the newer token is
        returned without a second exchange.
        """
        async with self._lock:
            if self._token and self._token != stale_token:
                return self._token
            return await self.get_token()
