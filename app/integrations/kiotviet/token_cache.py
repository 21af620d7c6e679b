"""
KiotViet access token cache.
Obtains bearer tokens via the client-credentials grant and keeps one in memory
until it expires. Concurrent refreshes share a single in-flight request.
"""

import asyncio
import time
from collections.abc import Callable

import httpx
import structlog

from app.config import settings
from app.integrations.kiotviet.models import KiotVietTokenResponse, RemoteToken

logger = structlog.get_logger()

TOKEN_SCOPES = "PublicApi.Access"


class CredentialError(Exception):
    """Raised when KiotViet credentials are missing or the identity endpoint rejects them."""

    pass


class KiotVietTokenCache:
    """In-memory holder of the KiotViet bearer token."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        expiry_margin_seconds: int | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the token cache.

        Args:
            client_id: KiotViet client id (defaults to settings)
            client_secret: KiotViet client secret (defaults to settings)
            token_url: Identity endpoint URL (defaults to settings)
            expiry_margin_seconds: Seconds subtracted from expires_in so tokens are renewed early
            http_client: Optional shared httpx client (mainly for tests)
            clock: Wall-clock function returning epoch seconds

        Raises:
            CredentialError: If client id or secret is not configured
        """
        self.client_id = client_id if client_id is not None else settings.kiotviet_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.kiotviet_client_secret
        )
        if not self.client_id or not self.client_secret:
            raise CredentialError(
                "KiotViet credentials not configured. "
                "Set KIOTVIET_CLIENT_ID and KIOTVIET_CLIENT_SECRET."
            )

        self.token_url = token_url or settings.kiotviet_token_url
        self.expiry_margin_seconds = (
            expiry_margin_seconds
            if expiry_margin_seconds is not None
            else settings.kiotviet_token_expiry_margin_seconds
        )
        self._http_client = http_client
        self._clock = clock
        self._token: RemoteToken | None = None
        self._lock = asyncio.Lock()

    def _is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._token.expires_at

    def invalidate(self) -> None:
        """Drop the cached token so the next call obtains a fresh one."""
        self._token = None

    async def get_token(self) -> str:
        """
        Return a valid bearer token, refreshing it when expired or absent.

        Returns:
            Access token string

        Raises:
            CredentialError: If the identity endpoint is unreachable or rejects the grant
        """
        if self._is_valid():
            return self._token.value  # type: ignore[union-attr]

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid():
                return self._token.value  # type: ignore[union-attr]
            self._token = await self._obtain_token()
            return self._token.value

    async def _obtain_token(self) -> RemoteToken:
        logger.info("Obtaining new KiotViet access token")
        form = {
            "scopes": TOKEN_SCOPES,
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.token_url, data=form, timeout=10.0)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as e:
            logger.error("KiotViet identity endpoint unreachable", error=str(e))
            raise CredentialError(f"KiotViet identity endpoint unreachable: {e}") from e

        if not response.is_success:
            logger.error(
                "KiotViet token request rejected",
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise CredentialError(
                f"KiotViet token request failed with status {response.status_code}"
            )

        try:
            token_data = KiotVietTokenResponse.model_validate(response.json())
        except ValueError as e:
            raise CredentialError(f"Malformed KiotViet token response: {e}") from e

        lifetime = max(token_data.expires_in - self.expiry_margin_seconds, 0)
        token = RemoteToken(value=token_data.access_token, expires_at=self._clock() + lifetime)
        logger.info("KiotViet access token obtained", expires_in=token_data.expires_in)
        return token
