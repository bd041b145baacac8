"""
Help Scout OAuth2 authentication module.

Handles the client-credentials grant and keeps the bearer token in memory
until it expires. Concurrent callers share one in-flight exchange.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .errors import ApiError, ErrorCode
from .utils.logging import get_logger, log_external_api_call

logger = get_logger(__name__)

AUTH_FAILED_MESSAGE = "Failed to authenticate with Help Scout API. Check your OAuth2 credentials."
CREDENTIALS_SUGGESTION = (
    "Set HELPSCOUT_APP_ID and HELPSCOUT_APP_SECRET to the App ID and App Secret "
    "of an OAuth2 app created under Help Scout > Your Profile > My Apps."
)


class HelpScoutAuth:
    """
    Client-credentials token manager for the Mailbox API.

    Token storage: in memory only, never persisted
    Flow: POST oauth2/token on first use and after expiry
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the auth handler.

        Args:
            client_id: OAuth2 App ID
            client_secret: OAuth2 App Secret
            base_url: Mailbox API base URL; the token endpoint is ``oauth2/token`` below it
            http_client: Optional client used for the token exchange (tests inject a mock transport)
            transport: Transport for the token client created on demand
            timeout: Timeout in seconds for the token client created on demand
            clock: Source of the current time in seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = base_url.rstrip("/") + "/oauth2/token"
        self._http_client = http_client
        self._transport = transport
        self._timeout = timeout
        self._clock = clock

        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0
        self._refresh_task: Optional[asyncio.Task] = None

    def is_authenticated(self) -> bool:
        """Check whether a non-expired token is held."""
        return self._access_token is not None and self._clock() < self._expires_at

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(transport=self._transport, timeout=self._timeout)
        return self._http_client

    async def close(self):
        """Close the token exchange client; the next exchange opens a new one."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        self._access_token = None
        self._expires_at = 0.0

    async def ensure_authenticated(self) -> str:
        """
        Return a valid bearer token, exchanging credentials if needed.

        Returns:
            The access token

        Raises:
            ApiError: UNAUTHORIZED when credentials are missing or rejected
        """
        if self.is_authenticated():
            return self._access_token

        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._exchange())
            self._refresh_task.add_done_callback(self._clear_refresh_task)

        # shield: one caller being cancelled must not cancel the shared exchange
        return await asyncio.shield(self._refresh_task)

    def _clear_refresh_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def authorization_header(self) -> Dict[str, str]:
        token = await self.ensure_authenticated()
        return {"Authorization": f"Bearer {token}"}

    async def _exchange(self) -> str:
        if not self.client_id or not self.client_secret:
            logger.error("OAuth2 credentials are not configured")
            raise self._auth_error({"reason": "missing_credentials"})

        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        started = time.perf_counter()
        try:
            response = await self._ensure_http_client().post(self.token_url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Token exchange failed", extra={"data": {"error": str(e)}})
            raise self._auth_error({"reason": "transport_error"}) from e

        log_external_api_call(
            "helpscout-oauth",
            "oauth2/token",
            method="POST",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        if response.status_code >= 300:
            logger.error(
                "Token exchange rejected",
                extra={"data": {"status_code": response.status_code}}
            )
            raise self._auth_error({"reason": "rejected", "status": response.status_code})

        data: Dict[str, Any] = response.json()
        token = data.get("access_token")
        if not token:
            raise self._auth_error({"reason": "no_access_token"})

        expires_in = int(data.get("expires_in", 0) or 0)
        self._access_token = token
        self._expires_at = self._clock() + expires_in

        logger.info(
            "Obtained Help Scout access token",
            extra={"data": {"expires_in": expires_in, "token_type": data.get("token_type")}}
        )
        return token

    @staticmethod
    def _auth_error(details: Dict[str, Any]) -> ApiError:
        return ApiError(
            ErrorCode.UNAUTHORIZED,
            AUTH_FAILED_MESSAGE,
            details={**details, "suggestion": CREDENTIALS_SUGGESTION},
        )
