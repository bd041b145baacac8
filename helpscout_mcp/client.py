"""
Help Scout Mailbox API client.

Provides an authenticated httpx client with response caching, bounded
retry for throttling and server errors, and mapping of HTTP failures onto
the fixed error taxonomy.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .auth import CREDENTIALS_SUGGESTION, HelpScoutAuth
from .cache import ResponseCache, build_cache_key
from .config import Settings
from .errors import ApiError, ErrorCode
from .utils.logging import get_logger, log_external_api_call

logger = get_logger(__name__)

DEFAULT_RATE_LIMIT_WAIT = 60


class BaseApiClient:
    """
    Shared request pipeline for the Mailbox and Docs APIs.

    Subclasses provide authentication headers and the wording used in
    error messages.
    """

    SERVICE_NAME = "helpscout"
    API_LABEL = "Help Scout API"
    CACHE_PREFIX = ""
    NOT_FOUND_MESSAGE = "Help Scout resource not found."
    UNAUTHORIZED_MESSAGE = "Help Scout authentication failed. Please check your API credentials."
    UNAUTHORIZED_SUGGESTION = CREDENTIALS_SUGGESTION

    def __init__(
        self,
        base_url: str,
        cache: Optional[ResponseCache] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: API root, ending in a slash
            cache: Response cache shared by GET calls
            timeout: Connect/read timeout in seconds
            max_retries: Additional attempts for RATE_LIMIT and UPSTREAM_ERROR
            retry_base_delay: First backoff delay in seconds
            retry_max_delay: Upper bound on any single backoff delay
            transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
            sleep: Awaitable used between retries
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.cache = cache or ResponseCache()
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self):
        """Close the httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _auth_headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _on_unauthorized(self) -> None:
        """Hook run when the upstream rejects our credentials."""

    def default_ttl(self, path: str) -> Optional[int]:
        return None

    # -- request pipeline --

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Issue one logical request, retrying throttling and server errors.

        Raises:
            ApiError: mapped from the final failed attempt
        """
        path = _normalize_path(path)
        params = _clean_params(params)
        client = await self.ensure_client()

        attempt = 0
        while True:
            headers = await self._auth_headers()
            started = time.perf_counter()
            try:
                response = await client.request(method, path, params=params, json=json, headers=headers)
            except httpx.TimeoutException as e:
                error = ApiError(
                    ErrorCode.UPSTREAM_ERROR,
                    f"{self.API_LABEL} request timed out. Increase HTTP_SOCKET_TIMEOUT or retry later.",
                    details={"exception": type(e).__name__},
                )
            except httpx.TransportError as e:
                error = ApiError(
                    ErrorCode.UPSTREAM_ERROR,
                    f"Could not reach {self.API_LABEL}. Check network connectivity and the configured base URL.",
                    details={"exception": type(e).__name__},
                )
            else:
                log_external_api_call(
                    self.SERVICE_NAME,
                    path,
                    method=method,
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                )
                if response.is_success:
                    return response
                error = self.transform_error(response)

            if not error.retryable or attempt >= self.max_retries:
                logger.error(
                    f"{self.API_LABEL} request failed",
                    extra={"data": {
                        "method": method,
                        "path": path,
                        "code": error.code.value,
                        "attempts": attempt + 1,
                    }}
                )
                raise error

            delay = self._backoff_delay(attempt, error)
            logger.warning(
                f"Retrying {self.API_LABEL} request",
                extra={"data": {
                    "method": method,
                    "path": path,
                    "code": error.code.value,
                    "attempt": attempt + 1,
                    "delay": delay,
                }}
            )
            await self._sleep(delay)
            attempt += 1

    def _backoff_delay(self, attempt: int, error: ApiError) -> float:
        if error.code == ErrorCode.RATE_LIMIT and error.retry_after is not None:
            return float(min(error.retry_after, self.retry_max_delay))
        return float(min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay))

    def transform_error(self, response: httpx.Response) -> ApiError:
        """Map an HTTP failure onto the error taxonomy."""
        status = response.status_code
        upstream_message = _upstream_message(response)

        if status == 401:
            self._on_unauthorized()
            return ApiError(
                ErrorCode.UNAUTHORIZED,
                self.UNAUTHORIZED_MESSAGE,
                details={"suggestion": self.UNAUTHORIZED_SUGGESTION},
            )

        if status == 404:
            return ApiError(
                ErrorCode.NOT_FOUND,
                self.NOT_FOUND_MESSAGE,
                details={"path": response.request.url.path, "suggestion": "Verify the ID with a search or list tool."},
            )

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            return ApiError(
                ErrorCode.RATE_LIMIT,
                f"{self.API_LABEL} rate limit exceeded. Please wait {retry_after} seconds before retrying.",
                details={"suggestion": "Reduce request volume or narrow the search."},
                retry_after=retry_after,
            )

        if status >= 500:
            return ApiError(
                ErrorCode.UPSTREAM_ERROR,
                f"{self.API_LABEL} server error ({status}). The service is temporarily unavailable.",
                details={"status": status, "suggestion": "Retry in a few minutes."},
            )

        details: Dict[str, Any] = {"status": status}
        if upstream_message:
            details["upstream_message"] = upstream_message
        return ApiError(
            ErrorCode.INVALID_INPUT,
            f"{self.API_LABEL} client error: {upstream_message or 'request rejected'}",
            details=details,
        )

    # -- verbs --

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, ttl: Optional[int] = None) -> Any:
        """GET with caching; ``ttl=0`` forces a fresh fetch and skips the write."""
        path = _normalize_path(path)
        key = self.CACHE_PREFIX + build_cache_key("GET", path, params)
        if ttl is None:
            ttl = self.default_ttl(path)

        if ttl != 0:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit", extra={"data": {"key": key}})
                return cached

        response = await self.request("GET", path, params=params)
        data = self._decode(response)
        if ttl != 0:
            self.cache.set(key, data, ttl)
        return data

    async def post(self, path: str, json: Any = None) -> Any:
        response = await self.request("POST", path, json=json)
        return self._decode(response)

    async def post_with_response(self, path: str, json: Any = None) -> Dict[str, Any]:
        """POST and also return the created resource's id from the response headers."""
        response = await self.request("POST", path, json=json)
        return {
            "data": self._decode(response),
            "resource_id": response.headers.get("resource-id"),
            "location": response.headers.get("location"),
            "status": response.status_code,
        }

    async def patch(self, path: str, json: Any = None) -> Any:
        response = await self.request("PATCH", path, json=json)
        return self._decode(response)

    async def put(self, path: str, json: Any = None) -> Any:
        response = await self.request("PUT", path, json=json)
        return self._decode(response)

    async def delete(self, path: str) -> Any:
        response = await self.request("DELETE", path)
        return self._decode(response)

    def clear_cache(self, prefix: Optional[str] = None) -> int:
        """Invalidate cached GETs, optionally only those under ``prefix`` (e.g. ``GET:/conversations``)."""
        if prefix is None and self.CACHE_PREFIX:
            return self.cache.clear(self.CACHE_PREFIX)
        return self.cache.clear(self.CACHE_PREFIX + (prefix or ""))

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}


class HelpScoutClient(BaseApiClient):
    """Authenticated client for the Help Scout Mailbox API (v2)."""

    SERVICE_NAME = "helpscout-mailbox"
    API_LABEL = "Help Scout API"
    NOT_FOUND_MESSAGE = (
        "Help Scout resource not found. The requested conversation, mailbox, or thread does not exist."
    )

    # Default TTLs in seconds by path prefix
    TTL_BY_PREFIX = (
        ("/mailboxes", 1440),
        ("/conversations", 300),
    )
    THREADS_TTL = 300

    def __init__(self, auth: HelpScoutAuth, base_url: str, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.auth = auth

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "HelpScoutClient":
        secret = settings.HELPSCOUT_APP_SECRET.get_secret_value() if settings.HELPSCOUT_APP_SECRET else None
        auth = HelpScoutAuth(
            settings.HELPSCOUT_APP_ID,
            secret,
            settings.HELPSCOUT_BASE_URL,
            transport=transport,
            timeout=settings.http_timeout_seconds,
        )
        return cls(
            auth,
            settings.HELPSCOUT_BASE_URL,
            cache=ResponseCache(settings.CACHE_TTL_SECONDS, settings.MAX_CACHE_SIZE),
            timeout=settings.http_timeout_seconds,
            max_retries=settings.MAX_RETRIES,
            retry_base_delay=settings.RETRY_BASE_DELAY,
            retry_max_delay=settings.RETRY_MAX_DELAY,
            transport=transport,
            **kwargs,
        )

    async def _auth_headers(self) -> Dict[str, str]:
        return await self.auth.authorization_header()

    async def close(self):
        await super().close()
        await self.auth.close()

    def _on_unauthorized(self) -> None:
        self.auth.invalidate()

    def default_ttl(self, path: str) -> Optional[int]:
        if "/threads" in path:
            return self.THREADS_TTL
        for prefix, ttl in self.TTL_BY_PREFIX:
            if path.startswith(prefix):
                return ttl
        return None

    async def test_connection(self) -> bool:
        """Check credentials and reachability with a cheap mailbox listing."""
        try:
            await self.get("/mailboxes", {"page": 1, "size": 1}, ttl=0)
            return True
        except ApiError as e:
            logger.warning("Help Scout connection test failed", extra={"data": e.to_dict()})
            return False


def _normalize_path(path: str) -> str:
    return path if path.startswith("/") else "/" + path


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def _parse_retry_after(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_RATE_LIMIT_WAIT
    try:
        return max(int(float(value)), 0)
    except ValueError:
        return DEFAULT_RATE_LIMIT_WAIT


def _upstream_message(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or None
    if not isinstance(data, dict):
        return None

    message = data.get("message") or data.get("error_description") or data.get("error")
    errors = (data.get("_embedded") or {}).get("errors") or []
    field_messages = [
        f"{err.get('path')}: {err.get('message')}" if err.get("path") else str(err.get("message"))
        for err in errors
        if isinstance(err, dict) and err.get("message")
    ]
    if field_messages:
        message = f"{message} ({'; '.join(field_messages)})" if message else "; ".join(field_messages)
    return message
