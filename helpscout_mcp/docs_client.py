"""
Help Scout Docs API client.

The Docs API is a separate service with HTTP Basic auth: the API key is the
username and the password is ignored.
"""

import base64
from typing import Any, Dict, Optional

import httpx

from .cache import ResponseCache
from .client import BaseApiClient
from .config import Settings
from .errors import ApiError, ErrorCode
from .utils.logging import get_logger

logger = get_logger(__name__)

DOCS_CACHE_TTL = 600
DOCS_KEY_SUGGESTION = (
    "Set HELPSCOUT_DOCS_API_KEY to an API key from Help Scout > Your Profile > "
    "Authentication > API Keys."
)


class DocsClient(BaseApiClient):
    """Client for the Help Scout Docs API (v1)."""

    SERVICE_NAME = "helpscout-docs"
    API_LABEL = "Help Scout Docs API"
    CACHE_PREFIX = "DOCS:"
    NOT_FOUND_MESSAGE = (
        "Help Scout Docs resource not found. The requested site, collection, category, or article does not exist."
    )
    UNAUTHORIZED_MESSAGE = "Help Scout Docs authentication failed. Please check your Docs API key."
    UNAUTHORIZED_SUGGESTION = DOCS_KEY_SUGGESTION

    def __init__(self, api_key: Optional[str], base_url: str, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "DocsClient":
        api_key = settings.HELPSCOUT_DOCS_API_KEY.get_secret_value() if settings.HELPSCOUT_DOCS_API_KEY else None
        return cls(
            api_key,
            settings.HELPSCOUT_DOCS_BASE_URL,
            cache=cache or ResponseCache(DOCS_CACHE_TTL, settings.MAX_CACHE_SIZE),
            timeout=settings.http_timeout_seconds,
            max_retries=settings.MAX_RETRIES,
            retry_base_delay=settings.RETRY_BASE_DELAY,
            retry_max_delay=settings.RETRY_MAX_DELAY,
            transport=transport,
            **kwargs,
        )

    async def _auth_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ApiError(
                ErrorCode.UNAUTHORIZED,
                "Help Scout Docs API key is not configured.",
                details={"suggestion": DOCS_KEY_SUGGESTION},
            )
        token = base64.b64encode(f"{self.api_key}:X".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}

    def default_ttl(self, path: str) -> Optional[int]:
        return DOCS_CACHE_TTL

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, ttl: Optional[int] = None) -> Any:
        data = await super().get(path, params, ttl)
        return unwrap_collection(data)

    async def test_connection(self) -> bool:
        try:
            await self.get("/sites", {"page": 1}, ttl=0)
            return True
        except ApiError as e:
            logger.warning("Help Scout Docs connection test failed", extra={"data": e.to_dict()})
            return False


def unwrap_collection(data: Any) -> Any:
    """
    Flatten ``{"articles": {"items": [...], "page": 1, ...}}`` into its inner page.

    Single-resource envelopes like ``{"article": {...}}`` are left alone.
    """
    if isinstance(data, dict) and len(data) == 1:
        inner = next(iter(data.values()))
        if isinstance(inner, dict) and "items" in inner:
            return inner
    return data
