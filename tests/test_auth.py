"""
Tests for the OAuth2 client-credentials token manager.
"""

import asyncio

import httpx
import pytest

from helpscout_mcp.auth import AUTH_FAILED_MESSAGE, HelpScoutAuth
from helpscout_mcp.errors import ApiError, ErrorCode

BASE_URL = "https://api.helpscout.net/v2/"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _token_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTokenExchange:

    async def test_exchange_posts_client_credentials(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"access_token": "abc", "expires_in": 7200})

        auth = HelpScoutAuth("app-id", "app-secret", BASE_URL, http_client=_token_client(handler))
        token = await auth.ensure_authenticated()

        assert token == "abc"
        assert len(seen) == 1
        assert str(seen[0].url) == "https://api.helpscout.net/v2/oauth2/token"
        body = seen[0].read().decode()
        assert '"grant_type":"client_credentials"' in body.replace(" ", "")
        assert '"client_id":"app-id"' in body.replace(" ", "")
        await auth.close()

    async def test_token_is_reused_until_expiry(self):
        calls = 0
        clock = FakeClock()

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"access_token": f"t{calls}", "expires_in": 60})

        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=_token_client(handler), clock=clock)

        assert await auth.ensure_authenticated() == "t1"
        clock.now += 30
        assert await auth.ensure_authenticated() == "t1"
        assert auth.expires_at == 1_000_060.0

        clock.now += 31
        assert not auth.is_authenticated()
        assert await auth.ensure_authenticated() == "t2"
        assert calls == 2
        await auth.close()

    async def test_concurrent_callers_share_one_exchange(self):
        """Many simultaneous callers with no valid token trigger exactly one exchange."""
        calls = 0
        release = asyncio.Event()

        async def handler(request):
            nonlocal calls
            calls += 1
            await release.wait()
            return httpx.Response(200, json={"access_token": "shared", "expires_in": 7200})

        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=_token_client(handler))

        tasks = [asyncio.create_task(auth.ensure_authenticated()) for _ in range(10)]
        await asyncio.sleep(0)
        release.set()
        tokens = await asyncio.gather(*tasks)

        assert tokens == ["shared"] * 10
        assert calls == 1
        await auth.close()

    async def test_failed_exchange_reaches_every_waiter_and_is_not_cached(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(401, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "ok", "expires_in": 7200})

        auth = HelpScoutAuth("id", "wrong", BASE_URL, http_client=_token_client(handler))

        results = await asyncio.gather(
            auth.ensure_authenticated(), auth.ensure_authenticated(), return_exceptions=True
        )
        assert all(isinstance(r, ApiError) for r in results)
        assert all(r.code == ErrorCode.UNAUTHORIZED for r in results)
        assert calls == 1

        # the next call starts a fresh exchange
        assert await auth.ensure_authenticated() == "ok"
        assert calls == 2
        await auth.close()


class TestAuthFailures:

    async def test_missing_credentials_raise_unauthorized_without_network(self):
        def handler(request):
            raise AssertionError("no request expected")

        auth = HelpScoutAuth(None, None, BASE_URL, http_client=_token_client(handler))

        with pytest.raises(ApiError) as exc_info:
            await auth.ensure_authenticated()

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.message == AUTH_FAILED_MESSAGE
        assert "HELPSCOUT_APP_ID" in exc_info.value.details["suggestion"]
        await auth.close()

    async def test_rejected_credentials_map_to_unauthorized(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=_token_client(handler))

        with pytest.raises(ApiError) as exc_info:
            await auth.ensure_authenticated()

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.details["status"] == 400
        assert not auth.is_authenticated()
        await auth.close()

    async def test_transport_error_maps_to_unauthorized(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=_token_client(handler))

        with pytest.raises(ApiError) as exc_info:
            await auth.ensure_authenticated()

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.details["reason"] == "transport_error"
        await auth.close()

    async def test_invalidate_forces_a_new_exchange(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"access_token": f"t{calls}", "expires_in": 7200})

        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=_token_client(handler))
        await auth.ensure_authenticated()
        auth.invalidate()

        header = await auth.authorization_header()
        assert header == {"Authorization": "Bearer t2"}
        await auth.close()
