"""
Tests for the Mailbox API client: error mapping, retry, caching.
"""

import httpx
import pytest

from helpscout_mcp.auth import HelpScoutAuth
from helpscout_mcp.cache import ResponseCache
from helpscout_mcp.client import HelpScoutClient
from helpscout_mcp.errors import ApiError, ErrorCode

BASE_URL = "https://api.helpscout.net/v2/"


class Upstream:
    """Scripted responses for API paths; token requests always succeed."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth2/token"):
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.token_requests}", "expires_in": 7200})
        self.requests.append(request)
        scripted = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(scripted.status_code, headers=scripted.headers, content=scripted.content)


def _client(upstream: Upstream, max_retries: int = 3, cache: ResponseCache = None):
    transport = httpx.MockTransport(upstream)
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=httpx.AsyncClient(transport=transport))
    client = HelpScoutClient(
        auth,
        BASE_URL,
        cache=cache or ResponseCache(),
        max_retries=max_retries,
        retry_base_delay=1.0,
        retry_max_delay=10.0,
        transport=transport,
        sleep=record_sleep,
    )
    return client, delays


class TestErrorMapping:

    async def test_404_maps_to_not_found(self):
        client, _ = _client(Upstream(httpx.Response(404, json={"message": "Not Found"})))

        with pytest.raises(ApiError) as exc_info:
            await client.get("/conversations/1", ttl=0)

        assert exc_info.value.code == ErrorCode.NOT_FOUND
        assert "does not exist" in exc_info.value.message
        await client.close()

    async def test_401_maps_to_unauthorized_and_drops_token(self):
        upstream = Upstream(httpx.Response(401, json={"message": "Unauthorized"}))
        client, _ = _client(upstream)

        with pytest.raises(ApiError) as exc_info:
            await client.get("/mailboxes", ttl=0)

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.message == "Help Scout authentication failed. Please check your API credentials."
        assert len(upstream.requests) == 1
        assert not client.auth.is_authenticated()
        await client.close()

    async def test_400_maps_to_invalid_input_with_upstream_detail(self):
        body = {
            "message": "Bad request",
            "_embedded": {"errors": [{"path": "customer", "message": "may not be empty"}]},
        }
        client, _ = _client(Upstream(httpx.Response(400, json=body)))

        with pytest.raises(ApiError) as exc_info:
            await client.post("/conversations", {"subject": "x"})

        error = exc_info.value
        assert error.code == ErrorCode.INVALID_INPUT
        assert error.message.startswith("Help Scout API client error:")
        assert "customer: may not be empty" in error.details["upstream_message"]
        await client.close()

    async def test_unauthorized_and_invalid_input_are_not_retried(self):
        upstream = Upstream(httpx.Response(422, json={"message": "nope"}))
        client, delays = _client(upstream)

        with pytest.raises(ApiError):
            await client.get("/conversations", {"status": "active"}, ttl=0)

        assert len(upstream.requests) == 1
        assert delays == []
        await client.close()


class TestRetry:

    async def test_server_errors_retry_with_exponential_backoff(self):
        upstream = Upstream(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"ok": True}),
        )
        client, delays = _client(upstream)

        result = await client.get("/mailboxes", ttl=0)

        assert result == {"ok": True}
        assert len(upstream.requests) == 3
        assert delays == [1.0, 2.0]
        await client.close()

    async def test_retries_are_bounded(self):
        upstream = Upstream(httpx.Response(500))
        client, delays = _client(upstream, max_retries=2)

        with pytest.raises(ApiError) as exc_info:
            await client.get("/mailboxes", ttl=0)

        assert exc_info.value.code == ErrorCode.UPSTREAM_ERROR
        assert "server error (500)" in exc_info.value.message
        assert len(upstream.requests) == 3
        assert len(delays) == 2
        await client.close()

    async def test_rate_limit_waits_retry_after_capped(self):
        upstream = Upstream(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(429, headers={"Retry-After": "120"}),
            httpx.Response(200, json={"ok": True}),
        )
        client, delays = _client(upstream)

        await client.get("/mailboxes", ttl=0)

        assert delays == [3.0, 10.0]
        await client.close()

    async def test_exhausted_rate_limit_reports_retry_after(self):
        client, _ = _client(Upstream(httpx.Response(429, headers={"Retry-After": "7"})), max_retries=0)

        with pytest.raises(ApiError) as exc_info:
            await client.get("/mailboxes", ttl=0)

        assert exc_info.value.code == ErrorCode.RATE_LIMIT
        assert exc_info.value.retry_after == 7
        assert "wait 7 seconds" in exc_info.value.message
        await client.close()

    async def test_transport_errors_map_to_upstream_error(self):
        def handler(request):
            if request.url.path.endswith("/oauth2/token"):
                return httpx.Response(200, json={"access_token": "t", "expires_in": 7200})
            raise httpx.ConnectError("down", request=request)

        transport = httpx.MockTransport(handler)
        auth = HelpScoutAuth("id", "secret", BASE_URL, http_client=httpx.AsyncClient(transport=transport))

        async def no_sleep(delay):
            return None

        client = HelpScoutClient(auth, BASE_URL, max_retries=1, transport=transport, sleep=no_sleep)

        with pytest.raises(ApiError) as exc_info:
            await client.get("/mailboxes", ttl=0)

        assert exc_info.value.code == ErrorCode.UPSTREAM_ERROR
        await client.close()


class TestCaching:

    async def test_identical_gets_are_served_from_cache(self):
        upstream = Upstream(httpx.Response(200, json={"_embedded": {"mailboxes": []}}))
        client, _ = _client(upstream)

        await client.get("/mailboxes", {"page": 1})
        await client.get("/mailboxes", {"page": 1})
        await client.get("/mailboxes", {"page": 2})

        assert len(upstream.requests) == 2
        await client.close()

    async def test_ttl_zero_bypasses_cache(self):
        upstream = Upstream(httpx.Response(200, json={"id": 1}))
        client, _ = _client(upstream)

        await client.get("/conversations/1")
        await client.get("/conversations/1", ttl=0)

        assert len(upstream.requests) == 2
        await client.close()

    async def test_clear_cache_by_prefix(self):
        upstream = Upstream(httpx.Response(200, json={"id": 1}))
        client, _ = _client(upstream)

        await client.get("/conversations/1")
        await client.get("/mailboxes")
        cleared = client.clear_cache("GET:/conversations")
        await client.get("/conversations/1")
        await client.get("/mailboxes")

        assert cleared == 1
        assert len(upstream.requests) == 3
        await client.close()

    def test_default_ttls_by_resource(self):
        client = HelpScoutClient(HelpScoutAuth("id", "secret", BASE_URL), BASE_URL)

        assert client.default_ttl("/conversations/1/threads") == 300
        assert client.default_ttl("/mailboxes") == 1440
        assert client.default_ttl("/conversations") == 300
        assert client.default_ttl("/users") is None

    async def test_bearer_token_sent_and_params_cleaned(self):
        upstream = Upstream(httpx.Response(200, json={}))
        client, _ = _client(upstream)

        await client.get("/conversations", {"status": "active", "mailbox": None, "embed": True}, ttl=0)

        request = upstream.requests[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.url.params.get("status") == "active"
        assert "mailbox" not in request.url.params
        assert request.url.params.get("embed") == "true"
        await client.close()

    async def test_post_with_response_reads_resource_id(self):
        upstream = Upstream(httpx.Response(201, headers={"Resource-ID": "555", "Location": "/v2/conversations/555"}))
        client, _ = _client(upstream)

        response = await client.post_with_response("/conversations", {"subject": "x"})

        assert response["resource_id"] == "555"
        assert response["data"] == {}
        assert response["status"] == 201
        await client.close()
