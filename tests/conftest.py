"""
Pytest configuration and fixtures for the Help Scout MCP server tests.

All upstream traffic goes through ``FakeHelpScout``, an in-memory stand-in
for the Mailbox API served via ``httpx.MockTransport``; no test touches the
network.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from helpscout_mcp.config import Settings
from helpscout_mcp.dispatch import create_dispatcher

TOKEN_PATH = "/oauth2/token"

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def make_conversation(conv_id: int, status: str = "active", created_at: str = "2024-03-01T10:00:00Z", **extra) -> Dict[str, Any]:
    conversation = {
        "id": conv_id,
        "number": 1000 + conv_id,
        "subject": f"Conversation {conv_id}",
        "status": status,
        "preview": "Hello there",
        "mailboxId": 1,
        "createdAt": created_at,
        "primaryCustomer": {"id": 77, "first": "Ada", "last": "Lovelace", "email": "ada@example.com"},
        "tags": [{"id": 1, "tag": "billing"}],
    }
    conversation.update(extra)
    return conversation


def make_thread(thread_id: int, thread_type: str, created_at: str, body: str = "<p>Hi</p>", **extra) -> Dict[str, Any]:
    thread = {
        "id": thread_id,
        "type": thread_type,
        "state": "published",
        "createdAt": created_at,
        "body": body,
        "createdBy": {"id": 5, "first": "Sam", "last": "Agent", "type": "user" if thread_type != "customer" else "customer"},
    }
    thread.update(extra)
    return thread


class FakeHelpScout:
    """Minimal Mailbox API: token exchange, mailboxes, paged conversations and threads."""

    PAGE_SIZE = 25

    def __init__(self):
        self.token_requests = 0
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.status_failures: Dict[str, int] = {}
        self.thread_failures: Dict[str, int] = {}
        self.mailboxes = [
            {"id": 1, "name": "Support", "email": "support@example.com"},
            {"id": 2, "name": "Billing", "email": "billing@example.com"},
        ]
        self.conversations: Dict[str, List[Dict[str, Any]]] = {"active": [], "pending": [], "closed": []}
        self.threads: Dict[str, List[Dict[str, Any]]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def api_requests(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (path is None or _api_path(r) == path)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = _api_path(request)
        if request.method == "POST" and path == TOKEN_PATH:
            self.token_requests += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_requests}", "token_type": "bearer", "expires_in": 7200},
            )

        self.requests.append(request)

        route = self.routes.get((request.method, path))
        if route is not None:
            if callable(route):
                return route(request)
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)

        if request.method == "GET" and path == "/mailboxes":
            return httpx.Response(200, json={"_embedded": {"mailboxes": self.mailboxes}})

        if request.method == "GET" and path == "/conversations":
            status = request.url.params.get("status", "all")
            if status in self.status_failures:
                return httpx.Response(self.status_failures[status], json={"message": f"{status} is broken"})
            if status == "all":
                records = [c for group in self.conversations.values() for c in group]
            else:
                records = self.conversations.get(status, [])
            return self._page(request, "conversations", records)

        match = re.fullmatch(r"/conversations/(\d+)/threads", path)
        if request.method == "GET" and match:
            conv_id = match.group(1)
            if conv_id in self.thread_failures:
                return httpx.Response(self.thread_failures[conv_id], json={"message": "threads unavailable"})
            return self._page(request, "threads", self.threads.get(conv_id, []))

        match = re.fullmatch(r"/conversations/(\d+)", path)
        if request.method == "GET" and match:
            for group in self.conversations.values():
                for conv in group:
                    if str(conv["id"]) == match.group(1):
                        return httpx.Response(200, json=conv)

        return httpx.Response(404, json={"message": "Not Found"})

    def _page(self, request: httpx.Request, key: str, records: List[Dict[str, Any]]) -> httpx.Response:
        page = int(request.url.params.get("page", 1))
        start = (page - 1) * self.PAGE_SIZE
        chunk = records[start:start + self.PAGE_SIZE]
        total_pages = max(1, -(-len(records) // self.PAGE_SIZE))
        body: Dict[str, Any] = {
            "_embedded": {key: chunk},
            "page": {"size": self.PAGE_SIZE, "totalElements": len(records), "totalPages": total_pages, "number": page},
            "_links": {},
        }
        if page < total_pages:
            body["_links"]["next"] = {"href": f"{request.url.path}?page={page + 1}"}
        return httpx.Response(200, json=body)


def _api_path(request: httpx.Request) -> str:
    path = request.url.path
    return path[len("/v2"):] if path.startswith("/v2/") else path


# -- Fixtures --


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for settings isolated from any local .env file."""

    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "HELPSCOUT_APP_ID": "test-app-id",
            "HELPSCOUT_APP_SECRET": "test-app-secret",
            "HELPSCOUT_DOCS_API_KEY": "docs-key",
            "HELPSCOUT_ALLOW_SEND_REPLY": False,
            "HELPSCOUT_ALLOW_DOCS_DELETE": False,
            "REDACT_MESSAGE_CONTENT": False,
            "HELPSCOUT_VERBOSE_RESPONSES": False,
            "RETRY_BASE_DELAY": 0.0,
            "RETRY_MAX_DELAY": 0.0,
            "LOG_JSON": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def fake_api() -> FakeHelpScout:
    return FakeHelpScout()


@pytest.fixture
async def dispatcher(settings, fake_api):
    dispatcher = create_dispatcher(settings, transport=fake_api.transport)
    yield dispatcher
    await dispatcher.close()
