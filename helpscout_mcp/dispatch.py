"""
Tool dispatch: validate, run and annotate one tool call.

This layer is protocol-agnostic; ``main.py`` adapts its ``ToolResult`` to
FastMCP.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple, Type

from pydantic import ValidationError

from .constraints import (
    ValidationContext,
    generate_tool_guidance,
    validate_tool_call,
    validation_failure_payload,
)
from .conversation_tools import ConversationTools
from .docs_tools import DocsTools
from .errors import ApiError, ErrorCode
from .models import TOOL_INPUTS, ToolInput
from .utils.logging import bind_tool_call, get_logger, unbind_tool_call

logger = get_logger(__name__)

MAX_CALL_HISTORY = 50
MAX_SESSIONS = 256

Handler = Callable[[Any], Awaitable[Dict[str, Any]]]


@dataclass
class ToolResult:
    payload: Dict[str, Any]
    is_error: bool = False


class ToolDispatcher:
    """Maps tool names to handlers and runs the validate/call/guide pipeline."""

    def __init__(self, conversation_tools: ConversationTools, docs_tools: Optional[DocsTools] = None):
        self.conversation_tools = conversation_tools
        self.docs_tools = docs_tools
        self._histories: "OrderedDict[Hashable, List[str]]" = OrderedDict()
        self._handlers: Dict[str, Tuple[Type[ToolInput], Handler]] = {}

        for name in (
            "search_inboxes",
            "list_all_inboxes",
            "search_conversations",
            "structured_conversation_filter",
            "get_conversation",
            "get_conversation_summary",
            "get_threads",
            "get_server_time",
            "create_reply",
            "create_conversation",
            "update_conversation",
        ):
            self._handlers[name] = (TOOL_INPUTS[name], getattr(conversation_tools, name))

        if docs_tools is not None:
            for name in (
                "list_docs_sites",
                "list_docs_collections",
                "list_docs_categories",
                "list_docs_articles",
                "get_docs_article",
                "search_docs_articles",
                "create_docs_article",
                "update_docs_article",
                "delete_docs_article",
                "test_docs_connection",
                "clear_docs_cache",
            ):
                self._handlers[name] = (TOOL_INPUTS[name], getattr(docs_tools, name))

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def call_history(self, session_key: Hashable = None) -> List[str]:
        """Successful tool calls made so far in one client session, oldest first."""
        return list(self._histories.get(session_key, ()))

    async def close(self):
        """Close the underlying API clients."""
        await self.conversation_tools.client.close()
        if self.docs_tools is not None:
            await self.docs_tools.client.close()

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        user_query: Optional[str] = None,
        session_key: Hashable = None,
    ) -> ToolResult:
        """
        Validate, run and annotate one tool call.

        Args:
            name: Tool name
            arguments: Raw tool arguments; ``None`` values count as absent
            user_query: The user's request behind this call, for context rules
            session_key: Identifies the client session whose call history applies
        """
        arguments = {k: v for k, v in (arguments or {}).items() if v is not None}
        request_id = bind_tool_call(name)
        started = time.perf_counter()
        logger.info("Tool call started", extra={"data": {"tool": name, "request_id": request_id}})

        try:
            result = await self._run(name, arguments, user_query, session_key)
        finally:
            unbind_tool_call()

        logger.info(
            "Tool call finished",
            extra={"data": {
                "tool": name,
                "request_id": request_id,
                "is_error": result.is_error,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            }}
        )
        return result

    async def _run(
        self, name: str, arguments: Dict[str, Any], user_query: Optional[str], session_key: Hashable
    ) -> ToolResult:
        entry = self._handlers.get(name)
        if entry is None:
            return ToolResult(
                {"error": {"code": ErrorCode.TOOL_ERROR.value, "message": f"Unknown tool: {name}"}},
                is_error=True,
            )
        model, handler = entry

        context = ValidationContext(
            tool_name=name,
            arguments=arguments,
            user_query=user_query,
            previous_calls=tuple(self._histories.get(session_key, ())),
        )
        validation = validate_tool_call(context)
        if not validation.is_valid:
            logger.warning(
                "Tool call failed constraint validation",
                extra={"data": {"tool": name, "errors": validation.errors}}
            )
            return ToolResult(validation_failure_payload(validation))

        try:
            parsed = model.model_validate(arguments)
        except ValidationError as e:
            return ToolResult(
                {"error": {
                    "code": ErrorCode.INVALID_INPUT.value,
                    "message": f"Invalid arguments for {name}",
                    "details": [
                        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                        for err in e.errors()
                    ],
                }},
                is_error=True,
            )

        try:
            payload = await handler(parsed)
        except ApiError as e:
            logger.error("Tool call failed", extra={"data": {"tool": name, **e.to_dict()}})
            return ToolResult({"error": e.to_dict()}, is_error=True)

        self._record_call(session_key, name)

        guidance = generate_tool_guidance(name, payload, context)
        if guidance:
            payload["api_guidance"] = guidance
        return ToolResult(payload)

    def _record_call(self, session_key: Hashable, name: str) -> None:
        history = self._histories.setdefault(session_key, [])
        self._histories.move_to_end(session_key)
        history.append(name)
        if len(history) > MAX_CALL_HISTORY:
            del history[:-MAX_CALL_HISTORY]
        # least recently active sessions go first
        while len(self._histories) > MAX_SESSIONS:
            self._histories.popitem(last=False)


def create_dispatcher(settings, transport=None) -> ToolDispatcher:
    """
    Wire clients and tool classes for one server process.

    Args:
        settings: Loaded ``Settings``
        transport: Optional httpx transport shared by both API clients (tests)
    """
    from .client import HelpScoutClient
    from .docs_client import DocsClient

    client = HelpScoutClient.from_settings(settings, transport=transport)
    conversation_tools = ConversationTools(client, settings)

    docs_tools = None
    if settings.docs_enabled:
        docs_tools = DocsTools(DocsClient.from_settings(settings, transport=transport), settings)

    return ToolDispatcher(conversation_tools, docs_tools)
