"""
Conversation Tools - Mailbox API operations.

Each method takes a parsed input model and returns a JSON-ready dict.
Upstream failures propagate as ``ApiError`` for the dispatcher to render.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .errors import ApiError
from .formatting import body_text, format_reply_html
from .models import (
    ConversationSummaryInput,
    CreateConversationInput,
    CreateReplyInput,
    GetConversationInput,
    GetServerTimeInput,
    GetThreadsInput,
    ListAllInboxesInput,
    SearchConversationsInput,
    SearchInboxesInput,
    StructuredConversationFilterInput,
    UpdateConversationInput,
)
from .pagination import fetch_conversation_pages, fetch_thread_pages
from .queries import append_created_at_filter, apply_created_before_filter, build_customer_ids_query, normalize_date
from .search import SearchAggregator, build_pagination
from .slim import slim_conversation, slim_inbox, slim_thread
from .transcripts import build_transcript
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .client import HelpScoutClient
    from .config import Settings

logger = get_logger(__name__)

CONVERSATIONS_CACHE_PREFIX = "GET:/conversations"


class ConversationTools:
    """Conversation, thread and inbox operations via the Mailbox API."""

    def __init__(self, client: "HelpScoutClient", settings: "Settings"):
        """
        Initialize conversation tools.

        Args:
            client: Authenticated Mailbox API client
            settings: Server settings (PII policy, reply spacing, gates)
        """
        self.client = client
        self.settings = settings
        self.search = SearchAggregator(client, settings)

    def _verbose(self, inp: Any) -> bool:
        return self.settings.is_verbose({"verbose": inp.verbose})

    def _redacted_threads(self, threads: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Raw thread records with bodies redacted unless PII is allowed."""
        if self.settings.allow_pii:
            return threads
        return [{**t, "body": body_text(t.get("body"), False)} for t in threads]

    # -- inboxes --

    async def search_inboxes(self, inp: SearchInboxesInput) -> Dict[str, Any]:
        response = await self.client.get("/mailboxes", {"page": 1, "size": inp.limit})
        mailboxes = (response.get("_embedded") or {}).get("mailboxes") or []

        needle = inp.query.strip().lower()
        matches = [
            m for m in mailboxes
            if not needle
            or needle in (m.get("name") or "").lower()
            or needle in (m.get("email") or "").lower()
        ][:inp.limit]

        return {
            "results": matches if self._verbose(inp) else [slim_inbox(m) for m in matches],
            "query": inp.query,
            "total_found": len(matches),
        }

    async def list_all_inboxes(self, inp: ListAllInboxesInput) -> Dict[str, Any]:
        response = await self.client.get("/mailboxes", {"page": 1, "size": inp.limit})
        mailboxes = ((response.get("_embedded") or {}).get("mailboxes") or [])[:inp.limit]
        return {
            "inboxes": mailboxes if self._verbose(inp) else [slim_inbox(m) for m in mailboxes],
            "total_count": len(mailboxes),
            "usage": "Pass an inbox id as inbox_id to search_conversations or structured_conversation_filter.",
        }

    # -- search --

    async def search_conversations(self, inp: SearchConversationsInput) -> Dict[str, Any]:
        return await self.search.search_conversations(inp)

    async def structured_conversation_filter(self, inp: StructuredConversationFilterInput) -> Dict[str, Any]:
        query = build_customer_ids_query(inp.customer_ids or [])
        query = append_created_at_filter(query, inp.created_after)

        params = {
            "mailbox": inp.inbox_id or self.settings.HELPSCOUT_DEFAULT_INBOX_ID,
            "folder": inp.folder_id,
            "status": inp.status,
            "tag": inp.tag,
            "assigned_to": inp.assigned_to,
            "number": inp.conversation_number,
            "modifiedSince": normalize_date(inp.modified_since, "modifiedSince") if inp.modified_since else None,
            "sortField": inp.sort_by,
            "sortOrder": inp.sort_order,
            "query": query,
        }
        page = await fetch_conversation_pages(self.client, params, inp.limit)
        fetched = page["conversations"]
        kept = apply_created_before_filter(fetched, inp.created_before)

        applied = {
            k: v for k, v in {
                "assigned_to": inp.assigned_to,
                "folder_id": inp.folder_id,
                "customer_ids": inp.customer_ids,
                "conversation_number": inp.conversation_number,
                "status": inp.status,
                "inbox_id": params["mailbox"],
                "tag": inp.tag,
                "created_after": inp.created_after,
                "created_before": inp.created_before,
                "modified_since": inp.modified_since,
                "sort_by": inp.sort_by,
                "sort_order": inp.sort_order,
            }.items() if v is not None
        }
        results = kept[:inp.limit]
        return {
            "results": results if self._verbose(inp) else [slim_conversation(c) for c in results],
            "applied_filters": applied,
            "pagination": build_pagination(
                len(results), page["total_available"], inp.created_before, len(fetched) - len(kept)
            ),
        }

    # -- single conversation --

    async def get_conversation(self, inp: GetConversationInput) -> Dict[str, Any]:
        params = {"embed": ",".join(inp.embed)} if inp.embed else None
        conversation = await self.client.get(f"/conversations/{inp.conversation_id}", params, ttl=0)
        embedded = conversation.get("_embedded") or {}
        threads = embedded.get("threads")

        if self._verbose(inp):
            if threads is None:
                return conversation
            return {
                **conversation,
                "_embedded": {**embedded, "threads": self._redacted_threads(threads)},
            }

        slim = slim_conversation(conversation)
        if threads is not None:
            slim["threads"] = [slim_thread(t, self.settings.allow_pii) for t in threads]
        return slim

    async def get_conversation_summary(self, inp: ConversationSummaryInput) -> Dict[str, Any]:
        conversation = await self.client.get(f"/conversations/{inp.conversation_id}")
        threads = await fetch_thread_pages(self.client, inp.conversation_id, 200)
        allow_pii = self.settings.allow_pii

        customer_threads = sorted(
            (t for t in threads if t.get("type") == "customer"),
            key=lambda t: t.get("createdAt") or "",
        )
        staff_replies = sorted(
            (t for t in threads if t.get("type") == "message" and t.get("createdBy") and t.get("state") != "draft"),
            key=lambda t: t.get("createdAt") or "",
            reverse=True,
        )

        def _message(thread: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if not thread:
                return None
            return {
                "id": thread.get("id"),
                "created_at": thread.get("createdAt"),
                "author": thread.get("createdBy"),
                "body": body_text(thread.get("body"), allow_pii),
            }

        return {
            "conversation": conversation if self._verbose(inp) else slim_conversation(conversation),
            "first_customer_message": _message(customer_threads[0] if customer_threads else None),
            "latest_staff_reply": _message(staff_replies[0] if staff_replies else None),
            "thread_count": len(threads),
        }

    async def get_threads(self, inp: GetThreadsInput) -> Dict[str, Any]:
        threads = await fetch_thread_pages(self.client, inp.conversation_id, inp.limit)
        allow_pii = self.settings.allow_pii

        if inp.format == "transcript":
            return {
                "conversation_id": inp.conversation_id,
                "transcript": build_transcript(threads, inp.limit, allow_pii),
            }

        if self._verbose(inp):
            rendered: List[Dict[str, Any]] = self._redacted_threads(threads)
        else:
            rendered = [slim_thread(t, allow_pii) for t in threads]
        return {
            "conversation_id": inp.conversation_id,
            "threads": rendered,
            "count": len(rendered),
        }

    async def get_server_time(self, inp: GetServerTimeInput) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "iso_time": now.isoformat(),
            "unix_time": int(now.timestamp()),
        }

    # -- mutations --

    async def create_reply(self, inp: CreateReplyInput) -> Dict[str, Any]:
        if not inp.draft and not self.settings.HELPSCOUT_ALLOW_SEND_REPLY:
            logger.warning(
                "Blocked non-draft reply",
                extra={"data": {"conversation_id": inp.conversation_id}}
            )
            return {
                "error": "Published replies are disabled",
                "message": (
                    "Sending non-draft replies requires HELPSCOUT_ALLOW_SEND_REPLY=true in the server "
                    "environment. Create the reply as a draft instead."
                ),
                "suggestion": "Call create_reply again with draft=true so a teammate can review and send it.",
            }

        body: Dict[str, Any] = {
            "text": format_reply_html(inp.text, self.settings.compact_replies),
            "customer": inp.customer.to_api(),
            "draft": inp.draft,
        }
        for key, value in (
            ("user", inp.user),
            ("assignTo", inp.assign_to),
            ("status", inp.status),
            ("cc", inp.cc),
            ("bcc", inp.bcc),
        ):
            if value is not None:
                body[key] = value

        response = await self.client.post_with_response(f"/conversations/{inp.conversation_id}/reply", body)
        self.client.clear_cache(f"GET:/conversations/{inp.conversation_id}")

        logger.info(
            "Reply created",
            extra={"data": {"conversation_id": inp.conversation_id, "draft": inp.draft, "thread_id": response["resource_id"]}}
        )
        return {
            "success": True,
            "conversation_id": inp.conversation_id,
            "thread_id": response["resource_id"],
            "draft": inp.draft,
            "message": (
                "Draft reply created successfully. It can be reviewed and sent from Help Scout."
                if inp.draft
                else "Reply sent successfully."
            ),
        }

    async def create_conversation(self, inp: CreateConversationInput) -> Dict[str, Any]:
        compact = self.settings.compact_replies
        threads = []
        for thread in inp.threads:
            payload: Dict[str, Any] = {"type": thread.type, "text": format_reply_html(thread.text, compact)}
            if thread.customer is not None:
                payload["customer"] = thread.customer.to_api()
            elif thread.type == "customer":
                payload["customer"] = inp.customer.to_api()
            if thread.draft is not None:
                payload["draft"] = thread.draft
            threads.append(payload)

        body: Dict[str, Any] = {
            "subject": inp.subject,
            "type": inp.type,
            "mailboxId": inp.mailbox_id,
            "customer": inp.customer.to_api(),
            "threads": threads,
            "status": inp.status,
        }
        for key, value in (
            ("assignTo", inp.assign_to),
            ("tags", inp.tags),
            ("imported", inp.imported),
            ("autoReply", inp.auto_reply),
            ("user", inp.user),
            ("createdAt", normalize_date(inp.created_at, "createdAt") if inp.created_at else None),
        ):
            if value is not None:
                body[key] = value

        response = await self.client.post_with_response("/conversations", body)
        conversation_id = response["resource_id"]

        # invalidate before re-fetching so list views see the new conversation
        self.client.clear_cache(CONVERSATIONS_CACHE_PREFIX)

        conversation = None
        if conversation_id:
            conversation = await self._refetch(conversation_id, self._verbose(inp))

        return {
            "success": True,
            "conversation_id": conversation_id,
            "conversation": conversation,
            "message": f"Conversation created in mailbox {inp.mailbox_id}.",
        }

    async def update_conversation(self, inp: UpdateConversationInput) -> Dict[str, Any]:
        path = f"/conversations/{inp.conversation_id}"
        updated: List[str] = []

        operations = []
        if inp.subject is not None:
            operations.append(({"op": "replace", "path": "/subject", "value": inp.subject}, "subject"))
        if inp.status is not None:
            operations.append(({"op": "replace", "path": "/status", "value": inp.status}, "status"))
        if inp.clears_assignee:
            operations.append(({"op": "remove", "path": "/assignTo"}, "assign_to"))
        elif inp.assign_to is not None:
            operations.append(({"op": "replace", "path": "/assignTo", "value": inp.assign_to}, "assign_to"))

        try:
            # the Mailbox API accepts one patch operation per request
            for operation, name in operations:
                await self.client.patch(path, operation)
                updated.append(name)

            if inp.tags is not None:
                await self.client.put(f"{path}/tags", {"tags": inp.tags})
                updated.append("tags")

            if inp.custom_fields is not None:
                await self.client.put(
                    f"{path}/fields",
                    {"fields": [{"id": f.id, "value": f.value} for f in inp.custom_fields]},
                )
                updated.append("custom_fields")
        except ApiError:
            if updated:
                logger.warning(
                    "Conversation partially updated",
                    extra={"data": {"conversation_id": inp.conversation_id, "updated_fields": updated}}
                )
            raise
        finally:
            # earlier requests may have landed even when a later one failed
            self.client.clear_cache(CONVERSATIONS_CACHE_PREFIX)

        conversation = await self._refetch(inp.conversation_id, self._verbose(inp))

        return {
            "success": True,
            "conversation_id": inp.conversation_id,
            "updated_fields": updated,
            "conversation": conversation,
        }

    async def _refetch(self, conversation_id: Any, verbose: bool = False) -> Optional[Dict[str, Any]]:
        """Fresh read after a mutation; a failure here does not undo the mutation."""
        try:
            conversation = await self.client.get(f"/conversations/{conversation_id}", ttl=0)
        except ApiError as e:
            logger.warning(
                "Could not re-fetch conversation after update",
                extra={"data": {"conversation_id": conversation_id, "error": e.to_dict()}}
            )
            return None
        return conversation if verbose else slim_conversation(conversation)
