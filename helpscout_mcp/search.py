"""
Conversation search across statuses.

One search call picks a mode from the populated fields (keyword, then
structured, then plain listing), fans out one fetch per status, folds the
per-status outcomes and optionally enriches the results with transcripts.
"""

from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from .errors import ApiError, aborts_fan_out
from .models import DEFAULT_SEARCH_STATUSES, SearchConversationsInput
from .pagination import fetch_conversation_pages
from .queries import (
    append_created_at_filter,
    apply_created_before_filter,
    build_keyword_query,
    build_structured_query,
    created_at_sort_key,
    default_created_after,
    normalize_date,
)
from .slim import slim_conversation
from .transcripts import attach_transcripts
from .utils.concurrency import settle_all
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .client import HelpScoutClient
    from .config import Settings

logger = get_logger(__name__)

CREATED_BEFORE_NOTE = (
    "created_before is applied after fetching because the Help Scout API has no "
    "native upper date bound: total_available is the upstream count before filtering, "
    "returned is the count after filtering."
)


def build_pagination(
    returned: int,
    total_available: int,
    created_before: Optional[str] = None,
    filtered_out: int = 0,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    pagination: Dict[str, Any] = {"returned": returned, "total_available": total_available}
    if created_before:
        pagination["client_side_filtered"] = True
        pagination["filtered_out"] = filtered_out
        pagination["note"] = CREATED_BEFORE_NOTE
    if errors:
        pagination["errors"] = errors
    return pagination


def merge_conversations(groups: Sequence[List[Dict[str, Any]]], limit: int) -> List[Dict[str, Any]]:
    """Dedupe by id across groups, newest first, truncated to ``limit``."""
    seen = set()
    merged = []
    for group in groups:
        for conv in group:
            conv_id = conv.get("id")
            if conv_id in seen:
                continue
            seen.add(conv_id)
            merged.append(conv)
    merged.sort(key=created_at_sort_key, reverse=True)
    return merged[:limit]


class SearchAggregator:
    """Runs ``search_conversations`` against an injected Mailbox client."""

    def __init__(self, client: "HelpScoutClient", settings: "Settings"):
        self.client = client
        self.settings = settings

    async def search_conversations(self, inp: SearchConversationsInput) -> Dict[str, Any]:
        mode = inp.mode
        logger.info(
            "Searching conversations",
            extra={"data": {"mode": mode, "limit": inp.effective_limit, "transcripts": inp.include_transcripts}}
        )

        if mode == "keyword":
            result = await self._keyword_search(inp)
        elif mode == "structured":
            result = await self._structured_search(inp)
        else:
            result = await self._list_search(inp)

        if inp.include_transcripts:
            await self._enrich_with_transcripts(result, inp.transcript_max_messages)

        self._present(result, self.settings.is_verbose({"verbose": inp.verbose}))
        return result

    # -- modes --

    async def _keyword_search(self, inp: SearchConversationsInput) -> Dict[str, Any]:
        created_after = (
            normalize_date(inp.created_after, "createdAfter")
            if inp.created_after
            else default_created_after(inp.timeframe_days)
        )
        query = append_created_at_filter(build_keyword_query(inp.search_terms, inp.search_in), created_after)
        inbox_id = inp.inbox_id or self.settings.HELPSCOUT_DEFAULT_INBOX_ID
        params = {
            "query": query,
            "mailbox": inbox_id,
            "tag": inp.tag,
            "sortField": "createdAt",
            "sortOrder": "desc",
        }

        statuses = self._statuses(inp)
        entries, errors = await self._fan_out(params, statuses, inp.effective_limit, inp.created_before)

        results_by_status = []
        for status in statuses:
            if status in entries:
                entry = entries[status]
                results_by_status.append({
                    "status": status,
                    "count": len(entry["conversations"]),
                    "total_available": entry["total_available"],
                    "conversations": entry["conversations"],
                })
            else:
                error = next(e for e in errors if e["status"] == status)
                results_by_status.append({
                    "status": status,
                    "count": 0,
                    "total_available": 0,
                    "conversations": [],
                    "error": {"message": error["message"], "code": error["code"]},
                })

        returned = sum(group["count"] for group in results_by_status)
        total_available = sum(e["total_available"] for e in entries.values())
        filtered_out = sum(e["filtered_out"] for e in entries.values())
        return {
            "query": query,
            "search_terms": inp.search_terms,
            "created_after": created_after,
            "inbox_id": inbox_id,
            "total_conversations_found": returned,
            "total_available": total_available,
            "results_by_status": results_by_status,
            "pagination": build_pagination(returned, total_available, inp.created_before, filtered_out, errors),
        }

    async def _structured_search(self, inp: SearchConversationsInput) -> Dict[str, Any]:
        query = build_structured_query(
            content_terms=inp.content_terms,
            subject_terms=inp.subject_terms,
            customer_email=inp.customer_email,
            email_domain=inp.email_domain,
            tags=inp.tags,
        )
        query = append_created_at_filter(query, inp.created_after)
        params = {
            "query": query,
            "mailbox": inp.inbox_id or self.settings.HELPSCOUT_DEFAULT_INBOX_ID,
            "sortField": "createdAt",
            "sortOrder": "desc",
        }

        if inp.statuses:
            result = await self._merged_search(params, list(inp.statuses), inp)
        else:
            result = await self._single_status_search(params, inp.status or "all", inp)
        result["query"] = query
        return result

    async def _list_search(self, inp: SearchConversationsInput) -> Dict[str, Any]:
        query = append_created_at_filter(inp.query, inp.created_after)
        params = {
            "query": query,
            "mailbox": inp.inbox_id or self.settings.HELPSCOUT_DEFAULT_INBOX_ID,
            "tag": inp.tag,
            "sortField": inp.sort,
            "sortOrder": inp.order,
        }

        if inp.status and not inp.statuses:
            result = await self._single_status_search(params, inp.status, inp)
        else:
            result = await self._merged_search(params, self._statuses(inp), inp)
        if query:
            result["query"] = query
        return result

    # -- shared plumbing --

    @staticmethod
    def _statuses(inp: SearchConversationsInput) -> List[str]:
        if inp.statuses:
            return list(dict.fromkeys(inp.statuses))
        if inp.status and inp.status != "all":
            return [inp.status]
        return list(DEFAULT_SEARCH_STATUSES)

    async def _single_status_search(
        self, params: Dict[str, Any], status: str, inp: SearchConversationsInput
    ) -> Dict[str, Any]:
        entry = await self._fetch_status(params, status, inp.effective_limit, inp.created_before)
        conversations = entry["conversations"]
        return {
            "results": conversations,
            "status": status,
            "pagination": build_pagination(
                len(conversations), entry["total_available"], inp.created_before, entry["filtered_out"]
            ),
        }

    async def _merged_search(
        self, params: Dict[str, Any], statuses: List[str], inp: SearchConversationsInput
    ) -> Dict[str, Any]:
        entries, errors = await self._fan_out(params, statuses, inp.effective_limit, inp.created_before)
        merged = merge_conversations(
            [entries[s]["conversations"] for s in statuses if s in entries], inp.effective_limit
        )
        total_available = sum(e["total_available"] for e in entries.values())
        filtered_out = sum(e["filtered_out"] for e in entries.values())
        return {
            "results": merged,
            "statuses": statuses,
            "searched_statuses": [s for s in statuses if s in entries],
            "pagination": build_pagination(len(merged), total_available, inp.created_before, filtered_out, errors),
        }

    async def _fetch_status(
        self, params: Dict[str, Any], status: str, desired: int, created_before: Optional[str]
    ) -> Dict[str, Any]:
        page = await fetch_conversation_pages(self.client, {**params, "status": status}, desired)
        fetched = page["conversations"]
        kept = apply_created_before_filter(fetched, created_before)
        return {
            "status": status,
            "conversations": kept[:desired],
            "total_available": page["total_available"],
            "filtered_out": len(fetched) - len(kept),
        }

    async def _fan_out(
        self,
        params: Dict[str, Any],
        statuses: List[str],
        desired: int,
        created_before: Optional[str],
    ):
        """
        Fetch every status concurrently and fold the outcomes.

        Returns:
            ``(entries_by_status, errors)`` where ``errors`` lists the statuses
            that degraded to empty results

        Raises:
            ApiError: UNAUTHORIZED / INVALID_INPUT from any branch
        """
        outcomes = await settle_all(
            statuses,
            [self._fetch_status(params, status, desired, created_before) for status in statuses],
        )

        for outcome in outcomes:
            if outcome.ok:
                continue
            if aborts_fan_out(outcome.error) or not isinstance(outcome.error, ApiError):
                raise outcome.error

        entries: Dict[str, Dict[str, Any]] = {}
        errors: List[Dict[str, Any]] = []
        for outcome in outcomes:
            if outcome.ok:
                entries[outcome.key] = outcome.value
            else:
                logger.warning(
                    "Status search failed; continuing with remaining statuses",
                    extra={"data": {"status": outcome.key, "code": outcome.error.code.value}}
                )
                errors.append({
                    "status": outcome.key,
                    "message": outcome.error.message,
                    "code": outcome.error.code.value,
                })
        return entries, errors

    async def _enrich_with_transcripts(self, result: Dict[str, Any], max_messages: int) -> None:
        allow_pii = self.settings.allow_pii
        if "results_by_status" in result:
            for group in result["results_by_status"]:
                group["conversations"] = await attach_transcripts(
                    self.client, group["conversations"], max_messages, allow_pii
                )
        else:
            result["results"] = await attach_transcripts(self.client, result["results"], max_messages, allow_pii)
        result["include_transcripts"] = True
        result["transcript_max_messages"] = max_messages

    @staticmethod
    def _present(result: Dict[str, Any], verbose: bool) -> None:
        if verbose:
            return
        if "results_by_status" in result:
            for group in result["results_by_status"]:
                group["conversations"] = [slim_conversation(c) for c in group["conversations"]]
        else:
            result["results"] = [slim_conversation(c) for c in result["results"]]
