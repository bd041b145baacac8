"""
Auto-pagination over Mailbox API list endpoints.

The API silently caps page size (about 25 records), so callers cannot get a
large result in one request. Pages are followed while ``_links.next`` is
present, never by comparing against a total-pages count.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .utils.logging import get_logger

if TYPE_CHECKING:
    from .client import HelpScoutClient

logger = get_logger(__name__)

MAX_AUTO_PAGES = 40


def has_next_page(response: Dict[str, Any]) -> bool:
    return bool(((response or {}).get("_links") or {}).get("next"))


async def fetch_pages(
    client: "HelpScoutClient",
    path: str,
    params: Dict[str, Any],
    embedded_key: str,
    desired: int,
    max_pages: int = MAX_AUTO_PAGES,
    ttl: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Collect up to ``desired`` unique records from a paged list endpoint.

    Returns:
        ``{"items": [...], "total_available": int, "pages_fetched": int}``
    """
    items: List[Dict[str, Any]] = []
    seen = set()
    total_available: Optional[int] = None
    page = int(params.get("page") or 1)
    pages_fetched = 0

    while len(items) < desired and pages_fetched < max_pages:
        response = await client.get(path, {**params, "page": page}, ttl=ttl)
        pages_fetched += 1

        if total_available is None:
            total_available = ((response or {}).get("page") or {}).get("totalElements")

        for record in ((response or {}).get("_embedded") or {}).get(embedded_key) or []:
            record_id = record.get("id")
            if record_id is not None and record_id in seen:
                continue
            seen.add(record_id)
            items.append(record)
            if len(items) >= desired:
                break

        if not has_next_page(response):
            break
        page += 1

    if pages_fetched >= max_pages and len(items) < desired:
        logger.warning(
            "Stopped auto-pagination at page cap",
            extra={"data": {"path": path, "pages": pages_fetched, "collected": len(items)}}
        )

    return {
        "items": items,
        "total_available": total_available if total_available is not None else len(items),
        "pages_fetched": pages_fetched,
    }


async def fetch_conversation_pages(
    client: "HelpScoutClient",
    params: Dict[str, Any],
    desired: int,
) -> Dict[str, Any]:
    result = await fetch_pages(client, "/conversations", params, "conversations", desired)
    return {"conversations": result["items"], "total_available": result["total_available"]}


async def fetch_thread_pages(
    client: "HelpScoutClient",
    conversation_id: Any,
    desired: int,
) -> List[Dict[str, Any]]:
    result = await fetch_pages(
        client, f"/conversations/{conversation_id}/threads", {"page": 1}, "threads", desired
    )
    return result["items"]
