"""
Conversation transcripts: customer/staff dialogue only, oldest first,
as plain text under the PII policy.
"""

from typing import Any, Dict, List, TYPE_CHECKING

from .errors import aborts_fan_out
from .formatting import body_text
from .pagination import fetch_thread_pages
from .utils.concurrency import settle_all
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .client import HelpScoutClient

logger = get_logger(__name__)

DEFAULT_TRANSCRIPT_MESSAGES = 10
DIALOGUE_TYPES = ("customer", "message")
TRANSCRIPT_FETCH_ERROR = "Failed to fetch transcript"


def _author_name(thread: Dict[str, Any], role: str) -> str:
    # customer threads name the customer; createdBy can be the agent who logged it
    author = (thread.get("customer") if role == "customer" else None) or thread.get("createdBy") or {}
    first = author.get("first") or author.get("firstName") or ""
    last = author.get("last") or author.get("lastName") or ""
    name = f"{first} {last}".strip()
    return name or ("Customer" if role == "customer" else "Staff")


def build_transcript(
    threads: List[Dict[str, Any]],
    max_messages: int = DEFAULT_TRANSCRIPT_MESSAGES,
    allow_pii: bool = True,
) -> List[Dict[str, Any]]:
    """Filter out notes, line items and drafts; sort ascending; truncate."""
    dialogue = [
        t for t in threads
        if t.get("type") in DIALOGUE_TYPES and t.get("state") != "draft"
    ]
    dialogue.sort(key=lambda t: t.get("createdAt") or "")

    transcript = []
    for thread in dialogue[:max_messages]:
        role = "customer" if thread.get("type") == "customer" else "staff"
        transcript.append({
            "role": role,
            "from": _author_name(thread, role),
            "date": thread.get("createdAt"),
            "body": body_text(thread.get("body"), allow_pii),
            "attachments": len((thread.get("_embedded") or {}).get("attachments") or []),
        })
    return transcript


async def attach_transcripts(
    client: "HelpScoutClient",
    conversations: List[Dict[str, Any]],
    max_messages: int = DEFAULT_TRANSCRIPT_MESSAGES,
    allow_pii: bool = True,
) -> List[Dict[str, Any]]:
    """
    Return copies of ``conversations`` with a ``transcript`` attached to each.

    A failed fetch marks only that conversation; the batch still succeeds.
    """
    if not conversations:
        return conversations

    outcomes = await settle_all(
        [conv.get("id") for conv in conversations],
        [fetch_thread_pages(client, conv.get("id"), max_messages) for conv in conversations],
    )

    for outcome in outcomes:
        if not outcome.ok and aborts_fan_out(outcome.error):
            raise outcome.error

    enriched = []
    for conv, outcome in zip(conversations, outcomes):
        if outcome.ok:
            enriched.append({**conv, "transcript": build_transcript(outcome.value, max_messages, allow_pii)})
        else:
            logger.warning(
                "Transcript fetch failed",
                extra={"data": {"conversation_id": outcome.key, "error": str(outcome.error)}}
            )
            enriched.append({**conv, "transcript": None, "transcript_error": TRANSCRIPT_FETCH_ERROR})
    return enriched
