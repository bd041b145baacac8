"""Reduced-field projections of Mailbox API records."""

from typing import Any, Dict, List, Optional

from .formatting import body_text


def _person(raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    person = {
        "id": raw.get("id"),
        "first": raw.get("first") or raw.get("firstName"),
        "last": raw.get("last") or raw.get("lastName"),
        "email": raw.get("email"),
    }
    return {k: v for k, v in person.items() if v is not None}


def _tag_names(tags: Optional[List[Any]]) -> List[str]:
    names = []
    for tag in tags or []:
        if isinstance(tag, dict):
            name = tag.get("tag") or tag.get("name")
        else:
            name = tag
        if name:
            names.append(str(name))
    return names


def slim_conversation(conv: Dict[str, Any]) -> Dict[str, Any]:
    created_by = conv.get("createdBy") or {}
    customer = created_by if created_by.get("type") == "customer" else conv.get("primaryCustomer") or conv.get("customer")

    slim = {
        "id": conv.get("id"),
        "number": conv.get("number"),
        "subject": conv.get("subject"),
        "status": conv.get("status"),
        "preview": conv.get("preview"),
        "mailbox_id": conv.get("mailboxId"),
        "assignee": _person(conv.get("assignee")),
        "customer": _person(customer),
        "tags": _tag_names(conv.get("tags")),
        "created_at": conv.get("createdAt"),
        "closed_at": conv.get("closedAt"),
        "waiting_since": (conv.get("customerWaitingSince") or {}).get("friendly"),
    }
    # transcript fields ride along when enrichment ran
    for key in ("transcript", "transcript_error"):
        if key in conv:
            slim[key] = conv[key]
    return {k: v for k, v in slim.items() if v is not None or k in ("transcript",)}


def slim_thread(thread: Dict[str, Any], allow_pii: bool) -> Dict[str, Any]:
    author = thread.get("createdBy") or {}
    slim = {
        "id": thread.get("id"),
        "type": thread.get("type"),
        "status": thread.get("status"),
        "state": thread.get("state"),
        "created_at": thread.get("createdAt"),
        "author": _person(author),
        "author_type": author.get("type"),
        "body": body_text(thread.get("body"), allow_pii),
        "attachments": len((thread.get("_embedded") or {}).get("attachments") or []),
    }
    return {k: v for k, v in slim.items() if v is not None}


def slim_inbox(mailbox: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": mailbox.get("id"),
        "name": mailbox.get("name"),
        "email": mailbox.get("email"),
    }
