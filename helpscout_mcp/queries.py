"""
Builders for the Mailbox API search query dialect.

The dialect is parenthesized boolean expressions of ``field:"value"`` tokens,
e.g. ``(body:"refund" OR subject:"refund") AND (createdAt:[2024-01-01T00:00:00Z TO *])``.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import ApiError, ErrorCode
from .utils.logging import get_logger

logger = get_logger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T[\d:.]+(Z|[+-]\d{2}:?\d{2})?)?$")


def escape_query_term(term: str) -> str:
    return term.replace("\\", "\\\\").replace('"', '\\"')


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 date or datetime; naive values are taken as UTC.

    Raises:
        ValueError: if the value is not a recognizable ISO-8601 date
    """
    value = value.strip()
    if not DATE_PATTERN.match(value):
        raise ValueError(f"not an ISO-8601 date: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_upstream_datetime(value: datetime) -> str:
    """Whole-second UTC ISO-8601; the upstream rejects fractional seconds."""
    return value.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_date(value: str, field: str = "date") -> str:
    try:
        return format_upstream_datetime(parse_iso_datetime(value))
    except ValueError as e:
        raise ApiError(
            ErrorCode.INVALID_INPUT,
            f"Invalid {field} date format: {value}. Use ISO-8601, e.g. 2024-01-31T00:00:00Z.",
        ) from e


def default_created_after(timeframe_days: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return format_upstream_datetime(now - timedelta(days=timeframe_days))


def created_at_clause(start: Optional[str], end: Optional[str] = None) -> Optional[str]:
    if not start and not end:
        return None
    return f"(createdAt:[{start or '*'} TO {end or '*'}])"


def append_created_at_filter(query: Optional[str], created_after: Optional[str]) -> Optional[str]:
    """AND a ``createdAt:[after TO *]`` clause onto ``query``."""
    clause = created_at_clause(normalize_date(created_after, "createdAfter")) if created_after else None
    if not clause:
        return query
    if not query:
        return clause
    return f"({query}) AND {clause}"


def _or_group(field: str, values: Iterable[str]) -> Optional[str]:
    tokens = [f'{field}:"{escape_query_term(v)}"' for v in values if v and v.strip()]
    if not tokens:
        return None
    return "(" + " OR ".join(tokens) + ")"


def build_keyword_query(terms: Sequence[str], search_in: Sequence[str]) -> str:
    """Each term matches any selected field; terms are OR-ed together."""
    fields: List[str] = []
    if "both" in search_in or "body" in search_in:
        fields.append("body")
    if "both" in search_in or "subject" in search_in:
        fields.append("subject")
    if not fields:
        fields = ["body", "subject"]

    clauses = []
    for term in terms:
        if not term or not term.strip():
            continue
        escaped = escape_query_term(term.strip())
        clauses.append("(" + " OR ".join(f'{f}:"{escaped}"' for f in fields) + ")")
    return " OR ".join(clauses)


def build_structured_query(
    content_terms: Optional[Sequence[str]] = None,
    subject_terms: Optional[Sequence[str]] = None,
    customer_email: Optional[str] = None,
    email_domain: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Field groups are OR-ed internally and AND-ed with each other."""
    groups = [
        _or_group("body", content_terms or []),
        _or_group("subject", subject_terms or []),
        _or_group("email", [customer_email] if customer_email else []),
        _or_group("email", [email_domain.lstrip("@")] if email_domain else []),
        _or_group("tag", tags or []),
    ]
    present = [g for g in groups if g]
    if not present:
        return None
    return " AND ".join(present)


def build_customer_ids_query(customer_ids: Sequence[int]) -> Optional[str]:
    if not customer_ids:
        return None
    return "(" + " OR ".join(f"customerIds:{cid}" for cid in customer_ids) + ")"


def apply_created_before_filter(
    conversations: List[Dict[str, Any]],
    created_before: Optional[str],
) -> List[Dict[str, Any]]:
    """Keep only records created strictly before ``created_before``."""
    if not created_before:
        return conversations

    try:
        cutoff = parse_iso_datetime(created_before)
    except ValueError as e:
        raise ApiError(
            ErrorCode.INVALID_INPUT,
            f"Invalid createdBefore date format: {created_before}. Use ISO-8601, e.g. 2024-01-31T00:00:00Z.",
        ) from e

    kept = []
    for conv in conversations:
        created = conv.get("createdAt")
        if not created:
            continue
        try:
            if parse_iso_datetime(created) < cutoff:
                kept.append(conv)
        except ValueError:
            logger.warning("Skipping record with unparseable createdAt", extra={"data": {"id": conv.get("id")}})

    if len(kept) != len(conversations):
        logger.warning(
            "createdBefore applied client-side",
            extra={"data": {"before": created_before, "fetched": len(conversations), "kept": len(kept)}}
        )
    return kept


def created_at_sort_key(conv: Dict[str, Any]) -> str:
    # ISO-8601 UTC strings from the API sort lexically
    return conv.get("createdAt") or ""
