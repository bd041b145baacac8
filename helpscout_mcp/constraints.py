"""
Pre-flight validation of tool arguments against Help Scout API quirks.

Rules are data: ``RULES`` maps a tool name to a list of ``Rule`` entries,
each a predicate over the raw argument dict plus the message shown when it
fails. Validation runs before any network call; a failure is returned to
the caller as an ordinary result so an assistant can correct itself.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .queries import parse_iso_datetime

NUMERIC_ID_RE = re.compile(r"^\d+$")
MAX_SEARCH_TERMS = 10
MAX_CUSTOMER_IDS = 100
UNIQUE_SORT_FIELDS = ("waitingSince", "customerName", "customerEmail")
INBOX_SCOPED_TOOLS = ("search_conversations", "structured_conversation_filter")


@dataclass
class ValidationContext:
    tool_name: str
    arguments: Dict[str, Any]
    user_query: Optional[str] = None
    previous_calls: Sequence[str] = ()


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    required_prerequisites: List[str] = field(default_factory=list)

    def fail(self, message: str, suggestion: Optional[str] = None, prerequisites: Sequence[str] = ()):
        self.is_valid = False
        self.errors.append(message)
        if suggestion and suggestion not in self.suggestions:
            self.suggestions.append(suggestion)
        for name in prerequisites:
            if name not in self.required_prerequisites:
                self.required_prerequisites.append(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": self.errors,
            "suggestions": self.suggestions,
            "required_prerequisites": self.required_prerequisites,
        }


@dataclass(frozen=True)
class Rule:
    check: Callable[[Dict[str, Any]], bool]
    message: str
    suggestion: Optional[str] = None
    prerequisites: Sequence[str] = ()


# -- predicates (True means the arguments pass) --

def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def present(name: str) -> Callable[[Dict[str, Any]], bool]:
    return lambda args: not _blank(args.get(name))


def numeric_id(name: str) -> Callable[[Dict[str, Any]], bool]:
    """Absent values pass; presence is a separate rule."""
    def check(args: Dict[str, Any]) -> bool:
        value = args.get(name)
        if value is None:
            return True
        if isinstance(value, bool):
            return False
        return bool(NUMERIC_ID_RE.match(str(value).strip()))
    return check


def positive_int(name: str) -> Callable[[Dict[str, Any]], bool]:
    def check(args: Dict[str, Any]) -> bool:
        value = args.get(name)
        if value is None:
            return True
        return isinstance(value, int) and not isinstance(value, bool) and value > 0
    return check


def iso_date(name: str) -> Callable[[Dict[str, Any]], bool]:
    def check(args: Dict[str, Any]) -> bool:
        value = args.get(name)
        if value is None:
            return True
        try:
            parse_iso_datetime(str(value))
        except ValueError:
            return False
        return True
    return check


def _customer_identified(args: Dict[str, Any]) -> bool:
    customer = args.get("customer")
    if customer is None:
        return True
    return isinstance(customer, dict) and (customer.get("id") is not None or not _blank(customer.get("email")))


def _customer_ids_valid(args: Dict[str, Any]) -> bool:
    ids = args.get("customer_ids")
    if ids is None:
        return True
    return isinstance(ids, list) and all(isinstance(i, int) and not isinstance(i, bool) and i > 0 for i in ids)


def _customer_ids_bounded(args: Dict[str, Any]) -> bool:
    return len(args.get("customer_ids") or []) <= MAX_CUSTOMER_IDS


def _has_unique_filter(args: Dict[str, Any]) -> bool:
    return (
        args.get("assigned_to") is not None
        or args.get("folder_id") is not None
        or bool(args.get("customer_ids"))
        or args.get("conversation_number") is not None
        or args.get("sort_by") in UNIQUE_SORT_FIELDS
    )


def _search_terms_bounded(args: Dict[str, Any]) -> bool:
    return len(args.get("search_terms") or []) <= MAX_SEARCH_TERMS


def _search_terms_not_blank(args: Dict[str, Any]) -> bool:
    return all(not _blank(term) for term in args.get("search_terms") or [])


def _date_range_ordered(args: Dict[str, Any]) -> bool:
    after, before = args.get("created_after"), args.get("created_before")
    if not after or not before:
        return True
    try:
        return parse_iso_datetime(str(after)) < parse_iso_datetime(str(before))
    except ValueError:
        # malformed dates are reported by the iso_date rules
        return True


def _has_update_fields(args: Dict[str, Any]) -> bool:
    if args.get("unassign") is True:
        return True
    return any(args.get(name) is not None for name in ("subject", "status", "assign_to", "tags", "custom_fields"))


def _has_threads(args: Dict[str, Any]) -> bool:
    threads = args.get("threads")
    return isinstance(threads, list) and len(threads) > 0


# -- rule table --

_ID_SUGGESTION = (
    "Conversation IDs are numeric (e.g. 123456). Find them with search_conversations "
    "or structured_conversation_filter; do not use the ticket number shown in the UI."
)

CONVERSATION_ID_RULES = [
    Rule(present("conversation_id"), "conversation_id is required", _ID_SUGGESTION, ("search_conversations",)),
    Rule(numeric_id("conversation_id"), "Invalid conversation ID format", _ID_SUGGESTION, ("search_conversations",)),
]

_DATE_SUGGESTION = "Use ISO-8601 dates such as 2024-01-31 or 2024-01-31T00:00:00Z."

RULES: Dict[str, List[Rule]] = {
    "get_conversation": CONVERSATION_ID_RULES,
    "get_conversation_summary": CONVERSATION_ID_RULES,
    "get_threads": CONVERSATION_ID_RULES,
    "create_reply": CONVERSATION_ID_RULES + [
        Rule(present("text"), "text is required", "Provide the reply body as HTML or plain text."),
        Rule(present("customer"), "customer is required",
             "Pass the conversation's customer as {id} or {email}; get_conversation_summary shows it."),
        Rule(_customer_identified, "customer must include an id or an email",
             "Pass the conversation's customer as {id} or {email}."),
    ],
    "update_conversation": CONVERSATION_ID_RULES + [
        Rule(_has_update_fields, "At least one field to update is required",
             "Provide at least one of subject, status, assign_to, unassign, tags or custom_fields."),
    ],
    "create_conversation": [
        Rule(present("mailbox_id"), "mailbox_id is required",
             "Find the inbox id with search_inboxes or list_all_inboxes.", ("search_inboxes",)),
        Rule(positive_int("mailbox_id"), "mailbox_id must be a positive integer",
             "Find the inbox id with search_inboxes or list_all_inboxes.", ("search_inboxes",)),
        Rule(_has_threads, "At least one thread is required", "Provide the initial message as threads=[{type, text}]."),
    ],
    "search_conversations": [
        Rule(numeric_id("inbox_id"), "Invalid inbox ID format",
             "inbox_id must be the numeric id returned by search_inboxes, not the inbox name.", ("search_inboxes",)),
        Rule(_search_terms_bounded, f"Too many search terms (maximum {MAX_SEARCH_TERMS})",
             "Split the search into several calls or use fewer, more specific terms."),
        Rule(_search_terms_not_blank, "Search terms must not be empty", "Remove blank entries from search_terms."),
        Rule(iso_date("created_after"), "Invalid created_after date format", _DATE_SUGGESTION),
        Rule(iso_date("created_before"), "Invalid created_before date format", _DATE_SUGGESTION),
        Rule(_date_range_ordered, "created_after must be earlier than created_before",
             "Swap the dates or widen the range."),
    ],
    "structured_conversation_filter": [
        Rule(numeric_id("inbox_id"), "Invalid inbox ID format",
             "inbox_id must be the numeric id returned by search_inboxes.", ("search_inboxes",)),
        Rule(positive_int("folder_id"), "folder_id must be a positive integer",
             "Folder IDs come from the Help Scout folders API for the inbox."),
        Rule(positive_int("conversation_number"), "conversation_number must be a positive integer",
             "Use the ticket number shown in the Help Scout UI, e.g. 4821."),
        Rule(_customer_ids_valid, "customer_ids must be positive integers",
             "Customer IDs are numeric; find them in conversation results."),
        Rule(_customer_ids_bounded, f"customer_ids accepts at most {MAX_CUSTOMER_IDS} IDs",
             "Split the filter into several calls."),
        Rule(_has_unique_filter,
             "structured_conversation_filter requires a unique field",
             "Provide assigned_to, folder_id, customer_ids, conversation_number, or sort_by "
             "waitingSince/customerName/customerEmail. For keyword or email searches use search_conversations.",
             ("search_conversations",)),
        Rule(iso_date("created_after"), "Invalid created_after date format", _DATE_SUGGESTION),
        Rule(iso_date("created_before"), "Invalid created_before date format", _DATE_SUGGESTION),
        Rule(iso_date("modified_since"), "Invalid modified_since date format", _DATE_SUGGESTION),
    ],
    "get_docs_article": [Rule(present("article_id"), "article_id is required", "Find articles with search_docs_articles.")],
    "update_docs_article": [Rule(present("article_id"), "article_id is required", "Find articles with search_docs_articles.")],
    "delete_docs_article": [Rule(present("article_id"), "article_id is required", "Find articles with search_docs_articles.")],
}


# -- context rule: inbox named in the user's request --

_GENERIC_INBOX_WORDS = {
    "the", "my", "our", "your", "their", "his", "her", "this", "that", "these", "those",
    "a", "an", "any", "all", "every", "each", "same", "other", "which", "what", "whose",
    "in", "from", "to", "of", "across", "into", "per", "shared", "default", "one", "another",
}
_QUOTED_INBOX_RE = re.compile(r"[\"']([^\"']{2,})[\"']\s+(?:inbox|mailbox)\b", re.IGNORECASE)
_CALLED_INBOX_RE = re.compile(r"\b(?:inbox|mailbox)\s+(?:named|called)\s+[\"']?([\w][\w&-]*)", re.IGNORECASE)
_WORD_INBOX_RE = re.compile(r"\b([\w][\w&-]*)\s+(?:inbox|mailbox)\b", re.IGNORECASE)


def mentioned_inbox_name(user_query: Optional[str]) -> Optional[str]:
    """Return the inbox name a request refers to, or None for generic mentions."""
    if not user_query:
        return None
    for pattern in (_QUOTED_INBOX_RE, _CALLED_INBOX_RE, _WORD_INBOX_RE):
        for match in pattern.finditer(user_query):
            name = match.group(1).strip()
            if name.lower() not in _GENERIC_INBOX_WORDS:
                return name
    return None


def _check_inbox_context(ctx: ValidationContext, result: ValidationResult) -> None:
    if ctx.tool_name not in INBOX_SCOPED_TOOLS or not _blank(ctx.arguments.get("inbox_id")):
        return
    name = mentioned_inbox_name(ctx.user_query)
    if not name:
        return

    if "search_inboxes" in ctx.previous_calls:
        result.fail(
            "Inbox mentioned in query but no inbox_id provided",
            f"Use the id of the '{name}' inbox from your earlier search_inboxes result as inbox_id.",
        )
    else:
        result.fail(
            "Inbox mentioned in query but no inbox_id provided",
            f"Call search_inboxes with query='{name}' first, then pass the returned id as inbox_id.",
            ("search_inboxes",),
        )


def validate_tool_call(ctx: ValidationContext) -> ValidationResult:
    """Run the rule table and context rules for one tool call."""
    result = ValidationResult()
    args = ctx.arguments or {}
    for rule in RULES.get(ctx.tool_name, []):
        if not rule.check(args):
            result.fail(rule.message, rule.suggestion, rule.prerequisites)
    _check_inbox_context(ctx, result)
    return result


def validation_failure_payload(result: ValidationResult) -> Dict[str, Any]:
    return {
        "error": "API Constraint Validation Failed",
        "details": result.to_dict(),
        "api_requirements": {
            "message": "This call violates Help Scout API constraints",
            "required_actions": [f"Call {name} first" for name in result.required_prerequisites],
            "suggestions": result.suggestions,
        },
    }


# -- advisory guidance after a successful call --

def _conversation_count(result: Dict[str, Any]) -> int:
    if "results_by_status" in result:
        return sum(len(group.get("conversations") or []) for group in result["results_by_status"])
    return len(result.get("results") or [])


def generate_tool_guidance(tool_name: str, result: Any, ctx: Optional[ValidationContext] = None) -> List[str]:
    """Next-step hints for the caller; never blocks."""
    if not isinstance(result, dict) or "error" in result:
        return []

    guidance: List[str] = []
    if tool_name == "search_inboxes":
        if result.get("results"):
            guidance.append(
                "NEXT STEP: pass an inbox id from these results as inbox_id to "
                "search_conversations or structured_conversation_filter."
            )
        else:
            guidance.append("No inboxes matched. Call list_all_inboxes to see every inbox name.")

    elif tool_name == "list_all_inboxes":
        guidance.append("NEXT STEP: use an inbox id from this list as inbox_id when searching conversations.")

    elif tool_name in ("search_conversations", "structured_conversation_filter"):
        count = _conversation_count(result)
        if count:
            guidance.append(
                "NEXT STEP: call get_conversation_summary or get_threads with a conversation id from these results."
            )
        else:
            guidance.append(
                "No conversations found. Try widening timeframe_days, adding statuses "
                "(e.g. closed), or removing filters."
            )
            if ctx and not (ctx.arguments or {}).get("inbox_id"):
                guidance.append("Searches cover every inbox; pass inbox_id to scope them to one.")
        errors = (result.get("pagination") or {}).get("errors")
        if errors:
            failed = ", ".join(e["status"] for e in errors)
            guidance.append(f"Some statuses could not be searched ({failed}); retry later for complete results.")

    elif tool_name == "get_conversation_summary":
        guidance.append("Use get_threads with format='transcript' to read the whole conversation.")

    elif tool_name == "create_reply" and result.get("draft"):
        guidance.append("The reply is a draft; a teammate can review and send it from Help Scout.")

    elif tool_name == "list_docs_sites" and result.get("sites"):
        guidance.append("NEXT STEP: pass a site id as site_id to list_docs_collections.")

    elif tool_name == "list_docs_collections" and result.get("collections"):
        guidance.append("NEXT STEP: pass a collection id to list_docs_categories or list_docs_articles.")

    return guidance
