"""Pydantic input models for every tool, keyed by tool name in ``TOOL_INPUTS``."""

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

ConversationStatus = Literal["active", "pending", "closed", "spam", "open", "all"]
SortOrder = Literal["asc", "desc"]

DEFAULT_SEARCH_STATUSES = ("active", "pending", "closed")
DEFAULT_SEARCH_LIMIT = 50
DEFAULT_TRANSCRIPT_SEARCH_LIMIT = 10


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    verbose: Optional[bool] = Field(None, description="Return full upstream records instead of slim ones")


class CustomerRef(BaseModel):
    """A customer given either by id or by email (optionally with a name)."""

    id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @model_validator(mode="after")
    def require_id_or_email(self):
        if self.id is None and not self.email:
            raise ValueError("customer needs either an id or an email")
        return self

    def to_api(self) -> Dict[str, Any]:
        if self.id is not None:
            return {"id": self.id}
        payload = {"email": self.email}
        if self.first_name:
            payload["firstName"] = self.first_name
        if self.last_name:
            payload["lastName"] = self.last_name
        return payload


# -- conversation tools --

class SearchInboxesInput(ToolInput):
    query: str = Field(..., description="Substring of the inbox name or email; empty lists all")
    limit: int = Field(50, ge=1, le=100)


class ListAllInboxesInput(ToolInput):
    limit: int = Field(100, ge=1, le=100)


class SearchConversationsInput(ToolInput):
    # keyword mode
    search_terms: Optional[List[str]] = None
    search_in: List[Literal["body", "subject", "both"]] = Field(default_factory=lambda: ["both"])
    timeframe_days: int = Field(60, ge=1, le=3650)

    # structured mode
    content_terms: Optional[List[str]] = None
    subject_terms: Optional[List[str]] = None
    customer_email: Optional[str] = None
    email_domain: Optional[str] = None
    tags: Optional[List[str]] = None

    # shared / listing mode
    query: Optional[str] = None
    inbox_id: Optional[str] = None
    tag: Optional[str] = None
    status: Optional[ConversationStatus] = None
    statuses: Optional[List[ConversationStatus]] = None
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1, le=200)
    sort: Literal["createdAt", "modifiedAt", "number"] = "createdAt"
    order: SortOrder = "desc"

    include_transcripts: bool = False
    transcript_max_messages: int = Field(10, ge=1, le=50)

    @property
    def effective_limit(self) -> int:
        if self.limit is not None:
            return self.limit
        return DEFAULT_TRANSCRIPT_SEARCH_LIMIT if self.include_transcripts else DEFAULT_SEARCH_LIMIT

    @property
    def mode(self) -> str:
        if self.search_terms:
            return "keyword"
        if self.content_terms or self.subject_terms or self.customer_email or self.email_domain or self.tags:
            return "structured"
        return "list"


class StructuredConversationFilterInput(ToolInput):
    assigned_to: Optional[int] = Field(None, description="User ID; -1 for unassigned")
    folder_id: Optional[int] = None
    customer_ids: Optional[List[int]] = None
    conversation_number: Optional[int] = None
    status: ConversationStatus = "all"
    inbox_id: Optional[str] = None
    tag: Optional[str] = None
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    modified_since: Optional[str] = None
    sort_by: Literal[
        "createdAt", "modifiedAt", "number", "waitingSince", "customerName",
        "customerEmail", "mailboxId", "status", "subject",
    ] = "createdAt"
    sort_order: SortOrder = "desc"
    limit: int = Field(50, ge=1, le=200)


class GetConversationInput(ToolInput):
    conversation_id: str
    embed: Optional[List[Literal["threads"]]] = None


class ConversationSummaryInput(ToolInput):
    conversation_id: str


class GetThreadsInput(ToolInput):
    conversation_id: str
    format: Literal["full", "transcript"] = "full"
    limit: int = Field(200, ge=1, le=1000)


class GetServerTimeInput(ToolInput):
    pass


class CreateReplyInput(ToolInput):
    conversation_id: str
    text: str = Field(..., min_length=1)
    customer: CustomerRef
    draft: bool = True
    user: Optional[int] = None
    assign_to: Optional[int] = None
    status: Optional[Literal["active", "closed", "open", "pending", "spam"]] = None
    cc: Optional[List[str]] = None
    bcc: Optional[List[str]] = None


class ThreadInput(BaseModel):
    type: Literal["customer", "note", "message"]
    text: str = Field(..., min_length=1)
    customer: Optional[CustomerRef] = None
    draft: Optional[bool] = None


class CreateConversationInput(ToolInput):
    subject: str = Field(..., min_length=1)
    type: Literal["email", "phone", "chat"]
    mailbox_id: int
    customer: CustomerRef
    threads: List[ThreadInput] = Field(..., min_length=1)
    status: Literal["active", "pending", "closed"] = "active"
    assign_to: Optional[int] = None
    tags: Optional[List[str]] = None
    imported: Optional[bool] = None
    auto_reply: Optional[bool] = None
    user: Optional[int] = None
    created_at: Optional[str] = None


class CustomFieldValue(BaseModel):
    id: int
    value: str


class UpdateConversationInput(ToolInput):
    conversation_id: str
    subject: Optional[str] = None
    status: Optional[Literal["active", "pending", "closed", "spam"]] = None
    assign_to: Optional[int] = Field(None, description="User ID to assign to")
    tags: Optional[List[str]] = None
    custom_fields: Optional[List[CustomFieldValue]] = None
    unassign: bool = Field(False, description="Remove the current assignee")

    @property
    def clears_assignee(self) -> bool:
        return self.unassign or ("assign_to" in self.model_fields_set and self.assign_to is None)


# -- docs tools --

class ListDocsSitesInput(ToolInput):
    query: Optional[str] = None
    page: int = Field(1, ge=1)


class ListDocsCollectionsInput(ToolInput):
    site_id: Optional[str] = None
    site_query: Optional[str] = Field(None, description="Site name to resolve when site_id is unknown")
    visibility: Literal["all", "public", "private"] = "all"
    sort: Literal["number", "visibility", "order", "name", "createdAt", "updatedAt"] = "order"
    order: SortOrder = "asc"
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=100)


class ListDocsCategoriesInput(ToolInput):
    collection_id: str
    sort: Literal["number", "order", "name", "articleCount", "createdAt", "updatedAt"] = "order"
    order: SortOrder = "asc"
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=100)


class ListDocsArticlesInput(ToolInput):
    collection_id: Optional[str] = None
    category_id: Optional[str] = None
    status: Literal["all", "published", "notpublished"] = "all"
    sort: Literal["order", "number", "status", "name", "popularity", "createdAt", "updatedAt"] = "order"
    order: SortOrder = "asc"
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=100)

    @model_validator(mode="after")
    def exactly_one_parent(self):
        if bool(self.collection_id) == bool(self.category_id):
            raise ValueError("provide exactly one of collection_id or category_id")
        return self


class GetDocsArticleInput(ToolInput):
    article_id: str
    draft: bool = False


class SearchDocsArticlesInput(ToolInput):
    query: str = Field(..., min_length=1)
    collection_id: Optional[str] = None
    site_id: Optional[str] = None
    visibility: Literal["all", "public", "private"] = "all"
    status: Literal["all", "published", "notpublished"] = "published"
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)


class CreateDocsArticleInput(ToolInput):
    collection_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    status: Literal["published", "notpublished"] = "notpublished"
    slug: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class UpdateDocsArticleInput(ToolInput):
    article_id: str
    name: Optional[str] = None
    text: Optional[str] = None
    status: Optional[Literal["published", "notpublished"]] = None
    slug: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class DeleteDocsArticleInput(ToolInput):
    article_id: str


class NoArgsInput(ToolInput):
    pass


TOOL_INPUTS: Dict[str, Type[ToolInput]] = {
    "search_inboxes": SearchInboxesInput,
    "list_all_inboxes": ListAllInboxesInput,
    "search_conversations": SearchConversationsInput,
    "structured_conversation_filter": StructuredConversationFilterInput,
    "get_conversation": GetConversationInput,
    "get_conversation_summary": ConversationSummaryInput,
    "get_threads": GetThreadsInput,
    "get_server_time": GetServerTimeInput,
    "create_reply": CreateReplyInput,
    "create_conversation": CreateConversationInput,
    "update_conversation": UpdateConversationInput,
    "list_docs_sites": ListDocsSitesInput,
    "list_docs_collections": ListDocsCollectionsInput,
    "list_docs_categories": ListDocsCategoriesInput,
    "list_docs_articles": ListDocsArticlesInput,
    "get_docs_article": GetDocsArticleInput,
    "search_docs_articles": SearchDocsArticlesInput,
    "create_docs_article": CreateDocsArticleInput,
    "update_docs_article": UpdateDocsArticleInput,
    "delete_docs_article": DeleteDocsArticleInput,
    "test_docs_connection": NoArgsInput,
    "clear_docs_cache": NoArgsInput,
}
