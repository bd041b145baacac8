#!/usr/bin/env python3
"""
Help Scout MCP Server - conversations, inboxes and Docs knowledge base.

This is the main entry point for the Help Scout MCP server that exposes
the Help Scout Mailbox and Docs APIs as tools through FastMCP.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

import orjson
from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_context
from starlette.responses import JSONResponse

from helpscout_mcp import __version__
from helpscout_mcp.config import Settings, validate_config
from helpscout_mcp.dispatch import ToolDispatcher, create_dispatcher
from helpscout_mcp.errors import ConfigurationError
from helpscout_mcp.utils.logging import configure_logging, get_logger, log_config_state

# Load environment variables
load_dotenv()

settings = Settings()
configure_logging("helpscout-mcp-server", settings.LOG_LEVEL, settings.LOG_JSON)
logger = get_logger(__name__)

# FastMCP server
mcp = FastMCP(name="HelpScoutServer")

# Global dispatcher instance
dispatcher: Optional[ToolDispatcher] = None


def _session_key() -> int:
    """Identity of the MCP client session serving the current request."""
    return id(get_context().session)


async def _call(name: str, request_context: Optional[str] = None, **arguments: Any) -> Dict[str, Any]:
    """Run a tool through the dispatcher and map error results to ToolError."""
    if dispatcher is None:
        raise ToolError("Help Scout server is not initialized")

    result = await dispatcher.call_tool(
        name,
        arguments,
        user_query=request_context,
        session_key=_session_key(),
    )
    if result.is_error:
        raise ToolError(orjson.dumps(result.payload).decode("utf-8"))
    return result.payload


def setup_conversation_tools():
    """Set up Mailbox API tools."""

    @mcp.tool()
    async def search_inboxes(query: str, limit: int = 50, verbose: Optional[bool] = None) -> Dict[str, Any]:
        """
        Find inboxes (mailboxes) by name or email. Call this first whenever the user names an inbox.

        Args:
            query: Part of the inbox name or email; empty string lists all inboxes
            limit: Maximum number of inboxes to return (default: 50)
            verbose: Return full upstream records instead of id/name/email

        Returns:
            Matching inboxes with id, name and email
        """
        return await _call("search_inboxes", query=query, limit=limit, verbose=verbose)

    @mcp.tool()
    async def list_all_inboxes(limit: int = 100, verbose: Optional[bool] = None) -> Dict[str, Any]:
        """
        List every inbox with its id.

        Args:
            limit: Maximum number of inboxes to return (default: 100)
            verbose: Return full upstream records
        """
        return await _call("list_all_inboxes", limit=limit, verbose=verbose)

    @mcp.tool()
    async def search_conversations(
        search_terms: Optional[List[str]] = None,
        search_in: Optional[List[Literal["body", "subject", "both"]]] = None,
        timeframe_days: Optional[int] = None,
        content_terms: Optional[List[str]] = None,
        subject_terms: Optional[List[str]] = None,
        customer_email: Optional[str] = None,
        email_domain: Optional[str] = None,
        tags: Optional[List[str]] = None,
        query: Optional[str] = None,
        inbox_id: Optional[str] = None,
        tag: Optional[str] = None,
        status: Optional[Literal["active", "pending", "closed", "spam", "open", "all"]] = None,
        statuses: Optional[List[Literal["active", "pending", "closed", "spam", "open"]]] = None,
        created_after: Optional[str] = None,
        created_before: Optional[str] = None,
        limit: Optional[int] = None,
        sort: Optional[Literal["createdAt", "modifiedAt", "number"]] = None,
        order: Optional[Literal["asc", "desc"]] = None,
        include_transcripts: bool = False,
        transcript_max_messages: Optional[int] = None,
        request_context: Optional[str] = None,
        verbose: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Search conversations across statuses.

        Modes, first match wins:
        - keyword: search_terms, matched in body and/or subject, within timeframe_days
        - structured: content_terms, subject_terms, customer_email, email_domain, tags (AND-ed)
        - listing: plain filters (inbox_id, tag, status, dates, raw query)

        Active, pending and closed are searched in parallel unless status/statuses narrow it.
        created_before is applied after fetching; pagination reports both counts.

        Args:
            search_terms: Keywords; any term may match
            search_in: Where keywords match: body, subject or both (default: both)
            timeframe_days: Keyword mode look-back window in days (default: 60)
            content_terms: Words that must appear in message bodies
            subject_terms: Words that must appear in the subject
            customer_email: Exact customer email
            email_domain: Customer email domain, e.g. example.com
            tags: Tag names (any may match)
            query: Raw Help Scout query expression (listing mode)
            inbox_id: Numeric inbox id from search_inboxes
            tag: Single tag filter (listing mode)
            status: One status to search
            statuses: Several statuses to search in parallel
            created_after: ISO-8601 lower bound on creation time
            created_before: ISO-8601 upper bound on creation time (exclusive)
            limit: Maximum conversations (default: 50, or 10 with transcripts)
            sort: Sort field for listing mode (default: createdAt)
            order: asc or desc (default: desc)
            include_transcripts: Attach customer/staff message transcripts
            transcript_max_messages: Messages per transcript (default: 10)
            request_context: The user's original request, used to check that a named inbox was resolved
            verbose: Return full upstream records
        """
        return await _call(
            "search_conversations",
            request_context=request_context,
            search_terms=search_terms,
            search_in=search_in,
            timeframe_days=timeframe_days,
            content_terms=content_terms,
            subject_terms=subject_terms,
            customer_email=customer_email,
            email_domain=email_domain,
            tags=tags,
            query=query,
            inbox_id=inbox_id,
            tag=tag,
            status=status,
            statuses=statuses,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            sort=sort,
            order=order,
            include_transcripts=include_transcripts,
            transcript_max_messages=transcript_max_messages,
            verbose=verbose,
        )

    @mcp.tool()
    async def structured_conversation_filter(
        assigned_to: Optional[int] = None,
        folder_id: Optional[int] = None,
        customer_ids: Optional[List[int]] = None,
        conversation_number: Optional[int] = None,
        status: Optional[Literal["active", "pending", "closed", "spam", "open", "all"]] = None,
        inbox_id: Optional[str] = None,
        tag: Optional[str] = None,
        created_after: Optional[str] = None,
        created_before: Optional[str] = None,
        modified_since: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[Literal["asc", "desc"]] = None,
        limit: Optional[int] = None,
        request_context: Optional[str] = None,
        verbose: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Filter conversations by fields keyword search cannot reach.

        Requires at least one of assigned_to, folder_id, customer_ids, conversation_number,
        or sort_by waitingSince/customerName/customerEmail.

        Args:
            assigned_to: User id of the assignee (-1 for unassigned)
            folder_id: Folder id within the inbox
            customer_ids: Customer ids (up to 100)
            conversation_number: Ticket number shown in the Help Scout UI
            status: Status filter (default: all)
            inbox_id: Numeric inbox id from search_inboxes
            tag: Tag filter
            created_after: ISO-8601 lower bound on creation time
            created_before: ISO-8601 upper bound on creation time (exclusive)
            modified_since: ISO-8601 lower bound on last modification
            sort_by: createdAt, modifiedAt, number, waitingSince, customerName, customerEmail, mailboxId, status, subject
            sort_order: asc or desc (default: desc)
            limit: Maximum conversations (default: 50)
            request_context: The user's original request, used to check that a named inbox was resolved
            verbose: Return full upstream records
        """
        return await _call(
            "structured_conversation_filter",
            request_context=request_context,
            assigned_to=assigned_to,
            folder_id=folder_id,
            customer_ids=customer_ids,
            conversation_number=conversation_number,
            status=status,
            inbox_id=inbox_id,
            tag=tag,
            created_after=created_after,
            created_before=created_before,
            modified_since=modified_since,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            verbose=verbose,
        )

    @mcp.tool()
    async def get_conversation(
        conversation_id: str,
        embed: Optional[List[Literal["threads"]]] = None,
        verbose: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Get one conversation by id, always fresh from Help Scout.

        Args:
            conversation_id: Numeric conversation id
            embed: ["threads"] to include the message threads
            verbose: Return the full upstream record
        """
        return await _call("get_conversation", conversation_id=conversation_id, embed=embed, verbose=verbose)

    @mcp.tool()
    async def get_conversation_summary(conversation_id: str, verbose: Optional[bool] = None) -> Dict[str, Any]:
        """
        Summarize a conversation: metadata, first customer message and latest staff reply.

        Args:
            conversation_id: Numeric conversation id
            verbose: Return the full upstream conversation record
        """
        return await _call("get_conversation_summary", conversation_id=conversation_id, verbose=verbose)

    @mcp.tool()
    async def get_threads(
        conversation_id: str,
        format: Literal["full", "transcript"] = "full",
        limit: int = 200,
        verbose: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Get the message threads of a conversation.

        Args:
            conversation_id: Numeric conversation id
            format: full (every thread) or transcript (customer/staff dialogue as plain text)
            limit: Maximum threads (default: 200)
            verbose: Return full upstream thread records
        """
        return await _call(
            "get_threads", conversation_id=conversation_id, format=format, limit=limit, verbose=verbose
        )

    @mcp.tool()
    async def get_server_time() -> Dict[str, Any]:
        """Current server time, for computing relative date filters."""
        return await _call("get_server_time")

    @mcp.tool()
    async def create_reply(
        conversation_id: str,
        text: str,
        customer: Dict[str, Any],
        draft: bool = True,
        user: Optional[int] = None,
        assign_to: Optional[int] = None,
        status: Optional[Literal["active", "closed", "open", "pending", "spam"]] = None,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Reply to a conversation. Creates a DRAFT by default.

        Sending (draft=false) only works when the server sets HELPSCOUT_ALLOW_SEND_REPLY=true.
        HTML is reformatted for Help Scout: <p> becomes <br><br>, <pre> becomes <div>,
        inline <code> gets class="inline-code".

        Args:
            conversation_id: Numeric conversation id
            text: Reply body (HTML)
            customer: {"id": 123} or {"email": "...", "first_name": "...", "last_name": "..."}
            draft: Save as draft for review (default: true)
            user: User id of the replying agent
            assign_to: User id to assign the conversation to
            status: Conversation status after the reply
            cc: CC addresses
            bcc: BCC addresses
        """
        return await _call(
            "create_reply",
            conversation_id=conversation_id,
            text=text,
            customer=customer,
            draft=draft,
            user=user,
            assign_to=assign_to,
            status=status,
            cc=cc,
            bcc=bcc,
        )

    @mcp.tool()
    async def create_conversation(
        subject: str,
        type: Literal["email", "phone", "chat"],
        mailbox_id: int,
        customer: Dict[str, Any],
        threads: List[Dict[str, Any]],
        status: Literal["active", "pending", "closed"] = "active",
        assign_to: Optional[int] = None,
        tags: Optional[List[str]] = None,
        imported: Optional[bool] = None,
        auto_reply: Optional[bool] = None,
        user: Optional[int] = None,
        created_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a conversation with at least one initial thread.

        Args:
            subject: Subject line
            type: email, phone or chat
            mailbox_id: Inbox id from search_inboxes or list_all_inboxes
            customer: {"id": 123} or {"email": "...", "first_name": "...", "last_name": "..."}
            threads: [{"type": "customer"|"message"|"note", "text": "<p>...</p>"}]
            status: Initial status (default: active)
            assign_to: User id to assign to
            tags: Tags to apply
            imported: Mark as imported (no notifications)
            auto_reply: Send the inbox auto-reply
            user: User id creating the conversation
            created_at: ISO-8601 creation time for imported conversations
        """
        return await _call(
            "create_conversation",
            subject=subject,
            type=type,
            mailbox_id=mailbox_id,
            customer=customer,
            threads=threads,
            status=status,
            assign_to=assign_to,
            tags=tags,
            imported=imported,
            auto_reply=auto_reply,
            user=user,
            created_at=created_at,
        )

    @mcp.tool()
    async def update_conversation(
        conversation_id: str,
        subject: Optional[str] = None,
        status: Optional[Literal["active", "pending", "closed", "spam"]] = None,
        assign_to: Optional[int] = None,
        unassign: bool = False,
        tags: Optional[List[str]] = None,
        custom_fields: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Update subject, status, assignee, tags or custom fields of a conversation.

        Args:
            conversation_id: Numeric conversation id
            subject: New subject
            status: New status
            assign_to: User id to assign to
            unassign: Remove the current assignee
            tags: Replace all tags with this list
            custom_fields: [{"id": 12, "value": "..."}]
        """
        return await _call(
            "update_conversation",
            conversation_id=conversation_id,
            subject=subject,
            status=status,
            assign_to=assign_to,
            unassign=unassign or None,
            tags=tags,
            custom_fields=custom_fields,
        )


def setup_docs_tools():
    """Set up Docs API tools."""

    @mcp.tool()
    async def list_docs_sites(query: Optional[str] = None, page: int = 1) -> Dict[str, Any]:
        """
        List Docs sites, optionally ranked by how well they match a name.

        Args:
            query: Site name to match (fuzzy)
            page: Page number (default: 1)
        """
        return await _call("list_docs_sites", query=query, page=page)

    @mcp.tool()
    async def list_docs_collections(
        site_id: Optional[str] = None,
        site_query: Optional[str] = None,
        visibility: Literal["all", "public", "private"] = "all",
        sort: Literal["number", "visibility", "order", "name", "createdAt", "updatedAt"] = "order",
        order: Literal["asc", "desc"] = "asc",
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        """
        List Docs collections, for one site or all.

        Args:
            site_id: Site id from list_docs_sites
            site_query: Site name to resolve when the id is unknown
            visibility: all, public or private
            sort: Sort field (default: order)
            order: asc or desc
            page: Page number
            page_size: Items per page (max 100)
        """
        return await _call(
            "list_docs_collections",
            site_id=site_id,
            site_query=site_query,
            visibility=visibility,
            sort=sort,
            order=order,
            page=page,
            page_size=page_size,
        )

    @mcp.tool()
    async def list_docs_categories(collection_id: str, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        """
        List the categories of a Docs collection.

        Args:
            collection_id: Collection id from list_docs_collections
            page: Page number
            page_size: Items per page (max 100)
        """
        return await _call("list_docs_categories", collection_id=collection_id, page=page, page_size=page_size)

    @mcp.tool()
    async def list_docs_articles(
        collection_id: Optional[str] = None,
        category_id: Optional[str] = None,
        status: Literal["all", "published", "notpublished"] = "all",
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        """
        List articles in a collection or a category (exactly one of the two).

        Args:
            collection_id: Collection id
            category_id: Category id
            status: all, published or notpublished
            page: Page number
            page_size: Items per page (max 100)
        """
        return await _call(
            "list_docs_articles",
            collection_id=collection_id,
            category_id=category_id,
            status=status,
            page=page,
            page_size=page_size,
        )

    @mcp.tool()
    async def get_docs_article(article_id: str, draft: bool = False) -> Dict[str, Any]:
        """
        Get a Docs article with its full text.

        Args:
            article_id: Article id
            draft: Return the unpublished draft version if one exists
        """
        return await _call("get_docs_article", article_id=article_id, draft=draft)

    @mcp.tool()
    async def search_docs_articles(
        query: str,
        collection_id: Optional[str] = None,
        site_id: Optional[str] = None,
        visibility: Literal["all", "public", "private"] = "all",
        status: Literal["all", "published", "notpublished"] = "published",
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """
        Full-text search of Docs articles.

        Args:
            query: Search text
            collection_id: Restrict to one collection
            site_id: Restrict to one site
            visibility: all, public or private
            status: all, published or notpublished (default: published)
            page: Page number
            page_size: Items per page (max 100)
        """
        return await _call(
            "search_docs_articles",
            query=query,
            collection_id=collection_id,
            site_id=site_id,
            visibility=visibility,
            status=status,
            page=page,
            page_size=page_size,
        )

    @mcp.tool()
    async def create_docs_article(
        name: str,
        text: str,
        collection_id: Optional[str] = None,
        status: Literal["published", "notpublished"] = "notpublished",
        slug: Optional[str] = None,
        categories: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a Docs article (unpublished by default).

        Args:
            name: Article title
            text: Article body (HTML)
            collection_id: Target collection (default: HELPSCOUT_DEFAULT_DOCS_COLLECTION_ID)
            status: published or notpublished
            slug: URL slug
            categories: Category ids
            tags: Tags
        """
        return await _call(
            "create_docs_article",
            name=name,
            text=text,
            collection_id=collection_id,
            status=status,
            slug=slug,
            categories=categories,
            tags=tags,
        )

    @mcp.tool()
    async def update_docs_article(
        article_id: str,
        name: Optional[str] = None,
        text: Optional[str] = None,
        status: Optional[Literal["published", "notpublished"]] = None,
        slug: Optional[str] = None,
        categories: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Update fields of a Docs article.

        Args:
            article_id: Article id
            name: New title
            text: New body (HTML)
            status: published or notpublished
            slug: New URL slug
            categories: Replace category ids
            tags: Replace tags
        """
        return await _call(
            "update_docs_article",
            article_id=article_id,
            name=name,
            text=text,
            status=status,
            slug=slug,
            categories=categories,
            tags=tags,
        )

    @mcp.tool()
    async def delete_docs_article(article_id: str) -> Dict[str, Any]:
        """
        Delete a Docs article. Disabled unless HELPSCOUT_ALLOW_DOCS_DELETE=true.

        Args:
            article_id: Article id
        """
        return await _call("delete_docs_article", article_id=article_id)

    @mcp.tool()
    async def test_docs_connection() -> Dict[str, Any]:
        """Check that the Docs API key works."""
        return await _call("test_docs_connection")

    @mcp.tool()
    async def clear_docs_cache() -> Dict[str, Any]:
        """Drop cached Docs responses so the next reads are fresh."""
        return await _call("clear_docs_cache")


def setup_health_endpoints():
    """Set up health and info endpoints."""

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request):
        """Health check endpoint for server monitoring."""
        return JSONResponse({
            "status": "healthy" if dispatcher is not None else "degraded",
            "service": "helpscout-mcp-server",
            "version": __version__,
            "timestamp": str(datetime.now()),
            "mcp_endpoint": "/mcp",
            "docs_enabled": settings.docs_enabled,
            "tools_count": len(dispatcher.tool_names) if dispatcher else 0,
        })

    @mcp.custom_route("/tools/count", methods=["GET"])
    async def tools_count(request):
        """Tools count endpoint."""
        names = dispatcher.tool_names if dispatcher else []
        docs_count = len([n for n in names if "docs" in n])
        return JSONResponse({
            "tools_count": len(names),
            "conversation_tools": len(names) - docs_count,
            "docs_tools": docs_count,
        })


async def initialize_service() -> bool:
    """Build the dispatcher and check Mailbox API credentials."""
    global dispatcher

    dispatcher = create_dispatcher(settings)
    log_config_state("helpscout", settings.summary(), logger)

    try:
        connected = await dispatcher.conversation_tools.client.test_connection()
    finally:
        # this loop ends with asyncio.run; clients reopen on the serving loop
        await dispatcher.close()

    if connected:
        logger.info("Connected to Help Scout API")
    else:
        logger.warning("Could not reach Help Scout API - tools will report errors until credentials work")
    return connected


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Help Scout FastMCP Server')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind the server to')
    parser.add_argument('--port', type=int, default=8000, help='Port to bind the server to')
    parser.add_argument('--transport', choices=['streamable-http', 'stdio'], default='streamable-http',
                        help='MCP transport to serve')

    args = parser.parse_args()

    try:
        validate_config(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration", extra={"data": {"error": str(e)}})
        print(str(e), file=sys.stderr)
        sys.exit(1)

    # Initialize service synchronously for startup
    asyncio.run(initialize_service())

    setup_conversation_tools()
    if settings.docs_enabled:
        setup_docs_tools()
    setup_health_endpoints()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        logger.info(f"Starting Help Scout MCP server on http://{args.host}:{args.port}")
        logger.info(f"MCP endpoint: http://{args.host}:{args.port}/mcp")
        logger.info(f"Health endpoint: http://{args.host}:{args.port}/health")
        mcp.run(transport="streamable-http", host=args.host, port=args.port, path="/mcp")
