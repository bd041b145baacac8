"""
Tests for pre-flight constraint validation and post-call guidance.
"""

import pytest

from helpscout_mcp.constraints import (
    ValidationContext,
    generate_tool_guidance,
    mentioned_inbox_name,
    validate_tool_call,
    validation_failure_payload,
)


def _validate(tool, arguments, user_query=None, previous_calls=()):
    return validate_tool_call(ValidationContext(tool, arguments, user_query, previous_calls))


class TestRuleTable:

    def test_valid_call_passes(self):
        result = _validate("get_conversation", {"conversation_id": "12345"})
        assert result.is_valid
        assert result.errors == []

    @pytest.mark.parametrize("tool", ["get_conversation", "get_conversation_summary", "get_threads"])
    def test_conversation_id_required(self, tool):
        result = _validate(tool, {})
        assert not result.is_valid
        assert "conversation_id is required" in result.errors

    def test_non_numeric_conversation_id(self):
        result = _validate("get_threads", {"conversation_id": "#4821"})
        assert result.errors == ["Invalid conversation ID format"]
        assert "search_conversations" in result.required_prerequisites

    def test_integer_conversation_id_is_accepted(self):
        assert _validate("get_conversation", {"conversation_id": 123}).is_valid

    def test_create_reply_requires_text_and_customer(self):
        result = _validate("create_reply", {"conversation_id": "1", "text": "  "})
        assert "text is required" in result.errors
        assert "customer is required" in result.errors

    def test_create_reply_customer_needs_id_or_email(self):
        result = _validate("create_reply", {"conversation_id": "1", "text": "hi", "customer": {"first_name": "Ada"}})
        assert result.errors == ["customer must include an id or an email"]

    def test_update_requires_a_field(self):
        assert not _validate("update_conversation", {"conversation_id": "1"}).is_valid
        assert _validate("update_conversation", {"conversation_id": "1", "unassign": True}).is_valid
        assert _validate("update_conversation", {"conversation_id": "1", "status": "closed"}).is_valid

    def test_search_rejects_inbox_name_as_id(self):
        result = _validate("search_conversations", {"inbox_id": "Support"})
        assert "Invalid inbox ID format" in result.errors
        assert result.required_prerequisites == ["search_inboxes"]

    def test_search_term_bounds(self):
        assert not _validate("search_conversations", {"search_terms": [str(i) for i in range(11)]}).is_valid
        assert not _validate("search_conversations", {"search_terms": ["ok", ""]}).is_valid

    def test_search_date_checks(self):
        result = _validate("search_conversations", {"created_after": "yesterday"})
        assert "Invalid created_after date format" in result.errors

        result = _validate(
            "search_conversations",
            {"created_after": "2024-02-01", "created_before": "2024-01-01"},
        )
        assert result.errors == ["created_after must be earlier than created_before"]

    def test_structured_filter_requires_unique_field(self):
        result = _validate("structured_conversation_filter", {"status": "active", "tag": "vip"})
        assert "structured_conversation_filter requires a unique field" in result.errors

        assert _validate("structured_conversation_filter", {"assigned_to": -1}).is_valid
        assert _validate("structured_conversation_filter", {"sort_by": "waitingSince"}).is_valid
        assert not _validate("structured_conversation_filter", {"sort_by": "createdAt"}).is_valid

    def test_structured_filter_customer_ids(self):
        assert not _validate("structured_conversation_filter", {"customer_ids": [1, -2]}).is_valid
        assert not _validate("structured_conversation_filter", {"customer_ids": list(range(1, 102))}).is_valid

    def test_tools_without_rules_pass(self):
        assert _validate("get_server_time", {}).is_valid


class TestInboxContext:

    @pytest.mark.parametrize("query,expected", [
        ("show urgent tickets in the Billing inbox", "Billing"),
        ('search the "Customer Success" mailbox', "Customer Success"),
        ("find emails in the inbox called Sales", "Sales"),
        ("what is in my inbox", None),
        ("search every inbox for refunds", None),
        (None, None),
    ])
    def test_mentioned_inbox_name(self, query, expected):
        assert mentioned_inbox_name(query) == expected

    def test_named_inbox_without_id_requires_search_inboxes(self):
        result = _validate(
            "search_conversations",
            {"search_terms": ["refund"]},
            user_query="refunds in the Billing inbox",
        )
        assert result.errors == ["Inbox mentioned in query but no inbox_id provided"]
        assert result.required_prerequisites == ["search_inboxes"]
        assert "Billing" in result.suggestions[0]

    def test_named_inbox_after_search_inboxes_only_asks_for_the_id(self):
        result = _validate(
            "search_conversations",
            {"search_terms": ["refund"]},
            user_query="refunds in the Billing inbox",
            previous_calls=("search_inboxes",),
        )
        assert not result.is_valid
        assert result.required_prerequisites == []

    def test_named_inbox_with_id_passes(self):
        result = _validate(
            "search_conversations",
            {"search_terms": ["refund"], "inbox_id": "2"},
            user_query="refunds in the Billing inbox",
        )
        assert result.is_valid

    def test_other_tools_ignore_inbox_context(self):
        result = _validate("get_conversation", {"conversation_id": "1"}, user_query="the Billing inbox")
        assert result.is_valid


class TestPayloadAndGuidance:

    def test_failure_payload_shape(self):
        result = _validate("get_threads", {})
        payload = validation_failure_payload(result)

        assert payload["error"] == "API Constraint Validation Failed"
        assert payload["details"]["errors"] == result.errors
        assert payload["api_requirements"]["required_actions"] == ["Call search_conversations first"]

    def test_search_inboxes_guidance_points_to_next_step(self):
        guidance = generate_tool_guidance("search_inboxes", {"results": [{"id": 1}]})
        assert guidance[0].startswith("NEXT STEP:")

    def test_empty_search_guidance_suggests_widening(self):
        ctx = ValidationContext("search_conversations", {"search_terms": ["x"]})
        guidance = generate_tool_guidance("search_conversations", {"results": []}, ctx)
        assert any("timeframe_days" in g for g in guidance)
        assert any("inbox_id" in g for g in guidance)

    def test_partial_failure_guidance(self):
        result = {
            "results": [{"id": 1}],
            "pagination": {"errors": [{"status": "closed", "message": "down", "code": "UPSTREAM_ERROR"}]},
        }
        guidance = generate_tool_guidance("search_conversations", result)
        assert any("closed" in g for g in guidance)

    def test_no_guidance_for_errors_or_server_time(self):
        assert generate_tool_guidance("search_inboxes", {"error": "x"}) == []
        assert generate_tool_guidance("get_server_time", {"iso_time": "now"}) == []
