"""
Tests for multi-status conversation search: pagination, fan-out folding,
client-side date filtering and transcript enrichment.
"""

import pytest

from conftest import make_conversation, make_thread
from helpscout_mcp.client import HelpScoutClient
from helpscout_mcp.errors import ApiError, ErrorCode
from helpscout_mcp.models import SearchConversationsInput
from helpscout_mcp.search import SearchAggregator, merge_conversations


# -- Fixtures --


@pytest.fixture
async def aggregator(settings, fake_api):
    client = HelpScoutClient.from_settings(settings, transport=fake_api.transport)
    yield SearchAggregator(client, settings)
    await client.close()


def _search(**kwargs) -> SearchConversationsInput:
    return SearchConversationsInput.model_validate(kwargs)


def _conversation_pages(fake_api):
    return [r.url.params.get("page") for r in fake_api.api_requests("GET", "/conversations")]


class TestPagination:

    async def test_follows_next_links_until_limit(self, aggregator, fake_api):
        """The upstream caps pages at 25 records; a 60-record request walks three pages."""
        fake_api.conversations["active"] = [make_conversation(i) for i in range(1, 61)]

        result = await aggregator.search_conversations(_search(status="active", limit=60))

        assert len(result["results"]) == 60
        assert result["pagination"]["total_available"] == 60
        assert _conversation_pages(fake_api) == ["1", "2", "3"]

    async def test_stops_once_limit_is_reached(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(i) for i in range(1, 61)]

        result = await aggregator.search_conversations(_search(status="active", limit=30))

        assert len(result["results"]) == 30
        assert result["pagination"]["returned"] == 30
        assert result["pagination"]["total_available"] == 60
        assert _conversation_pages(fake_api) == ["1", "2"]

    async def test_empty_result(self, aggregator, fake_api):
        result = await aggregator.search_conversations(_search(status="pending"))

        assert result["results"] == []
        assert result["pagination"] == {"returned": 0, "total_available": 0}


class TestMultiStatusFanOut:

    async def test_default_search_covers_three_statuses(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1, "active", "2024-03-01T00:00:00Z")]
        fake_api.conversations["pending"] = [make_conversation(2, "pending", "2024-03-03T00:00:00Z")]
        fake_api.conversations["closed"] = [make_conversation(3, "closed", "2024-03-02T00:00:00Z")]

        result = await aggregator.search_conversations(_search())

        assert [c["id"] for c in result["results"]] == [2, 3, 1]
        assert result["searched_statuses"] == ["active", "pending", "closed"]
        assert "errors" not in result["pagination"]
        sent = sorted(r.url.params.get("status") for r in fake_api.api_requests("GET", "/conversations"))
        assert sent == ["active", "closed", "pending"]

    async def test_one_failing_status_degrades_to_partial_results(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1, "active")]
        fake_api.conversations["pending"] = [make_conversation(2, "pending")]
        fake_api.status_failures["closed"] = 503

        result = await aggregator.search_conversations(_search())

        assert sorted(c["id"] for c in result["results"]) == [1, 2]
        assert result["searched_statuses"] == ["active", "pending"]
        errors = result["pagination"]["errors"]
        assert len(errors) == 1
        assert errors[0]["status"] == "closed"
        assert errors[0]["code"] == ErrorCode.UPSTREAM_ERROR.value

    async def test_duplicates_across_statuses_are_merged(self, aggregator, fake_api):
        shared = make_conversation(7, "active")
        fake_api.conversations["active"] = [shared]
        fake_api.conversations["pending"] = [shared, make_conversation(8, "pending")]

        result = await aggregator.search_conversations(_search(statuses=["active", "pending"]))

        assert sorted(c["id"] for c in result["results"]) == [7, 8]
        assert result["pagination"]["returned"] == 2

    async def test_unauthorized_branch_aborts_the_search(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1)]
        fake_api.status_failures["pending"] = 401

        with pytest.raises(ApiError) as exc_info:
            await aggregator.search_conversations(_search())

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    def test_merge_conversations_sorts_newest_first_and_truncates(self):
        groups = [
            [{"id": 1, "createdAt": "2024-01-01T00:00:00Z"}],
            [{"id": 2, "createdAt": "2024-02-01T00:00:00Z"}, {"id": 1, "createdAt": "2024-01-01T00:00:00Z"}],
        ]
        assert [c["id"] for c in merge_conversations(groups, 1)] == [2]


class TestKeywordMode:

    async def test_results_grouped_by_status(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1), make_conversation(2)]
        fake_api.conversations["closed"] = [make_conversation(3, "closed")]

        result = await aggregator.search_conversations(_search(search_terms=["refund"], timeframe_days=30))

        assert result["total_conversations_found"] == 3
        assert [g["status"] for g in result["results_by_status"]] == ["active", "pending", "closed"]
        assert [g["count"] for g in result["results_by_status"]] == [2, 0, 1]
        assert result["query"].startswith('((body:"refund" OR subject:"refund")) AND (createdAt:[')

        sent_query = fake_api.api_requests("GET", "/conversations")[0].url.params.get("query")
        assert sent_query == result["query"]

    async def test_failed_status_is_marked_in_its_group(self, aggregator, fake_api):
        fake_api.status_failures["pending"] = 500

        result = await aggregator.search_conversations(_search(search_terms=["refund"]))

        pending = result["results_by_status"][1]
        assert pending["status"] == "pending"
        assert pending["conversations"] == []
        assert pending["error"]["code"] == ErrorCode.UPSTREAM_ERROR.value


class TestStructuredMode:

    async def test_structured_fields_are_anded(self, aggregator, fake_api):
        await aggregator.search_conversations(
            _search(content_terms=["crash"], email_domain="example.com", status="active")
        )

        sent = fake_api.api_requests("GET", "/conversations")[0]
        assert sent.url.params.get("query") == '(body:"crash") AND (email:"example.com")'
        assert sent.url.params.get("status") == "active"


class TestCreatedBefore:

    async def test_filtered_counts_are_reported(self, aggregator, fake_api):
        fake_api.conversations["active"] = [
            make_conversation(1, created_at="2024-03-10T00:00:00Z"),
            make_conversation(2, created_at="2024-02-10T00:00:00Z"),
            make_conversation(3, created_at="2024-01-10T00:00:00Z"),
        ]

        result = await aggregator.search_conversations(
            _search(status="active", created_before="2024-03-01T00:00:00Z")
        )

        pagination = result["pagination"]
        assert [c["id"] for c in result["results"]] == [2, 3]
        assert pagination["returned"] == 2
        assert pagination["total_available"] == 3
        assert pagination["filtered_out"] == 1
        assert pagination["client_side_filtered"] is True
        assert "note" in pagination


class TestTranscripts:

    async def test_transcripts_attached_and_failures_marked(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1), make_conversation(2)]
        fake_api.threads["1"] = [
            make_thread(12, "message", "2024-03-01T12:00:00Z", "<p>Fixed</p>"),
            make_thread(11, "note", "2024-03-01T11:00:00Z", "<p>internal</p>"),
            make_thread(10, "customer", "2024-03-01T10:00:00Z", "<p>Help</p>"),
        ]
        fake_api.thread_failures["2"] = 500

        result = await aggregator.search_conversations(_search(status="active", include_transcripts=True))

        by_id = {c["id"]: c for c in result["results"]}
        transcript = by_id[1]["transcript"]
        assert [m["role"] for m in transcript] == ["customer", "staff"]
        assert [m["body"] for m in transcript] == ["Help", "Fixed"]

        assert by_id[2]["transcript"] is None
        assert by_id[2]["transcript_error"] == "Failed to fetch transcript"
        assert result["include_transcripts"] is True

    async def test_transcript_bodies_respect_redaction(self, make_settings, fake_api):
        settings = make_settings(REDACT_MESSAGE_CONTENT=True)
        client = HelpScoutClient.from_settings(settings, transport=fake_api.transport)
        aggregator = SearchAggregator(client, settings)
        fake_api.conversations["active"] = [make_conversation(1)]
        fake_api.threads["1"] = [make_thread(10, "customer", "2024-03-01T10:00:00Z", "<p>card 4242</p>")]

        result = await aggregator.search_conversations(_search(status="active", include_transcripts=True))

        assert "4242" not in str(result)
        await client.close()


class TestResponseShape:

    async def test_slim_by_default(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1)]

        result = await aggregator.search_conversations(_search(status="active"))

        conv = result["results"][0]
        assert conv["customer"]["email"] == "ada@example.com"
        assert conv["tags"] == ["billing"]
        assert "primaryCustomer" not in conv

    async def test_verbose_returns_upstream_records(self, aggregator, fake_api):
        fake_api.conversations["active"] = [make_conversation(1)]

        result = await aggregator.search_conversations(_search(status="active", verbose=True))

        assert "primaryCustomer" in result["results"][0]
