"""Tests for the quoting adapter: response parsing and row coverage."""

import asyncio
import json

import google.generativeai as genai

from conftest import FakeClient
from grid_engine.gemini_client import AllModelsExhaustedError
from grid_engine.quoting import parse_quoting_response, quote_products

HEADERS = ["Part No", "Description", "Qty"]
ROWS = [["A-100", "Motor", "2"], ["B-200", "Cable", "10"], ["C-300", "Relay", "4"]]


def quote(row_id, price="10.00", **extra):
    item = {
        "rowId": row_id,
        "totalNetPrice": price,
        "netPricePerUnit": "5.00",
        "packQuantity": 1,
        "estimatedDelivery": "2-3 days",
        "sourceUrl": "https://www.conrad.de/p/1",
        "reasoning": "In stock",
    }
    item.update(extra)
    return item


# =============================================================================
# RESPONSE PARSING
# =============================================================================

class TestParseQuotingResponse:
    def test_fenced_json(self):
        text = "Results:\n```json\n" + json.dumps([quote(1)]) + "\n```"
        quotes = parse_quoting_response(text, 1)
        assert quotes[0].total_net_price == "10.00"
        assert quotes[0].pack_quantity == "1"
        assert quotes[0].source_url == "https://www.conrad.de/p/1"
        assert quotes[0].returned

    def test_bare_array(self):
        quotes = parse_quoting_response("Found: " + json.dumps([quote(1)]), 1)
        assert quotes[0].row_id == 1

    def test_missing_rows_are_filled_in(self):
        quotes = parse_quoting_response(json.dumps([quote(3), quote(1)]), 3)
        assert [q.row_id for q in quotes] == [1, 2, 3]
        assert [q.returned for q in quotes] == [True, False, True]
        assert quotes[1].total_net_price == ""

    def test_out_of_range_and_duplicate_ids(self):
        text = json.dumps([quote(1, price="1"), quote(1, price="2"), quote(7), quote(0), quote(True)])
        quotes = parse_quoting_response(text, 2)
        assert len(quotes) == 2
        assert quotes[0].total_net_price == "1"
        assert not quotes[1].returned

    def test_string_row_ids_are_accepted(self):
        quotes = parse_quoting_response(json.dumps([quote("2")]), 2)
        assert quotes[1].returned

    def test_not_found_values_are_kept(self):
        quotes = parse_quoting_response(json.dumps([quote(1, price="N/A", sourceUrl="")]), 1)
        assert quotes[0].total_net_price == "N/A"
        assert quotes[0].source_url == ""

    def test_no_json(self):
        assert parse_quoting_response("Sorry, search is unavailable.", 2) is None

    def test_object_instead_of_list(self):
        assert parse_quoting_response('```json\n{"rowId": 1}\n```', 1) is None


# =============================================================================
# ADAPTER
# =============================================================================

class TestQuoteProducts:
    def test_one_entry_per_input_row(self):
        client = FakeClient([json.dumps([quote(1), quote(3)])])
        quotes = asyncio.run(quote_products(ROWS, HEADERS, "m1", ["m1"], client=client))
        assert [q.row_id for q in quotes] == [1, 2, 3]

    def test_request_uses_search_tool_and_row_ids(self):
        client = FakeClient([json.dumps([quote(1)])])
        asyncio.run(quote_products(ROWS[:1], HEADERS, "m1", ["m1"], client=client))
        call = client.calls[0]
        assert call["tools"] == [genai.protos.Tool(google_search=genai.protos.Tool.GoogleSearch())]
        assert call["config"] == {"temperature": 0.0}
        prompt = call["contents"][0]["parts"][0]["text"]
        assert '"rowId": 1' in prompt
        assert "A-100" in prompt

    def test_empty_input_skips_the_model(self):
        client = FakeClient()
        assert asyncio.run(quote_products([], HEADERS, "m1", ["m1"], client=client)) == []
        assert client.calls == []

    def test_gateway_failure_returns_none(self):
        client = FakeClient([AllModelsExhaustedError(["m1"])])
        assert asyncio.run(quote_products(ROWS, HEADERS, "m1", ["m1"], client=client)) is None
