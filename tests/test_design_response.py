import pytest

from abyat.schemas.design import FacetBucket, PriceRange
from abyat.services.design_response import (
    EDIT_IMAGE_TOOL,
    UnrecognizedShapeError,
    extract_agent_summary_text,
    extract_design_response,
    extract_generated_design,
    parse_design_response,
    parse_facet,
    parse_facet_counts,
)


class TestParseFacet:
    def test_list_of_records(self):
        buckets = parse_facet("colors", [{"value": "RED", "count": 3}, {"name": "BLUE", "total": 2}, {"count": 1}])
        assert buckets == [FacetBucket(value="RED", count=3), FacetBucket(value="BLUE", count=2)]

    def test_value_to_count_mapping(self):
        assert parse_facet("styles", {"MODERN": 4}) == [FacetBucket(value="MODERN", count=4)]

    def test_plain_strings(self):
        assert parse_facet("styles", ["MODERN", ""]) == [FacetBucket(value="MODERN")]

    def test_unknown_shape_raises(self):
        with pytest.raises(UnrecognizedShapeError):
            parse_facet("colors", "RED")

    def test_price_ranges(self):
        ranges = parse_facet("prices", [{"min": 100, "max": 200, "valueCount": 5}, {"label": "x"}])
        assert ranges == [PriceRange(min=100, max=200, count=5)]

    def test_price_summary_object(self):
        assert parse_facet("prices", {"ranges": [{"min": 1, "max": 2}]}) == [PriceRange(min=1, max=2)]

    def test_price_summary_without_ranges_raises(self):
        with pytest.raises(UnrecognizedShapeError):
            parse_facet("prices", {"min": 1})


class TestParseFacetCounts:
    def test_legacy_keys_renamed(self):
        facet_counts = parse_facet_counts({"livingRoomLayoutCounts": {"OPEN": 2}})
        assert facet_counts == {"livingRoomLayout": [FacetBucket(value="OPEN", count=2)]}

    def test_bad_facet_dropped_not_fatal(self):
        facet_counts = parse_facet_counts({"colors": 12, "styles": {"MODERN": 1}})
        assert list(facet_counts) == ["styles"]

    def test_not_a_mapping_raises(self):
        with pytest.raises(UnrecognizedShapeError):
            parse_facet_counts(["colors"])


class TestParseDesignResponse:
    def test_results_alias_and_total(self):
        response = parse_design_response({"results": [{"id": 1}, "junk"], "totalHits": 40})
        assert response.inspirations == [{"id": 1}]
        assert response.total == 40

    def test_total_defaults_to_item_count(self):
        response = parse_design_response({"inspirations": [{"id": 1}, {"id": 2}]})
        assert response.total == 2
        assert response.has_inspirations

    def test_not_a_result_raises(self):
        with pytest.raises(UnrecognizedShapeError):
            parse_design_response({"message": "hello"})


class TestExtractDesignResponse:
    def test_finds_nested_result(self):
        agent_data = {
            "workflowlog": {
                "tasks": [
                    {"tool": "owncondition", "result": {"data": "Here you go"}},
                    {"tool": "search", "result": {"data": {"payload": {"inspirations": [{"id": "a"}], "total": 1}}}},
                ]
            }
        }

        response = extract_design_response(agent_data)

        assert response.total == 1
        assert response.inspirations[0]["id"] == "a"

    def test_no_result_returns_none(self):
        assert extract_design_response({"workflowlog": {"tasks": [{"tool": "x", "result": None}]}}) is None

    def test_unknown_envelope_raises(self):
        with pytest.raises(UnrecognizedShapeError):
            extract_design_response({"status": "ok"})


class TestAgentSummaryText:
    def test_string_data(self):
        agent_data = {"workflowlog": {"tasks": [{"tool": "owncondition", "result": {"data": "Pick a style"}}]}}
        assert extract_agent_summary_text(agent_data) == "Pick a style"

    def test_message_field(self):
        agent_data = {"workflowlog": {"tasks": [{"tool": "owncondition", "result": {"data": {"message": "Hi"}}}]}}
        assert extract_agent_summary_text(agent_data) == "Hi"

    def test_missing(self):
        assert extract_agent_summary_text({"workflowlog": {"tasks": []}}) is None


class TestExtractGeneratedDesign:
    def test_generated_image(self):
        agent_data = {
            "workflowlog": {
                "tasks": [
                    {
                        "tool": EDIT_IMAGE_TOOL,
                        "result": {"data": {"s3_url": "https://files.example.com/out.png", "name": "Cozy Lounge"}},
                    }
                ]
            }
        }

        generated = extract_generated_design(agent_data)

        assert generated.image_url == "https://files.example.com/out.png"
        assert generated.name == "Cozy Lounge"
        assert generated.description == "Here’s the updated design based on your preferences."

    def test_missing_image_url(self):
        agent_data = {"workflowlog": {"tasks": [{"tool": EDIT_IMAGE_TOOL, "result": {"data": {}}}]}}
        assert extract_generated_design(agent_data) is None

    def test_missing_task(self):
        assert extract_generated_design({"workflowlog": {"tasks": [{"tool": "search"}]}}) is None
