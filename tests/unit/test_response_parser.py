"""Unit tests for tiered LLM response parsing."""

from decimal import Decimal

import pytest

from services.extraction.response_parser import (
    bracketed_array,
    coerce_line_items,
    fenced_array,
    fragment_items,
    parse_json_array,
    parse_line_items,
    strict_array,
)


def _pairs(items: list) -> list[tuple[str, Decimal]]:
    return [(item.description, item.amount) for item in items]


class TestJsonArrayTiers:
    """Each tier on its own."""

    def test_strict_array(self) -> None:
        assert strict_array(' ["a", "b"] ') == ["a", "b"]

    def test_strict_rejects_objects_and_prose(self) -> None:
        assert strict_array('{"a": 1}') is None
        assert strict_array('Here: ["a"]') is None

    def test_fenced_array(self) -> None:
        assert fenced_array('Sure!\n```json\n["a"]\n```\nDone') == ["a"]

    def test_fenced_without_language(self) -> None:
        assert fenced_array('```\n[1, 2]\n```') == [1, 2]

    def test_unterminated_fence(self) -> None:
        """Should parse output cut off before the closing fence."""
        assert fenced_array('```json\n["Maintenance"]') == ["Maintenance"]

    def test_no_fence(self) -> None:
        assert fenced_array('["a"]') is None

    def test_bracketed_array_in_prose(self) -> None:
        assert bracketed_array('The labels are ["Other", "License"] as requested.') == [
            "Other",
            "License",
        ]

    def test_bracketed_ignores_brackets_in_strings(self) -> None:
        text = 'Result: [{"description": "Fan [spare]", "amount": 5}] ok'
        assert bracketed_array(text) == [{"description": "Fan [spare]", "amount": 5}]

    def test_bracketed_skips_invalid_candidates(self) -> None:
        """Should try the next '[' when the first balanced span is not JSON."""
        assert bracketed_array('See [note] then ["Other"]') == ["Other"]

    def test_bracketed_unbalanced(self) -> None:
        assert bracketed_array('["a", "b"') is None


class TestParseJsonArray:
    """Tiers combined."""

    @pytest.mark.parametrize("text", [None, "", "no json here", '{"label": "Other"}'])
    def test_no_array(self, text: str | None) -> None:
        assert parse_json_array(text) is None

    def test_first_tier_wins(self) -> None:
        assert parse_json_array('["Appliance"]') == ["Appliance"]

    def test_deeply_nested_answer(self) -> None:
        """Should give up on answers nested deeper than the decoder allows."""
        assert parse_json_array("[" * 200000) is None
        assert parse_line_items("[" * 200000) == []


class TestParseLineItems:
    """Line item recovery from LLM responses."""

    def test_json_in_markdown_fence(self) -> None:
        """Should parse an array wrapped in ```json fences."""
        text = (
            "```json\n"
            '[{"description": "Boiler service", "amount": 120.00},\n'
            ' {"description": "Call-out", "amount": "65"}]\n'
            "```"
        )
        assert _pairs(parse_line_items(text)) == [
            ("Boiler service", Decimal("120.00")),
            ("Call-out", Decimal("65.00")),
        ]

    def test_truncated_json_uses_fragments(self) -> None:
        """Should fall back to regex pairs when the JSON is cut off."""
        text = (
            '[{"description": "Boiler repair", "amount": 120.50}, '
            '{"description": "Parts", "amount": "£35"}, {"descrip'
        )
        assert _pairs(parse_line_items(text)) == [
            ("Boiler repair", Decimal("120.50")),
            ("Parts", Decimal("35.00")),
        ]

    def test_invalid_elements_are_dropped(self) -> None:
        text = (
            '[{"description": "", "amount": 5}, {"description": "Fuse"}, "junk", '
            '{"description": "Lamp", "amount": true}, {"description": "Bulb", "amount": 2.5}]'
        )
        assert _pairs(parse_line_items(text)) == [("Bulb", Decimal("2.50"))]

    @pytest.mark.parametrize("text", [None, "", "I could not find any line items."])
    def test_nothing_recoverable(self, text: str | None) -> None:
        assert parse_line_items(text) == []


class TestFragments:
    """Regex fragment tier."""

    def test_no_fragments(self) -> None:
        assert fragment_items("nothing") is None

    def test_coerce_strips_description(self) -> None:
        items = coerce_line_items([{"description": "  Valve  ", "amount": "1,000"}])
        assert _pairs(items) == [("Valve", Decimal("1000.00"))]
