"""Tiered parsing of LLM responses into line items.

Local models wrap JSON in markdown fences, surround it with prose or return
something that is almost JSON. Each tier below is a pure function from the
response text to a result (or None when the tier does not apply). Tiers run
from strictest to most lenient and the first non-None result wins:

1. strict JSON
2. JSON inside a markdown code fence
3. first balanced ``[...]`` substring
4. regex recovery of ``"description": ..., "amount": ...`` fragments
"""

import json
import re
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from services.extraction.patterns import parse_amount
from services.extraction.schema import LineItem

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_FENCE_MARKER = re.compile(r"```(?:json)?", re.IGNORECASE)
_ITEM_FRAGMENT = re.compile(
    r'"description"\s*:\s*"([^"]+)"\s*,\s*"amount"\s*:\s*"?([£$€]?\d[\d,]*(?:\.\d+)?)'
)


def _loads_array(candidate: str) -> list[Any] | None:
    try:
        value = json.loads(candidate)
    except (ValueError, RecursionError):
        # Deeply nested answers exhaust the decoder stack
        return None
    return value if isinstance(value, list) else None


def strict_array(text: str) -> list[Any] | None:
    """Parse the whole response as a JSON array."""
    return _loads_array(text.strip())


def fenced_array(text: str) -> list[Any] | None:
    """Parse a JSON array wrapped in markdown code fences."""
    block = _FENCED_BLOCK.search(text)
    if block is not None:
        return _loads_array(block.group(1).strip())
    if "```" in text:
        # Unterminated fence, e.g. output cut off by the token limit
        return _loads_array(_FENCE_MARKER.sub("", text).strip())
    return None


def bracketed_array(text: str) -> list[Any] | None:
    """Parse the first balanced ``[...]`` substring that is valid JSON.

    Brackets inside JSON strings are ignored while matching.
    """
    start = text.find("[")
    while start != -1:
        end = _matching_bracket(text, start)
        if end is None:
            return None
        parsed = _loads_array(text[start : end + 1])
        if parsed is not None:
            return parsed
        start = text.find("[", start + 1)
    return None


def _matching_bracket(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return index
    return None


JSON_ARRAY_TIERS: tuple[Callable[[str], list[Any] | None], ...] = (
    strict_array,
    fenced_array,
    bracketed_array,
)


def parse_json_array(text: str | None) -> list[Any] | None:
    """Recover a JSON array from an LLM response.

    Args:
        text: Raw response text

    Returns:
        The first array any JSON tier could parse, or None
    """
    if not text:
        return None
    for tier in JSON_ARRAY_TIERS:
        result = tier(text)
        if result is not None:
            return result
    return None


def coerce_line_items(elements: list[Any]) -> list[LineItem]:
    """Convert parsed JSON elements into line items.

    Elements without a non-empty description or a parseable amount are dropped.
    """
    items: list[LineItem] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        description = element.get("description")
        if not isinstance(description, str) or not description.strip():
            continue
        amount = _coerce_amount(element.get("amount"))
        if amount is None:
            continue
        items.append(LineItem(description=description.strip(), amount=amount))
    return items


def _coerce_amount(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return parse_amount(str(value))
    if isinstance(value, str):
        return parse_amount(value)
    return None


def _from_array_tier(
    tier: Callable[[str], list[Any] | None],
) -> Callable[[str], list[LineItem] | None]:
    def parse(text: str) -> list[LineItem] | None:
        elements = tier(text)
        return None if elements is None else coerce_line_items(elements)

    parse.__name__ = f"{tier.__name__}_items"
    return parse


def fragment_items(text: str) -> list[LineItem] | None:
    """Regex-scan for description/amount pairs in malformed JSON."""
    items: list[LineItem] = []
    for match in _ITEM_FRAGMENT.finditer(text):
        amount = parse_amount(match.group(2))
        description = match.group(1).strip()
        if amount is not None and description:
            items.append(LineItem(description=description, amount=amount))
    return items or None


LINE_ITEM_TIERS: tuple[Callable[[str], list[LineItem] | None], ...] = (
    *(_from_array_tier(tier) for tier in JSON_ARRAY_TIERS),
    fragment_items,
)


def parse_line_items(text: str | None) -> list[LineItem]:
    """Parse an LLM line item response, trying each tier in order.

    Args:
        text: Raw response text

    Returns:
        Recovered line items (empty if nothing could be recovered)
    """
    if not text:
        return []
    for tier in LINE_ITEM_TIERS:
        items = tier(text)
        if items is not None:
            return items
    return []
