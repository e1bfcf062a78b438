"""Pattern rules for heuristic field extraction.

Each invoice field is described by an ordered tuple of rules. Rules are tried
in priority order and the first one that yields a usable value wins, so the
priority list is plain data that can be inspected and tested rule by rule.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Protocol, TypeVar

T = TypeVar("T")

CENTS = Decimal("0.01")
CURRENCY_SYMBOLS = "£$€"

# Optional currency symbol followed by a grouped decimal number (captured)
AMOUNT = r"[£$€]?\s*(\d[\d,]*(?:\.\d{1,2})?)"
# Separator between a label and its value
LABEL_SEP = r"[\s:]*"

FLAGS = re.IGNORECASE | re.MULTILINE


class Rule(Protocol):
    """A single extraction rule returning the raw matched text or None."""

    name: str

    def apply(self, text: str) -> str | None: ...


@dataclass(frozen=True)
class RegexRule:
    """Return a capture group of the first regex match."""

    name: str
    pattern: re.Pattern[str]
    group: int = 1

    def apply(self, text: str) -> str | None:
        match = self.pattern.search(text)
        if match is None:
            return None
        value = match.group(self.group)
        return value.strip() if value else None


@dataclass(frozen=True)
class RateWindowRule:
    """Find an anchor phrase, then search a window of text around it.

    Invoices print a tax rate ("VAT at 20%") and the tax amount in no fixed
    order relative to each other, so the amount is looked up within
    ``window`` characters of each anchor occurrence: first in the text that
    follows the anchor, then on either side of it.
    """

    name: str
    anchor: re.Pattern[str]
    nearby: re.Pattern[str]
    window: int = 50
    group: int = 1

    def apply(self, text: str) -> str | None:
        for anchor in self.anchor.finditer(text):
            start = max(anchor.start() - self.window, 0)
            end = anchor.end() + self.window
            for region in (text[anchor.end() : end], text[start:end]):
                match = self.nearby.search(region)
                if match is not None:
                    return match.group(self.group).strip()
        return None


def labelled_amount(name: str, label: str) -> RegexRule:
    """Build a rule matching ``label`` followed by an amount."""
    return RegexRule(name=name, pattern=re.compile(label + LABEL_SEP + AMOUNT, FLAGS))


def first_match(
    rules: Sequence[Rule],
    text: str,
    parse: Callable[[str], T | None],
) -> T | None:
    """Evaluate rules in order and return the first successfully parsed value.

    Args:
        rules: Rules in priority order
        text: Document text
        parse: Converts the raw matched text; None means "keep looking"

    Returns:
        Parsed value of the first rule that matched, or None
    """
    for rule in rules:
        raw = rule.apply(text)
        if raw is None:
            continue
        value = parse(raw)
        if value is not None:
            return value
    return None


def parse_text(raw: str) -> str | None:
    """Identity parser for text fields (empty strings count as no match)."""
    return raw or None


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse a money amount into a two-decimal Decimal.

    A leading currency symbol is ignored and grouping commas are stripped.

    Args:
        raw: Matched amount text, e.g. "£1,200.5"

    Returns:
        Decimal quantized to cents, or None if the text is not a
        non-negative finite number
    """
    if raw is None:
        return None
    cleaned = raw.strip().lstrip(CURRENCY_SYMBOLS).strip().replace(",", "")
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
        if not value.is_finite() or value < 0:
            return None
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
