"""Line item recognition for invoice text.

A rule-based pass picks "description   amount" lines out of the document.
When that finds nothing, the text is handed to the classification service
with a strict extraction prompt and the answer is parsed by the tiered
response parser.
"""

import logging
import re
from decimal import Decimal

from services.classification.base import ClassificationProvider, classification_requests_total
from services.extraction.patterns import parse_amount
from services.extraction.response_parser import parse_line_items
from services.extraction.schema import LineItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_AMOUNT = Decimal("50000")

LINE_ITEM_PATTERN = re.compile(
    r"^\s*([A-Za-z&][A-Za-z\s&\-(),.']{2,69}?)\s+[£$€]?\s*(\d[\d,]*(?:\.\d{1,2})?)\s*$"
)

# Header and footer rows that look like "word  number" but are not charges
DENYLIST_PATTERN = re.compile(
    r"^(?:description|quantity|unit price|subtotal|total|vat|tax|balance|paid|date"
    r"|invoice|amount|gbp|due)",
    re.IGNORECASE,
)


def is_plausible_amount(amount: Decimal, max_amount: Decimal = DEFAULT_MAX_AMOUNT) -> bool:
    """Reject zero amounts and numbers too large to be a single charge."""
    return Decimal("0") < amount < max_amount


def recognize_line_items(
    text: str | None, max_amount: Decimal = DEFAULT_MAX_AMOUNT
) -> list[LineItem]:
    """Rule-based line item pass.

    Args:
        text: Document text
        max_amount: Exclusive upper bound for an accepted amount

    Returns:
        Line items in document order
    """
    items: list[LineItem] = []
    for line in (text or "").splitlines():
        match = LINE_ITEM_PATTERN.match(line)
        if match is None:
            continue
        description = match.group(1).strip()
        if DENYLIST_PATTERN.match(description):
            continue
        amount = parse_amount(match.group(2))
        if amount is None or not is_plausible_amount(amount, max_amount):
            continue
        items.append(LineItem(description=description, amount=amount))
    return items


class LineItemRecognizer:
    """Line item recognizer with a classification service escape hatch."""

    def __init__(
        self,
        classifier: ClassificationProvider | None = None,
        max_amount: Decimal = DEFAULT_MAX_AMOUNT,
    ) -> None:
        """Initialize recognizer.

        Args:
            classifier: Service consulted when the rule pass finds nothing
            max_amount: Exclusive upper bound for an accepted amount
        """
        self._classifier = classifier
        self._max_amount = max_amount

    def recognize(self, text: str | None) -> list[LineItem]:
        """Recognize line items, falling back to the classification service.

        Never raises; an unavailable service or unusable answer yields an
        empty list.

        Args:
            text: Document text

        Returns:
            Line items in document order
        """
        items = recognize_line_items(text, self._max_amount)
        if items or self._classifier is None or not text or not text.strip():
            return items

        result = self._classifier.complete(self._build_extraction_prompt(text))
        if not result.success:
            classification_requests_total.labels(task="line_items", status="failed").inc()
            logger.warning(f"Line item fallback unavailable: {result.error}")
            return []

        items = [
            item
            for item in parse_line_items(result.text)
            if is_plausible_amount(item.amount, self._max_amount)
        ]
        status = "success" if items else "empty"
        classification_requests_total.labels(task="line_items", status=status).inc()
        logger.info(f"AI extracted {len(items)} line items via {result.provider}")
        return items

    def _build_extraction_prompt(self, text: str) -> str:
        """Build the strict line item extraction prompt.

        Args:
            text: Document text

        Returns:
            Formatted prompt string
        """
        return f"""You are extracting line items from an invoice. \
Look for the itemized services or products with their prices.

IMPORTANT:
- Ignore headers like "Description", "Quantity", "Amount", "Unit Price"
- Ignore totals like "Subtotal", "VAT", "TOTAL", "Balance Due"
- Only extract actual line items with their individual prices
- Combine multi-line descriptions if they're part of one item
- Return ONLY valid JSON array, no other text

Invoice text:
{text}

Return this exact JSON format:
[
  {{"description": "Service or product name", "amount": 50.00}},
  {{"description": "Another service", "amount": 25.00}}
]

JSON array:"""
