"""Rule-based invoice field extraction.

Recovers invoice number, date, money fields, vendor and line items from the
noisy text a PDF text layer produces. Every field has an ordered tuple of
pattern rules (see ``services.extraction.patterns``); a field that no rule
matches is simply absent. Extraction never raises.
"""

import logging
import re

from services.extraction.line_items import LineItemRecognizer, recognize_line_items
from services.extraction.patterns import (
    FLAGS,
    LABEL_SEP,
    RateWindowRule,
    RegexRule,
    Rule,
    first_match,
    labelled_amount,
    parse_amount,
    parse_text,
)
from services.extraction.schema import InvoiceRecord

logger = logging.getLogger(__name__)

VENDOR_LINES = 3
VENDOR_MAX_LENGTH = 100

# Alphanumeric/hyphen token containing at least one digit
_INVOICE_TOKEN = r"(?=[A-Z0-9-]*\d)([A-Z0-9-]+)"
_DATE_LABEL = r"\b(?:invoice\s+date|dated|date)\b" + LABEL_SEP
_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"
_TAX_RATE = r"(?:\s*@?\s*\d{1,2}(?:\.\d+)?\s*%)?"

INVOICE_NUMBER_RULES: tuple[Rule, ...] = (
    RegexRule("invoice_hash", re.compile(r"invoice\s*#" + LABEL_SEP + _INVOICE_TOKEN, FLAGS)),
    RegexRule(
        "invoice_number", re.compile(r"invoice\s+number" + LABEL_SEP + _INVOICE_TOKEN, FLAGS)
    ),
    RegexRule("inv_hash", re.compile(r"\binv\s*#" + LABEL_SEP + _INVOICE_TOKEN, FLAGS)),
    RegexRule("inv_prefix", re.compile(r"\binv-" + _INVOICE_TOKEN, FLAGS)),
)

DATE_RULES: tuple[Rule, ...] = (
    RegexRule(
        "labelled_date",
        re.compile(
            _DATE_LABEL
            + r"(\d{4}[-/]\d{1,2}[-/]\d{1,2}"
            + r"|\d{1,2}[-/]\d{1,2}[-/]\d{2,4}"
            + r"|\d{1,2}\s+"
            + _MONTHS
            + r"\s+\d{2,4})",
            FLAGS,
        ),
    ),
)

SUBTOTAL_RULES: tuple[Rule, ...] = (
    labelled_amount("subtotal", r"\bsubtotal"),
    labelled_amount("sub_total", r"\bsub-total"),
)

TAX_RULES: tuple[Rule, ...] = (
    labelled_amount("line_anchored", r"^[ \t]*(?:vat|tax)\b" + _TAX_RATE),
    RateWindowRule(
        "rate_window",
        anchor=re.compile(r"\bvat\s+at\s+\d{1,2}(?:\.\d+)?\s*%", FLAGS),
        nearby=re.compile(
            r"[£$€]?[ \t]*(?<![\d.,])(\d[\d,]*(?:\.\d{1,2})?)[ \t]*(?:vat|tax|total)\b", FLAGS
        ),
    ),
    labelled_amount("labelled", r"\b(?:vat|tax)\b" + _TAX_RATE),
)

TOTAL_RULES: tuple[Rule, ...] = (
    labelled_amount("total_amount", r"\btotal\s+amount(?:\s+due)?"),
    labelled_amount("total_due", r"\btotal\s+due"),
    labelled_amount("total_payable", r"\btotal\s+payable"),
    labelled_amount("grand_total", r"\bgrand\s+total"),
    # Bare "total" at a word start ("subtotal"/"sub-total" excluded), not "Total VAT"
    labelled_amount("total", r"(?:^|(?<=\s))total\b(?![\s:]*(?:vat|tax)\b)"),
    labelled_amount("amount_due", r"\bamount\s+due"),
)

BALANCE_DUE_RULES: tuple[Rule, ...] = (
    labelled_amount("balance_due", r"\bbalance\s+due"),
    labelled_amount("balance", r"\bbalance\b"),
)

PAID_RULES: tuple[Rule, ...] = (
    labelled_amount("paid", r"\bpaid\b"),
    labelled_amount("payment_received", r"\bpayment\s+received"),
)


def extract_vendor(text: str) -> str | None:
    """Best-effort vendor: the first non-blank lines of the document.

    Args:
        text: Document text

    Returns:
        First three non-blank lines joined by spaces, at most 100 characters
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return None
    return " ".join(lines[:VENDOR_LINES])[:VENDOR_MAX_LENGTH]


def reconcile_tax_and_total(record: InvoiceRecord) -> InvoiceRecord:
    """Discard a tax value that cannot be right next to the total.

    The tax rules regularly re-match the grand total, so a tax that is equal
    to or larger than the total is dropped. This also drops a genuine tax
    that happens to equal the total.

    Args:
        record: Freshly extracted record

    Returns:
        Record with ``tax`` cleared when ``tax >= total_amount``
    """
    if (
        record.tax is not None
        and record.total_amount is not None
        and record.tax >= record.total_amount
    ):
        logger.debug(f"Discarding tax {record.tax} >= total {record.total_amount}")
        return record.model_copy(update={"tax": None})
    return record


class FieldExtractor:
    """Extract an InvoiceRecord from raw document text.

    Line items come from the given recognizer; without one only the
    rule-based pass runs and extraction is a pure function of the text.
    """

    def __init__(self, recognizer: LineItemRecognizer | None = None) -> None:
        """Initialize extractor.

        Args:
            recognizer: Line item recognizer (rule pass plus service fallback)
        """
        self._recognizer = recognizer

    def extract(self, text: str | None) -> InvoiceRecord:
        """Extract structured invoice fields.

        Args:
            text: Raw extracted text, possibly empty or garbled

        Returns:
            InvoiceRecord with every field that could be recovered
        """
        text = text or ""
        line_items = (
            self._recognizer.recognize(text)
            if self._recognizer is not None
            else recognize_line_items(text)
        )

        record = InvoiceRecord(
            invoice_number=first_match(INVOICE_NUMBER_RULES, text, parse_text),
            date=first_match(DATE_RULES, text, parse_text),
            subtotal=first_match(SUBTOTAL_RULES, text, parse_amount),
            tax=first_match(TAX_RULES, text, parse_amount),
            total_amount=first_match(TOTAL_RULES, text, parse_amount),
            balance_due=first_match(BALANCE_DUE_RULES, text, parse_amount),
            paid=first_match(PAID_RULES, text, parse_amount),
            vendor=extract_vendor(text),
            line_items=line_items,
        )
        return reconcile_tax_and_total(record)


def extract_invoice(text: str | None) -> InvoiceRecord:
    """Extract an InvoiceRecord using rules only (no external service)."""
    return FieldExtractor().extract(text)
