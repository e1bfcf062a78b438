"""Consolidation of per-document invoice records into one spending summary.

Totals are commutative sums, so they do not depend on document order; the
consolidated line items keep document order and, within a document, the
order the items were recognized in.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from services.extraction.schema import (
    DEFAULT_CATEGORY,
    AggregateResult,
    CategoryTotal,
    DocumentRecord,
    LineItem,
)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


def tag_line_items(document: DocumentRecord) -> list[LineItem]:
    """Copy a document's line items tagged with where they came from.

    ``source`` prefers the invoice number, falling back to the document id.
    """
    source = document.record.invoice_number or document.source_id
    return [
        item.model_copy(update={"source_id": document.source_id, "source": source})
        for item in document.record.line_items
    ]


def category_breakdown(items: Sequence[LineItem], grand_total: Decimal) -> list[CategoryTotal]:
    """Sum line item amounts per category label.

    Args:
        items: Consolidated line items
        grand_total: Consolidated total used as the percentage base

    Returns:
        Category totals, largest first; percentages are relative to
        grand_total, or to the items' own sum when grand_total is zero
    """
    totals: dict[str, Decimal] = {}
    for item in items:
        name = item.label or DEFAULT_CATEGORY
        totals[name] = totals.get(name, ZERO) + item.amount

    base = grand_total if grand_total > 0 else sum(totals.values(), ZERO)
    categories = [
        CategoryTotal(
            name=name,
            total=total,
            percentage=(total / base * HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)
            if base > 0
            else ZERO,
        )
        for name, total in totals.items()
    ]
    return sorted(categories, key=lambda category: category.total, reverse=True)


def aggregate(records: Sequence[DocumentRecord]) -> AggregateResult:
    """Merge per-document records into consolidated totals.

    A document without a resolvable total contributes nothing to the grand
    total; it never fails the aggregate.

    Args:
        records: Per-document extraction results in input order

    Returns:
        AggregateResult built from scratch
    """
    consolidated: list[LineItem] = []
    total_tax = ZERO
    grand_total = ZERO

    for document in records:
        consolidated.extend(tag_line_items(document))

        if document.record.tax is not None:
            total_tax += document.record.tax

        resolved = document.record.resolved_total()
        if resolved is not None:
            grand_total += resolved

    return AggregateResult(
        per_document=list(records),
        consolidated_line_items=consolidated,
        total_tax=total_tax,
        grand_total=grand_total,
        document_ids=frozenset(document.source_id for document in records),
        category_breakdown=category_breakdown(consolidated, grand_total),
    )
