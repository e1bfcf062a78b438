"""Unit tests for consolidation of per-document records."""

import itertools
from decimal import Decimal

import pytest

from services.aggregation.service import aggregate, category_breakdown, tag_line_items
from services.extraction.schema import DocumentRecord, InvoiceRecord, LineItem


def _item(description: str, amount: str, label: str | None = None) -> LineItem:
    return LineItem(description=description, amount=Decimal(amount), label=label)


@pytest.fixture
def documents() -> list[DocumentRecord]:
    """Three documents exercising each total fallback."""
    return [
        DocumentRecord(
            source_id="a.pdf",
            record=InvoiceRecord(
                invoice_number="INV-1",
                tax=Decimal("5.00"),
                total_amount=Decimal("50.00"),
                line_items=[_item("Boiler service", "45.00", "Maintenance")],
            ),
        ),
        DocumentRecord(
            source_id="b.pdf",
            record=InvoiceRecord(
                balance_due=Decimal("30.00"),
                line_items=[_item("Kettle", "30.00", "Appliance")],
            ),
        ),
        DocumentRecord(
            source_id="c.pdf",
            record=InvoiceRecord(
                subtotal=Decimal("10.00"),
                tax=Decimal("2.00"),
                line_items=[_item("Permit", "10.00"), _item("Stamp", "2.00", "Other")],
            ),
        ),
    ]


class TestAggregate:
    """Test the consolidated totals."""

    def test_total_falls_back_to_balance_due(self) -> None:
        """Should use balance due for a document without a total."""
        result = aggregate(
            [
                DocumentRecord(source_id="a", record=InvoiceRecord(total_amount=Decimal("50.00"))),
                DocumentRecord(source_id="b", record=InvoiceRecord(balance_due=Decimal("30.00"))),
            ]
        )
        assert result.grand_total == Decimal("80.00")

    def test_totals(self, documents: list[DocumentRecord]) -> None:
        result = aggregate(documents)

        assert result.grand_total == Decimal("92.00")
        assert result.total_tax == Decimal("7.00")
        assert result.document_ids == frozenset({"a.pdf", "b.pdf", "c.pdf"})

    def test_document_without_total_contributes_nothing(self) -> None:
        result = aggregate(
            [
                DocumentRecord(source_id="a", record=InvoiceRecord(total_amount=Decimal("12.00"))),
                DocumentRecord(source_id="b", record=InvoiceRecord(subtotal=Decimal("99.00"))),
                DocumentRecord(source_id="c", error="Failed to extract data"),
            ]
        )
        assert result.grand_total == Decimal("12.00")
        assert result.total_tax == Decimal("0.00")
        assert len(result.per_document) == 3

    def test_empty_input(self) -> None:
        result = aggregate([])

        assert result.grand_total == Decimal("0.00")
        assert result.consolidated_line_items == []
        assert result.document_ids == frozenset()
        assert result.category_breakdown == []

    def test_line_items_keep_document_order(self, documents: list[DocumentRecord]) -> None:
        result = aggregate(documents)

        assert [item.description for item in result.consolidated_line_items] == [
            "Boiler service",
            "Kettle",
            "Permit",
            "Stamp",
        ]

    def test_permutations(self, documents: list[DocumentRecord]) -> None:
        """Should keep totals fixed and line items following document order."""
        baseline = aggregate(documents)

        for permutation in itertools.permutations(documents):
            result = aggregate(list(permutation))

            assert result.grand_total == baseline.grand_total
            assert result.total_tax == baseline.total_tax
            expected = [
                item.description for document in permutation for item in document.record.line_items
            ]
            assert [item.description for item in result.consolidated_line_items] == expected

    def test_input_records_not_mutated(self, documents: list[DocumentRecord]) -> None:
        aggregate(documents)
        assert documents[0].record.line_items[0].source_id is None


class TestTagLineItems:
    """Test source tagging."""

    def test_prefers_invoice_number(self, documents: list[DocumentRecord]) -> None:
        tagged = tag_line_items(documents[0])

        assert tagged[0].source_id == "a.pdf"
        assert tagged[0].source == "INV-1"

    def test_falls_back_to_document_id(self, documents: list[DocumentRecord]) -> None:
        tagged = tag_line_items(documents[1])

        assert tagged[0].source_id == "b.pdf"
        assert tagged[0].source == "b.pdf"


class TestCategoryBreakdown:
    """Test spend per category."""

    def test_grouped_and_sorted(self, documents: list[DocumentRecord]) -> None:
        result = aggregate(documents)

        assert [(c.name, c.total) for c in result.category_breakdown] == [
            ("Maintenance", Decimal("45.00")),
            ("Appliance", Decimal("30.00")),
            ("Other", Decimal("12.00")),
        ]

    def test_percentages_of_grand_total(self) -> None:
        items = [_item("Fan", "25.00", "Appliance"), _item("Fix", "50.00", "Maintenance")]

        breakdown = category_breakdown(items, Decimal("100.00"))

        assert [(c.name, c.percentage) for c in breakdown] == [
            ("Maintenance", Decimal("50.00")),
            ("Appliance", Decimal("25.00")),
        ]

    def test_zero_grand_total_uses_item_sum(self) -> None:
        items = [_item("Fan", "10.00", "Appliance"), _item("Fix", "30.00", "Maintenance")]

        breakdown = category_breakdown(items, Decimal("0.00"))

        assert [c.percentage for c in breakdown] == [Decimal("75.00"), Decimal("25.00")]

    def test_ties_keep_first_seen_order(self) -> None:
        items = [_item("A", "5.00", "License"), _item("B", "5.00", "Appliance")]

        breakdown = category_breakdown(items, Decimal("10.00"))

        assert [c.name for c in breakdown] == ["License", "Appliance"]
