"""Invoice data models for structured extraction and consolidation.

Amounts are kept as Decimal with two fractional digits; dates are kept as the
literal text found in the document.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

DEFAULT_CATEGORY = "Other"
CATEGORY_LABELS: tuple[str, ...] = ("Maintenance", "Appliance", "License", DEFAULT_CATEGORY)


class RawDocument(BaseModel):
    """Text produced by the PDF text service for one document."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., description="Document identifier (file name)")
    text: str = Field("", description="Raw extracted text, possibly empty or garbled")
    page_count: int = Field(0, ge=0, description="Number of pages read")


class LineItem(BaseModel):
    """One itemized charge on an invoice."""

    description: str = Field(..., min_length=1, description="Charge description")
    amount: Decimal = Field(..., ge=0, description="Charge amount")
    source_id: str | None = Field(None, description="Originating document identifier")
    source: str | None = Field(
        None, description="Display tag: invoice number if known, else document identifier"
    )
    label: str | None = Field(None, description="Spend category label")


class InvoiceRecord(BaseModel):
    """Structured fields recovered from a single invoice or receipt."""

    invoice_number: str | None = Field(None, description="Invoice identifier")
    date: str | None = Field(None, description="Date as written in the document")

    # Financial details
    subtotal: Decimal | None = Field(None, ge=0, description="Subtotal before tax")
    tax: Decimal | None = Field(None, ge=0, description="VAT / tax amount")
    total_amount: Decimal | None = Field(None, ge=0, description="Total including tax")
    balance_due: Decimal | None = Field(None, ge=0, description="Outstanding balance")
    paid: Decimal | None = Field(None, ge=0, description="Amount already paid")

    vendor: str | None = Field(None, description="Best-effort vendor header text")
    line_items: list[LineItem] = Field(default_factory=list)

    def resolved_total(self) -> Decimal | None:
        """Best available total for this document.

        Returns:
            total_amount, else balance_due, else subtotal + tax when both are
            present, else None
        """
        if self.total_amount is not None:
            return self.total_amount
        if self.balance_due is not None:
            return self.balance_due
        if self.subtotal is not None and self.tax is not None:
            return self.subtotal + self.tax
        return None


class DocumentRecord(BaseModel):
    """Extraction outcome for one document of the consolidated set."""

    source_id: str
    record: InvoiceRecord = Field(default_factory=InvoiceRecord)
    page_count: int | None = None
    error: str | None = None


class CategoryTotal(BaseModel):
    """Spend for one category label across all consolidated line items."""

    name: str
    total: Decimal
    percentage: Decimal


class AggregateResult(BaseModel):
    """Consolidated view across every document of the receipt set."""

    per_document: list[DocumentRecord] = Field(default_factory=list)
    consolidated_line_items: list[LineItem] = Field(default_factory=list)
    total_tax: Decimal = Decimal("0.00")
    grand_total: Decimal = Decimal("0.00")
    document_ids: frozenset[str] = frozenset()
    category_breakdown: list[CategoryTotal] = Field(default_factory=list)

    @field_serializer("document_ids")
    def _serialize_document_ids(self, document_ids: frozenset[str]) -> list[str]:
        return sorted(document_ids)


class CacheEntry(BaseModel):
    """The single persisted consolidated aggregate."""

    aggregate: AggregateResult
    document_ids: frozenset[str]
    cached_at: datetime

    @field_serializer("document_ids")
    def _serialize_document_ids(self, document_ids: frozenset[str]) -> list[str]:
        return sorted(document_ids)
