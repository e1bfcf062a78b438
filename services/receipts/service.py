"""Receipt consolidation service.

Entry point used by the API and the summary script: serves the consolidated
aggregate from the cache while it matches the live document set, and runs
the full pipeline (PDF text -> field extraction -> labeling -> aggregation)
when asked to recompute.
"""

import logging
import threading
import time
from collections.abc import Iterable
from datetime import datetime

from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field

from services.aggregation.service import aggregate
from services.cache.service import (
    CacheState,
    CacheWriteError,
    JsonFileCacheStore,
    ReceiptCache,
)
from services.classification.base import ClassificationProvider
from services.classification.factory import create_classification_service
from services.documents.pdf_text import PDFTextService
from services.extraction.field_extractor import FieldExtractor
from services.extraction.labeler import CategoryLabeler
from services.extraction.line_items import LineItemRecognizer
from services.extraction.schema import (
    AggregateResult,
    DocumentRecord,
    InvoiceRecord,
    RawDocument,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)

EXTRACTION_FAILED = "Failed to extract data"

documents_processed_total = Counter(
    "receipt_documents_processed_total",
    "Total documents run through the receipt pipeline",
    ["status"],  # success, failed
)

recompute_duration_seconds = Histogram(
    "receipt_recompute_duration_seconds",
    "Duration of a full receipts recompute in seconds",
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)


class RecomputeInProgressError(Exception):
    """Raised when a recompute is requested while another one is running."""


class AggregateView(BaseModel):
    """Consolidated aggregate as served to callers.

    Attributes:
        aggregate: Cached or freshly computed aggregate
        state: Cache state relative to the live document set
        stale: True when the aggregate does not cover the live document set
        cached_at: When the aggregate was computed
        added: Live documents missing from the aggregate
        removed: Documents in the aggregate that are no longer live
        warning: Set when the aggregate could not be persisted
    """

    aggregate: AggregateResult
    state: CacheState
    stale: bool
    cached_at: datetime | None = None
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    warning: str | None = None


class ReceiptService:
    """Serve and recompute the consolidated receipts aggregate."""

    def __init__(
        self,
        settings: Settings,
        pdf_service: PDFTextService,
        extractor: FieldExtractor,
        labeler: CategoryLabeler,
        cache: ReceiptCache,
        classifier: ClassificationProvider | None = None,
    ) -> None:
        """Initialize receipt service.

        Args:
            settings: Application settings
            pdf_service: Source of document ids and PDF text
            extractor: Invoice field extractor
            labeler: Line item category labeler
            cache: Opened aggregate cache
            classifier: Classification provider shared by extractor and labeler
        """
        self.settings = settings
        self.pdf_service = pdf_service
        self.extractor = extractor
        self.labeler = labeler
        self.cache = cache
        self._classifier = classifier
        self._recompute_lock = threading.Lock()

    @property
    def is_recomputing(self) -> bool:
        return self._recompute_lock.locked()

    def list_document_ids(self) -> list[str]:
        """List the live document set."""
        return self.pdf_service.list_documents()

    def extract_invoice(self, text: str | None) -> InvoiceRecord:
        """Extract and label the invoice fields of one document's text.

        Args:
            text: Raw document text

        Returns:
            InvoiceRecord with labeled line items
        """
        record = self.extractor.extract(text)
        if not record.line_items:
            return record
        return record.model_copy(update={"line_items": self.labeler.label(record.line_items)})

    def process_document(self, document_id: str) -> DocumentRecord:
        """Run one document through the pipeline.

        An unreadable PDF yields an empty record with an error; it never
        aborts the recompute.

        Args:
            document_id: PDF file name in the documents folder

        Returns:
            DocumentRecord for the document
        """
        result = self.pdf_service.extract_text(self.pdf_service.document_path(document_id))
        if not result.success:
            documents_processed_total.labels(status="failed").inc()
            logger.warning(f"Skipping fields for {document_id}: {result.error}")
            return DocumentRecord(source_id=document_id, error=EXTRACTION_FAILED)

        return self.process_raw_document(result.to_raw_document(document_id))

    def process_raw_document(self, document: RawDocument) -> DocumentRecord:
        """Extract and label the fields of already-read document text."""
        record = self.extract_invoice(document.text)
        documents_processed_total.labels(status="success").inc()
        logger.info(
            f"Processed {document.source_id}: {document.page_count} pages, "
            f"{len(record.line_items)} line items"
        )
        return DocumentRecord(
            source_id=document.source_id, record=record, page_count=document.page_count
        )

    def recompute(self, document_ids: Iterable[str] | None = None) -> AggregateView:
        """Rebuild the aggregate from scratch and replace the cache entry.

        Args:
            document_ids: Documents to process; defaults to the live set

        Returns:
            Fresh AggregateView; ``warning`` is set if the cache could not be
            persisted

        Raises:
            RecomputeInProgressError: If another recompute is running
        """
        if not self._recompute_lock.acquire(blocking=False):
            raise RecomputeInProgressError("A receipts recompute is already running")

        try:
            ids = list(document_ids) if document_ids is not None else self.list_document_ids()
            logger.info(f"Recomputing receipts aggregate over {len(ids)} documents")

            start_time = time.time()
            records = [self.process_document(document_id) for document_id in ids]
            result = aggregate(records)
            recompute_duration_seconds.observe(time.time() - start_time)

            warning = None
            try:
                entry = self.cache.write(result, ids)
            except CacheWriteError as e:
                entry = e.entry
                warning = str(e)

            return AggregateView(
                aggregate=entry.aggregate,
                state=CacheState.FRESH,
                stale=False,
                cached_at=entry.cached_at,
                warning=warning,
            )
        finally:
            self._recompute_lock.release()

    def get_aggregate(
        self, live_ids: Iterable[str] | None = None, recompute: bool = False
    ) -> AggregateView:
        """Return the consolidated aggregate for the live document set.

        An empty cache is always recomputed. A stale entry is returned as-is
        and flagged, unless ``recompute`` is set.

        Args:
            live_ids: Live document set; defaults to the documents folder
            recompute: Recompute when the cached entry is stale

        Returns:
            AggregateView

        Raises:
            RecomputeInProgressError: If a needed recompute collides with a
                running one
        """
        live = list(live_ids) if live_ids is not None else self.list_document_ids()
        state = self.cache.state(live)

        if state is CacheState.EMPTY or (state is CacheState.STALE and recompute):
            return self.recompute(live)

        entry = self.cache.read()
        if entry is None:
            return self.recompute(live)

        added, removed = self.cache.diff(live)
        if state is CacheState.STALE:
            logger.info(
                f"Serving stale receipts aggregate: {len(added)} added, {len(removed)} removed"
            )

        return AggregateView(
            aggregate=entry.aggregate,
            state=state,
            stale=state is CacheState.STALE,
            cached_at=entry.cached_at,
            added=added,
            removed=removed,
        )

    def close(self) -> None:
        """Close the cache and the classification provider."""
        self.cache.close()
        if self._classifier is not None:
            self._classifier.close()


def create_receipt_service(settings: Settings) -> ReceiptService:
    """Build a receipt service with its collaborators from settings.

    The returned service owns an opened cache; call ``close`` when done.

    Args:
        settings: Application settings

    Returns:
        Ready-to-use ReceiptService
    """
    classifier = create_classification_service(settings)
    recognizer = LineItemRecognizer(classifier, max_amount=settings.line_item_max_amount)
    cache = ReceiptCache(JsonFileCacheStore(settings.cache_path)).open()

    return ReceiptService(
        settings=settings,
        pdf_service=PDFTextService(settings),
        extractor=FieldExtractor(recognizer),
        labeler=CategoryLabeler(classifier),
        cache=cache,
        classifier=classifier,
    )
