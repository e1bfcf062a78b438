"""Unit tests for the receipt insights API.

Tests cover:
- Health check endpoints
- Invoice extraction from text and uploaded PDFs
- Receipts summary, recompute and cache endpoints
- Prometheus metrics endpoint
"""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import fitz
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from services.api.main import app, get_receipt_service
from services.cache.service import JsonFileCacheStore, ReceiptCache
from services.documents.pdf_text import PDFTextService
from services.extraction.field_extractor import FieldExtractor
from services.extraction.labeler import CategoryLabeler
from services.receipts.service import ReceiptService, RecomputeInProgressError
from services.shared.config import Settings


def _pdf_bytes(text: str) -> bytes:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def receipt_service(tmp_path: Path) -> ReceiptService:
    """Receipt service over a temporary documents folder."""
    documents_dir = tmp_path / "data"
    documents_dir.mkdir()
    (documents_dir / "a.pdf").write_bytes(_pdf_bytes("Boiler service 45.00\nTotal: 45.00"))
    settings = Settings(
        documents_dir=documents_dir,
        cache_path=tmp_path / "receipts.json",
        classification_provider="disabled",
    )
    return ReceiptService(
        settings=settings,
        pdf_service=PDFTextService(settings),
        extractor=FieldExtractor(),
        labeler=CategoryLabeler(),
        cache=ReceiptCache(JsonFileCacheStore(settings.cache_path)).open(),
    )


@pytest.fixture
def client(receipt_service: ReceiptService) -> Generator[TestClient, None, None]:
    """Create test client with the receipt service injected."""
    app.dependency_overrides[get_receipt_service] = lambda: receipt_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "service" in data


def test_readiness_before_startup(client: TestClient) -> None:
    """Test readiness is false until the service has started."""
    response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["ready"] is False


def test_readiness_after_startup(client: TestClient, receipt_service: ReceiptService) -> None:
    """Test readiness once the service and its cache are up."""
    with patch("services.api.main.receipt_service", receipt_service):
        response = client.get("/ready")

    assert response.json()["ready"] is True


def test_service_unavailable_without_startup() -> None:
    """Test endpoints report 503 when the service never started."""
    response = TestClient(app).get("/api/v1/receipts")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


def test_extract_invoice(client: TestClient) -> None:
    """Test field extraction from posted text."""
    response = client.post(
        "/api/v1/invoices/extract",
        json={"text": "Invoice #: INV-9\nSubtotal: £100.00\nVAT: £20.00\nTOTAL: £120.00"},
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["invoice_number"] == "INV-9"
    assert data["subtotal"] == "100.00"
    assert data["tax"] == "20.00"
    assert data["total_amount"] == "120.00"
    assert data["balance_due"] is None


def test_extract_invoice_empty_text(client: TestClient) -> None:
    """Test empty text is not an error."""
    response = client.post("/api/v1/invoices/extract", json={"text": ""})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["line_items"] == []


def test_extract_invoice_requires_text(client: TestClient) -> None:
    """Test request validation."""
    response = client.post("/api/v1/invoices/extract", json={})

    assert response.status_code == 422


def test_upload_pdf(client: TestClient) -> None:
    """Test uploading a valid PDF."""
    pdf = _pdf_bytes("Widget Repair 45.00\nTotal: 45.00")
    files = {"file": ("invoice.pdf", pdf, "application/pdf")}

    response = client.post("/api/v1/invoices/upload", files=files)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["filename"] == "invoice.pdf"
    assert data["page_count"] == 1
    assert "Widget Repair" in data["text"]
    assert data["invoice"]["total_amount"] == "45.00"
    assert data["invoice"]["line_items"][0]["description"] == "Widget Repair"
    assert data["invoice"]["line_items"][0]["label"] == "Other"


def test_upload_invalid_file_type(client: TestClient) -> None:
    """Test uploading a non-PDF file."""
    files = {"file": ("notes.txt", b"Total: 10.00", "text/plain")}

    response = client.post("/api/v1/invoices/upload", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Invalid file type" in response.json()["detail"]


def test_upload_empty_file(client: TestClient) -> None:
    """Test uploading an empty file."""
    files = {"file": ("empty.pdf", b"", "application/pdf")}

    response = client.post("/api/v1/invoices/upload", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Empty file" in response.json()["detail"]


def test_upload_corrupt_pdf(client: TestClient) -> None:
    """Test uploading a file that is not a readable PDF."""
    files = {"file": ("broken.pdf", b"not a pdf at all", "application/pdf")}

    response = client.post("/api/v1/invoices/upload", files=files)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "PDF processing failed" in response.json()["detail"]


def test_get_receipts(client: TestClient) -> None:
    """Test the consolidated summary endpoint."""
    response = client.get("/api/v1/receipts")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["state"] == "fresh"
    assert data["stale"] is False
    assert data["aggregate"]["grand_total"] == "45.00"
    assert data["aggregate"]["document_ids"] == ["a.pdf"]
    assert data["aggregate"]["category_breakdown"][0]["name"] == "Other"


def test_get_receipts_stale(client: TestClient, receipt_service: ReceiptService) -> None:
    """Test a new document is reported without recomputing."""
    client.get("/api/v1/receipts")
    (receipt_service.settings.documents_dir / "b.pdf").write_bytes(_pdf_bytes("Total: 5.00"))

    stale = client.get("/api/v1/receipts").json()
    fresh = client.get("/api/v1/receipts", params={"recompute": True}).json()

    assert stale["stale"] is True
    assert stale["added"] == ["b.pdf"]
    assert stale["aggregate"]["grand_total"] == "45.00"
    assert fresh["stale"] is False
    assert fresh["aggregate"]["grand_total"] == "50.00"


def test_recompute(client: TestClient) -> None:
    """Test explicit recompute."""
    response = client.post("/api/v1/receipts/recompute")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["state"] == "fresh"


def test_recompute_conflict() -> None:
    """Test 409 while another recompute is running."""
    service = MagicMock()
    service.recompute.side_effect = RecomputeInProgressError(
        "A receipts recompute is already running"
    )
    app.dependency_overrides[get_receipt_service] = lambda: service
    try:
        response = TestClient(app).post("/api/v1/receipts/recompute")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == status.HTTP_409_CONFLICT
    assert "already running" in response.json()["detail"]


def test_cache_stats_and_clear(client: TestClient) -> None:
    """Test cache inspection and clearing."""
    assert client.get("/api/v1/receipts/cache").json()["has_entry"] is False

    client.get("/api/v1/receipts")
    stats = client.get("/api/v1/receipts/cache").json()
    assert stats["has_entry"] is True
    assert stats["document_count"] == 1
    assert stats["size_bytes"] > 0

    response = client.delete("/api/v1/receipts/cache")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["cleared"] is True
    assert client.get("/api/v1/receipts/cache").json()["has_entry"] is False


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "http_requests_total" in response.text
    assert "receipt_cache_writes_total" in response.text
    assert "classification_requests_total" in response.text
