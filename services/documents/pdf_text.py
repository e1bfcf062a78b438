"""PDF text layer extraction using PyMuPDF.

Reads the embedded text of digital PDFs page by page. Scanned PDFs without a
text layer come back as a successful result with empty text; they are not
OCR'd.

Based on PyMuPDF documentation:
https://pymupdf.readthedocs.io/en/latest/recipes-text.html
"""

import logging
from pathlib import Path

import fitz
from pydantic import BaseModel

from services.extraction.schema import RawDocument
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class PDFTextResult(BaseModel):
    """Result of PDF text extraction.

    Attributes:
        text: Text of all pages joined by newlines
        page_count: Number of pages in the document
        success: Whether the PDF could be read
        error: Error message if the PDF could not be read
    """

    text: str = ""
    page_count: int = 0
    success: bool
    error: str | None = None

    def to_raw_document(self, source_id: str) -> RawDocument:
        """Wrap the extracted text as the input of field extraction."""
        return RawDocument(source_id=source_id, text=self.text, page_count=self.page_count)


class PDFTextService:
    """Extract text from PDF files in the documents folder."""

    def __init__(self, settings: Settings) -> None:
        """Initialize PDF text service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.documents_dir = Path(settings.documents_dir)

    def list_documents(self) -> list[str]:
        """List the PDF files that make up the live document set.

        Returns:
            Sorted PDF file names (the document identifiers)
        """
        if not self.documents_dir.is_dir():
            logger.warning(f"Documents folder not found: {self.documents_dir}")
            return []
        return sorted(
            path.name
            for path in self.documents_dir.iterdir()
            if path.is_file() and path.suffix.lower() == ".pdf"
        )

    def document_path(self, document_id: str) -> Path:
        return self.documents_dir / document_id

    def extract_text(self, pdf_path: Path) -> PDFTextResult:
        """Extract the text layer of a PDF file.

        Args:
            pdf_path: Path to PDF file

        Returns:
            PDFTextResult with text and page count or error information
        """
        if not pdf_path.exists():
            return PDFTextResult(success=False, error=f"PDF file not found: {pdf_path}")

        try:
            with fitz.open(pdf_path) as doc:
                return self._read_pages(doc)
        except Exception as e:
            logger.error(f"Failed to read PDF {pdf_path.name}: {e}")
            return PDFTextResult(success=False, error=f"PDF text extraction failed: {str(e)}")

    def extract_text_from_bytes(self, data: bytes) -> PDFTextResult:
        """Extract the text layer of an uploaded PDF.

        Args:
            data: PDF file content

        Returns:
            PDFTextResult with text and page count or error information
        """
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                return self._read_pages(doc)
        except Exception as e:
            logger.error(f"Failed to read uploaded PDF: {e}")
            return PDFTextResult(success=False, error=f"PDF text extraction failed: {str(e)}")

    def _read_pages(self, doc: fitz.Document) -> PDFTextResult:
        text = "\n".join(page.get_text() for page in doc)
        return PDFTextResult(text=text, page_count=doc.page_count, success=True)
