from __future__ import annotations

import logging
from io import BytesIO

from docx import Document
from pypdf import PdfReader

from .models import ExtractedDocument

logger = logging.getLogger(__name__)

MIN_PDF_TEXT_CHARS = 10

EMPTY_PDF_PLACEHOLDER = (
    "PDF text extraction completed but content appears to be empty or very short. "
    "This may be a scanned PDF or image-based document."
)
PDF_FAILURE_PREFIX = "PDF extraction failed:"
DEGRADED_TEXT_PREFIX = "Text extraction failed:"


class UnsupportedFormat(ValueError):
    def __init__(self, declared_type: str):
        super().__init__(f"Unsupported file type: {declared_type}")
        self.declared_type = declared_type


class DocxExtractionFailed(RuntimeError):
    pass


def normalize_file_type(declared_type: str) -> str:
    """Map a declared extension or MIME type onto ``pdf`` or ``docx``."""
    kind = (declared_type or "").strip().lower()
    if kind in {"pdf", "application/pdf"}:
        return "pdf"
    if kind in {"docx", "doc"} or "word" in kind or "document" in kind:
        return "docx"
    raise UnsupportedFormat(declared_type)


def is_placeholder_text(text: str | None) -> bool:
    """True for diagnostic text stored in place of a real extraction."""
    value = (text or "").strip()
    if not value:
        return True
    return (
        value == EMPTY_PDF_PLACEHOLDER
        or value.startswith(PDF_FAILURE_PREFIX)
        or value.startswith(DEGRADED_TEXT_PREFIX)
    )


def _extract_pdf(content: bytes) -> ExtractedDocument:
    try:
        reader = PdfReader(BytesIO(content))
        pages = [(page.extract_text() or "") for page in reader.pages]
    except Exception as exc:  # noqa: BLE001 - a failed PDF still yields a storable record
        logger.warning("pdf_extraction_failed bytes=%s: %s", len(content), exc)
        return ExtractedDocument(
            text=(
                f"{PDF_FAILURE_PREFIX} {exc}. "
                "The PDF might be password protected, corrupted, or image-based."
            ),
            source_type="pdf",
            status="failed",
            reason=str(exc),
        )

    text = "\n".join(pages).strip()
    if len(text) < MIN_PDF_TEXT_CHARS:
        logger.info("pdf_extraction_empty bytes=%s chars=%s", len(content), len(text))
        return ExtractedDocument(
            text=EMPTY_PDF_PLACEHOLDER,
            source_type="pdf",
            status="empty",
            reason="No extractable text found in PDF.",
        )
    return ExtractedDocument(text=text, source_type="pdf")


def _extract_docx(content: bytes) -> ExtractedDocument:
    try:
        document = Document(BytesIO(content))
        lines = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text and cell.text.strip()]
                if cells:
                    lines.append(" ".join(cells))
    except Exception as exc:
        logger.warning("docx_extraction_failed bytes=%s: %s", len(content), exc)
        raise DocxExtractionFailed("Failed to extract text from DOCX") from exc

    text = "\n".join(lines)
    if not text.strip():
        return ExtractedDocument(
            text=text,
            source_type="docx",
            status="empty",
            reason="No extractable text found in DOCX.",
        )
    return ExtractedDocument(text=text, source_type="docx")


def extract_document(content: bytes, declared_type: str) -> ExtractedDocument:
    file_type = normalize_file_type(declared_type)
    if file_type == "pdf":
        return _extract_pdf(content)
    return _extract_docx(content)
