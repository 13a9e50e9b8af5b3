"""Text extraction from uploaded complaint documents (text, PDF, DOCX)."""

import io
from dataclasses import dataclass, field
from typing import Any

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.privacy import extract_structured_data

logger = get_logger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".json", ".eml"}
PDF_EXTENSIONS = {".pdf"}
DOCX_EXTENSIONS = {".docx"}

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Pages with less extractable text than this are treated as scanned
MIN_PAGE_TEXT_CHARS = 50

# Lazy import to avoid loading PyMuPDF at module load
fitz = None


def _get_fitz():
    """Lazy load PyMuPDF."""
    global fitz
    if fitz is None:
        import fitz as _fitz

        fitz = _fitz
    return fitz


@dataclass
class FileTextResult:
    """Result of text extraction from a file."""

    text: str
    detected_encoding: str
    extraction_method: str = "text"
    page_count: int = 1
    ocr_pages: list[int] = field(default_factory=list)

    @property
    def needs_ocr(self) -> bool:
        return bool(self.ocr_pages)


def _get_extension(filename: str) -> str:
    """Extract lowercase file extension from filename."""
    if "." in filename:
        return "." + filename.rsplit(".", 1)[-1].lower()
    return ""


def _decode_bytes(raw_bytes: bytes) -> tuple[str, str]:
    """
    Attempt to decode bytes using fallback chain.

    Returns:
        Tuple of (decoded_text, encoding_name)

    Raises:
        ValueError: If no encoding works
    """
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        return raw_bytes.decode("utf-8-sig"), "utf-8-sig"

    for encoding in ("utf-8", "latin-1"):
        try:
            return raw_bytes.decode(encoding), encoding
        except UnicodeDecodeError:
            continue

    raise ValueError(
        "Unable to decode file content. Supported encodings: UTF-8, UTF-8-BOM, Latin-1."
    )


def _extract_pdf(raw_bytes: bytes, filename: str) -> FileTextResult:
    fitz_lib = _get_fitz()

    try:
        doc = fitz_lib.open(stream=io.BytesIO(raw_bytes), filetype="pdf")
    except Exception as e:
        raise ValueError(f"Could not open PDF {filename}: {e}") from e

    parts: list[str] = []
    ocr_pages: list[int] = []
    try:
        page_count = len(doc)
        for page_num in range(page_count):
            text = doc[page_num].get_text("text")
            if len(text.strip()) < MIN_PAGE_TEXT_CHARS:
                ocr_pages.append(page_num + 1)
            if text.strip():
                parts.append(text.strip())
    finally:
        doc.close()

    if not ocr_pages:
        method = "native"
    elif len(ocr_pages) == page_count:
        method = "ocr_required"
    else:
        method = "hybrid"

    logger.info(
        f"Extracted PDF {filename}: {page_count} pages, {len(ocr_pages)} need OCR",
        extra={"page_count": page_count, "ocr_pages": len(ocr_pages)},
    )
    return FileTextResult(
        text="\n\n".join(parts),
        detected_encoding="binary",
        extraction_method=method,
        page_count=page_count,
        ocr_pages=ocr_pages,
    )


def _extract_docx(raw_bytes: bytes, filename: str) -> FileTextResult:
    from docx import Document

    try:
        doc = Document(io.BytesIO(raw_bytes))
    except Exception as e:
        raise ValueError(f"Could not open DOCX {filename}: {e}") from e

    parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

    # Tables as pipe-delimited rows
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))

    return FileTextResult(
        text="\n\n".join(parts),
        detected_encoding="binary",
        extraction_method="docx",
    )


def extract_text_from_upload(
    filename: str,
    content_type: str | None,
    raw_bytes: bytes,
) -> FileTextResult:
    """
    Extract text content from an uploaded file.

    Args:
        filename: Original filename
        content_type: MIME content type (may be None)
        raw_bytes: Raw file bytes

    Returns:
        FileTextResult with extracted text; PDF pages without a text layer
        are listed in ``ocr_pages``

    Raises:
        ValueError: If the file is too large, of an unsupported type, or
            cannot be decoded
    """
    max_bytes = get_settings().MAX_UPLOAD_BYTES
    if len(raw_bytes) > max_bytes:
        raise ValueError(
            f"File too large ({len(raw_bytes)} bytes). Maximum is {max_bytes} bytes."
        )

    extension = _get_extension(filename)
    content_type = (content_type or "").lower()

    if extension in PDF_EXTENSIONS or content_type == "application/pdf":
        return _extract_pdf(raw_bytes, filename)

    if extension in DOCX_EXTENSIONS or content_type == DOCX_CONTENT_TYPE:
        return _extract_docx(raw_bytes, filename)

    if extension in TEXT_EXTENSIONS or content_type.startswith("text/"):
        text, encoding = _decode_bytes(raw_bytes)
        return FileTextResult(text=text, detected_encoding=encoding)

    allowed = ", ".join(sorted(TEXT_EXTENSIONS | PDF_EXTENSIONS | DOCX_EXTENSIONS))
    raise ValueError(f"Unsupported file type. Allowed extensions: {allowed}.")


def build_processed_data(result: FileTextResult) -> dict[str, Any]:
    """Anonymised text plus structured fields, as stored on a document row."""
    processed = extract_structured_data(result.text)
    processed.update(
        {
            "extraction_method": result.extraction_method,
            "page_count": result.page_count,
            "ocr_pages": result.ocr_pages,
            "needs_ocr": result.needs_ocr,
        }
    )
    return processed
