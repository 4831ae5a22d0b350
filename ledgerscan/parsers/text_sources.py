"""Plain-text sources for uploaded files (OCR and structured-file flattening)."""

import logging
from pathlib import Path

import pandas as pd
import pytesseract
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from PIL import Image

from ledgerscan.config import settings
from ledgerscan.parsers.validation import decode_csv_contents

logger = logging.getLogger(__name__)

IMAGE_MIMES = ["image/jpeg", "image/png", "image/webp"]
PDF_MIME = "application/pdf"
CSV_MIMES = ["text/csv", "application/csv"]
EXCEL_MIMES = [
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",  # .xlsx
    "application/vnd.ms-excel",  # .xls
]
DOCX_MIMES = [
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # .docx
    "application/msword",  # .doc, binary format is not readable
]
STRUCTURED_MIMES = [*CSV_MIMES, *EXCEL_MIMES, *DOCX_MIMES]
ALLOWED_MIMES = [*IMAGE_MIMES, PDF_MIME, *STRUCTURED_MIMES]

PDF_NOT_SUPPORTED = (
    "PDF extraction is not supported yet. "
    "Please upload an image (PNG/JPEG/WebP), CSV, Excel, or Word."
)


class UnsupportedContentError(Exception):
    """Raised when no text source exists for a file's content type."""

    pass


def extract_text(path: Path | str, mime_type: str) -> str:
    """
    Return the plain text of a stored file.

    Empty output is possible and is not an error.

    Raises:
        UnsupportedContentError: For PDFs and unknown content types
    """
    path = Path(path)
    mime = (mime_type or "").lower()

    if mime in IMAGE_MIMES or mime.startswith("image/"):
        return _ocr_image(path)
    if mime in CSV_MIMES:
        return decode_csv_contents(path.read_bytes())
    if mime in EXCEL_MIMES:
        return _read_excel(path)
    if mime in DOCX_MIMES:
        return _read_docx(path)
    if mime == PDF_MIME:
        raise UnsupportedContentError(PDF_NOT_SUPPORTED)

    raise UnsupportedContentError(f"Unsupported content type: {mime_type}")


def _ocr_image(path: Path) -> str:
    """OCR an image with tesseract."""
    with Image.open(path) as img:
        text = pytesseract.image_to_string(
            img.convert("RGB"),
            lang=settings.ocr_languages,
            config="--oem 1 --psm 6 -c preserve_interword_spaces=1",
        )
    logger.info(f"OCR extracted {len(text)} chars from {path.name}")
    return text.strip()


def _read_excel(path: Path) -> str:
    """First sheet, one tab-joined line per row."""
    df = pd.read_excel(path, sheet_name=0, header=None, dtype=str)
    df = df.fillna("")
    lines = ["\t".join(str(cell).strip() for cell in row) for row in df.itertuples(index=False)]
    return "\n".join(line for line in lines if line.strip())


def _read_docx(path: Path) -> str:
    """Paragraphs followed by table rows."""
    try:
        doc = DocxDocument(str(path))
    except PackageNotFoundError:
        logger.warning(f"{path.name} is not a .docx package (binary .doc?), no text extracted")
        return ""

    full_text = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                full_text.append("\t".join(cells))
    return "\n".join(full_text).strip()
