"""Plain-text extraction from source documents."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pypdf import PdfReader

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = {".pdf"}
TEXT_EXTENSIONS = {".txt", ".md"}
SOURCE_EXTENSIONS = PDF_EXTENSIONS | TEXT_EXTENSIONS


def _extract_pdf_text(path: Path) -> str:
    """
    Extract text from a PDF with pypdf.

    Pages are joined with form feeds so page boundaries survive into the
    page splitter.
    """
    reader = PdfReader(path)
    return "\f".join(page.extract_text() or "" for page in reader.pages)


def extract_text(path: str) -> str:
    """
    Extract plain text from a source document.

    Args:
        path: Path to a .pdf, .txt or .md file

    Returns:
        The text, or "" when the document has no usable text layer or cannot
        be read (a warning is logged)
    """
    source = Path(path)
    ext = source.suffix.lower()
    try:
        if ext in PDF_EXTENSIONS:
            text = _extract_pdf_text(source)
        elif ext in TEXT_EXTENSIONS:
            text = source.read_text(encoding="utf-8", errors="replace")
        else:
            logger.warning("Unsupported source type %s: %s", ext or "(none)", os.path.basename(path))
            return ""
    except Exception as exc:
        logger.warning("Text extraction failed for %s: %s", path, exc)
        return ""

    if not text.replace("\f", "").strip():
        logger.warning("No text layer in %s", os.path.basename(path))
        return ""
    return text
