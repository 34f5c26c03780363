"""
ingestion.py — PDF bytes to plain text.

The bulletin is a born-digital PDF, so there is no OCR path here. We let
pdfplumber lay out each page's text and join the pages with newlines.
Layout-preserving extraction is what keeps the runs of spaces between
columns that the parser splits on. The default extractor squeezes them
to single spaces on some pages and the market rows fall apart.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

import pdfplumber

from price_extraction.config import config

logger = logging.getLogger(__name__)


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """
    Extract the text of every page, in page order.

    Pages with no extractable text contribute nothing. The bulletin
    sometimes ends with a blank signature page.

    Raises:
        ValueError: The bytes are not a readable PDF.
    """
    if not pdf_bytes:
        raise ValueError("Empty PDF payload")

    parts = []
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            total_pages = len(pdf.pages)
            for page in pdf.pages:
                text = page.extract_text(layout=True) or ""
                if text.strip():
                    parts.append(text)
    except Exception as exc:
        # pdfminer raises a zoo of exception types for truncated, encrypted
        # or non-PDF input. Callers only need to know it wasn't readable.
        raise ValueError(f"Could not read PDF: {exc}") from exc

    full_text = "\n".join(parts)
    logger.info(
        "Extracted %d chars from %d/%d pages",
        len(full_text), len(parts), total_pages,
    )
    return full_text


def extract_pdf_file(file_path: str) -> str:
    """Read a PDF from disk and extract its text."""
    path = Path(file_path)
    _validate_file(path)
    return extract_pdf_text(path.read_bytes())


def _validate_file(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if path.suffix.lower() != ".pdf":
        raise ValueError(f"Unsupported format '{path.suffix}'. Expected .pdf")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_pdf_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f} MB). Max: {config.max_pdf_size_mb} MB"
        )
