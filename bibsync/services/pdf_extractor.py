"""
PDF document metadata extraction.

Reads the document information dictionary so a newly added PDF gets a
sensible item title before anyone edits its metadata.
"""

import logging
from pathlib import Path
from typing import Optional

from pypdf import PdfReader


logger = logging.getLogger(__name__)


class PDFMetadata:
    """Fields from a PDF's document information dictionary."""

    def __init__(self, title: Optional[str] = None, author: Optional[str] = None, page_count: int = 0):
        self.title = title
        self.author = author
        self.page_count = page_count

    def __repr__(self):
        return f"PDFMetadata(title={self.title!r}, author={self.author!r}, pages={self.page_count})"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_metadata(pdf_path: Path) -> PDFMetadata:
    """
    Read metadata from a PDF file.

    Args:
        pdf_path: Path to PDF file

    Returns:
        Extracted metadata; fields are None when absent

    Raises:
        FileNotFoundError: If PDF file doesn't exist
        ValueError: If file is not a valid PDF
    """
    if not pdf_path.exists():
        raise FileNotFoundError(f"PDF file not found: {pdf_path}")

    try:
        with open(pdf_path, "rb") as f:
            reader = PdfReader(f)
            info = reader.metadata
            return PDFMetadata(
                title=_clean(info.title) if info else None,
                author=_clean(info.author) if info else None,
                page_count=len(reader.pages),
            )
    except Exception as e:
        logger.error(f"Failed to read metadata from {pdf_path}: {e}")
        raise ValueError(f"Invalid PDF file: {pdf_path}") from e


def title_for_pdf(pdf_path: Path) -> str:
    """Title from the PDF metadata, else the filename without its extension."""
    try:
        title = extract_metadata(pdf_path).title
    except ValueError:
        title = None
    if title:
        return title
    logger.debug(f"No metadata title in {pdf_path.name}; using file name")
    return pdf_path.stem
