"""
Tests for PDF metadata extraction.
"""

import pytest
from pypdf import PdfWriter

from bibsync.services.pdf_extractor import PDFMetadata, extract_metadata, title_for_pdf


@pytest.fixture
def titled_pdf(tmp_path):
    """A two-page PDF with title and author metadata."""
    writer = PdfWriter()
    for _ in range(2):
        writer.add_blank_page(width=612, height=792)
    writer.add_metadata({"/Title": "  Local-First Software  ", "/Author": "Kleppmann"})

    path = tmp_path / "kleppmann2019.pdf"
    with open(path, "wb") as f:
        writer.write(f)
    return path


@pytest.fixture
def untitled_pdf(tmp_path):
    """A one-page PDF without a title."""
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)

    path = tmp_path / "scan_0042.pdf"
    with open(path, "wb") as f:
        writer.write(f)
    return path


class TestExtractMetadata:
    """Tests for extract_metadata()."""

    def test_reads_title_author_and_pages(self, titled_pdf):
        metadata = extract_metadata(titled_pdf)

        assert metadata.title == "Local-First Software"
        assert metadata.author == "Kleppmann"
        assert metadata.page_count == 2

    def test_missing_title_is_none(self, untitled_pdf):
        metadata = extract_metadata(untitled_pdf)

        assert metadata.title is None
        assert metadata.page_count == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            extract_metadata(tmp_path / "missing.pdf")

    def test_invalid_pdf(self, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_text("This is not a PDF")

        with pytest.raises(ValueError, match="Invalid PDF"):
            extract_metadata(path)

    def test_repr(self):
        assert "pages=3" in repr(PDFMetadata(title="T", page_count=3))


class TestTitleForPdf:
    """Tests for title_for_pdf()."""

    def test_prefers_metadata_title(self, titled_pdf):
        assert title_for_pdf(titled_pdf) == "Local-First Software"

    def test_falls_back_to_file_stem(self, untitled_pdf):
        assert title_for_pdf(untitled_pdf) == "scan_0042"

    def test_unreadable_pdf_falls_back_to_file_stem(self, tmp_path):
        path = tmp_path / "Some Paper.pdf"
        path.write_bytes(b"%PDF-1.4\ngarbage\n%%EOF\n")

        assert title_for_pdf(path) == "Some Paper"
