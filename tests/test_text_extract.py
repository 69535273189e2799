"""Tests for plain-text extraction from source files."""

from pypdf import PdfWriter

from kb_ingest.text_extract import SOURCE_EXTENSIONS, extract_text


def test_supported_extensions():
    """Test the source types accepted for ingestion."""
    assert SOURCE_EXTENSIONS == {".pdf", ".txt", ".md"}


def test_markdown_and_text(tmp_path):
    """Test that text files are read as-is."""
    md = tmp_path / "guide.md"
    md.write_text("ACCESS\nClick reset.\n", encoding="utf-8")
    txt = tmp_path / "notes.TXT"
    txt.write_text("plain notes", encoding="utf-8")
    assert extract_text(str(md)) == "ACCESS\nClick reset.\n"
    assert extract_text(str(txt)) == "plain notes"


def test_invalid_utf8_is_replaced(tmp_path):
    """Test that undecodable bytes do not fail extraction."""
    path = tmp_path / "latin.txt"
    path.write_bytes(b"caf\xe9 menu")
    assert extract_text(str(path)).startswith("caf")


def test_blank_text_is_empty(tmp_path):
    """Test that whitespace and form feeds alone count as no text layer."""
    path = tmp_path / "blank.md"
    path.write_text(" \n\f\n ", encoding="utf-8")
    assert extract_text(str(path)) == ""


def test_pdf_without_text_layer(tmp_path):
    """Test a scanned-style PDF with no extractable text."""
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    path = tmp_path / "scan.pdf"
    with open(path, "wb") as f:
        writer.write(f)
    assert extract_text(str(path)) == ""


def test_corrupt_pdf_is_empty(tmp_path):
    """Test that an unreadable PDF is reported as empty, not raised."""
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"not really a pdf")
    assert extract_text(str(path)) == ""


def test_unsupported_type_is_empty(tmp_path):
    """Test files outside the supported types."""
    path = tmp_path / "guide.docx"
    path.write_bytes(b"PK")
    assert extract_text(str(path)) == ""


def test_missing_file_is_empty(tmp_path):
    """Test a path that does not exist."""
    assert extract_text(str(tmp_path / "missing.md")) == ""
