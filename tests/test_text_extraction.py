"""Tests for document text extraction."""

import io
import json
import threading
import time

import pandas as pd
import pytest
from docx import Document
from pypdf import PdfWriter

from knowledge_garden import text_extraction
from knowledge_garden.errors import EmptyContentError, ExtractionError, UnsupportedTypeError
from knowledge_garden.text_extraction import (
    EXAMPLE_CSV_MARKER,
    FULL_CSV_MARKER,
    JSON_SECTION_MARKER,
    LARGE_CSV_MARKER,
    PDF_FAILURE_PREFIX,
    SAMPLE_CSV_MARKER,
    SUMMARY_MARKER,
    FileKind,
    detect_kind,
    extract,
    read_text_from_csv,
)


def _pdf_bytes(writer) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


class TestKindDetection:
    """MIME type first, extension second."""

    @pytest.mark.parametrize("declared,name,expected", [
        ("application/pdf", "whatever.bin", FileKind.PDF),
        ("text/csv; charset=utf-8", "data", FileKind.CSV),
        ("", "notes.md", FileKind.TEXT),
        ("application/octet-stream", "REPORT.PDF", FileKind.PDF),
        ("", "book.xlsx", FileKind.SPREADSHEET),
        ("text/xml", "feed", FileKind.XML),
        ("", "page.htm", FileKind.HTML),
    ])
    def test_detect_kind(self, declared, name, expected):
        assert detect_kind(declared, name) is expected

    def test_unknown_type_rejected(self):
        with pytest.raises(UnsupportedTypeError):
            extract(b"PK\x03\x04", "application/zip", "archive.zip")


class TestPlainFormats:
    def test_text_file(self):
        result = extract(b"Hello there\nSecond line", "text/plain", "hello.txt")

        assert result.kind is FileKind.TEXT
        assert result.text == "Hello there\nSecond line"

    def test_blank_text_is_empty_content(self):
        with pytest.raises(EmptyContentError):
            extract(b"   \n\t ", "text/plain", "blank.txt")

    def test_valid_json_pretty_printed(self):
        result = extract(b'[{"a": 1}, {"a": 2}]', "application/json", "items.json")

        assert json.loads(result.text) == [{"a": 1}, {"a": 2}]
        assert "\n" in result.text
        assert result.metadata["valid_json"] is True
        assert result.metadata["items"] == 2

    def test_invalid_json_kept_raw(self):
        result = extract(b"{not json", "", "broken.json")

        assert result.text == "{not json"
        assert result.metadata["valid_json"] is False

    def test_html_strips_markup_and_scripts(self):
        html = (b"<html><head><title>Handbook</title><style>.x{color:red}</style></head>"
                b"<body><p>Hello <b>world</b></p><script>var secret = 1;</script></body></html>")
        result = extract(html, "text/html", "page.html")

        assert "Hello world" in result.text
        assert "secret" not in result.text
        assert "color" not in result.text
        assert result.metadata["title"] == "Handbook"

    def test_xml_text_and_root(self):
        result = extract(b"<catalog><book>Dune</book><book>Emma</book></catalog>", "", "books.xml")

        assert result.text == "Dune Emma"
        assert result.metadata["root"] == "catalog"


class TestOfficeFormats:
    def test_docx_paragraphs_and_tables(self):
        doc = Document()
        doc.add_paragraph("Leave policy overview")
        table = doc.add_table(rows=2, cols=2)
        table.cell(0, 0).text = "Type"
        table.cell(0, 1).text = "Days"
        table.cell(1, 0).text = "Vacation"
        table.cell(1, 1).text = "20"
        buf = io.BytesIO()
        doc.save(buf)

        result = extract(buf.getvalue(), "", "policy.docx")

        assert result.kind is FileKind.DOCX
        assert "Leave policy overview" in result.text
        assert "Type | Days" in result.text
        assert "Vacation | 20" in result.text
        assert result.metadata["tables"] == 1

    def test_doc_that_cannot_be_read(self):
        with pytest.raises(ExtractionError, match="DOC files have limited support"):
            extract(b"\xd0\xcf\x11\xe0 legacy word", "application/msword", "old.doc")

    def test_corrupt_docx_is_extraction_error(self):
        with pytest.raises(ExtractionError):
            extract(b"not a zip file", "", "broken.docx")

    def test_spreadsheet_sheets(self):
        buf = io.BytesIO()
        pd.DataFrame({"name": ["Alice", "Bob"], "dept": ["HR", "Sales"]}).to_excel(
            buf, index=False, sheet_name="Staff"
        )

        result = extract(buf.getvalue(), "", "staff.xlsx")

        assert result.kind is FileKind.SPREADSHEET
        assert "=== Sheet: Staff ===" in result.text
        assert "name,dept" in result.text
        assert "Alice,HR" in result.text
        assert result.metadata["sheets"] == ["Staff"]


class TestPdf:
    def test_corrupt_pdf_returns_failure_notice(self):
        """Bad PDFs never raise; the notice is stored as the document text."""
        result = extract(b"this is not a pdf", "application/pdf", "broken.pdf")

        assert result.text.startswith(PDF_FAILURE_PREFIX)
        assert result.metadata["extraction_failed"] is True
        assert result.metadata["reason"] == "corrupted"

    def test_encrypted_pdf(self):
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)
        writer.encrypt("secret")

        result = extract(_pdf_bytes(writer), "application/pdf", "locked.pdf")

        assert result.text.startswith(PDF_FAILURE_PREFIX)
        assert result.metadata["extraction_failed"] is True
        assert result.metadata["reason"] == "encrypted"

    def test_image_only_pdf_has_no_text(self):
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)

        result = extract(_pdf_bytes(writer), "application/pdf", "scan.pdf")

        assert result.metadata["extraction_failed"] is True
        assert result.metadata["reason"] == "no_text"

    def test_slow_parse_hits_time_budget(self, monkeypatch):
        release = threading.Event()

        def stalled_parse(data):
            release.wait(5)
            return "late text", {}

        monkeypatch.setattr(text_extraction, "_parse_pdf", stalled_parse)
        try:
            started = time.perf_counter()
            result = extract(b"%PDF-1.4", "application/pdf", "huge.pdf", pdf_timeout=0.05)
            elapsed = time.perf_counter() - started
        finally:
            release.set()

        assert elapsed < 2
        assert result.text.startswith(PDF_FAILURE_PREFIX)
        assert result.metadata["extraction_failed"] is True
        assert result.metadata["reason"] == "timeout"


class TestCsvRegimes:
    """CSV rendering depends on row count."""

    def test_small_csv_has_full_content_and_json(self, sample_csv_bytes):
        text, metadata = read_text_from_csv(sample_csv_bytes, "people.csv")

        assert metadata["csv_regime"] == "small"
        assert metadata["rows"] == 4
        assert metadata["headers"] == ["name", "email", "age"]
        assert FULL_CSV_MARKER in text
        assert JSON_SECTION_MARKER in text
        assert "Bob,bob@example.com,25" in text
        assert '{"name": "Bob", "email": "bob@example.com", "age": "25"}' in text

    def test_medium_csv_sample_and_summary(self, csv_factory):
        text, metadata = read_text_from_csv(csv_factory(150), "scores.csv")

        assert metadata["csv_regime"] == "medium"
        assert SAMPLE_CSV_MARKER in text
        assert SUMMARY_MARKER in text
        assert "50 further rows" in text
        assert "99,name_99,2" in text
        assert "100,name_100" not in text

    def test_large_csv_examples_only(self, csv_factory):
        text, metadata = read_text_from_csv(csv_factory(1500), "big.csv")

        assert metadata["csv_regime"] == "large"
        assert metadata["rows"] == 1500
        assert text.startswith(LARGE_CSV_MARKER)
        assert EXAMPLE_CSV_MARKER in text
        assert "4,name_4" in text
        assert "5,name_5" not in text

    def test_bom_is_ignored(self):
        text, metadata = read_text_from_csv("\ufeffa,b\n1,2\n".encode("utf-8"), "bom.csv")

        assert metadata["headers"] == ["a", "b"]

    def test_header_only_csv(self):
        text, metadata = read_text_from_csv(b"a,b\n", "empty.csv")

        assert metadata["rows"] == 0
        assert JSON_SECTION_MARKER not in text
