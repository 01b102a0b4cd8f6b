"""
Text extraction for uploaded files.

``extract`` turns raw bytes plus a declared MIME type and file name into
plain text and structural metadata. The file kind is resolved from the MIME
type first and the extension second; each kind has exactly one handler.
"""
import csv
import io
import json
import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from pypdf import PdfReader

from .errors import EmptyContentError, ExtractionError, UnsupportedTypeError
from .logging_config import logger

PDF_TIMEOUT_SECONDS = 30.0
PDF_FAILURE_PREFIX = "[PDF extraction failed]"

# CSV size regimes, by number of data rows
SMALL_CSV_MAX_ROWS = 100
MEDIUM_CSV_MAX_ROWS = 1000
MEDIUM_CSV_SAMPLE_ROWS = 100
LARGE_CSV_EXAMPLE_ROWS = 5

FULL_CSV_MARKER = "Full CSV Content:"
SAMPLE_CSV_MARKER = "Sample CSV Content:"
EXAMPLE_CSV_MARKER = "Example Rows:"
JSON_SECTION_MARKER = "Structured JSON Format:"
SUMMARY_MARKER = "Summary of Remaining Rows:"
LARGE_CSV_MARKER = "Large CSV Dataset:"


class FileKind(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    DOC = "doc"
    SPREADSHEET = "spreadsheet"
    CSV = "csv"
    JSON = "json"
    TEXT = "text"
    HTML = "html"
    XML = "xml"


class CsvRegime(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class ExtractionResult:
    text: str
    kind: FileKind
    metadata: Dict[str, Any] = field(default_factory=dict)


_MIME_KINDS = {
    "application/pdf": FileKind.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": FileKind.DOCX,
    "application/msword": FileKind.DOC,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileKind.SPREADSHEET,
    "application/vnd.ms-excel": FileKind.SPREADSHEET,
    "text/csv": FileKind.CSV,
    "application/json": FileKind.JSON,
    "text/plain": FileKind.TEXT,
    "text/markdown": FileKind.TEXT,
    "text/html": FileKind.HTML,
    "application/xml": FileKind.XML,
    "text/xml": FileKind.XML,
}

_EXTENSION_KINDS = {
    ".pdf": FileKind.PDF,
    ".docx": FileKind.DOCX,
    ".doc": FileKind.DOC,
    ".xlsx": FileKind.SPREADSHEET,
    ".xls": FileKind.SPREADSHEET,
    ".csv": FileKind.CSV,
    ".json": FileKind.JSON,
    ".txt": FileKind.TEXT,
    ".md": FileKind.TEXT,
    ".log": FileKind.TEXT,
    ".html": FileKind.HTML,
    ".htm": FileKind.HTML,
    ".xml": FileKind.XML,
}


def detect_kind(declared_type: str, file_name: str) -> FileKind:
    """
    Resolve the file kind from the MIME type, falling back to the extension.

    Raises:
        UnsupportedTypeError: if neither matches a supported kind
    """
    mime = (declared_type or "").split(";")[0].strip().lower()
    if mime in _MIME_KINDS:
        return _MIME_KINDS[mime]

    ext = os.path.splitext((file_name or "").lower())[1]
    if ext in _EXTENSION_KINDS:
        return _EXTENSION_KINDS[ext]

    raise UnsupportedTypeError(f"Unsupported file type: {declared_type or ext or 'unknown'}")


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


# ==================== PDF ====================

def _pdf_failure(reason: str, detail: str) -> Tuple[str, Dict[str, Any]]:
    text = (
        f"{PDF_FAILURE_PREFIX} {detail} "
        "The document was stored without searchable text; it may be image-based, "
        "encrypted, or corrupted."
    )
    return text, {"extraction_failed": True, "reason": reason}


def _parse_pdf(data: bytes) -> Tuple[str, Dict[str, Any]]:
    try:
        pdf = PdfReader(io.BytesIO(data))
        if pdf.is_encrypted:
            try:
                unlocked = pdf.decrypt("")
            except Exception as e:
                logger.warning("PDF decryption failed", error=str(e))
                unlocked = False
            # PasswordType.NOT_DECRYPTED is 0
            if not unlocked:
                return _pdf_failure("encrypted", "The PDF is password protected.")
        pages = list(pdf.pages)

        parts = [page.extract_text() or "" for page in pages]
        info = pdf.metadata
    except Exception as e:
        logger.warning("PDF parsing failed", error=str(e))
        return _pdf_failure("corrupted", "The PDF could not be parsed.")

    text = "\n\n".join(p.strip() for p in parts if p.strip())
    if not text:
        return _pdf_failure("no_text", "No text layer was found.")

    metadata: Dict[str, Any] = {"pages": len(pages)}
    if info:
        if info.title:
            metadata["title"] = str(info.title)
        if info.author:
            metadata["author"] = str(info.author)
    return text, metadata


def read_text_from_pdf(data: bytes, timeout: float = PDF_TIMEOUT_SECONDS) -> Tuple[str, Dict[str, Any]]:
    """
    Extract PDF text within a time budget.

    Never raises for bad PDFs: a failure notice is returned as the text and
    the metadata carries ``extraction_failed`` plus a ``reason``.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_parse_pdf, data)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("PDF extraction timed out", timeout_s=timeout)
        return _pdf_failure("timeout", f"Parsing exceeded {timeout:g} seconds.")
    finally:
        # don't block on a runaway parse
        executor.shutdown(wait=False)


# ==================== Word ====================

def extract_table_text(table) -> str:
    """
    Convert a DOCX table to readable text format.
    Each row is preserved with clear separators.
    """
    lines = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if not any(cells):
            continue
        lines.append(" | ".join(cells))
    return "\n".join(lines)


def read_text_from_docx(data: bytes) -> Tuple[str, Dict[str, Any]]:
    """
    Extract text from DOCX file including both paragraphs and tables.
    Tables are converted to readable text format.
    """
    doc = DocxDocument(io.BytesIO(data))
    parts = []

    for para in doc.paragraphs:
        text = para.text.strip()
        if text:
            parts.append(text)

    for table in doc.tables:
        table_text = extract_table_text(table)
        if table_text:
            parts.append(table_text)

    metadata: Dict[str, Any] = {"paragraphs": len(doc.paragraphs), "tables": len(doc.tables)}
    title = doc.core_properties.title
    if title:
        metadata["title"] = title
    return "\n\n".join(parts), metadata


def read_text_from_doc(data: bytes) -> Tuple[str, Dict[str, Any]]:
    try:
        return read_text_from_docx(data)
    except Exception:
        raise ExtractionError(
            "DOC files have limited support. Please convert to DOCX for better results."
        )


# ==================== Spreadsheets ====================

def read_text_from_spreadsheet(data: bytes) -> Tuple[str, Dict[str, Any]]:
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, dtype=str)
    parts = []
    for name, frame in sheets.items():
        sheet_csv = frame.fillna("").to_csv(index=False, header=False).strip()
        parts.append(f"=== Sheet: {name} ===\n{sheet_csv}")
    return "\n\n".join(parts), {"sheets": list(sheets.keys())}


# ==================== CSV ====================

def classify_csv_rows(row_count: int) -> CsvRegime:
    if row_count <= SMALL_CSV_MAX_ROWS:
        return CsvRegime.SMALL
    if row_count <= MEDIUM_CSV_MAX_ROWS:
        return CsvRegime.MEDIUM
    return CsvRegime.LARGE


def _csv_lines(rows: List[List[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue().rstrip("\n")


def _column_summary(header: str, values: List[str]) -> str:
    present = [v for v in values if v.strip()]
    line = f"- {header}: {len(set(present))} distinct values"
    numbers = []
    for v in present:
        try:
            numbers.append(float(v))
        except ValueError:
            break
    else:
        if numbers:
            line += f"; numeric range {min(numbers):g} to {max(numbers):g}"
    return line


def read_text_from_csv(data: bytes, file_name: str = "") -> Tuple[str, Dict[str, Any]]:
    """
    Render CSV content according to its size regime.

    Small files keep the raw CSV plus one JSON object per row. Medium files
    keep the header and a leading sample in full and summarize the rest.
    Large files keep only the shape, the headers and a few example rows.
    """
    raw = _decode(data).lstrip("\ufeff")
    try:
        parsed = [row for row in csv.reader(io.StringIO(raw)) if any(c.strip() for c in row)]
    except csv.Error as e:
        raise ExtractionError(f"Failed to parse CSV: {e}")

    if not parsed:
        return "", {"csv_regime": CsvRegime.SMALL.value, "rows": 0, "columns": 0, "headers": []}

    headers = [h.strip() for h in parsed[0]]
    rows = parsed[1:]
    regime = classify_csv_rows(len(rows))
    shape = f"Rows: {len(rows)} | Columns: {len(headers)}"
    header_line = "Headers: " + " | ".join(headers)

    if regime is CsvRegime.SMALL:
        records = [dict(zip(headers, row)) for row in rows]
        sections = [
            f"CSV File: {file_name}",
            shape,
            header_line,
            "",
            FULL_CSV_MARKER,
            _csv_lines([headers] + rows),
        ]
        if records:
            sections += [
                "",
                JSON_SECTION_MARKER,
                "\n".join(json.dumps(r, ensure_ascii=False) for r in records),
            ]
    elif regime is CsvRegime.MEDIUM:
        sample = rows[:MEDIUM_CSV_SAMPLE_ROWS]
        rest = rows[MEDIUM_CSV_SAMPLE_ROWS:]
        summary = [
            _column_summary(h, [r[i] if i < len(r) else "" for r in rest])
            for i, h in enumerate(headers)
        ]
        sections = [
            f"CSV Data ({len(rows)} rows x {len(headers)} columns): {file_name}",
            header_line,
            "",
            SAMPLE_CSV_MARKER,
            _csv_lines([headers] + sample),
            "",
            SUMMARY_MARKER,
            f"{len(rest)} further rows",
            "\n".join(summary),
        ]
    else:
        sections = [
            f"{LARGE_CSV_MARKER} {file_name}",
            shape,
            header_line,
            "",
            EXAMPLE_CSV_MARKER,
            _csv_lines([headers] + rows[:LARGE_CSV_EXAMPLE_ROWS]),
        ]

    metadata = {
        "csv_regime": regime.value,
        "rows": len(rows),
        "columns": len(headers),
        "headers": headers,
    }
    return "\n".join(sections), metadata


# ==================== JSON / text / markup ====================

def read_text_from_json(data: bytes) -> Tuple[str, Dict[str, Any]]:
    raw = _decode(data)
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw, {"valid_json": False}

    metadata: Dict[str, Any] = {"valid_json": True, "json_type": type(parsed).__name__}
    if isinstance(parsed, list):
        metadata["items"] = len(parsed)
    return json.dumps(parsed, indent=2, ensure_ascii=False), metadata


def read_text_from_txt(data: bytes) -> Tuple[str, Dict[str, Any]]:
    return _decode(data), {}


def read_text_from_html(data: bytes) -> Tuple[str, Dict[str, Any]]:
    soup = BeautifulSoup(_decode(data), "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    metadata: Dict[str, Any] = {}
    if soup.title and soup.title.string:
        metadata["title"] = soup.title.string.strip()
    text = " ".join(soup.get_text(separator=" ").split())
    return text, metadata


def read_text_from_xml(data: bytes) -> Tuple[str, Dict[str, Any]]:
    soup = BeautifulSoup(_decode(data), "html.parser")
    root = next((el for el in soup.contents if getattr(el, "name", None)), None)
    metadata: Dict[str, Any] = {"root": root.name} if root is not None else {}
    text = " ".join(soup.get_text(separator=" ").split())
    return text, metadata


_HANDLERS: Dict[FileKind, Callable[..., Tuple[str, Dict[str, Any]]]] = {
    FileKind.DOCX: read_text_from_docx,
    FileKind.DOC: read_text_from_doc,
    FileKind.SPREADSHEET: read_text_from_spreadsheet,
    FileKind.JSON: read_text_from_json,
    FileKind.TEXT: read_text_from_txt,
    FileKind.HTML: read_text_from_html,
    FileKind.XML: read_text_from_xml,
}


def extract(
    data: bytes,
    declared_type: str,
    file_name: str,
    pdf_timeout: Optional[float] = None,
) -> ExtractionResult:
    """
    Extract plain text and metadata from an uploaded file.

    Args:
        data: Raw file bytes
        declared_type: MIME type sent by the client (may be empty)
        file_name: Original file name, used for extension fallback
        pdf_timeout: Time budget for PDF parsing in seconds

    Returns:
        ExtractionResult with the text, resolved kind and metadata

    Raises:
        UnsupportedTypeError: unknown MIME type and extension
        ExtractionError: the parser for a supported type failed (never for PDF)
        EmptyContentError: no usable text was extracted
    """
    kind = detect_kind(declared_type, file_name)

    if kind is FileKind.PDF:
        text, metadata = read_text_from_pdf(data, pdf_timeout or PDF_TIMEOUT_SECONDS)
    elif kind is FileKind.CSV:
        text, metadata = read_text_from_csv(data, file_name)
    else:
        try:
            text, metadata = _HANDLERS[kind](data)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error("Error extracting text", filename=file_name, kind=kind.value, error=str(e))
            raise ExtractionError(f"Failed to extract text from {file_name}: {e}")

    if not text or not text.strip():
        raise EmptyContentError(
            f"Could not extract text from {file_name}. "
            "The file might be empty, image-based, or corrupted."
        )

    logger.info("Extracted text", filename=file_name, kind=kind.value, chars=len(text))
    return ExtractionResult(text=text, kind=kind, metadata=metadata)
