"""
Tabular analysis over ingested CSV documents.

Rows are rebuilt from the stored chunk text and queried in memory with a
fixed catalogue of templates (count, group-by, duplicate scan, aggregate,
top-N, distinct). Each template renders an SQL string for explanations
only; nothing is sent to a database.
"""
import csv
import io
import json
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..logging_config import get_logger
from ..storage import ResourceRecord, VectorStore
from ..text_extraction import (
    EXAMPLE_CSV_MARKER,
    FULL_CSV_MARKER,
    JSON_SECTION_MARKER,
    SAMPLE_CSV_MARKER,
    SUMMARY_MARKER,
)
from ..utils.helpers import sanitize_identifier

logger = get_logger("tabular")

RESULT_LIMIT = 10

CSV_SECTION_MARKERS = {FULL_CSV_MARKER, SAMPLE_CSV_MARKER, EXAMPLE_CSV_MARKER, "CSV Data:"}
END_SECTION_MARKERS = {JSON_SECTION_MARKER, SUMMARY_MARKER}

# Headers containing any of these are treated as numeric. Approximate by
# nature: "zip_code" or "player_name_2" are flagged too.
NUMERIC_KEYWORDS = [
    'price', 'cost', 'amount', 'total', 'sum', 'count', 'number', 'num',
    'age', 'year', 'score', 'rating', 'quantity', 'qty', 'weight', 'height',
    'salary', 'income', 'revenue', 'profit', 'sales', 'value', 'rate',
    'percentage', 'percent', 'ratio', 'index', 'level', 'grade',
]
IDENTIFIER_KEYWORDS = ('id', 'email', 'name')

DUPLICATE_WORDS = ('duplicate',)
COUNT_WORDS = ('count', 'how many')
AGGREGATE_WORDS = ('average', 'avg', 'mean', 'sum', 'max', 'maximum', 'min', 'minimum')
TOP_WORDS = ('top', 'highest')
BOTTOM_WORDS = ('bottom', 'lowest')
DISTINCT_WORDS = ('unique', 'distinct')


class QueryKind(str, Enum):
    COUNT = "count"
    GROUP_BY = "group_by"
    DUPLICATE_SCAN = "duplicate_scan"
    AGGREGATE = "aggregate"
    TOP_N = "top_n"
    DISTINCT = "distinct"


@dataclass(frozen=True)
class QueryTemplate:
    kind: QueryKind
    column: Optional[str] = None
    descending: bool = True
    limit: Optional[int] = None

    def sql(self, table: str, headers: Sequence[str] = ()) -> str:
        col = f'"{self.column}"' if self.column else None
        if self.kind is QueryKind.COUNT:
            return f"SELECT COUNT(*) AS total_rows FROM {table}"
        if self.kind is QueryKind.GROUP_BY:
            return (f"SELECT {col}, COUNT(*) AS count FROM {table} "
                    f"GROUP BY {col} ORDER BY count DESC LIMIT {self.limit}")
        if self.kind is QueryKind.DUPLICATE_SCAN:
            if col is None:
                cols = ", ".join(f'"{h}"' for h in headers)
                return (f"SELECT *, COUNT(*) AS duplicate_count FROM {table} "
                        f"GROUP BY {cols} HAVING COUNT(*) > 1")
            return (f"SELECT {col}, COUNT(*) AS count FROM {table} "
                    f"GROUP BY {col} HAVING COUNT(*) > 1 ORDER BY count DESC")
        if self.kind is QueryKind.AGGREGATE:
            cast = f"CAST({col} AS DECIMAL)"
            return (f"SELECT COUNT({col}) AS count, AVG({cast}) AS average, SUM({cast}) AS sum, "
                    f"MIN({cast}) AS minimum, MAX({cast}) AS maximum FROM {table} "
                    f"WHERE {col} IS NOT NULL AND {col} != ''")
        if self.kind is QueryKind.TOP_N:
            direction = "DESC" if self.descending else "ASC"
            return f"SELECT * FROM {table} ORDER BY CAST({col} AS DECIMAL) {direction} LIMIT {self.limit}"
        return f"SELECT DISTINCT {col} FROM {table} ORDER BY {col}"


@dataclass
class QueryResult:
    template: QueryTemplate
    query: str
    data: List[Dict[str, Any]]

    @property
    def row_count(self) -> int:
        return len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "kind": self.template.kind.value,
                "row_count": self.row_count, "data": self.data}


@dataclass
class FileAnalysis:
    file_name: str
    headers: List[str]
    total_rows: int
    results: List[QueryResult] = field(default_factory=list)

    @property
    def analysis(self) -> str:
        if not self.results:
            return "No significant patterns found in the data."
        lines = ["Analysis Results:", ""]
        for i, result in enumerate(self.results, start=1):
            lines.append(f"Query {i}: {result.query}")
            lines.append(f"Found {result.row_count} results")
            if result.data:
                lines.append(f"Sample result: {json.dumps(result.data[0], default=str)}")
            lines.append("")
        return "\n".join(lines).rstrip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "headers": self.headers,
            "total_rows": self.total_rows,
            "results": [r.to_dict() for r in self.results],
            "analysis": self.analysis,
        }


# ==================== Parsing ====================

def parse_csv_line(line: str) -> List[str]:
    """Parse one CSV line, honouring quoted fields and doubled quotes."""
    row = next(csv.reader([line], skipinitialspace=True), [])
    return [value.strip() for value in row]


def rows_from_chunks(contents: Sequence[str]) -> Tuple[List[str], List[Dict[str, str]]]:
    """
    Rebuild header and rows from a CSV document's chunks.

    ``contents`` must be in chunk order. Preamble and summary lines, the
    JSON section and the header repeated at the top of each chunk are
    skipped; rows whose width differs from the header are dropped.
    """
    lines = [line for content in contents for line in content.splitlines()]
    has_sections = any(line.strip() in CSV_SECTION_MARKERS for line in lines)
    in_csv = not has_sections

    section: List[str] = []
    for line in lines:
        marker = line.strip()
        if marker in CSV_SECTION_MARKERS:
            in_csv = True
        elif marker in END_SECTION_MARKERS:
            in_csv = False
        elif in_csv:
            section.append(line)

    # one reader over the whole section so quoted multi-line fields stay intact
    headers: Optional[List[str]] = None
    rows: List[Dict[str, str]] = []
    for record in csv.reader(io.StringIO("\n".join(section)), skipinitialspace=True):
        values = [value.strip() for value in record]
        if headers is None:
            if len(values) > 1:
                headers = values
            continue
        if values == headers:
            continue
        if len(values) == len(headers):
            rows.append(dict(zip(headers, values)))
    return headers or [], rows


def is_csv_document(file_type: str, file_name: str) -> bool:
    return (file_type or "").lower().startswith("text/csv") or file_name.lower().endswith(".csv")


# ==================== Column heuristics ====================

def detect_numeric_columns(headers: Sequence[str]) -> List[str]:
    """
    Guess which columns hold numbers from their names alone.

    A header counts as numeric when it contains a keyword from
    NUMERIC_KEYWORDS, contains the word "id" or "code", or contains a digit.
    """
    numeric = []
    for header in headers:
        lower = header.lower()
        if (any(keyword in lower for keyword in NUMERIC_KEYWORDS)
                or re.search(r"\b(id|code)\b", lower.replace("_", " "))
                or re.search(r"\d", header)):
            numeric.append(header)
    return numeric


def likely_identifier_columns(headers: Sequence[str]) -> List[str]:
    return [h for h in headers if any(k in h.lower() for k in IDENTIFIER_KEYWORDS)]


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if value is None:
        return None
    cleaned = str(value).strip().replace(",", "").lstrip("$")
    if cleaned.endswith("%"):
        cleaned = cleaned[:-1]
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def mentions(question: str, words: Sequence[str]) -> bool:
    lower = question.lower()
    return any(re.search(r"\b" + re.escape(w) + r"(?:s|es)?\b", lower) for w in words)


# ==================== Planning & execution ====================

def plan_queries(question: str, headers: Sequence[str]) -> List[QueryTemplate]:
    """Pick the templates the question asks for, in a fixed order."""
    templates: List[QueryTemplate] = []
    numeric = detect_numeric_columns(headers)

    if mentions(question, DUPLICATE_WORDS):
        templates.append(QueryTemplate(QueryKind.DUPLICATE_SCAN))
        templates.extend(QueryTemplate(QueryKind.DUPLICATE_SCAN, column=c)
                         for c in likely_identifier_columns(headers))

    if mentions(question, COUNT_WORDS):
        templates.append(QueryTemplate(QueryKind.COUNT))
        templates.extend(QueryTemplate(QueryKind.GROUP_BY, column=h, limit=RESULT_LIMIT)
                         for h in headers)

    if mentions(question, AGGREGATE_WORDS):
        templates.extend(QueryTemplate(QueryKind.AGGREGATE, column=c) for c in numeric)

    if mentions(question, TOP_WORDS):
        templates.extend(QueryTemplate(QueryKind.TOP_N, column=c, descending=True, limit=RESULT_LIMIT)
                         for c in numeric)
    if mentions(question, BOTTOM_WORDS):
        templates.extend(QueryTemplate(QueryKind.TOP_N, column=c, descending=False, limit=RESULT_LIMIT)
                         for c in numeric)

    if mentions(question, DISTINCT_WORDS):
        templates.extend(QueryTemplate(QueryKind.DISTINCT, column=h) for h in headers)

    return templates


def _count_by(rows: Sequence[Dict[str, Any]], key) -> List[Tuple[Any, int]]:
    counts = Counter(key(row) for row in rows)
    # Counter keeps first-seen order; the stable sort keeps it for ties
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def execute(template: QueryTemplate, rows: Sequence[Dict[str, Any]],
            headers: Sequence[str]) -> List[Dict[str, Any]]:
    """Run one template over in-memory rows. Pure; never mutates ``rows``."""
    kind, col = template.kind, template.column

    if kind is QueryKind.COUNT:
        return [{"total_rows": len(rows)}]

    if kind is QueryKind.GROUP_BY:
        grouped = _count_by(rows, lambda r: r.get(col))
        return [{col: value, "count": n} for value, n in grouped[:template.limit]]

    if kind is QueryKind.DUPLICATE_SCAN:
        if col is None:
            grouped = _count_by(rows, lambda r: tuple(r.get(h) for h in headers))
            return [dict(zip(headers, key), duplicate_count=n) for key, n in grouped if n > 1]
        grouped = _count_by(rows, lambda r: r.get(col))
        return [{col: value, "count": n} for value, n in grouped if n > 1]

    if kind is QueryKind.AGGREGATE:
        numbers = [n for n in (to_number(r.get(col)) for r in rows) if n is not None]
        if not numbers:
            return []
        return [{
            "column": col,
            "count": len(numbers),
            "average": sum(numbers) / len(numbers),
            "sum": sum(numbers),
            "minimum": min(numbers),
            "maximum": max(numbers),
        }]

    if kind is QueryKind.TOP_N:
        scored = [(to_number(r.get(col)), r) for r in rows]
        scored = [(n, r) for n, r in scored if n is not None]
        scored.sort(key=lambda item: item[0], reverse=template.descending)
        return [dict(r) for _, r in scored[:template.limit]]

    values = {r.get(col) for r in rows if r.get(col) not in (None, "")}
    return [{col: v} for v in sorted(values, key=str)]


class TabularAnalyzer:
    """Runs template queries over the CSV documents of a bucket."""

    def __init__(self, store: VectorStore, max_files: int = 2, max_queries: int = 5):
        self.store = store
        self.max_files = max_files
        self.max_queries = max_queries

    def _csv_documents(self, bucket_id: str) -> Dict[str, List[ResourceRecord]]:
        documents: Dict[str, List[ResourceRecord]] = {}
        for resource in self.store.list_resources_by_bucket(bucket_id):
            if is_csv_document(resource.file_type, resource.file_name):
                documents.setdefault(resource.file_name, []).append(resource)
        return documents

    def find_csv_documents(self, bucket_id: str) -> List[str]:
        return list(self._csv_documents(bucket_id))

    def analyze_rows(self, question: str, file_name: str, headers: List[str],
                     rows: List[Dict[str, Any]]) -> FileAnalysis:
        table = sanitize_identifier(file_name)
        result = FileAnalysis(file_name=file_name, headers=headers, total_rows=len(rows))
        for template in plan_queries(question, headers)[:self.max_queries]:
            query = template.sql(table, headers)
            try:
                data = execute(template, rows, headers)
            except Exception as e:
                logger.warning("Query execution failed", query=query, error=str(e))
                continue
            if data:
                result.results.append(QueryResult(template, query, data))
        return result

    def analyze_document(self, question: str, file_name: str,
                         chunks: Sequence[ResourceRecord]) -> FileAnalysis:
        ordered = sorted(chunks, key=lambda r: r.chunk_index)
        headers, rows = rows_from_chunks([r.content for r in ordered])
        logger.info("Reconstructed CSV rows", filename=file_name, columns=len(headers), rows=len(rows))
        return self.analyze_rows(question, file_name, headers, rows)

    def analyze_bucket(self, question: str, bucket_id: str) -> List[FileAnalysis]:
        """
        Analyze up to ``max_files`` CSV documents in the bucket.

        Returns only analyses that produced at least one non-empty result.
        """
        documents = self._csv_documents(bucket_id)
        if not documents:
            logger.info("No CSV documents in bucket", bucket_id=bucket_id)
            return []

        analyses = []
        for file_name in list(documents)[:self.max_files]:
            try:
                analysis = self.analyze_document(question, file_name, documents[file_name])
            except Exception as e:
                logger.warning("CSV analysis failed", filename=file_name, error=str(e))
                continue
            if analysis.results:
                analyses.append(analysis)
        return analyses
