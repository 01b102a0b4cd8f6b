"""
Text chunking.

Prose is split on the best nearby boundary (paragraph, sentence, line, word)
into contiguous core segments; each chunk after the first also carries a
short slice of the preceding text as context. Structured content is split
on record boundaries only: CSV rows are packed whole with the header repeated
in every chunk, and JSON arrays are packed by whole element.
"""
import csv
import json
from collections import Counter
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100

# A break point is only accepted past this fraction of the window
PARAGRAPH_MIN_FRACTION = 0.3
SENTENCE_MIN_FRACTION = 0.5
LINE_MIN_FRACTION = 0.3
WORD_MIN_FRACTION = 0.3

CSV_SAMPLE_LINES = 50
CSV_CONSISTENCY = 0.5

LARGE_STRUCTURED_CHARS = 100_000

# Maximum chunks accepted per document, by CSV regime
MAX_CHUNKS_LARGE_CSV = 300
MAX_CHUNKS_MEDIUM_CSV = 600
MAX_CHUNKS_DEFAULT = 500


class ContentShape(str, Enum):
    PROSE = "prose"
    CSV = "csv"
    JSON = "json"


class Segment(NamedTuple):
    """Half-open core range ``[start, end)`` plus where its context prefix begins."""
    start: int
    end: int
    context_start: int


class Chunk(NamedTuple):
    text: str
    overlap_chars: int


def _dominant_comma_count(text: str) -> Optional[int]:
    lines = [line for line in text.splitlines() if line.strip()][:CSV_SAMPLE_LINES]
    if len(lines) < 2:
        return None
    counts = Counter(line.count(",") for line in lines)
    counts.pop(0, None)
    if not counts:
        return None
    comma_count, frequency = counts.most_common(1)[0]
    if frequency >= 2 and frequency >= len(lines) * CSV_CONSISTENCY:
        return comma_count
    return None


def classify_content(text: str) -> ContentShape:
    if text.lstrip()[:1] in ("[", "{"):
        return ContentShape.JSON
    if _dominant_comma_count(text) is not None:
        return ContentShape.CSV
    return ContentShape.PROSE


# ==================== Prose ====================

def _last_sentence_end(text: str, start: int, limit: int) -> int:
    pos = text.rfind(".", start, limit)
    while pos != -1:
        if pos + 1 >= len(text) or text[pos + 1].isspace():
            return pos
        pos = text.rfind(".", start, pos)
    return -1


def _find_break(text: str, start: int, limit: int) -> int:
    """Return the exclusive end of the core segment starting at ``start``."""
    window = limit - start

    paragraph = text.rfind("\n\n", start, limit)
    if paragraph != -1 and paragraph > start + window * PARAGRAPH_MIN_FRACTION:
        return paragraph + 2

    sentence = _last_sentence_end(text, start, limit)
    if sentence != -1 and sentence > start + window * SENTENCE_MIN_FRACTION:
        return sentence + 1

    line = text.rfind("\n", start, limit)
    if line != -1 and line > start + window * LINE_MIN_FRACTION:
        return line + 1

    word = text.rfind(" ", start, limit)
    if word != -1 and word > start + window * WORD_MIN_FRACTION:
        return word + 1

    return limit


def _context_start(text: str, start: int, overlap: int) -> int:
    if overlap <= 0 or start == 0:
        return start
    begin = max(0, start - overlap)
    if begin > 0 and not text[begin - 1].isspace():
        # snap forward so the prefix doesn't open mid-word
        for i in range(begin, start):
            if text[i].isspace():
                return i + 1
    return begin


def _merge_blank_segments(text: str, segments: List[Segment]) -> List[Segment]:
    merged: List[Segment] = []
    carry: Optional[int] = None
    for seg in segments:
        if not text[seg.start:seg.end].strip():
            if merged:
                merged[-1] = merged[-1]._replace(end=seg.end)
            elif carry is None:
                carry = seg.start
            continue
        if carry is not None:
            seg = Segment(carry, seg.end, carry)
            carry = None
        merged.append(seg)
    return merged


def plan_segments(text: str, max_size: int, overlap: int) -> List[Segment]:
    """
    Partition ``text`` into contiguous core segments.

    The window for each segment holds ``max_size`` characters including its
    overlap prefix, so a full window advances by ``max_size - overlap``.
    Every iteration advances by at least one character.
    """
    n = len(text)
    segments: List[Segment] = []
    start = 0
    while start < n:
        context_start = _context_start(text, start, overlap) if segments else start
        limit = start + max_size - (start - context_start)
        end = n if limit >= n else _find_break(text, start, limit)
        segments.append(Segment(start, end, context_start))
        start = end
    return _merge_blank_segments(text, segments)


def prose_chunks(text: str, max_size: int, overlap: int) -> List[Chunk]:
    return [
        Chunk(text[seg.context_start:seg.end], seg.start - seg.context_start)
        for seg in plan_segments(text, max_size, overlap)
    ]


def dechunk(chunks: List[Chunk]) -> str:
    """Rebuild the original text from prose chunks by dropping overlap prefixes."""
    return "".join(c.text[c.overlap_chars:] for c in chunks)


# ==================== Structured ====================

def _pack_lines(
    lines: List[str],
    max_size: int,
    overlap: int,
    head: Optional[List[str]] = None,
    repeat: Optional[str] = None,
) -> List[str]:
    """
    Pack whole lines into chunks of at most ``max_size`` characters.

    ``head`` lines open the first chunk; ``repeat`` opens every later one.
    A line that alone exceeds ``max_size`` is split as prose. Blank lines
    are dropped when ``repeat`` is set (tabular records) and kept otherwise.
    """
    chunks: List[str] = []
    current: List[str] = list(head or [])
    size = len("\n".join(current))
    has_records = False

    def flush():
        if current:
            chunks.append("\n".join(current))

    for line in lines:
        if not line.strip():
            # keep paragraph breaks in non-tabular text
            if repeat is None and has_records and size + len(line) + 1 <= max_size:
                current.append(line)
                size += len(line) + 1
            continue
        if repeat is None and len(line) > max_size:
            flush()
            chunks.extend(c.text for c in prose_chunks(line, max_size, overlap))
            current, size, has_records = [], 0, False
            continue
        added = len(line) + (1 if current else 0)
        if has_records and size + added > max_size:
            flush()
            current = [repeat, line] if repeat is not None else [line]
            size = len("\n".join(current))
        else:
            current.append(line)
            size += added
        has_records = True
    flush()
    return chunks


def _csv_records(lines: List[str]) -> List[str]:
    """
    Group physical lines (newlines kept) into CSV records, so a quoted field
    spanning several lines stays in one record.
    """
    records: List[str] = []
    reader = csv.reader(lines)
    consumed = 0
    try:
        for _ in reader:
            records.append("".join(lines[consumed:reader.line_num]).rstrip("\r\n"))
            consumed = reader.line_num
    except csv.Error:
        # unparseable tail (e.g. a runaway quote): fall back to one record per line
        records.extend(line.rstrip("\r\n") for line in lines[consumed:])
    return records


def _split_csv(text: str, max_size: int, overlap: int) -> List[str]:
    comma_count = _dominant_comma_count(text)
    lines = text.splitlines(keepends=True)
    header_idx = next(i for i, line in enumerate(lines) if line.count(",") == comma_count)
    head = [line.rstrip("\r\n") for line in lines[:header_idx + 1]]
    return _pack_lines(
        _csv_records(lines[header_idx + 1:]),
        max_size,
        overlap,
        head=head,
        repeat=head[-1],
    )


def _split_json(text: str, max_size: int, overlap: int) -> List[str]:
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if not isinstance(data, list):
        return _pack_lines(text.splitlines(), max_size, overlap)

    chunks: List[str] = []
    current: List[str] = []
    size = 2  # brackets
    for item in data:
        serialized = json.dumps(item, ensure_ascii=False)
        added = len(serialized) + (2 if current else 0)
        if current and size + added > max_size:
            chunks.append("[" + ", ".join(current) + "]")
            current, size = [serialized], 2 + len(serialized)
        else:
            current.append(serialized)
            size += added
    if current:
        chunks.append("[" + ", ".join(current) + "]")
    return chunks


def chunk_text(
    text: str,
    max_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """
    Split text into bounded, overlapping chunks.

    Deterministic and side-effect free. Text that fits in ``max_size`` comes
    back as a single trimmed chunk; blank input gives an empty list.

    Args:
        text: Extracted document text
        max_size: Target maximum chunk length in characters
        overlap: Context characters carried from the previous chunk (prose)

    Returns:
        Non-empty chunk strings in document order
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")
    if not 0 <= overlap < max_size:
        raise ValueError("overlap must be >= 0 and smaller than max_size")

    if len(text) <= max_size:
        stripped = text.strip()
        return [stripped] if stripped else []

    shape = classify_content(text)
    if shape is ContentShape.PROSE:
        return [c.text.strip() for c in prose_chunks(text, max_size, overlap)]

    if len(text) > LARGE_STRUCTURED_CHARS:
        max_size, overlap = max_size * 2, overlap // 2

    if shape is ContentShape.CSV:
        pieces = _split_csv(text, max_size, overlap)
    else:
        pieces = _split_json(text, max_size, overlap)
    return [p.strip() for p in pieces if p.strip()]


def max_chunks_for(metadata: Dict[str, Any]) -> int:
    """Chunk budget for one document, based on its extraction metadata."""
    regime = metadata.get("csv_regime")
    if regime == "large":
        return MAX_CHUNKS_LARGE_CSV
    if regime == "medium":
        return MAX_CHUNKS_MEDIUM_CSV
    return MAX_CHUNKS_DEFAULT
