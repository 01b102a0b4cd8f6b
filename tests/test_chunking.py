"""Tests for text chunking."""

import csv
import io
import json

import pytest

from knowledge_garden.chunking import (
    ContentShape,
    chunk_text,
    classify_content,
    dechunk,
    max_chunks_for,
    prose_chunks,
)


@pytest.fixture
def long_prose() -> str:
    paragraphs = []
    for p in range(8):
        sentences = [f"Paragraph {p} sentence {s} talks about topic {p * 10 + s}." for s in range(6)]
        paragraphs.append(" ".join(sentences))
    return "\n\n".join(paragraphs)


class TestChunkTextBasics:
    """Input validation and trivial inputs."""

    def test_short_text_is_single_trimmed_chunk(self):
        """Text that fits comes back whole, trimmed."""
        assert chunk_text("  hello world  ", 100, 10) == ["hello world"]

    def test_blank_text_gives_no_chunks(self):
        assert chunk_text("   \n  ", 100, 10) == []

    @pytest.mark.parametrize("max_size,overlap", [(100, 100), (100, 150), (100, -1), (0, 0)])
    def test_invalid_sizes_rejected(self, max_size, overlap):
        with pytest.raises(ValueError):
            chunk_text("some text", max_size, overlap)

    def test_deterministic(self, long_prose):
        """Same input, same output."""
        assert chunk_text(long_prose, 500, 50) == chunk_text(long_prose, 500, 50)


class TestContentClassification:
    """Detection of prose, CSV and JSON content."""

    def test_csv_detected(self):
        assert classify_content("a,b\n1,2\n3,4") is ContentShape.CSV

    def test_json_detected(self):
        assert classify_content('  [{"a": 1}]') is ContentShape.JSON
        assert classify_content('{"a": 1}') is ContentShape.JSON

    def test_single_line_with_commas_is_prose(self):
        assert classify_content("Hello, world, and again") is ContentShape.PROSE

    def test_prose_with_occasional_commas(self, long_prose):
        assert classify_content(long_prose) is ContentShape.PROSE


class TestProseChunking:
    """Boundary-aware splitting of prose."""

    def test_multiple_chunks_within_size(self, long_prose):
        chunks = prose_chunks(long_prose, 500, 50)

        assert len(chunks) > 1
        assert all(len(c.text) <= 500 for c in chunks)

    def test_dechunk_restores_original(self, long_prose):
        """Dropping each chunk's overlap prefix and concatenating gives back the input."""
        assert dechunk(prose_chunks(long_prose, 500, 50)) == long_prose

    def test_chunks_carry_overlap_from_previous(self, long_prose):
        chunks = prose_chunks(long_prose, 500, 50)

        assert chunks[0].overlap_chars == 0
        for previous, current in zip(chunks, chunks[1:]):
            assert current.overlap_chars > 0
            assert previous.text.endswith(current.text[:current.overlap_chars])

    def test_breaks_at_sentence_boundaries(self, long_prose):
        chunks = chunk_text(long_prose, 500, 50)

        for chunk in chunks[:-1]:
            assert chunk.endswith(".")

    def test_no_empty_chunks(self, long_prose):
        assert all(c.strip() for c in chunk_text(long_prose, 300, 30))

    def test_text_without_spaces_is_hard_split(self):
        text = "x" * 2500
        chunks = prose_chunks(text, 500, 50)

        assert all(len(c.text) <= 500 for c in chunks)
        assert dechunk(chunks) == text

    def test_zero_overlap(self, long_prose):
        chunks = prose_chunks(long_prose, 400, 0)

        assert all(c.overlap_chars == 0 for c in chunks)
        assert "".join(c.text for c in chunks) == long_prose


class TestCsvChunking:
    """CSV rows are never split and the header opens every chunk."""

    def test_header_repeated_and_rows_whole(self, csv_factory):
        text = csv_factory(200).decode()
        chunks = chunk_text(text, 500, 50)

        assert len(chunks) > 1
        rows = []
        for chunk in chunks:
            lines = chunk.splitlines()
            assert lines[0] == "id,name,score"
            assert all(len(line.split(",")) == 3 for line in lines[1:])
            assert len(chunk) <= 500
            rows.extend(lines[1:])

        assert rows == text.splitlines()[1:]

    def test_multiline_quoted_fields_stay_in_one_chunk(self):
        records = []
        for i in range(200):
            note = f'"first line {i}\nsecond line {i}"' if i % 2 else f"note {i}"
            records.append(f"{i},{note}")
        text = "id,note\n" + "\n".join(records)

        chunks = chunk_text(text, 300, 30)

        assert len(chunks) > 1
        parsed = []
        for chunk in chunks:
            rows = list(csv.reader(io.StringIO(chunk)))
            assert rows[0] == ["id", "note"]
            assert all(len(row) == 2 for row in rows[1:])
            parsed.extend(rows[1:])
        assert [row[0] for row in parsed] == [str(i) for i in range(200)]
        assert parsed[1][1] == "first line 1\nsecond line 1"

    def test_preamble_stays_in_first_chunk(self, csv_factory):
        preamble = "CSV File: data.csv\nRows: 200 | Columns: 3\n\nFull CSV Content:\n"
        text = preamble + csv_factory(200).decode()
        chunks = chunk_text(text, 500, 50)

        assert chunks[0].startswith("CSV File: data.csv")
        assert all(c.startswith("id,name,score") for c in chunks[1:])

    def test_large_structured_input_uses_bigger_chunks(self, csv_factory):
        text = csv_factory(8000).decode()
        assert len(text) > 100_000

        chunks = chunk_text(text, 500, 50)

        assert all(len(c) <= 1000 for c in chunks)
        assert any(len(c) > 500 for c in chunks)


class TestJsonChunking:
    """JSON arrays are packed by whole element."""

    def test_every_chunk_is_valid_json_array(self):
        items = [{"id": i, "label": f"item {i}"} for i in range(100)]
        text = json.dumps(items, indent=2)

        chunks = chunk_text(text, 400, 40)

        assert len(chunks) > 1
        rebuilt = []
        for chunk in chunks:
            assert len(chunk) <= 400
            part = json.loads(chunk)
            assert isinstance(part, list)
            rebuilt.extend(part)
        assert rebuilt == items

    def test_bracketed_prose_keeps_paragraph_breaks(self):
        link = "[Handbook](https://example.com/handbook)"
        paragraphs = [f"Section {i} covers topic {i} in some detail." for i in range(20)]
        text = link + "\n\n" + "\n\n".join(paragraphs)
        assert classify_content(text) is ContentShape.JSON

        chunks = chunk_text(text, 200, 20)

        assert len(chunks) > 1
        assert chunks[0].startswith(link + "\n\nSection 0")
        for chunk in chunks:
            assert len(chunk) <= 200
            assert all(piece in paragraphs or piece == link for piece in chunk.split("\n\n"))


class TestChunkBudget:
    @pytest.mark.parametrize("metadata,expected", [
        ({"csv_regime": "large"}, 300),
        ({"csv_regime": "medium"}, 600),
        ({"csv_regime": "small"}, 500),
        ({}, 500),
    ])
    def test_max_chunks_by_regime(self, metadata, expected):
        assert max_chunks_for(metadata) == expected
