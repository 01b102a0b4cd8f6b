"""
Utility helper functions.
"""
import re
from typing import Dict, Iterable, List

from ..storage import RetrievedChunk


def sanitize_identifier(name: str) -> str:
    """
    Turn a file or column name into a stable, injection-safe identifier.

    Example:
        >>> sanitize_identifier("Sales Q1-2024.csv")
        'salesq12024csv'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", name or "").lower()
    return cleaned or "data"


def summarize_sources(results: Iterable[RetrievedChunk], preview_chars: int = 200) -> List[Dict]:
    """
    Collapse retrieved chunks to one entry per file for citation.

    The best-scoring chunk of each file supplies the similarity and a short
    content preview; files are ordered by that score, best first.

    Example:
        >>> summarize_sources(results)
        [{"file_name": "handbook.pdf", "similarity": 0.82, "preview": "Employees accrue..."}]
    """
    best: Dict[str, RetrievedChunk] = {}
    for r in results:
        name = r.provenance.file_name
        if name not in best or r.similarity > best[name].similarity:
            best[name] = r

    sources = []
    for name, r in sorted(best.items(), key=lambda item: item[1].similarity, reverse=True):
        preview = r.content[:preview_chars].strip()
        if len(r.content) > preview_chars:
            preview += "..."
        sources.append({
            "file_name": name,
            "similarity": round(r.similarity, 3),
            "preview": preview,
        })
    return sources
