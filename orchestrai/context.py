"""Admin context-search preview.

The backend does the chunking and similarity search. This module only models
its results and renders query matches inside snippets.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One ranked snippet returned by the context search endpoint."""

    chunk_id: int
    document_id: int
    filename: str = ""
    content: str
    similarity: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ContextConfig(BaseModel):
    """Chunking and retrieval settings exposed by the backend."""

    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_results: int = Field(default=10, gt=0)


def rank_results(results: Iterable[SearchResult]) -> List[SearchResult]:
    """Order results by descending similarity, keeping backend order on ties."""
    return sorted(results, key=lambda r: r.similarity, reverse=True)


def highlight(text: str, query: str) -> List[Tuple[str, bool]]:
    """Split ``text`` into ``(segment, matched)`` pairs for ``query``.

    Matching is case-insensitive and literal.
    """
    query = query.strip()
    if not query:
        return [(text, False)] if text else []

    segments: List[Tuple[str, bool]] = []
    position = 0
    for match in re.finditer(re.escape(query), text, flags=re.IGNORECASE):
        if match.start() > position:
            segments.append((text[position : match.start()], False))
        segments.append((match.group(0), True))
        position = match.end()
    if position < len(text):
        segments.append((text[position:], False))
    return segments
