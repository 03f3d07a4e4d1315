"""
Chunker

Deterministic fixed-size sliding windows over cleaned section text.

Window `i` starts at `i * (size - overlap)` and spans `size` characters,
clipped to the end of the text; windowing stops once a start offset reaches
the text length. Starts are therefore strictly increasing and the last
window always ends at `len(text)`.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional

from ..config import settings
from ..core.errors import ChunkingValidationError
from .text import clean_text


class Span(NamedTuple):
    start: int
    end: int
    content: str


def _validate(size: int, overlap: int) -> None:
    if size <= 0:
        raise ChunkingValidationError(f"Chunk size must be positive, got {size}.")
    if overlap < 0 or overlap >= size:
        raise ChunkingValidationError(
            f"Chunk overlap must satisfy 0 <= overlap < size, got overlap={overlap}, size={size}."
        )


def sliding_windows(text: str, size: int, overlap: int) -> List[Span]:
    """
    Split `text` into overlapping windows.

    Raises
    ------
    ChunkingValidationError
        If `size <= 0` or `overlap` is outside `[0, size)`.
    """
    _validate(size, overlap)

    step = size - overlap
    spans: List[Span] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        spans.append(Span(start, end, text[start:end]))
        start += step
    return spans


class Chunker:
    """
    Cleans markup out of a section and windows what remains.

    Parameters are validated at construction so a misconfigured pipeline
    fails before it touches any page.
    """

    def __init__(self, size: Optional[int] = None, overlap: Optional[int] = None) -> None:
        self.size = settings.chunk_size if size is None else size
        self.overlap = settings.chunk_overlap if overlap is None else overlap
        _validate(self.size, self.overlap)

    def spans(self, text: str) -> List[Span]:
        return sliding_windows(clean_text(text), self.size, self.overlap)

    def chunk(self, text: str) -> List[str]:
        return [span.content for span in self.spans(text)]
