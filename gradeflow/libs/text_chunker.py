"""Text chunking utility for splitting oversized documents into size-limited chunks."""

import re
from typing import Callable, Generator, Iterable, List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import ChunkBoundaryError

# Paragraphs end at a blank line; sentences after terminal punctuation
# (plus any closing quote or bracket); words at any whitespace run.
_PARAGRAPH_BREAK = re.compile(r'\n[ \t]*\n\s*')
_SENTENCE_BREAK = re.compile(r'(?<=[.!?])["\'\)\]]*\s+')
_WORD_BREAK = re.compile(r'\s+')

_SPLIT_LEVELS = (_PARAGRAPH_BREAK, _SENTENCE_BREAK, _WORD_BREAK)

Span = Tuple[int, int, int]


class Chunk(BaseModel):
    """An ordered slice of a source text."""
    model_config = ConfigDict(frozen=True)

    index: int = Field(description="0-based position of the chunk in the document")
    content: str = Field(description="Exact slice of the source text")
    start_offset: int = Field(description="Character offset where the chunk starts")
    end_offset: int = Field(description="Character offset one past the end of the chunk")


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


def chunk_text(
    text: str,
    max_size: int,
    measure: Callable[[str], int] = len,
) -> Generator[Chunk, None, None]:
    """
    Generate chunks of text whose measured size stays within max_size.

    Paragraphs are packed greedily. A paragraph that is too large on its own is
    split at sentence boundaries, and a sentence that is still too large is split
    at word boundaries. A single word is never cut, so it may exceed max_size.

    Cut points fall just after the separating whitespace, which stays with the
    earlier chunk. Joining every chunk's content in order therefore reproduces
    the input exactly.

    Args:
        text: The text to chunk
        max_size: Maximum size per chunk, in the units returned by measure
        measure: Size function (characters by default; words or tokens also work)

    Yields:
        Chunk objects in document order
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if not text:
        return

    pieces = _split_pieces(text, 0, len(text), measure, max_size, 0)

    index = 0
    buffer_start = None
    buffer_size = 0
    for start, _end, size in pieces:
        if buffer_start is not None and buffer_size + size > max_size:
            yield Chunk(index=index, content=text[buffer_start:start],
                        start_offset=buffer_start, end_offset=start)
            index += 1
            buffer_start = start
            buffer_size = size
        else:
            if buffer_start is None:
                buffer_start = start
            buffer_size += size

    if buffer_start is not None:
        yield Chunk(index=index, content=text[buffer_start:],
                    start_offset=buffer_start, end_offset=len(text))


def verify_chunks(text: str, chunks: Iterable[Chunk]) -> List[Chunk]:
    """
    Check that chunks are ordered, gap-free and reconstruct text exactly.

    Returns:
        The chunks as a list

    Raises:
        ChunkBoundaryError: If any invariant is violated
    """
    chunks = list(chunks)
    expected_start = 0
    for position, chunk in enumerate(chunks):
        if chunk.index != position:
            raise ChunkBoundaryError(f"Chunk at position {position} has index {chunk.index}")
        if chunk.start_offset != expected_start:
            raise ChunkBoundaryError(
                f"Chunk {chunk.index} starts at {chunk.start_offset}, expected {expected_start}"
            )
        if text[chunk.start_offset:chunk.end_offset] != chunk.content:
            raise ChunkBoundaryError(f"Chunk {chunk.index} content does not match its offsets")
        expected_start = chunk.end_offset
    if expected_start != len(text):
        raise ChunkBoundaryError(f"Chunks cover {expected_start} of {len(text)} characters")
    return chunks


def _split_pieces(
    text: str,
    start: int,
    end: int,
    measure: Callable[[str], int],
    max_size: int,
    level: int,
) -> List[Span]:
    """Split text[start:end] into (start, end, size) pieces that fit, where possible."""
    size = measure(text[start:end])
    if size <= max_size or level >= len(_SPLIT_LEVELS):
        return [(start, end, size)]

    spans = _spans(text, start, end, _SPLIT_LEVELS[level])
    if len(spans) == 1:
        return _split_pieces(text, start, end, measure, max_size, level + 1)

    pieces = []
    for span_start, span_end in spans:
        pieces.extend(_split_pieces(text, span_start, span_end, measure, max_size, level + 1))
    return pieces


def _spans(text: str, start: int, end: int, pattern: re.Pattern) -> List[Tuple[int, int]]:
    """Cut text[start:end] after each separator match, keeping separators attached."""
    cuts = [
        m.end() for m in pattern.finditer(text, start, end)
        if m.start() > start and m.end() < end
    ]
    bounds = [start] + cuts + [end]
    return list(zip(bounds, bounds[1:]))
