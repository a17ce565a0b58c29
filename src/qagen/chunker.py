"""Split request text into chunks small enough for a single generation call."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

LOGGER = logging.getLogger(__name__)

# Space, tab, LF, CR and form feed; vertical tab and Unicode spaces are not separators.
_ASCII_WORD_RE = re.compile(r"[^ \t\n\r\x0c]+")


class ChunkingStrategy(str, Enum):
    WORD_BUDGET = "word_budget"
    PARAGRAPH = "paragraph"


@dataclass(slots=True, frozen=True)
class TextChunk:
    """A contiguous slice of the request text submitted as one generation call."""

    index: int
    text: str
    word_count: int


def count_words(text: str) -> int:
    """Count ASCII-whitespace separated words in *text*."""

    return len(_ASCII_WORD_RE.findall(text))


def split_text_into_chunks(
    raw_text: str,
    max_words_per_chunk: int,
    *,
    flush_last: bool = False,
    keep_line_breaks: bool = False,
) -> List[str]:
    """Group the lines of *raw_text* into chunks of at most ``max_words_per_chunk`` words.

    A line that would push the running word count over the budget starts a new
    chunk. Lines are concatenated without a separator unless ``keep_line_breaks``
    is set. The trailing partial chunk is only returned when ``flush_last`` is
    set; by default it is left out. A single line longer than the budget still
    becomes its own chunk.
    """

    pieces = _budget_pieces(raw_text, max_words_per_chunk, flush_last, keep_line_breaks)
    return [text for text, _ in pieces]


def _budget_pieces(
    raw_text: str,
    max_words_per_chunk: int,
    flush_last: bool,
    keep_line_breaks: bool,
) -> List[Tuple[str, int]]:
    if max_words_per_chunk <= 0:
        raise ValueError("max_words_per_chunk must be a positive integer")

    joiner = "\n" if keep_line_breaks else ""
    pieces: List[Tuple[str, int]] = []
    current: List[str] = []
    running_len = 0

    for line in raw_text.split("\n"):
        line_len = count_words(line)
        if running_len + line_len > max_words_per_chunk:
            text = joiner.join(current)
            if text.strip():
                pieces.append((text, running_len))
            current = [line]
            running_len = line_len
        else:
            current.append(line)
            running_len += line_len

    if flush_last:
        text = joiner.join(current)
        if text.strip():
            pieces.append((text, running_len))

    return pieces


def split_paragraphs(raw_text: str) -> List[str]:
    """Split *raw_text* at blank lines, dropping empty paragraphs."""

    paragraphs: List[str] = []
    current: List[str] = []
    for line in raw_text.split("\n"):
        if line.strip():
            current.append(line)
            continue
        if current:
            paragraphs.append("\n".join(current))
            current = []
    if current:
        paragraphs.append("\n".join(current))
    return paragraphs


def build_chunks(
    raw_text: str,
    strategy: ChunkingStrategy,
    *,
    max_words: int | None = None,
    flush_last: bool = True,
    keep_line_breaks: bool = False,
) -> List[TextChunk]:
    """Chunk *raw_text* with the selected strategy and tag each piece."""

    if strategy is ChunkingStrategy.PARAGRAPH:
        pieces = [(text, count_words(text)) for text in split_paragraphs(raw_text)]
    elif strategy is ChunkingStrategy.WORD_BUDGET:
        if max_words is None:
            raise ValueError("max_words is required for word budget chunking")
        pieces = _budget_pieces(raw_text, max_words, flush_last, keep_line_breaks)
    else:  # pragma: no cover - exhaustive enum
        raise ValueError(f"Unsupported chunking strategy: {strategy}")

    chunks = [
        TextChunk(index=index, text=text, word_count=word_count)
        for index, (text, word_count) in enumerate(pieces)
    ]
    LOGGER.debug(
        "Split %d characters into %d chunks (%s)", len(raw_text), len(chunks), strategy.value
    )
    return chunks


__all__ = [
    "ChunkingStrategy",
    "TextChunk",
    "build_chunks",
    "count_words",
    "split_paragraphs",
    "split_text_into_chunks",
]
