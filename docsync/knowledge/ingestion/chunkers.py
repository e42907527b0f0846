"""Text chunking utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List


@dataclass(frozen=True)
class TextChunk:
    page_number: int
    index_on_page: int
    text: str


class TextChunker:
    """Greedy word-packing chunker.

    Words are joined with single spaces until the next word would push the
    chunk past ``max_chars``. The budget is advisory: a word longer than the
    budget is emitted whole as its own chunk, never split.
    """

    def __init__(self, max_chars: int = 200) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        self.max_chars = max_chars

    def chunk(self, text: str, page_number: int = 1) -> List[TextChunk]:
        return list(self.iter_chunks(text, page_number))

    def iter_chunks(self, text: str, page_number: int = 1) -> Iterator[TextChunk]:
        current: List[str] = []
        current_length = 0
        index = 0

        for word in text.split():
            if current and current_length + 1 + len(word) > self.max_chars:
                yield TextChunk(page_number, index, " ".join(current))
                index += 1
                current = []
                current_length = 0

            current_length += len(word) + (1 if current else 0)
            current.append(word)

        if current:
            yield TextChunk(page_number, index, " ".join(current))
