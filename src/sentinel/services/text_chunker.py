"""
Text chunking for persisted regulatory documents.

Splits whitespace-collapsed text into overlapping windows, snapping each
window end back to the last space when one exists past the window midpoint.
"""

import re
from dataclasses import dataclass
from typing import List

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TextChunk:
    """
    Represents a text chunk with metadata.

    Attributes:
        text: The chunk text content
        chunk_index: Zero-based index of the chunk
        start_char: Starting character position in the collapsed text
        end_char: Ending character position in the collapsed text
    """
    text: str
    chunk_index: int
    start_char: int
    end_char: int


class TextChunker:
    """Sliding-window chunker with space snapping."""

    DEFAULT_CHUNK_SIZE = 1200  # characters
    DEFAULT_OVERLAP = 150  # characters

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {overlap}")
        if overlap >= chunk_size:
            raise ValueError(
                f"overlap ({overlap}) must be less than chunk_size ({chunk_size})"
            )

        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk_text(self, text: str) -> List[TextChunk]:
        """
        Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of TextChunk objects (empty for blank input)
        """
        cleaned = re.sub(r"\s+", " ", text or "").strip()
        if not cleaned:
            return []
        if len(cleaned) <= self.chunk_size:
            return [TextChunk(text=cleaned, chunk_index=0, start_char=0, end_char=len(cleaned))]

        chunks: List[TextChunk] = []
        start = 0
        length = len(cleaned)

        while start < length:
            end = min(length, start + self.chunk_size)
            if end < length:
                last_space = cleaned.rfind(" ", 0, end + 1)
                if last_space > start + self.chunk_size / 2:
                    end = last_space

            piece = cleaned[start:end].strip()
            if piece:
                chunks.append(
                    TextChunk(text=piece, chunk_index=len(chunks), start_char=start, end_char=end)
                )

            if end >= length:
                break

            next_start = max(end - self.overlap, start + 1)
            start = end if next_start <= start else next_start

        logger.debug("Chunked text", chunks=len(chunks), collapsed_length=length)
        return chunks


def chunk_text(text: str, size: int = TextChunker.DEFAULT_CHUNK_SIZE, overlap: int = TextChunker.DEFAULT_OVERLAP) -> List[str]:
    """Convenience wrapper returning only the chunk strings."""
    return [chunk.text for chunk in TextChunker(chunk_size=size, overlap=overlap).chunk_text(text)]
