"""Text chunking with overlap for RAG pipeline.

Implements a purely positional, character-based split: windows of
``chunk_size`` characters advancing by ``chunk_size - chunk_overlap``.
No sentence or word boundary detection.
"""
from typing import List
from dataclasses import dataclass
import structlog

from app import config

logger = structlog.get_logger()


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )

        # Validate parameters
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")

        if self.chunk_overlap < 0:
            raise ValueError(
                f"Overlap must not be negative, got {self.chunk_overlap}"
            )

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    @property
    def step(self) -> int:
        """Distance between the starts of consecutive chunks."""
        return self.chunk_size - self.chunk_overlap

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Text no longer than the overlap produces no chunks. Otherwise windows
        are emitted until one reaches the end of the text, so the count is
        ceil((len(text) - overlap) / step).

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects
        """
        text_length = len(text) if text else 0

        if text_length <= self.chunk_overlap:
            return []

        chunks = []
        start = 0

        while True:
            end = min(start + self.chunk_size, text_length)
            chunks.append(
                TextChunk(
                    content=text[start:end],
                    char_start=start,
                    char_end=end,
                    chunk_index=len(chunks),
                )
            )

            if end >= text_length:
                break

            start += self.step

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
            last_chunk_size=len(chunks[-1].content),
        )

        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def chunk_text(text: str, size: int = None, overlap: int = None) -> List[str]:
    """Chunk text into plain strings (convenience function).

    Args:
        text: Text to chunk
        size: Window size in characters (default from config)
        overlap: Overlap in characters (default from config)

    Returns:
        List of chunk strings
    """
    chunker = TextChunker(chunk_size=size, chunk_overlap=overlap)
    return [chunk.content for chunk in chunker.chunk_text(text)]
