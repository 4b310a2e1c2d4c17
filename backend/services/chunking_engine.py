"""Chunking engine for knowledge ingestion."""
import logging
import re
from typing import List

from config import CHUNK_SIZE, CHUNK_OVERLAP

logger = logging.getLogger(__name__)

SENTENCE_ENDINGS = (".", "?", "!")


class ChunkingEngine:
    """Splits source text into overlapping character windows."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP):
        """
        Initialize ChunkingEngine.

        Args:
            chunk_size: Target chunk size in characters
            chunk_overlap: Characters shared by consecutive chunks
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be between 0 and chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk_text(self, text: str) -> List[str]:
        """
        Chunk text with overlap, preferring to cut at sentence ends.

        Whitespace is collapsed first. A chunk ends at the last sentence
        terminator inside its window when that terminator lies past the
        window's midpoint; otherwise it is cut at the window edge.

        Args:
            text: Raw source text

        Returns:
            Non-empty chunks in reading order
        """
        text = re.sub(r"\s+", " ", text).strip()
        if not text:
            return []

        if len(text) <= self.chunk_size:
            return [text]

        chunks = []
        start = 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))

            if end < len(text):
                last_sentence_end = max(text.rfind(p, start, end) for p in SENTENCE_ENDINGS)
                if last_sentence_end > start + self.chunk_size * 0.5:
                    end = last_sentence_end + 1

            chunks.append(text[start:end].strip())

            if end >= len(text):
                break
            start = max(end - self.chunk_overlap, start + 1)

        chunks = [c for c in chunks if c]
        logger.debug(f"Split {len(text)} characters into {len(chunks)} chunks")
        return chunks
