"""Page-aware text chunking with word-level overlap for the RAG pipeline.

Implements character-based chunk sizes to avoid tokenizer dependencies.
Sentences are the split points; a single sentence longer than the chunk
size is kept whole.
"""
import re
from dataclasses import dataclass
from typing import Dict, List

import structlog

logger = structlog.get_logger()

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


@dataclass
class TextChunk:
    """A chunk of text with page provenance."""

    content: str
    page_number: int
    chunk_index: int
    # Length of the prefix carried over from the previous chunk, separator included
    overlap_chars: int = 0


class TextChunker:
    """Sentence-respecting chunker that works page by page."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = None):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum chunk size in characters
            chunk_overlap: Character budget for the words carried into the
                next chunk (default: 10% of chunk_size)
        """
        self.chunk_size = chunk_size
        self.chunk_overlap = int(chunk_size * 0.1) if chunk_overlap is None else chunk_overlap

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    def chunk_pages(self, pages: Dict[int, str]) -> List[TextChunk]:
        """Split a document's pages into chunks.

        Args:
            pages: Mapping of 1-based page number to page text

        Returns:
            Chunks in page order with document-global chunk indices
        """
        chunks: List[TextChunk] = []

        for page_number in sorted(pages):
            page_text = (pages[page_number] or "").strip()
            if not page_text:
                continue

            if len(page_text) <= self.chunk_size:
                pieces = [(page_text, 0)]
            else:
                pieces = self.split_text(page_text)

            for content, overlap_chars in pieces:
                chunks.append(
                    TextChunk(
                        content=content,
                        page_number=page_number,
                        chunk_index=len(chunks),
                        overlap_chars=overlap_chars,
                    )
                )

        if chunks:
            sizes = [len(c.content) for c in chunks]
            logger.info(
                "text_chunked",
                page_count=len(pages),
                chunk_count=len(chunks),
                avg_chunk_size=sum(sizes) // len(chunks),
                oversized_chunks=sum(1 for s in sizes if s > self.chunk_size),
            )

        return chunks

    def split_text(self, text: str) -> List[tuple]:
        """Greedily pack sentences into chunks.

        Args:
            text: Text of a single page

        Returns:
            List of (content, overlap_chars) tuples
        """
        sentences = [s for s in SENTENCE_BOUNDARY.split(text.strip()) if s]

        pieces = []
        current = ""
        current_overlap = 0

        for sentence in sentences:
            if current and len(current) + 1 + len(sentence) > self.chunk_size:
                pieces.append((current, current_overlap))

                seed = self._overlap_seed(current)
                if seed and len(seed) + 1 + len(sentence) <= self.chunk_size:
                    current = f"{seed} {sentence}"
                    current_overlap = len(seed) + 1
                else:
                    current = sentence
                    current_overlap = 0
                continue

            if current:
                current = f"{current} {sentence}"
            else:
                current = sentence

        if current:
            pieces.append((current, current_overlap))

        return pieces

    def _overlap_seed(self, chunk: str) -> str:
        """Trailing whole words of a chunk that fit in the overlap budget."""
        if self.chunk_overlap <= 0:
            return ""

        words = chunk.split(" ")
        taken: List[str] = []
        length = 0
        for word in reversed(words):
            added = len(word) + (1 if taken else 0)
            if length + added > self.chunk_overlap:
                break
            taken.append(word)
            length += added

        # Never carry the whole chunk over
        if len(taken) >= len(words):
            return ""

        return " ".join(reversed(taken))

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
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
            "pages": len({c.page_number for c in chunks}),
        }
