"""
Chunker module
--------------
Purpose: Split extracted text into page-addressed chunks for embedding.

Two policies share the same interface:
  • ParagraphChunker: blank-line paragraphs, short fragments dropped as noise
  • FixedWindowChunker: fixed character window with overlap
"""

import bisect
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass
class Chunk:
    text: str
    chunk_id: int
    start_idx: int
    word_count: int
    page: int = 1


def page_for_offset(
    offset: int,
    text_length: int,
    page_boundaries: Optional[List[int]] = None,
    page_count: Optional[int] = None,
) -> int:
    """
    Best-effort page number for a character offset.

    Uses the true page boundaries when known, otherwise a proportional
    estimate from the page count, otherwise page 1.
    """
    if page_boundaries:
        return max(1, bisect.bisect_right(page_boundaries, offset))
    if page_count and page_count > 1 and text_length > 0:
        page = int(offset / text_length * page_count) + 1
        return min(max(page, 1), page_count)
    return 1


class ParagraphChunker:
    """Split on blank lines and drop fragments shorter than ``min_chars``."""

    name = "paragraph"

    def __init__(self, min_chars: int = 50):
        if min_chars < 0:
            raise ValueError(f"min_chars must be >= 0, got {min_chars}")
        self.min_chars = min_chars

    def chunk(
        self,
        text: str,
        page_boundaries: Optional[List[int]] = None,
        page_count: Optional[int] = None,
    ) -> List[Chunk]:
        """
        Split text into paragraph chunks.

        Args:
            text: Extracted document text
            page_boundaries: Offset where each page starts (optional)
            page_count: Number of pages, used when boundaries are missing

        Returns:
            Ordered list of chunks
        """
        if not text or not text.strip():
            return []

        chunks = []
        start = 0
        spans = []
        for match in PARAGRAPH_BREAK.finditer(text):
            spans.append((start, match.start()))
            start = match.end()
        spans.append((start, len(text)))

        dropped = 0
        for span_start, span_end in spans:
            raw = text[span_start:span_end]
            content = raw.strip()
            if not content:
                continue
            if len(content) < self.min_chars:
                dropped += 1
                continue

            offset = span_start + (len(raw) - len(raw.lstrip()))
            chunks.append(Chunk(
                text=content,
                chunk_id=len(chunks),
                start_idx=offset,
                word_count=len(content.split()),
                page=page_for_offset(offset, len(text), page_boundaries, page_count),
            ))

        logger.debug(f"Paragraph chunking: {len(chunks)} kept, {dropped} below {self.min_chars} chars")
        return chunks


class FixedWindowChunker:
    """Fixed character window with overlap between consecutive windows."""

    name = "fixed"

    def __init__(self, chunk_size: int = 1000, overlap: int = 200):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(
                f"Overlap ({overlap}) must be >= 0 and less than chunk size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(
        self,
        text: str,
        page_boundaries: Optional[List[int]] = None,
        page_count: Optional[int] = None,
    ) -> List[Chunk]:
        """
        Split text into overlapping character windows.

        Args:
            text: Extracted document text
            page_boundaries: Offset where each page starts (optional)
            page_count: Number of pages, used when boundaries are missing

        Returns:
            Ordered list of chunks
        """
        if not text or not text.strip():
            return []

        stride = self.chunk_size - self.overlap
        chunks = []

        for i in range(0, len(text), stride):
            window = text[i:i + self.chunk_size]
            content = window.strip()
            if content:
                offset = i + (len(window) - len(window.lstrip()))
                chunks.append(Chunk(
                    text=content,
                    chunk_id=len(chunks),
                    start_idx=offset,
                    word_count=len(content.split()),
                    page=page_for_offset(offset, len(text), page_boundaries, page_count),
                ))
            if i + self.chunk_size >= len(text):
                break

        logger.debug(f"Fixed-window chunking: {len(chunks)} chunks ({self.chunk_size}/{self.overlap})")
        return chunks


def get_chunker(config):
    """
    Build the chunker selected by ``config.chunk_policy``.

    Args:
        config: RAGConfig (chunk_policy, chunk_size, chunk_overlap, min_chunk_chars)

    Returns:
        ParagraphChunker or FixedWindowChunker
    """
    policy = (config.chunk_policy or "paragraph").lower()
    if policy == "paragraph":
        return ParagraphChunker(min_chars=config.min_chunk_chars)
    if policy == "fixed":
        return FixedWindowChunker(chunk_size=config.chunk_size, overlap=config.chunk_overlap)
    raise ValueError(f"Unknown chunk policy: {config.chunk_policy}")


if __name__ == "__main__":
    text = (
        "Remote work is allowed two days per week for all full-time staff members.\n\n"
        "Requests for additional remote days must be approved by the department head."
    )

    chunks = ParagraphChunker(min_chars=20).chunk(text)
    print(f"Split into {len(chunks)} chunks:")
    for chunk in chunks:
        print(f"  Chunk {chunk.chunk_id} (page {chunk.page}): {chunk.word_count} words | {chunk.text[:60]}...")
