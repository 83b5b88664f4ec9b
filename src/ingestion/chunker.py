"""Character-window document chunking.

Long documents are split into bounded windows that end on paragraph, line or
sentence boundaries where possible. Every chunk records its absolute offsets in
the source text so that evidence found inside a chunk can be mapped back onto
the whole document.
"""

from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from src.storage.schemas import EvidencePosition
from src.utils.config import ChunkingConfig

# Boundary search never looks further back than this from the window end.
BOUNDARY_LOOKBACK_CHARS = 2000

_SENTENCE_ENDS = ".!?"


class Chunk(BaseModel):
    """A window of a document; ``text == content[start_offset:end_offset]``."""

    model_config = ConfigDict(frozen=True)

    text: str
    start_offset: int
    end_offset: int
    index: int


def count_words(text: str) -> int:
    return len(text.split())


def needs_chunking(content: str, max_chars: int = ChunkingConfig().max_chunk_chars) -> bool:
    return len(content) > max_chars


class DocumentChunker:
    """Split document text into position-tracked chunks.

    Example:
        >>> chunker = DocumentChunker(ChunkingConfig(max_chunk_chars=4000))
        >>> chunks = chunker.chunk_document(text)
        >>> assert all(text[c.start_offset:c.end_offset] == c.text for c in chunks)
    """

    def __init__(self, config: Optional[ChunkingConfig] = None) -> None:
        self.config = config or ChunkingConfig()
        logger.debug(
            f"Initialized DocumentChunker: max_chars={self.config.max_chunk_chars}, "
            f"overlap={self.config.overlap_chars}"
        )

    def chunk_document(self, content: str) -> List[Chunk]:
        """Split ``content`` into ordered chunks no longer than ``max_chunk_chars``."""
        max_chars = self.config.max_chunk_chars
        overlap = self.config.overlap_chars

        if len(content) <= max_chars:
            return [Chunk(text=content, start_offset=0, end_offset=len(content), index=0)]

        chunks: List[Chunk] = []
        current = 0
        while current < len(content):
            end = min(current + max_chars, len(content))
            if end < len(content):
                end = self._find_boundary(content, current, end)

            chunks.append(
                Chunk(
                    text=content[current:end],
                    start_offset=current,
                    end_offset=end,
                    index=len(chunks),
                )
            )
            if end >= len(content):
                break

            next_start = self._find_start(content, max(end - overlap, 0), end)
            # Always move forward, even when the overlap would reach back past the window.
            current = next_start if next_start > current else end

        logger.info(f"Chunked {len(content)} chars into {len(chunks)} chunks")
        return chunks

    def _find_boundary(self, content: str, start: int, max_end: int) -> int:
        """Best cut position in ``(start, max_end]``: paragraph, line, then sentence end."""
        min_chunk = min(self.config.min_chunk_chars, (max_end - start) // 2)
        search_start = max(start + min_chunk, max_end - BOUNDARY_LOOKBACK_CHARS, start + 1)

        for i in range(max_end, search_start - 1, -1):
            if content[i] == "\n" and content[i - 1] == "\n":
                return i + 1 if i + 1 - start <= self.config.max_chunk_chars else i

        for i in range(max_end, search_start - 1, -1):
            if content[i] == "\n":
                return i + 1 if i + 1 - start <= self.config.max_chunk_chars else i

        for i in range(max_end - 1, search_start - 1, -1):
            if content[i] in _SENTENCE_ENDS:
                if i + 1 < len(content) and content[i + 1] == " ":
                    return min(i + 2, max_end)
                return i + 1

        return max_end

    def _find_start(self, content: str, target: int, max_pos: int) -> int:
        """First line start, else sentence start, in ``[target, max_pos)``."""
        for i in range(target, max_pos):
            if content[i] == "\n" and i + 1 < len(content) and content[i + 1] != "\n":
                return i + 1

        for i in range(target, max_pos):
            if content[i] in _SENTENCE_ENDS and i + 2 < len(content) and content[i + 1] == " ":
                return i + 2

        return target

    def get_chunk_statistics(self, chunks: List[Chunk]) -> Dict[str, Any]:
        """Get statistics about the chunks."""
        if not chunks:
            return {}

        sizes = [len(c.text) for c in chunks]
        return {
            "total_chunks": len(chunks),
            "avg_chars": sum(sizes) / len(sizes),
            "max_chars": max(sizes),
            "min_chars": min(sizes),
        }


def chunk_document(
    content: str,
    max_chars: int = ChunkingConfig().max_chunk_chars,
    overlap_chars: int = ChunkingConfig().overlap_chars,
) -> List[Chunk]:
    """Functional shortcut for ``DocumentChunker(...).chunk_document(content)``."""
    config = ChunkingConfig(
        max_chunk_chars=max_chars,
        overlap_chars=min(overlap_chars, max_chars - 1),
    )
    return DocumentChunker(config).chunk_document(content)


def map_evidence_to_document(
    evidence: str, chunk: Chunk, document_content: str
) -> Optional[EvidencePosition]:
    """Translate chunk-local evidence into an absolute span of the document.

    Exact matches inside the chunk win. Otherwise the first five words longer than
    three characters are searched for, in order and case-insensitively, within a
    single line of the document.
    """
    if not evidence:
        return None

    local = chunk.text.find(evidence)
    if local != -1:
        start = chunk.start_offset + local
        return EvidencePosition(start=start, end=start + len(evidence))

    words = [_fold(w) for w in evidence.split() if len(w) > 3][:5]
    if not words:
        return None

    line_start = 0
    for line in document_content.split("\n"):
        span = _find_words_in_order(_fold(line), words)
        if span is not None:
            return EvidencePosition(start=line_start + span[0], end=line_start + span[1])
        line_start += len(line) + 1
    return None


def _fold(text: str) -> str:
    # Lower-case without changing length so offsets stay valid.
    return "".join(ch.lower() if len(ch.lower()) == 1 else ch for ch in text)


def _find_words_in_order(line: str, words: List[str]) -> Optional[tuple[int, int]]:
    """Leftmost span of ``line`` holding ``words`` in order, or None."""
    first = line.find(words[0])
    if first == -1:
        return None
    pos = first + len(words[0])
    for word in words[1:]:
        found = line.find(word, pos)
        if found == -1:
            return None
        pos = found + len(word)
    return first, pos
