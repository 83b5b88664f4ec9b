"""Ingestion module: document records and chunking."""

from src.ingestion.chunker import (
    Chunk,
    DocumentChunker,
    chunk_document,
    count_words,
    map_evidence_to_document,
    needs_chunking,
)
from src.ingestion.documents import DocumentReviewSummary, DocumentService

__all__ = [
    "Chunk",
    "DocumentChunker",
    "DocumentReviewSummary",
    "DocumentService",
    "chunk_document",
    "count_words",
    "map_evidence_to_document",
    "needs_chunking",
]
