"""Extraction package exports."""

from src.extraction.cache import ExtractionCache
from src.extraction.llm_extractor import (
    LLMExtractor,
    adjust_evidence_positions,
    merge_extraction_results,
)
from src.extraction.models import (
    ExtractedEntity,
    ExtractedFact,
    ExtractedRelationship,
    ExtractionResult,
    parse_extraction_response,
)

__all__ = [
    "ExtractedEntity",
    "ExtractedFact",
    "ExtractedRelationship",
    "ExtractionCache",
    "ExtractionResult",
    "LLMExtractor",
    "adjust_evidence_positions",
    "merge_extraction_results",
    "parse_extraction_response",
]
