"""Pipeline orchestrators for end-to-end workflows."""

from src.pipeline.extraction_pipeline import (
    DocumentExtractionResult,
    ExtractionPipeline,
    MaterializationSummary,
    process_extraction_result,
)

__all__ = [
    "DocumentExtractionResult",
    "ExtractionPipeline",
    "MaterializationSummary",
    "process_extraction_result",
]
