"""Document extraction pipeline.

This module turns extraction output into canon records:
1. Chunking of the document text
2. LLM extraction per chunk (cache first)
3. Translation of evidence offsets to document-absolute positions
4. Entity resolution against the project's existing entities
5. Storage of pending entities and facts, with project stats kept in step
"""

from __future__ import annotations

import time
from typing import Dict, Optional

from loguru import logger
from pydantic import BaseModel, Field

from src.curation.access import Caller, require_document_owner
from src.curation.entity_resolver import EntityResolver, normalize_name
from src.extraction.cache import ExtractionCache
from src.extraction.llm_extractor import LLMExtractor, adjust_evidence_positions
from src.extraction.models import ExtractionResult
from src.ingestion.chunker import DocumentChunker
from src.storage.canon_store import CanonStore, StoreTransaction
from src.storage.schemas import Fact, FactStatus, ProcessingStatus, utcnow
from src.storage.stats import apply_stats_delta
from src.utils.config import Config
from src.utils.errors import NotFoundError, ValidationError

RELATIONSHIP_CONFIDENCE = 1.0


class MaterializationSummary(BaseModel):
    """Counts produced by storing one extraction result."""

    entities_created: int = 0
    facts_created: int = 0
    skipped_facts: int = 0
    skipped_relationships: int = 0

    def __add__(self, other: "MaterializationSummary") -> "MaterializationSummary":
        return MaterializationSummary(
            entities_created=self.entities_created + other.entities_created,
            facts_created=self.facts_created + other.facts_created,
            skipped_facts=self.skipped_facts + other.skipped_facts,
            skipped_relationships=self.skipped_relationships + other.skipped_relationships,
        )


class DocumentExtractionResult(BaseModel):
    """Result of extracting one whole document."""

    document_id: str
    chunks_processed: int = 0
    summary: MaterializationSummary = Field(default_factory=MaterializationSummary)
    processing_time: float = 0.0


def _resolve_endpoint(
    txn: StoreTransaction,
    resolver: EntityResolver,
    project_id: str,
    name_map: Dict[str, str],
    name: str,
) -> Optional[str]:
    # Names from this result win; otherwise fall back to entities stored earlier.
    return name_map.get(normalize_name(name)) or resolver.lookup(txn, project_id, name)


def process_extraction_result(
    store: CanonStore,
    document_id: str,
    result: ExtractionResult,
    *,
    resolver: EntityResolver | None = None,
    mark_completed: bool = True,
) -> MaterializationSummary:
    """Store an extraction result as pending entities and facts, atomically.

    Facts whose entity cannot be resolved and relationships with an unresolved
    endpoint are skipped and logged. An empty result is valid.

    Raises:
        NotFoundError: If the document does not exist
    """
    resolver = resolver or EntityResolver()
    summary = MaterializationSummary()

    with store.transaction() as txn:
        document = txn.get_document(document_id)
        if document is None:
            raise NotFoundError("document", document_id)
        project_id = document.project_id

        name_map: Dict[str, str] = {}
        for extracted in result.entities:
            resolution = resolver.resolve_entity(
                txn,
                project_id,
                extracted.name,
                entity_type=extracted.type,
                aliases=extracted.aliases,
                description=extracted.description,
                source_document_id=document_id,
            )
            if resolution.is_new:
                summary.entities_created += 1
            for name in (extracted.name, *extracted.aliases):
                name_map.setdefault(normalize_name(name), resolution.entity_id)

        for extracted_fact in result.facts:
            entity_id = _resolve_endpoint(
                txn, resolver, project_id, name_map, extracted_fact.entity_name
            )
            if entity_id is None:
                logger.warning(
                    f"Skipping fact for unknown entity '{extracted_fact.entity_name}'"
                )
                summary.skipped_facts += 1
                continue
            txn.insert_fact(
                Fact(
                    project_id=project_id,
                    entity_id=entity_id,
                    document_id=document_id,
                    subject=extracted_fact.subject,
                    predicate=extracted_fact.predicate,
                    object=extracted_fact.object,
                    confidence=extracted_fact.confidence,
                    evidence_snippet=extracted_fact.evidence,
                    evidence_position=extracted_fact.evidence_position,
                    temporal_bound=extracted_fact.temporal_bound,
                    status=FactStatus.PENDING,
                )
            )
            summary.facts_created += 1

        for relationship in result.relationships:
            source_id = _resolve_endpoint(
                txn, resolver, project_id, name_map, relationship.source_entity
            )
            target_id = _resolve_endpoint(
                txn, resolver, project_id, name_map, relationship.target_entity
            )
            if source_id is None or target_id is None:
                logger.warning(
                    f"Skipping relationship '{relationship.source_entity}' "
                    f"-[{relationship.relationship_type}]-> '{relationship.target_entity}': "
                    "unresolved endpoint"
                )
                summary.skipped_relationships += 1
                continue
            txn.insert_fact(
                Fact(
                    project_id=project_id,
                    entity_id=source_id,
                    document_id=document_id,
                    subject=relationship.source_entity,
                    predicate=relationship.relationship_type,
                    object=relationship.target_entity,
                    confidence=RELATIONSHIP_CONFIDENCE,
                    evidence_snippet=relationship.evidence,
                    evidence_position=relationship.evidence_position,
                    status=FactStatus.PENDING,
                )
            )
            summary.facts_created += 1

        if mark_completed:
            now = utcnow()
            txn.update_document(
                document_id,
                processing_status=ProcessingStatus.COMPLETED,
                processed_at=now,
                updated_at=now,
            )

        if summary.entities_created or summary.facts_created:
            apply_stats_delta(
                txn,
                project_id,
                entities=summary.entities_created,
                facts=summary.facts_created,
            )

    logger.info(
        f"Materialized extraction for document {document_id}: "
        f"{summary.entities_created} entities, {summary.facts_created} facts "
        f"({summary.skipped_facts} facts and {summary.skipped_relationships} "
        "relationships skipped)"
    )
    return summary


class ExtractionPipeline:
    """Chunk, extract and materialize documents of a project."""

    def __init__(
        self,
        store: CanonStore,
        extractor: LLMExtractor,
        *,
        config: Config | None = None,
        resolver: EntityResolver | None = None,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.config = config or Config()
        self.resolver = resolver or EntityResolver(
            store,
            fuzzy_similar=self.config.review.fuzzy_similar,
            similarity_threshold=self.config.review.similarity_threshold,
        )
        self.chunker = DocumentChunker(self.config.chunking)

    @classmethod
    def from_config(cls, config: Config, store: CanonStore) -> "ExtractionPipeline":
        """Build the pipeline with a cached LLM extractor configured from ``config``."""
        cache = ExtractionCache(store, config.cache)
        extractor = LLMExtractor(
            config.resolved_llm(),
            config.extraction.prompt_template,
            cache=cache,
            prompt_version=config.extraction.prompt_version,
        )
        return cls(store, extractor, config=config)

    def process_extraction_result(
        self, document_id: str, result: ExtractionResult, *, mark_completed: bool = True
    ) -> MaterializationSummary:
        return process_extraction_result(
            self.store,
            document_id,
            result,
            resolver=self.resolver,
            mark_completed=mark_completed,
        )

    def chunk_and_extract(
        self, caller: Caller | None, document_id: str
    ) -> DocumentExtractionResult:
        """Extract a document chunk by chunk, committing each chunk on its own.

        A failing chunk stops the run. Chunks before it stay committed and the
        document is left in ``processing``.

        Raises:
            ValidationError: If the document has no text content
        """
        start_time = time.time()
        with self.store.transaction() as txn:
            document = require_document_owner(txn, caller, document_id)
            content = document.content
            if not content or not content.strip():
                raise ValidationError("content", "Document has no text content to extract")
            txn.update_document(
                document_id, processing_status=ProcessingStatus.PROCESSING, updated_at=utcnow()
            )

        chunks = self.chunker.chunk_document(content)
        logger.info(f"Extracting document {document_id} in {len(chunks)} chunks")

        summary = MaterializationSummary()
        for chunk in chunks:
            try:
                result = self.extractor.extract_from_chunk(chunk)
            except Exception as exc:
                logger.error(
                    f"Extraction failed for document {document_id} "
                    f"at chunk {chunk.index + 1}/{len(chunks)}: {exc}"
                )
                raise
            result = adjust_evidence_positions(result, chunk, content)
            summary += self.process_extraction_result(document_id, result, mark_completed=False)
            logger.debug(f"Chunk {chunk.index + 1}/{len(chunks)} stored")

        now = utcnow()
        with self.store.transaction() as txn:
            txn.update_document(
                document_id,
                processing_status=ProcessingStatus.COMPLETED,
                processed_at=now,
                updated_at=now,
            )

        processing_time = time.time() - start_time
        logger.success(
            f"Extracted document {document_id}: {summary.entities_created} entities, "
            f"{summary.facts_created} facts in {processing_time:.2f}s"
        )
        return DocumentExtractionResult(
            document_id=document_id,
            chunks_processed=len(chunks),
            summary=summary,
            processing_time=processing_time,
        )
