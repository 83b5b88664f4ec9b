"""Document CRUD and processing-status bookkeeping."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel

from src.curation.access import (
    Caller,
    can_read_project,
    require_document_owner,
    require_project_owner,
)
from src.ingestion.chunker import count_words
from src.storage.canon_store import CanonStore
from src.storage.schemas import (
    ContentType,
    Document,
    EntityStatus,
    FactStatus,
    ProcessingStatus,
    utcnow,
)
from src.storage.stats import apply_stats_delta
from src.utils.errors import ValidationError


class DocumentReviewSummary(BaseModel):
    """A processed document that still has pending extraction results."""

    document: Document
    pending_entity_count: int
    pending_fact_count: int


class DocumentService:
    def __init__(self, store: CanonStore) -> None:
        self.store = store

    def create(
        self,
        caller: Caller | None,
        project_id: str,
        title: str,
        *,
        content: str | None = None,
        storage_id: str | None = None,
        content_type: ContentType = ContentType.TEXT,
    ) -> str:
        """Add a document at the end of the project's reading order.

        Raises:
            ValidationError: If both text content and a file are given
        """
        if content is not None and storage_id is not None:
            raise ValidationError("content", "Provide either text content or a file, not both")
        if not title or not title.strip():
            raise ValidationError("title", "Document title cannot be empty")

        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            existing = txn.list_documents(project_id)
            next_index = max((doc.order_index for doc in existing), default=-1) + 1

            document = Document(
                project_id=project_id,
                title=title.strip(),
                content=content,
                storage_id=storage_id,
                content_type=content_type,
                order_index=next_index,
                word_count=count_words(content) if content else 0,
            )
            txn.insert_document(document)
            apply_stats_delta(txn, project_id, documents=1)

        logger.info(f"Created document '{document.title}' ({document.id})")
        return document.id

    def get(self, caller: Caller | None, document_id: str) -> Optional[Document]:
        with self.store.transaction() as txn:
            document = txn.get_document(document_id)
            if document is None or not can_read_project(txn, caller, document.project_id):
                return None
            return document

    def list(self, caller: Caller | None, project_id: str) -> List[Document]:
        """Documents in reading order."""
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            documents = txn.list_documents(project_id)
        return sorted(documents, key=lambda doc: doc.order_index)

    def update(
        self,
        caller: Caller | None,
        document_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        storage_id: str | None = None,
        content_type: ContentType | None = None,
    ) -> str:
        """Patch a document; new text content sends it back to ``pending``."""
        if content is not None and storage_id is not None:
            raise ValidationError("content", "Provide either text content or a file, not both")

        changes: Dict[str, Any] = {"updated_at": utcnow()}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes.update(
                content=content,
                storage_id=None,
                word_count=count_words(content),
                processing_status=ProcessingStatus.PENDING,
            )
        if storage_id is not None:
            changes.update(storage_id=storage_id, content=None, word_count=0)
        if content_type is not None:
            changes["content_type"] = content_type

        with self.store.transaction() as txn:
            require_document_owner(txn, caller, document_id)
            txn.update_document(document_id, **changes)
        return document_id

    def remove(self, caller: Caller | None, document_id: str) -> str:
        """Delete a document; its facts stay but lose their document link."""
        with self.store.transaction() as txn:
            document = require_document_owner(txn, caller, document_id)
            facts = txn.list_facts(document_id=document_id)
            for fact in facts:
                txn.update_fact(fact.id, document_id=None)
            txn.delete_document(document_id)
            apply_stats_delta(txn, document.project_id, documents=-1)

        logger.info(f"Removed document {document_id} ({len(facts)} facts detached)")
        return document_id

    def reorder(self, caller: Caller | None, project_id: str, document_ids: List[str]) -> None:
        """Assign ``order_index`` from the position of each id in ``document_ids``."""
        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            for document_id in document_ids:
                document = txn.get_document(document_id)
                if document is None or document.project_id != project_id:
                    raise ValidationError(
                        "document_ids", f"Document {document_id} is not part of this project"
                    )
            for index, document_id in enumerate(document_ids):
                txn.update_document(document_id, order_index=index)
            txn.update_project(project_id, updated_at=utcnow())

    def update_processing_status(
        self, caller: Caller | None, document_id: str, status: ProcessingStatus
    ) -> None:
        changes: Dict[str, Any] = {"processing_status": status, "updated_at": utcnow()}
        if status == ProcessingStatus.COMPLETED:
            changes["processed_at"] = utcnow()

        with self.store.transaction() as txn:
            require_document_owner(txn, caller, document_id)
            txn.update_document(document_id, **changes)
        logger.debug(f"Document {document_id} -> {ProcessingStatus(status).value}")

    def list_needing_review(
        self, caller: Caller | None, project_id: str
    ) -> List[DocumentReviewSummary]:
        """Completed documents that still have pending entities or facts."""
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            completed = txn.list_documents(project_id, status=ProcessingStatus.COMPLETED)
            pending_entities = txn.list_entities(project_id, status=EntityStatus.PENDING)

            summaries = []
            for document in completed:
                entity_count = sum(
                    1 for entity in pending_entities if entity.first_mentioned_in == document.id
                )
                fact_count = len(
                    txn.list_facts(document_id=document.id, status=FactStatus.PENDING)
                )
                if entity_count or fact_count:
                    summaries.append(
                        DocumentReviewSummary(
                            document=document,
                            pending_entity_count=entity_count,
                            pending_fact_count=fact_count,
                        )
                    )
        return summaries
