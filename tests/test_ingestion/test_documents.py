from __future__ import annotations

import pytest

from src.curation.access import Caller
from src.curation.fact_review import FactReviewService
from src.curation.entity_review import EntityReviewService
from src.ingestion.documents import DocumentService
from src.storage.canon_store import CanonStore
from src.storage.schemas import ContentType, ProcessingStatus
from src.utils.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)


def _stats(store: CanonStore, project_id: str):
    with store.transaction() as txn:
        return txn.get_project(project_id).stats


def test_create_appends_in_reading_order(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = DocumentService(store)
    first = service.create(owner, project_id, "Prologue", content="In the beginning.")
    second = service.create(owner, project_id, "Chapter 1", storage_id="blob-1")

    documents = service.list(owner, project_id)

    assert [d.id for d in documents] == [first, second]
    assert [d.order_index for d in documents] == [0, 1]
    assert documents[0].word_count == 3
    assert documents[0].processing_status == ProcessingStatus.PENDING
    assert _stats(store, project_id).document_count == 2


def test_create_rejects_content_and_file_together(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    with pytest.raises(ValidationError):
        DocumentService(store).create(owner, project_id, "Both", content="x", storage_id="blob")
    with pytest.raises(ValidationError):
        DocumentService(store).create(owner, project_id, "  ", content="x")


def test_create_checks_caller(
    store: CanonStore, anonymous: Caller, stranger: Caller, project_id: str
) -> None:
    service = DocumentService(store)

    with pytest.raises(AuthenticationError):
        service.create(anonymous, project_id, "Doc", content="x")
    with pytest.raises(AuthorizationError):
        service.create(stranger, project_id, "Doc", content="x")
    with pytest.raises(NotFoundError):
        service.create(stranger, "missing-project", "Doc", content="x")


def test_queries_hide_other_users_documents(
    store: CanonStore, stranger: Caller, project_id: str, document_id: str
) -> None:
    service = DocumentService(store)

    assert service.get(stranger, document_id) is None
    assert service.list(stranger, project_id) == []
    assert service.list_needing_review(stranger, project_id) == []


def test_update_with_new_content_resets_status(
    store: CanonStore, owner: Caller, document_id: str
) -> None:
    service = DocumentService(store)
    service.update_processing_status(owner, document_id, ProcessingStatus.COMPLETED)

    service.update(owner, document_id, content="Arya sails to Braavos.")
    document = service.get(owner, document_id)

    assert document.content == "Arya sails to Braavos."
    assert document.word_count == 4
    assert document.processing_status == ProcessingStatus.PENDING


def test_switching_to_a_file_clears_content(
    store: CanonStore, owner: Caller, document_id: str
) -> None:
    service = DocumentService(store)

    service.update(owner, document_id, storage_id="blob-9", content_type=ContentType.FILE)
    document = service.get(owner, document_id)

    assert document.content is None
    assert document.storage_id == "blob-9"
    assert document.content_type == ContentType.FILE


def test_completed_status_sets_processed_at(
    store: CanonStore, owner: Caller, document_id: str
) -> None:
    service = DocumentService(store)
    assert service.get(owner, document_id).processed_at is None

    service.update_processing_status(owner, document_id, ProcessingStatus.COMPLETED)

    assert service.get(owner, document_id).processed_at is not None


def test_remove_keeps_facts_without_document_link(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    entity_id = EntityReviewService(store).create(owner, project_id, "Jon Snow", "character")
    facts = FactReviewService(store)
    fact_id = facts.create(
        owner, project_id, entity_id, document_id,
        subject="Jon Snow", predicate="son of", object="Ned Stark",
    )

    DocumentService(store).remove(owner, document_id)

    fact = facts.get(owner, fact_id)
    assert fact is not None
    assert fact.document_id is None
    stats = _stats(store, project_id)
    assert stats.document_count == 0
    assert stats.fact_count == 1


def test_reorder(store: CanonStore, owner: Caller, project_id: str, document_id: str) -> None:
    service = DocumentService(store)
    later = service.create(owner, project_id, "Chapter 2", content="Later.")

    service.reorder(owner, project_id, [later, document_id])

    assert [d.id for d in service.list(owner, project_id)] == [later, document_id]


def test_reorder_rejects_foreign_documents(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    service = DocumentService(store)
    with pytest.raises(ValidationError):
        service.reorder(owner, project_id, [document_id, "not-a-document"])


def test_list_needing_review_counts_pending_rows(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    service = DocumentService(store)
    entities = EntityReviewService(store)
    entity_id = entities.create(
        owner, project_id, "Ned Stark", "character", first_mentioned_in=document_id
    )
    FactReviewService(store).create(
        owner, project_id, entity_id, document_id,
        subject="Ned Stark", predicate="rules", object="Winterfell",
    )
    assert service.list_needing_review(owner, project_id) == []

    service.update_processing_status(owner, document_id, ProcessingStatus.COMPLETED)
    (summary,) = service.list_needing_review(owner, project_id)

    assert summary.document.id == document_id
    assert summary.pending_entity_count == 1
    assert summary.pending_fact_count == 1

    entities.confirm(owner, entity_id)
    (summary,) = service.list_needing_review(owner, project_id)
    assert summary.pending_entity_count == 0
