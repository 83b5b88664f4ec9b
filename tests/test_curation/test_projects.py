from __future__ import annotations

import pytest

from src.curation.access import Caller
from src.curation.entity_review import EntityReviewService
from src.curation.fact_review import FactReviewService
from src.curation.projects import ProjectService
from src.ingestion.documents import DocumentService
from src.storage.canon_store import CanonStore
from src.storage.schemas import ProjectStats
from src.utils.errors import AuthenticationError, AuthorizationError, ValidationError


def test_create_starts_with_zero_stats(store: CanonStore, owner: Caller) -> None:
    service = ProjectService(store)
    project_id = service.create(owner, "  The Expanse  ", description="Belters and inners")

    project = service.get(owner, project_id)

    assert project.name == "The Expanse"
    assert project.user_id == "user-1"
    assert project.stats == ProjectStats()


def test_create_requires_identity_and_name(store: CanonStore, owner: Caller, anonymous: Caller) -> None:
    service = ProjectService(store)
    with pytest.raises(AuthenticationError):
        service.create(anonymous, "Dune")
    with pytest.raises(ValidationError):
        service.create(owner, " ")


def test_list_is_per_user_and_newest_first(
    store: CanonStore, owner: Caller, stranger: Caller
) -> None:
    service = ProjectService(store)
    first = service.create(owner, "First")
    second = service.create(owner, "Second")
    service.create(stranger, "Someone else's")

    assert [p.id for p in service.list(owner)] == [second, first]
    assert service.list(Caller()) == []


def test_get_hides_other_users_projects(
    store: CanonStore, stranger: Caller, anonymous: Caller, project_id: str
) -> None:
    service = ProjectService(store)
    assert service.get(stranger, project_id) is None
    assert service.get(anonymous, project_id) is None


def test_update_checks_ownership(
    store: CanonStore, owner: Caller, stranger: Caller, project_id: str
) -> None:
    service = ProjectService(store)
    service.update(owner, project_id, name="Essos", reveal_to_players=True)

    project = service.get(owner, project_id)
    assert project.name == "Essos"
    assert project.reveal_to_players is True
    with pytest.raises(AuthorizationError):
        service.update(stranger, project_id, name="Mine now")


def test_remove_cascades(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    entity_id = EntityReviewService(store).create(owner, project_id, "Jon Snow", "character")
    fact_id = FactReviewService(store).create(
        owner, project_id, entity_id, document_id,
        subject="Jon Snow", predicate="lives in", object="Castle Black",
    )

    ProjectService(store).remove(owner, project_id)

    with store.transaction() as txn:
        assert txn.get_project(project_id) is None
        assert txn.get_document(document_id) is None
        assert txn.get_entity(entity_id) is None
        assert txn.get_fact(fact_id) is None


def test_reconcile_fixes_drift(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    EntityReviewService(store).create(owner, project_id, "Arya Stark", "character")
    with store.transaction() as txn:
        txn.update_project(project_id, stats=ProjectStats(document_count=5, entity_count=1))

    service = ProjectService(store)
    drift = service.reconcile_stats(owner, project_id)

    assert drift == {"document_count": 4}
    assert service.get(owner, project_id).stats.document_count == 1
    assert service.reconcile_stats(owner, project_id) == {}


def test_reconcile_requires_owner(
    store: CanonStore, stranger: Caller, project_id: str
) -> None:
    with pytest.raises(AuthorizationError):
        ProjectService(store).reconcile_stats(stranger, project_id)


def test_documents_counted_in_stats(store: CanonStore, owner: Caller, project_id: str) -> None:
    documents = DocumentService(store)
    documents.create(owner, project_id, "One", content="a")
    documents.create(owner, project_id, "Two", content="b")

    assert ProjectService(store).get(owner, project_id).stats.document_count == 2
