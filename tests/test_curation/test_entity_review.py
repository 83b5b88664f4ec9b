from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.curation.access import Caller
from src.curation.audit import CurationAuditTrail
from src.curation.entity_review import EntityReviewService
from src.curation.fact_review import FactReviewService
from src.curation.projects import ProjectService
from src.storage.canon_store import CanonStore
from src.storage.schemas import EntityStatus, EntityType, FactStatus
from src.utils.errors import (
    AuthenticationError,
    AuthorizationError,
    NotAllowedError,
    NotFoundError,
    ValidationError,
)


def _stats(store: CanonStore, project_id: str):
    with store.transaction() as txn:
        return txn.get_project(project_id).stats


def _fact(store: CanonStore, owner: Caller, project_id: str, entity_id: str, **kwargs) -> str:
    return FactReviewService(store).create(
        owner,
        project_id,
        entity_id,
        None,
        subject=kwargs.pop("subject", "subject"),
        predicate=kwargs.pop("predicate", "is"),
        object=kwargs.pop("object", "object"),
        **kwargs,
    )


def test_create_counts_entity(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character", aliases=["Lord Snow"])

    entity = service.get(owner, entity_id)

    assert entity.type == EntityType.CHARACTER
    assert entity.status == EntityStatus.PENDING
    assert _stats(store, project_id).entity_count == 1


def test_create_validates_input(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    with pytest.raises(ValidationError):
        service.create(owner, project_id, "  ", "character")
    with pytest.raises(ValidationError) as excinfo:
        service.create(owner, project_id, "Valyria", "continent")
    assert excinfo.value.details["field"] == "type"


def test_confirm(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")

    service.confirm(owner, entity_id)

    assert service.get(owner, entity_id).status == EntityStatus.CONFIRMED
    assert service.list_pending(owner, project_id) == []


def test_mutations_check_auth_then_existence_then_ownership(
    store: CanonStore, owner: Caller, stranger: Caller, anonymous: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")

    with pytest.raises(AuthenticationError):
        service.confirm(anonymous, "missing")
    with pytest.raises(NotFoundError):
        service.confirm(stranger, "missing")
    with pytest.raises(AuthorizationError):
        service.confirm(stranger, entity_id)
    with pytest.raises(AuthorizationError):
        service.reject(stranger, entity_id)
    assert service.get(owner, entity_id).status == EntityStatus.PENDING


def test_confirmed_entity_cannot_return_to_pending(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")
    service.confirm(owner, entity_id)

    with pytest.raises(NotAllowedError):
        service.update(owner, entity_id, status="pending")


def test_update_fields(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")

    service.update(owner, entity_id, description="King in the North", type="concept")
    entity = service.get(owner, entity_id)

    assert entity.description == "King in the North"
    assert entity.type == EntityType.CONCEPT
    with pytest.raises(ValidationError):
        service.update(owner, entity_id, project_id="elsewhere")
    with pytest.raises(ValidationError):
        service.update(owner, entity_id, type="dragon")
    with pytest.raises(ValidationError):
        service.update(owner, entity_id, name="")


def test_update_clears_optional_fields(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character", description="Bastard")
    service.update(owner, entity_id, revealed_to_viewers=True)

    service.update(owner, entity_id, description=None, revealed_to_viewers=None, aliases=None)
    entity = service.get(owner, entity_id)

    assert entity.description is None
    assert entity.revealed_to_viewers is None
    assert entity.aliases == []


def test_reject_deletes_entity_and_facts(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")
    counted = _fact(store, owner, project_id, entity_id)
    rejected = _fact(store, owner, project_id, entity_id, status=FactStatus.REJECTED)
    assert _stats(store, project_id).fact_count == 1

    service.reject(owner, entity_id)

    assert service.get(owner, entity_id) is None
    facts = FactReviewService(store)
    assert facts.get(owner, counted) is None
    assert facts.get(owner, rejected) is None
    stats = _stats(store, project_id)
    assert (stats.entity_count, stats.fact_count) == (0, 0)


def test_remove_confirmed_entity(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")
    service.confirm(owner, entity_id)
    _fact(store, owner, project_id, entity_id)

    service.remove(owner, entity_id)

    stats = _stats(store, project_id)
    assert (stats.entity_count, stats.fact_count) == (0, 0)


def test_merge_moves_facts_and_aliases(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    target = service.create(owner, project_id, "Jon Snow", "character", aliases=["Lord Snow"])
    source = service.create(owner, project_id, "The Bastard", "character", aliases=["Lord Snow", "Jon"])
    fact_id = _fact(store, owner, project_id, source)

    assert service.merge(owner, source, target) == target

    merged = service.get(owner, target)
    assert merged.name == "Jon Snow"
    assert merged.aliases == ["Lord Snow", "The Bastard", "Jon"]
    assert service.get(owner, source) is None
    assert FactReviewService(store).get(owner, fact_id).entity_id == target
    stats = _stats(store, project_id)
    assert (stats.entity_count, stats.fact_count) == (1, 1)


def test_merge_rejects_invalid_pairs(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    jon = service.create(owner, project_id, "Jon Snow", "character", aliases=["Lord Snow"])
    other_project = ProjectService(store).create(owner, "Essos")
    dany = service.create(owner, other_project, "Daenerys", "character", aliases=["Khaleesi"])

    with pytest.raises(ValidationError):
        service.merge(owner, jon, jon)
    with pytest.raises(ValidationError):
        service.merge(owner, jon, dany)
    assert service.get(owner, jon).aliases == ["Lord Snow"]
    assert service.get(owner, dany).aliases == ["Khaleesi"]
    assert _stats(store, project_id).entity_count == 1
    assert _stats(store, other_project).entity_count == 1
    with pytest.raises(NotFoundError):
        service.merge(owner, jon, "missing")


def test_queries_return_empty_for_non_owners(
    store: CanonStore, owner: Caller, stranger: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    entity_id = service.create(owner, project_id, "Jon Snow", "character")

    assert service.get(stranger, entity_id) is None
    assert service.list_by_project(stranger, project_id) == []
    assert service.list_with_fact_counts(stranger, project_id) == []
    assert service.get_with_facts(stranger, entity_id) is None
    assert service.find_by_name(stranger, project_id, "Jon Snow") is None


def test_list_filters_and_fact_counts(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    service = EntityReviewService(store)
    jon = service.create(owner, project_id, "Jon Snow", "character")
    winterfell = service.create(owner, project_id, "Winterfell", "location")
    service.confirm(owner, winterfell)
    _fact(store, owner, project_id, jon)
    _fact(store, owner, project_id, jon)
    _fact(store, owner, project_id, jon, status=FactStatus.REJECTED)

    assert [e.id for e in service.list_by_project(owner, project_id, entity_type=EntityType.LOCATION)] == [winterfell]
    assert [e.id for e in service.list_pending(owner, project_id)] == [jon]

    by_count = service.list_with_fact_counts(owner, project_id, sort_by="fact_count")
    assert [(row.entity.id, row.fact_count) for row in by_count] == [(jon, 2), (winterfell, 0)]
    by_name = service.list_with_fact_counts(owner, project_id)
    assert [row.entity.name for row in by_name] == ["Jon Snow", "Winterfell"]

    with_facts = service.get_with_facts(owner, jon)
    assert len(with_facts.facts) == 3


def test_find_by_name_is_exact(store: CanonStore, owner: Caller, project_id: str) -> None:
    service = EntityReviewService(store)
    jon = service.create(owner, project_id, "Jon Snow", "character")

    assert service.find_by_name(owner, project_id, "Jon Snow").id == jon
    assert service.find_by_name(owner, project_id, "jon snow") is None


def test_mutations_are_audited(
    tmp_path: Path, store: CanonStore, owner: Caller, project_id: str
) -> None:
    audit_path = tmp_path / "audit" / "curation.jsonl"
    service = EntityReviewService(store, CurationAuditTrail(audit_path))

    entity_id = service.create(owner, project_id, "Jon Snow", "character")
    service.confirm(owner, entity_id)

    entries = [json.loads(line) for line in audit_path.read_text().splitlines()]
    assert [e["event"] for e in entries] == ["create_entity", "confirm_entity"]
    assert entries[1]["user_id"] == "user-1"
    assert entries[1]["payload"] == {"entity_id": entity_id}
