from __future__ import annotations

from src.curation.access import Caller
from src.curation.entity_resolver import EntityResolver, build_name_index, normalize_name
from src.curation.entity_review import EntityReviewService
from src.curation.projects import ProjectService
from src.storage.canon_store import CanonStore
from src.storage.schemas import Entity, EntityType


def _seed(store: CanonStore, owner: Caller, project_id: str) -> dict[str, str]:
    service = EntityReviewService(store)
    return {
        "jon": service.create(owner, project_id, "Jon Snow", "character", aliases=["Lord Snow"]),
        "ned": service.create(owner, project_id, "Ned Stark", "character", aliases=["Eddard"]),
        "winterfell": service.create(owner, project_id, "Winterfell", "location"),
    }


def test_normalize_name() -> None:
    assert normalize_name("  Jon SNOW ") == "jon snow"


def test_build_name_index_first_entity_wins() -> None:
    first = Entity(project_id="p", name="Snow", type=EntityType.CHARACTER)
    second = Entity(project_id="p", name="Jon", type=EntityType.CHARACTER, aliases=["snow"])

    index = build_name_index([first, second])

    assert index == {"snow": first.id, "jon": second.id}


def test_resolve_reuses_entity_by_name_or_alias(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    ids = _seed(store, owner, project_id)
    resolver = EntityResolver()

    with store.transaction() as txn:
        by_name = resolver.resolve_entity(
            txn, project_id, "jon snow", entity_type=EntityType.CHARACTER
        )
        by_alias = resolver.resolve_entity(
            txn, project_id, "Eddard", entity_type=EntityType.CHARACTER
        )
        by_extracted_alias = resolver.resolve_entity(
            txn, project_id, "The Bastard", entity_type=EntityType.CHARACTER, aliases=["Lord Snow"]
        )
        count = len(txn.list_entities(project_id))

    assert (by_name.entity_id, by_name.is_new) == (ids["jon"], False)
    assert (by_alias.entity_id, by_alias.is_new) == (ids["ned"], False)
    assert by_extracted_alias.entity_id == ids["jon"]
    assert count == 3


def test_resolve_creates_pending_entity(
    store: CanonStore, owner: Caller, project_id: str, document_id: str
) -> None:
    _seed(store, owner, project_id)
    resolver = EntityResolver()

    with store.transaction() as txn:
        resolution = resolver.resolve_entity(
            txn,
            project_id,
            "Ghost",
            entity_type=EntityType.CHARACTER,
            aliases=["the direwolf"],
            description="Jon's direwolf",
            source_document_id=document_id,
        )
        entity = txn.get_entity(resolution.entity_id)

    assert resolution.is_new
    assert entity.status.value == "pending"
    assert entity.first_mentioned_in == document_id
    assert entity.aliases == ["the direwolf"]


def test_resolution_is_scoped_to_project(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    _seed(store, owner, project_id)
    other_project = ProjectService(store).create(owner, "Essos")

    with store.transaction() as txn:
        resolution = EntityResolver().resolve_entity(
            txn, other_project, "Jon Snow", entity_type=EntityType.CHARACTER
        )

    assert resolution.is_new


def test_lookup_never_creates(store: CanonStore, owner: Caller, project_id: str) -> None:
    _seed(store, owner, project_id)

    with store.transaction() as txn:
        assert EntityResolver().lookup(txn, project_id, "Daenerys") is None
        assert EntityResolver().lookup(txn, project_id, "   ") is None
        assert len(txn.list_entities(project_id)) == 3


def test_find_similar_substring_and_alias(
    store: CanonStore, owner: Caller, project_id: str
) -> None:
    ids = _seed(store, owner, project_id)
    resolver = EntityResolver(store)

    assert [e.id for e in resolver.find_similar(owner, project_id, "Snow")] == [ids["jon"]]
    assert [e.id for e in resolver.find_similar(owner, project_id, "eddard")] == [ids["ned"]]
    # The exact name itself is not a suggestion.
    assert resolver.find_similar(owner, project_id, "Winterfell") == []
    assert resolver.find_similar(owner, project_id, "Snow", exclude_id=ids["jon"]) == []


def test_find_similar_fuzzy(store: CanonStore, owner: Caller, project_id: str) -> None:
    ids = _seed(store, owner, project_id)

    strict = EntityResolver(store)
    fuzzy = EntityResolver(store, fuzzy_similar=True, similarity_threshold=0.85)

    assert strict.find_similar(owner, project_id, "Winterfall") == []
    assert ids["winterfell"] in [e.id for e in fuzzy.find_similar(owner, project_id, "Winterfall")]


def test_find_similar_empty_for_non_readers(
    store: CanonStore, owner: Caller, stranger: Caller, anonymous: Caller, project_id: str
) -> None:
    _seed(store, owner, project_id)
    resolver = EntityResolver(store)

    assert resolver.find_similar(stranger, project_id, "Snow") == []
    assert resolver.find_similar(anonymous, project_id, "Snow") == []
