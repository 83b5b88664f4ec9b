"""Match extracted entity names against a project's existing entities."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict
from rapidfuzz import fuzz

from src.curation.access import Caller, can_read_project
from src.storage.canon_store import CanonStore, StoreTransaction
from src.storage.schemas import Entity, EntityStatus, EntityType


class Resolution(BaseModel):
    """Outcome of resolving one extracted name."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    is_new: bool


def normalize_name(name: str) -> str:
    return name.strip().lower()


def build_name_index(entities: Iterable[Entity]) -> Dict[str, str]:
    """Map every normalized name and alias to its entity id; first entity wins."""
    index: Dict[str, str] = {}
    for entity in entities:
        for candidate in entity.names():
            key = normalize_name(candidate)
            if key:
                index.setdefault(key, entity.id)
    return index


class EntityResolver:
    """Exact, case-insensitive name and alias matching with optional fuzzy suggestions.

    Resolution used by the materializer is deliberately strict: only exact matches
    of the name or an alias reuse an entity. Looser matches are only offered to
    reviewers through ``find_similar``.
    """

    def __init__(
        self,
        store: CanonStore | None = None,
        *,
        fuzzy_similar: bool = False,
        similarity_threshold: float = 0.90,
    ) -> None:
        self.store = store
        self.fuzzy_similar = fuzzy_similar
        self.similarity_threshold = similarity_threshold

    def lookup(
        self, txn: StoreTransaction, project_id: str, name: str, aliases: Iterable[str] = ()
    ) -> Optional[str]:
        """Return the id of an entity matching ``name`` or any alias, without creating one."""
        wanted = {normalize_name(n) for n in (name, *aliases) if normalize_name(n)}
        if not wanted:
            return None
        for entity in txn.list_entities(project_id):
            if any(normalize_name(candidate) in wanted for candidate in entity.names()):
                return entity.id
        return None

    def resolve_entity(
        self,
        txn: StoreTransaction,
        project_id: str,
        name: str,
        *,
        entity_type: EntityType,
        aliases: List[str] | None = None,
        description: str | None = None,
        source_document_id: str | None = None,
    ) -> Resolution:
        """Reuse a matching entity or insert a new pending one.

        An existing match is returned untouched; extracted aliases and
        descriptions are not merged into it.
        """
        existing_id = self.lookup(txn, project_id, name, aliases or [])
        if existing_id is not None:
            logger.debug(f"Resolved '{name}' to existing entity {existing_id}")
            return Resolution(entity_id=existing_id, is_new=False)

        entity = Entity(
            project_id=project_id,
            name=name,
            type=entity_type,
            description=description,
            aliases=list(aliases or []),
            status=EntityStatus.PENDING,
            first_mentioned_in=source_document_id,
        )
        txn.insert_entity(entity)
        logger.debug(f"Created pending entity '{entity.name}' ({entity.id})")
        return Resolution(entity_id=entity.id, is_new=True)

    def find_similar(
        self,
        caller: Caller | None,
        project_id: str,
        name: str,
        exclude_id: str | None = None,
    ) -> List[Entity]:
        """Suggest possible duplicates of ``name`` for a reviewer.

        Returns an empty list when the caller cannot read the project.
        """
        if self.store is None:
            raise RuntimeError("find_similar requires a store")

        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            entities = txn.list_entities(project_id)

        target = normalize_name(name)
        scored: List[tuple[float, Entity]] = []
        for entity in entities:
            if exclude_id and entity.id == exclude_id:
                continue
            entity_name = normalize_name(entity.name)
            if entity_name == target:
                continue

            matched = (
                target in entity_name
                or entity_name in target
                or target in (normalize_name(a) for a in entity.aliases)
            )
            score = 0.0
            if self.fuzzy_similar:
                score = fuzz.WRatio(target, entity_name) / 100.0
                matched = matched or score >= self.similarity_threshold
            if matched:
                scored.append((score, entity))

        if self.fuzzy_similar:
            scored.sort(key=lambda item: item[0], reverse=True)
        return [entity for _, entity in scored]
