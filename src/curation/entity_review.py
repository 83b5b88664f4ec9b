"""Entity review: confirm, reject, merge and remove with cascading fact cleanup.

State machine::

    pending --confirm--> confirmed
    pending | confirmed --reject/remove--> (deleted, facts deleted)
    source --merge--> target (source deleted, facts re-pointed)

Every mutation checks authentication, existence and ownership before writing,
and runs in a single store transaction together with its stats delta.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from src.curation.access import (
    Caller,
    can_read_project,
    require_auth,
    require_entity_owner,
    require_project_owner,
)
from src.curation.audit import CurationAuditTrail
from src.storage.canon_store import CanonStore, StoreTransaction
from src.storage.schemas import Entity, EntityStatus, EntityType, Fact, utcnow
from src.storage.stats import apply_stats_delta
from src.utils.errors import NotAllowedError, ValidationError

UPDATABLE_FIELDS = {"name", "type", "description", "aliases", "status", "revealed_to_viewers"}
# Passing None for these clears them; None elsewhere leaves the field as is.
CLEARABLE_FIELDS = {"description", "revealed_to_viewers"}


class EntityWithFacts(BaseModel):
    entity: Entity
    facts: List[Fact] = Field(default_factory=list)


class EntityFactCount(BaseModel):
    entity: Entity
    fact_count: int = 0


class EntityReviewService:
    """Review operations on extracted and hand-made entities."""

    def __init__(self, store: CanonStore, audit: CurationAuditTrail | None = None) -> None:
        self.store = store
        self._audit = audit or CurationAuditTrail.disabled()

    # Mutations ------------------------------------------------------
    def create(
        self,
        caller: Caller | None,
        project_id: str,
        name: str,
        entity_type: EntityType | str,
        *,
        description: str | None = None,
        aliases: List[str] | None = None,
        first_mentioned_in: str | None = None,
        status: EntityStatus = EntityStatus.PENDING,
    ) -> str:
        """Create an entity by hand and count it in the project stats."""
        if not name or not name.strip():
            raise ValidationError("name", "Entity name cannot be empty")
        try:
            entity_type = EntityType(entity_type)
        except ValueError:
            raise ValidationError("type", f"Unknown entity type: {entity_type}") from None

        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            entity = Entity(
                project_id=project_id,
                name=name,
                type=entity_type,
                description=description,
                aliases=list(aliases or []),
                first_mentioned_in=first_mentioned_in,
                status=status,
            )
            txn.insert_entity(entity)
            apply_stats_delta(txn, project_id, entities=1)

        logger.info(f"Created entity '{entity.name}' ({entity.id})")
        self._record("create_entity", caller, {"entity_id": entity.id, "name": entity.name})
        return entity.id

    def update(self, caller: Caller | None, entity_id: str, **fields: Any) -> str:
        """Patch entity fields.

        Raises:
            ValidationError: On unknown fields or an empty name
            NotAllowedError: When moving a confirmed entity back to pending
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], f"Field cannot be updated: {sorted(unknown)[0]}")
        if "name" in fields and (not fields["name"] or not str(fields["name"]).strip()):
            raise ValidationError("name", "Entity name cannot be empty")
        for key, enum_cls in (("type", EntityType), ("status", EntityStatus)):
            if fields.get(key) is None:
                continue
            try:
                fields[key] = enum_cls(fields[key])
            except ValueError:
                raise ValidationError(key, f"Invalid {key}: {fields[key]}") from None

        with self.store.transaction() as txn:
            entity = require_entity_owner(txn, caller, entity_id)
            if (
                fields.get("status") == EntityStatus.PENDING
                and entity.status == EntityStatus.CONFIRMED
            ):
                raise NotAllowedError("Confirmed entities cannot return to pending")
            changes = {
                k: v for k, v in fields.items() if v is not None or k in CLEARABLE_FIELDS
            }
            txn.update_entity(entity_id, **changes, updated_at=utcnow())

        self._record("update_entity", caller, {"entity_id": entity_id, "changes": changes})
        return entity_id

    def confirm(self, caller: Caller | None, entity_id: str) -> str:
        with self.store.transaction() as txn:
            require_entity_owner(txn, caller, entity_id)
            txn.update_entity(entity_id, status=EntityStatus.CONFIRMED, updated_at=utcnow())

        logger.info(f"Confirmed entity {entity_id}")
        self._record("confirm_entity", caller, {"entity_id": entity_id})
        return entity_id

    def reject(self, caller: Caller | None, entity_id: str) -> str:
        """Delete a (usually pending) entity together with its facts."""
        removed_facts = self._delete_with_facts(caller, entity_id)
        self._record(
            "reject_entity", caller, {"entity_id": entity_id, "removed_facts": removed_facts}
        )
        return entity_id

    def remove(self, caller: Caller | None, entity_id: str) -> str:
        """Delete an entity in any status together with its facts."""
        removed_facts = self._delete_with_facts(caller, entity_id)
        self._record(
            "remove_entity", caller, {"entity_id": entity_id, "removed_facts": removed_facts}
        )
        return entity_id

    def merge(self, caller: Caller | None, source_id: str, target_id: str) -> str:
        """Fold ``source`` into ``target``.

        The target keeps its name and gains the source's name and aliases as
        aliases. Facts move to the target and the source is deleted.

        Raises:
            ValidationError: If the entities are the same or in different projects
        """
        with self.store.transaction() as txn:
            source = require_entity_owner(txn, caller, source_id)
            target = require_entity_owner(txn, caller, target_id)
            if source_id == target_id:
                raise ValidationError("target_id", "Cannot merge an entity into itself")
            if source.project_id != target.project_id:
                raise ValidationError(
                    "target_id", "Cannot merge entities from different projects"
                )

            merged_aliases = list(dict.fromkeys([*target.aliases, source.name, *source.aliases]))
            txn.update_entity(target_id, aliases=merged_aliases, updated_at=utcnow())

            facts = txn.list_facts(entity_id=source_id)
            for fact in facts:
                txn.update_fact(fact.id, entity_id=target_id)

            txn.delete_entity(source_id)
            apply_stats_delta(txn, source.project_id, entities=-1)

        logger.info(
            f"Merged entity '{source.name}' into '{target.name}' ({len(facts)} facts moved)"
        )
        self._record(
            "merge_entities",
            caller,
            {"source_id": source_id, "target_id": target_id, "moved_facts": len(facts)},
        )
        return target_id

    def _delete_with_facts(self, caller: Caller | None, entity_id: str) -> int:
        with self.store.transaction() as txn:
            entity = require_entity_owner(txn, caller, entity_id)
            facts = txn.list_facts(entity_id=entity_id)
            counted = sum(1 for fact in facts if fact.counts_toward_stats)
            for fact in facts:
                txn.delete_fact(fact.id)
            txn.delete_entity(entity_id)
            apply_stats_delta(txn, entity.project_id, entities=-1, facts=-counted)

        logger.info(f"Deleted entity '{entity.name}' and {len(facts)} facts")
        return len(facts)

    def _record(self, event: str, caller: Caller | None, payload: Dict[str, object]) -> None:
        self._audit.record(event, require_auth(caller), payload)

    # Queries --------------------------------------------------------
    def get(self, caller: Caller | None, entity_id: str) -> Optional[Entity]:
        with self.store.transaction() as txn:
            entity = txn.get_entity(entity_id)
            if entity is None or not can_read_project(txn, caller, entity.project_id):
                return None
            return entity

    def list_by_project(
        self,
        caller: Caller | None,
        project_id: str,
        *,
        entity_type: EntityType | None = None,
        status: EntityStatus | None = None,
    ) -> List[Entity]:
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            return txn.list_entities(project_id, status=status, entity_type=entity_type)

    def list_pending(self, caller: Caller | None, project_id: str) -> List[Entity]:
        return self.list_by_project(caller, project_id, status=EntityStatus.PENDING)

    def list_with_fact_counts(
        self,
        caller: Caller | None,
        project_id: str,
        *,
        entity_type: EntityType | None = None,
        status: EntityStatus | None = None,
        sort_by: Literal["name", "recent", "fact_count"] = "name",
    ) -> List[EntityFactCount]:
        """Entities with their number of non-rejected facts."""
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            rows = [
                EntityFactCount(
                    entity=entity,
                    fact_count=sum(
                        1
                        for fact in txn.list_facts(entity_id=entity.id)
                        if fact.counts_toward_stats
                    ),
                )
                for entity in txn.list_entities(project_id, status=status, entity_type=entity_type)
            ]

        if sort_by == "recent":
            rows.sort(key=lambda row: row.entity.updated_at, reverse=True)
        elif sort_by == "fact_count":
            rows.sort(key=lambda row: row.fact_count, reverse=True)
        else:
            rows.sort(key=lambda row: row.entity.name.lower())
        return rows

    def get_with_facts(self, caller: Caller | None, entity_id: str) -> Optional[EntityWithFacts]:
        with self.store.transaction() as txn:
            entity = txn.get_entity(entity_id)
            if entity is None or not can_read_project(txn, caller, entity.project_id):
                return None
            return EntityWithFacts(entity=entity, facts=txn.list_facts(entity_id=entity_id))

    def find_by_name(self, caller: Caller | None, project_id: str, name: str) -> Optional[Entity]:
        """Exact (case-sensitive) name lookup, as stored."""
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return None
            return _first_named(txn, project_id, name)


def _first_named(txn: StoreTransaction, project_id: str, name: str) -> Optional[Entity]:
    for entity in txn.list_entities(project_id):
        if entity.name == name:
            return entity
    return None
