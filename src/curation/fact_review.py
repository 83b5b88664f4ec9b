"""Fact review: confirm, reject, edit and remove with exact stats bookkeeping.

Only facts that are not rejected count toward ``ProjectStats.fact_count``, so
every status transition adjusts the counter by the counted/not-counted
difference between the old and the new status.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger

from src.curation.access import (
    Caller,
    can_read_project,
    require_auth,
    require_fact_owner,
    require_project_owner,
)
from src.curation.audit import CurationAuditTrail
from src.storage.canon_store import CanonStore
from src.storage.schemas import EvidencePosition, Fact, FactStatus, TemporalBound
from src.storage.stats import apply_stats_delta
from src.utils.errors import NotFoundError, ValidationError

UPDATABLE_FIELDS = {
    "subject",
    "predicate",
    "object",
    "confidence",
    "evidence_snippet",
    "temporal_bound",
    "status",
}
CLEARABLE_FIELDS = {"temporal_bound"}


def _counted(status: FactStatus) -> int:
    return 0 if status == FactStatus.REJECTED else 1


def _validate_confidence(confidence: float) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise ValidationError("confidence", "Confidence must be between 0 and 1")


class FactReviewService:
    """Review operations on facts."""

    def __init__(self, store: CanonStore, audit: CurationAuditTrail | None = None) -> None:
        self.store = store
        self._audit = audit or CurationAuditTrail.disabled()

    # Mutations ------------------------------------------------------
    def create(
        self,
        caller: Caller | None,
        project_id: str,
        entity_id: str,
        document_id: str | None,
        *,
        subject: str,
        predicate: str,
        object: str,
        confidence: float = 1.0,
        evidence_snippet: str = "",
        evidence_position: EvidencePosition | None = None,
        temporal_bound: TemporalBound | None = None,
        status: FactStatus = FactStatus.PENDING,
    ) -> str:
        """Create a fact by hand; counted unless created as rejected."""
        _validate_confidence(confidence)

        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            entity = txn.get_entity(entity_id)
            if entity is None:
                raise NotFoundError("entity", entity_id)
            if entity.project_id != project_id:
                raise ValidationError("entity_id", "Entity belongs to a different project")

            fact = Fact(
                project_id=project_id,
                entity_id=entity_id,
                document_id=document_id,
                subject=subject,
                predicate=predicate,
                object=object,
                confidence=confidence,
                evidence_snippet=evidence_snippet,
                evidence_position=evidence_position,
                temporal_bound=temporal_bound,
                status=status,
            )
            txn.insert_fact(fact)
            if fact.counts_toward_stats:
                apply_stats_delta(txn, project_id, facts=1)

        self._record("create_fact", caller, {"fact_id": fact.id, "entity_id": entity_id})
        return fact.id

    def confirm(self, caller: Caller | None, fact_id: str) -> str:
        """Confirm a fact; a previously rejected fact is counted again."""
        return self._set_status(caller, fact_id, FactStatus.CONFIRMED, "confirm_fact")

    def reject(self, caller: Caller | None, fact_id: str) -> str:
        """Reject a fact; it keeps its row but stops counting."""
        return self._set_status(caller, fact_id, FactStatus.REJECTED, "reject_fact")

    def update(self, caller: Caller | None, fact_id: str, **fields: Any) -> str:
        """Patch fact fields; a status change adjusts the fact count."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(field, f"Field cannot be updated: {field}")
        if fields.get("confidence") is not None:
            _validate_confidence(float(fields["confidence"]))
        if fields.get("status") is not None:
            try:
                fields["status"] = FactStatus(fields["status"])
            except ValueError:
                raise ValidationError("status", f"Invalid status: {fields['status']}") from None

        changes = {k: v for k, v in fields.items() if v is not None or k in CLEARABLE_FIELDS}
        with self.store.transaction() as txn:
            fact = require_fact_owner(txn, caller, fact_id)
            txn.update_fact(fact_id, **changes)
            new_status = changes.get("status", fact.status)
            delta = _counted(new_status) - _counted(fact.status)
            if delta:
                apply_stats_delta(txn, fact.project_id, facts=delta)

        self._record("update_fact", caller, {"fact_id": fact_id, "changes": changes})
        return fact_id

    def remove(self, caller: Caller | None, fact_id: str) -> str:
        with self.store.transaction() as txn:
            fact = require_fact_owner(txn, caller, fact_id)
            txn.delete_fact(fact_id)
            if fact.counts_toward_stats:
                apply_stats_delta(txn, fact.project_id, facts=-1)

        logger.info(f"Removed fact {fact_id}")
        self._record("remove_fact", caller, {"fact_id": fact_id})
        return fact_id

    def _set_status(
        self, caller: Caller | None, fact_id: str, status: FactStatus, event: str
    ) -> str:
        with self.store.transaction() as txn:
            fact = require_fact_owner(txn, caller, fact_id)
            txn.update_fact(fact_id, status=status)
            delta = _counted(status) - _counted(fact.status)
            if delta:
                apply_stats_delta(txn, fact.project_id, facts=delta)

        logger.debug(f"Fact {fact_id}: {fact.status.value} -> {status.value}")
        self._record(event, caller, {"fact_id": fact_id, "previous_status": fact.status.value})
        return fact_id

    def _record(self, event: str, caller: Caller | None, payload: Dict[str, object]) -> None:
        self._audit.record(event, require_auth(caller), payload)

    # Queries --------------------------------------------------------
    def get(self, caller: Caller | None, fact_id: str) -> Optional[Fact]:
        with self.store.transaction() as txn:
            fact = txn.get_fact(fact_id)
            if fact is None or not can_read_project(txn, caller, fact.project_id):
                return None
            return fact

    def list_by_entity(
        self, caller: Caller | None, entity_id: str, *, status: FactStatus | None = None
    ) -> List[Fact]:
        with self.store.transaction() as txn:
            entity = txn.get_entity(entity_id)
            if entity is None or not can_read_project(txn, caller, entity.project_id):
                return []
            return txn.list_facts(entity_id=entity_id, status=status)

    def list_by_document(self, caller: Caller | None, document_id: str) -> List[Fact]:
        with self.store.transaction() as txn:
            document = txn.get_document(document_id)
            if document is None or not can_read_project(txn, caller, document.project_id):
                return []
            return txn.list_facts(document_id=document_id)

    def list_by_project(
        self, caller: Caller | None, project_id: str, *, status: FactStatus | None = None
    ) -> List[Fact]:
        with self.store.transaction() as txn:
            if not can_read_project(txn, caller, project_id):
                return []
            return txn.list_facts(project_id=project_id, status=status)

    def list_pending(self, caller: Caller | None, project_id: str) -> List[Fact]:
        return self.list_by_project(caller, project_id, status=FactStatus.PENDING)
