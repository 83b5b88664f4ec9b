"""Denormalized project counters.

``apply_stats_delta`` is the single writer of ``Project.stats``; every mutation
that creates or deletes a document, entity or fact calls it inside the same
transaction as the row change.
"""

from __future__ import annotations

from typing import Dict

from loguru import logger

from src.storage.canon_store import StoreTransaction
from src.storage.schemas import FactStatus, ProjectStats, utcnow


def apply_stats_delta(
    txn: StoreTransaction,
    project_id: str,
    *,
    documents: int = 0,
    entities: int = 0,
    facts: int = 0,
    alerts: int = 0,
    notes: int = 0,
) -> ProjectStats | None:
    """Add the given deltas to the project's counters, clamping each at zero.

    A project without stats starts from all-zero defaults. Returns the new stats,
    or None when the project no longer exists.
    """
    project = txn.get_project(project_id)
    if project is None:
        logger.warning(f"Stats delta for missing project {project_id} ignored")
        return None

    current = project.stats or ProjectStats()
    updated = ProjectStats(
        document_count=max(0, current.document_count + documents),
        entity_count=max(0, current.entity_count + entities),
        fact_count=max(0, current.fact_count + facts),
        alert_count=max(0, current.alert_count + alerts),
        note_count=max(0, current.note_count + notes),
    )
    txn.update_project(project_id, stats=updated, updated_at=utcnow())
    logger.debug(
        "Applied stats delta to {}: documents={:+d} entities={:+d} facts={:+d}",
        project_id,
        documents,
        entities,
        facts,
    )
    return updated


def compute_stats(txn: StoreTransaction, project_id: str) -> ProjectStats:
    """Recount documents, entities and non-rejected facts from the rows themselves."""
    project = txn.get_project(project_id)
    current = (project.stats if project else None) or ProjectStats()
    facts = txn.list_facts(project_id=project_id)
    return ProjectStats(
        document_count=len(txn.list_documents(project_id)),
        entity_count=len(txn.list_entities(project_id)),
        fact_count=sum(1 for fact in facts if fact.status != FactStatus.REJECTED),
        alert_count=current.alert_count,
        note_count=current.note_count,
    )


def reconcile_stats(txn: StoreTransaction, project_id: str) -> Dict[str, int]:
    """Rewrite the counters from a fresh recount.

    Returns:
        Mapping of counter name to drift (stored minus recounted) for counters
        that disagreed; empty when the counters were already exact.
    """
    project = txn.get_project(project_id)
    if project is None:
        return {}

    stored = project.stats or ProjectStats()
    actual = compute_stats(txn, project_id)
    drift = {
        name: getattr(stored, name) - getattr(actual, name)
        for name in ("document_count", "entity_count", "fact_count")
        if getattr(stored, name) != getattr(actual, name)
    }
    if drift or project.stats is None:
        txn.update_project(project_id, stats=actual, updated_at=utcnow())
    if drift:
        logger.warning(f"Reconciled stats for project {project_id}: drift={drift}")
    return drift
