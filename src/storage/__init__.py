"""Storage package: record schemas, the document store and project counters."""

from src.storage.canon_store import CanonStore, StoreTransaction
from src.storage.schemas import (
    ContentType,
    Document,
    Entity,
    EntityStatus,
    EntityType,
    EvidencePosition,
    Fact,
    FactStatus,
    LLMCacheEntry,
    ProcessingStatus,
    Project,
    ProjectStats,
    ProjectType,
    TemporalBound,
)
from src.storage.stats import apply_stats_delta, compute_stats, reconcile_stats

__all__ = [
    "CanonStore",
    "ContentType",
    "Document",
    "Entity",
    "EntityStatus",
    "EntityType",
    "EvidencePosition",
    "Fact",
    "FactStatus",
    "LLMCacheEntry",
    "ProcessingStatus",
    "Project",
    "ProjectStats",
    "ProjectType",
    "StoreTransaction",
    "TemporalBound",
    "apply_stats_delta",
    "compute_stats",
    "reconcile_stats",
]
