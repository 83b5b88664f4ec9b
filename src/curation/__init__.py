"""Curation package: access checks, entity resolution and the review services."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

__all__ = [
    "Caller",
    "CurationAuditTrail",
    "EntityResolver",
    "EntityReviewService",
    "FactReviewService",
    "ProjectService",
    "Resolution",
    "app",
    "run",
]

# The CLI pulls in typer/rich, so everything is resolved lazily.
_LAZY_EXPORTS = {
    "Caller": ("src.curation.access", "Caller"),
    "CurationAuditTrail": ("src.curation.audit", "CurationAuditTrail"),
    "EntityResolver": ("src.curation.entity_resolver", "EntityResolver"),
    "Resolution": ("src.curation.entity_resolver", "Resolution"),
    "EntityReviewService": ("src.curation.entity_review", "EntityReviewService"),
    "FactReviewService": ("src.curation.fact_review", "FactReviewService"),
    "ProjectService": ("src.curation.projects", "ProjectService"),
    "app": ("src.curation.review_interface", "app"),
    "run": ("src.curation.review_interface", "run"),
}


def __getattr__(name: str) -> Any:
    if name not in _LAZY_EXPORTS:
        raise AttributeError(name)
    module_name, attr_name = _LAZY_EXPORTS[name]
    module = importlib.import_module(module_name)
    return getattr(module, attr_name)


if TYPE_CHECKING:  # pragma: no cover
    from src.curation.access import Caller
    from src.curation.audit import CurationAuditTrail
    from src.curation.entity_resolver import EntityResolver, Resolution
    from src.curation.entity_review import EntityReviewService
    from src.curation.fact_review import FactReviewService
    from src.curation.projects import ProjectService
    from src.curation.review_interface import app, run
