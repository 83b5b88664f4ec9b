"""Caller identity and ownership checks.

Every user-invocable operation receives a ``Caller`` and runs the checks here
before touching any record: authentication, then existence, then ownership.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.storage.canon_store import StoreTransaction
from src.storage.schemas import Document, Entity, Fact, Project
from src.utils.errors import AuthenticationError, AuthorizationError, NotFoundError


class Caller(BaseModel):
    """The identity an operation runs as. ``user_id=None`` means anonymous."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None


def require_auth(caller: Caller | None) -> str:
    if caller is None or not caller.user_id:
        raise AuthenticationError()
    return caller.user_id


def require_project_owner(
    txn: StoreTransaction, caller: Caller | None, project_id: str
) -> Project:
    user_id = require_auth(caller)
    project = txn.get_project(project_id)
    if project is None:
        raise NotFoundError("project", project_id)
    if project.user_id != user_id:
        raise AuthorizationError()
    return project


def _owning_project(txn: StoreTransaction, user_id: str, project_id: str) -> Project:
    # A record whose project is gone is treated as not owned.
    project = txn.get_project(project_id)
    if project is None or project.user_id != user_id:
        raise AuthorizationError()
    return project


def require_document_owner(
    txn: StoreTransaction, caller: Caller | None, document_id: str
) -> Document:
    user_id = require_auth(caller)
    document = txn.get_document(document_id)
    if document is None:
        raise NotFoundError("document", document_id)
    _owning_project(txn, user_id, document.project_id)
    return document


def require_entity_owner(
    txn: StoreTransaction, caller: Caller | None, entity_id: str
) -> Entity:
    user_id = require_auth(caller)
    entity = txn.get_entity(entity_id)
    if entity is None:
        raise NotFoundError("entity", entity_id)
    _owning_project(txn, user_id, entity.project_id)
    return entity


def require_fact_owner(txn: StoreTransaction, caller: Caller | None, fact_id: str) -> Fact:
    user_id = require_auth(caller)
    fact = txn.get_fact(fact_id)
    if fact is None:
        raise NotFoundError("fact", fact_id)
    _owning_project(txn, user_id, fact.project_id)
    return fact


def can_read_project(txn: StoreTransaction, caller: Caller | None, project_id: str) -> bool:
    """Soft ownership check for queries that return empty results instead of raising."""
    if caller is None or not caller.user_id:
        return False
    project = txn.get_project(project_id)
    return project is not None and project.user_id == caller.user_id
