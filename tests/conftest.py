"""Shared fixtures: an in-memory canon store and a seeded project."""

from __future__ import annotations

from typing import Iterator

import pytest

from src.curation.access import Caller
from src.curation.projects import ProjectService
from src.ingestion.documents import DocumentService
from src.storage.canon_store import CanonStore


@pytest.fixture
def store() -> Iterator[CanonStore]:
    store = CanonStore(path=":memory:").connect()
    yield store
    store.close()


@pytest.fixture
def owner() -> Caller:
    return Caller(user_id="user-1")


@pytest.fixture
def stranger() -> Caller:
    return Caller(user_id="user-2")


@pytest.fixture
def anonymous() -> Caller:
    return Caller()


@pytest.fixture
def project_id(store: CanonStore, owner: Caller) -> str:
    return ProjectService(store).create(owner, "Westeros")


@pytest.fixture
def document_id(store: CanonStore, owner: Caller, project_id: str) -> str:
    return DocumentService(store).create(
        owner,
        project_id,
        "Chapter 1",
        content="Jon Snow is the son of Ned Stark. He rode north to Winterfell.",
    )
