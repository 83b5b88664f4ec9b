"""Transactional document store for projects, documents, entities, facts and cache rows.

Records are stored as JSON documents next to the handful of columns that are
indexed for lookups (project, entity, document, status). Every read-modify-write
sequence runs inside ``CanonStore.transaction()``, which maps onto a single
SQLite ``BEGIN IMMEDIATE`` transaction: either every write in the block lands or
none of them does.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from loguru import logger
from pydantic import BaseModel

from src.storage.schemas import (
    Document,
    Entity,
    EntityStatus,
    EntityType,
    Fact,
    FactStatus,
    LLMCacheEntry,
    ProcessingStatus,
    Project,
)
from src.utils.config import StorageConfig

ModelT = TypeVar("ModelT", bound=BaseModel)

# table -> (model, indexed columns)
_TABLES: Dict[str, Tuple[Type[BaseModel], Tuple[str, ...]]] = {
    "projects": (Project, ("user_id",)),
    "documents": (Document, ("project_id", "processing_status")),
    "entities": (Entity, ("project_id", "status", "type")),
    "facts": (Fact, ("project_id", "entity_id", "document_id", "status")),
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_user ON projects(user_id);

CREATE TABLE IF NOT EXISTS documents (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    project_id TEXT NOT NULL,
    processing_status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id, processing_status);

CREATE TABLE IF NOT EXISTS entities (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    project_id TEXT NOT NULL,
    status TEXT NOT NULL,
    type TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entities_project ON entities(project_id, status, type);

CREATE TABLE IF NOT EXISTS facts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    project_id TEXT NOT NULL,
    entity_id TEXT,
    document_id TEXT,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_facts_project ON facts(project_id, status);
CREATE INDEX IF NOT EXISTS idx_facts_entity ON facts(entity_id, status);
CREATE INDEX IF NOT EXISTS idx_facts_document ON facts(document_id);

CREATE TABLE IF NOT EXISTS llm_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    input_hash TEXT NOT NULL,
    prompt_version TEXT NOT NULL,
    model_id TEXT NOT NULL,
    response TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    expires_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_llm_cache_hash ON llm_cache(input_hash, prompt_version);
CREATE INDEX IF NOT EXISTS idx_llm_cache_version ON llm_cache(prompt_version);
"""


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class StoreTransaction:
    """Typed operations over one open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # Generic helpers ------------------------------------------------
    def _insert(self, table: str, record: BaseModel) -> None:
        _, columns = _TABLES[table]
        names = ("id", *columns, "data")
        values = (
            record.id,  # type: ignore[attr-defined]
            *(_column_value(getattr(record, col)) for col in columns),
            record.model_dump_json(),
        )
        placeholders = ", ".join("?" for _ in names)
        self._conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})", values
        )

    def _get(self, table: str, record_id: str) -> Optional[BaseModel]:
        model, _ = _TABLES[table]
        row = self._conn.execute(f"SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return model.model_validate_json(row[0]) if row else None

    def _update(self, table: str, record_id: str, fields: Dict[str, Any]) -> Optional[BaseModel]:
        current = self._get(table, record_id)
        if current is None:
            return None
        model, columns = _TABLES[table]
        updated = model.model_validate({**current.model_dump(), **fields})
        assignments = ", ".join(f"{col} = ?" for col in (*columns, "data"))
        values = (
            *(_column_value(getattr(updated, col)) for col in columns),
            updated.model_dump_json(),
            record_id,
        )
        self._conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", values)
        return updated

    def _delete(self, table: str, record_id: str) -> bool:
        cursor = self._conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def _select(
        self, table: str, filters: Sequence[Tuple[str, Any]]
    ) -> List[BaseModel]:
        model, _ = _TABLES[table]
        clauses = [f"{col} = ?" for col, value in filters if value is not None]
        params = [_column_value(value) for _, value in filters if value is not None]
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT data FROM {table}{where} ORDER BY seq", params
        ).fetchall()
        return [model.model_validate_json(row[0]) for row in rows]

    # Projects -------------------------------------------------------
    def insert_project(self, project: Project) -> str:
        self._insert("projects", project)
        return project.id

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._get("projects", project_id)  # type: ignore[return-value]

    def update_project(self, project_id: str, **fields: Any) -> Optional[Project]:
        return self._update("projects", project_id, fields)  # type: ignore[return-value]

    def delete_project(self, project_id: str) -> bool:
        return self._delete("projects", project_id)

    def list_projects(self, user_id: str) -> List[Project]:
        return self._select("projects", [("user_id", user_id)])  # type: ignore[return-value]

    # Documents ------------------------------------------------------
    def insert_document(self, document: Document) -> str:
        self._insert("documents", document)
        return document.id

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._get("documents", document_id)  # type: ignore[return-value]

    def update_document(self, document_id: str, **fields: Any) -> Optional[Document]:
        return self._update("documents", document_id, fields)  # type: ignore[return-value]

    def delete_document(self, document_id: str) -> bool:
        return self._delete("documents", document_id)

    def list_documents(
        self, project_id: str, *, status: ProcessingStatus | None = None
    ) -> List[Document]:
        return self._select(  # type: ignore[return-value]
            "documents", [("project_id", project_id), ("processing_status", status)]
        )

    # Entities -------------------------------------------------------
    def insert_entity(self, entity: Entity) -> str:
        self._insert("entities", entity)
        return entity.id

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._get("entities", entity_id)  # type: ignore[return-value]

    def update_entity(self, entity_id: str, **fields: Any) -> Optional[Entity]:
        return self._update("entities", entity_id, fields)  # type: ignore[return-value]

    def delete_entity(self, entity_id: str) -> bool:
        return self._delete("entities", entity_id)

    def list_entities(
        self,
        project_id: str,
        *,
        status: EntityStatus | None = None,
        entity_type: EntityType | None = None,
    ) -> List[Entity]:
        return self._select(  # type: ignore[return-value]
            "entities",
            [("project_id", project_id), ("status", status), ("type", entity_type)],
        )

    # Facts ----------------------------------------------------------
    def insert_fact(self, fact: Fact) -> str:
        self._insert("facts", fact)
        return fact.id

    def get_fact(self, fact_id: str) -> Optional[Fact]:
        return self._get("facts", fact_id)  # type: ignore[return-value]

    def update_fact(self, fact_id: str, **fields: Any) -> Optional[Fact]:
        return self._update("facts", fact_id, fields)  # type: ignore[return-value]

    def delete_fact(self, fact_id: str) -> bool:
        return self._delete("facts", fact_id)

    def list_facts(
        self,
        *,
        project_id: str | None = None,
        entity_id: str | None = None,
        document_id: str | None = None,
        status: FactStatus | None = None,
    ) -> List[Fact]:
        if project_id is None and entity_id is None and document_id is None:
            raise ValueError("list_facts requires project_id, entity_id or document_id")
        return self._select(  # type: ignore[return-value]
            "facts",
            [
                ("project_id", project_id),
                ("entity_id", entity_id),
                ("document_id", document_id),
                ("status", status),
            ],
        )

    # LLM cache ------------------------------------------------------
    def insert_cache_entry(self, entry: LLMCacheEntry) -> int:
        cursor = self._conn.execute(
            "INSERT INTO llm_cache (input_hash, prompt_version, model_id, response, "
            "created_at, expires_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                entry.input_hash,
                entry.prompt_version,
                entry.model_id,
                entry.response,
                entry.created_at,
                entry.expires_at,
            ),
        )
        return int(cursor.lastrowid)

    def find_cache_entries(self, input_hash: str, prompt_version: str) -> List[LLMCacheEntry]:
        rows = self._conn.execute(
            "SELECT id, input_hash, prompt_version, model_id, response, created_at, expires_at "
            "FROM llm_cache WHERE input_hash = ? AND prompt_version = ? ORDER BY id",
            (input_hash, prompt_version),
        ).fetchall()
        return [LLMCacheEntry(**dict(row)) for row in rows]

    def delete_cache_entries(self, prompt_version: str, input_hash: str | None = None) -> int:
        if input_hash is None:
            cursor = self._conn.execute(
                "DELETE FROM llm_cache WHERE prompt_version = ?", (prompt_version,)
            )
        else:
            cursor = self._conn.execute(
                "DELETE FROM llm_cache WHERE input_hash = ? AND prompt_version = ?",
                (input_hash, prompt_version),
            )
        return cursor.rowcount

    def delete_expired_cache_entries(self, now_ms: int) -> int:
        cursor = self._conn.execute("DELETE FROM llm_cache WHERE expires_at < ?", (now_ms,))
        return cursor.rowcount

    def count_cache_entries(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM llm_cache").fetchone()[0])


class CanonStore:
    """SQLite-backed store with serializable, all-or-nothing transactions.

    Example:
        >>> store = CanonStore(path=":memory:")
        >>> store.connect()
        >>> with store.transaction() as txn:
        ...     txn.insert_project(Project(user_id="u1", name="Westeros"))
    """

    def __init__(self, config: StorageConfig | None = None, *, path: str | Path | None = None):
        self.config = config or StorageConfig()
        self.path = str(path if path is not None else self.config.database_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._active: StoreTransaction | None = None

    def connect(self) -> "CanonStore":
        """Open the database and make sure the schema exists."""
        if self._conn is not None:
            return self
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        logger.info(f"Opened canon store at {self.path}")
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Closed canon store")

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Run a block atomically.

        Nested calls join the outer transaction, so a service method that opens a
        transaction can be composed inside another one.

        Raises:
            RuntimeError: If the store is not connected
        """
        if self._conn is None:
            raise RuntimeError("Store not connected. Call connect() first.")

        with self._lock:
            if self._active is not None:
                yield self._active
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._active = StoreTransaction(self._conn)
            try:
                yield self._active
            except BaseException:
                self._conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._active = None

    def __enter__(self) -> "CanonStore":
        return self.connect()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
