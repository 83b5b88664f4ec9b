"""Project CRUD scoped to the calling user."""

from __future__ import annotations

from typing import Dict, List, Optional

from loguru import logger

from src.curation.access import Caller, require_auth, require_project_owner
from src.storage.canon_store import CanonStore
from src.storage.schemas import Project, ProjectStats, ProjectType, utcnow
from src.storage.stats import reconcile_stats
from src.utils.errors import ValidationError


class ProjectService:
    def __init__(self, store: CanonStore) -> None:
        self.store = store

    def create(
        self,
        caller: Caller | None,
        name: str,
        description: str | None = None,
        project_type: ProjectType = ProjectType.GENERAL,
    ) -> str:
        """Create a project owned by the caller, with zeroed stats."""
        user_id = require_auth(caller)
        if not name or not name.strip():
            raise ValidationError("name", "Project name cannot be empty")

        project = Project(
            user_id=user_id,
            name=name.strip(),
            description=description,
            project_type=project_type,
            stats=ProjectStats(),
        )
        with self.store.transaction() as txn:
            txn.insert_project(project)

        logger.info(f"Created project '{project.name}' ({project.id})")
        return project.id

    def get(self, caller: Caller | None, project_id: str) -> Optional[Project]:
        if caller is None or not caller.user_id:
            return None
        with self.store.transaction() as txn:
            project = txn.get_project(project_id)
        if project is None or project.user_id != caller.user_id:
            return None
        return project

    def list(self, caller: Caller | None) -> List[Project]:
        """Caller's projects, newest first."""
        if caller is None or not caller.user_id:
            return []
        with self.store.transaction() as txn:
            projects = txn.list_projects(caller.user_id)
        return list(reversed(projects))

    def update(
        self,
        caller: Caller | None,
        project_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        reveal_to_players: bool | None = None,
    ) -> str:
        if name is not None and not name.strip():
            raise ValidationError("name", "Project name cannot be empty")

        changes = {
            key: value
            for key, value in (
                ("name", name.strip() if name else None),
                ("description", description),
                ("reveal_to_players", reveal_to_players),
            )
            if value is not None
        }
        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            txn.update_project(project_id, **changes, updated_at=utcnow())
        return project_id

    def remove(self, caller: Caller | None, project_id: str) -> str:
        """Delete the project with all of its documents, entities and facts."""
        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            facts = txn.list_facts(project_id=project_id)
            entities = txn.list_entities(project_id)
            documents = txn.list_documents(project_id)
            for fact in facts:
                txn.delete_fact(fact.id)
            for entity in entities:
                txn.delete_entity(entity.id)
            for document in documents:
                txn.delete_document(document.id)
            txn.delete_project(project_id)

        logger.info(
            f"Removed project {project_id}: {len(documents)} documents, "
            f"{len(entities)} entities, {len(facts)} facts"
        )
        return project_id

    def reconcile_stats(self, caller: Caller | None, project_id: str) -> Dict[str, int]:
        """Recount the project's rows and fix any counter drift."""
        with self.store.transaction() as txn:
            require_project_owner(txn, caller, project_id)
            return reconcile_stats(txn, project_id)
