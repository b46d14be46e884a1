"""Project persistence.

``ProjectStore`` is the interface the controller and HTTP layer use. The
in-memory store serves tests and single-process runs; the SQL store keeps
projects across restarts.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete as sql_delete
from sqlalchemy import select

import gagent.database as db_module
from gagent.database import ProjectRecord
from gagent.projects.models import UPDATABLE_FIELDS, GameKind, Project, ProjectStatus

logger = logging.getLogger(__name__)


def get_session():
    """Get the current session factory (supports test patching)."""
    return db_module.async_session_factory


def _normalize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    normalized = dict(changes)
    if normalized.get("status") is not None:
        normalized["status"] = ProjectStatus(normalized["status"])
    if normalized.get("game_kind") is not None:
        normalized["game_kind"] = GameKind(normalized["game_kind"])
    if normalized.get("progress_percent") is not None:
        normalized["progress_percent"] = max(0, min(100, int(normalized["progress_percent"])))
    if "current_stage" in normalized and hasattr(normalized["current_stage"], "value"):
        normalized["current_stage"] = normalized["current_stage"].value
    return normalized


class ProjectStore:
    """Interface for project persistence."""

    async def get(self, project_id: str) -> Project | None:
        raise NotImplementedError

    async def put(self, project: Project) -> Project:
        """Insert or replace a project."""
        raise NotImplementedError

    async def update(self, project_id: str, **changes: Any) -> Project | None:
        """Apply field changes; returns None when the project does not exist."""
        raise NotImplementedError

    async def delete(self, project_id: str) -> bool:
        raise NotImplementedError

    async def list(self, owner_id: str | None = None) -> list[Project]:
        raise NotImplementedError


class InMemoryProjectStore(ProjectStore):
    """Dict-backed store. Returns copies so callers cannot mutate stored state."""

    def __init__(self):
        self._projects: dict[str, dict[str, Any]] = {}

    async def get(self, project_id: str) -> Project | None:
        data = self._projects.get(project_id)
        return Project.from_dict(data) if data else None

    async def put(self, project: Project) -> Project:
        self._projects[project.id] = project.to_dict()
        return Project.from_dict(self._projects[project.id])

    async def update(self, project_id: str, **changes: Any) -> Project | None:
        project = await self.get(project_id)
        if project is None:
            return None
        for name, value in _normalize_changes(changes).items():
            setattr(project, name, value)
        project.updated_at = datetime.utcnow()
        return await self.put(project)

    async def delete(self, project_id: str) -> bool:
        return self._projects.pop(project_id, None) is not None

    async def list(self, owner_id: str | None = None) -> list[Project]:
        projects = [Project.from_dict(d) for d in self._projects.values()]
        if owner_id is not None:
            projects = [p for p in projects if p.owner_id == owner_id]
        return sorted(projects, key=lambda p: p.created_at)


def _to_project(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        description=record.description or "",
        game_kind=GameKind(record.game_kind) if record.game_kind else None,
        owner_id=record.owner_id,
        status=ProjectStatus(record.status),
        current_stage=record.current_stage,
        progress_percent=record.progress_percent,
        tags=list(record.tags or []),
        version=record.version,
        created_at=record.created_at or datetime.utcnow(),
        updated_at=record.updated_at or datetime.utcnow(),
    )


def _apply(record: ProjectRecord, project: Project) -> None:
    record.name = project.name
    record.description = project.description
    record.game_kind = project.game_kind.value if project.game_kind else None
    record.owner_id = project.owner_id
    record.status = project.status.value
    record.current_stage = project.current_stage
    record.progress_percent = project.progress_percent
    record.tags = list(project.tags)
    record.version = project.version
    record.updated_at = project.updated_at


class SqlProjectStore(ProjectStore):
    """SQLAlchemy-backed store."""

    async def get(self, project_id: str) -> Project | None:
        async with get_session()() as db:
            record = await db.get(ProjectRecord, project_id)
            return _to_project(record) if record else None

    async def put(self, project: Project) -> Project:
        async with get_session()() as db:
            record = await db.get(ProjectRecord, project.id)
            if record is None:
                record = ProjectRecord(id=project.id, created_at=project.created_at)
                db.add(record)
            _apply(record, project)
            await db.commit()
            await db.refresh(record)
            return _to_project(record)

    async def update(self, project_id: str, **changes: Any) -> Project | None:
        normalized = _normalize_changes(changes)
        async with get_session()() as db:
            record = await db.get(ProjectRecord, project_id)
            if record is None:
                return None
            project = _to_project(record)
            for name, value in normalized.items():
                setattr(project, name, value)
            project.updated_at = datetime.utcnow()
            _apply(record, project)
            await db.commit()
            await db.refresh(record)
            return _to_project(record)

    async def delete(self, project_id: str) -> bool:
        async with get_session()() as db:
            result = await db.execute(sql_delete(ProjectRecord).where(ProjectRecord.id == project_id))
            await db.commit()
            return result.rowcount > 0

    async def list(self, owner_id: str | None = None) -> list[Project]:
        async with get_session()() as db:
            query = select(ProjectRecord).order_by(ProjectRecord.created_at)
            if owner_id is not None:
                query = query.where(ProjectRecord.owner_id == owner_id)
            result = await db.execute(query)
            return [_to_project(r) for r in result.scalars().all()]


def create_project_store(kind: str) -> ProjectStore:
    if kind == "sql":
        return SqlProjectStore()
    return InMemoryProjectStore()
