"""Projects API: the task context a run reads its game kind from."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from gagent.agent.registry import validate_task_id
from gagent.api.deps import get_projects
from gagent.api.models import ProjectCreate, ProjectResponse, ProjectUpdate, StatusResponse
from gagent.projects.models import Project
from gagent.projects.store import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects")


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    owner_id: str | None = Query(default=None),
    store: ProjectStore = Depends(get_projects),
) -> list[ProjectResponse]:
    """List projects, optionally for one owner."""
    return [ProjectResponse.from_project(p) for p in await store.list(owner_id)]


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    store: ProjectStore = Depends(get_projects),
) -> ProjectResponse:
    """Create a project. Its id is the task id used for agent control."""
    project = Project(
        name=body.name,
        description=body.description,
        game_kind=body.game_kind,
        owner_id=body.owner_id,
        tags=body.tags,
    )
    if body.id:
        try:
            project.id = validate_task_id(body.id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if await store.get(project.id) is not None:
            raise HTTPException(status_code=409, detail=f"Project already exists: {project.id}")

    saved = await store.put(project)
    logger.info(f"Created project {saved.id}: {saved.name}")
    return ProjectResponse.from_project(saved)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, store: ProjectStore = Depends(get_projects)) -> ProjectResponse:
    project = await store.get(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return ProjectResponse.from_project(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    store: ProjectStore = Depends(get_projects),
) -> ProjectResponse:
    changes = body.model_dump(exclude_unset=True)
    project = await store.update(project_id, **changes)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return ProjectResponse.from_project(project)


@router.delete("/{project_id}", response_model=StatusResponse)
async def delete_project(project_id: str, store: ProjectStore = Depends(get_projects)) -> StatusResponse:
    if not await store.delete(project_id):
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    logger.info(f"Deleted project {project_id}")
    return StatusResponse(status="deleted")
