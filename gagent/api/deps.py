"""FastAPI dependencies resolving the collaborators stored on ``app.state``."""

from fastapi import HTTPException, Request

from gagent.agent.registry import ControllerRegistry, validate_task_id
from gagent.events.bus import EventBus
from gagent.game.templates import TemplateCatalog
from gagent.llm.text_generator import TextGenerator
from gagent.projects.store import ProjectStore


def get_registry(request: Request) -> ControllerRegistry:
    return request.app.state.registry


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_projects(request: Request) -> ProjectStore:
    return request.app.state.projects


def get_generator(request: Request) -> TextGenerator:
    return request.app.state.generator


def get_catalog(request: Request) -> TemplateCatalog:
    return request.app.state.catalog


def checked_task_id(task_id: str) -> str:
    """Validate a task id taken from the path or query, as a 400."""
    try:
        return validate_task_id(task_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
