"""Request and response models for the HTTP API."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gagent.projects.models import GameKind, Project, ProjectStatus


class ControlAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class ControlRequest(BaseModel):
    """Run control request for one task."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId", min_length=1, max_length=64, description="Task to control")
    action: ControlAction = Field(description="start, pause, resume or stop")
    instruction: str | None = Field(default=None, max_length=4000, description="Required for start")

    @model_validator(mode="after")
    def require_instruction_for_start(self) -> "ControlRequest":
        if self.action == ControlAction.START and not (self.instruction and self.instruction.strip()):
            raise ValueError("instruction is required when action is 'start'")
        return self


class ControlResponse(BaseModel):
    """Task state right after a control call was applied."""

    task_id: str
    action: ControlAction
    state: dict[str, Any] = Field(description="TaskState snapshot")


class StatusResponse(BaseModel):
    """Generic status response."""

    status: str = Field(description="Operation status (ok, deleted, etc.)")


class ErrorDetail(BaseModel):
    """Error detail for API responses."""

    error: str = Field(description="Error message")
    code: str | None = Field(default=None, description="Error code for programmatic handling")
    details: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")
    version: str = Field(description="Application version")
    generator: str = Field(description="Text generator backend")
    generator_available: bool
    templates: int = Field(description="Number of loaded templates")
    controllers: int = Field(description="Number of task controllers")
    running_tasks: int = Field(description="Number of background runs")


# =============================================================================
# Projects
# =============================================================================

class ProjectCreate(BaseModel):
    """Request body for creating a project."""

    id: str | None = Field(default=None, max_length=64, description="Task id; generated when omitted")
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    game_kind: GameKind | None = None
    owner_id: str = "default"
    tags: list[str] = []


class ProjectUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    game_kind: GameKind | None = None
    status: ProjectStatus | None = None
    tags: list[str] | None = None


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str
    game_kind: GameKind | None
    owner_id: str
    status: ProjectStatus
    current_stage: str
    progress_percent: int
    tags: list[str]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            game_kind=project.game_kind,
            owner_id=project.owner_id,
            status=project.status,
            current_stage=project.current_stage,
            progress_percent=project.progress_percent,
            tags=project.tags,
            version=project.version,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


# =============================================================================
# Text generation
# =============================================================================

class GenerateRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=20000)


class GenerateResponse(BaseModel):
    text: str
    generator: str


class GeneratorStatusResponse(BaseModel):
    generator: str
    available: bool


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str
    version: str
    entry_point: str
    game_kind: str | None = None
    preview_image: str | None = None
    tags: list[str] = []
    author: str | None = None
