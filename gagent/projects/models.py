"""Project (task context) models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class GameKind(str, Enum):
    QUIZ = "quiz"
    MATCHING = "matching"
    SORTING = "sorting"
    DRAG_DROP = "drag_drop"
    MEMORY = "memory"
    PUZZLE = "puzzle"
    SIMULATION = "simulation"
    ROLE_PLAY = "role_play"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    ERROR = "error"


# Fields callers may change through ProjectStore.update
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "game_kind",
    "status",
    "current_stage",
    "progress_percent",
    "tags",
})


@dataclass
class Project:
    """A game request the agent works on. Its id is the task id."""

    name: str
    description: str = ""
    game_kind: GameKind | None = None
    owner_id: str = "default"
    status: ProjectStatus = ProjectStatus.PLANNING
    current_stage: str = "requirement_analysis"
    progress_percent: int = 0
    tags: list[str] = field(default_factory=list)
    version: int = 1
    id: str = field(default_factory=lambda: f"proj-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "game_kind": self.game_kind.value if self.game_kind else None,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "current_stage": self.current_stage,
            "progress_percent": self.progress_percent,
            "tags": self.tags,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            game_kind=GameKind(data["game_kind"]) if data.get("game_kind") else None,
            owner_id=data.get("owner_id") or "default",
            status=ProjectStatus(data.get("status", "planning")),
            current_stage=data.get("current_stage") or "requirement_analysis",
            progress_percent=data.get("progress_percent", 0),
            tags=list(data.get("tags") or []),
            version=data.get("version", 1),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.utcnow(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else datetime.utcnow(),
        )
