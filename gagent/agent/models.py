"""Run-state data models for the task controller."""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    """Run-control state of a task."""
    IDLE = "idle"
    THINKING = "thinking"
    CODING = "coding"
    TESTING = "testing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


# Statuses in which a run is actively executing
ACTIVE_STATUSES = frozenset({AgentStatus.THINKING, AgentStatus.CODING, AgentStatus.TESTING})

# Statuses from which start() is accepted
STARTABLE_STATUSES = frozenset({AgentStatus.IDLE, AgentStatus.PAUSED, AgentStatus.COMPLETED})


class DevelopmentStage(str, Enum):
    """Pipeline position of a task."""
    REQUIREMENT_ANALYSIS = "requirement_analysis"
    DESIGN = "design"
    CODING = "coding"
    TESTING = "testing"
    OPTIMIZATION = "optimization"
    COMPLETED = "completed"


class ActionType(str, Enum):
    IDLE = "idle"
    INITIALIZE = "initialize"
    CREATE_FILE = "create_file"
    MODIFY_FILE = "modify_file"
    DELETE_FILE = "delete_file"
    RUN_TEST = "run_test"
    BUILD = "build"
    ANALYZE = "analyze"
    USER_INPUT = "user_input"
    AGENT_RESPONSE = "agent_response"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"
    DEBUG = "debug"


class ThoughtStage(str, Enum):
    """Reasoning phase a thought step belongs to."""
    PROBLEM_DEFINITION = "Problem Definition"
    INFORMATION_GATHERING = "Information Gathering"
    SOLUTION_DESIGN = "Solution Design"
    PLANNING = "Planning"
    EXECUTION_STEP = "Execution Step"
    EVALUATION = "Evaluation"
    REFINEMENT = "Refinement"
    GAME_GENERATION = "Game Generation"
    INTERNAL_STATE_UPDATE = "Internal State Update"


class ThoughtStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    INFO = "info"


class ArtifactKind(str, Enum):
    """Kind of a generated file."""
    DOCUMENT = "document"
    SOURCE = "source"
    STYLE = "style"
    ASSET = "asset"
    CONFIG = "config"
    TEST = "test"
    OTHER = "other"

    @classmethod
    def from_path(cls, path: str) -> "ArtifactKind":
        """Guess the kind from a file extension."""
        suffix = path.rsplit(".", 1)[-1].lower() if "." in path else ""
        return _KIND_BY_SUFFIX.get(suffix, cls.OTHER)


_KIND_BY_SUFFIX = {
    "md": ArtifactKind.DOCUMENT,
    "txt": ArtifactKind.DOCUMENT,
    "html": ArtifactKind.SOURCE,
    "js": ArtifactKind.SOURCE,
    "ts": ArtifactKind.SOURCE,
    "py": ArtifactKind.SOURCE,
    "css": ArtifactKind.STYLE,
    "json": ArtifactKind.CONFIG,
    "yaml": ArtifactKind.CONFIG,
    "yml": ArtifactKind.CONFIG,
    "png": ArtifactKind.ASSET,
    "jpg": ArtifactKind.ASSET,
    "svg": ArtifactKind.ASSET,
}


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass
class AgentAction:
    """The last action the agent performed."""

    kind: ActionType | str
    description: str
    target: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value if isinstance(self.kind, ActionType) else self.kind,
            "description": self.description,
            "target": self.target,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class LogEntry:
    """A user-facing log line kept in TaskState."""

    message: str
    level: LogLevel = LogLevel.INFO
    context: Any = None
    id: str = field(default_factory=lambda: new_id("log"))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }


@dataclass
class ThoughtStep:
    """One unit of recorded reasoning."""

    stage: ThoughtStage | DevelopmentStage | str
    description: str
    status: ThoughtStatus = ThoughtStatus.INFO
    details: Any = None
    decision: str | None = None
    alternatives: list[str] | None = None
    id: str = field(default_factory=lambda: new_id("thought"))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage.value if isinstance(self.stage, Enum) else self.stage,
            "description": self.description,
            "status": self.status.value,
            "details": self.details,
            "decision": self.decision,
            "alternatives": self.alternatives,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class TaskError:
    message: str
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "details": self.details}


@dataclass
class TaskState:
    """Run state of one task, owned by its TaskController."""

    task_id: str
    current_task_summary: str = ""
    thinking: str = ""
    status: AgentStatus = AgentStatus.IDLE
    current_stage: DevelopmentStage = DevelopmentStage.REQUIREMENT_ANALYSIS
    progress_percent: int = 0
    last_action: AgentAction = field(
        default_factory=lambda: AgentAction(kind=ActionType.IDLE, description="Agent is idle.")
    )
    log_entries: list[LogEntry] = field(default_factory=list)
    thought_steps: list[ThoughtStep] = field(default_factory=list)
    estimated_seconds_remaining: int = 0
    error: TaskError | None = None

    def snapshot(self) -> "TaskState":
        """Deep copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "current_task_summary": self.current_task_summary,
            "thinking": self.thinking,
            "status": self.status.value,
            "current_stage": self.current_stage.value,
            "progress_percent": self.progress_percent,
            "last_action": self.last_action.to_dict(),
            "log_entries": [e.to_dict() for e in self.log_entries],
            "thought_steps": [t.to_dict() for t in self.thought_steps],
            "estimated_seconds_remaining": self.estimated_seconds_remaining,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class Artifact:
    """A file produced for a task."""

    task_id: str
    name: str
    path: str
    kind: ArtifactKind = ArtifactKind.OTHER
    content: str | None = None
    id: str = field(default_factory=lambda: new_id("artifact"))
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self, include_content: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "task_id": self.task_id,
            "name": self.name,
            "path": self.path,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_content:
            data["content"] = self.content
        return data
