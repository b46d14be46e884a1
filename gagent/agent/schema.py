"""Pydantic models for requirement analysis and work plans.

These are the structured artifacts the planning stage produces, either from
a model's JSON reply or from the deterministic heuristics.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskType(str, Enum):
    """Kind of work a plan step performs. Sole dispatch key for execution."""
    CREATE_FILE = "create_file"
    MODIFY_FILE = "modify_file"
    DELETE_FILE = "delete_file"
    GENERATE_GAME_CODE = "generate_game_code"
    CUSTOMIZE_GAME_ASSETS = "customize_game_assets"
    RUN_TESTS = "run_tests"
    DEBUG_CODE = "debug_code"
    REVIEW_CODE = "review_code"
    OTHER = "other"


# Step types that imply code or asset generation
GENERATION_TASK_TYPES = frozenset({TaskType.GENERATE_GAME_CODE, TaskType.CUSTOMIZE_GAME_ASSETS})


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


_STEP_ORDER = {
    StepStatus.PENDING: 0,
    StepStatus.IN_PROGRESS: 1,
    StepStatus.COMPLETED: 2,
    StepStatus.FAILED: 2,
}


class RequirementAnalysis(BaseModel):
    """Structured reading of a natural-language instruction."""

    model_config = ConfigDict(frozen=True)

    original_instruction: str
    parsed_requirements: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    goals: tuple[str, ...] = ()
    clarifications_needed: tuple[str, ...] = ()
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("parsed_requirements", "constraints", "goals", "clarifications_needed", mode="before")
    @classmethod
    def coerce_str_list(cls, v: Any) -> Any:
        """Accept a single string or null where a list is expected."""
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,) if v.strip() else ()
        return v

    @property
    def needs_clarification(self) -> bool:
        return len(self.clarifications_needed) > 0


class WorkPlanStep(BaseModel):
    """A single typed step of a work plan."""

    id: str
    description: str
    type: TaskType = TaskType.OTHER
    status: StepStatus = StepStatus.PENDING
    estimated_seconds: int | None = Field(default=None, ge=0)
    related_artifacts: list[str] = Field(default_factory=list)
    content: str | None = Field(default=None, description="Content for file steps")
    error: str | None = None

    def transition(self, status: StepStatus) -> None:
        """Move to ``status``; backward transitions raise ValueError."""
        if status == self.status:
            return
        if _STEP_ORDER[status] <= _STEP_ORDER[self.status]:
            raise ValueError(f"Step {self.id} cannot move from {self.status.value} to {status.value}")
        self.status = status


class WorkPlan(BaseModel):
    """Ordered steps for one run."""

    id: str = Field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:8]}")
    task_id: str
    overall_goal: str
    steps: list[WorkPlanStep] = Field(..., min_length=1)
    current_step_index: int = Field(default=0, ge=0)

    @field_validator("steps")
    @classmethod
    def validate_unique_step_ids(cls, v: list[WorkPlanStep]) -> list[WorkPlanStep]:
        ids = [s.id for s in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Step ids must be unique")
        return v

    def has_generation_steps(self) -> bool:
        return any(step.type in GENERATION_TASK_TYPES for step in self.steps)

    def advance_to(self, index: int) -> None:
        """Move the cursor forward; never backward."""
        self.current_step_index = max(self.current_step_index, index)

    @property
    def remaining_seconds(self) -> int:
        return sum(
            s.estimated_seconds or 0
            for s in self.steps
            if s.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS)
        )

    @property
    def is_finished(self) -> bool:
        return all(s.status == StepStatus.COMPLETED for s in self.steps)


class ProblemDetails(BaseModel):
    """A problem the agent should propose a remediation for."""

    id: str = Field(default_factory=lambda: f"problem-{uuid.uuid4().hex[:8]}")
    description: str
    context: dict[str, Any] = Field(default_factory=dict)


class SolutionProposal(BaseModel):
    problem_id: str
    proposed_solution: str
    reasoning: str
    estimated_effort: str = "medium"
    confidence_score: float = 0.5

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Clamp to [0, 1]; unparseable values become 0.5."""
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.5
        return min(1.0, max(0.0, value))
