"""Execution stage: runs a work plan step by step.

Steps are dispatched on ``WorkPlanStep.type``. File steps go through the
ArtifactStore, types with a registered handler call that handler, and all
other types are simulated with a short randomized delay. The first failing
step aborts the plan.
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Awaitable, Callable

from gagent.agent.models import ActionType, Artifact, ArtifactKind
from gagent.agent.schema import StepStatus, TaskType, WorkPlan, WorkPlanStep
from gagent.errors import AgentError, ArtifactNotFoundError, PlanStepFailedError
from gagent.events.bus import EventBus, EventKind
from gagent.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

StepHandler = Callable[[WorkPlanStep], Awaitable[None]]
StepCallback = Callable[[WorkPlan, WorkPlanStep], Awaitable[None]]

# Step types reported under the testing stage
TESTING_TASK_TYPES = frozenset({TaskType.RUN_TESTS, TaskType.DEBUG_CODE, TaskType.REVIEW_CODE})


def stage_for(step: WorkPlanStep) -> str:
    return "testing" if step.type in TESTING_TASK_TYPES else "coding"


class ExecutionStage:
    """Executes work plans for a single task."""

    def __init__(
        self,
        task_id: str,
        store: ArtifactStore,
        bus: EventBus,
        handlers: dict[TaskType, StepHandler] | None = None,
        delay_min: float = 0.5,
        delay_max: float = 1.5,
        progress_range: tuple[int, int] = (0, 100),
    ):
        self.task_id = task_id
        self.store = store
        self.bus = bus
        self.handlers: dict[TaskType, StepHandler] = dict(handlers or {})
        self.delay_min = delay_min
        self.delay_max = delay_max
        self.progress_range = progress_range
        # Known artifacts by store path, so updates keep a stable id
        self.artifacts: dict[str, Artifact] = {}

    def register_handler(self, task_type: TaskType, handler: StepHandler) -> None:
        self.handlers[task_type] = handler

    def scoped(self, path: str) -> str:
        """Store path for a task-relative path."""
        return f"{self.task_id}/{path.lstrip('/')}"

    # =========================================================================
    # Plan execution
    # =========================================================================

    async def execute_work_plan(
        self,
        plan: WorkPlan,
        should_continue: Callable[[], bool] | None = None,
        on_step: StepCallback | None = None,
    ) -> bool:
        """Run the plan from ``plan.current_step_index``.

        Returns True when every step completed. Returns False when a step
        failed (that step is marked failed, later steps stay pending) or
        when ``should_continue`` answered False.
        """
        live = should_continue or (lambda: True)
        self._action(
            ActionType.BUILD,
            f"Starting execution of work plan: {plan.overall_goal}",
            details={"plan_id": plan.id, "from_step": plan.current_step_index},
        )

        for index in range(plan.current_step_index, len(plan.steps)):
            step = plan.steps[index]
            if step.status == StepStatus.COMPLETED:
                continue
            if step.status == StepStatus.FAILED:
                # Failed while nobody was listening (e.g. during a pause); the plan stays failed
                logger.info(f"Task {self.task_id}: plan {plan.id} already failed at step {index}")
                return False
            if not live():
                logger.info(f"Task {self.task_id}: plan {plan.id} interrupted before step {index}")
                return False

            plan.advance_to(index)
            step.transition(StepStatus.IN_PROGRESS)
            self._progress(plan, step)
            self._action(
                ActionType.ANALYZE,
                f"Executing step: {step.description}",
                details={"step_id": step.id, "type": step.type.value},
            )
            if on_step:
                await on_step(plan, step)

            try:
                await self.execute_step(step)
            except Exception as e:
                message = e.message if isinstance(e, AgentError) else str(e) or type(e).__name__
                step.error = message
                step.transition(StepStatus.FAILED)
                logger.warning(f"Task {self.task_id}: step {step.id} ({step.type.value}) failed: {message}")
                if not live():
                    return False
                self._progress(plan, step)
                self._action(
                    ActionType.AGENT_RESPONSE,
                    f"Failed step: {step.description}. Error: {message}",
                    details={"step_id": step.id, "status": "failed", "error": message},
                )
                if on_step:
                    await on_step(plan, step)
                return False

            step.transition(StepStatus.COMPLETED)
            if not live():
                return False
            self._progress(plan, step)
            self._action(
                ActionType.AGENT_RESPONSE,
                f"Completed step: {step.description}",
                details={"step_id": step.id, "status": "completed"},
            )
            if on_step:
                await on_step(plan, step)

        self._action(
            ActionType.BUILD,
            f"Work plan execution finished: {plan.overall_goal}",
            details={"plan_id": plan.id, "status": "completed"},
        )
        return True

    async def execute_step(self, step: WorkPlanStep) -> None:
        """Perform one step's effect."""
        if step.type == TaskType.CREATE_FILE:
            path = step.related_artifacts[0] if step.related_artifacts else f"notes/{step.id}.md"
            content = step.content if step.content is not None else (
                f"# {step.description}\n\nCreated at {datetime.utcnow().isoformat()}\n"
            )
            await self.create_file(path, content, ArtifactKind.from_path(path))
        elif step.type == TaskType.MODIFY_FILE:
            path = self._require_target(step)
            if step.content is not None:
                content = step.content
            else:
                current = await self.store.read(self.scoped(path)) if await self.store.exists(self.scoped(path)) else ""
                content = f"{current.rstrip()}\n\n- {step.description} ({datetime.utcnow().isoformat()})\n"
            await self.modify_file(path, content)
        elif step.type == TaskType.DELETE_FILE:
            await self.delete_file(self._require_target(step))
        elif step.type in self.handlers:
            await self.handlers[step.type](step)
        else:
            await asyncio.sleep(random.uniform(self.delay_min, self.delay_max))

    def _require_target(self, step: WorkPlanStep) -> str:
        if not step.related_artifacts:
            raise PlanStepFailedError(step.id, f"Step '{step.description}' has no target artifact")
        return step.related_artifacts[0]

    # =========================================================================
    # Artifact operations
    # =========================================================================

    async def create_file(self, path: str, content: str, kind: ArtifactKind = ArtifactKind.DOCUMENT) -> Artifact:
        """Create or overwrite a task artifact."""
        store_path = self.scoped(path)
        self._action(ActionType.CREATE_FILE, f"Creating file: {path}", target=path, details={"path": path})
        try:
            await self.store.write(store_path, content)
        except Exception as e:
            self._action(
                ActionType.CREATE_FILE,
                f"Failed to create file: {path}. Error: {e}",
                target=path,
                details={"path": path, "error": str(e)},
            )
            raise

        artifact = Artifact(
            task_id=self.task_id,
            name=path.rsplit("/", 1)[-1],
            path=store_path,
            kind=kind,
            content=content,
        )
        self.artifacts[store_path] = artifact
        self.bus.publish(self.task_id, EventKind.ARTIFACT_CREATED, artifact=artifact.to_dict())
        return artifact

    async def modify_file(self, path: str, content: str) -> Artifact:
        """Replace the content of an existing artifact; raises ArtifactNotFoundError."""
        store_path = self.scoped(path)
        self._action(ActionType.MODIFY_FILE, f"Modifying file: {path}", target=path, details={"path": path})
        try:
            if not await self.store.exists(store_path):
                raise ArtifactNotFoundError(path)
            await self.store.write(store_path, content)
        except Exception as e:
            self._action(
                ActionType.MODIFY_FILE,
                f"Failed to modify file: {path}. Error: {e}",
                target=path,
                details={"path": path, "error": str(e)},
            )
            raise

        artifact = self.artifacts.get(store_path)
        if artifact is None:
            artifact = Artifact(
                task_id=self.task_id,
                name=path.rsplit("/", 1)[-1],
                path=store_path,
                kind=ArtifactKind.from_path(path),
            )
            self.artifacts[store_path] = artifact
        artifact.content = content
        artifact.updated_at = datetime.utcnow()
        self.bus.publish(
            self.task_id,
            EventKind.ARTIFACT_UPDATED,
            artifact_id=artifact.id,
            changes={"path": store_path, "content_length": len(content)},
        )
        return artifact

    async def delete_file(self, path: str) -> bool:
        """Delete an existing artifact; raises ArtifactNotFoundError."""
        store_path = self.scoped(path)
        self._action(ActionType.DELETE_FILE, f"Deleting file: {path}", target=path, details={"path": path})
        try:
            if not await self.store.exists(store_path):
                raise ArtifactNotFoundError(path)
            await self.store.delete(store_path)
        except Exception as e:
            self._action(
                ActionType.DELETE_FILE,
                f"Failed to delete file: {path}. Error: {e}",
                target=path,
                details={"path": path, "error": str(e)},
            )
            raise

        artifact = self.artifacts.pop(store_path, None)
        artifact_id = artifact.id if artifact else f"file-{store_path}"
        self.bus.publish(self.task_id, EventKind.ARTIFACT_DELETED, artifact_id=artifact_id)
        return True

    # =========================================================================
    # Events
    # =========================================================================

    def plan_percent(self, plan: WorkPlan) -> int:
        low, high = self.progress_range
        done = sum(1 for s in plan.steps if s.status == StepStatus.COMPLETED)
        return low + (high - low) * done // len(plan.steps)

    def _progress(self, plan: WorkPlan, step: WorkPlanStep) -> None:
        self.bus.publish(
            self.task_id,
            EventKind.PROGRESS,
            stage=stage_for(step),
            percent=self.plan_percent(plan),
            eta_seconds=plan.remaining_seconds,
            step_id=step.id,
            step_status=step.status.value,
        )

    def _action(
        self,
        kind: ActionType,
        description: str,
        target: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.bus.publish(
            self.task_id,
            EventKind.ACTION,
            kind=kind.value,
            description=description,
            target=target,
            details=details,
        )
