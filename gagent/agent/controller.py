"""Task controller: the per-task orchestration state machine.

A run moves through requirement analysis, planning, deliverable generation
and plan execution. Every transition mutates ``TaskState`` and then
publishes one ``state`` snapshot on the event bus.

Run control:
- ``start`` is accepted from idle, paused or completed; otherwise it only
  logs a warning. The status flips to thinking before the first await.
- ``pause`` is cooperative: the in-flight step finishes, later steps wait.
- ``resume`` continues the interrupted run at its first unfinished phase.
  Completed plan steps are never re-run.
- ``stop`` resets to idle immediately; in-flight work is discarded.

Each accepted start/resume and every stop bumps a run counter. Work that
resumes after an await checks the counter (and that the task is still
active) before touching state, so results from a superseded run are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from gagent.agent.execution import ExecutionStage, stage_for
from gagent.agent.models import (
    ACTIVE_STATUSES,
    STARTABLE_STATUSES,
    ActionType,
    AgentAction,
    AgentStatus,
    DevelopmentStage,
    LogEntry,
    LogLevel,
    TaskError,
    TaskState,
    ThoughtStage,
    ThoughtStatus,
    ThoughtStep,
)
from gagent.agent.planning import PlanningStage
from gagent.agent.schema import (
    ProblemDetails,
    RequirementAnalysis,
    StepStatus,
    TaskType,
    WorkPlan,
    WorkPlanStep,
)
from gagent.errors import AgentError, AnalysisFailedError, InvalidControlTransitionError, PlanStepFailedError
from gagent.events.bus import EventBus, EventKind
from gagent.game.generator import GenerationStage, build_requirements
from gagent.game.models import Customizations, GeneratedDeliverable
from gagent.game.tester import DeliverableTester
from gagent.logging_config import task_context
from gagent.projects.models import Project, ProjectStatus
from gagent.projects.store import ProjectStore
from gagent.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

# Overall progress at each phase boundary
PROGRESS_ANALYSIS = 5
PROGRESS_DESIGN = 15
PROGRESS_GENERATION = 25
PROGRESS_EXECUTION_START = 40
PROGRESS_EXECUTION_END = 95

# ETA shown before a plan exists
INITIAL_ETA_SECONDS = 60


@dataclass
class RunCheckpoint:
    """What a run has finished so far; resume picks up from here."""

    instruction: str
    analysis: RequirementAnalysis | None = None
    clarification_acknowledged: bool = False
    plan: WorkPlan | None = None
    generation_done: bool = False


class TaskController:
    """Owns the TaskState of one task and drives its runs."""

    def __init__(
        self,
        task_id: str,
        bus: EventBus,
        store: ArtifactStore,
        planning: PlanningStage,
        generation: GenerationStage,
        tester: DeliverableTester | None = None,
        projects: ProjectStore | None = None,
        max_log_entries: int = 100,
        max_thought_steps: int = 50,
        step_delay_min: float = 0.5,
        step_delay_max: float = 1.5,
    ):
        self.task_id = task_id
        self.bus = bus
        self.planning = planning
        self.generation = generation
        self.tester = tester or DeliverableTester(store)
        self.projects = projects
        self.max_log_entries = max_log_entries
        self.max_thought_steps = max_thought_steps

        self.execution = ExecutionStage(
            task_id,
            store,
            bus,
            handlers={
                TaskType.GENERATE_GAME_CODE: self._handle_generate_game_code,
                TaskType.CUSTOMIZE_GAME_ASSETS: self._handle_customize_game_assets,
                TaskType.RUN_TESTS: self._handle_run_tests,
            },
            delay_min=step_delay_min,
            delay_max=step_delay_max,
            progress_range=(PROGRESS_EXECUTION_START, PROGRESS_EXECUTION_END),
        )

        self.state = TaskState(task_id=task_id)
        self.deliverable: GeneratedDeliverable | None = None
        self._customizations: Customizations | None = None
        self._checkpoint: RunCheckpoint | None = None
        self._run_id = 0
        # Serializes pipeline bodies so a resumed run never overlaps the one it replaces
        self._pipeline_lock = asyncio.Lock()

    # =========================================================================
    # Read access
    # =========================================================================

    def get_state(self) -> TaskState:
        """Snapshot of the current state; mutating it has no effect."""
        return self.state.snapshot()

    @property
    def run_id(self) -> int:
        return self._run_id

    @property
    def current_plan(self) -> WorkPlan | None:
        return self._checkpoint.plan if self._checkpoint else None

    @property
    def current_analysis(self) -> RequirementAnalysis | None:
        return self._checkpoint.analysis if self._checkpoint else None

    def _is_live(self, run_id: int) -> bool:
        return run_id == self._run_id and self.state.status in ACTIVE_STATUSES

    # =========================================================================
    # Control surface
    # =========================================================================

    async def start(self, instruction: str) -> None:
        """Start a new run; a no-op with a warning unless idle, paused or completed."""
        run_id = self.accept_start(instruction)
        if run_id is not None:
            await self.run(run_id)

    def accept_start(self, instruction: str) -> int | None:
        """Synchronous half of ``start``: validate, flip to thinking, publish.

        Returns the new run id, or None when the call was rejected.
        """
        if self.state.status not in STARTABLE_STATUSES:
            self._reject("start")
            return None

        self._run_id += 1
        self._checkpoint = RunCheckpoint(instruction=instruction)
        self.deliverable = None
        self._customizations = None

        self.state.status = AgentStatus.THINKING
        self.state.current_stage = DevelopmentStage.REQUIREMENT_ANALYSIS
        self.state.progress_percent = 0
        self.state.estimated_seconds_remaining = INITIAL_ETA_SECONDS
        self.state.error = None
        self.state.current_task_summary = instruction
        self.state.last_action = AgentAction(
            kind=ActionType.USER_INPUT,
            description="Received instruction",
            details={"instruction": instruction},
        )
        self.add_log("Agent started processing instruction.", LogLevel.INFO, {"run_id": self._run_id})
        self.add_thought(
            ThoughtStage.PROBLEM_DEFINITION,
            f'Received instruction: "{instruction}"',
            ThoughtStatus.COMPLETED,
        )
        logger.info(f"Task {self.task_id}: run {self._run_id} started", extra={"task_id": self.task_id, "run_id": self._run_id})
        self._publish_state()
        return self._run_id

    def pause(self) -> None:
        """Pause an active run after its current step."""
        if self.state.status not in ACTIVE_STATUSES:
            self._reject("pause")
            return

        summary = self.state.current_task_summary
        self.state.status = AgentStatus.PAUSED
        self.state.last_action = AgentAction(kind=ActionType.USER_INPUT, description="Paused by user")
        plan = self.current_plan
        self.add_thought(
            ThoughtStage.INTERNAL_STATE_UPDATE,
            f"Paused while: {summary}" if summary else "Paused",
            ThoughtStatus.INFO,
            details={
                "summary": summary,
                "stage": self.state.current_stage.value,
                "step_index": plan.current_step_index if plan else None,
            },
        )
        self.add_log("Agent paused.", LogLevel.INFO)
        logger.info(f"Task {self.task_id}: paused", extra={"task_id": self.task_id, "run_id": self._run_id})
        self._publish_state()

    async def resume(self) -> None:
        """Continue a paused run from where it stopped."""
        run_id = self.accept_resume()
        if run_id is not None:
            await self.run(run_id)

    def accept_resume(self) -> int | None:
        """Synchronous half of ``resume``. Returns the new run id or None."""
        if self.state.status != AgentStatus.PAUSED or self._checkpoint is None:
            self._reject("resume")
            return None

        self._run_id += 1
        self.state.status = AgentStatus.THINKING
        self.state.last_action = AgentAction(kind=ActionType.USER_INPUT, description="Resumed by user")
        summary = self.state.current_task_summary
        self.add_thought(
            ThoughtStage.INTERNAL_STATE_UPDATE,
            f"Resuming: {summary}" if summary else "Resuming",
            ThoughtStatus.INFO,
            details={"phase": self._next_phase()},
        )
        self.add_log("Agent resumed.", LogLevel.INFO)
        logger.info(f"Task {self.task_id}: run {self._run_id} resumed", extra={"task_id": self.task_id, "run_id": self._run_id})
        self._publish_state()
        return self._run_id

    def stop(self) -> None:
        """Reset to idle. Always valid."""
        self._run_id += 1
        self._checkpoint = None
        self.state.status = AgentStatus.IDLE
        self.state.current_stage = DevelopmentStage.REQUIREMENT_ANALYSIS
        self.state.progress_percent = 0
        self.state.estimated_seconds_remaining = 0
        self.state.current_task_summary = ""
        self.state.error = None
        self.state.last_action = AgentAction(kind=ActionType.IDLE, description="Agent is idle.")
        self.add_thought(ThoughtStage.INTERNAL_STATE_UPDATE, "Stopped and reset", ThoughtStatus.INFO)
        self.add_log("Agent stopped and reset.", LogLevel.INFO)
        logger.info(f"Task {self.task_id}: stopped", extra={"task_id": self.task_id, "run_id": self._run_id})
        self._publish_state()

    def _reject(self, action: str) -> None:
        error = InvalidControlTransitionError(action, self.state.status.value)
        self.add_log(error.message, LogLevel.WARNING, {"code": error.code, "action": action})
        logger.warning(f"Task {self.task_id}: {error.message}")
        self._publish_state()

    # =========================================================================
    # State helpers
    # =========================================================================

    def add_log(self, message: str, level: LogLevel = LogLevel.INFO, context: Any = None) -> LogEntry:
        """Append a user-facing log entry and publish it."""
        entry = LogEntry(message=message, level=level, context=context)
        self.state.log_entries.append(entry)
        if len(self.state.log_entries) > self.max_log_entries:
            self.state.log_entries = self.state.log_entries[-self.max_log_entries:]
        self.bus.publish(self.task_id, EventKind.LOG, **entry.to_dict())
        return entry

    def add_thought(
        self,
        stage: ThoughtStage | DevelopmentStage | str,
        description: str,
        status: ThoughtStatus = ThoughtStatus.INFO,
        details: Any = None,
        decision: str | None = None,
        alternatives: list[str] | None = None,
    ) -> ThoughtStep:
        """Record a thought step and publish it as a thinking event."""
        step = ThoughtStep(
            stage=stage,
            description=description,
            status=status,
            details=details,
            decision=decision,
            alternatives=alternatives,
        )
        self.state.thought_steps.append(step)
        if len(self.state.thought_steps) > self.max_thought_steps:
            self.state.thought_steps = self.state.thought_steps[-self.max_thought_steps:]
        self.state.thinking = description
        self.bus.publish(self.task_id, EventKind.THINKING, text=description, step=step.to_dict())
        return step

    def _publish_state(self) -> None:
        self.bus.publish(self.task_id, EventKind.STATE, state=self.state.to_dict())

    def _enter_stage(self, stage: DevelopmentStage, progress: int, status: AgentStatus | None = None) -> None:
        self.state.current_stage = stage
        self.state.progress_percent = max(self.state.progress_percent, progress)
        if status is not None:
            self.state.status = status
        self.bus.publish(
            self.task_id,
            EventKind.PROGRESS,
            stage=stage.value,
            percent=self.state.progress_percent,
            eta_seconds=self.state.estimated_seconds_remaining,
        )
        self._publish_state()

    def _next_phase(self) -> str:
        cp = self._checkpoint
        if cp is None or cp.analysis is None:
            return "analysis"
        if cp.plan is None:
            return "planning"
        if not cp.generation_done:
            return "generation"
        return "execution"

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def run(self, run_id: int) -> None:
        """Drive the pipeline for an accepted start or resume."""
        async with self._pipeline_lock:
            if not self._is_live(run_id):
                return
            try:
                with task_context(self.task_id, run_id):
                    await self._pipeline(run_id)
            except Exception as e:
                if not self._is_live(run_id):
                    logger.debug(f"Task {self.task_id}: discarding error from stale run {run_id}: {e}")
                    return
                logger.exception(f"Task {self.task_id}: run {run_id} failed", extra={"task_id": self.task_id, "run_id": run_id})
                message = e.message if isinstance(e, AgentError) else str(e) or type(e).__name__
                await self._fail(run_id, message)

    async def _pipeline(self, run_id: int) -> None:
        cp = self._checkpoint

        # Requirement analysis
        if cp.analysis is None:
            self._enter_stage(DevelopmentStage.REQUIREMENT_ANALYSIS, PROGRESS_ANALYSIS)
            await self._mirror_project(status=ProjectStatus.IN_PROGRESS, current_stage=DevelopmentStage.REQUIREMENT_ANALYSIS.value)
            if not self._is_live(run_id):
                return
            try:
                analysis = await self.planning.analyze_requirement(self.task_id, cp.instruction)
            except AnalysisFailedError as e:
                if not self._is_live(run_id):
                    return
                self.add_thought(ThoughtStage.INFORMATION_GATHERING, f"Requirement analysis failed: {e.message}", ThoughtStatus.FAILED)
                await self._fail(run_id, e.message, e.details)
                return
            if not self._is_live(run_id):
                return
            cp.analysis = analysis
            self.add_thought(
                ThoughtStage.INFORMATION_GATHERING,
                f"Requirement Analysis: {'; '.join(analysis.parsed_requirements)}",
                ThoughtStatus.COMPLETED,
                details=analysis.model_dump(mode="json"),
            )
            self.add_log("Requirement analysis complete.", LogLevel.INFO)

        if cp.analysis.needs_clarification and not cp.clarification_acknowledged:
            cp.clarification_acknowledged = True
            questions = list(cp.analysis.clarifications_needed)
            self.state.status = AgentStatus.PAUSED
            self.state.current_task_summary = "Waiting for clarification"
            self.add_thought(
                ThoughtStage.INFORMATION_GATHERING,
                "Clarification needed before planning",
                ThoughtStatus.PENDING,
                details={"questions": questions},
            )
            self.add_log(f"Clarification needed: {'; '.join(questions)}", LogLevel.WARNING, {"questions": questions})
            self._publish_state()
            return

        # Planning
        if cp.plan is None:
            self._enter_stage(DevelopmentStage.DESIGN, PROGRESS_DESIGN)
            plan = await self.planning.generate_work_plan(self.task_id, cp.analysis)
            if not self._is_live(run_id):
                return
            cp.plan = plan
            self.state.estimated_seconds_remaining = plan.remaining_seconds
            self.add_thought(
                ThoughtStage.PLANNING,
                f"Work plan generated with {len(plan.steps)} steps",
                ThoughtStatus.COMPLETED,
                details=[{"id": s.id, "description": s.description, "type": s.type.value} for s in plan.steps],
            )
            self.add_log(f"Work plan generated with {len(plan.steps)} steps.", LogLevel.INFO)

        # Generation
        if not cp.generation_done:
            await self._generation_phase(run_id, cp)
            if not self._is_live(run_id):
                return
            cp.generation_done = True

        # Execution
        plan = cp.plan
        self._enter_stage(DevelopmentStage.CODING, PROGRESS_EXECUTION_START, AgentStatus.CODING)
        self.add_log("Handing off to execution.", LogLevel.INFO, {"from_step": plan.current_step_index})
        ok = await self.execution.execute_work_plan(
            plan,
            should_continue=lambda: self._is_live(run_id),
            on_step=self._on_step,
        )
        if not self._is_live(run_id):
            return

        if ok:
            await self._complete(run_id)
            return

        failed = next((s for s in plan.steps if s.status == StepStatus.FAILED), None)
        if failed is not None:
            await self._propose_fix(run_id, failed)
            if not self._is_live(run_id):
                return
        await self._fail(run_id, "Work plan execution failed", failed.error if failed else None)

    async def _generation_phase(self, run_id: int, cp: RunCheckpoint) -> None:
        if not cp.plan.has_generation_steps():
            return

        project = await self._get_project()
        if not self._is_live(run_id):
            return
        game_kind = project.game_kind.value if project and project.game_kind else cp.analysis.details.get("game_kind")
        if not game_kind:
            self.add_thought(ThoughtStage.GAME_GENERATION, "No game kind declared, skipping generation", ThoughtStatus.SKIPPED)
            self._publish_state()
            return

        self._enter_stage(DevelopmentStage.CODING, PROGRESS_GENERATION, AgentStatus.CODING)
        requirements, customizations = build_requirements(cp.analysis, project)
        self._customizations = customizations
        task = project or Project(id=self.task_id, name=requirements.title, description=cp.analysis.original_instruction)
        self.add_thought(ThoughtStage.GAME_GENERATION, f"Generating {game_kind} game: {requirements.title}", ThoughtStatus.IN_PROGRESS)

        try:
            deliverable = await self.generation.generate(task, game_kind, requirements, customizations)
        except Exception as e:
            if not self._is_live(run_id):
                return
            message = e.message if isinstance(e, AgentError) else str(e)
            logger.warning(f"Task {self.task_id}: generation failed: {message}")
            self.add_thought(ThoughtStage.GAME_GENERATION, f"Game generation failed: {message}", ThoughtStatus.FAILED)
            self.add_log(f"Game generation failed: {message}", LogLevel.WARNING)
            self._publish_state()
            return

        if not self._is_live(run_id):
            return
        if deliverable is None or not deliverable.artifacts:
            self.add_thought(ThoughtStage.GAME_GENERATION, "Game generation produced no files", ThoughtStatus.FAILED)
            self.add_log("Game generation produced no files.", LogLevel.WARNING)
            self._publish_state()
            return

        self.deliverable = deliverable
        self.state.last_action = AgentAction(
            kind=ActionType.CREATE_FILE,
            description=f"Generated {len(deliverable.artifacts)} game files",
            target=deliverable.preview_entry_point,
            details={"deliverable_id": deliverable.deliverable_id, "template": deliverable.base_template_id},
        )
        self.add_thought(
            ThoughtStage.GAME_GENERATION,
            f"Generated {game_kind} game from {deliverable.base_template_id}",
            ThoughtStatus.COMPLETED,
            details=deliverable.to_dict(),
        )
        self.add_log(f'Game "{deliverable.title}" generated.', LogLevel.SUCCESS)
        if deliverable.preview_url:
            self.bus.publish(self.task_id, EventKind.PREVIEW_UPDATED, url=deliverable.preview_url)
        self.bus.publish(self.task_id, EventKind.DELIVERABLE_PRODUCED, list_item=deliverable.to_list_item())
        self._publish_state()

    async def _on_step(self, plan: WorkPlan, step: WorkPlanStep) -> None:
        index = plan.steps.index(step)
        stage = stage_for(step)
        self.state.status = AgentStatus.TESTING if stage == "testing" else AgentStatus.CODING
        self.state.current_stage = DevelopmentStage.TESTING if stage == "testing" else DevelopmentStage.CODING
        self.state.progress_percent = max(self.state.progress_percent, self.execution.plan_percent(plan))
        self.state.estimated_seconds_remaining = plan.remaining_seconds
        self.state.current_task_summary = f"Step {index + 1}/{len(plan.steps)}: {step.description}"

        status = {
            StepStatus.IN_PROGRESS: ThoughtStatus.IN_PROGRESS,
            StepStatus.COMPLETED: ThoughtStatus.COMPLETED,
            StepStatus.FAILED: ThoughtStatus.FAILED,
        }.get(step.status, ThoughtStatus.INFO)
        if step.status != StepStatus.IN_PROGRESS:
            self.state.last_action = AgentAction(
                kind=ActionType.AGENT_RESPONSE,
                description=f"{step.status.value.capitalize()} step: {step.description}",
                details={"step_id": step.id, "error": step.error},
            )
        self.add_thought(
            ThoughtStage.EXECUTION_STEP,
            step.description if not step.error else f"{step.description}: {step.error}",
            status,
            details={"step_id": step.id, "type": step.type.value},
        )
        self._publish_state()

    async def _propose_fix(self, run_id: int, step: WorkPlanStep) -> None:
        problem = ProblemDetails(
            description=step.error or f"Step failed: {step.description}",
            context={"step_id": step.id, "type": step.type.value},
        )
        try:
            proposal = await self.planning.propose_solution(self.task_id, problem)
        except Exception as e:
            logger.warning(f"Task {self.task_id}: could not propose a solution: {e}")
            return
        if not self._is_live(run_id):
            return
        self.add_thought(
            ThoughtStage.REFINEMENT,
            f"Proposed fix: {proposal.proposed_solution}",
            ThoughtStatus.INFO,
            details=proposal.model_dump(mode="json"),
            decision=proposal.proposed_solution,
        )

    async def _complete(self, run_id: int) -> None:
        self.state.status = AgentStatus.COMPLETED
        self.state.current_stage = DevelopmentStage.COMPLETED
        self.state.progress_percent = 100
        self.state.estimated_seconds_remaining = 0
        self.state.current_task_summary = "Task completed successfully"
        self.state.last_action = AgentAction(kind=ActionType.AGENT_RESPONSE, description="Task completed")
        self.add_thought(ThoughtStage.EVALUATION, "All plan steps completed", ThoughtStatus.COMPLETED)
        self.add_log("Task completed successfully.", LogLevel.SUCCESS)
        logger.info(f"Task {self.task_id}: run {run_id} completed", extra={"task_id": self.task_id, "run_id": run_id})
        self._publish_state()
        await self._mirror_project(status=ProjectStatus.COMPLETED, progress_percent=100, current_stage=DevelopmentStage.COMPLETED.value)

    async def _fail(self, run_id: int, message: str, details: str | None = None) -> None:
        self.state.status = AgentStatus.ERROR
        self.state.error = TaskError(message=message, details=details)
        self.state.estimated_seconds_remaining = 0
        self.state.last_action = AgentAction(kind=ActionType.AGENT_RESPONSE, description=message, details={"error": details})
        self.add_log(f"{message}: {details}" if details else message, LogLevel.ERROR)
        logger.warning(f"Task {self.task_id}: run {run_id} failed: {message}", extra={"task_id": self.task_id, "run_id": run_id})
        self._publish_state()
        await self._mirror_project(status=ProjectStatus.ERROR)

    # =========================================================================
    # Step handlers
    # =========================================================================

    async def _handle_generate_game_code(self, step: WorkPlanStep) -> None:
        if self.deliverable is None:
            self.add_thought(ThoughtStage.GAME_GENERATION, "No generated game to build on", ThoughtStatus.SKIPPED)
            return
        self.add_thought(
            ThoughtStage.GAME_GENERATION,
            f"Game code ready: {len(self.deliverable.artifacts)} files from {self.deliverable.base_template_id}",
            ThoughtStatus.COMPLETED,
        )

    async def _handle_customize_game_assets(self, step: WorkPlanStep) -> None:
        if self.deliverable is None or self._customizations is None:
            self.add_thought(ThoughtStage.GAME_GENERATION, "Nothing to customize", ThoughtStatus.SKIPPED)
            return
        artifact = await self.generation.customize(self.deliverable, self._customizations)
        self.add_thought(
            ThoughtStage.GAME_GENERATION,
            f"Applied customizations to {artifact.name}",
            ThoughtStatus.COMPLETED,
            details=self._customizations.to_dict(),
        )

    async def _handle_run_tests(self, step: WorkPlanStep) -> None:
        if self.deliverable is None:
            self.add_thought(ThoughtStage.EVALUATION, "No generated game to test", ThoughtStatus.SKIPPED)
            return
        results = await self.tester.run_tests(self.deliverable)
        summary = self.tester.summarize(results)
        self.add_thought(
            ThoughtStage.EVALUATION,
            summary.message,
            ThoughtStatus.COMPLETED if summary.passed else ThoughtStatus.FAILED,
            details=summary.details,
        )
        if not summary.passed:
            raise PlanStepFailedError(step.id, summary.message)

    # =========================================================================
    # Project mirroring
    # =========================================================================

    async def _get_project(self) -> Project | None:
        if self.projects is None:
            return None
        try:
            return await self.projects.get(self.task_id)
        except Exception as e:
            logger.warning(f"Task {self.task_id}: could not load project: {e}")
            return None

    async def _mirror_project(self, **changes: Any) -> None:
        if self.projects is None:
            return
        try:
            await self.projects.update(self.task_id, **changes)
        except Exception as e:
            logger.warning(f"Task {self.task_id}: could not update project status: {e}")
