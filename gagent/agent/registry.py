"""Registry of task controllers.

Holds one TaskController per task id and runs accepted starts and resumes
as background asyncio tasks so control calls return immediately.
"""

import asyncio
import logging
import re
from typing import Callable

from gagent.agent.controller import TaskController
from gagent.agent.models import TaskState
from gagent.agent.planning import PlanningStage
from gagent.events.bus import EventBus
from gagent.game.generator import GenerationStage
from gagent.game.templates import TemplateCatalog
from gagent.game.tester import DeliverableTester
from gagent.llm.text_generator import TextGenerator
from gagent.projects.store import ProjectStore
from gagent.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

# Task ids double as directory names under the artifact root
TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")

ControllerFactory = Callable[[str], TaskController]


def validate_task_id(task_id: str) -> str:
    """Return ``task_id`` or raise ValueError when it is not a safe id."""
    if not TASK_ID_PATTERN.match(task_id) or ".." in task_id:
        raise ValueError(f"Invalid task id: {task_id!r}")
    return task_id


class ControllerRegistry:
    """One controller per task id, plus the background runs they own."""

    def __init__(self, factory: ControllerFactory):
        self._factory = factory
        self._controllers: dict[str, TaskController] = {}
        self._runs: set[asyncio.Task] = set()

    def get(self, task_id: str) -> TaskController | None:
        return self._controllers.get(task_id)

    def get_or_create(self, task_id: str) -> TaskController:
        controller = self._controllers.get(task_id)
        if controller is None:
            controller = self._factory(validate_task_id(task_id))
            self._controllers[task_id] = controller
            logger.info(f"Created controller for task {task_id}")
        return controller

    def task_ids(self) -> list[str]:
        return sorted(self._controllers)

    @property
    def running_count(self) -> int:
        return sum(1 for t in self._runs if not t.done())

    # =========================================================================
    # Control
    # =========================================================================

    def start(self, task_id: str, instruction: str) -> TaskState:
        """Accept a start and run the pipeline in the background."""
        controller = self.get_or_create(task_id)
        run_id = controller.accept_start(instruction)
        if run_id is not None:
            self._spawn(controller, run_id)
        return controller.get_state()

    def resume(self, task_id: str) -> TaskState:
        controller = self.get_or_create(task_id)
        run_id = controller.accept_resume()
        if run_id is not None:
            self._spawn(controller, run_id)
        return controller.get_state()

    def pause(self, task_id: str) -> TaskState:
        controller = self.get_or_create(task_id)
        controller.pause()
        return controller.get_state()

    def stop(self, task_id: str) -> TaskState:
        controller = self.get_or_create(task_id)
        controller.stop()
        return controller.get_state()

    def get_state(self, task_id: str) -> TaskState:
        return self.get_or_create(task_id).get_state()

    def _spawn(self, controller: TaskController, run_id: int) -> None:
        task = asyncio.create_task(controller.run(run_id), name=f"run:{controller.task_id}:{run_id}")
        self._runs.add(task)
        task.add_done_callback(self._on_run_done)

    def _on_run_done(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background run {task.get_name()} crashed: {exc}", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for every background run that is currently scheduled."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel background runs and wait for them to unwind."""
        runs = [t for t in self._runs if not t.done()]
        if runs:
            logger.info(f"Cancelling {len(runs)} running tasks...")
        for task in runs:
            task.cancel()
        await asyncio.gather(*runs, return_exceptions=True)
        self._runs.clear()


def build_registry(
    settings,
    bus: EventBus,
    store: ArtifactStore,
    catalog: TemplateCatalog,
    generator: TextGenerator | None = None,
    projects: ProjectStore | None = None,
) -> ControllerRegistry:
    """Registry whose controllers share the given collaborators."""
    planning = PlanningStage(bus, generator)
    generation = GenerationStage(
        store,
        catalog,
        bus=bus,
        preview_url_prefix=settings.preview_url_prefix,
        strict=settings.strict_template_match,
    )
    tester = DeliverableTester(store)

    def factory(task_id: str) -> TaskController:
        return TaskController(
            task_id,
            bus,
            store,
            planning,
            generation,
            tester=tester,
            projects=projects,
            max_log_entries=settings.max_log_entries,
            max_thought_steps=settings.max_thought_steps,
            step_delay_min=settings.step_delay_min,
            step_delay_max=settings.step_delay_max,
        )

    return ControllerRegistry(factory)
