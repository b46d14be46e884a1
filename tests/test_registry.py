"""Tests for the controller registry."""

import asyncio

import pytest

from gagent.agent.models import AgentStatus
from gagent.agent.registry import build_registry, validate_task_id


@pytest.fixture
def registry(settings, bus, store, catalog, projects):
    return build_registry(settings, bus, store, catalog, projects=projects)


class TestValidateTaskId:
    @pytest.mark.parametrize("task_id", ["task-1", "Project_2", "a.b", "x"])
    def test_valid(self, task_id):
        assert validate_task_id(task_id) == task_id

    @pytest.mark.parametrize("task_id", ["", "../etc", "a/b", ".hidden", "a..b", "x" * 65, "has space"])
    def test_invalid(self, task_id):
        with pytest.raises(ValueError):
            validate_task_id(task_id)


class TestControllerRegistry:
    """Tests for ControllerRegistry."""

    def test_one_controller_per_task(self, registry):
        first = registry.get_or_create("task-1")
        assert registry.get_or_create("task-1") is first
        assert registry.get("task-2") is None
        registry.get_or_create("task-2")
        assert registry.task_ids() == ["task-1", "task-2"]

    def test_invalid_id_not_registered(self, registry):
        with pytest.raises(ValueError):
            registry.get_or_create("../escape")
        assert registry.task_ids() == []

    def test_controllers_use_settings(self, registry, settings):
        controller = registry.get_or_create("task-1")
        assert controller.max_log_entries == settings.max_log_entries
        assert controller.execution.delay_max == 0

    @pytest.mark.asyncio
    async def test_start_returns_before_run_finishes(self, registry):
        """Test start returns a thinking snapshot and the run finishes in the background."""
        state = registry.start("task-1", "create a quiz about the solar system with 3 questions")
        assert state.status == AgentStatus.THINKING
        assert registry.running_count == 1

        await asyncio.wait_for(registry.wait_idle(), timeout=10)

        assert registry.running_count == 0
        assert registry.get_state("task-1").status == AgentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rejected_start_spawns_nothing(self, registry):
        registry.start("task-1", "a quiz")
        registry.start("task-1", "another quiz")
        assert registry.running_count == 1
        await registry.wait_idle()

    @pytest.mark.asyncio
    async def test_stop_then_state(self, registry):
        registry.start("task-1", "a quiz")
        state = registry.stop("task-1")
        assert state.status == AgentStatus.IDLE
        await registry.wait_idle()
        assert registry.get_state("task-1").status == AgentStatus.IDLE

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, registry):
        """Test resume from a clarification pause spawns a continuation."""
        registry.start("task-1", "make a complex quiz about rivers")
        await registry.wait_idle()
        assert registry.get_state("task-1").status == AgentStatus.PAUSED

        state = registry.resume("task-1")
        assert state.status == AgentStatus.THINKING
        await registry.wait_idle()
        assert registry.get_state("task-1").status == AgentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_runs(self, registry):
        controller = registry.get_or_create("task-1")
        blocker = asyncio.Event()

        async def hang(*args, **kwargs):
            await blocker.wait()

        controller.planning.analyze_requirement = hang
        registry.start("task-1", "a quiz")
        await asyncio.sleep(0)

        await asyncio.wait_for(registry.shutdown(), timeout=5)

        assert registry.running_count == 0
