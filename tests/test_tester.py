"""Tests for deliverable checks."""

import pytest

from gagent.game.generator import GenerationStage
from gagent.game.models import GameRequirements, QuizQuestion
from gagent.game.tester import DeliverableTester, TestResult
from gagent.projects.models import Project


@pytest.fixture
async def deliverable(store, catalog):
    generation = GenerationStage(store, catalog)
    requirements = GameRequirements(
        title="Quiz",
        questions=[QuizQuestion(question="Q?", options=["A", "B"], answer="A")],
    )
    return await generation.generate(Project(id="task-1", name="Quiz"), "quiz", requirements)


class TestDeliverableTester:
    """Tests for DeliverableTester."""

    @pytest.mark.asyncio
    async def test_generated_deliverable_passes(self, store, deliverable):
        """Test a freshly generated game passes every check."""
        tester = DeliverableTester(store)
        results = await tester.run_tests(deliverable)

        ids = [r.details["test_case_id"] for r in results]
        assert ids == ["file-presence-check", "html-content-check", "config-content-check", "config-items-check"]
        assert all(r.passed for r in results)

        summary = tester.summarize(results)
        assert summary.passed
        assert summary.message == "All 4 tests passed."

    @pytest.mark.asyncio
    async def test_missing_config_fails(self, store, deliverable):
        """Test deleting the config fails the presence check."""
        await store.delete(deliverable.config_path)
        results = await DeliverableTester(store).run_tests(deliverable)

        assert not results[0].passed
        summary = DeliverableTester.summarize(results)
        assert not summary.passed
        assert summary.message == f"1 out of {len(results)} tests failed."

    @pytest.mark.asyncio
    async def test_corrupt_config_reports_error(self, store, deliverable):
        """Test an unparseable config is reported as an execution error, not a crash."""
        await store.write(deliverable.config_path, "{not json")
        results = await DeliverableTester(store).run_tests(deliverable)

        errored = [r for r in results if not r.passed]
        assert {r.details["test_case_id"] for r in errored} == {"config-content-check", "config-items-check"}
        assert all("Error during test execution" in r.message for r in errored)

    @pytest.mark.asyncio
    async def test_empty_content_fails(self, store, catalog):
        generation = GenerationStage(store, catalog)
        deliverable = await generation.generate(Project(id="task-2", name="Empty"), "quiz", GameRequirements(title="Empty"))
        results = await DeliverableTester(store).run_tests(deliverable)
        failed = [r.details["test_case_id"] for r in results if not r.passed]
        assert failed == ["config-items-check"]

    def test_summarize_empty(self):
        summary = DeliverableTester.summarize([])
        assert summary.passed
        assert summary.message == "All 0 tests passed."

    def test_result_to_dict(self):
        assert TestResult(passed=True, message="ok").to_dict() == {"passed": True, "message": "ok", "details": None}
