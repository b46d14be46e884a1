"""Basic checks for generated deliverables."""

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from gagent.game.models import GeneratedDeliverable
from gagent.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class TestResult:
    __test__ = False

    passed: bool
    message: str
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "message": self.message, "details": self.details}


@dataclass
class TestCase:
    __test__ = False

    id: str
    description: str
    assertion: Callable[[], bool | Awaitable[bool]] = field(repr=False)


# Config key that must hold the game content, per kind
CONTENT_KEYS = {"quiz": "questions", "matching": "items", "sorting": "items"}


class DeliverableTester:
    """Builds and runs test cases against a deliverable's files on disk."""

    __test__ = False

    def __init__(self, store: ArtifactStore):
        self.store = store

    async def _load(self, deliverable: GeneratedDeliverable) -> dict[str, str]:
        contents = {}
        for artifact in deliverable.artifacts:
            if await self.store.exists(artifact.path):
                contents[artifact.name] = await self.store.read(artifact.path)
        return contents

    async def generate_test_cases(self, deliverable: GeneratedDeliverable) -> list[TestCase]:
        contents = await self._load(deliverable)
        html_name = next((n for n in contents if n.endswith(".html")), None)
        config_name = next((n for n in contents if n.endswith("_config.json")), None)

        cases = [
            TestCase(
                id="file-presence-check",
                description="Essential game files (HTML, config) are present",
                assertion=lambda: html_name is not None and config_name is not None,
            )
        ]

        if html_name:
            html_text = contents[html_name]
            cases.append(TestCase(
                id="html-content-check",
                description="HTML file has a title and body",
                assertion=lambda: "<title>" in html_text and "<body" in html_text,
            ))

        if config_name:
            config_text = contents[config_name]
            cases.append(TestCase(
                id="config-content-check",
                description="Config file parses and has a title",
                assertion=lambda: isinstance(json.loads(config_text).get("title"), str),
            ))

            key = CONTENT_KEYS.get(deliverable.game_kind)
            if key:
                cases.append(TestCase(
                    id="config-items-check",
                    description=f"Config file has {deliverable.game_kind} content in '{key}'",
                    assertion=lambda: bool(json.loads(config_text).get(key)),
                ))

        logger.debug(f"Generated {len(cases)} test cases for {deliverable.deliverable_id}")
        return cases

    async def run_tests(self, deliverable: GeneratedDeliverable) -> list[TestResult]:
        results = []
        for case in await self.generate_test_cases(deliverable):
            try:
                outcome = case.assertion()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                passed = bool(outcome)
                results.append(TestResult(
                    passed=passed,
                    message=f"{case.description}: {'Passed' if passed else 'Failed'}",
                    details={"test_case_id": case.id},
                ))
            except Exception as e:
                results.append(TestResult(
                    passed=False,
                    message=f"{case.description}: Error during test execution.",
                    details={"test_case_id": case.id, "error": str(e)},
                ))

        failed = [r for r in results if not r.passed]
        logger.info(
            f"Test run for {deliverable.deliverable_id}: {len(results) - len(failed)}/{len(results)} passed"
        )
        return results

    @staticmethod
    def summarize(results: list[TestResult]) -> TestResult:
        failed = [r for r in results if not r.passed]
        if not failed:
            return TestResult(
                passed=True,
                message=f"All {len(results)} tests passed.",
                details=[r.to_dict() for r in results],
            )
        return TestResult(
            passed=False,
            message=f"{len(failed)} out of {len(results)} tests failed.",
            details=[r.to_dict() for r in failed],
        )
