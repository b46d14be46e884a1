"""Planning stage: instruction -> requirement analysis -> work plan.

Analysis uses the text generator when one is configured and falls back to
keyword heuristics otherwise. Plans are built from a fixed step skeleton
extended by the analysis goals.
"""

import logging
import re
import uuid
from typing import Any

from pydantic import ValidationError

from gagent.agent.models import ActionType
from gagent.agent.schema import (
    ProblemDetails,
    RequirementAnalysis,
    SolutionProposal,
    TaskType,
    WorkPlan,
    WorkPlanStep,
)
from gagent.errors import AgentError, AnalysisFailedError
from gagent.events.bus import EventBus, EventKind
from gagent.llm.text_generator import TextGenerator, extract_json_object

logger = logging.getLogger(__name__)

DEFAULT_ITEM_COUNT = 3
MAX_ITEM_COUNT = 20

COMPLEX_CLARIFICATION = (
    "Could you specify what 'complex' entails? e.g., number of levels, specific mechanics."
)

# Keyword -> game kind, checked in order
GAME_KIND_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("quiz", ("quiz", "question", "trivia")),
    ("matching", ("match", "pair", "memory")),
    ("sorting", ("sort", "order", "timeline", "sequence", "rank")),
]

_COUNT_RE = re.compile(r"\b(\d{1,3})\s+(?:questions?|items?|pairs?|cards?|terms?|steps?)\b", re.IGNORECASE)
_TOPIC_RE = re.compile(r"\babout\s+(?:the\s+)?(.+?)(?:\s+with\b|\s+for\b|\s+using\b|[.,;!?]|$)", re.IGNORECASE)

ANALYSIS_PROMPT = """You are planning an educational mini-game.

Instruction:
{instruction}

Reply with a single JSON object with these keys:
- "parsed_requirements": list of strings
- "constraints": list of strings
- "goals": list of strings
- "clarifications_needed": list of questions for the user, empty if none
- "details": object with "game_kind" (quiz, matching or sorting), "title", "topic",
  "item_count", and optionally "questions" (list of {{"question", "options", "answer"}}),
  "pairs" (list of {{"term", "definition"}}) or "items" (ordered list of strings)
"""

SOLUTION_PROMPT = """A step of an automated game build failed.

Problem: {description}
Context: {context}

Reply with a single JSON object with keys "proposed_solution", "reasoning",
"estimated_effort" (low, medium or high) and "confidence_score" (0 to 1).
"""


# =============================================================================
# Heuristics
# =============================================================================

def detect_game_kind(instruction: str) -> str | None:
    text = instruction.lower()
    for kind, keywords in GAME_KIND_KEYWORDS:
        if any(k in text for k in keywords):
            return kind
    return None


def detect_item_count(instruction: str) -> int:
    match = _COUNT_RE.search(instruction)
    if not match:
        return DEFAULT_ITEM_COUNT
    return max(1, min(int(match.group(1)), MAX_ITEM_COUNT))


def detect_topic(instruction: str) -> str | None:
    match = _TOPIC_RE.search(instruction)
    if not match:
        return None
    topic = match.group(1).strip()
    return topic or None


def heuristic_details(instruction: str) -> dict[str, Any]:
    """Game parameters read from the instruction text."""
    kind = detect_game_kind(instruction)
    topic = detect_topic(instruction)
    title_kind = {"quiz": "Quiz", "matching": "Matching Game", "sorting": "Sorting Game"}.get(kind or "", "Game")
    title = f"{topic.title()} {title_kind}" if topic else f"Educational {title_kind}"
    return {
        "game_kind": kind,
        "topic": topic,
        "item_count": detect_item_count(instruction),
        "title": title,
    }


def heuristic_analysis(instruction: str) -> RequirementAnalysis:
    details = heuristic_details(instruction)
    kind = details["game_kind"] or "educational"
    requirements = [f'Generate a game based on: "{instruction}"']
    if details["topic"]:
        requirements.append(f"Content covers {details['topic']}")
    requirements.append(f"Include {details['item_count']} {kind} items")

    clarifications = []
    if "complex" in instruction.lower():
        clarifications.append(COMPLEX_CLARIFICATION)

    return RequirementAnalysis(
        original_instruction=instruction,
        parsed_requirements=requirements,
        constraints=["Runs in a browser without a build step", "Plain HTML, CSS and JavaScript"],
        goals=["Create a functional and engaging game"],
        clarifications_needed=clarifications,
        details=details,
    )


# =============================================================================
# Planning stage
# =============================================================================

class PlanningStage:
    """Turns instructions into analyses and analyses into work plans."""

    def __init__(self, bus: EventBus, generator: TextGenerator | None = None):
        self.bus = bus
        self.generator = generator

    @property
    def uses_generator(self) -> bool:
        return self.generator is not None and self.generator.is_available()

    def _thinking(self, task_id: str, text: str) -> None:
        self.bus.publish(task_id, EventKind.THINKING, text=text)

    def _action(self, task_id: str, description: str, details: Any = None) -> None:
        self.bus.publish(
            task_id,
            EventKind.ACTION,
            kind=ActionType.ANALYZE.value,
            description=description,
            details=details,
        )

    async def analyze_requirement(self, task_id: str, instruction: str) -> RequirementAnalysis:
        """Produce a RequirementAnalysis; raises AnalysisFailedError."""
        self._thinking(task_id, f'Analyzing instruction: "{instruction}"')

        if self.uses_generator:
            analysis = await self._analyze_with_generator(task_id, instruction)
        else:
            logger.debug(f"Task {task_id}: text generator unavailable, using heuristic analysis")
            analysis = heuristic_analysis(instruction)

        if analysis.needs_clarification:
            self._thinking(task_id, "Instruction needs clarification before planning can continue.")

        self._action(task_id, "Completed requirement analysis", analysis.model_dump(mode="json"))
        self._thinking(task_id, "Requirement analysis complete.")
        return analysis

    async def _analyze_with_generator(self, task_id: str, instruction: str) -> RequirementAnalysis:
        try:
            reply = await self.generator.generate_text(ANALYSIS_PROMPT.format(instruction=instruction))
        except AgentError as e:
            logger.warning(f"Task {task_id}: analysis generation failed: {e.message}")
            raise AnalysisFailedError(f"Requirement analysis failed: {e.message}", e.details) from e

        data = extract_json_object(reply)
        if data is None:
            raise AnalysisFailedError("Requirement analysis failed: reply contained no JSON object", reply[:500])

        raw_details = data.get("details") or {}
        if not isinstance(raw_details, dict):
            raise AnalysisFailedError("Requirement analysis failed: reply details were not an object", str(raw_details)[:500])

        # Fill gaps from the instruction text so generation always has parameters
        details = {**heuristic_details(instruction), **{k: v for k, v in raw_details.items() if v}}
        data["details"] = details
        data["original_instruction"] = instruction
        try:
            return RequirementAnalysis.model_validate(data)
        except ValidationError as e:
            raise AnalysisFailedError("Requirement analysis failed: reply did not match schema", str(e)) from e

    async def generate_work_plan(self, task_id: str, analysis: RequirementAnalysis) -> WorkPlan:
        """Build the ordered plan for a run. Every step starts pending."""
        goals = list(analysis.goals) or ["Create a functional and engaging game"]
        self._thinking(task_id, f"Generating work plan for: {', '.join(goals)}")

        title = analysis.details.get("title") or "Educational Game"
        readme = "\n".join(
            [f"# {title}", "", f"> {analysis.original_instruction}", "", "## Goals", ""]
            + [f"- {g}" for g in goals]
            + ["", "## Requirements", ""]
            + [f"- {r}" for r in analysis.parsed_requirements]
            + [""]
        )

        steps = [
            _step("Create project README", TaskType.CREATE_FILE, 5, ["README.md"], content=readme),
            _step("Generate game code from template", TaskType.GENERATE_GAME_CODE, 20),
            _step("Customize game configuration and assets", TaskType.CUSTOMIZE_GAME_ASSETS, 10),
            _step("Record customizations in README", TaskType.MODIFY_FILE, 5, ["README.md"]),
        ]
        steps += [_step(f"Work towards goal: {g}", TaskType.OTHER, 10) for g in goals[1:]]
        steps += [
            _step("Test the generated game", TaskType.RUN_TESTS, 10),
            _step("Final review", TaskType.REVIEW_CODE, 5),
        ]

        plan = WorkPlan(task_id=task_id, overall_goal="; ".join(goals), steps=steps)
        logger.info(f"Task {task_id}: generated plan {plan.id} with {len(plan.steps)} steps")
        self._action(task_id, "Generated work plan", {"plan_id": plan.id, "steps": len(plan.steps)})
        self._thinking(task_id, "Work plan generated.")
        return plan

    async def propose_solution(self, task_id: str, problem: ProblemDetails) -> SolutionProposal:
        """Suggest a remediation for ``problem``."""
        self._thinking(task_id, f'Thinking about a solution for problem: "{problem.description}"')

        proposal = None
        if self.uses_generator:
            try:
                reply = await self.generator.generate_text(
                    SOLUTION_PROMPT.format(description=problem.description, context=problem.context)
                )
                data = extract_json_object(reply)
                if data is not None:
                    proposal = SolutionProposal.model_validate({**data, "problem_id": problem.id})
            except (AgentError, ValidationError) as e:
                logger.warning(f"Task {task_id}: solution generation failed, using default: {e}")

        if proposal is None:
            proposal = SolutionProposal(
                problem_id=problem.id,
                proposed_solution="Inspect the failing step output, fix the affected files and re-run the plan.",
                reasoning=f"The step failed with: {problem.description}",
                estimated_effort="medium",
                confidence_score=0.5,
            )

        self._action(task_id, "Proposed a solution", proposal.model_dump(mode="json"))
        self._thinking(task_id, "Solution proposed.")
        return proposal


def _step(
    description: str,
    task_type: TaskType,
    estimated_seconds: int,
    related: list[str] | None = None,
    content: str | None = None,
) -> WorkPlanStep:
    return WorkPlanStep(
        id=f"step-{uuid.uuid4().hex[:8]}",
        description=description,
        type=task_type,
        estimated_seconds=estimated_seconds,
        related_artifacts=related or [],
        content=content,
    )
