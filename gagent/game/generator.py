"""Generation stage: template + requirements -> deliverable files.

A deliverable is the template's entry HTML (title substituted), its style
and script files, a ``{kind}_config.json`` holding the game content, and a
preview-image reference when the template names one. Files are written
best-effort: a failed write is logged and left out of the deliverable.
"""

import html
import json
import logging
import re
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from gagent.agent.models import Artifact, ArtifactKind
from gagent.agent.schema import RequirementAnalysis
from gagent.errors import NoTemplateForKindError
from gagent.events.bus import EventBus, EventKind
from gagent.game.models import (
    Customizations,
    GameRequirements,
    GeneratedDeliverable,
    MatchingPair,
    QuizQuestion,
    SortableItem,
    TemplateManifest,
)
from gagent.game.templates import TemplateCatalog
from gagent.projects.models import Project
from gagent.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

STYLE_FILE = "style.css"
SCRIPT_FILE = "script.js"

_TITLE_RE = re.compile(r"<title>.*?</title>", re.IGNORECASE | re.DOTALL)


class GenerationStage:
    """Materializes deliverables from templates."""

    def __init__(
        self,
        store: ArtifactStore,
        catalog: TemplateCatalog,
        bus: EventBus | None = None,
        preview_url_prefix: str = "/previews",
        strict: bool = False,
    ):
        self.store = store
        self.catalog = catalog
        self.bus = bus
        self.preview_url_prefix = preview_url_prefix.rstrip("/")
        self.strict = strict

    def select_template(self, game_kind: str, requirements: GameRequirements | None = None) -> TemplateManifest | None:
        """First template whose id starts with ``game_kind``.

        Without a match, falls back to the first template, or raises
        NoTemplateForKindError in strict mode.
        """
        templates = self.catalog.templates()
        selected = next((t for t in templates if t.id.startswith(game_kind)), None)
        if selected is not None:
            logger.info(f'Selected template "{selected.name}" for game kind "{game_kind}"')
            return selected

        if self.strict:
            raise NoTemplateForKindError(game_kind)
        logger.warning(f"No template found for game kind: {game_kind}")
        return templates[0] if templates else None

    async def generate(
        self,
        task: Project,
        game_kind: str,
        requirements: GameRequirements,
        customizations: Customizations | None = None,
    ) -> GeneratedDeliverable | None:
        """Build and write a deliverable; returns None when no template is available."""
        template = self.select_template(game_kind, requirements)
        if template is None:
            logger.error(f"Task {task.id}: no template available for generation")
            return None

        # Template scripts fetch <kind>_config.json for their own kind
        kind = template.game_kind or game_kind
        if kind != game_kind:
            logger.info(f"Task {task.id}: building {game_kind} request as {kind} from {template.id}")

        deliverable_id = f"game-{uuid.uuid4().hex[:8]}"
        base = f"{task.id}/{deliverable_id}"
        title = requirements.title or template.name
        entry_name = template.entry_point.rsplit("/", 1)[-1] or "index.html"

        entry_html = await self.catalog.read_file(template, template.entry_point)
        if entry_html is None:
            logger.warning(f"Template HTML missing for {template.id}, using placeholder")
            entry_html = f"<!-- Error: Could not load template HTML for {template.name} -->"
        else:
            entry_html = _TITLE_RE.sub(lambda _: f"<title>{html.escape(title)}</title>", entry_html, count=1)

        css = await self.catalog.read_file(template, STYLE_FILE)
        if css is None:
            logger.warning(f"Template CSS missing for {template.id}, using fallback")
            css = f"/* Fallback CSS for {template.name} */"

        script = await self.catalog.read_file(template, SCRIPT_FILE)
        if script is None:
            logger.warning(f"Template JS missing for {template.id}, using fallback")
            script = f"// Fallback JS for {template.name}"

        config = build_config(kind, requirements)
        if customizations is not None:
            config["settings"] = customizations.to_dict()

        files: list[tuple[str, str, ArtifactKind]] = [
            (entry_name, entry_html, ArtifactKind.SOURCE),
            (STYLE_FILE, css, ArtifactKind.STYLE),
            (SCRIPT_FILE, script, ArtifactKind.SOURCE),
            (f"{kind}_config.json", json.dumps(config, indent=2, ensure_ascii=False), ArtifactKind.CONFIG),
        ]

        if template.preview_image:
            image_name = template.preview_image.rsplit("/", 1)[-1] or "preview.png"
            if template.directory is not None and (template.directory / image_name).exists():
                reference = f"[Reference to template image: {template.id}/{image_name}]"
            else:
                reference = f"Placeholder for preview image: {template.preview_image}"
            files.append((f"{image_name}.ref.txt", reference, ArtifactKind.ASSET))

        artifacts: list[Artifact] = []
        for name, content, kind in files:
            path = f"{base}/{name}"
            try:
                await self.store.write(path, content)
            except Exception as e:
                logger.error(f"Task {task.id}: failed to write {path}: {e}")
                continue
            artifact = Artifact(task_id=task.id, name=name, path=path, kind=kind, content=content)
            artifacts.append(artifact)
            if self.bus is not None:
                self.bus.publish(task.id, EventKind.ARTIFACT_CREATED, artifact=artifact.to_dict())

        entry_written = any(a.name == entry_name for a in artifacts)
        deliverable = GeneratedDeliverable(
            task_id=task.id,
            deliverable_id=deliverable_id,
            base_template_id=template.id,
            game_kind=kind,
            title=title,
            artifacts=tuple(artifacts),
            preview_entry_point=f"{base}/{entry_name}" if entry_written else None,
            preview_url=f"{self.preview_url_prefix}/{base}/{entry_name}" if entry_written else None,
            description=requirements.description or template.description,
            tags=tuple(template.tags),
        )
        logger.info(
            f'Task {task.id}: generated "{title}" from {template.id} '
            f"({len(artifacts)}/{len(files)} files)"
        )
        return deliverable

    async def customize(self, deliverable: GeneratedDeliverable, customizations: Customizations) -> Artifact:
        """Apply customizations to a deliverable's config file."""
        path = deliverable.config_path
        config = json.loads(await self.store.read(path))

        config["settings"] = customizations.to_dict()
        if customizations.item_count:
            for key in ("questions", "items"):
                if isinstance(config.get(key), list):
                    config[key] = config[key][: customizations.item_count]

        content = json.dumps(config, indent=2, ensure_ascii=False)
        await self.store.write(path, content)

        current = deliverable.find("_config.json")
        artifact = replace(current, content=content, updated_at=datetime.utcnow()) if current else Artifact(
            task_id=deliverable.task_id,
            name=path.rsplit("/", 1)[-1],
            path=path,
            kind=ArtifactKind.CONFIG,
            content=content,
        )
        if self.bus is not None:
            self.bus.publish(
                deliverable.task_id,
                EventKind.ARTIFACT_UPDATED,
                artifact_id=artifact.id,
                changes={"path": path, "settings": config["settings"]},
            )
        return artifact


# =============================================================================
# Requirement mapping
# =============================================================================

def build_config(game_kind: str, requirements: GameRequirements) -> dict[str, Any]:
    """Game configuration for ``game_kind``."""
    config: dict[str, Any] = {"title": requirements.title, "instruction": requirements.description}
    if game_kind == "quiz":
        config["questions"] = [q.to_dict() for q in requirements.questions]
    elif game_kind == "matching":
        config["items"] = [
            {"id": f"pair{i}", "term": p.term, "definition": p.definition}
            for i, p in enumerate(requirements.pairs)
        ]
    elif game_kind == "sorting":
        config["items"] = [item.to_dict() for item in requirements.items]
    return config


def build_requirements(
    analysis: RequirementAnalysis,
    project: Project | None = None,
) -> tuple[GameRequirements, Customizations]:
    """Derive game content from an analysis.

    Explicit questions, pairs or items in ``analysis.details`` win;
    otherwise placeholder content about the topic is sized by item count.
    """
    details = analysis.details
    topic = details.get("topic") or (project.name if project else None) or "the topic"
    count = _as_count(details.get("item_count"))
    title = details.get("title") or (project.name if project else None) or "Educational Game"
    description = (project.description if project and project.description else None) or analysis.original_instruction

    questions = _parse_questions(details.get("questions")) or [
        QuizQuestion(
            question=f"Question {i} about {topic}?",
            options=[f"Answer {i}A", f"Answer {i}B", f"Answer {i}C", f"Answer {i}D"],
            answer=f"Answer {i}A",
        )
        for i in range(1, count + 1)
    ]
    pairs = _parse_pairs(details.get("pairs")) or [
        MatchingPair(term=f"{topic.title()} term {i}", definition=f"Definition of {topic} term {i}")
        for i in range(1, count + 1)
    ]
    items = _parse_items(details.get("items")) or [
        SortableItem(id=f"item{i}", text=f"{topic.title()} step {i}", correct_order=i)
        for i in range(1, count + 1)
    ]

    requirements = GameRequirements(
        title=title,
        description=description,
        topic=topic,
        questions=questions,
        pairs=pairs,
        items=items,
    )
    customizations = Customizations(
        difficulty=str(details.get("difficulty") or "medium"),
        item_count=count,
    )
    return requirements, customizations


def _as_count(value: Any, default: int = 3) -> int:
    try:
        return max(1, min(int(value), 20))
    except (TypeError, ValueError):
        return default


def _parse_questions(raw: Any) -> list[QuizQuestion]:
    questions = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, dict):
            continue
        text = entry.get("question") or entry.get("text")
        options = [str(o) for o in entry.get("options") or []]
        answer = entry.get("answer", entry.get("correct_answer"))
        if isinstance(answer, int) and 0 <= answer < len(options):
            answer = options[answer]
        if text and options and answer is not None:
            questions.append(QuizQuestion(question=str(text), options=options, answer=str(answer)))
    return questions


def _parse_pairs(raw: Any) -> list[MatchingPair]:
    pairs = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, dict):
            continue
        term = entry.get("term") or entry.get("item1")
        definition = entry.get("definition") or entry.get("item2")
        if term and definition:
            pairs.append(MatchingPair(term=str(term), definition=str(definition)))
    return pairs


def _parse_items(raw: Any) -> list[SortableItem]:
    items = []
    for i, entry in enumerate(raw if isinstance(raw, list) else [], start=1):
        text = entry.get("text") if isinstance(entry, dict) else entry
        if text:
            items.append(SortableItem(id=f"item{i}", text=str(text), correct_order=i))
    return items
