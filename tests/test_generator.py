"""Tests for the template catalog and deliverable generation."""

import json

import pytest

from gagent.agent.planning import heuristic_analysis
from gagent.errors import NoTemplateForKindError
from gagent.events.bus import EventKind
from gagent.game.generator import GenerationStage, build_config, build_requirements
from gagent.game.models import Customizations, GameRequirements, QuizQuestion
from gagent.game.templates import TemplateCatalog, load_manifest
from gagent.game.tester import DeliverableTester
from gagent.projects.models import GameKind, Project
from tests.conftest import drain


@pytest.fixture
def project() -> Project:
    return Project(id="task-1", name="Planets", description="Learn the planets", game_kind=GameKind.QUIZ)


@pytest.fixture
def generation(store, catalog, bus) -> GenerationStage:
    return GenerationStage(store, catalog, bus=bus)


def _quiz_requirements(title: str = "Planet Quiz") -> GameRequirements:
    return GameRequirements(
        title=title,
        description="Learn the planets",
        questions=[QuizQuestion(question="Largest planet?", options=["Jupiter", "Mars"], answer="Jupiter")],
    )


class TestTemplateCatalog:
    """Tests for manifest loading."""

    def test_bundled_templates(self, catalog):
        """Test bundled templates load in directory order."""
        assert [t.id for t in catalog.templates()] == ["matching-template", "quiz-template", "sorting-template"]
        quiz = catalog.get("quiz-template")
        assert quiz.game_kind == "quiz"
        assert quiz.entry_point == "index.html"
        assert quiz.directory is not None

    def test_invalid_manifest_skipped(self, tmp_path):
        """Test directories with broken manifests are skipped."""
        (tmp_path / "good").mkdir()
        (tmp_path / "good" / "manifest.yaml").write_text("id: good-template\nname: Good\n")
        (tmp_path / "bad").mkdir()
        (tmp_path / "bad" / "manifest.yaml").write_text("name: [unclosed\n")
        (tmp_path / "noid").mkdir()
        (tmp_path / "noid" / "manifest.yaml").write_text("name: No Id\n")

        catalog = TemplateCatalog.from_directory(tmp_path)
        assert [t.id for t in catalog.templates()] == ["good-template"]

    def test_load_manifest_reports_missing_fields(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text("description: nothing else\n")
        manifest, validation = load_manifest(path)
        assert manifest is None
        assert not validation.valid
        assert any("'id'" in e for e in validation.errors)

    @pytest.mark.asyncio
    async def test_read_file(self, catalog):
        quiz = catalog.get("quiz-template")
        assert "<body" in await catalog.read_file(quiz, "index.html")
        assert await catalog.read_file(quiz, "missing.txt") is None


class TestSelectTemplate:
    def test_prefix_match(self, generation):
        assert generation.select_template("sorting").id == "sorting-template"

    def test_fallback_to_first(self, generation):
        """Test an unknown kind falls back to the first template."""
        assert generation.select_template("puzzle").id == "matching-template"

    def test_strict_raises(self, store, catalog):
        strict = GenerationStage(store, catalog, strict=True)
        with pytest.raises(NoTemplateForKindError):
            strict.select_template("puzzle")

    def test_empty_catalog(self, store):
        assert GenerationStage(store, TemplateCatalog()).select_template("quiz") is None


class TestGenerate:
    """Tests for GenerationStage.generate."""

    @pytest.mark.asyncio
    async def test_generates_bundle(self, generation, project, store, bus):
        """Test the bundle files, preview url and artifactCreated events."""
        async with bus.subscribe("task-1") as sub:
            deliverable = await generation.generate(project, "quiz", _quiz_requirements(), Customizations(item_count=1))
            events = drain(sub)

        names = sorted(a.name for a in deliverable.artifacts)
        assert names == ["index.html", "preview.png.ref.txt", "quiz_config.json", "script.js", "style.css"]
        assert deliverable.base_template_id == "quiz-template"
        assert deliverable.deliverable_id.startswith("game-")
        base = f"task-1/{deliverable.deliverable_id}"
        assert deliverable.preview_entry_point == f"{base}/index.html"
        assert deliverable.preview_url == f"/previews/{base}/index.html"
        assert all(a.path.startswith(base + "/") for a in deliverable.artifacts)

        created = [e for e in events if e.kind == EventKind.ARTIFACT_CREATED]
        assert len(created) == len(deliverable.artifacts)

        html = await store.read(f"{base}/index.html")
        assert "<title>Planet Quiz</title>" in html

        config = json.loads(await store.read(deliverable.config_path))
        assert config["title"] == "Planet Quiz"
        assert config["questions"][0]["answer"] == "Jupiter"
        assert config["settings"]["item_count"] == 1

    @pytest.mark.asyncio
    async def test_fallback_uses_selected_template_kind(self, generation, project, store):
        """Test an unmatched kind produces a config the fallback template's script can load."""
        requirements, _ = build_requirements(heuristic_analysis("a memory game about cells"), project)

        deliverable = await generation.generate(project, "memory", requirements)

        assert deliverable.base_template_id == "matching-template"
        assert deliverable.game_kind == "matching"
        names = {a.name for a in deliverable.artifacts}
        assert "matching_config.json" in names
        assert "memory_config.json" not in names
        script = await store.read(f"task-1/{deliverable.deliverable_id}/script.js")
        assert "matching_config.json" in script

        config = json.loads(await store.read(deliverable.config_path))
        assert len(config["items"]) == 3
        results = await DeliverableTester(store).run_tests(deliverable)
        assert "config-items-check" in [r.details["test_case_id"] for r in results]
        assert all(r.passed for r in results)

    @pytest.mark.asyncio
    async def test_title_escaped(self, generation, project, store):
        deliverable = await generation.generate(project, "quiz", _quiz_requirements("<b>Q&A</b>"))
        html = await store.read(deliverable.preview_entry_point)
        assert "<title>&lt;b&gt;Q&amp;A&lt;/b&gt;</title>" in html

    @pytest.mark.asyncio
    async def test_no_preview_reference_without_image(self, generation, project):
        deliverable = await generation.generate(project, "sorting", GameRequirements(title="Order"))
        assert deliverable.find(".ref.txt") is None

    @pytest.mark.asyncio
    async def test_missing_template_files_use_placeholders(self, tmp_path, store, project):
        """Test a template with only a manifest still produces a bundle."""
        (tmp_path / "tpl" / "bare").mkdir(parents=True)
        (tmp_path / "tpl" / "bare" / "manifest.yaml").write_text("id: quiz-bare\nname: Bare\n")
        generation = GenerationStage(store, TemplateCatalog.from_directory(tmp_path / "tpl"))

        deliverable = await generation.generate(project, "quiz", _quiz_requirements())

        assert len(deliverable.artifacts) == 4
        assert "Fallback CSS" in deliverable.find("style.css").content
        assert "Could not load template HTML" in deliverable.find("index.html").content

    @pytest.mark.asyncio
    async def test_list_item(self, generation, project):
        deliverable = await generation.generate(project, "quiz", _quiz_requirements())
        item = deliverable.to_list_item()
        assert item["id"] == deliverable.deliverable_id
        assert item["name"] == "Planet Quiz"
        assert item["isGenerated"] is True
        assert item["previewUrl"] == deliverable.preview_url
        assert "quiz" in item["tags"]

    @pytest.mark.asyncio
    async def test_customize_rewrites_config(self, generation, project, store, bus):
        """Test customizations trim content and publish artifactUpdated."""
        requirements, _ = build_requirements(heuristic_analysis("a quiz about rivers with 5 questions"), project)
        deliverable = await generation.generate(project, "quiz", requirements)

        async with bus.subscribe("task-1") as sub:
            artifact = await generation.customize(deliverable, Customizations(difficulty="hard", item_count=2))
            events = drain(sub)

        config = json.loads(await store.read(deliverable.config_path))
        assert len(config["questions"]) == 2
        assert config["settings"]["difficulty"] == "hard"
        assert artifact.path == deliverable.config_path
        assert events[0].kind == EventKind.ARTIFACT_UPDATED
        assert events[0].data["artifact_id"] == deliverable.find("_config.json").id


class TestBuildRequirements:
    """Tests for analysis -> game content mapping."""

    def test_placeholders_sized_by_count(self):
        requirements, customizations = build_requirements(heuristic_analysis("a quiz about rivers with 4 questions"))
        assert len(requirements.questions) == 4
        assert "rivers" in requirements.questions[0].question
        assert customizations.item_count == 4

    def test_explicit_content_wins(self):
        analysis = heuristic_analysis("a quiz").model_copy(update={"details": {
            "game_kind": "quiz",
            "questions": [{"question": "2+2?", "options": ["3", "4"], "answer": 1}],
        }})
        requirements, _ = build_requirements(analysis)
        assert requirements.questions[0].question == "2+2?"
        assert requirements.questions[0].answer == "4"

    def test_project_name_used_for_title(self, project):
        analysis = heuristic_analysis("build a game").model_copy(update={"details": {}})
        requirements, _ = build_requirements(analysis, project)
        assert requirements.title == "Planets"
        assert requirements.description == "Learn the planets"

    def test_build_config_matching(self):
        requirements, _ = build_requirements(heuristic_analysis("match terms about cells"))
        config = build_config("matching", requirements)
        assert config["items"][0]["id"] == "pair0"
        assert {"term", "definition"} <= set(config["items"][0])
