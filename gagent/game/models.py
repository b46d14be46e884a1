"""Data models for templates, requirements and generated deliverables."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from gagent.agent.models import Artifact


@dataclass
class TemplateManifest:
    """A template's ``manifest.yaml`` plus where it lives."""

    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    entry_point: str = "index.html"
    game_kind: str | None = None
    preview_image: str | None = None
    tags: list[str] = field(default_factory=list)
    author: str | None = None
    directory: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], directory: Path | None = None) -> "TemplateManifest":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            version=str(data.get("version", "1.0.0")),
            entry_point=data.get("entry_point", "index.html"),
            game_kind=data.get("game_kind"),
            preview_image=data.get("preview_image"),
            tags=list(data.get("tags") or []),
            author=data.get("author"),
            directory=directory,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "entry_point": self.entry_point,
            "game_kind": self.game_kind,
            "preview_image": self.preview_image,
            "tags": self.tags,
            "author": self.author,
        }


@dataclass
class QuizQuestion:
    question: str
    options: list[str]
    answer: str

    def to_dict(self) -> dict[str, Any]:
        return {"question": self.question, "options": self.options, "answer": self.answer}


@dataclass
class MatchingPair:
    term: str
    definition: str


@dataclass
class SortableItem:
    id: str
    text: str
    correct_order: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "correct_order": self.correct_order}


@dataclass
class GameRequirements:
    """Content the generated game is filled with."""

    title: str
    description: str | None = None
    topic: str | None = None
    questions: list[QuizQuestion] = field(default_factory=list)
    pairs: list[MatchingPair] = field(default_factory=list)
    items: list[SortableItem] = field(default_factory=list)


@dataclass
class Customizations:
    difficulty: str = "medium"
    item_count: int | None = None
    shuffle: bool = True
    time_limit_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "difficulty": self.difficulty,
            "item_count": self.item_count,
            "shuffle": self.shuffle,
            "time_limit_seconds": self.time_limit_seconds,
        }


@dataclass(frozen=True)
class GeneratedDeliverable:
    """The artifact bundle produced by one generation request."""

    task_id: str
    deliverable_id: str
    base_template_id: str
    game_kind: str
    title: str
    artifacts: tuple[Artifact, ...]
    preview_entry_point: str | None = None
    preview_url: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def config_path(self) -> str:
        return f"{self.task_id}/{self.deliverable_id}/{self.game_kind}_config.json"

    def find(self, suffix: str) -> Artifact | None:
        return next((a for a in self.artifacts if a.name.endswith(suffix)), None)

    def to_list_item(self) -> dict[str, Any]:
        """Summary used by game listings."""
        return {
            "id": self.deliverable_id,
            "name": self.title,
            "description": self.description,
            "entryPoint": self.preview_entry_point,
            "previewUrl": self.preview_url,
            "tags": list(self.tags),
            "isGenerated": True,
            "generatedAt": self.generated_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "deliverable_id": self.deliverable_id,
            "base_template_id": self.base_template_id,
            "game_kind": self.game_kind,
            "title": self.title,
            "artifacts": [a.to_dict(include_content=False) for a in self.artifacts],
            "preview_entry_point": self.preview_entry_point,
            "preview_url": self.preview_url,
            "generated_at": self.generated_at.isoformat(),
        }
