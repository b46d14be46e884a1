"""Template catalog loaded from ``manifest.yaml`` directories."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from gagent.game.models import TemplateManifest

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.yaml"
REQUIRED_FIELDS = ["id", "name"]


@dataclass
class ManifestValidation:
    path: Path
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def load_manifest(path: Path) -> tuple[TemplateManifest | None, ManifestValidation]:
    """Parse and validate one manifest file."""
    result = ManifestValidation(path=path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        result.errors.append(f"Invalid YAML syntax: {e}")
        return None, result
    except OSError as e:
        result.errors.append(f"Could not read file: {e}")
        return None, result

    if not isinstance(data, dict):
        result.errors.append("Manifest must be a YAML mapping")
        return None, result

    for name in REQUIRED_FIELDS:
        if not data.get(name):
            result.errors.append(f"Required field '{name}' is missing or empty")
    if data.get("tags") is not None and not isinstance(data["tags"], list):
        result.errors.append("tags must be a list of strings")
    if not result.valid:
        return None, result

    return TemplateManifest.from_dict(data, directory=path.parent), result


class TemplateCatalog:
    """Ordered set of templates available to the generation stage."""

    def __init__(self, templates: list[TemplateManifest] | None = None):
        self._templates: list[TemplateManifest] = list(templates or [])

    @classmethod
    def from_directory(cls, root: Path) -> "TemplateCatalog":
        """Load every ``*/manifest.yaml`` under ``root``, sorted by directory name."""
        if not root.exists():
            logger.info(f"Templates directory does not exist: {root}")
            return cls()

        templates = []
        for path in sorted(root.glob(f"*/{MANIFEST_NAME}")):
            manifest, validation = load_manifest(path)
            if manifest is None:
                for error in validation.errors:
                    logger.error(f"Template {path}: {error}")
                continue
            templates.append(manifest)
            logger.debug(f"Loaded template: {manifest.id} from {path.parent}")

        logger.info(f"Loaded {len(templates)} templates from {root}")
        return cls(templates)

    def __len__(self) -> int:
        return len(self._templates)

    def templates(self) -> list[TemplateManifest]:
        return list(self._templates)

    def get(self, template_id: str) -> TemplateManifest | None:
        return next((t for t in self._templates if t.id == template_id), None)

    async def read_file(self, template: TemplateManifest, name: str) -> str | None:
        """Text of a template file, or None when it is missing."""
        if template.directory is None:
            return None
        path = template.directory / name
        if not path.is_file():
            return None
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
