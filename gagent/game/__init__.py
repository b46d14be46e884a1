"""Game templates, deliverable generation and deliverable tests."""

from gagent.game.generator import GenerationStage, build_config, build_requirements
from gagent.game.models import Customizations, GameRequirements, GeneratedDeliverable, TemplateManifest
from gagent.game.templates import TemplateCatalog
from gagent.game.tester import DeliverableTester, TestResult

__all__ = [
    "Customizations",
    "DeliverableTester",
    "GameRequirements",
    "GeneratedDeliverable",
    "GenerationStage",
    "TemplateCatalog",
    "TemplateManifest",
    "TestResult",
    "build_config",
    "build_requirements",
]
