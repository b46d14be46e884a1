"""Pytest fixtures for GAgent tests."""

import os

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Set environment before any gagent imports to avoid touching real data
os.environ.setdefault("GAGENT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GAGENT_RATE_LIMIT_ENABLED", "false")

from gagent.agent.controller import TaskController  # noqa: E402
from gagent.agent.planning import PlanningStage  # noqa: E402
from gagent.config import BUNDLED_TEMPLATES_DIR, Settings  # noqa: E402
from gagent.events.bus import EventBus  # noqa: E402
from gagent.game.generator import GenerationStage  # noqa: E402
from gagent.game.templates import TemplateCatalog  # noqa: E402
from gagent.projects.store import InMemoryProjectStore  # noqa: E402
from gagent.storage.artifacts import ArtifactStore  # noqa: E402


def drain(sub) -> list:
    """Every event currently queued on a subscription."""
    events = []
    while sub.pending():
        events.append(sub.get_nowait())
    return events


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with a temporary artifact root and no simulated delays."""
    return Settings(
        artifact_root=tmp_path / "artifacts",
        step_delay_min=0,
        step_delay_max=0,
        rate_limit_enabled=False,
        project_store="memory",
    )


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def catalog() -> TemplateCatalog:
    return TemplateCatalog.from_directory(BUNDLED_TEMPLATES_DIR)


@pytest.fixture
def projects() -> InMemoryProjectStore:
    return InMemoryProjectStore()


@pytest.fixture
def make_controller(bus, store, catalog, projects):
    """Factory for controllers sharing the fixture collaborators."""

    def _make(task_id: str = "task-1", generator=None, **kwargs) -> TaskController:
        kwargs.setdefault("step_delay_min", 0)
        kwargs.setdefault("step_delay_max", 0)
        return TaskController(
            task_id,
            bus,
            store,
            PlanningStage(bus, generator),
            GenerationStage(store, catalog, bus=bus),
            projects=projects,
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path):
    """Create a fresh file-based SQLite database for each test.

    Patches gagent.database's session factory and engine; stores read the
    factory through get_session() so they pick up the patch.
    """
    import gagent.database as db_module
    from gagent.database import Base

    original_factory = db_module.async_session_factory
    original_engine = db_module.engine

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(db_url, connect_args={"check_same_thread": False}, echo=False)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    test_factory = async_sessionmaker(test_engine, expire_on_commit=False)
    db_module.async_session_factory = test_factory
    db_module.engine = test_engine

    yield test_factory

    db_module.async_session_factory = original_factory
    db_module.engine = original_engine
    await test_engine.dispose()
