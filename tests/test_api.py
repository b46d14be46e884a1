"""Tests for the HTTP and WebSocket API."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from gagent.agent.registry import build_registry
from gagent.api.agent import event_stream
from gagent.errors import GeneratorCallError
from gagent.events.bus import EventKind
from gagent.llm.text_generator import UnavailableTextGenerator
from gagent.main import create_app
from gagent.projects.store import InMemoryProjectStore

QUIZ_INSTRUCTION = "create a quiz about the solar system with 3 questions"


@pytest.fixture
def client(settings):
    app = create_app(settings, generator=UnavailableTextGenerator(), projects=InMemoryProjectStore())
    with TestClient(app) as test_client:
        yield test_client


def wait_for_status(client, task_id: str, statuses: set[str], timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        state = client.get("/api/agent/status", params={"taskId": task_id}).json()
        if state["status"] in statuses or time.monotonic() > deadline:
            return state
        time.sleep(0.02)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["templates"] == 3
        assert data["generator_available"] is False
        assert data["running_tasks"] == 0


class TestAgentControl:
    """Tests for /api/agent/control and /api/agent/status."""

    def test_status_of_new_task_is_idle(self, client):
        response = client.get("/api/agent/status", params={"taskId": "task-1"})
        assert response.status_code == 200
        assert response.json()["status"] == "idle"
        assert response.json()["progress_percent"] == 0

    def test_start_runs_to_completion(self, client):
        """Test start returns a thinking snapshot and the run completes in the background."""
        response = client.post(
            "/api/agent/control",
            json={"taskId": "task-1", "action": "start", "instruction": QUIZ_INSTRUCTION},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "start"
        assert data["state"]["status"] == "thinking"

        state = wait_for_status(client, "task-1", {"completed", "error"})
        assert state["status"] == "completed"
        assert state["progress_percent"] == 100

    def test_generated_game_is_served(self, client):
        client.post("/api/agent/control", json={"taskId": "task-1", "action": "start", "instruction": QUIZ_INSTRUCTION})
        assert wait_for_status(client, "task-1", {"completed", "error"})["status"] == "completed"

        response = client.get("/previews/task-1/README.md")
        assert response.status_code == 200
        assert "Solar System Quiz" in response.text

    def test_start_requires_instruction(self, client):
        response = client.post("/api/agent/control", json={"taskId": "task-1", "action": "start"})
        assert response.status_code == 422

    def test_unknown_action_rejected(self, client):
        response = client.post("/api/agent/control", json={"taskId": "task-1", "action": "explode"})
        assert response.status_code == 422

    def test_invalid_task_id(self, client):
        response = client.post("/api/agent/control", json={"taskId": "../etc", "action": "stop"})
        assert response.status_code == 400

        response = client.get("/api/agent/status", params={"taskId": "a/b"})
        assert response.status_code == 400

    def test_pause_when_idle_is_warning(self, client):
        response = client.post("/api/agent/control", json={"taskId": "task-1", "action": "pause"})
        assert response.status_code == 200
        state = response.json()["state"]
        assert state["status"] == "idle"
        assert state["log_entries"][-1]["level"] == "warning"

    def test_clarification_then_resume(self, client):
        """Test a clarification pause and a resume through the control endpoint."""
        client.post(
            "/api/agent/control",
            json={"taskId": "task-1", "action": "start", "instruction": "a complex quiz about rivers"},
        )
        state = wait_for_status(client, "task-1", {"paused", "completed", "error"})
        assert state["status"] == "paused"

        response = client.post("/api/agent/control", json={"taskId": "task-1", "action": "resume"})
        assert response.json()["state"]["status"] == "thinking"
        assert wait_for_status(client, "task-1", {"completed", "error"})["status"] == "completed"

    def test_stop_resets(self, client):
        client.post("/api/agent/control", json={"taskId": "task-1", "action": "start", "instruction": "a quiz"})
        response = client.post("/api/agent/control", json={"taskId": "task-1", "action": "stop"})
        state = response.json()["state"]
        assert state["status"] == "idle"
        assert state["progress_percent"] == 0
        assert state["current_task_summary"] == ""


class TestProjectsApi:
    """Tests for /api/projects."""

    def test_crud(self, client):
        response = client.post(
            "/api/projects",
            json={"id": "task-1", "name": "Planets", "game_kind": "quiz", "tags": ["space"]},
        )
        assert response.status_code == 201
        assert response.json()["status"] == "planning"

        assert client.get("/api/projects/task-1").json()["name"] == "Planets"
        assert [p["id"] for p in client.get("/api/projects").json()] == ["task-1"]

        response = client.patch("/api/projects/task-1", json={"name": "Moons"})
        assert response.status_code == 200
        assert response.json()["name"] == "Moons"
        assert response.json()["game_kind"] == "quiz"

        assert client.delete("/api/projects/task-1").json() == {"status": "deleted"}
        assert client.get("/api/projects/task-1").status_code == 404

    def test_generated_id(self, client):
        response = client.post("/api/projects", json={"name": "No id"})
        assert response.json()["id"].startswith("proj-")

    def test_duplicate_id_conflict(self, client):
        client.post("/api/projects", json={"id": "task-1", "name": "A"})
        response = client.post("/api/projects", json={"id": "task-1", "name": "B"})
        assert response.status_code == 409

    def test_invalid_id(self, client):
        response = client.post("/api/projects", json={"id": "../x", "name": "A"})
        assert response.status_code == 400

    def test_missing_project(self, client):
        assert client.patch("/api/projects/nope", json={"name": "x"}).status_code == 404
        assert client.delete("/api/projects/nope").status_code == 404

    def test_run_updates_project(self, client):
        """Test a completed run is mirrored onto the project record."""
        client.post("/api/projects", json={"id": "task-1", "name": "Cells", "game_kind": "matching"})
        client.post("/api/agent/control", json={"taskId": "task-1", "action": "start", "instruction": "a game about cells"})
        wait_for_status(client, "task-1", {"completed", "error"})

        project = client.get("/api/projects/task-1").json()
        assert project["status"] == "completed"
        assert project["progress_percent"] == 100


class TestTemplatesAndGenerator:
    def test_templates(self, client):
        templates = client.get("/api/templates").json()
        assert [t["id"] for t in templates] == ["matching-template", "quiz-template", "sorting-template"]
        assert templates[1]["game_kind"] == "quiz"

    def test_ai_status(self, client):
        assert client.get("/api/ai/status").json() == {"generator": "UnavailableTextGenerator", "available": False}

    def test_generate_without_backend(self, client):
        """Test an unconfigured generator maps to 503 with the error code."""
        response = client.post("/api/ai/generate", json={"prompt": "hello"})
        assert response.status_code == 503
        assert response.json()["code"] == "GeneratorUnavailable"

    def test_generate_call_failure(self, settings):
        generator = MagicMock()
        generator.name = "mock"
        generator.is_available.return_value = True
        generator.generate_text = AsyncMock(side_effect=GeneratorCallError("quota exceeded"))
        app = create_app(settings, generator=generator, projects=InMemoryProjectStore())

        with TestClient(app) as client:
            response = client.post("/api/ai/generate", json={"prompt": "hello"})

        assert response.status_code == 502
        assert response.json()["error"] == "quota exceeded"

    def test_generate_success(self, settings):
        generator = MagicMock()
        generator.name = "mock"
        generator.is_available.return_value = True
        generator.generate_text = AsyncMock(return_value="Hi there")
        app = create_app(settings, generator=generator, projects=InMemoryProjectStore())

        with TestClient(app) as client:
            response = client.post("/api/ai/generate", json={"prompt": "hello"})

        assert response.json() == {"text": "Hi there", "generator": "mock"}


class TestWebSocket:
    def test_initial_state_and_control(self, client):
        """Test the socket sends the current state, then events for a start message."""
        with client.websocket_connect("/api/agent/task-1/ws") as ws:
            first = ws.receive_json()
            assert first["kind"] == "state"
            assert first["data"]["state"]["status"] == "idle"

            ws.send_text(json.dumps({"action": "stop"}))
            kinds = set()
            for _ in range(5):
                message = ws.receive_json()
                kinds.add(message["kind"])
                if message["kind"] == "state":
                    break
            assert "state" in kinds

    def test_bad_message_reports_error(self, client):
        with client.websocket_connect("/api/agent/task-1/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["kind"] == "error"


class TestEventStream:
    """Tests for the SSE generator."""

    @pytest.mark.asyncio
    async def test_initial_state_then_events(self, settings, bus, store, catalog):
        registry = build_registry(settings, bus, store, catalog)
        stream = event_stream(bus, registry, "task-1", heartbeat=5)

        first = await stream.__anext__()
        assert first.startswith("event: state\n")
        payload = json.loads(first.split("data: ", 1)[1])
        assert payload["data"]["state"]["status"] == "idle"

        bus.publish("task-1", EventKind.LOG, message="hello")
        second = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert second.startswith("event: log\n")
        await stream.aclose()
        assert bus.subscriber_count("task-1") == 0

    @pytest.mark.asyncio
    async def test_heartbeat_and_disconnect(self, settings, bus, store, catalog):
        registry = build_registry(settings, bus, store, catalog)
        disconnected = AsyncMock(side_effect=[False, True])
        stream = event_stream(bus, registry, "task-1", is_disconnected=disconnected, heartbeat=0.01)

        await stream.__anext__()
        assert await stream.__anext__() == ": heartbeat\n\n"
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
