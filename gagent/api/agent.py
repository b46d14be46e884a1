"""Agent run-control API.

Control calls return the task state right after the call was applied; the
pipeline itself runs in the background. Live updates are streamed over SSE
or a WebSocket.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from gagent.agent.registry import ControllerRegistry
from gagent.api.deps import checked_task_id, get_bus, get_registry
from gagent.api.models import ControlAction, ControlRequest, ControlResponse
from gagent.events.bus import AgentEvent, EventBus, EventKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent")

HEARTBEAT_SECONDS = 15.0


def apply_control(registry: ControllerRegistry, request: ControlRequest) -> ControlResponse:
    """Dispatch one control request to the registry."""
    if request.action == ControlAction.START:
        state = registry.start(request.task_id, request.instruction)
    elif request.action == ControlAction.PAUSE:
        state = registry.pause(request.task_id)
    elif request.action == ControlAction.RESUME:
        state = registry.resume(request.task_id)
    else:
        state = registry.stop(request.task_id)
    return ControlResponse(task_id=request.task_id, action=request.action, state=state.to_dict())


@router.post("/control", response_model=ControlResponse)
async def control(
    request: ControlRequest,
    registry: ControllerRegistry = Depends(get_registry),
) -> ControlResponse:
    """Start, pause, resume or stop the agent for a task."""
    checked_task_id(request.task_id)
    logger.info(f"Control {request.action.value} for task {request.task_id}")
    return apply_control(registry, request)


@router.get("/status")
async def status(
    task_id: str = Query(alias="taskId"),
    registry: ControllerRegistry = Depends(get_registry),
) -> dict:
    """Current TaskState of a task."""
    checked_task_id(task_id)
    return registry.get_state(task_id).to_dict()


async def event_stream(
    bus: EventBus,
    registry: ControllerRegistry,
    task_id: str,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    heartbeat: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    """SSE frames for a task: the current state first, then live events."""
    async with bus.subscribe(task_id) as sub:
        initial = AgentEvent(kind=EventKind.STATE, task_id=task_id, data={"state": registry.get_state(task_id).to_dict()})
        yield initial.to_sse()
        while True:
            try:
                event = await asyncio.wait_for(sub.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    break
                yield ": heartbeat\n\n"
                continue
            yield event.to_sse()


@router.get("/{task_id}/events")
async def events(
    task_id: str,
    request: Request,
    registry: ControllerRegistry = Depends(get_registry),
    bus: EventBus = Depends(get_bus),
) -> StreamingResponse:
    """Stream task events as Server-Sent Events.

    Usage:
        const es = new EventSource('/api/agent/my-task/events');
        es.addEventListener('state', (e) => render(JSON.parse(e.data)));
    """
    checked_task_id(task_id)
    return StreamingResponse(
        event_stream(bus, registry, task_id, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/{task_id}/ws")
async def websocket_events(websocket: WebSocket, task_id: str) -> None:
    """Bidirectional channel: events out, control messages in.

    Incoming messages are JSON objects ``{"action": ..., "instruction": ...}``.
    """
    registry: ControllerRegistry = websocket.app.state.registry
    bus: EventBus = websocket.app.state.bus
    try:
        checked_task_id(task_id)
    except Exception:
        await websocket.close(code=4400, reason="Invalid task id")
        return

    await websocket.accept()
    async with bus.subscribe(task_id) as sub:
        initial = AgentEvent(kind=EventKind.STATE, task_id=task_id, data={"state": registry.get_state(task_id).to_dict()})
        await websocket.send_text(initial.to_json())

        async def forward() -> None:
            async for event in sub:
                await websocket.send_text(event.to_json())

        async def receive() -> None:
            while True:
                raw = await websocket.receive_text()
                try:
                    payload = json.loads(raw)
                    request = ControlRequest(taskId=task_id, **payload)
                except (json.JSONDecodeError, TypeError, ValidationError) as e:
                    await websocket.send_text(json.dumps({"kind": "error", "task_id": task_id, "data": {"error": str(e)}}))
                    continue
                apply_control(registry, request)

        tasks = [asyncio.create_task(forward()), asyncio.create_task(receive())]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning(f"WebSocket for task {task_id} closed with error: {exc}")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
    logger.debug(f"WebSocket for task {task_id} closed")
