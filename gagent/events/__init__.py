"""Event fan-out for live agent updates."""

from gagent.events.bus import AgentEvent, EventBus, EventKind, Subscription

__all__ = ["AgentEvent", "EventBus", "EventKind", "Subscription"]
