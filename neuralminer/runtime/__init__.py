"""Runtime services shared by the coordinator and the recovery engine."""

from neuralminer.runtime.event_bus import AgentEvent, EventBus, EventHandler, EventType

__all__ = ["AgentEvent", "EventBus", "EventHandler", "EventType"]
