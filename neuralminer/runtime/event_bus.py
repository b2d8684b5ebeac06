"""
Event Bus - Pub/sub for run lifecycle and failure notifications.

Publishers:
- Coordinator (stream "coordinator"): run/node lifecycle, critiques,
  plan adjustments, edge traversals
- RecoveryManager (stream "recovery"): agent failures and global
  threshold breaches

Handlers are async callables. A handler that raises is logged and never
affects the publisher.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"

    # Peer review and routing
    CRITIQUE_RECEIVED = "critique_received"
    PLAN_ADJUSTED = "plan_adjusted"
    EDGE_TRAVERSED = "edge_traversed"

    # Recovery
    AGENT_FAILURE = "agent_failure"
    FAILURE_THRESHOLD_EXCEEDED = "failure_threshold_exceeded"

    # Custom events
    CUSTOM = "custom"


@dataclass
class AgentEvent:
    """An event in the orchestration core."""

    type: EventType
    stream_id: str
    node_id: str | None = None  # Node or failure origin that emitted this event
    run_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    correlation_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "stream_id": self.stream_id,
            "node_id": self.node_id,
            "run_id": self.run_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


# Type for event handlers
EventHandler = Callable[[AgentEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_stream: str | None = None  # Only receive events from this stream
    filter_node: str | None = None  # Only receive events from this node/origin
    filter_run: str | None = None  # Only receive events from this run


class EventBus:
    """
    Async pub/sub event bus.

    Example:
        bus = EventBus()

        async def on_run_failed(event: AgentEvent):
            print(f"Run {event.run_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.RUN_FAILED], handler=on_run_failed)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[AgentEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_stream: str | None = None,
        filter_node: str | None = None,
        filter_run: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_stream=filter_stream,
            filter_node=filter_node,
            filter_run=filter_run,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")

        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: AgentEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            sub.handler for sub in list(self._subscriptions.values()) if self._matches(sub, event)
        ]

        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: AgentEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_stream and subscription.filter_stream != event.stream_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: AgentEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(
        self,
        stream_id: str,
        run_id: str,
        graph_id: str,
        keyword: str,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.RUN_STARTED,
                stream_id=stream_id,
                run_id=run_id,
                data={"graph_id": graph_id, "keyword": keyword},
            )
        )

    async def emit_run_completed(
        self,
        stream_id: str,
        run_id: str,
        metrics: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.RUN_COMPLETED,
                stream_id=stream_id,
                run_id=run_id,
                data={"metrics": metrics or {}},
            )
        )

    async def emit_run_failed(
        self,
        stream_id: str,
        run_id: str,
        error: str,
        node_id: str | None = None,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.RUN_FAILED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
                data={"error": error},
            )
        )

    async def emit_node_started(self, stream_id: str, node_id: str, run_id: str) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_STARTED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
            )
        )

    async def emit_node_completed(
        self,
        stream_id: str,
        node_id: str,
        run_id: str,
        status: str,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_COMPLETED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
                data={"status": status},
            )
        )

    async def emit_node_failed(
        self,
        stream_id: str,
        node_id: str,
        run_id: str,
        error: str,
        optional: bool,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_FAILED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
                data={"error": error, "optional": optional},
            )
        )

    async def emit_critique_received(
        self,
        stream_id: str,
        node_id: str,
        run_id: str,
        from_agent: str,
        severity: int,
        accepted: bool,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.CRITIQUE_RECEIVED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
                data={"from": from_agent, "severity": severity, "accepted": accepted},
            )
        )

    async def emit_plan_adjusted(
        self,
        stream_id: str,
        node_id: str,
        run_id: str,
        kind: str,
        target: str,
        reason: str,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.PLAN_ADJUSTED,
                stream_id=stream_id,
                node_id=node_id,
                run_id=run_id,
                data={"kind": kind, "target": target, "reason": reason},
            )
        )

    async def emit_edge_traversed(
        self,
        stream_id: str,
        source_node: str,
        target_node: str,
        run_id: str,
        edge_id: str = "",
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.EDGE_TRAVERSED,
                stream_id=stream_id,
                node_id=source_node,
                run_id=run_id,
                data={"target_node": target_node, "edge_id": edge_id},
            )
        )

    async def emit_agent_failure(
        self,
        stream_id: str,
        origin_id: str,
        record: dict[str, Any],
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.AGENT_FAILURE,
                stream_id=stream_id,
                node_id=origin_id,
                data=record,
            )
        )

    async def emit_failure_threshold_exceeded(
        self,
        stream_id: str,
        count: int,
        threshold: int,
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.FAILURE_THRESHOLD_EXCEEDED,
                stream_id=stream_id,
                data={"count": count, "threshold": threshold},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        stream_id: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[AgentEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if stream_id:
            events = [e for e in events if e.stream_id == stream_id]
        if run_id:
            events = [e for e in events if e.run_id == run_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        stream_id: str | None = None,
        node_id: str | None = None,
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> AgentEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: AgentEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: AgentEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_stream=stream_id,
            filter_node=node_id,
            filter_run=run_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
