"""
Lightweight event bus for decoupled catalog and interaction notifications.

Follows publisher-subscriber pattern so the presentation layer can react to
store writes and graph interactions without coupling to either.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Singleton for global access
- Type-safe events via msgspec

Architecture:
    Entity Stores / FlowGraphView → EventBus → [HTTP layer, Logger, UI]

Usage:
    from infrastructure.event_bus import get_event_bus, GraphEvent, EventType

    bus = get_event_bus()
    bus.subscribe(EventType.NODE_CLICKED, lambda e: print(e.payload["id"]))
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
import asyncio
import time
from collections import defaultdict
import logging


logger = logging.getLogger("archgraph.event_bus")


class EventType(str, Enum):
    """Types of events published by the catalog and the graph view."""
    # Store writes
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"
    CATALOG_RECONCILED = "catalog_reconciled"
    # Emitted to the presentation layer
    NODE_CLICKED = "node_clicked"
    NODE_DOUBLE_CLICKED = "node_double_clicked"
    NODE_RIGHT_CLICKED = "node_right_clicked"
    CONNECTION_CREATED = "connection_created"
    CONNECTION_DELETED = "connection_deleted"
    CANVAS_CLICKED = "canvas_clicked"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when the catalog or the interaction state changes.

    Attributes:
        type: Type of event (ENTITY_CREATED, NODE_CLICKED, etc.)
        payload: Event-specific data (type, id, source, target, ...)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("stores", "flow_graph", "api")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


class EventBus:
    """
    Event bus for catalog change notifications.

    Thread Safety:
        NOT thread-safe. All publishing happens on the single logical thread
        of the catalog; async handlers are scheduled on the running loop.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
        - Non-blocking for async handlers (fire-and-forget)
    """

    def __init__(self):
        """Initialize empty subscriber lists."""
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """
        Subscribe to events with a synchronous handler.

        Args:
            event_type: Type of event to listen for
            handler: Callable that takes GraphEvent as argument
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """
        Subscribe to events with an async handler.

        Args:
            event_type: Type of event to listen for
            handler: Async callable that takes GraphEvent as argument
        """
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Sync handlers run immediately; async handlers are scheduled on the
        running loop. Exceptions in handlers are logged but don't propagate.
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in list(self._async_subscribers[event.type]):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot schedule async handler for {event.type.value}: "
                    "no event loop running"
                )
                continue
            try:
                loop.create_task(handler(event))
            except Exception as e:
                logger.error(
                    f"Error scheduling async handler for {event.type.value}: {e}",
                    exc_info=True
                )

    def emit(self, event_type: EventType, payload: Dict[str, Any], source: str = "unknown") -> GraphEvent:
        """Build a GraphEvent stamped with the current time and publish it."""
        event = GraphEvent(
            type=event_type,
            payload=payload,
            timestamp=time.time(),
            source=source,
        )
        self.publish(event)
        return event

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Unsubscribe a handler (must be the same instance)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Count subscribers (sync + async) for one event type or all."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("Initialized global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global instance. The next get_event_bus() builds a fresh one."""
    global _event_bus
    _event_bus = None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def publish_entity_event(
    event_type: EventType,
    entity_type: str,
    entity_id: str,
    source: str = "stores",
    bus: Optional[EventBus] = None,
) -> None:
    """Publish ENTITY_CREATED / ENTITY_UPDATED / ENTITY_DELETED."""
    (bus or get_event_bus()).emit(
        event_type,
        {"type": entity_type, "id": entity_id},
        source=source,
    )


def publish_connection_event(
    event_type: EventType,
    source_id: str,
    target_id: str,
    source_type: str,
    target_type: str,
    source: str = "flow_graph",
    bus: Optional[EventBus] = None,
) -> None:
    """Publish CONNECTION_CREATED / CONNECTION_DELETED."""
    (bus or get_event_bus()).emit(
        event_type,
        {
            "source": source_id,
            "target": target_id,
            "sourceType": source_type,
            "targetType": target_type,
        },
        source=source,
    )
