"""
ARCHGRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration as msgspec structs
- data_loader: Catalog file import/export with legacy migration
- event_bus: Pub/sub for catalog and interaction events
- logger: Mutation journal (ring buffer + JSONL files)
"""

from infrastructure.config import ArchgraphConfig, get_config, set_config, configure_logging
from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus
from infrastructure.logger import MutationLogger, MutationEvent, get_logger

__all__ = [
    "ArchgraphConfig",
    "get_config",
    "set_config",
    "configure_logging",
    "EventBus",
    "EventType",
    "GraphEvent",
    "get_event_bus",
    "MutationLogger",
    "MutationEvent",
    "get_logger",
]
