"""
ARCHGRAPH VISUALIZATION - The Flow Graph

This package turns the derived catalog graph into render-ready state:
- core: interaction state machine, view records, Arrow IPC export
"""

from viz.core import (
    VizNode,
    VizEdge,
    GraphSnapshot,
    InteractionMode,
    EdgeSelectionDebouncer,
    FlowGraphView,
    serialize_to_arrow,
)

__all__ = [
    "VizNode",
    "VizEdge",
    "GraphSnapshot",
    "InteractionMode",
    "EdgeSelectionDebouncer",
    "FlowGraphView",
    "serialize_to_arrow",
]
