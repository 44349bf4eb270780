"""
ARCHGRAPH VISUALIZATION CORE - The Flow Graph's Data Model

This module bridges the derived catalog graph and whatever renders it.

Architecture:
- FlowGraphView: search/highlight interaction state over a Catalog
- VizNode/VizEdge: render-ready records (position, colors, flags)
- GraphSnapshot: full view state for one render
- EdgeSelectionDebouncer: drops duplicate edge-select signals

Interaction Modes:
    IDLE         no query, no highlight: every node as laid out
    SEARCHING    non-empty query: only nodes reachable from a match,
                 re-stacked from the top of each column
    HIGHLIGHTED  a node was clicked: its component is emphasised and
                 everything else dimmed (never hidden)

Performance:
- Graph, layout and connectivity index are rebuilt only when the catalog
  revision changes, never because the query changed
- polars for Arrow IPC serialization
"""
import msgspec
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from enum import Enum
from datetime import datetime, timezone
import io
import logging
import time

import polars as pl

from core.ontology import (
    EntityType,
    EdgeType,
    LAYER_ORDER,
    get_connection_rule,
    parse_node_id,
    parse_edge_id,
)
from core.stores import Catalog
from core.sync import RelationshipSynchronizer
from core.graph_builder import CatalogGraph, build_graph
from core.layout import LayeredLayout, NodePosition, compute_layout, append_position
from core.connectivity import ConnectivityIndex
from core.search import SearchFilters, SearchResult, compute_search_visibility
from infrastructure.config import ArchgraphConfig, get_config
from infrastructure.event_bus import (
    EventBus,
    EventType,
    GraphEvent,
    publish_connection_event,
)


logger = logging.getLogger("archgraph.viz")


# =============================================================================
# COLOR PALETTES (Consistent across views)
# =============================================================================

# Node fill by type
NODE_COLORS: Dict[str, str] = {
    EntityType.PERSONA.value: "#e0e7ff",    # Indigo tint
    EntityType.USE_CASE.value: "#fef3c7",   # Amber tint
    EntityType.TOOL.value: "#d1fae5",       # Emerald tint
    EntityType.DATA_MODEL.value: "#fce7f3", # Pink tint
    "default": "#f3f4f6",
}

# Node border by type
NODE_BORDER_COLORS: Dict[str, str] = {
    EntityType.PERSONA.value: "#4338ca",
    EntityType.USE_CASE.value: "#d97706",
    EntityType.TOOL.value: "#059669",
    EntityType.DATA_MODEL.value: "#be185d",
    "default": "#9ca3af",
}

TYPE_BADGES: Dict[str, str] = {
    EntityType.PERSONA.value: "Persona",
    EntityType.USE_CASE.value: "Use Case",
    EntityType.TOOL.value: "Tool",
    EntityType.DATA_MODEL.value: "Data Model",
}

EDGE_COLORS: Dict[str, str] = {
    EdgeType.PERFORMS.value: "#64748b",
    EdgeType.REALIZED_BY.value: "#64748b",
    EdgeType.IMPLEMENTS.value: "#64748b",
    "selected": "#3b82f6",
    "dimmed": "rgba(148, 163, 184, 0.3)",
    "default": "#64748b",
}

APPEND_NODE_TYPE = "addButton"


class InteractionMode(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    HIGHLIGHTED = "highlighted"


# =============================================================================
# VISUALIZATION DATA STRUCTURES
# =============================================================================

class VizNode(msgspec.Struct, kw_only=True):
    """
    Render-ready node.

    Append nodes carry type "addButton", the layer they extend in
    `append_for`, and no entity id.
    """
    id: str
    type: str
    label: str
    color: str                          # Fill
    border_color: str
    badge: str = ""
    entity_id: Optional[str] = None
    append_for: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    layer: int = 0
    order: int = 0

    # Interaction flags
    matched: bool = False               # Direct search hit
    highlighted: bool = False           # In the clicked node's component
    dimmed: bool = False                # Outside an active highlight


class VizEdge(msgspec.Struct, kw_only=True):
    id: str
    source: str
    target: str
    type: str
    color: str
    highlighted: bool = False
    dimmed: bool = False
    selected: bool = False


class GraphSnapshot(msgspec.Struct, kw_only=True):
    """
    Complete view state for one render.

    Nodes hidden by an active search are absent; dimmed nodes are present.
    """
    timestamp: str
    revision: int
    mode: str
    query: str
    node_count: int
    edge_count: int
    nodes: List[VizNode]
    edges: List[VizEdge]
    matching_count: int = 0
    highlighted_node_id: Optional[str] = None
    selected_edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "revision": self.revision,
            "mode": self.mode,
            "query": self.query,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "matching_count": self.matching_count,
            "highlighted_node_id": self.highlighted_node_id,
            "selected_edge_id": self.selected_edge_id,
            "nodes": [msgspec.to_builtins(n) for n in self.nodes],
            "edges": [msgspec.to_builtins(e) for e in self.edges],
        }


# =============================================================================
# EDGE SELECTION DEBOUNCE
# =============================================================================

class EdgeSelectionDebouncer:
    """
    Accept at most one edge selection per window.

    The window is measured from the last ACCEPTED selection; rejected
    signals do not extend it.
    """

    def __init__(self, window_ms: int = 100, clock: Callable[[], float] = time.monotonic):
        self.window = window_ms / 1000.0
        self._clock = clock
        self._last_accepted: Optional[float] = None

    def accept(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        if self._last_accepted is not None and now - self._last_accepted < self.window:
            return False
        self._last_accepted = now
        return True

    def reset(self) -> None:
        self._last_accepted = None


# =============================================================================
# FLOW GRAPH VIEW
# =============================================================================

class FlowGraphView:
    """
    Search/highlight interaction surface over a catalog.

    Usage:
        view = FlowGraphView(catalog)
        view.click_node("usecase_u1")       # HIGHLIGHTED
        view.set_search("customer")         # SEARCHING (highlight dropped)
        snapshot = view.snapshot()
        view.click_canvas()                 # highlight cleared
    """

    def __init__(
        self,
        catalog: Catalog,
        sync: Optional[RelationshipSynchronizer] = None,
        config: Optional[ArchgraphConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.catalog = catalog
        self.sync = sync or RelationshipSynchronizer(catalog)
        self.config = config or get_config()
        self.event_bus = event_bus or catalog.event_bus
        self.debouncer = EdgeSelectionDebouncer(self.config.interaction.debounce_ms, clock)

        self.search_query: str = ""
        self.search_filters: SearchFilters = SearchFilters()
        self.highlighted_node_id: Optional[str] = None
        self.selected_edge_id: Optional[str] = None

        self._graph: Optional[CatalogGraph] = None
        self._layout: Optional[LayeredLayout] = None
        self._index: Optional[ConnectivityIndex] = None
        self._search_key: Optional[Tuple[int, str, SearchFilters]] = None
        self._search: Optional[SearchResult] = None

    # =========================================================================
    # DERIVED STATE (memoized on catalog revision)
    # =========================================================================

    def _refresh(self) -> None:
        revision = self.catalog.revision
        if self._graph is not None and self._graph.revision == revision:
            return
        self._graph = build_graph(self.catalog)
        self._layout = compute_layout(self._graph, self.config.layout)
        self._index = ConnectivityIndex(self._graph)
        if self.highlighted_node_id and not self._graph.has_node(self.highlighted_node_id):
            self.highlighted_node_id = None
        logger.debug(f"Rebuilt graph at revision {revision}: "
                     f"{len(self._graph.nodes)} nodes, {len(self._graph.edges)} edges")

    @property
    def graph(self) -> CatalogGraph:
        self._refresh()
        return self._graph

    @property
    def layout(self) -> LayeredLayout:
        self._refresh()
        return self._layout

    @property
    def index(self) -> ConnectivityIndex:
        self._refresh()
        return self._index

    @property
    def mode(self) -> InteractionMode:
        if self.search_query.strip():
            return InteractionMode.SEARCHING
        if self.highlighted_node_id:
            return InteractionMode.HIGHLIGHTED
        return InteractionMode.IDLE

    def search_result(self) -> SearchResult:
        graph = self.graph
        key = (graph.revision, self.search_query, self.search_filters)
        if self._search_key != key:
            self._search = compute_search_visibility(
                graph, self.search_query, self.search_filters, self._index
            )
            self._search_key = key
        return self._search

    def highlighted_nodes(self) -> Set[str]:
        """Component of the highlighted node; empty unless HIGHLIGHTED."""
        if self.mode != InteractionMode.HIGHLIGHTED:
            return set()
        return self.index.component_of(self.highlighted_node_id)

    # =========================================================================
    # INPUTS
    # =========================================================================

    def set_search(self, query: str, filters: Optional[SearchFilters] = None) -> InteractionMode:
        """A non-empty query replaces any active highlight."""
        self.search_query = query or ""
        if filters is not None:
            self.search_filters = filters
        if self.search_query.strip():
            self.highlighted_node_id = None
        return self.mode

    def set_highlight(self, node_id: Optional[str]) -> InteractionMode:
        """
        Highlight a node's component. Ignored while searching, and for
        nodes that are not entity nodes of the current graph.
        """
        if node_id is None:
            self.highlighted_node_id = None
        elif self.mode != InteractionMode.SEARCHING and self.graph.has_node(node_id):
            self.highlighted_node_id = node_id
        return self.mode

    # =========================================================================
    # NODE / CANVAS EVENTS
    # =========================================================================

    def click_node(self, node_id: str) -> Optional[GraphEvent]:
        """
        Emit node_clicked and toggle the highlight: clicking the highlighted
        node again returns to IDLE. Append nodes emit nothing.
        """
        node = self._entity_node(node_id)
        if node is None:
            return None
        if self.mode != InteractionMode.SEARCHING:
            if self.highlighted_node_id == node_id:
                self.highlighted_node_id = None
            else:
                self.highlighted_node_id = node_id
        return self.event_bus.emit(
            EventType.NODE_CLICKED,
            {"type": node[0].value, "id": node[1]},
            source="flow_graph",
        )

    def double_click_node(self, node_id: str) -> Optional[GraphEvent]:
        node = self._entity_node(node_id)
        if node is None:
            return None
        return self.event_bus.emit(
            EventType.NODE_DOUBLE_CLICKED,
            {"type": node[0].value, "id": node[1]},
            source="flow_graph",
        )

    def right_click_node(self, node_id: str, x: float, y: float) -> Optional[GraphEvent]:
        node = self._entity_node(node_id)
        if node is None:
            return None
        return self.event_bus.emit(
            EventType.NODE_RIGHT_CLICKED,
            {"type": node[0].value, "id": node[1], "x": x, "y": y},
            source="flow_graph",
        )

    def click_canvas(self) -> GraphEvent:
        """Clear edge selection and highlight; the query is left alone."""
        self.selected_edge_id = None
        self.highlighted_node_id = None
        return self.event_bus.emit(EventType.CANVAS_CLICKED, {}, source="flow_graph")

    def _entity_node(self, node_id: str) -> Optional[Tuple[EntityType, str]]:
        if not self.graph.has_node(node_id):
            return None
        return parse_node_id(node_id)

    # =========================================================================
    # EDGE EVENTS
    # =========================================================================

    def select_edge(self, edge_id: Optional[str], now: Optional[float] = None) -> bool:
        """
        Edge-selection signal from the renderer. Duplicates inside the
        debounce window, and signals without an edge, are dropped.
        """
        if not edge_id:
            return False
        if not self.debouncer.accept(now):
            logger.debug(f"Debounced edge selection {edge_id}")
            return False
        self.selected_edge_id = edge_id
        return True

    def click_edge(self, edge_id: str) -> Optional[str]:
        """Toggle selection of an edge."""
        self.selected_edge_id = None if self.selected_edge_id == edge_id else edge_id
        return self.selected_edge_id

    def can_connect(self, source_node_id: str, target_node_id: str) -> bool:
        source = parse_node_id(source_node_id)
        target = parse_node_id(target_node_id)
        if source is None or target is None or source == target:
            return False
        return get_connection_rule(source[0], target[0]) is not None

    def connect(self, source_node_id: str, target_node_id: str) -> Optional[Any]:
        """Create an edge between two nodes and emit connection_created."""
        if not self.can_connect(source_node_id, target_node_id):
            return None
        source_type, source_id = parse_node_id(source_node_id)
        target_type, target_id = parse_node_id(target_node_id)
        record = self.sync.connect(source_type, source_id, target_type, target_id)
        if record is None:
            return None
        publish_connection_event(
            EventType.CONNECTION_CREATED,
            source_id, target_id, source_type.value, target_type.value,
            bus=self.event_bus,
        )
        return record

    def delete_edge(self, edge_id: str) -> bool:
        """Remove the edge named by an edge id and emit connection_deleted."""
        parsed = parse_edge_id(edge_id)
        if parsed is None:
            logger.warning(f"Unknown edge format: {edge_id}")
            return False
        source_type, source_id, target_type, target_id = parsed
        if self.sync.disconnect(source_type, source_id, target_type, target_id) is None:
            return False
        if self.selected_edge_id == edge_id:
            self.selected_edge_id = None
        publish_connection_event(
            EventType.CONNECTION_DELETED,
            source_id, target_id, source_type.value, target_type.value,
            bus=self.event_bus,
        )
        return True

    # =========================================================================
    # POSITIONS
    # =========================================================================

    def node_positions(self) -> Dict[str, NodePosition]:
        """
        Positions of every rendered node, append nodes included.

        While searching, the visible nodes of each column are re-stacked
        from the first row in layout order, and each append node moves to
        just below the last visible node of its column.
        """
        layout = self.layout
        if self.mode != InteractionMode.SEARCHING:
            positions = dict(layout.positions)
            positions.update(layout.append_positions)
            return positions

        visible = self.search_result().visible
        section = self.config.layout
        positions: Dict[str, NodePosition] = {}
        for append in self.graph.append_nodes:
            stacked = [n for n in layout.order.get(append.entity_type, []) if n in visible]
            for row, node_id in enumerate(stacked):
                base = layout.positions[node_id]
                positions[node_id] = NodePosition(
                    node_id=node_id, layer=base.layer, order=row, x=base.x,
                    y=row * section.row_height + section.margin,
                )
            positions[append.id] = append_position(section, append.id, append.entity_type, len(stacked))
        return positions

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def snapshot(self) -> GraphSnapshot:
        """Render-ready state for the current catalog and interaction inputs."""
        graph = self.graph
        mode = self.mode
        search = self.search_result()
        highlighted = self.highlighted_nodes()
        positions = self.node_positions()
        visible = search.visible if mode == InteractionMode.SEARCHING else None

        nodes: List[VizNode] = []
        for entity_type in LAYER_ORDER:
            for node_id in self.layout.order.get(entity_type, []):
                if visible is not None and node_id not in visible:
                    continue
                node = graph.get_node(node_id)
                pos = positions[node_id]
                nodes.append(VizNode(
                    id=node_id,
                    type=entity_type.value,
                    label=node.label,
                    color=NODE_COLORS.get(entity_type.value, NODE_COLORS["default"]),
                    border_color=NODE_BORDER_COLORS.get(entity_type.value, NODE_BORDER_COLORS["default"]),
                    badge=TYPE_BADGES.get(entity_type.value, entity_type.value),
                    entity_id=node.entity_id,
                    x=pos.x,
                    y=pos.y,
                    layer=pos.layer,
                    order=pos.order,
                    matched=node_id in search.matching,
                    highlighted=node_id in highlighted,
                    dimmed=bool(highlighted) and node_id not in highlighted,
                ))
        for append in graph.append_nodes:
            pos = positions[append.id]
            nodes.append(VizNode(
                id=append.id,
                type=APPEND_NODE_TYPE,
                label="+",
                color=NODE_COLORS["default"],
                border_color=NODE_BORDER_COLORS.get(append.entity_type.value, NODE_BORDER_COLORS["default"]),
                append_for=append.entity_type.value,
                x=pos.x,
                y=pos.y,
                layer=pos.layer,
                order=pos.order,
            ))

        edges: List[VizEdge] = []
        for edge in graph.edges:
            if visible is not None and (edge.source not in visible or edge.target not in visible):
                continue
            is_highlighted = bool(highlighted) and edge.source in highlighted and edge.target in highlighted
            is_dimmed = bool(highlighted) and not is_highlighted
            is_selected = edge.id == self.selected_edge_id
            if is_selected:
                color = EDGE_COLORS["selected"]
            elif is_dimmed:
                color = EDGE_COLORS["dimmed"]
            else:
                color = EDGE_COLORS.get(edge.edge_type.value, EDGE_COLORS["default"])
            edges.append(VizEdge(
                id=edge.id,
                source=edge.source,
                target=edge.target,
                type=edge.edge_type.value,
                color=color,
                highlighted=is_highlighted,
                dimmed=is_dimmed,
                selected=is_selected,
            ))

        return GraphSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            revision=graph.revision,
            mode=mode.value,
            query=search.query,
            node_count=len(nodes),
            edge_count=len(edges),
            nodes=nodes,
            edges=edges,
            matching_count=len(search.matching),
            highlighted_node_id=self.highlighted_node_id,
            selected_edge_id=self.selected_edge_id,
        )


# =============================================================================
# ARROW IPC SERIALIZATION
# =============================================================================

def serialize_to_arrow(snapshot: GraphSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize GraphSnapshot to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, edges_arrow_bytes)
    """
    nodes_df = pl.DataFrame({
        "id": [n.id for n in snapshot.nodes],
        "type": [n.type for n in snapshot.nodes],
        "label": [n.label for n in snapshot.nodes],
        "color": [n.color for n in snapshot.nodes],
        "border_color": [n.border_color for n in snapshot.nodes],
        "x": [n.x for n in snapshot.nodes],
        "y": [n.y for n in snapshot.nodes],
        "layer": [n.layer for n in snapshot.nodes],
        "order": [n.order for n in snapshot.nodes],
        "matched": [n.matched for n in snapshot.nodes],
        "highlighted": [n.highlighted for n in snapshot.nodes],
        "dimmed": [n.dimmed for n in snapshot.nodes],
    }, schema={
        "id": pl.Utf8, "type": pl.Utf8, "label": pl.Utf8, "color": pl.Utf8,
        "border_color": pl.Utf8, "x": pl.Float64, "y": pl.Float64,
        "layer": pl.Int64, "order": pl.Int64, "matched": pl.Boolean,
        "highlighted": pl.Boolean, "dimmed": pl.Boolean,
    })

    edges_df = pl.DataFrame({
        "id": [e.id for e in snapshot.edges],
        "source": [e.source for e in snapshot.edges],
        "target": [e.target for e in snapshot.edges],
        "type": [e.type for e in snapshot.edges],
        "color": [e.color for e in snapshot.edges],
        "highlighted": [e.highlighted for e in snapshot.edges],
        "dimmed": [e.dimmed for e in snapshot.edges],
    }, schema={
        "id": pl.Utf8, "source": pl.Utf8, "target": pl.Utf8, "type": pl.Utf8,
        "color": pl.Utf8, "highlighted": pl.Boolean, "dimmed": pl.Boolean,
    })

    nodes_buffer = io.BytesIO()
    edges_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    edges_df.write_ipc(edges_buffer)

    return nodes_buffer.getvalue(), edges_buffer.getvalue()
