"""
Unit tests for viz/core.py - FlowGraphView interaction surface

Tests:
1. Mode transitions (IDLE / SEARCHING / HIGHLIGHTED)
2. Derived graph memoized on catalog revision, not on the query
3. Search re-stacking of visible nodes and append nodes
4. Emitted events
5. Edge selection debounce, connect / delete_edge
6. Arrow IPC export
"""
import io

import polars as pl

from core.search import SearchFilters
from infrastructure.event_bus import EventType
from viz.core import (
    EDGE_COLORS,
    EdgeSelectionDebouncer,
    InteractionMode,
    serialize_to_arrow,
)


def _ids(snapshot, real_only=True):
    return {n.id for n in snapshot.nodes if not (real_only and n.append_for)}


# =============================================================================
# MODES
# =============================================================================

def test_idle_renders_everything(view):
    snapshot = view.snapshot()

    assert snapshot.mode == InteractionMode.IDLE.value
    assert len(_ids(snapshot)) == 9
    assert len(_ids(snapshot, real_only=False)) == 13
    assert snapshot.edge_count == 6
    assert not any(n.dimmed or n.highlighted for n in snapshot.nodes)


def test_click_highlights_component_and_dims_rest(view):
    view.click_node("usecase_U1")
    snapshot = view.snapshot()

    highlighted = {n.id for n in snapshot.nodes if n.highlighted}
    assert view.mode == InteractionMode.HIGHLIGHTED
    assert highlighted == {"persona_P1", "usecase_U1", "tool_T1", "datamodel_DM2"}
    # Dimmed, never hidden
    assert len(_ids(snapshot)) == 9
    assert {n.id for n in snapshot.nodes if n.dimmed and not n.append_for} == _ids(snapshot) - highlighted
    dimmed_edges = [e for e in snapshot.edges if e.dimmed]
    assert dimmed_edges and all(e.color == EDGE_COLORS["dimmed"] for e in dimmed_edges)


def test_clicking_highlighted_node_again_returns_to_idle(view):
    view.click_node("usecase_U1")
    view.click_node("usecase_U1")
    assert view.mode == InteractionMode.IDLE


def test_canvas_click_clears_highlight(view):
    view.click_node("tool_T2")
    view.click_edge("usecase_U2_tool_T2")

    event = view.click_canvas()

    assert event.type == EventType.CANVAS_CLICKED
    assert view.mode == InteractionMode.IDLE
    assert view.selected_edge_id is None


def test_search_replaces_highlight(view):
    view.click_node("usecase_U1")
    mode = view.set_search("customer")

    assert mode == InteractionMode.SEARCHING
    assert view.highlighted_node_id is None


def test_clicks_while_searching_do_not_highlight(view):
    view.set_search("customer")
    event = view.click_node("persona_P1")

    assert event.type == EventType.NODE_CLICKED
    assert view.mode == InteractionMode.SEARCHING
    assert view.highlighted_node_id is None


# =============================================================================
# SEARCH
# =============================================================================

def test_search_shows_reachable_chain_and_marks_matches(view):
    view.set_search("Customer")
    snapshot = view.snapshot()

    assert _ids(snapshot) == {"datamodel_DM1", "tool_T2", "usecase_U2", "persona_P3"}
    assert [n.id for n in snapshot.nodes if n.matched] == ["datamodel_DM1"]
    assert snapshot.matching_count == 1
    assert {e.id for e in snapshot.edges} == {
        "persona_P3_usecase_U2", "usecase_U2_tool_T2", "tool_T2_datamodel_DM1",
    }


def test_search_restacks_visible_nodes(view):
    """P3 sits in row 2 normally and moves to row 0 while searching."""
    assert view.node_positions()["persona_P3"].y == 250.0

    view.set_search("customer")
    positions = view.node_positions()

    assert positions["persona_P3"].y == 50.0
    assert positions["persona_P3"].order == 0
    # Append node just below the single visible persona
    assert positions["add_persona"].y == 150.0


def test_filters_narrow_matches(view):
    view.set_search("c", SearchFilters.only(["tools"]))
    snapshot = view.snapshot()

    assert {n.id for n in snapshot.nodes if n.matched} == {"tool_T1", "tool_T2"}


def test_search_does_not_rebuild_graph(view):
    graph = view.graph
    view.set_search("alice")
    view.snapshot()
    view.set_search("bob")

    assert view.graph is graph


def test_catalog_write_rebuilds_graph(view, sync):
    graph = view.graph
    sync.create_tool(id="T3", name="Jira")

    assert view.graph is not graph
    assert view.graph.has_node("tool_T3")


def test_highlight_of_deleted_node_is_dropped(view, sync):
    view.click_node("tool_T1")
    sync.delete_tool("T1")

    # Dropped when the derived graph is next rebuilt
    assert view.snapshot().mode == InteractionMode.IDLE.value
    assert view.highlighted_node_id is None


# =============================================================================
# EVENTS
# =============================================================================

def test_node_events(view):
    received = []
    for event_type in (EventType.NODE_CLICKED, EventType.NODE_DOUBLE_CLICKED, EventType.NODE_RIGHT_CLICKED):
        view.event_bus.subscribe(event_type, received.append)

    view.click_node("tool_T1")
    view.double_click_node("tool_T1")
    view.right_click_node("tool_T1", 10.0, 20.0)

    assert [e.payload for e in received] == [
        {"type": "tool", "id": "T1"},
        {"type": "tool", "id": "T1"},
        {"type": "tool", "id": "T1", "x": 10.0, "y": 20.0},
    ]


def test_append_nodes_emit_nothing(view):
    assert view.click_node("add_tool") is None
    assert view.double_click_node("add_tool") is None
    assert view.right_click_node("ghost_1", 0, 0) is None
    assert view.mode == InteractionMode.IDLE


# =============================================================================
# EDGES
# =============================================================================

def test_edge_selection_debounced(view):
    clock = view.test_clock
    assert view.select_edge("usecase_U1_tool_T1")

    clock["now"] += 0.05
    assert not view.select_edge("usecase_U2_tool_T2")
    assert view.selected_edge_id == "usecase_U1_tool_T1"

    clock["now"] += 0.06
    assert view.select_edge("usecase_U2_tool_T2")
    assert view.selected_edge_id == "usecase_U2_tool_T2"


def test_debouncer_window_runs_from_last_accepted():
    debouncer = EdgeSelectionDebouncer(window_ms=100, clock=lambda: 0.0)

    assert debouncer.accept(0.0)
    assert not debouncer.accept(0.09)
    assert not debouncer.accept(0.099)
    assert debouncer.accept(0.1)


def test_selected_edge_is_colored(view):
    view.click_edge("persona_P1_usecase_U1")
    edge = next(e for e in view.snapshot().edges if e.id == "persona_P1_usecase_U1")

    assert edge.selected
    assert edge.color == EDGE_COLORS["selected"]


def test_connect_and_delete_edge(view, scenario_catalog):
    catalog, _ = scenario_catalog
    received = []
    view.event_bus.subscribe(EventType.CONNECTION_CREATED, received.append)
    view.event_bus.subscribe(EventType.CONNECTION_DELETED, received.append)

    assert view.can_connect("persona_P2", "usecase_U1")
    assert not view.can_connect("persona_P2", "tool_T1")
    assert not view.can_connect("add_persona", "usecase_U1")

    view.connect("persona_P2", "usecase_U1")
    assert catalog.use_cases.get("U1").persona == "P2"
    assert view.graph.get_node("persona_P2") is not None
    assert "persona_P2_usecase_U1" in {e.id for e in view.graph.edges}

    assert view.delete_edge("persona_P2_usecase_U1")
    assert catalog.use_cases.get("U1").persona == ""
    assert not view.delete_edge("persona_P2_usecase_U1")
    assert not view.delete_edge("garbage")

    assert [e.type for e in received] == [EventType.CONNECTION_CREATED, EventType.CONNECTION_DELETED]
    assert received[0].payload["sourceType"] == "persona"


# =============================================================================
# ARROW
# =============================================================================

def test_serialize_to_arrow(view):
    view.click_node("usecase_U1")
    snapshot = view.snapshot()

    nodes_bytes, edges_bytes = serialize_to_arrow(snapshot)
    nodes = pl.read_ipc(io.BytesIO(nodes_bytes))
    edges = pl.read_ipc(io.BytesIO(edges_bytes))

    assert nodes.height == snapshot.node_count
    assert edges.height == snapshot.edge_count
    assert nodes.filter(pl.col("highlighted")).height == 4


def test_snapshot_to_dict_is_plain(view):
    data = view.snapshot().to_dict()

    assert data["mode"] == "idle"
    assert isinstance(data["nodes"][0], dict)
    assert data["nodes"][0]["id"] == "persona_P1"
