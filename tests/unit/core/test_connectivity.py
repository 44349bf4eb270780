"""
Unit tests for core/connectivity.py - undirected reachability on rustworkx
"""
from core.connectivity import ConnectivityIndex, compute_connected_nodes, find_connected_nodes
from core.graph_builder import build_graph


CHAIN_1 = {"persona_P1", "usecase_U1", "tool_T1", "datamodel_DM2"}
CHAIN_2 = {"persona_P3", "usecase_U2", "tool_T2", "datamodel_DM1"}


def test_component_ignores_edge_direction(scenario_catalog):
    catalog, _ = scenario_catalog
    graph = build_graph(catalog)

    assert compute_connected_nodes("datamodel_DM2", graph) == CHAIN_1
    assert compute_connected_nodes("persona_P1", graph) == CHAIN_1


def test_seed_set_covers_each_component(scenario_catalog):
    catalog, _ = scenario_catalog
    graph = build_graph(catalog)

    assert find_connected_nodes({"tool_T1", "usecase_U2"}, graph) == CHAIN_1 | CHAIN_2


def test_isolated_node_is_its_own_component(scenario_catalog):
    catalog, _ = scenario_catalog
    assert compute_connected_nodes("persona_P2", build_graph(catalog)) == {"persona_P2"}


def test_empty_and_unknown_seeds(scenario_catalog):
    """Empty seeds give an empty set; the caller decides what that means."""
    catalog, _ = scenario_catalog
    index = ConnectivityIndex(build_graph(catalog))

    assert index.reachable_from(set()) == set()
    assert index.reachable_from({"add_persona", "tool_ghost"}) == set()


def test_reachability_is_repeatable(scenario_catalog):
    catalog, _ = scenario_catalog
    index = ConnectivityIndex(build_graph(catalog))

    assert index.reachable_from({"usecase_U1"}) == index.reachable_from({"usecase_U1"})


def test_components_largest_first(scenario_catalog):
    catalog, _ = scenario_catalog
    index = ConnectivityIndex(build_graph(catalog))

    components = index.components()

    assert len(components) == 3
    assert components[-1] == {"persona_P2"}
    assert index.node_count == 9
    assert index.edge_count == 6


def test_neighbors(scenario_catalog):
    catalog, _ = scenario_catalog
    index = ConnectivityIndex(build_graph(catalog))

    assert index.neighbors("usecase_U1") == {"persona_P1", "tool_T1"}
    assert index.neighbors("nope") == set()
