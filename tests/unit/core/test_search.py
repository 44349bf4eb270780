"""
Unit tests for core/search.py
"""
from core.graph_builder import build_graph
from core.ontology import EntityType
from core.schemas import DataModel, DataModelAttribute, UseCase
from core.search import (
    SearchFilters,
    compute_search_visibility,
    entity_matches,
    find_matching_nodes,
    normalize_query,
)


def test_normalize_query():
    assert normalize_query("  Customer ") == "customer"
    assert normalize_query(None) == ""


def test_use_case_matches_action_and_goal():
    use_case = UseCase(id="U1", action="Review invoice", goal="Pay on time")
    assert entity_matches(EntityType.USE_CASE, use_case, "invoice")
    assert entity_matches(EntityType.USE_CASE, use_case, "on time")
    assert not entity_matches(EntityType.USE_CASE, use_case, "excel")


def test_data_model_matches_attributes():
    model = DataModel(id="DM1", name="Order", attributes=(DataModelAttribute(name="total", type="number"),))
    assert entity_matches(EntityType.DATA_MODEL, model, "total")
    assert entity_matches(EntityType.DATA_MODEL, model, "number")


def test_filters_restrict_matching(scenario_catalog):
    catalog, _ = scenario_catalog
    graph = build_graph(catalog)

    # "c" hits Carol, Excel, CRM, Customer and "Onboard client"
    only_tools = SearchFilters(personas=False, use_cases=False, data_models=False)
    assert find_matching_nodes(graph, "c", only_tools) == {"tool_T1", "tool_T2"}


def test_filters_only_parses_names():
    filters = SearchFilters.only(["useCases", " tools ", ""])
    assert filters.includes(EntityType.USE_CASE)
    assert filters.includes(EntityType.TOOL)
    assert not filters.includes(EntityType.PERSONA)
    assert not filters.includes(EntityType.DATA_MODEL)


def test_empty_query_shows_everything(scenario_catalog):
    catalog, _ = scenario_catalog
    graph = build_graph(catalog)

    result = compute_search_visibility(graph, "   ")

    assert not result.active
    assert result.visible == set(graph.node_ids())
    assert result.matching == set()


def test_query_without_matches_shows_nothing(scenario_catalog):
    catalog, _ = scenario_catalog

    result = compute_search_visibility(build_graph(catalog), "zebra")

    assert result.active
    assert result.visible == set()


def test_visible_set_is_reachable_chain(scenario_catalog):
    """Scenario C at unit level: matching DM1 keeps its whole chain visible."""
    catalog, _ = scenario_catalog

    result = compute_search_visibility(build_graph(catalog), "CUSTOMER")

    assert result.matching == {"datamodel_DM1"}
    assert result.visible == {"datamodel_DM1", "tool_T2", "usecase_U2", "persona_P3"}
