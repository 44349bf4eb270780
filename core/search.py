"""
ARCHGRAPH SEARCH - Text Matching and Search Visibility

A query is trimmed and lowercased, then matched as a substring against:

    Persona    name, description
    UseCase    name, action, goal
    Tool       name, description
    DataModel  name, description, attribute names and types

Only entity types enabled in SearchFilters can match. The visible set is
everything reachable from a match; matches themselves are reported
separately so they can be marked apart from merely-reachable nodes.
"""
from typing import Any, Iterable, Optional, Set

import msgspec

from core.ontology import EntityType
from core.graph_builder import CatalogGraph
from core.connectivity import ConnectivityIndex


class SearchFilters(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Per-type inclusion in search matching (not in rendering)."""
    personas: bool = True
    use_cases: bool = True
    tools: bool = True
    data_models: bool = True

    def includes(self, entity_type: EntityType) -> bool:
        return {
            EntityType.PERSONA: self.personas,
            EntityType.USE_CASE: self.use_cases,
            EntityType.TOOL: self.tools,
            EntityType.DATA_MODEL: self.data_models,
        }[EntityType(entity_type)]

    @classmethod
    def only(cls, names: Iterable[str]) -> "SearchFilters":
        """
        Enable just the named types ("personas", "useCases", "tools",
        "dataModels"; entity type names are accepted too).
        """
        wanted = {n.strip() for n in names if n and n.strip()}
        return cls(
            personas=bool(wanted & {"personas", "persona"}),
            use_cases=bool(wanted & {"useCases", "useCase"}),
            tools=bool(wanted & {"tools", "tool"}),
            data_models=bool(wanted & {"dataModels", "dataModel"}),
        )


class SearchResult(msgspec.Struct, kw_only=True):
    query: str
    matching: Set[str] = msgspec.field(default_factory=set)
    visible: Set[str] = msgspec.field(default_factory=set)

    @property
    def active(self) -> bool:
        return bool(self.query)


def normalize_query(query: Optional[str]) -> str:
    return (query or "").strip().lower()


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


def entity_matches(entity_type: EntityType, entity: Any, needle: str) -> bool:
    """Substring match of an already-normalized query against one entity."""
    if not needle:
        return False
    if entity_type == EntityType.PERSONA or entity_type == EntityType.TOOL:
        return _contains(entity.name, needle) or _contains(entity.description, needle)
    if entity_type == EntityType.USE_CASE:
        return (
            _contains(entity.name, needle)
            or _contains(entity.action, needle)
            or _contains(entity.goal, needle)
        )
    if entity_type == EntityType.DATA_MODEL:
        if _contains(entity.name, needle) or _contains(entity.description, needle):
            return True
        return any(
            _contains(attr.name, needle) or _contains(attr.type, needle)
            for attr in entity.attributes
        )
    return False


def find_matching_nodes(
    graph: CatalogGraph,
    query: str,
    filters: Optional[SearchFilters] = None,
) -> Set[str]:
    """Node ids whose entity matches the query, respecting the filters."""
    needle = normalize_query(query)
    if not needle:
        return set()
    filters = filters or SearchFilters()
    return {
        node.id
        for node in graph.nodes
        if filters.includes(node.entity_type) and entity_matches(node.entity_type, node.entity, needle)
    }


def compute_search_visibility(
    graph: CatalogGraph,
    query: str,
    filters: Optional[SearchFilters] = None,
    index: Optional[ConnectivityIndex] = None,
) -> SearchResult:
    """
    Which nodes stay visible for a query.

    No query: every node is visible and nothing is matched. A query that
    matches nothing leaves nothing visible.
    """
    needle = normalize_query(query)
    if not needle:
        return SearchResult(query="", visible=set(graph.node_ids()))

    matching = find_matching_nodes(graph, needle, filters)
    if index is None or index.revision != graph.revision:
        index = ConnectivityIndex(graph)
    return SearchResult(query=needle, matching=matching, visible=index.reachable_from(matching))
