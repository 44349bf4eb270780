"""
ARCHGRAPH CORE - Central exports for core functionality.

This module provides access to:
- Vocabulary and value types (ontology, schemas)
- The in-memory catalog and the relationship synchronizer
- Derived graph, layout, connectivity and search
"""

from core.ontology import EntityType, EdgeType, LAYER_ORDER, node_id_for, parse_node_id, edge_id_for
from core.schemas import (
    Persona,
    UseCase,
    Tool,
    DataModel,
    DataModelAttribute,
    DataModelImplementation,
    PersonaUseCaseMapping,
    UseCaseToolMapping,
    AttributeValidationError,
)
from core.stores import Catalog, EntityStore, StoreError, DuplicateEntityError, get_catalog, set_catalog
from core.sync import RelationshipSynchronizer, ReconcileReport
from core.graph_builder import CatalogGraph, build_graph
from core.layout import LayeredLayout, compute_layout
from core.connectivity import ConnectivityIndex, find_connected_nodes, compute_connected_nodes
from core.search import SearchFilters, SearchResult, compute_search_visibility

__all__ = [
    # Vocabulary
    "EntityType",
    "EdgeType",
    "LAYER_ORDER",
    "node_id_for",
    "parse_node_id",
    "edge_id_for",
    # Records
    "Persona",
    "UseCase",
    "Tool",
    "DataModel",
    "DataModelAttribute",
    "DataModelImplementation",
    "PersonaUseCaseMapping",
    "UseCaseToolMapping",
    "AttributeValidationError",
    # Catalog
    "Catalog",
    "EntityStore",
    "StoreError",
    "DuplicateEntityError",
    "get_catalog",
    "set_catalog",
    "RelationshipSynchronizer",
    "ReconcileReport",
    # Derived views
    "CatalogGraph",
    "build_graph",
    "LayeredLayout",
    "compute_layout",
    "ConnectivityIndex",
    "find_connected_nodes",
    "compute_connected_nodes",
    "SearchFilters",
    "SearchResult",
    "compute_search_visibility",
]
