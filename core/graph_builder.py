"""
ARCHGRAPH GRAPH BUILDER - From Stores to a Four-Layer Graph

A pure function of the current store contents. The active search query and
filters are deliberately NOT inputs, so typing into a search box never
changes node identity.

Output:
- GraphNode per Persona, UseCase, Tool, DataModel (with the full entity)
- AppendNode per layer (creation affordance, positioned by layer size)
- GraphEdge per persona mapping, tool-side use case mapping and
  implementation record, kept only when both endpoints exist
"""
import logging
from typing import Any, Dict, List, Optional

import msgspec

from core.ontology import (
    EntityType,
    EdgeType,
    LAYER_ORDER,
    APPEND_NODE_ID,
    node_id_for,
    edge_id_for,
)
from core.stores import Catalog


logger = logging.getLogger("archgraph.graph")

UNNAMED_LABEL = "Unnamed"


# =============================================================================
# GRAPH TYPES
# =============================================================================

class GraphNode(msgspec.Struct, kw_only=True, frozen=True):
    """One catalog entity as a graph node."""
    id: str                     # "<prefix>_<entity id>"
    entity_type: EntityType
    entity_id: str
    label: str
    index: int                  # Declaration (store iteration) order within its layer
    entity: Any                 # Back-reference to the full record


class AppendNode(msgspec.Struct, kw_only=True, frozen=True):
    """Synthetic "+" node at the end of a layer."""
    id: str                     # "add_<prefix>"
    entity_type: EntityType
    count: int                  # Real nodes in the layer


class GraphEdge(msgspec.Struct, kw_only=True, frozen=True):
    id: str                     # "<source node id>_<target node id>"
    source: str
    target: str
    edge_type: EdgeType


class CatalogGraph(msgspec.Struct, kw_only=True):
    """The derived graph for one catalog revision."""
    nodes: List[GraphNode] = msgspec.field(default_factory=list)
    append_nodes: List[AppendNode] = msgspec.field(default_factory=list)
    edges: List[GraphEdge] = msgspec.field(default_factory=list)
    revision: int = 0
    node_index: Dict[str, GraphNode] = msgspec.field(default_factory=dict)

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self.node_index.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.node_index

    def layer(self, entity_type: EntityType) -> List[GraphNode]:
        """Nodes of one layer in declaration order."""
        return [n for n in self.nodes if n.entity_type == entity_type]

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]


# =============================================================================
# LABELS
# =============================================================================

def node_label(entity_type: EntityType, entity: Any) -> str:
    """Display label: use cases show their action, everything else its name."""
    if entity_type == EntityType.USE_CASE:
        return entity.action or UNNAMED_LABEL
    return entity.name


# =============================================================================
# BUILD
# =============================================================================

def build_graph(catalog: Catalog) -> CatalogGraph:
    """
    Build the four-layer graph from the catalog's current contents.

    Duplicate mapping entries produce a single edge. Edges whose endpoints
    are missing (drift between a delete and its cascade) are dropped.
    """
    graph = CatalogGraph(revision=catalog.revision)

    for entity_type in LAYER_ORDER:
        records = catalog.store_for(entity_type).get_all()
        for index, record in enumerate(records):
            node = GraphNode(
                id=node_id_for(entity_type, record.id),
                entity_type=entity_type,
                entity_id=record.id,
                label=node_label(entity_type, record),
                index=index,
                entity=record,
            )
            graph.nodes.append(node)
            graph.node_index[node.id] = node
        graph.append_nodes.append(AppendNode(
            id=APPEND_NODE_ID[entity_type],
            entity_type=entity_type,
            count=len(records),
        ))

    seen = set()
    dropped = 0

    def add_edge(source_type, source_id, target_type, target_id, edge_type):
        nonlocal dropped
        edge_id = edge_id_for(source_type, source_id, target_type, target_id)
        if edge_id in seen:
            return
        source = node_id_for(source_type, source_id)
        target = node_id_for(target_type, target_id)
        if source not in graph.node_index or target not in graph.node_index:
            dropped += 1
            return
        seen.add(edge_id)
        graph.edges.append(GraphEdge(id=edge_id, source=source, target=target, edge_type=edge_type))

    for persona in catalog.personas.get_all():
        for mapping in persona.persona_use_case_mappings:
            add_edge(EntityType.PERSONA, persona.id,
                     EntityType.USE_CASE, mapping.use_case_id, EdgeType.PERFORMS)

    # UseCase -> Tool edges come from the tool-side mirror
    for tool in catalog.tools.get_all():
        for mapping in tool.use_case_tool_mappings:
            add_edge(EntityType.USE_CASE, mapping.use_case_id,
                     EntityType.TOOL, tool.id, EdgeType.REALIZED_BY)

    for impl in catalog.implementations.get_all():
        add_edge(EntityType.TOOL, impl.tool_id,
                 EntityType.DATA_MODEL, impl.data_model_id, EdgeType.IMPLEMENTS)

    if dropped:
        logger.debug(f"Dropped {dropped} dangling edges at revision {graph.revision}")
    return graph
