"""
ARCHGRAPH LAYOUT - Barycenter Ordering of the Four Layers

One forward pass, left to right:

    Persona  (declaration order)
      -> UseCase (mean row of connected personas)
        -> Tool (mean row of connected use cases)
          -> DataModel (mean row of connected tools)

A node with no neighbour in the previous layer keeps its own declaration
index as its barycenter, so disconnected nodes hold their relative order.
Sorting is stable; ties keep declaration order.

The pass never goes backwards and never iterates to a fixed point. It is
an approximation of crossing minimization, not an optimal layout.
"""
from typing import Dict, List, Optional, Sequence, Tuple

import msgspec

from core.ontology import EntityType, LAYER_ORDER, get_layer
from core.graph_builder import CatalogGraph
from infrastructure.config import LayoutSection, get_config


class NodePosition(msgspec.Struct, kw_only=True, frozen=True):
    node_id: str
    layer: int
    order: int
    x: float
    y: float


class LayeredLayout(msgspec.Struct, kw_only=True):
    """Row order and coordinates for every node of a CatalogGraph."""
    order: Dict[EntityType, List[str]] = msgspec.field(default_factory=dict)
    positions: Dict[str, NodePosition] = msgspec.field(default_factory=dict)
    append_positions: Dict[str, NodePosition] = msgspec.field(default_factory=dict)
    revision: int = 0

    def position_of(self, node_id: str) -> Optional[NodePosition]:
        return self.positions.get(node_id) or self.append_positions.get(node_id)

    def order_index(self, node_id: str) -> Optional[int]:
        pos = self.positions.get(node_id)
        return pos.order if pos else None


# =============================================================================
# BARYCENTER
# =============================================================================

def order_by_barycenter(
    node_ids: Sequence[str],
    prev_positions: Dict[str, int],
    prev_neighbors: Dict[str, List[str]],
    next_degree: Optional[Dict[str, int]] = None,
) -> List[str]:
    """
    Order one layer by the mean row of its neighbours in the previous layer.

    Args:
        node_ids: The layer in declaration order
        prev_positions: Row index of each node in the previous layer
        prev_neighbors: node id -> connected node ids in the previous layer
        next_degree: node id -> number of edges into the next layer

    Unconnected nodes fall back to (index * degree) / degree, which is their
    own declaration index.
    """
    next_degree = next_degree or {}
    keyed: List[Tuple[float, str]] = []
    for index, node_id in enumerate(node_ids):
        rows = [prev_positions[n] for n in prev_neighbors.get(node_id, ()) if n in prev_positions]
        if rows:
            barycenter = sum(rows) / len(rows)
        else:
            count = next_degree.get(node_id, 0) or 1
            barycenter = (index * count) / count
        keyed.append((barycenter, node_id))
    # sorted() is stable, so ties keep declaration order
    return [node_id for _, node_id in sorted(keyed, key=lambda pair: pair[0])]


def _column_x(section: LayoutSection, entity_type: EntityType) -> float:
    columns = section.column_x
    return {
        EntityType.PERSONA: columns.persona,
        EntityType.USE_CASE: columns.use_case,
        EntityType.TOOL: columns.tool,
        EntityType.DATA_MODEL: columns.data_model,
    }[entity_type]


def row_y(section: LayoutSection, row: int) -> float:
    return row * section.row_height + section.margin


# =============================================================================
# LAYOUT
# =============================================================================

def compute_layout(graph: CatalogGraph, section: Optional[LayoutSection] = None) -> LayeredLayout:
    """
    Assign every node a row within its layer and a fixed-grid coordinate.

    Deterministic: the same graph always yields the same layout.
    """
    section = section or get_config().layout

    layer_of = {node.id: get_layer(node.entity_type) for node in graph.nodes}
    prev_neighbors: Dict[str, List[str]] = {}
    next_degree: Dict[str, int] = {}
    for edge in graph.edges:
        # Edges only ever join adjacent layers, left to right
        if layer_of[edge.target] != layer_of[edge.source] + 1:
            continue
        prev_neighbors.setdefault(edge.target, []).append(edge.source)
        next_degree[edge.source] = next_degree.get(edge.source, 0) + 1

    layout = LayeredLayout(revision=graph.revision)
    prev_positions: Dict[str, int] = {}
    for entity_type in LAYER_ORDER:
        declared = [node.id for node in graph.layer(entity_type)]
        ordered = order_by_barycenter(declared, prev_positions, prev_neighbors, next_degree)
        layout.order[entity_type] = ordered

        x = _column_x(section, entity_type)
        layer = get_layer(entity_type)
        prev_positions = {}
        for row, node_id in enumerate(ordered):
            prev_positions[node_id] = row
            layout.positions[node_id] = NodePosition(
                node_id=node_id, layer=layer, order=row, x=x, y=row_y(section, row)
            )

    for append in graph.append_nodes:
        layout.append_positions[append.id] = append_position(
            section, append.id, append.entity_type, append.count
        )
    return layout


def append_position(
    section: LayoutSection,
    node_id: str,
    entity_type: EntityType,
    count: int,
) -> NodePosition:
    """The append node sits one row below the last of `count` nodes."""
    return NodePosition(
        node_id=node_id,
        layer=get_layer(entity_type),
        order=count,
        x=_column_x(section, entity_type) + section.append_offset,
        y=row_y(section, count),
    )
