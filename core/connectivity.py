"""
ARCHGRAPH CONNECTIVITY - Reachability for Search and Highlight

Edges are semantically directed (Persona -> UseCase -> Tool -> DataModel)
but reachability treats them as undirected: a search hit on a DataModel
must pull in the tools, use cases and personas upstream of it.

Backed by a rustworkx PyGraph (undirected) built once from the edge list:
- reachable_from(seeds): union of the components containing the seeds
- component_of(node_id): the weakly-connected component of one node

Both are O(V+E); each component is traversed at most once no matter how
many seeds fall inside it.
"""
from typing import Dict, Iterable, List, Set

import rustworkx as rx

from core.graph_builder import CatalogGraph


class ConnectivityIndex:
    """
    Undirected adjacency over a CatalogGraph.

    Usage:
        index = ConnectivityIndex(graph)
        index.reachable_from({"datamodel_dm1"})   # {"datamodel_dm1", "tool_t2", ...}
        index.component_of("usecase_u1")

    Unknown node ids (append nodes, deleted entities) are ignored.
    """

    def __init__(self, graph: CatalogGraph):
        self.revision = graph.revision
        self._graph: rx.PyGraph = rx.PyGraph(multigraph=False)
        self._index: Dict[str, int] = {}

        node_ids = graph.node_ids()
        for node_id, idx in zip(node_ids, self._graph.add_nodes_from(node_ids)):
            self._index[node_id] = idx

        self._graph.add_edges_from_no_data([
            (self._index[edge.source], self._index[edge.target])
            for edge in graph.edges
            if edge.source in self._index and edge.target in self._index
        ])

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index

    def neighbors(self, node_id: str) -> Set[str]:
        idx = self._index.get(node_id)
        if idx is None:
            return set()
        return {self._graph[n] for n in self._graph.neighbors(idx)}

    def reachable_from(self, seeds: Iterable[str]) -> Set[str]:
        """
        Every node reachable from any seed. An empty seed set yields an
        empty result; callers decide what "no seeds" means for display.
        """
        visited: Set[int] = set()
        for seed in seeds:
            idx = self._index.get(seed)
            if idx is None or idx in visited:
                continue
            visited |= rx.node_connected_component(self._graph, idx)
        return {self._graph[idx] for idx in visited}

    def component_of(self, node_id: str) -> Set[str]:
        """The weakly-connected component containing `node_id`."""
        return self.reachable_from((node_id,))

    def components(self) -> List[Set[str]]:
        """All weakly-connected components, largest first."""
        comps = [
            {self._graph[idx] for idx in comp}
            for comp in rx.connected_components(self._graph)
        ]
        return sorted(comps, key=len, reverse=True)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def find_connected_nodes(seeds: Iterable[str], graph: CatalogGraph) -> Set[str]:
    """Seed-set reachability over a freshly built index."""
    return ConnectivityIndex(graph).reachable_from(seeds)


def compute_connected_nodes(node_id: str, graph: CatalogGraph) -> Set[str]:
    """Single-node reachability over a freshly built index."""
    return ConnectivityIndex(graph).component_of(node_id)
