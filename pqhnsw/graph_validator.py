"""Structural checks for a built HNSW graph.

The builder maintains several invariants that search relies on. This module
verifies them after the fact, which is useful in tests and after loading a
saved index:
- every neighbor id refers to an existing node that lives on that layer
- no self loops and no duplicate neighbors
- neighbor lists respect the per-layer caps (M, or M0 at layer 0)
- the entry point sits on the highest populated layer
- every node is reachable from the entry point at layer 0
"""

from typing import Dict, List, Set
from collections import deque

from pqhnsw.errors import InvariantViolationError
from pqhnsw.hnsw.graph import HNSWGraph


class GraphValidator:
    """Validates graph structure and connectivity properties."""

    def __init__(self, graph: HNSWGraph) -> None:
        """
        Args:
            graph: Graph to validate
        """
        self.graph = graph

    def validate(self, check_reachability: bool = True) -> List[str]:
        """Run all checks.

        Args:
            check_reachability: Also run the layer-0 BFS from the entry point

        Returns:
            Human-readable descriptions of every violation (empty if valid)
        """
        violations = self._check_neighbor_lists() + self._check_entry_point()
        if check_reachability and not violations:
            unreachable = self.find_unreachable(layer=0)
            if unreachable:
                violations.append(
                    f"{len(unreachable)} node(s) unreachable from entry point at layer 0: "
                    f"{sorted(unreachable)[:10]}"
                )
        return violations

    def assert_valid(self, check_reachability: bool = True) -> None:
        """Raise InvariantViolationError if any check fails."""
        violations = self.validate(check_reachability=check_reachability)
        if violations:
            raise InvariantViolationError("; ".join(violations))

    def _check_neighbor_lists(self) -> List[str]:
        graph = self.graph
        violations = []
        for node in graph.nodes:
            if len(node.neighbors) != node.level + 1:
                violations.append(
                    f"node {node.id}: {len(node.neighbors)} neighbor layers for level {node.level}"
                )
                continue
            for layer in range(node.level + 1):
                ids = node.get_neighbors(layer)
                cap = graph.max_neighbors(layer)
                if len(ids) > cap:
                    violations.append(
                        f"node {node.id} layer {layer}: {len(ids)} neighbors exceeds cap {cap}"
                    )
                if len(set(ids)) != len(ids):
                    violations.append(f"node {node.id} layer {layer}: duplicate neighbors")
                for neighbor_id in ids:
                    neighbor = graph.get_node(neighbor_id)
                    if neighbor_id == node.id:
                        violations.append(f"node {node.id} layer {layer}: self loop")
                    elif neighbor is None:
                        violations.append(
                            f"node {node.id} layer {layer}: unknown neighbor {neighbor_id}"
                        )
                    elif neighbor.level < layer:
                        violations.append(
                            f"node {node.id} layer {layer}: neighbor {neighbor_id} "
                            f"only reaches level {neighbor.level}"
                        )
        return violations

    def _check_entry_point(self) -> List[str]:
        graph = self.graph
        entry = graph.get_entry()
        if entry is None:
            return [] if graph.size() == 0 else ["non-empty graph has no entry point"]

        entry_id, entry_level = entry
        top_level = max(node.level for node in graph.nodes)
        if graph.nodes[entry_id].level != entry_level:
            return [f"entry point {entry_id} level mismatch"]
        if entry_level != top_level:
            return [f"entry point level {entry_level} below highest level {top_level}"]
        return []

    def find_unreachable(self, layer: int = 0) -> Set[int]:
        """Nodes on a layer that cannot be reached from the entry point.

        Uses BFS over the directed neighbor lists.
        """
        graph = self.graph
        members = {node.id for node in graph.nodes if node.level >= layer}
        entry_id = graph.entry_point
        if entry_id is None or entry_id not in members:
            return members

        visited: Set[int] = {entry_id}
        queue: deque = deque([entry_id])
        while queue:
            current = queue.popleft()
            for neighbor in graph.nodes[current].get_neighbors(layer):
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)

        return members - visited

    def get_graph_statistics(self) -> Dict[str, float]:
        """Compute per-layer and overall graph statistics.

        Returns:
            Dictionary with node_count, max_level, layer-0 degree statistics
            and the number of nodes on each layer
        """
        graph = self.graph
        if graph.size() == 0:
            return {
                "node_count": 0,
                "max_level": -1,
                "avg_degree": 0.0,
                "min_degree": 0,
                "max_degree": 0,
            }

        degrees = [len(node.get_neighbors(0)) for node in graph.nodes]
        stats: Dict[str, float] = {
            "node_count": graph.size(),
            "max_level": graph.get_max_level(),
            "avg_degree": sum(degrees) / len(degrees),
            "min_degree": min(degrees),
            "max_degree": max(degrees),
        }
        for layer in range(graph.get_max_level() + 1):
            stats[f"nodes_at_layer_{layer}"] = sum(
                1 for node in graph.nodes if node.level >= layer
            )
        return stats
