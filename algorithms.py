"""
Algorithm interfaces for routing analysis.

Keeps graph algorithms separate from protocol wiring and simulation details.
The on-demand protocol never consults these; they give tests and reports a
ground truth to compare discovered routes against.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from graph import Graph


class ShortestPathEngine(ABC):
    """
    Interface for single-source shortest-path computation.
    """

    @abstractmethod
    def shortest_path_costs(self, graph: Graph, source: int) -> Dict[int, float]:
        """
        Compute shortest-path costs from source to all reachable nodes.

        Returns:
            Mapping dest_node -> path_cost(source -> dest_node).
        """
        raise NotImplementedError

    @abstractmethod
    def shortest_paths(
        self, graph: Graph, source: int
    ) -> tuple[Dict[int, float], Dict[int, int]]:
        """
        Compute shortest-path costs plus the predecessor chain for each dest.

        Returns:
            (dist, prev) where dist is the cost map and prev records parents.
        """
        raise NotImplementedError

    def hop_count(self, graph: Graph, source: int, dest: int) -> Optional[int]:
        """Number of links on a shortest source -> dest path, None if unreachable."""
        cost = self.shortest_path_costs(graph, source).get(dest)
        return None if cost is None else int(round(cost))
