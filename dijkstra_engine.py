"""
Heap-based ShortestPathEngine implementation.

Uses Python's heapq to compute single-source shortest paths over any Graph
implementation that satisfies the Graph interface.
"""

from typing import Dict, List
import heapq
import math

from graph import Graph
from algorithms import ShortestPathEngine


class SimpleDijkstraEngine(ShortestPathEngine):
    """
    Single-source Dijkstra using a binary heap.

    Complexity:
        O(E log V) over the nodes reachable from the source.
    """

    def shortest_path_costs(self, graph: Graph, source: int) -> Dict[int, float]:
        dist, _ = self.shortest_paths(graph, source)
        return dist

    def shortest_paths(
        self, graph: Graph, source: int
    ) -> tuple[Dict[int, float], Dict[int, int]]:
        """
        Dijkstra variant that also records predecessors for path reconstruction.

        The predecessor map omits the source itself because it has no parent.
        Ties are broken towards the lower node id so results are stable.
        """
        dist: Dict[int, float] = {source: 0.0}
        prev: Dict[int, int] = {}
        pq = [(0.0, source)]

        while pq:
            d_u, u = heapq.heappop(pq)
            if d_u != dist.get(u, math.inf):
                continue

            for v, w in sorted(graph.outgoing(u).items()):
                alt = d_u + w
                if alt < dist.get(v, math.inf):
                    dist[v] = alt
                    prev[v] = u
                    heapq.heappush(pq, (alt, v))

        return dist, prev

    def path(self, graph: Graph, source: int, dest: int) -> List[int]:
        """Node ids along one shortest path, empty when dest is unreachable."""
        dist, prev = self.shortest_paths(graph, source)
        if dest not in dist:
            return []
        hops = [dest]
        while hops[-1] != source:
            hops.append(prev[hops[-1]])
        return list(reversed(hops))
