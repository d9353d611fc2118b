"""
Unit tests for SimpleDijkstraEngine over a small dict-backed graph.
"""

from typing import Dict, Iterable, Mapping

from dijkstra_engine import SimpleDijkstraEngine
from graph import Graph


class DictGraph(Graph):
    """
    Minimal concrete Graph for Dijkstra tests.
    """

    def __init__(self) -> None:
        self._adj: Dict[int, Dict[int, float]] = {}

    def add_node(self, node: int) -> None:
        self._adj.setdefault(node, {})

    def add_edge(self, a: int, b: int, weight: float = 1.0) -> None:
        self.add_node(a)
        self.add_node(b)
        self._adj[a][b] = weight
        self._adj[b][a] = weight

    def nodes(self) -> Iterable[int]:
        return list(self._adj)

    def outgoing(self, node: int) -> Mapping[int, float]:
        return self._adj.get(node, {})


def test_dijkstra_basic_paths():
    g = DictGraph()
    # 0 - 1 (1), 0 - 2 (4), 1 - 2 (2)
    g.add_edge(0, 1, 1.0)
    g.add_edge(0, 2, 4.0)
    g.add_edge(1, 2, 2.0)

    engine = SimpleDijkstraEngine()
    dist = engine.shortest_path_costs(g, 0)

    assert dist[0] == 0.0
    assert dist[1] == 1.0
    # Shortest 0->2 is 0->1->2 with cost 3.0
    assert dist[2] == 3.0
    assert engine.path(g, 0, 2) == [0, 1, 2]


def test_dijkstra_unreachable_node_absent():
    g = DictGraph()
    g.add_edge(0, 1, 2.0)
    g.add_node(2)  # unreachable from 0

    engine = SimpleDijkstraEngine()
    dist = engine.shortest_path_costs(g, 0)

    assert dist == {0: 0.0, 1: 2.0}
    assert engine.hop_count(g, 0, 2) is None
    assert engine.path(g, 0, 2) == []


def test_hop_count_on_unit_line():
    g = DictGraph()
    for a in range(4):
        g.add_edge(a, a + 1)

    engine = SimpleDijkstraEngine()
    assert engine.hop_count(g, 0, 4) == 4
    assert engine.hop_count(g, 3, 3) == 0


def test_equal_cost_ties_prefer_lower_ids():
    """Diamond 0-{1,2}-3: both paths cost 2, the one through 1 wins."""
    g = DictGraph()
    g.add_edge(0, 2)
    g.add_edge(0, 1)
    g.add_edge(2, 3)
    g.add_edge(1, 3)

    engine = SimpleDijkstraEngine()
    _, prev = engine.shortest_paths(g, 0)
    assert prev[3] == 1
    assert engine.path(g, 0, 3) == [0, 1, 3]
