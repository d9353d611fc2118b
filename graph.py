"""
Radio connectivity seen as a graph.

Vertices are node ids and an edge exists while the two radios are within
range of each other, so the graph is undirected: if b is in outgoing(a) then
a is in outgoing(b) with the same weight. TopologyModel is the implementation
used by the simulator; it gives every Up link weight 1.0, which makes the
shortest-path cost between two nodes their hop distance. That is the figure
discovered AODV routes are checked against.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Mapping


class Graph(ABC):
    """Current link set between node ids."""

    @abstractmethod
    def nodes(self) -> Iterable[int]:
        """Every node id, linked or not."""
        raise NotImplementedError

    @abstractmethod
    def outgoing(self, node: int) -> Mapping[int, float]:
        """
        Nodes currently in radio range of node, mapped to the link weight.

        An isolated node gives an empty mapping. Weights are 1.0 for the
        topology model, so summing them along a path counts hops.
        """
        raise NotImplementedError
