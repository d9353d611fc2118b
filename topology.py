"""
Mobility-driven topology and link-state model.

Nodes hold a 3-D position that changes only at waypoint instants (step
function, no interpolation). Two nodes are linked while their distance is
within the radio range. The model is the single writer of link state: every
waypoint re-checks the pairs that contain the moved node and notifies the
registered listeners of each LinkUp/LinkDown flip.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple
import logging

import numpy as np

from algorithms import ShortestPathEngine
from dijkstra_engine import SimpleDijkstraEngine
from errors import ConfigurationError
from graph import Graph
from scheduler import EventScheduler

logger = logging.getLogger(__name__)

Position = Tuple[float, float, float]


@dataclass(frozen=True)
class Waypoint:
    """Node reaches position at simulated time."""

    time: float
    position: Position


@dataclass(frozen=True)
class WaypointReached:
    """Scheduler payload: node jumps to position."""

    node: int
    position: Position


@dataclass(frozen=True)
class LinkUp:
    a: int
    b: int


@dataclass(frozen=True)
class LinkDown:
    a: int
    b: int


class LinkListener(Protocol):
    def on_link_up(self, event: LinkUp) -> None: ...

    def on_link_down(self, event: LinkDown) -> None: ...


def link_key(a: int, b: int) -> FrozenSet[int]:
    return frozenset((a, b))


class TopologyModel(Graph):
    """
    Positions, waypoint schedule and derived link state for a set of nodes.

    Routers only read from it (neighbors, is_linked); positions and links are
    only written from the waypoint handler.
    """

    def __init__(
        self,
        scheduler: EventScheduler,
        positions: Mapping[int, Sequence[float]],
        radio_range: float,
        mobility: Optional[Mapping[int, Sequence[Waypoint]]] = None,
        path_engine: Optional[ShortestPathEngine] = None,
    ) -> None:
        if not positions:
            raise ConfigurationError("positions", "topology needs at least one node")
        if radio_range <= 0:
            raise ConfigurationError("radio_range", f"must be positive, got {radio_range}")

        self._scheduler = scheduler
        self._radio_range = float(radio_range)
        self._positions: Dict[int, np.ndarray] = {
            node: self._as_vector(node, pos) for node, pos in sorted(positions.items())
        }
        self._links: Set[FrozenSet[int]] = set()
        self._listeners: List[LinkListener] = []
        self._path_engine = path_engine or SimpleDijkstraEngine()
        self.statistics: Dict[str, int] = {"waypoints": 0, "link_up": 0, "link_down": 0}

        ids = list(self._positions)
        for i, a in enumerate(ids):
            for b in ids[i + 1:]:
                if self._in_range(a, b):
                    self._links.add(link_key(a, b))

        scheduler.register_handler(WaypointReached, self._on_waypoint)
        for node, waypoints in sorted((mobility or {}).items()):
            self._schedule_waypoints(node, waypoints)

    @property
    def radio_range(self) -> float:
        return self._radio_range

    def add_listener(self, listener: LinkListener) -> None:
        self._listeners.append(listener)

    # --- Read-only accessors ------------------------------------------------

    def position(self, node: int) -> Position:
        x, y, z = self._positions[node]
        return (float(x), float(y), float(z))

    def distance(self, a: int, b: int) -> float:
        return float(np.linalg.norm(self._positions[a] - self._positions[b]))

    def is_linked(self, a: int, b: int) -> bool:
        return link_key(a, b) in self._links

    def neighbors(self, node: int) -> List[int]:
        """Ids currently linked to node, ascending."""
        return sorted(other for other in self._positions if other != node and self.is_linked(node, other))

    def links(self) -> List[Tuple[int, int]]:
        return sorted(tuple(sorted(link)) for link in self._links)  # type: ignore[misc]

    def shortest_hops(self, source: int, dest: int) -> Optional[int]:
        """Hop count of a shortest path over the links that are Up right now."""
        return self._path_engine.hop_count(self, source, dest)

    # --- Graph interface -----------------------------------------------------

    def nodes(self) -> Iterable[int]:
        return list(self._positions)

    def outgoing(self, node: int) -> Mapping[int, float]:
        return {other: 1.0 for other in self.neighbors(node)}

    # --- Mobility ------------------------------------------------------------

    def _schedule_waypoints(self, node: int, waypoints: Sequence[Waypoint]) -> None:
        if node not in self._positions:
            raise ConfigurationError("mobility", f"waypoints given for unknown node {node}")
        last_time = None
        for wp in waypoints:
            if last_time is not None and wp.time < last_time:
                raise ConfigurationError("mobility", f"waypoints for node {node} are not ordered by time")
            last_time = wp.time
            self._as_vector(node, wp.position)
            self._scheduler.schedule(wp.time, WaypointReached(node, tuple(float(c) for c in wp.position)))

    def _on_waypoint(self, event: WaypointReached) -> None:
        self.statistics["waypoints"] += 1
        self._positions[event.node] = np.asarray(event.position, dtype=float)
        logger.info("t=%.3f node %d moved to %s", self._scheduler.now(), event.node, event.position)

        # Only pairs containing the moved node can flip.
        for other in self._positions:
            if other == event.node:
                continue
            key = link_key(event.node, other)
            was_up = key in self._links
            now_up = self._in_range(event.node, other)
            if was_up == now_up:
                continue
            a, b = min(event.node, other), max(event.node, other)
            if now_up:
                self._links.add(key)
                self.statistics["link_up"] += 1
                logger.info("t=%.3f link %d-%d up", self._scheduler.now(), a, b)
                for listener in list(self._listeners):
                    listener.on_link_up(LinkUp(a, b))
            else:
                self._links.discard(key)
                self.statistics["link_down"] += 1
                logger.info("t=%.3f link %d-%d down", self._scheduler.now(), a, b)
                for listener in list(self._listeners):
                    listener.on_link_down(LinkDown(a, b))

    def _in_range(self, a: int, b: int) -> bool:
        return self.distance(a, b) <= self._radio_range

    @staticmethod
    def _as_vector(node: int, pos: Sequence[float]) -> np.ndarray:
        vec = np.asarray(pos, dtype=float)
        if vec.shape != (3,) or not np.all(np.isfinite(vec)):
            raise ConfigurationError("positions", f"node {node} needs a finite 3-D position, got {pos!r}")
        return vec
