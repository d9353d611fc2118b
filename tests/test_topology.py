"""
Tests for the mobility-driven TopologyModel.
"""

import pytest

from errors import ConfigurationError
from scheduler import EventScheduler
from topology import LinkDown, LinkUp, TopologyModel, Waypoint


class LinkLog:
    def __init__(self):
        self.events = []

    def on_link_up(self, event: LinkUp) -> None:
        self.events.append(("up", event.a, event.b))

    def on_link_down(self, event: LinkDown) -> None:
        self.events.append(("down", event.a, event.b))


def _line(sched, n=5, step=70.0, radio_range=100.0, mobility=None):
    positions = {i: (step * i, 0.0, 0.0) for i in range(n)}
    return TopologyModel(sched, positions, radio_range, mobility=mobility)


def test_initial_links_follow_radio_range():
    sched = EventScheduler()
    topo = _line(sched)

    assert topo.links() == [(0, 1), (1, 2), (2, 3), (3, 4)]
    assert topo.neighbors(2) == [1, 3]
    assert topo.is_linked(1, 0)
    assert not topo.is_linked(0, 2)
    assert topo.distance(0, 4) == pytest.approx(280.0)


def test_distance_equal_to_range_is_linked():
    sched = EventScheduler()
    topo = TopologyModel(sched, {0: (0.0, 0.0, 0.0), 1: (100.0, 0.0, 0.0)}, 100.0)
    assert topo.is_linked(0, 1)


def test_waypoint_flips_only_pairs_with_the_moved_node():
    sched = EventScheduler()
    log = LinkLog()
    topo = _line(sched, mobility={0: [Waypoint(25.0, (110.0, 0.0, 0.0))]})
    topo.add_listener(log)

    sched.run_until(24.9)
    assert log.events == []
    assert topo.position(0) == (0.0, 0.0, 0.0)

    sched.run_until(25.0)
    assert log.events == [("up", 0, 2), ("up", 0, 3)]
    assert topo.position(0) == (110.0, 0.0, 0.0)
    # 0-1 stays up (40 m), untouched pairs keep their state
    assert topo.is_linked(0, 1)
    assert topo.links() == [(0, 1), (0, 2), (0, 3), (1, 2), (2, 3), (3, 4)]


def test_positions_are_a_step_function_of_waypoints():
    """The scenario walk: 0 -> 110 -> 180 -> 250 m."""
    sched = EventScheduler()
    log = LinkLog()
    topo = _line(
        sched,
        mobility={
            0: [
                Waypoint(25.0, (110.0, 0.0, 0.0)),
                Waypoint(75.0, (180.0, 0.0, 0.0)),
                Waypoint(125.0, (250.0, 0.0, 0.0)),
            ]
        },
    )
    topo.add_listener(log)

    sched.run_until(75.0)
    assert topo.neighbors(0) == [2, 3, 4]
    assert ("down", 0, 1) in log.events
    assert ("up", 0, 4) in log.events

    sched.run_until(200.0)
    assert topo.position(0) == (250.0, 0.0, 0.0)
    assert topo.neighbors(0) == [3, 4]
    assert log.events[-1] == ("down", 0, 2)
    assert topo.statistics == {"waypoints": 3, "link_up": 3, "link_down": 2}


def test_shortest_hops_tracks_current_links():
    sched = EventScheduler()
    topo = _line(sched, mobility={0: [Waypoint(25.0, (110.0, 0.0, 0.0))]})

    assert topo.shortest_hops(0, 4) == 4
    sched.run_until(30.0)
    assert topo.shortest_hops(0, 4) == 2


def test_graph_view_is_undirected_with_unit_weights():
    sched = EventScheduler()
    topo = _line(sched)

    assert sorted(topo.nodes()) == [0, 1, 2, 3, 4]
    assert topo.outgoing(2) == {1: 1.0, 3: 1.0}
    for a in topo.nodes():
        for b, weight in topo.outgoing(a).items():
            assert topo.outgoing(b)[a] == weight == 1.0


def test_partitioned_nodes_have_no_shortest_hops():
    sched = EventScheduler()
    topo = TopologyModel(sched, {0: (0.0, 0.0, 0.0), 1: (500.0, 0.0, 0.0)}, 100.0)
    assert topo.shortest_hops(0, 1) is None
    assert topo.neighbors(0) == []


def test_bad_topology_inputs_raise_configuration_error():
    sched = EventScheduler()
    with pytest.raises(ConfigurationError) as exc:
        TopologyModel(sched, {0: (0.0, 0.0, 0.0)}, 0.0)
    assert exc.value.parameter == "radio_range"

    with pytest.raises(ConfigurationError) as exc:
        TopologyModel(sched, {0: (0.0, 0.0)}, 100.0)
    assert exc.value.parameter == "positions"

    with pytest.raises(ConfigurationError) as exc:
        _line(sched, mobility={9: [Waypoint(1.0, (0.0, 0.0, 0.0))]})
    assert exc.value.parameter == "mobility"

    with pytest.raises(ConfigurationError):
        _line(
            sched,
            mobility={0: [Waypoint(5.0, (1.0, 0.0, 0.0)), Waypoint(2.0, (2.0, 0.0, 0.0))]},
        )
