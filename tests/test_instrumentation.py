"""
Tests for routing snapshots, the recorder and report writers.
"""

import csv
from pathlib import Path

from instrumentation import (
    ROUTE_FIELDS,
    TRACE_FIELDS,
    RoutingTableRecorder,
    TransmissionTrace,
    format_snapshot,
    write_routes_text,
    write_snapshots_csv,
)
from routing import DataPacket
from scheduler import EventScheduler
from simulation import RoutingNetwork
from topology import TopologyModel


def _discovered_line(n=3, trace=None):
    sched = EventScheduler()
    topo = TopologyModel(sched, {i: (70.0 * i, 0.0, 0.0) for i in range(n)}, 100.0)
    net = RoutingNetwork(sched, topo, trace=trace)
    net.send(DataPacket(flow_id=0, seq=0, source=0, destination=n - 1, size=64, sent_at=0.0))
    return sched, net


def test_snapshots_do_not_touch_protocol_state():
    sched, net = _discovered_line()
    sched.run_until(1.0)

    scheduled = sched.statistics["events_scheduled"]
    stats = {node: dict(r.stats) for node, r in net.routers().items()}
    first = net.snapshot()
    second = net.snapshot()

    assert first == second
    assert sched.statistics["events_scheduled"] == scheduled
    assert {node: dict(r.stats) for node, r in net.routers().items()} == stats


def test_snapshot_records_route_fields():
    sched, net = _discovered_line()
    sched.run_until(1.0)
    snap = net.snapshot()

    record = snap.route(0, 2)
    assert record is not None
    assert (record.destination, record.next_hop, record.hop_count, record.state) == (2, 1, 2, "Valid")
    assert 0 < record.remaining_lifetime <= 11.2
    assert snap.route(0, 99) is None
    assert [t.node for t in snap.tables] == [0, 1, 2]


def test_recorder_fires_at_configured_instants():
    sched, net = _discovered_line()
    seen = []
    recorder = RoutingTableRecorder(
        sched, net, instants=(1.0, 2.0), node_instants=((1.0, 0),), sinks=[seen.append]
    )
    sched.run_until(5.0)

    assert [(s.time, [t.node for t in s.tables]) for s in recorder.snapshots] == [
        (1.0, [0]),
        (1.0, [0, 1, 2]),
        (2.0, [0, 1, 2]),
    ]
    assert seen == recorder.snapshots


def test_two_recorders_do_not_share_instants():
    sched, net = _discovered_line()
    a = RoutingTableRecorder(sched, net, instants=(1.0,))
    b = RoutingTableRecorder(sched, net, instants=(2.0, 3.0))
    sched.run_until(5.0)

    assert [s.time for s in a.snapshots] == [1.0]
    assert [s.time for s in b.snapshots] == [2.0, 3.0]


def test_rows_keep_field_order():
    sched, net = _discovered_line()
    sched.run_until(1.0)
    rows = net.snapshot().rows()

    assert rows
    assert all(list(row) == list(ROUTE_FIELDS) for row in rows)


def test_text_dump_lists_every_node(tmp_path: Path):
    sched, net = _discovered_line()
    sched.run_until(2.0)
    snap = net.snapshot()

    text = format_snapshot(snap)
    assert "Node: 0, Time: 2.00s, AODV Routing table" in text
    assert "Destination" in text and "Gateway" in text and "Expire" in text

    out = tmp_path / "routes" / "aodv.routes"
    write_routes_text([snap], out)
    assert out.read_text().startswith("Node: 0, Time: 2.00s")


def test_csv_reports_have_stable_headers(tmp_path: Path):
    trace = TransmissionTrace()
    sched, net = _discovered_line(trace=trace)
    sched.run_until(1.0)

    routes_csv = tmp_path / "aodv_routes.csv"
    write_snapshots_csv([net.snapshot()], routes_csv)
    with routes_csv.open() as f:
        reader = csv.DictReader(f)
        assert tuple(reader.fieldnames) == ROUTE_FIELDS
        rows = list(reader)
    assert {row["state"] for row in rows} == {"Valid"}

    trace_csv = tmp_path / "aodv_trace.csv"
    trace.write_csv(trace_csv)
    with trace_csv.open() as f:
        reader = csv.DictReader(f)
        assert tuple(reader.fieldnames) == TRACE_FIELDS
        kinds = [row["kind"] for row in reader]
    assert kinds[0] == "RREQ"
    assert trace.count("RREP") == 2
    assert trace.count("DATA") == 2
    assert trace.count() == len(kinds)
