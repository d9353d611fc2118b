"""
Routing-table snapshots, route dumps and the transmission trace.

A RoutingTableRecorder fires at configured instants, asks the routing network
for an immutable RoutingSnapshot and hands it to its sinks. Report writers
keep a stable field order so consecutive dumps can be diffed.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, Tuple
import csv
import itertools

from scheduler import EventScheduler

if TYPE_CHECKING:  # pragma: no cover
    from simulation import RoutingNetwork


ROUTE_FIELDS: Tuple[str, ...] = ("time", "node", "destination", "next_hop", "hops", "state", "lifetime", "seqno")
TRACE_FIELDS: Tuple[str, ...] = ("time", "kind", "sender", "receiver")


@dataclass(frozen=True)
class RouteRecord:
    destination: int
    next_hop: int
    hop_count: int
    state: str
    remaining_lifetime: float
    seqno: int = 0


@dataclass(frozen=True)
class NodeTable:
    node: int
    routes: Tuple[RouteRecord, ...]

    def route(self, dest: int) -> Optional[RouteRecord]:
        for record in self.routes:
            if record.destination == dest:
                return record
        return None


@dataclass(frozen=True)
class RoutingSnapshot:
    """Every selected node's routing table at one instant."""

    time: float
    tables: Tuple[NodeTable, ...]

    def table(self, node: int) -> NodeTable:
        for table in self.tables:
            if table.node == node:
                return table
        raise KeyError(node)

    def route(self, node: int, dest: int) -> Optional[RouteRecord]:
        return self.table(node).route(dest)

    def rows(self) -> List[dict]:
        """Flat rows in ROUTE_FIELDS order."""
        out = []
        for table in self.tables:
            for r in table.routes:
                out.append(
                    {
                        "time": round(self.time, 6),
                        "node": table.node,
                        "destination": r.destination,
                        "next_hop": r.next_hop,
                        "hops": r.hop_count,
                        "state": r.state,
                        "lifetime": round(r.remaining_lifetime, 6),
                        "seqno": r.seqno,
                    }
                )
        return out


@dataclass(frozen=True)
class SnapshotDue:
    recorder: int
    nodes: Optional[Tuple[int, ...]] = None


SnapshotSink = Callable[[RoutingSnapshot], None]


class RoutingTableRecorder:
    """
    Takes routing snapshots at fixed simulated instants.

    instants snapshot every node; node_instants is a sequence of (time, node)
    pairs for single-node dumps. Snapshots are kept in order of firing.
    """

    _ids = itertools.count()

    def __init__(
        self,
        scheduler: EventScheduler,
        network: "RoutingNetwork",
        instants: Iterable[float] = (),
        node_instants: Iterable[Tuple[float, int]] = (),
        sinks: Sequence[SnapshotSink] = (),
    ) -> None:
        self._network = network
        self._id = next(self._ids)
        self._sinks = list(sinks)
        self.snapshots: List[RoutingSnapshot] = []

        scheduler.register_handler(SnapshotDue, self._on_due)
        for t, node in node_instants:
            scheduler.schedule(t, SnapshotDue(self._id, (node,)))
        for t in instants:
            scheduler.schedule(t, SnapshotDue(self._id))

    def add_sink(self, sink: SnapshotSink) -> None:
        self._sinks.append(sink)

    def _on_due(self, due: SnapshotDue) -> None:
        if due.recorder != self._id:
            return
        snapshot = self._network.snapshot(due.nodes)
        self.snapshots.append(snapshot)
        for sink in self._sinks:
            sink(snapshot)


def format_snapshot(snapshot: RoutingSnapshot) -> str:
    """Text dump, one block per node, in the fixed column order."""
    lines: List[str] = []
    for table in snapshot.tables:
        lines.append(f"Node: {table.node}, Time: {snapshot.time:.2f}s, AODV Routing table")
        lines.append(f"{'Destination':<12}{'Gateway':<10}{'Hops':<6}{'State':<9}{'Expire':>8}")
        for r in table.routes:
            lines.append(
                f"{r.destination:<12}{r.next_hop:<10}{r.hop_count:<6}{r.state:<9}{r.remaining_lifetime:>8.2f}"
            )
        lines.append("")
    return "\n".join(lines)


def write_routes_text(snapshots: Iterable[RoutingSnapshot], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        for snapshot in snapshots:
            f.write(format_snapshot(snapshot))
            f.write("\n")


def write_snapshots_csv(snapshots: Iterable[RoutingSnapshot], path: Path) -> None:
    """
    Write every snapshot row to CSV for downstream diffing.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(ROUTE_FIELDS))
        writer.writeheader()
        for snapshot in snapshots:
            for row in snapshot.rows():
                writer.writerow(row)


@dataclass(frozen=True)
class TraceRecord:
    time: float
    kind: str
    sender: int
    receiver: int


@dataclass
class TransmissionTrace:
    """Every single-hop transmission put on the medium, in send order."""

    records: List[TraceRecord] = field(default_factory=list)

    def record(self, time: float, kind: str, sender: int, receiver: int) -> None:
        self.records.append(TraceRecord(time, kind, sender, receiver))

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self.records)
        return sum(1 for r in self.records if r.kind == kind)

    def write_csv(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(TRACE_FIELDS))
            writer.writeheader()
            for r in self.records:
                writer.writerow(
                    {"time": round(r.time, 6), "kind": r.kind, "sender": r.sender, "receiver": r.receiver}
                )
