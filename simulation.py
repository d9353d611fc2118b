"""
Routing network: the arena of per-node routers and the medium between them.

Control messages travel one hop per transmission with a fixed delay and only
across links that are Up at send time. Data packets are forwarded along the
chain of Valid routes in one step (delivery along a Valid chain is treated as
reliable) and arrive at the destination application after hops * hop_delay.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Protocol, Tuple
import logging

from config import AodvParameters
from errors import RouteUnreachable
from instrumentation import NodeTable, RouteRecord, RoutingSnapshot, TransmissionTrace
from routers import AodvRouter, DiscoveryTimeout, RouteLifetimeExpired
from routing import ControlMessage, DataPacket, RouteState
from scheduler import EventScheduler
from topology import LinkDown, LinkUp, TopologyModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageArrival:
    sender: int
    receiver: int
    message: ControlMessage


@dataclass(frozen=True)
class DataArrival:
    packet: DataPacket
    path: Tuple[int, ...]

    @property
    def hops(self) -> int:
        return len(self.path) - 1


class Application(Protocol):
    def receive(self, node: int, packet: DataPacket, hops: int) -> None: ...

    def delivery_failed(self, node: int, packet: DataPacket, error: RouteUnreachable) -> None: ...


def message_kind(message: object) -> str:
    return {"RouteRequest": "RREQ", "RouteReply": "RREP", "RouteError": "RERR"}.get(
        type(message).__name__, type(message).__name__
    )


class RoutingNetwork:
    """
    Owns one AodvRouter per topology node and delivers everything between them.
    """

    def __init__(
        self,
        scheduler: EventScheduler,
        topology: TopologyModel,
        params: Optional[AodvParameters] = None,
        trace: Optional[TransmissionTrace] = None,
    ) -> None:
        self._scheduler = scheduler
        self._topology = topology
        self._params = params or AodvParameters()
        self._trace = trace
        self._routers: Dict[int, AodvRouter] = {
            node: AodvRouter(node, scheduler, self, self._params) for node in sorted(topology.nodes())
        }
        self._apps: Dict[Tuple[int, int], Application] = {}
        self.statistics: Dict[str, int] = {
            "control_transmissions": 0,
            "control_lost": 0,
            "data_forwarded": 0,
            "data_delivered": 0,
            "data_dropped": 0,
            "delivery_failures": 0,
        }

        topology.add_listener(self)
        scheduler.register_handler(MessageArrival, self._on_message)
        scheduler.register_handler(DataArrival, self._on_data)
        scheduler.register_handler(DiscoveryTimeout, lambda ev: self._routers[ev.node].on_discovery_timeout(ev.dest))
        scheduler.register_handler(
            RouteLifetimeExpired, lambda ev: self._routers[ev.node].on_lifetime_expired(ev.dest)
        )

    @property
    def params(self) -> AodvParameters:
        return self._params

    @property
    def topology(self) -> TopologyModel:
        return self._topology

    def router(self, node: int) -> AodvRouter:
        return self._routers[node]

    def routers(self) -> Mapping[int, AodvRouter]:
        return MappingProxyType(self._routers)

    def route_state(self, node: int, dest: int) -> RouteState:
        return self._routers[node].route_state(dest)

    def attach_application(self, node: int, flow_id: int, app: Application) -> None:
        self._apps[(node, flow_id)] = app

    # --- Link-state notifications --------------------------------------------

    def on_link_up(self, event: LinkUp) -> None:
        self._routers[event.a].neighbor_up(event.b)
        self._routers[event.b].neighbor_up(event.a)

    def on_link_down(self, event: LinkDown) -> None:
        self._routers[event.a].neighbor_down(event.b)
        self._routers[event.b].neighbor_down(event.a)

    # --- Medium ------------------------------------------------------------------

    def is_linked(self, a: int, b: int) -> bool:
        return self._topology.is_linked(a, b)

    def broadcast(self, sender: int, message: ControlMessage) -> int:
        """Send message to every current neighbour; returns how many copies went out."""
        sent = 0
        for neighbor in self._topology.neighbors(sender):
            if self.transmit(sender, neighbor, message):
                sent += 1
        return sent

    def transmit(self, sender: int, receiver: int, message: ControlMessage) -> bool:
        if not self._topology.is_linked(sender, receiver):
            self.statistics["control_lost"] += 1
            return False
        self.statistics["control_transmissions"] += 1
        if self._trace is not None:
            self._trace.record(self._scheduler.now(), message_kind(message), sender, receiver)
        self._scheduler.schedule_in(self._params.hop_delay, MessageArrival(sender, receiver, message))
        return True

    def _on_message(self, event: MessageArrival) -> None:
        self._routers[event.receiver].handle_message(event.sender, event.message)

    # --- Data plane ----------------------------------------------------------------

    def send(self, packet: DataPacket) -> None:
        self._routers[packet.source].send(packet)

    def forward_data(self, origin: int, packet: DataPacket) -> bool:
        """
        Walk the Valid route chain from origin to the packet's destination.

        Every router on the way refreshes the route it used. A relay without a
        Valid route drops the packet, reports the break to the previous hop and
        tells the packet's application through delivery_failed.
        """
        dest = packet.destination
        path = [origin]
        current: int = origin
        previous: Optional[int] = None
        while current != dest:
            router = self._routers[current]
            next_hop = router.next_hop_for(dest)
            if next_hop is None:
                self.statistics["data_dropped"] += 1
                if previous is not None:
                    router.report_forward_failure(dest, previous)
                else:
                    router.stats["packets_dropped"] += 1
                self.delivery_failed(current, packet, RouteUnreachable(current, dest, "no valid route at relay"))
                return False
            if next_hop in path or not self._topology.is_linked(current, next_hop):
                logger.debug("t=%.3f node %d cannot forward to %d via %d", self._scheduler.now(), current, dest, next_hop)
                self.statistics["data_dropped"] += 1
                router.stats["packets_dropped"] += 1
                reason = "routing loop" if next_hop in path else f"link to {next_hop} is down"
                self.delivery_failed(current, packet, RouteUnreachable(current, dest, reason))
                return False
            if self._trace is not None:
                self._trace.record(self._scheduler.now(), "DATA", current, next_hop)
            previous, current = current, next_hop
            path.append(current)

        self.statistics["data_forwarded"] += 1
        self._scheduler.schedule_in(
            (len(path) - 1) * self._params.hop_delay, DataArrival(packet, tuple(path))
        )
        return True

    def _on_data(self, event: DataArrival) -> None:
        self.statistics["data_delivered"] += 1
        app = self._apps.get((event.packet.destination, event.packet.flow_id))
        if app is not None:
            app.receive(event.packet.destination, event.packet, event.hops)

    def delivery_failed(self, node: int, packet: DataPacket, error: RouteUnreachable) -> None:
        self.statistics["delivery_failures"] += 1
        app = self._apps.get((packet.source, packet.flow_id))
        if app is not None:
            app.delivery_failed(node, packet, error)

    # --- Instrumentation view ---------------------------------------------------------

    def snapshot(self, nodes: Optional[Iterable[int]] = None) -> RoutingSnapshot:
        """
        Immutable copy of the routing tables of nodes (all nodes by default).
        Reading the tables does not touch any protocol state.
        """
        now = self._scheduler.now()
        selected = sorted(self._routers) if nodes is None else sorted(nodes)
        tables = []
        for node in selected:
            records = tuple(
                RouteRecord(
                    destination=entry.dest,
                    next_hop=entry.next_hop,
                    hop_count=entry.hop_count,
                    state=entry.state.value,
                    remaining_lifetime=entry.remaining(now),
                    seqno=entry.seqno,
                )
                for entry in self._routers[node].entries()
            )
            tables.append(NodeTable(node=node, routes=records))
        return RoutingSnapshot(time=now, tables=tuple(tables))
