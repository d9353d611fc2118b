"""
Periodic echo traffic between two nodes.

The source sends a request every interval between start and stop (stop is
exclusive); the destination echoes each request back. Route discovery, if
needed, happens inside the source router; a request the router cannot route
within its retry budget comes back as a delivery failure.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from errors import RouteUnreachable
from routing import DataPacket, PacketKind
from scheduler import EventScheduler
from simulation import RoutingNetwork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrafficTick:
    flow_id: int


@dataclass
class FlowStats:
    sent: int = 0
    delivered: int = 0
    echoed: int = 0
    failed: int = 0
    rtts: List[float] = field(default_factory=list)
    hops: List[int] = field(default_factory=list)
    shortest_hops: List[Optional[int]] = field(default_factory=list)

    @property
    def delivery_ratio(self) -> float:
        return self.echoed / self.sent if self.sent else 0.0

    def as_dict(self) -> dict:
        return {
            "sent": self.sent,
            "delivered": self.delivered,
            "echoed": self.echoed,
            "failed": self.failed,
            "delivery_ratio": self.delivery_ratio,
            "avg_rtt": sum(self.rtts) / len(self.rtts) if self.rtts else 0.0,
            "avg_hops": sum(self.hops) / len(self.hops) if self.hops else 0.0,
        }


class EchoTrafficGenerator:
    """
    Request/echo flow from source to destination.
    """

    def __init__(
        self,
        scheduler: EventScheduler,
        network: RoutingNetwork,
        source: int,
        destination: int,
        start: float,
        stop: float,
        interval: float,
        packet_size: int,
        max_packets: Optional[int] = None,
        flow_id: int = 0,
    ) -> None:
        self._scheduler = scheduler
        self._network = network
        self.source = source
        self.destination = destination
        self.start = start
        self.stop = stop
        self.interval = interval
        self.packet_size = packet_size
        self.max_packets = max_packets
        self.flow_id = flow_id
        self.stats = FlowStats()

        network.attach_application(source, flow_id, self)
        network.attach_application(destination, flow_id, self)
        scheduler.register_handler(TrafficTick, self._on_tick)
        if start < stop and max_packets != 0:
            scheduler.schedule(start, TrafficTick(flow_id))

    def _exhausted(self) -> bool:
        return self.max_packets is not None and self.stats.sent >= self.max_packets

    def _on_tick(self, tick: TrafficTick) -> None:
        if tick.flow_id != self.flow_id:
            return
        now = self._scheduler.now()
        if now >= self.stop or self._exhausted():
            return

        packet = DataPacket(
            flow_id=self.flow_id,
            seq=self.stats.sent,
            source=self.source,
            destination=self.destination,
            size=self.packet_size,
            sent_at=now,
        )
        self.stats.sent += 1
        self._network.send(packet)

        next_tick = now + self.interval
        if next_tick < self.stop and not self._exhausted():
            self._scheduler.schedule(next_tick, TrafficTick(self.flow_id))

    # --- Application callbacks ----------------------------------------------

    def receive(self, node: int, packet: DataPacket, hops: int) -> None:
        if packet.kind is PacketKind.REQUEST and node == self.destination:
            self.stats.delivered += 1
            self.stats.hops.append(hops)
            self.stats.shortest_hops.append(self._network.topology.shortest_hops(self.source, self.destination))
            echo = DataPacket(
                flow_id=self.flow_id,
                seq=packet.seq,
                source=self.destination,
                destination=self.source,
                size=packet.size,
                sent_at=packet.sent_at,
                kind=PacketKind.ECHO,
            )
            self._network.send(echo)
        elif packet.kind is PacketKind.ECHO and node == self.source:
            self.stats.echoed += 1
            self.stats.rtts.append(self._scheduler.now() - packet.sent_at)

    def delivery_failed(self, node: int, packet: DataPacket, error: RouteUnreachable) -> None:
        self.stats.failed += 1
        logger.warning("t=%.3f flow %d packet %d dropped: %s", self._scheduler.now(), self.flow_id, packet.seq, error)
