"""
Routing abstractions for the on-demand protocol.

Defines the route table entry, the control messages exchanged between
routers, the data packets they carry, and the Router interface the routing
network drives.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set, Tuple

from scheduler import EventHandle


class RouteState(Enum):
    """
    Per (node, destination) route state.

    NO_ROUTE: nothing known, nothing in flight.
    DISCOVERING: a route request is outstanding.
    VALID: usable forwarding entry.
    INVALID: entry kept after expiry or link break until the delete period ends.
    """

    NO_ROUTE = "NoRoute"
    DISCOVERING = "Discovering"
    VALID = "Valid"
    INVALID = "Invalid"


@dataclass
class RouteEntry:
    """
    Single forwarding entry in a node's routing table.
    """

    dest: int
    next_hop: int
    hop_count: int
    seqno: int
    valid_seqno: bool
    expiry: float
    state: RouteState = RouteState.VALID
    precursors: Set[int] = field(default_factory=set)
    timer: Optional[EventHandle] = field(default=None, repr=False, compare=False)

    def remaining(self, now: float) -> float:
        return max(0.0, self.expiry - now)


@dataclass(frozen=True)
class RouteRequest:
    originator: int
    originator_seqno: int
    destination: int
    dest_seqno: int
    unknown_seqno: bool
    request_id: int
    hop_count: int


@dataclass(frozen=True)
class RouteReply:
    """
    Reply travelling back along the reverse path towards originator.

    lifetime is relative: receivers install routes expiring at now + lifetime.
    """

    originator: int
    destination: int
    dest_seqno: int
    hop_count: int
    lifetime: float


@dataclass(frozen=True)
class RouteError:
    """
    Destinations (with their invalidated seqnos) no longer reachable via sender.

    error_id stays the same while the error propagates so every node handles
    a given break once.
    """

    error_id: Tuple[int, int]
    unreachable: Tuple[Tuple[int, int], ...]


ControlMessage = RouteRequest | RouteReply | RouteError


class PacketKind(Enum):
    REQUEST = "request"
    ECHO = "echo"


@dataclass(frozen=True)
class DataPacket:
    flow_id: int
    seq: int
    source: int
    destination: int
    size: int
    sent_at: float
    kind: PacketKind = PacketKind.REQUEST


class Router(ABC):
    """
    Common router API driven by the routing network.
    """

    @property
    @abstractmethod
    def node(self) -> int:
        """Node identity owned by this router."""
        raise NotImplementedError

    @abstractmethod
    def send(self, packet: DataPacket) -> None:
        """
        Hand a locally originated packet to the router.

        Sends immediately over a Valid route, otherwise queues it and starts
        (or joins) route discovery.
        """
        raise NotImplementedError

    @abstractmethod
    def handle_message(self, sender: int, message: ControlMessage) -> None:
        """Process one control message received from neighbour sender."""
        raise NotImplementedError

    @abstractmethod
    def neighbor_up(self, neighbor: int) -> None:
        """The link to neighbor came up."""
        raise NotImplementedError

    @abstractmethod
    def neighbor_down(self, neighbor: int) -> None:
        """The link to neighbor broke."""
        raise NotImplementedError

    @abstractmethod
    def route_state(self, dest: int) -> RouteState:
        raise NotImplementedError

    @abstractmethod
    def lookup(self, dest: int) -> Optional[RouteEntry]:
        """Copy of the table entry for dest, or None."""
        raise NotImplementedError
