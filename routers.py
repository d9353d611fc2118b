"""
On-demand distance-vector router.

One AodvRouter per node. Routes are discovered with flooded route requests,
confirmed with unicast replies travelling back along the reverse path, and
torn down with route errors sent to precursors when a next-hop link breaks.
Timers (discovery retries, route lifetimes) are scheduler events that the
routing network hands back to the owning router.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Deque, Dict, Hashable, List, Optional, Set, Tuple
import logging

from config import AodvParameters
from errors import RouteUnreachable
from routing import (
    ControlMessage,
    DataPacket,
    RouteEntry,
    RouteError,
    RouteReply,
    RouteRequest,
    Router,
    RouteState,
)
from scheduler import EventHandle, EventScheduler

if TYPE_CHECKING:  # pragma: no cover
    from simulation import RoutingNetwork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryTimeout:
    """Retry timer for node's outstanding request towards dest."""

    node: int
    dest: int


@dataclass(frozen=True)
class RouteLifetimeExpired:
    node: int
    dest: int


@dataclass
class PendingDiscovery:
    """
    Outstanding route request from this node towards dest.
    """

    dest: int
    request: RouteRequest
    started_at: float
    retries: int = 0
    timer: Optional[EventHandle] = field(default=None, repr=False)


class IdCache:
    """
    Keys remembered for a fixed window, used for duplicate suppression.

    Expired keys are purged whenever the cache is consulted, so its size is
    bounded by the traffic seen within one window.
    """

    def __init__(self, lifetime: float) -> None:
        self._lifetime = lifetime
        self._expiry: Dict[Hashable, float] = {}

    def __len__(self) -> int:
        return len(self._expiry)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._expiry

    def purge(self, now: float) -> None:
        for key in [k for k, t in self._expiry.items() if t < now]:
            del self._expiry[key]

    def add(self, key: Hashable, now: float) -> None:
        self.purge(now)
        self._expiry[key] = now + self._lifetime

    def is_duplicate(self, key: Hashable, now: float) -> bool:
        """True if key was seen within the window; otherwise remember it."""
        self.purge(now)
        if key in self._expiry:
            return True
        self._expiry[key] = now + self._lifetime
        return False


class AodvRouter(Router):
    """
    Route discovery, maintenance and table ownership for a single node.
    """

    def __init__(
        self,
        node: int,
        scheduler: EventScheduler,
        network: "RoutingNetwork",
        params: AodvParameters,
    ) -> None:
        self._node = node
        self._scheduler = scheduler
        self._network = network
        self._params = params

        self._table: Dict[int, RouteEntry] = {}
        # Highest destination seqno ever seen; outlives deleted entries.
        self._known_seqnos: Dict[int, int] = {}
        self._seqno = 0
        self._request_id = 0
        self._error_id = 0
        self._rreq_cache = IdCache(params.path_discovery_time)
        self._rerr_cache = IdCache(params.path_discovery_time)
        self._pending: Dict[int, PendingDiscovery] = {}
        self._queues: Dict[int, Deque[Tuple[DataPacket, float]]] = {}

        self.stats: Dict[str, int] = {
            "rreq_sent": 0,
            "rreq_forwarded": 0,
            "rrep_sent": 0,
            "rrep_forwarded": 0,
            "rerr_sent": 0,
            "duplicates_suppressed": 0,
            "stale_rejected": 0,
            "discoveries": 0,
            "discovery_failures": 0,
            "link_breaks": 0,
            "routes_expired": 0,
            "packets_dropped": 0,
        }

    # --- Router interface ---------------------------------------------------

    @property
    def node(self) -> int:
        return self._node

    @property
    def seqno(self) -> int:
        return self._seqno

    def send(self, packet: DataPacket) -> None:
        dest = packet.destination
        if self._valid_entry(dest) is not None:
            self._network.forward_data(self._node, packet)
            return

        self._enqueue(packet)
        if dest not in self._pending:
            self._start_discovery(dest)

    def handle_message(self, sender: int, message: ControlMessage) -> None:
        self._update_neighbor_route(sender)
        if isinstance(message, RouteRequest):
            self._recv_request(sender, message)
        elif isinstance(message, RouteReply):
            self._recv_reply(sender, message)
        elif isinstance(message, RouteError):
            self._recv_error(sender, message)
        else:
            raise TypeError(f"unsupported control message {message!r}")

    def neighbor_up(self, neighbor: int) -> None:
        # Give outstanding discoveries a chance through the new link right away.
        for pending in list(self._pending.values()):
            logger.debug(
                "t=%.3f node %d resends request %d for %d to new neighbour %d",
                self._now(), self._node, pending.request.request_id, pending.dest, neighbor,
            )
            if self._network.transmit(self._node, neighbor, pending.request):
                self.stats["rreq_sent"] += 1

    def neighbor_down(self, neighbor: int) -> None:
        self.stats["link_breaks"] += 1
        lost: List[Tuple[int, int]] = []
        precursors: Set[int] = set()
        for dest, entry in sorted(self._table.items()):
            if entry.state is RouteState.VALID and entry.next_hop == neighbor:
                self._invalidate(entry, entry.seqno + 1 if entry.valid_seqno else entry.seqno)
                lost.append((dest, entry.seqno))
                precursors |= entry.precursors
        precursors.discard(neighbor)

        if not lost:
            return
        logger.info(
            "t=%.3f node %d lost link to %d, invalidated routes to %s",
            self._now(), self._node, neighbor, [dest for dest, _ in lost],
        )
        self._propagate_error(self._new_error_id(), lost, precursors)

    def route_state(self, dest: int) -> RouteState:
        if dest in self._pending:
            return RouteState.DISCOVERING
        entry = self._table.get(dest)
        return entry.state if entry is not None else RouteState.NO_ROUTE

    def lookup(self, dest: int) -> Optional[RouteEntry]:
        entry = self._table.get(dest)
        return self._copy(entry) if entry is not None else None

    # --- Read-only accessors --------------------------------------------------

    def entries(self) -> List[RouteEntry]:
        """Copies of every table entry, ordered by destination."""
        return [self._copy(self._table[dest]) for dest in sorted(self._table)]

    def known_seqno(self, dest: int) -> Optional[int]:
        return self._known_seqnos.get(dest)

    def queued(self, dest: int) -> int:
        return len(self._queues.get(dest, ()))

    def pending_discoveries(self) -> List[int]:
        return sorted(self._pending)

    def cache_sizes(self) -> Tuple[int, int]:
        """(request-id cache, error-id cache) sizes."""
        return len(self._rreq_cache), len(self._rerr_cache)

    # --- Forwarding hooks used by the routing network ---------------------------

    def next_hop_for(self, dest: int) -> Optional[int]:
        """
        Next hop over a Valid route, refreshing the lifetime of the routes used.
        """
        entry = self._valid_entry(dest)
        if entry is None:
            return None
        keep_until = self._now() + self._params.active_route_timeout
        self._extend(entry, keep_until)
        hop_entry = self._valid_entry(entry.next_hop)
        if hop_entry is not None:
            self._extend(hop_entry, keep_until)
        return entry.next_hop

    def report_forward_failure(self, dest: int, previous_hop: int) -> None:
        """A relayed packet for dest hit this node without a Valid route."""
        self.stats["packets_dropped"] += 1
        entry = self._table.get(dest)
        seqno = entry.seqno if entry is not None else self._known_seqnos.get(dest, 0)
        logger.debug("t=%.3f node %d has no route to forward to %d", self._now(), self._node, dest)
        self._propagate_error(self._new_error_id(), [(dest, seqno)], {previous_hop})

    def on_discovery_timeout(self, dest: int) -> None:
        pending = self._pending.get(dest)
        if pending is None:
            return

        if pending.retries < self._params.rreq_retries:
            pending.retries += 1
            pending.request = self._new_request(dest)
            logger.debug(
                "t=%.3f node %d retries discovery of %d (attempt %d)",
                self._now(), self._node, dest, pending.retries + 1,
            )
            self._broadcast_request(pending)
            return

        del self._pending[dest]
        self.stats["discovery_failures"] += 1
        logger.warning(
            "t=%.3f node %d gave up on %d after %d attempts",
            self._now(), self._node, dest, pending.retries + 1,
        )
        self._drop_queue(dest, "route discovery exhausted its retries")

    def on_lifetime_expired(self, dest: int) -> None:
        entry = self._table.get(dest)
        if entry is None:
            return
        if entry.state is RouteState.VALID:
            self.stats["routes_expired"] += 1
            logger.debug("t=%.3f node %d route to %d expired", self._now(), self._node, dest)
            self._invalidate(entry, entry.seqno)
        else:
            entry.timer = None
            del self._table[dest]
            logger.debug("t=%.3f node %d deleted route to %d", self._now(), self._node, dest)

    # --- Discovery ---------------------------------------------------------

    def _start_discovery(self, dest: int) -> None:
        pending = PendingDiscovery(dest=dest, request=self._new_request(dest), started_at=self._now())
        self._pending[dest] = pending
        logger.debug("t=%.3f node %d starts discovery of %d", self._now(), self._node, dest)
        self._broadcast_request(pending)

    def _new_request(self, dest: int) -> RouteRequest:
        self._seqno += 1
        self._request_id += 1
        known = self._known_seqnos.get(dest)
        return RouteRequest(
            originator=self._node,
            originator_seqno=self._seqno,
            destination=dest,
            dest_seqno=known if known is not None else 0,
            unknown_seqno=known is None,
            request_id=self._request_id,
            hop_count=0,
        )

    def _broadcast_request(self, pending: PendingDiscovery) -> None:
        self._rreq_cache.add((self._node, pending.request.request_id), self._now())
        self._network.broadcast(self._node, pending.request)
        self.stats["rreq_sent"] += 1
        wait = self._params.net_traversal_time * (2 ** pending.retries)
        self._scheduler.cancel(pending.timer)
        pending.timer = self._scheduler.schedule_in(wait, DiscoveryTimeout(self._node, pending.dest))

    def _recv_request(self, sender: int, req: RouteRequest) -> None:
        now = self._now()
        if self._rreq_cache.is_duplicate((req.originator, req.request_id), now):
            self.stats["duplicates_suppressed"] += 1
            return

        hops = req.hop_count + 1
        self._update_reverse_route(req.originator, sender, req.originator_seqno, hops)

        if req.destination == self._node:
            if not req.unknown_seqno:
                self._seqno = max(self._seqno, req.dest_seqno)
            reply = RouteReply(
                originator=req.originator,
                destination=self._node,
                dest_seqno=self._seqno,
                hop_count=0,
                lifetime=self._params.my_route_timeout,
            )
            self._send_reply(reply)
            return

        entry = self._valid_entry(req.destination)
        if (
            entry is not None
            and entry.valid_seqno
            and not self._params.destination_only
            and (req.unknown_seqno or entry.seqno >= req.dest_seqno)
        ):
            reverse = self._table[req.originator]
            entry.precursors.add(reverse.next_hop)
            reverse.precursors.add(entry.next_hop)
            reply = RouteReply(
                originator=req.originator,
                destination=req.destination,
                dest_seqno=entry.seqno,
                hop_count=entry.hop_count,
                lifetime=entry.remaining(now),
            )
            self._send_reply(reply)
            return

        if hops >= self._params.net_diameter:
            return

        dest_seqno, unknown = req.dest_seqno, req.unknown_seqno
        known = self._known_seqnos.get(req.destination)
        if known is not None and (unknown or known > dest_seqno):
            dest_seqno, unknown = known, False
        self._network.broadcast(
            self._node,
            replace(req, hop_count=hops, dest_seqno=dest_seqno, unknown_seqno=unknown),
        )
        self.stats["rreq_forwarded"] += 1

    def _send_reply(self, reply: RouteReply) -> None:
        reverse = self._valid_entry(reply.originator)
        if reverse is None:
            return
        if self._network.transmit(self._node, reverse.next_hop, reply):
            self.stats["rrep_sent"] += 1

    def _recv_reply(self, sender: int, reply: RouteReply) -> None:
        dest = reply.destination
        if dest == self._node:
            return

        known = self._known_seqnos.get(dest)
        if known is not None and reply.dest_seqno < known:
            self.stats["stale_rejected"] += 1
            logger.debug(
                "t=%.3f node %d rejects stale reply for %d (seqno %d < %d)",
                self._now(), self._node, dest, reply.dest_seqno, known,
            )
            return

        hops = reply.hop_count + 1
        entry = self._table.get(dest)
        expiry = self._now() + reply.lifetime
        if entry is None:
            entry = RouteEntry(dest, sender, hops, reply.dest_seqno, True, expiry)
            self._install(entry)
        elif (
            not entry.valid_seqno
            or reply.dest_seqno > entry.seqno
            or (reply.dest_seqno == entry.seqno and entry.state is RouteState.INVALID)
            or (reply.dest_seqno == entry.seqno and hops < entry.hop_count)
        ):
            self._reroute(entry, sender, hops, reply.dest_seqno, expiry)
        else:
            # Same route as before (often a neighbour entry the reply itself
            # just refreshed): it still gets the advertised lifetime.
            self._extend(entry, expiry)

        # Relays pass the reply on even when their own entry did not change.
        if reply.originator == self._node:
            return

        reverse = self._valid_entry(reply.originator)
        if reverse is None:
            return
        entry.precursors.add(reverse.next_hop)
        reverse.precursors.add(sender)
        self._extend(reverse, self._now() + self._params.active_route_timeout)
        if self._network.transmit(self._node, reverse.next_hop, replace(reply, hop_count=hops)):
            self.stats["rrep_forwarded"] += 1

    # --- Maintenance ---------------------------------------------------------

    def _recv_error(self, sender: int, error: RouteError) -> None:
        if self._rerr_cache.is_duplicate(error.error_id, self._now()):
            return

        lost: List[Tuple[int, int]] = []
        precursors: Set[int] = set()
        for dest, seqno in error.unreachable:
            entry = self._table.get(dest)
            if entry is None or entry.state is not RouteState.VALID or entry.next_hop != sender:
                continue
            self._invalidate(entry, max(entry.seqno, seqno))
            lost.append((dest, entry.seqno))
            precursors |= entry.precursors
        precursors.discard(sender)

        if lost:
            logger.info(
                "t=%.3f node %d invalidated routes to %s on error from %d",
                self._now(), self._node, [dest for dest, _ in lost], sender,
            )
            self._propagate_error(error.error_id, lost, precursors)

    def _propagate_error(self, error_id: Tuple[int, int], lost: List[Tuple[int, int]], precursors: Set[int]) -> None:
        self._rerr_cache.add(error_id, self._now())
        message = RouteError(error_id=error_id, unreachable=tuple(lost))
        for precursor in sorted(precursors):
            if self._network.transmit(self._node, precursor, message):
                self.stats["rerr_sent"] += 1

    def _new_error_id(self) -> Tuple[int, int]:
        self._error_id += 1
        return (self._node, self._error_id)

    # --- Table helpers --------------------------------------------------------

    def _update_neighbor_route(self, neighbor: int) -> None:
        expiry = self._now() + self._params.active_route_timeout
        entry = self._table.get(neighbor)
        if entry is None:
            self._install(
                RouteEntry(neighbor, neighbor, 1, self._known_seqnos.get(neighbor, 0), False, expiry)
            )
        elif entry.state is not RouteState.VALID or entry.hop_count != 1 or entry.next_hop != neighbor:
            self._reroute(entry, neighbor, 1, entry.seqno, expiry, keep_seqno_flag=True)
        else:
            self._extend(entry, expiry)

    def _update_reverse_route(self, origin: int, via: int, seqno: int, hops: int) -> None:
        p = self._params
        expiry = self._now() + 2 * p.net_traversal_time - 2 * hops * p.node_traversal_time
        entry = self._table.get(origin)
        if entry is None:
            seqno = max(seqno, self._known_seqnos.get(origin, seqno))
            self._install(RouteEntry(origin, via, hops, seqno, True, expiry))
            return

        if entry.state is RouteState.VALID and entry.valid_seqno:
            if seqno < entry.seqno:
                self.stats["stale_rejected"] += 1
                return
            if seqno == entry.seqno and hops >= entry.hop_count:
                self._extend(entry, expiry)
                return
        self._reroute(entry, via, hops, max(seqno, entry.seqno), expiry)

    def _reroute(
        self,
        entry: RouteEntry,
        next_hop: int,
        hops: int,
        seqno: int,
        expiry: float,
        keep_seqno_flag: bool = False,
    ) -> None:
        was_valid = entry.state is RouteState.VALID
        entry.next_hop = next_hop
        entry.hop_count = hops
        entry.seqno = max(entry.seqno, seqno)
        if not keep_seqno_flag:
            entry.valid_seqno = True
        entry.state = RouteState.VALID
        if entry.valid_seqno:
            self._note_seqno(entry.dest, entry.seqno)
        self._set_expiry(entry, max(expiry, entry.expiry) if was_valid else expiry)
        if not was_valid:
            self._route_valid(entry.dest)

    def _install(self, entry: RouteEntry) -> None:
        self._table[entry.dest] = entry
        if entry.valid_seqno:
            self._note_seqno(entry.dest, entry.seqno)
        self._set_expiry(entry, entry.expiry)
        if entry.state is RouteState.VALID:
            self._route_valid(entry.dest)

    def _invalidate(self, entry: RouteEntry, seqno: int) -> None:
        entry.state = RouteState.INVALID
        entry.seqno = max(entry.seqno, seqno)
        if entry.valid_seqno:
            self._note_seqno(entry.dest, entry.seqno)
        self._set_expiry(entry, self._now() + self._params.delete_period)

    def _note_seqno(self, dest: int, seqno: int) -> None:
        if seqno > self._known_seqnos.get(dest, -1):
            self._known_seqnos[dest] = seqno

    def _set_expiry(self, entry: RouteEntry, expiry: float) -> None:
        self._scheduler.cancel(entry.timer)
        entry.expiry = max(expiry, self._now())
        entry.timer = self._scheduler.schedule(entry.expiry, RouteLifetimeExpired(self._node, entry.dest))

    def _extend(self, entry: RouteEntry, expiry: float) -> None:
        if expiry > entry.expiry:
            self._set_expiry(entry, expiry)

    def _valid_entry(self, dest: int) -> Optional[RouteEntry]:
        entry = self._table.get(dest)
        if entry is None or entry.state is not RouteState.VALID:
            return None
        return entry

    def _route_valid(self, dest: int) -> None:
        """A Valid route to dest appeared: finish any discovery and flush its queue."""
        pending = self._pending.pop(dest, None)
        if pending is not None:
            self._scheduler.cancel(pending.timer)
            self.stats["discoveries"] += 1
            entry = self._table[dest]
            logger.info(
                "t=%.3f node %d found route to %d via %d (%d hops) after %.3fs",
                self._now(), self._node, dest, entry.next_hop, entry.hop_count,
                self._now() - pending.started_at,
            )

        queue = self._queues.pop(dest, None)
        if not queue:
            return
        self._expire_queued(dest, queue)
        for packet, _ in queue:
            self._network.forward_data(self._node, packet)

    # --- Packet queue -----------------------------------------------------------

    def _enqueue(self, packet: DataPacket) -> None:
        queue = self._queues.setdefault(packet.destination, deque())
        self._expire_queued(packet.destination, queue)
        if len(queue) >= self._params.max_queue_len:
            dropped, _ = queue.popleft()
            self._fail(dropped, "queue full")
        queue.append((packet, self._now()))

    def _expire_queued(self, dest: int, queue: Deque[Tuple[DataPacket, float]]) -> None:
        cutoff = self._now() - self._params.max_queue_time
        while queue and queue[0][1] < cutoff:
            packet, _ = queue.popleft()
            self._fail(packet, "queued too long")

    def _drop_queue(self, dest: int, reason: str) -> None:
        for packet, _ in self._queues.pop(dest, deque()):
            self._fail(packet, reason)

    def _fail(self, packet: DataPacket, reason: str) -> None:
        self.stats["packets_dropped"] += 1
        self._network.delivery_failed(
            self._node, packet, RouteUnreachable(self._node, packet.destination, reason)
        )

    # --- Misc ------------------------------------------------------------------

    def _now(self) -> float:
        return self._scheduler.now()

    @staticmethod
    def _copy(entry: RouteEntry) -> RouteEntry:
        return replace(entry, precursors=set(entry.precursors), timer=None)
