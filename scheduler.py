"""
Virtual-time event scheduler.

Events are kept in a binary heap ordered by (fire_time, insertion sequence), so
events sharing a fire time run in the order they were scheduled. Payloads are
plain data records; components register a handler per payload type and the
scheduler dispatches each popped event to the handlers of its payload type.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List
import heapq
import math

from errors import InvalidSchedule


Handler = Callable[[Any], None]


@dataclass(order=True)
class Event:
    """
    A scheduled payload. Ordering only looks at (fire_time, seq).
    """

    fire_time: float
    seq: int
    payload: Any = field(compare=False)
    cancelled: bool = field(default=False, compare=False)
    fired: bool = field(default=False, compare=False)


# The Event itself is the handle handed back to callers.
EventHandle = Event


class EventScheduler:
    """
    Single-threaded discrete-event engine.

    Handlers run to completion one at a time. Anything a handler schedules is
    pushed onto the heap and only considered by later steps.
    """

    def __init__(self, start_time: float = 0.0) -> None:
        self._queue: List[Event] = []
        self._now = start_time
        self._seq = 0
        self._handlers: Dict[type, List[Handler]] = {}
        self.statistics: Dict[str, int] = {
            "events_scheduled": 0,
            "events_processed": 0,
            "events_cancelled": 0,
        }

    def now(self) -> float:
        return self._now

    def register_handler(self, payload_type: type, handler: Handler) -> None:
        """Attach handler to every future event whose payload is a payload_type."""
        self._handlers.setdefault(payload_type, []).append(handler)

    def schedule(self, fire_time: float, payload: Any) -> EventHandle:
        if not math.isfinite(fire_time):
            raise InvalidSchedule(f"fire time must be finite, got {fire_time!r}")
        if fire_time < self._now:
            raise InvalidSchedule(
                f"cannot schedule {type(payload).__name__} at {fire_time:.6f}, "
                f"clock is already at {self._now:.6f}"
            )
        event = Event(fire_time, self._seq, payload)
        self._seq += 1
        heapq.heappush(self._queue, event)
        self.statistics["events_scheduled"] += 1
        return event

    def schedule_in(self, delay: float, payload: Any) -> EventHandle:
        if delay < 0:
            raise InvalidSchedule(f"delay must be non-negative, got {delay!r}")
        return self.schedule(self._now + delay, payload)

    def cancel(self, handle: EventHandle | None) -> None:
        """Cancel a pending event; a no-op for None, fired or cancelled handles."""
        if handle is None or handle.fired or handle.cancelled:
            return
        handle.cancelled = True
        self.statistics["events_cancelled"] += 1

    def pending(self) -> int:
        """Number of live (not cancelled) events still queued."""
        return sum(1 for event in self._queue if not event.cancelled)

    def next_event_time(self) -> float | None:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0].fire_time if self._queue else None

    def step(self) -> bool:
        """Fire the next live event. Returns False when the queue is empty."""
        while self._queue:
            event = heapq.heappop(self._queue)
            if event.cancelled:
                continue
            self._dispatch(event)
            return True
        return False

    def run_until(self, stop_time: float) -> int:
        """
        Drain every event with fire_time <= stop_time, then move the clock to
        stop_time. Returns the number of events processed by this call.
        """
        if stop_time < self._now:
            raise InvalidSchedule(f"stop time {stop_time} is before now ({self._now})")

        processed = 0
        while True:
            next_time = self.next_event_time()
            if next_time is None or next_time > stop_time:
                break
            self.step()
            processed += 1

        self._now = stop_time
        return processed

    def _dispatch(self, event: Event) -> None:
        handlers = self._handlers.get(type(event.payload))
        if not handlers:
            raise InvalidSchedule(f"no handler registered for {type(event.payload).__name__}")

        self._now = event.fire_time
        event.fired = True
        self.statistics["events_processed"] += 1
        for handler in list(handlers):
            handler(event.payload)
