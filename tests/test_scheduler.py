"""
Unit tests for the virtual-time EventScheduler.
"""

from dataclasses import dataclass

import pytest

from errors import InvalidSchedule
from scheduler import EventScheduler


@dataclass(frozen=True)
class Ping:
    label: str


@dataclass(frozen=True)
class Pong:
    label: str


def _collecting_scheduler():
    sched = EventScheduler()
    fired = []
    sched.register_handler(Ping, lambda p: fired.append((sched.now(), p.label)))
    return sched, fired


def test_events_fire_in_time_order_with_fifo_ties():
    """Earlier fire times go first; equal fire times keep insertion order."""
    sched, fired = _collecting_scheduler()
    sched.schedule(2.0, Ping("late"))
    sched.schedule(1.0, Ping("first"))
    sched.schedule(1.0, Ping("second"))
    sched.schedule(1.0, Ping("third"))

    sched.run_until(5.0)

    assert [label for _, label in fired] == ["first", "second", "third", "late"]
    assert [t for t, _ in fired] == [1.0, 1.0, 1.0, 2.0]


def test_event_scheduled_by_handler_at_same_time_runs_after_current():
    sched = EventScheduler()
    order = []

    def on_ping(p: Ping) -> None:
        order.append(p.label)
        if p.label == "a":
            sched.schedule(sched.now(), Ping("c"))

    sched.register_handler(Ping, on_ping)
    sched.schedule(1.0, Ping("a"))
    sched.schedule(1.0, Ping("b"))
    sched.run_until(1.0)

    assert order == ["a", "b", "c"]


def test_cancel_prevents_firing_and_is_idempotent():
    sched, fired = _collecting_scheduler()
    keep = sched.schedule(1.0, Ping("keep"))
    drop = sched.schedule(1.0, Ping("drop"))

    sched.cancel(drop)
    sched.cancel(drop)
    sched.cancel(None)
    assert sched.pending() == 1

    sched.run_until(2.0)
    assert fired == [(1.0, "keep")]
    assert sched.statistics["events_cancelled"] == 1

    # cancelling an event that already fired changes nothing
    sched.cancel(keep)
    assert sched.statistics["events_cancelled"] == 1


def test_schedule_in_the_past_raises():
    sched, _ = _collecting_scheduler()
    sched.schedule(3.0, Ping("x"))
    sched.run_until(3.0)

    with pytest.raises(InvalidSchedule):
        sched.schedule(2.5, Ping("too late"))
    with pytest.raises(InvalidSchedule):
        sched.schedule_in(-0.1, Ping("negative delay"))
    with pytest.raises(InvalidSchedule):
        sched.schedule(float("inf"), Ping("never"))


def test_run_until_is_inclusive_and_advances_clock():
    """Events at the stop instant fire; later ones stay queued for the next call."""
    sched, fired = _collecting_scheduler()
    sched.schedule(1.0, Ping("a"))
    sched.schedule(4.0, Ping("b"))
    sched.schedule(6.0, Ping("c"))

    assert sched.run_until(4.0) == 2
    assert sched.now() == 4.0
    assert sched.pending() == 1
    assert sched.next_event_time() == 6.0

    assert sched.run_until(10.0) == 1
    assert sched.now() == 10.0
    assert [label for _, label in fired] == ["a", "b", "c"]


def test_run_until_before_now_raises():
    sched = EventScheduler(start_time=5.0)
    with pytest.raises(InvalidSchedule):
        sched.run_until(4.0)


def test_clock_is_monotonic_across_handlers():
    sched = EventScheduler()
    seen = []

    def on_ping(p: Ping) -> None:
        seen.append(sched.now())
        if len(seen) < 5:
            sched.schedule_in(0.5, Ping("again"))

    sched.register_handler(Ping, on_ping)
    sched.schedule(0.0, Ping("start"))
    sched.run_until(100.0)

    assert seen == sorted(seen)
    assert seen == [0.0, 0.5, 1.0, 1.5, 2.0]


def test_every_registered_handler_sees_the_payload():
    sched = EventScheduler()
    calls = []
    sched.register_handler(Ping, lambda p: calls.append(("one", p.label)))
    sched.register_handler(Ping, lambda p: calls.append(("two", p.label)))
    sched.schedule(1.0, Ping("x"))
    sched.run_until(1.0)

    assert calls == [("one", "x"), ("two", "x")]


def test_payload_without_handler_raises():
    sched, _ = _collecting_scheduler()
    sched.schedule(1.0, Pong("orphan"))
    with pytest.raises(InvalidSchedule):
        sched.run_until(2.0)


def test_step_reports_empty_queue():
    sched, fired = _collecting_scheduler()
    assert sched.step() is False
    sched.schedule(0.5, Ping("only"))
    assert sched.step() is True
    assert sched.step() is False
    assert fired == [(0.5, "only")]
