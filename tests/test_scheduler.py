"""Tests for the cooperative scheduler."""

import threading

import pytest

from reprap_sender.scheduler import EventLoopScheduler


@pytest.fixture
def calls():
    return []


class TestVirtualScheduler:
    def test_runs_in_due_order(self, scheduler, calls):
        scheduler.after(30, lambda: calls.append("c"))
        scheduler.after(10, lambda: calls.append("a"))
        scheduler.after(20, lambda: calls.append("b"))
        scheduler.advance(100)
        assert calls == ["a", "b", "c"]

    def test_same_due_time_keeps_insertion_order(self, scheduler, calls):
        for name in "xyz":
            scheduler.after(5, lambda n=name: calls.append(n))
        scheduler.advance(5)
        assert calls == ["x", "y", "z"]

    def test_advance_stops_at_target(self, scheduler, calls):
        scheduler.after(50, lambda: calls.append(1))
        scheduler.advance(49)
        assert calls == []
        assert scheduler.now_ms() == 49
        scheduler.advance(1)
        assert calls == [1]

    def test_cancel(self, scheduler, calls):
        after_id = scheduler.after(10, lambda: calls.append(1))
        scheduler.after_cancel(after_id)
        scheduler.advance(100)
        assert calls == []
        assert scheduler.pending() == 0

    def test_callbacks_can_reschedule(self, scheduler, calls):
        def tick():
            calls.append(scheduler.now_ms())
            if len(calls) < 3:
                scheduler.after(10, tick)

        scheduler.after(0, tick)
        scheduler.run_until_idle()
        assert calls == [0, 10, 20]

    def test_failing_callback_does_not_break_loop(self, scheduler, calls):
        def boom():
            raise ValueError("bad")

        scheduler.after(1, boom)
        scheduler.after(2, lambda: calls.append("after"))
        scheduler.advance(5)
        assert calls == ["after"]

    def test_run_until_idle_respects_limit(self, scheduler, calls):
        scheduler.after(10_000, lambda: calls.append(1))
        scheduler.run_until_idle(limit_ms=1000)
        assert calls == []

    def test_run_forever_rejects_virtual_time(self, scheduler):
        with pytest.raises(RuntimeError):
            scheduler.run_forever()


class TestRealTimeScheduler:
    def test_advance_requires_virtual(self):
        with pytest.raises(RuntimeError):
            EventLoopScheduler().advance(10)

    def test_run_forever_until_stopped(self):
        sched = EventLoopScheduler()
        stop = threading.Event()
        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 3:
                stop.set()
            else:
                sched.after(1, tick)

        sched.after(0, tick)
        sched.run_forever(stop)
        assert len(calls) == 3

    def test_run_forever_returns_when_empty(self):
        sched = EventLoopScheduler()
        sched.run_forever()
        assert sched.pending() == 0
