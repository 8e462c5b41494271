"""
Tests for the virtual and asyncio schedulers and the frame loop.
"""

import asyncio

import pytest

from scheduler import AsyncioScheduler, FrameLoop, VirtualScheduler


class TestVirtualScheduler:
    """Tests for the deterministic test clock."""

    def test_runs_when_due(self):
        scheduler = VirtualScheduler()
        calls = []
        scheduler.call_later(100, lambda: calls.append(scheduler.now_ms()))

        assert scheduler.advance(99) == 0
        assert calls == []
        assert scheduler.advance(1) == 1
        assert calls == [100]

    def test_order_by_due_time_then_scheduling(self):
        scheduler = VirtualScheduler()
        calls = []
        scheduler.call_later(20, lambda: calls.append("b"))
        scheduler.call_later(10, lambda: calls.append("a"))
        scheduler.call_later(20, lambda: calls.append("c"))
        scheduler.advance(50)
        assert calls == ["a", "b", "c"]

    def test_cancelled_never_runs(self):
        scheduler = VirtualScheduler()
        calls = []
        handle = scheduler.call_later(10, lambda: calls.append(1))
        handle.cancel()
        handle.cancel()
        assert handle.cancelled
        assert scheduler.pending == 0
        assert scheduler.advance(100) == 0
        assert calls == []

    def test_callbacks_can_reschedule(self):
        scheduler = VirtualScheduler()
        calls = []

        def again():
            calls.append(scheduler.now_ms())
            if len(calls) < 3:
                scheduler.call_later(10, again)

        scheduler.call_later(10, again)
        scheduler.advance(100)
        assert calls == [10, 20, 30]
        assert scheduler.now_ms() == 100

    def test_pending_count(self):
        scheduler = VirtualScheduler()
        scheduler.call_later(10, lambda: None)
        scheduler.call_later(20, lambda: None)
        assert scheduler.pending == 2
        scheduler.advance(15)
        assert scheduler.pending == 1


class TestAsyncioScheduler:
    """Tests for the event-loop backed scheduler."""

    def test_call_later_runs_on_loop(self):
        async def scenario():
            scheduler = AsyncioScheduler()
            fired = asyncio.Event()
            scheduler.call_later(1, fired.set)
            await asyncio.wait_for(fired.wait(), timeout=1.0)
            return scheduler.now_ms()

        assert asyncio.run(scenario()) > 0

    def test_cancel(self):
        async def scenario():
            scheduler = AsyncioScheduler()
            calls = []
            handle = scheduler.call_later(5, lambda: calls.append(1))
            handle.cancel()
            await asyncio.sleep(0.02)
            return handle.cancelled, calls

        cancelled, calls = asyncio.run(scenario())
        assert cancelled
        assert calls == []


class TestFrameLoop:
    """Tests for the explicit per-frame callback."""

    def test_frames_at_interval(self):
        scheduler = VirtualScheduler()
        times = []
        loop = FrameLoop(scheduler, times.append, interval_ms=10)
        loop.start()
        scheduler.advance(35)
        assert times == [10, 20, 30]
        assert loop.frames == 3

    def test_stop_cancels_pending_frame(self):
        scheduler = VirtualScheduler()
        times = []
        loop = FrameLoop(scheduler, times.append, interval_ms=10)
        loop.start()
        scheduler.advance(10)
        loop.stop()
        scheduler.advance(100)
        assert times == [10]
        assert not loop.running
        assert scheduler.pending == 0

    def test_stop_from_inside_frame(self):
        scheduler = VirtualScheduler()
        loop = None

        def on_frame(now):
            loop.stop()

        loop = FrameLoop(scheduler, on_frame, interval_ms=10)
        loop.start()
        scheduler.advance(100)
        assert loop.frames == 1
        assert scheduler.pending == 0

    def test_start_is_idempotent(self):
        scheduler = VirtualScheduler()
        loop = FrameLoop(scheduler, lambda now: None, interval_ms=10)
        loop.start()
        loop.start()
        assert scheduler.pending == 1

    def test_exception_in_frame_keeps_loop_armed(self):
        scheduler = VirtualScheduler()

        def on_frame(now):
            raise RuntimeError("draw failed")

        loop = FrameLoop(scheduler, on_frame, interval_ms=10)
        loop.start()
        with pytest.raises(RuntimeError):
            scheduler.advance(10)
        assert scheduler.pending == 1
