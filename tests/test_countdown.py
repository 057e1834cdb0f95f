"""Tests for the client-side response countdown."""
import asyncio

import pytest

from app.client.countdown import ResponseCountdown

TICK = 0.01


class TestResponseCountdown:

    @pytest.mark.asyncio
    async def test_ticks_down_and_reports_elapsed(self):
        elapsed = asyncio.Event()
        ticks: list[int] = []

        async def on_elapsed():
            elapsed.set()

        countdown = ResponseCountdown(on_elapsed=on_elapsed, tick_seconds=TICK, on_tick=ticks.append)
        countdown.resync(3)
        assert countdown.running

        await asyncio.wait_for(elapsed.wait(), timeout=2)

        assert ticks == [2, 1, 0]
        assert countdown.seconds_left == 0
        assert not countdown.running

    @pytest.mark.asyncio
    async def test_resync_zero_stops_without_elapsed(self):
        calls = []

        async def on_elapsed():
            calls.append(True)

        countdown = ResponseCountdown(on_elapsed=on_elapsed, tick_seconds=TICK)
        countdown.resync(500)
        countdown.resync(0)
        await asyncio.sleep(TICK * 5)

        assert not countdown.running
        assert calls == []

    @pytest.mark.asyncio
    async def test_resync_adopts_new_figure_without_second_task(self):
        countdown = ResponseCountdown(tick_seconds=10)
        countdown.resync(100)
        first = countdown._task

        countdown.resync(42)

        assert countdown._task is first
        assert countdown.seconds_left == 42
        await countdown.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels(self):
        countdown = ResponseCountdown(tick_seconds=TICK)
        countdown.resync(1000)
        await countdown.stop()

        remaining = countdown.seconds_left
        await asyncio.sleep(TICK * 5)

        assert not countdown.running
        assert countdown.seconds_left == remaining

    @pytest.mark.asyncio
    async def test_stop_cancels_refresh_started_at_zero(self):
        started = asyncio.Event()
        cancelled = []

        async def on_elapsed():
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        countdown = ResponseCountdown(on_elapsed=on_elapsed, tick_seconds=TICK)
        countdown.resync(1)
        await asyncio.wait_for(started.wait(), timeout=2)

        await countdown.stop()

        assert cancelled == [True]
        others = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert all(t.done() for t in others)

    @pytest.mark.asyncio
    async def test_negative_figure_clamped(self):
        countdown = ResponseCountdown(tick_seconds=TICK)
        countdown.resync(-7)
        assert countdown.seconds_left == 0
        assert not countdown.running
