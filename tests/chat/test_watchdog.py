"""Unit tests for StreamRecoveryWatchdog."""

import asyncio

import pytest

from streamforge.chat.watchdog import StreamRecoveryWatchdog


class TestStreamRecoveryWatchdog:
    """Tests for stall detection."""

    @pytest.mark.asyncio
    async def test_fires_after_inactivity(self):
        """No touch within the window reports a stall."""
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.05, max_retries=2)
        watchdog.start(notices.append)

        await asyncio.sleep(0.08)
        watchdog.stop()

        assert len(notices) == 1
        assert notices[0].attempt == 1
        assert notices[0].exhausted is False
        assert notices[0].idle_seconds >= 0.05

    @pytest.mark.asyncio
    async def test_touch_keeps_stream_alive(self):
        """Regular touches prevent any stall."""
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.1, max_retries=2)
        watchdog.start(notices.append)

        for _ in range(5):
            await asyncio.sleep(0.03)
            watchdog.touch()
        watchdog.stop()

        assert notices == []

    @pytest.mark.asyncio
    async def test_stops_firing_once_budget_exhausted(self):
        """After max_retries stalls the next notice is exhausted and the last one."""
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.02, max_retries=1)
        watchdog.start(notices.append)

        await asyncio.sleep(0.15)

        assert [notice.exhausted for notice in notices] == [False, True]
        assert watchdog.running is False
        watchdog.stop()

    @pytest.mark.asyncio
    async def test_zero_budget_first_stall_is_exhausted(self):
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.02, max_retries=0)
        watchdog.start(notices.append)

        await asyncio.sleep(0.06)

        assert len(notices) == 1
        assert notices[0].exhausted is True
        watchdog.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        """stop() can be called repeatedly and cancels the timer."""
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.05, max_retries=2)
        watchdog.start(notices.append)

        watchdog.stop()
        watchdog.stop()
        await asyncio.sleep(0.08)

        assert notices == []
        assert watchdog.stopped is True
        assert watchdog.running is False

    @pytest.mark.asyncio
    async def test_stop_before_start(self):
        """Stopping a watchdog that never started is harmless."""
        watchdog = StreamRecoveryWatchdog(timeout=1, max_retries=0)
        watchdog.stop()

        with pytest.raises(RuntimeError):
            watchdog.start(lambda notice: None)

    @pytest.mark.asyncio
    async def test_uses_injected_clock(self):
        """Idle time is measured with the supplied clock."""
        now = [100.0]
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.01, max_retries=0, clock=lambda: now[0])
        watchdog.start(notices.append)

        now[0] += 50.0
        await asyncio.sleep(0.03)
        watchdog.stop()

        assert notices[0].idle_seconds == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_pause_suspends_detection(self):
        """No stall is reported while paused; resume re-arms a full window."""
        notices = []
        watchdog = StreamRecoveryWatchdog(timeout=0.05, max_retries=0)
        watchdog.start(notices.append)

        watchdog.pause()
        await asyncio.sleep(0.15)
        assert notices == []

        watchdog.resume()
        await asyncio.sleep(0.03)
        assert notices == []
        await asyncio.sleep(0.1)
        watchdog.stop()

        assert len(notices) == 1
