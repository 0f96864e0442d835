"""Tests for instapod/scheduler.py -- run exclusivity and the cron timer."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest


class TestRunGuard:

    def test_second_trigger_is_dropped_while_running(self):
        from instapod.scheduler import RunGuard

        async def scenario():
            release = asyncio.Event()
            calls = []

            async def pipeline():
                calls.append(1)
                await release.wait()

            guard = RunGuard(pipeline)
            assert guard.trigger("scheduler") is True
            await asyncio.sleep(0)
            assert guard.in_progress
            assert guard.trigger("manual") is False
            assert guard.run_now() is False
            assert await guard.run("cli") is False
            release.set()
            await guard.wait()
            return guard, calls

        guard, calls = asyncio.run(scenario())
        assert calls == [1]
        assert guard.runs_started == 1
        assert not guard.in_progress

    def test_trigger_after_completion_starts_new_run(self):
        from instapod.scheduler import RunGuard

        async def scenario():
            pipeline = AsyncMock()
            guard = RunGuard(pipeline)
            assert await guard.run("first") is True
            assert guard.trigger("second") is True
            await guard.wait()
            return pipeline

        pipeline = asyncio.run(scenario())
        assert pipeline.await_count == 2

    def test_flag_reset_after_failure(self):
        from instapod.errors import SourceUnavailable
        from instapod.scheduler import RunGuard

        async def scenario():
            guard = RunGuard(AsyncMock(side_effect=SourceUnavailable("down")))
            started = await guard.run("cli")
            return guard, started

        guard, started = asyncio.run(scenario())
        assert started is True
        assert not guard.in_progress

    def test_concurrent_triggers_start_one_run(self):
        from instapod.scheduler import RunGuard

        async def scenario():
            pipeline = AsyncMock()
            guard = RunGuard(pipeline)
            results = [guard.trigger(f"t{i}") for i in range(5)]
            await guard.wait()
            return results, pipeline

        results, pipeline = asyncio.run(scenario())
        assert results == [True, False, False, False, False]
        assert pipeline.await_count == 1


    def test_trigger_outside_event_loop_leaves_flag_clear(self):
        from instapod.scheduler import RunGuard
        pipeline = AsyncMock()
        guard = RunGuard(pipeline)
        with pytest.raises(RuntimeError):
            guard.trigger("manual")
        assert not guard.in_progress
        assert guard.runs_started == 0
        assert asyncio.run(guard.run("cli")) is True
        assert pipeline.await_count == 1

class TestCronTimer:

    def _clock(self, start):
        now = [start]
        return now, (lambda: now[0])

    def test_invalid_expression(self):
        from instapod.scheduler import CronTimer
        with pytest.raises(ValueError):
            CronTimer("not a cron", MagicMock())

    def test_next_fire_time(self):
        from instapod.scheduler import CronTimer
        timer = CronTimer("*/30 * * * *", MagicMock())
        assert timer.next_fire_time(datetime(2024, 1, 1, 12, 10)) == datetime(2024, 1, 1, 12, 30)

    def test_fires_on_schedule(self):
        from instapod.scheduler import CronTimer
        now, clock = self._clock(datetime(2024, 1, 1, 12, 0))
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            if len(delays) == 3:
                raise asyncio.CancelledError()
            now[0] += timedelta(seconds=seconds)

        guard = MagicMock()
        timer = CronTimer("*/30 * * * *", guard, clock=clock, sleep=fake_sleep)
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(timer._loop())

        assert delays == [1800, 1800, 1800]
        assert guard.trigger.call_count == 2
        guard.trigger.assert_called_with("scheduled")

    def test_missed_ticks_are_skipped(self):
        from instapod.scheduler import CronTimer
        now, clock = self._clock(datetime(2024, 1, 1, 12, 0))
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            if len(delays) == 2:
                raise asyncio.CancelledError()
            # host suspended: woke up long after the tick
            now[0] = datetime(2024, 1, 1, 14, 10)

        guard = MagicMock()
        timer = CronTimer("*/30 * * * *", guard, clock=clock, sleep=fake_sleep)
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(timer._loop())

        assert delays == [1800, 1200]
        assert guard.trigger.call_count == 1

    def test_start_and_stop(self):
        from instapod.scheduler import CronTimer

        async def scenario():
            timer = CronTimer("*/30 * * * *", MagicMock())
            timer.start()
            await asyncio.sleep(0)
            running = timer._task is not None and not timer._task.done()
            await timer.stop()
            return timer, running

        timer, running = asyncio.run(scenario())
        assert running
        assert timer._task is None


class TestGetStatus:

    def test_combines_state_and_guard(self, data_dir):
        from instapod.scheduler import RunGuard, get_status
        from instapod.state import StateStore
        state = StateStore(data_dir)
        guard = RunGuard(AsyncMock())
        assert get_status(state, guard) == {
            "episode_count": 0,
            "last_run_at": None,
            "run_in_progress": False,
        }
