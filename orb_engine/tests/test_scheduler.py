"""Tests for the session scheduler."""

import asyncio
from datetime import date, time

import pytest

from orb_engine.config import EngineConfig
from orb_engine.data.base import Position
from orb_engine.engine.coordinator import Coordinator
from orb_engine.engine.scheduler import SessionScheduler
from orb_engine.strategy.state import Phase
from orb_engine.tests.conftest import et, make_bars, no_sleep, range_rows


@pytest.fixture
def coordinator(config, market_data, broker):
    market_data.set("SPY", "5Min", make_bars(range_rows()))
    return Coordinator(config, market_data, broker, sleep=no_sleep)


@pytest.fixture
def scheduler(coordinator):
    return SessionScheduler(coordinator, sleep=no_sleep)


class TestDueJobs:
    """Test the job timetable."""

    def test_reset_and_range_times(self, scheduler):
        assert scheduler.due_jobs(et(9, 27)) == []
        assert scheduler.due_jobs(et(9, 28)) == ["reset"]

    def test_ticks_start_after_range(self, scheduler):
        scheduler.dispatch(et(9, 28))
        assert scheduler.due_jobs(et(9, 45)) == ["range"]

    def test_health_every_fifteen_minutes(self, scheduler):
        scheduler.dispatch(et(9, 28))
        scheduler._fired.add((date(2025, 3, 12), "range"))

        assert scheduler.due_jobs(et(9, 46)) == ["tick@09:46"]
        assert scheduler.due_jobs(et(10, 0)) == ["tick@10:00", "health@10:00"]

    def test_close_and_summary(self, scheduler):
        scheduler.dispatch(et(9, 28))
        scheduler._fired.add((date(2025, 3, 12), "range"))

        assert scheduler.due_jobs(et(16, 0)) == ["close_all"]
        scheduler._fired.add((date(2025, 3, 12), "close_all"))
        assert scheduler.due_jobs(et(16, 1)) == ["summary"]

    def test_early_close_day(self, market_data, broker):
        config = EngineConfig(
            symbols=["SPY"],
            session={"early_closes": {date(2025, 11, 28): time(13, 0)}},
        )
        scheduler = SessionScheduler(Coordinator(config, market_data, broker, sleep=no_sleep))
        day = date(2025, 11, 28)

        assert "close_all" in scheduler.due_jobs(et(13, 0, day))
        assert not any(j.startswith("tick@") for j in scheduler.due_jobs(et(13, 5, day)))

    def test_weekend_has_no_jobs(self, scheduler):
        assert scheduler.due_jobs(et(10, 0, date(2025, 3, 15))) == []


class TestDispatch:
    """Test job dispatch against the coordinator."""

    @pytest.mark.asyncio
    async def test_reset_runs_inline_and_range_as_task(self, scheduler, coordinator):
        assert scheduler.dispatch(et(9, 28)) == []
        assert coordinator.counters.session_date == date(2025, 3, 12)

        tasks = scheduler.dispatch(et(9, 45))
        await asyncio.gather(*tasks)

        assert coordinator.store.get("SPY").phase is Phase.RANGE_SET
        assert scheduler.dispatch(et(9, 45)) == []

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, scheduler, coordinator, market_data):
        scheduler.dispatch(et(9, 28))
        await asyncio.gather(*scheduler.dispatch(et(9, 45)))

        market_data.gate = asyncio.Event()
        market_data.started.clear()
        (slow,) = scheduler.dispatch(et(9, 50))
        await market_data.started.wait()

        (overlapping,) = scheduler.dispatch(et(9, 51))
        skipped = await overlapping
        market_data.gate.set()
        finished = await slow

        assert skipped.skipped
        assert skipped.evaluations == 0
        assert not finished.skipped

    @pytest.mark.asyncio
    async def test_summary_is_kept(self, scheduler):
        scheduler.dispatch(et(9, 28))
        await asyncio.gather(*scheduler.dispatch(et(9, 45)))
        await asyncio.gather(*scheduler.dispatch(et(16, 0)))
        await asyncio.gather(*scheduler.dispatch(et(16, 1)))

        assert scheduler.last_summary["date"] == "2025-03-12"


class TestBootstrap:
    """Test startup catch-up."""

    @pytest.mark.asyncio
    async def test_mid_session_start_computes_ranges(self, scheduler, coordinator, broker):
        broker.positions["SPY"] = Position(symbol="SPY", qty=5)

        await scheduler.bootstrap(et(10, 31))

        state = coordinator.store.get("SPY")
        assert state.phase is Phase.RANGE_SET
        assert state.in_position
        assert scheduler.due_jobs(et(10, 31)) == ["tick@10:31"]

    @pytest.mark.asyncio
    async def test_pre_market_start_only_resets(self, scheduler, coordinator, market_data):
        await scheduler.bootstrap(et(9, 0))

        assert coordinator.store.get("SPY").phase is Phase.IDLE
        assert market_data.calls == []
