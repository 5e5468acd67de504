"""Tests for the coordinator: end-to-end decisions against stub collaborators."""

import asyncio
from datetime import timedelta

import pytest

from orb_engine.data.base import EntryType, Position
from orb_engine.engine.coordinator import Coordinator
from orb_engine.errors import DataUnavailableError, OrderRejectedError
from orb_engine.strategy.state import EntryKind, Phase, PendingRetest, Direction, TradeType
from orb_engine.tests.conftest import (
    breakout_row,
    et,
    flat_minute_rows,
    make_bars,
    no_sleep,
    range_rows,
)

BREAKOUT_TICK = et(9, 56)


def _trend_down_rows():
    """Range bars (102.00 / 100.00) whose last closes fade before the breakout."""
    return [
        (et(9, 30), 100.50, 101.00, 100.00, 100.80, 100_000),
        (et(9, 35), 100.80, 101.95, 100.70, 101.90, 100_000),
        (et(9, 40), 101.90, 102.00, 101.50, 101.95, 100_000),
        (et(9, 45), 101.95, 101.98, 101.40, 101.50, 100_000),
    ]


async def _ready(coordinator):
    """Reset and compute ranges as the scheduler would."""
    coordinator.reset_daily(et(9, 28))
    await coordinator.compute_ranges(now=et(9, 45))


@pytest.fixture
def coordinator(config, market_data, broker):
    return Coordinator(config, market_data, broker, clock=lambda: BREAKOUT_TICK, sleep=no_sleep)


@pytest.fixture
def deferred_breakout(market_data):
    """Immediate breakout candle that the trend gate defers to the retest monitor."""
    market_data.set("SPY", "5Min", make_bars(_trend_down_rows() + [breakout_row(150_000)]))
    market_data.set("SPY", "1Min", make_bars(flat_minute_rows(et(9, 50), 30)))


class TestRanges:
    """Test range computation through the coordinator."""

    @pytest.mark.asyncio
    async def test_compute_range_is_idempotent(self, coordinator, market_data):
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        coordinator.reset_daily(et(9, 28))

        first = await coordinator.compute_range("SPY", et(9, 45))
        second = await coordinator.compute_range("SPY", et(9, 50))

        assert first is second
        assert len(market_data.calls) == 1
        assert coordinator.store.get("SPY").phase is Phase.RANGE_SET

    @pytest.mark.asyncio
    async def test_range_not_computed_before_window_closes(self, coordinator, market_data):
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        assert await coordinator.compute_range("SPY", et(9, 40)) is None
        assert market_data.calls == []

    @pytest.mark.asyncio
    async def test_health_check_recovers_missing_range(self, coordinator, market_data):
        await _ready(coordinator)
        assert coordinator.store.get("SPY").phase is Phase.IDLE

        market_data.set("SPY", "5Min", make_bars(range_rows()))
        result = await coordinator.health_check(now=et(10, 0))

        assert result["ranges_recovered"] == ["SPY"]
        assert coordinator.store.get("SPY").orb_high == 102.0


class TestBreakoutScenarios:
    """End-to-end breakout decisions."""

    @pytest.mark.asyncio
    async def test_immediate_breakout_submits_limit_bracket(self, coordinator, market_data, broker,
                                                           immediate_breakout_bars):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        await _ready(coordinator)

        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        assert report.submissions == 1
        spec = broker.submitted[0]
        assert spec.entry_type is EntryType.LIMIT
        assert spec.entry_price == 102.25
        assert spec.stop_loss_price == 101.75
        assert spec.take_profit_price == 102.9
        assert spec.qty == 44

        state = coordinator.store.get("SPY")
        assert state.trade_type is TradeType.BREAKOUT
        assert state.entry_kind is EntryKind.BREAKOUT
        assert state.pending_retest is None
        assert state.in_position
        assert coordinator.counters.trades_by_type == {"breakout": 1}

    @pytest.mark.asyncio
    async def test_weak_volume_breakout_is_filtered(self, coordinator, market_data, broker,
                                                   weak_volume_bars):
        market_data.set("SPY", "5Min", weak_volume_bars)
        await _ready(coordinator)

        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        breakout = [o for o in report.outcomes if o.stage == "breakout"][0]
        assert breakout.action == "filtered"
        assert breakout.reason == "volume"
        assert broker.submitted == []
        assert coordinator.counters.filtered_by_reason == {"volume": 1}
        assert coordinator.store.get("SPY").phase is Phase.RANGE_SET

    @pytest.mark.asyncio
    async def test_at_most_one_trade_per_day(self, coordinator, market_data, broker,
                                            immediate_breakout_bars):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        await _ready(coordinator)
        broker.fill_on_submit = False

        for minute in range(10):
            await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=minute))

        assert len(broker.submitted) == 1
        assert coordinator.counters.total_trades == 1

    @pytest.mark.asyncio
    async def test_existing_position_blocks_breakout(self, coordinator, market_data, broker,
                                                    immediate_breakout_bars):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        broker.positions["SPY"] = Position(symbol="SPY", qty=10, avg_entry_price=101.0)
        await _ready(coordinator)

        assert await coordinator.sync_positions() == {"SPY": True}
        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        assert report.submissions == 0
        assert [o.reason for o in report.outcomes if o.stage == "breakout"] == ["in_position"]


class TestRetestAndTimeout:
    """Breakouts deferred to the retest monitor."""

    @pytest.mark.asyncio
    async def test_misaligned_breakout_becomes_pending(self, coordinator, broker, deferred_breakout):
        await _ready(coordinator)

        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        breakout = [o for o in report.outcomes if o.stage == "breakout"][0]
        assert breakout.action == "breakout_pending"
        assert breakout.reason == "trend"
        state = coordinator.store.get("SPY")
        assert state.phase is Phase.BREAKOUT_PENDING
        assert state.pending_retest.breakout_level == 102.0
        assert broker.submitted == []

    @pytest.mark.asyncio
    async def test_timeout_enters_at_market_once(self, coordinator, broker, deferred_breakout):
        await _ready(coordinator)
        await coordinator.run_tick(now=BREAKOUT_TICK)

        for tick in range(1, 5):
            report = await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=tick))
            assert report.submissions == 0
        assert coordinator.store.get("SPY").pending_retest.bars_since_breakout == 4

        report = await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=5))
        assert report.submissions == 1

        spec = broker.submitted[0]
        assert spec.entry_type is EntryType.MARKET
        assert spec.entry_price is None
        assert spec.stop_loss_price == 101.8
        assert spec.take_profit_price == 103.05

        state = coordinator.store.get("SPY")
        assert state.trade_type is TradeType.BREAKOUT
        assert state.entry_kind is EntryKind.TIMEOUT
        assert state.pending_retest is None

        broker.positions.clear()
        for tick in range(6, 12):
            await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=tick))
        assert len(broker.submitted) == 1

    @pytest.mark.asyncio
    async def test_confirmed_retest_uses_stop_limit(self, coordinator, market_data, broker,
                                                   deferred_breakout):
        market_data.set("SPY", "1Min", make_bars([
            (et(9, 56), 102.30, 102.40, 102.20, 102.30, 1_000),
            (et(9, 57), 102.30, 102.35, 102.10, 102.15, 1_000),
            (et(9, 58), 102.15, 102.20, 101.95, 102.05, 1_000),
            (et(9, 59), 102.05, 102.25, 102.00, 102.20, 2_000),
        ]))
        await _ready(coordinator)
        await coordinator.run_tick(now=BREAKOUT_TICK)

        report = await coordinator.evaluate_retests(now=et(10, 0))

        assert report.submissions == 1
        spec = broker.submitted[0]
        assert spec.entry_type is EntryType.STOP_LIMIT
        assert spec.entry_price == 102.2
        assert spec.limit_price == 102.4
        assert coordinator.store.get("SPY").trade_type is TradeType.RETEST
        assert coordinator.counters.trades_by_type == {"retest": 1}

    @pytest.mark.asyncio
    async def test_stale_retest_swept(self, coordinator, market_data):
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        await _ready(coordinator)
        coordinator.store.set_pending_retest(
            "SPY", PendingRetest(direction=Direction.LONG, breakout_level=102.0, bars_since_breakout=31)
        )

        result = await coordinator.health_check(now=et(12, 0))

        assert result["stale_cleared"] == ["SPY"]
        assert coordinator.store.get("SPY").phase is Phase.CLOSED_FOR_DAY
        assert coordinator.counters.failures_by_reason == {"stale_retest": 1}


class TestConcurrencyAndFailures:
    """Single-flight guard and per-symbol isolation."""

    @pytest.mark.asyncio
    async def test_concurrent_sweep_is_skipped(self, coordinator, market_data, broker,
                                              immediate_breakout_bars):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        await _ready(coordinator)

        market_data.gate = asyncio.Event()
        market_data.started.clear()
        first = asyncio.create_task(coordinator.run_tick(now=BREAKOUT_TICK))
        await market_data.started.wait()

        skipped_tick = await coordinator.run_tick(now=BREAKOUT_TICK)
        skipped_retests = await coordinator.evaluate_retests(now=BREAKOUT_TICK)
        skipped_breakouts = await coordinator.evaluate_breakouts(now=BREAKOUT_TICK)

        for report in (skipped_tick, skipped_retests, skipped_breakouts):
            assert report.skipped
            assert report.evaluations == 0
        assert coordinator.sweep_in_flight

        market_data.gate.set()
        completed = await first

        assert not completed.skipped
        assert completed.submissions == 1
        assert len(broker.submitted) == 1
        assert not coordinator.sweep_in_flight

    @pytest.mark.asyncio
    async def test_one_symbol_failure_does_not_abort_others(self, multi_config, market_data, broker,
                                                           immediate_breakout_bars):
        coordinator = Coordinator(multi_config, market_data, broker, sleep=no_sleep)
        for symbol in multi_config.symbols:
            market_data.set(symbol, "5Min", immediate_breakout_bars)
        await _ready(coordinator)
        market_data.fail["QQQ"] = DataUnavailableError("feed down")

        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        assert report.submissions == 2
        assert report.failures == 1
        failed = [o for o in report.outcomes if o.action == "failed"][0]
        assert failed.symbol == "QQQ"
        assert failed.reason == "DataUnavailableError"
        assert coordinator.counters.failures_by_reason == {"DataUnavailableError": 1}
        assert {spec.symbol for spec in broker.submitted} == {"SPY", "AMD"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            OrderRejectedError("422 insufficient buying power"),
            ConnectionResetError("connection reset by peer"),
        ],
    )
    async def test_failed_entry_closes_symbol(self, coordinator, market_data, broker,
                                              immediate_breakout_bars, error):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        await _ready(coordinator)
        broker.submit_error = error

        report = await coordinator.run_tick(now=BREAKOUT_TICK)

        assert report.failures == 1
        state = coordinator.store.get("SPY")
        assert state.phase is Phase.CLOSED_FOR_DAY
        assert not state.in_position
        assert state.pending_retest is None
        assert coordinator.counters.failures_by_reason == {type(error).__name__: 1}

        broker.submit_error = None
        for tick in range(1, 4):
            report = await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=tick))
            assert all(o.action != "duplicate" for o in report.outcomes)
        assert broker.submitted == []

    @pytest.mark.asyncio
    async def test_connection_abort_on_timeout_entry_reverts_state(self, coordinator, broker,
                                                                   deferred_breakout):
        await _ready(coordinator)
        await coordinator.run_tick(now=BREAKOUT_TICK)
        for tick in range(1, 5):
            await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=tick))
        broker.submit_error = ConnectionResetError("connection reset by peer")

        report = await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=5))

        failed = [o for o in report.outcomes if o.action == "failed"]
        assert [(o.stage, o.reason) for o in failed] == [("retest", "ConnectionResetError")]
        state = coordinator.store.get("SPY")
        assert state.phase is Phase.CLOSED_FOR_DAY
        assert state.pending_retest is None
        assert not state.in_position
        assert not state.has_traded_today
        assert coordinator.counters.failures_by_reason == {"ConnectionResetError": 1}

        broker.submit_error = None
        for tick in range(6, 9):
            report = await coordinator.run_tick(now=BREAKOUT_TICK + timedelta(minutes=tick))
            assert report.failures == 0
        assert broker.submitted == []


class TestSessionEnd:
    """Close-out and reporting."""

    @pytest.mark.asyncio
    async def test_close_all_and_summary(self, coordinator, market_data, broker,
                                        immediate_breakout_bars):
        market_data.set("SPY", "5Min", immediate_breakout_bars)
        await _ready(coordinator)
        await coordinator.run_tick(now=BREAKOUT_TICK)

        closed = await coordinator.close_all()
        summary = coordinator.daily_summary()

        assert closed == {"SPY": True}
        assert broker.closed == ["SPY"]
        assert coordinator.store.get("SPY").phase is Phase.CLOSED_FOR_DAY
        assert summary["total_trades"] == 1
        assert summary["symbols"]["SPY"]["entry_kind"] == "breakout"

    @pytest.mark.asyncio
    async def test_status_reports_volume_gates(self, coordinator, market_data):
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        await _ready(coordinator)

        status = coordinator.status(now=et(11, 30))

        assert status["session_date"] == "2025-03-12"
        assert status["symbols"]["SPY"]["phase"] == "range_set"
        assert status["volume_filter"]["low_liquidity"] is True
        assert status["volume_filter"]["breakout_multiplier"] == pytest.approx(1.25)
        assert status["sweep_in_flight"] is False
