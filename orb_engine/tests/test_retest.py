"""Tests for retest monitoring."""

from datetime import timedelta

import pytest

from orb_engine.config import RetestConfig
from orb_engine.strategy.retest import RetestAction, RetestMonitor
from orb_engine.strategy.state import Direction, PendingRetest
from orb_engine.tests.conftest import et, flat_minute_rows, make_bars

NOW = et(10, 0)


@pytest.fixture
def monitor(calendar):
    return RetestMonitor(RetestConfig(), calendar)


def _pending(bars_since=1, direction=Direction.LONG, level=102.0):
    return PendingRetest(direction=direction, breakout_level=level, bars_since_breakout=bars_since)


def _retest_bars(latest_volume):
    return make_bars([
        (et(9, 56), 102.30, 102.40, 102.20, 102.30, 1_000),
        (et(9, 57), 102.30, 102.35, 102.10, 102.15, 1_000),
        (et(9, 58), 102.15, 102.20, 101.95, 102.05, 1_000),
        (et(9, 59), 102.05, 102.25, 102.00, 102.20, latest_volume),
    ])


class TestRetestMonitor:
    """Test RetestMonitor.evaluate."""

    def test_window(self, monitor):
        start, end = monitor.window(NOW)
        assert start == NOW - timedelta(minutes=4)
        assert end == NOW - timedelta(minutes=1)

    def test_confirmed_retest(self, monitor):
        decision = monitor.evaluate("SPY", _pending(), _retest_bars(2_000), False, NOW)

        assert decision.action is RetestAction.RETEST
        assert decision.entry_price == 102.20
        assert decision.details["touched"]
        assert decision.details["volume_confirmed"]

    def test_retest_needs_volume(self, monitor):
        decision = monitor.evaluate("SPY", _pending(), _retest_bars(1_100), False, NOW)

        assert decision.action is RetestAction.NONE
        assert decision.reason == "waiting"
        assert not decision.details["volume_confirmed"]

    def test_two_bars_skip_volume_check(self, monitor):
        bars = _retest_bars(100).tail(2)
        decision = monitor.evaluate("SPY", _pending(), bars, False, NOW)
        assert decision.action is RetestAction.RETEST

    def test_short_retest(self, monitor):
        bars = make_bars([
            (et(9, 58), 99.85, 100.05, 99.80, 99.95, 1_000),
            (et(9, 59), 99.95, 99.98, 99.70, 99.75, 1_000),
        ])
        decision = monitor.evaluate(
            "SPY", _pending(direction=Direction.SHORT, level=100.0), bars, False, NOW
        )
        assert decision.action is RetestAction.RETEST
        assert decision.entry_price == 99.75

    def test_timeout_after_max_ticks(self, monitor):
        bars = make_bars(flat_minute_rows(et(9, 56), 4))

        waiting = monitor.evaluate("SPY", _pending(bars_since=4), bars, False, NOW)
        timeout = monitor.evaluate("SPY", _pending(bars_since=5), bars, False, NOW)

        assert waiting.action is RetestAction.NONE
        assert timeout.action is RetestAction.TIMEOUT
        assert timeout.entry_price == 102.30

    def test_in_position_takes_no_action(self, monitor):
        decision = monitor.evaluate("SPY", _pending(bars_since=9), _retest_bars(2_000), True, NOW)
        assert decision.action is RetestAction.NONE
        assert decision.reason == "in_position"

    def test_insufficient_bars(self, monitor):
        bars = _retest_bars(2_000).tail(1)
        decision = monitor.evaluate("SPY", _pending(bars_since=9), bars, False, NOW)
        assert decision.reason == "insufficient_bars"
