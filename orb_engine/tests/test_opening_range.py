"""Tests for opening range calculation."""

import pytest

from orb_engine.execution.retry import RetryingMarketData
from orb_engine.features.opening_range import RangeCalculator, compute_opening_range
from orb_engine.config import RetryConfig
from orb_engine.errors import TransientBrokerError
from orb_engine.tests.conftest import SESSION_DATE, StubMarketData, et, make_bars, range_rows


class TestComputeOpeningRange:
    """Test compute_opening_range function."""

    def test_range_from_window_bars(self):
        bars = make_bars(range_rows() + [(et(9, 50), 101.9, 103.0, 99.0, 102.25, 1)])
        orng = compute_opening_range(bars, et(9, 30), et(9, 45), "SPY", SESSION_DATE)

        assert orng.high == 102.0
        assert orng.low == 100.0
        assert orng.bar_count == 4
        assert orng.width == pytest.approx(2.0)
        assert orng.midpoint == pytest.approx(101.0)

    def test_window_end_is_inclusive(self):
        bars = make_bars([(et(9, 45), 100.0, 100.6, 99.9, 100.5, 1)])
        orng = compute_opening_range(bars, et(9, 30), et(9, 45), "SPY")
        assert orng is not None
        assert orng.bar_count == 1

    def test_no_bars_returns_none(self):
        assert compute_opening_range(make_bars([]), et(9, 30), et(9, 45), "SPY") is None

    def test_degenerate_range_returns_none(self):
        bars = make_bars([(et(9, 30), 100.0, 100.0, 100.0, 100.0, 1)])
        assert compute_opening_range(bars, et(9, 30), et(9, 45), "SPY") is None


class TestRangeCalculator:
    """Test RangeCalculator against a stub market-data client."""

    @pytest.mark.asyncio
    async def test_compute_requests_window(self, calendar):
        market_data = StubMarketData()
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        calc = RangeCalculator(market_data, calendar.range_window)

        orng = await calc.compute("SPY", SESSION_DATE)

        assert (orng.high, orng.low) == (102.0, 100.0)
        symbol, timeframe, start, end = market_data.calls[0]
        assert (symbol, timeframe) == ("SPY", "5Min")
        assert start == et(9, 30)
        assert end == et(9, 45)

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, calendar):
        market_data = StubMarketData()
        market_data.set("SPY", "5Min", make_bars(range_rows()))
        market_data.transient_failures = 2
        delays = []

        async def record(seconds):
            delays.append(seconds)

        client = RetryingMarketData(
            market_data, RetryConfig(max_retries=2, delay_seconds=1.0), sleep=record
        )

        orng = await RangeCalculator(client, calendar.range_window).compute("SPY", SESSION_DATE)

        assert orng is not None
        assert len(market_data.calls) == 3
        assert delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_propagates(self, calendar):
        market_data = StubMarketData()
        market_data.transient_failures = 5
        client = RetryingMarketData(market_data, RetryConfig(max_retries=1, delay_seconds=0.0))

        with pytest.raises(TransientBrokerError):
            await RangeCalculator(client, calendar.range_window).compute("SPY", SESSION_DATE)
