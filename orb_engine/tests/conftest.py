"""Pytest configuration, fixtures and stub collaborators."""

import asyncio
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd
import pytest
import pytz

from orb_engine.config import EngineConfig
from orb_engine.data.base import (
    BracketOrderSpec,
    Order,
    OrderSide,
    Position,
    empty_bars,
    normalize_bars,
)
from orb_engine.errors import TransientBrokerError
from orb_engine.strategy.calendar import SessionCalendar

NY = pytz.timezone("America/New_York")
SESSION_DATE = date(2025, 3, 12)


def et(hour: int, minute: int, day: date = SESSION_DATE) -> datetime:
    """Exchange-time instant on ``day``."""
    return NY.localize(datetime.combine(day, time(hour, minute)))


def make_bars(rows: List[Tuple]) -> pd.DataFrame:
    """Build a bar frame from ``(timestamp, open, high, low, close, volume)`` rows."""
    if not rows:
        return empty_bars()
    return normalize_bars(
        pd.DataFrame(rows, columns=["timestamp", "open", "high", "low", "close", "volume"])
    )


def range_rows(volume: float = 100_000) -> List[Tuple]:
    """Four 5-minute opening range bars: high 102.00, low 100.00, rising closes."""
    return [
        (et(9, 30), 100.50, 101.00, 100.00, 100.80, volume),
        (et(9, 35), 100.80, 101.40, 100.60, 101.00, volume),
        (et(9, 40), 101.00, 101.80, 100.90, 101.20, volume),
        (et(9, 45), 101.20, 102.00, 101.10, 101.50, volume),
    ]


def breakout_row(volume: float) -> Tuple:
    """Strong long breakout candle at 09:50 closing 0.25 above the range high."""
    return (et(9, 50), 101.90, 102.30, 101.85, 102.25, volume)


def flat_minute_rows(start: datetime, count: int, close: float = 102.30) -> List[Tuple]:
    """1-minute bars holding above 102.00 without touching it."""
    return [
        (start + timedelta(minutes=i), close - 0.05, close + 0.10, close - 0.10, close, 1_000)
        for i in range(count)
    ]


class StubMarketData:
    """Serves fixed frames per (symbol, timeframe), filtered to the requested window.

    ``fail`` maps a symbol to an exception raised on every fetch. ``gate``
    makes fetches wait on an event so tests can hold a sweep in flight.
    """

    def __init__(self, frames: Optional[Dict[Tuple[str, str], pd.DataFrame]] = None) -> None:
        self.frames = frames or {}
        self.fail: Dict[str, Exception] = {}
        self.transient_failures = 0
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.calls: List[Tuple[str, str, datetime, datetime]] = []

    def set(self, symbol: str, timeframe: str, bars: pd.DataFrame) -> None:
        self.frames[(symbol, timeframe)] = bars

    async def fetch_bars(self, symbol, timeframe, start, end):
        self.calls.append((symbol, timeframe, start, end))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if symbol in self.fail:
            raise self.fail[symbol]
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransientBrokerError("read timeout")

        bars = self.frames.get((symbol, timeframe))
        if bars is None or bars.empty:
            return empty_bars()
        ts = bars["timestamp"]
        mask = (ts >= pd.Timestamp(start)) & (ts <= pd.Timestamp(end))
        return bars[mask].reset_index(drop=True)


class StubBroker:
    """In-memory broker with failure injection.

    ``submit_error`` is raised by every submission; ``transient_submit_failures``
    raises that many ``TransientBrokerError`` before a submission succeeds.
    """

    def __init__(self, equity: float = 100_000.0) -> None:
        self.equity = equity
        self.positions: Dict[str, Position] = {}
        self.open_orders: Dict[str, List[Order]] = {}
        self.submitted: List[BracketOrderSpec] = []
        self.submit_attempts = 0
        self.submit_error: Optional[Exception] = None
        self.transient_submit_failures = 0
        self.fill_on_submit = True
        self.closed: List[str] = []

    async def fetch_account_equity(self) -> float:
        return self.equity

    async def fetch_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    async def list_open_orders(self, symbol: str) -> List[Order]:
        return list(self.open_orders.get(symbol, []))

    async def submit_bracket_order(self, spec: BracketOrderSpec) -> Order:
        self.submit_attempts += 1
        if self.transient_submit_failures > 0:
            self.transient_submit_failures -= 1
            raise TransientBrokerError("503 service unavailable")
        if self.submit_error is not None:
            raise self.submit_error

        self.submitted.append(spec)
        if self.fill_on_submit:
            qty = spec.qty if spec.side is OrderSide.BUY else -spec.qty
            self.positions[spec.symbol] = Position(
                symbol=spec.symbol, qty=qty, avg_entry_price=spec.entry_price or 0.0
            )
        return Order(
            id=f"order-{len(self.submitted)}",
            symbol=spec.symbol,
            side=spec.side,
            qty=spec.qty,
            status="accepted",
            order_type=spec.entry_type.value,
            client_order_id=spec.client_order_id,
        )

    async def close_position(self, symbol: str) -> bool:
        if symbol not in self.positions:
            return False
        del self.positions[symbol]
        self.closed.append(symbol)
        return True


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def config() -> EngineConfig:
    """Engine config for one symbol with no submit delay or retry wait."""
    return EngineConfig(
        symbols=["SPY"],
        execution={"pre_submit_delay_seconds": 0.0, "retry": {"max_retries": 2, "delay_seconds": 0.0}},
    )


@pytest.fixture
def multi_config() -> EngineConfig:
    return EngineConfig(
        symbols=["SPY", "QQQ", "AMD"],
        execution={"pre_submit_delay_seconds": 0.0, "retry": {"max_retries": 2, "delay_seconds": 0.0}},
    )


@pytest.fixture
def calendar(config) -> SessionCalendar:
    return SessionCalendar(config.session, config.volume)


@pytest.fixture
def market_data() -> StubMarketData:
    return StubMarketData()


@pytest.fixture
def broker() -> StubBroker:
    return StubBroker()


@pytest.fixture
def immediate_breakout_bars() -> pd.DataFrame:
    """Range bars plus a 1.5x-volume immediate breakout candle."""
    return make_bars(range_rows() + [breakout_row(150_000)])


@pytest.fixture
def weak_volume_bars() -> pd.DataFrame:
    """Range bars plus the same candle on 1.1x volume."""
    return make_bars(range_rows() + [breakout_row(110_000)])
