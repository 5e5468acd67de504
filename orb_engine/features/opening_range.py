"""Opening Range (OR) calculation from the first bars of the session.

The range is built once per symbol per day from bars whose timestamps fall
inside the inclusive window ``[range_start, range_end]``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Tuple

import pandas as pd
from loguru import logger

from ..data.base import MarketDataClient, normalize_bars


@dataclass(frozen=True)
class OpeningRange:
    """Opening range snapshot for one symbol and session."""

    symbol: str
    session_date: date
    high: float
    low: float
    bar_count: int
    start: datetime
    end: datetime

    @property
    def width(self) -> float:
        return self.high - self.low

    @property
    def midpoint(self) -> float:
        """Calculate OR midpoint."""
        return (self.high + self.low) / 2.0

    def __repr__(self) -> str:
        return (
            f"OpeningRange({self.symbol} {self.session_date} "
            f"H={self.high:.2f} L={self.low:.2f} W={self.width:.2f} n={self.bar_count})"
        )


def range_bars(bars: pd.DataFrame, start: datetime, end: datetime) -> pd.DataFrame:
    """Bars with ``start <= timestamp <= end``."""
    if bars.empty:
        return bars
    ts = bars["timestamp"]
    return bars[(ts >= pd.Timestamp(start)) & (ts <= pd.Timestamp(end))]


def compute_opening_range(
    bars: pd.DataFrame,
    start: datetime,
    end: datetime,
    symbol: str = "",
    session_date: Optional[date] = None,
) -> Optional[OpeningRange]:
    """Compute the opening range from a bar frame.

    Args:
        bars: Normalized bar frame (may include bars outside the window).
        start: Window start (inclusive, tz-aware).
        end: Window end (inclusive, tz-aware).
        symbol: Instrument symbol.
        session_date: Exchange date of the session.

    Returns:
        OpeningRange, or None when the window holds no bars or the range is
        degenerate (high <= low).

    Examples:
        >>> orng = compute_opening_range(bars, start, end, "SPY", date(2025, 3, 10))
        >>> assert orng.high > orng.low
    """
    window = range_bars(bars, start, end)
    if window.empty:
        logger.warning(f"[{symbol}] No bars in opening range window {start} - {end}")
        return None

    high = float(window["high"].max())
    low = float(window["low"].min())

    if not high > low:
        logger.warning(f"[{symbol}] Degenerate opening range: high={high} low={low}")
        return None

    return OpeningRange(
        symbol=symbol,
        session_date=session_date or start.date(),
        high=high,
        low=low,
        bar_count=len(window),
        start=start,
        end=end,
    )


class RangeCalculator:
    """Fetch opening range bars from the market-data collaborator and build the range.

    Args:
        market_data: Bar source. Retries, if any, are the client's concern.
        range_window: Maps a session date to its inclusive window bounds.
        timeframe: Bar timeframe requested for the window.

    Example:
        >>> calc = RangeCalculator(market_data, calendar.range_window)
        >>> orng = await calc.compute("SPY", date(2025, 3, 10))
    """

    def __init__(
        self,
        market_data: MarketDataClient,
        range_window: Callable[[date], Tuple[datetime, datetime]],
        timeframe: str = "5Min",
    ) -> None:
        self.market_data = market_data
        self.range_window = range_window
        self.timeframe = timeframe

    async def compute(self, symbol: str, session_date: date) -> Optional[OpeningRange]:
        """Fetch the window's bars and compute the range.

        Returns:
            OpeningRange, or None when no usable bars were returned.
        """
        start, end = self.range_window(session_date)

        raw = await self.market_data.fetch_bars(symbol, self.timeframe, start, end)
        bars = normalize_bars(raw)

        orng = compute_opening_range(bars, start, end, symbol, session_date)
        if orng is not None:
            logger.info(f"[{symbol}] {orng}")
        return orng
