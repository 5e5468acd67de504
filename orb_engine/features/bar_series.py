"""Bar-series utilities: ATR, volume baselines, structure, trend, market condition.

All functions take a normalized bar frame (see ``data.base.normalize_bars``)
and never raise on short history: insufficient data yields a documented
fallback so that early-session ticks degrade to "allow" instead of failing.
"""

from enum import Enum
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from numba import jit

from ..config.schema import MarketConditionConfig


class MarketCondition(str, Enum):
    """Qualitative market-condition label."""

    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    DANGEROUS = "dangerous"

    @property
    def tradeable(self) -> bool:
        return self in (MarketCondition.EXCELLENT, MarketCondition.GOOD)


@jit(nopython=True)
def _true_range_numba(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """Calculate True Range using numba."""
    n = len(high)
    tr = np.zeros(n)
    if n == 0:
        return tr
    tr[0] = high[0] - low[0]

    for i in range(1, n):
        hl = high[i] - low[i]
        hc = abs(high[i] - close[i - 1])
        lc = abs(low[i] - close[i - 1])
        tr[i] = max(hl, hc, lc)

    return tr


def true_range(bars: pd.DataFrame) -> np.ndarray:
    """Per-bar true range. The first bar has no previous close and uses high - low."""
    return _true_range_numba(
        bars["high"].to_numpy(dtype=np.float64),
        bars["low"].to_numpy(dtype=np.float64),
        bars["close"].to_numpy(dtype=np.float64),
    )


def average_true_range(bars: pd.DataFrame, period: int = 5, default: float = 0.5) -> float:
    """Simple average of the last ``period`` true ranges.

    Args:
        bars: Bar frame, ascending.
        period: Number of trailing true ranges.
        default: Returned when fewer than ``period + 1`` bars are available.

    Returns:
        ATR value.

    Examples:
        >>> average_true_range(bars.head(3), period=5)  # not enough history
        0.5
    """
    if len(bars) < period + 1:
        return default

    tr = true_range(bars)
    return float(np.mean(tr[-period:]))


def candle_body(bar: pd.Series) -> float:
    return abs(float(bar["close"]) - float(bar["open"]))


def candle_range(bar: pd.Series) -> float:
    return float(bar["high"]) - float(bar["low"])


def close_position(bar: pd.Series) -> float:
    """Where the close sits inside the bar: 0.0 at the low, 1.0 at the high."""
    span = candle_range(bar)
    if span <= 0:
        return 0.5
    return (float(bar["close"]) - float(bar["low"])) / span


def wick_to_body(bar: pd.Series) -> float:
    """Total wick length divided by body. Infinite for a doji with wicks."""
    body = candle_body(bar)
    wicks = candle_range(bar) - body
    if body <= 0:
        return 0.0 if wicks <= 0 else float("inf")
    return wicks / body


def volume_baseline(
    post_range_bars: pd.DataFrame,
    lookback: int = 3,
    exclude_initial: int = 2,
    fallback_bars: Optional[pd.DataFrame] = None,
) -> Optional[float]:
    """Mean volume used as the denominator of volume-ratio gates.

    The latest post-range bar is the candidate and never part of its own
    baseline. The first ``exclude_initial`` post-range bars carry the opening
    surge and are skipped while later bars exist.

    Args:
        post_range_bars: Bars after the opening range window, ascending.
        lookback: Maximum number of bars averaged.
        exclude_initial: Leading post-range bars to skip.
        fallback_bars: Used when no prior post-range bar exists (typically the
            opening range bars).

    Returns:
        Baseline volume, or None when nothing usable remains.
    """
    prior = post_range_bars.iloc[:-1]
    candidates = prior.iloc[exclude_initial:]
    if candidates.empty:
        candidates = prior
    candidates = candidates.tail(lookback)

    if candidates.empty and fallback_bars is not None:
        candidates = fallback_bars

    if candidates.empty:
        return None

    baseline = float(candidates["volume"].mean())
    return baseline if baseline > 0 else None


def classify_structure(
    bars: pd.DataFrame,
    window: int = 6,
    min_bars: int = 8,
    threshold: float = 0.6,
) -> Tuple[str, float]:
    """Classify recent structure from consecutive bar pairs.

    Higher high + higher low counts as up, lower high + lower low as down.

    Returns:
        Tuple of (``bullish`` | ``bearish`` | ``neutral``, confidence).
    """
    if len(bars) < min_bars:
        return "neutral", 0.0

    recent = bars.tail(window)
    highs = recent["high"].to_numpy(dtype=np.float64)
    lows = recent["low"].to_numpy(dtype=np.float64)

    up = int(np.sum((highs[1:] > highs[:-1]) & (lows[1:] > lows[:-1])))
    down = int(np.sum((highs[1:] < highs[:-1]) & (lows[1:] < lows[:-1])))
    pairs = len(recent) - 1

    up_pct = up / pairs
    down_pct = down / pairs

    if up_pct >= threshold:
        return "bullish", up_pct
    if down_pct >= threshold:
        return "bearish", down_pct
    return "neutral", 0.0


def classify_trend(bars: pd.DataFrame, min_bars: int = 4) -> Optional[str]:
    """Two-window moving-average slope over the last four closes.

    Returns:
        ``up``, ``down``, or None when there is not enough history.
    """
    if len(bars) < min_bars:
        return None

    closes = bars["close"].tail(4).to_numpy(dtype=np.float64)
    early = (closes[0] + closes[1]) / 2.0
    recent = (closes[2] + closes[3]) / 2.0
    return "up" if recent > early else "down"


def return_volatility(bars: pd.DataFrame) -> float:
    """Standard deviation of bar-to-bar close returns."""
    returns = bars["close"].pct_change().dropna()
    if len(returns) < 2:
        return 0.0
    return float(returns.std())


def choppiness_ratio(bars: pd.DataFrame) -> float:
    """Average bar range over the total range of the window.

    Near 1.0 the bars overlap (chop); trending windows drive it down.
    """
    if bars.empty:
        return 1.0
    total = float(bars["high"].max() - bars["low"].min())
    if total <= 0:
        return 1.0
    return float((bars["high"] - bars["low"]).mean()) / total


def classify_market_condition(
    bars: pd.DataFrame,
    config: Optional[MarketConditionConfig] = None,
) -> MarketCondition:
    """Combine return volatility and choppiness into a condition label.

    Fewer than ``min_bars`` bars is treated as ``good`` (allow, skip filter).
    """
    cfg = config or MarketConditionConfig()

    if len(bars) < cfg.min_bars:
        return MarketCondition.GOOD

    vol = return_volatility(bars)
    chop = choppiness_ratio(bars)

    if vol > cfg.dangerous_volatility:
        return MarketCondition.DANGEROUS
    if vol > cfg.poor_volatility or chop > cfg.max_choppiness:
        return MarketCondition.POOR
    if vol <= cfg.excellent_volatility and chop <= cfg.excellent_choppiness:
        return MarketCondition.EXCELLENT
    return MarketCondition.GOOD
