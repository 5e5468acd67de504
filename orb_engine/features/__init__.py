"""Feature modules: opening range and bar-series statistics."""

from .bar_series import (
    MarketCondition,
    average_true_range,
    candle_body,
    candle_range,
    choppiness_ratio,
    classify_market_condition,
    classify_structure,
    classify_trend,
    close_position,
    return_volatility,
    true_range,
    volume_baseline,
    wick_to_body,
)
from .opening_range import OpeningRange, RangeCalculator, compute_opening_range, range_bars

__all__ = [
    "MarketCondition",
    "average_true_range",
    "candle_body",
    "candle_range",
    "choppiness_ratio",
    "classify_market_condition",
    "classify_structure",
    "classify_trend",
    "close_position",
    "return_volatility",
    "true_range",
    "volume_baseline",
    "wick_to_body",
    "OpeningRange",
    "RangeCalculator",
    "compute_opening_range",
    "range_bars",
]
