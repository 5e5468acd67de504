"""Breakout candle confirmation: exhaustion, sustainability and scoring.

The confirmation score awards one point per factor:

- volume: bar volume ratio meets the breakout multiplier
- momentum: close beyond the previous close, body in the breakout direction
- wicks: total wick / body at or below ``max_wick_to_body``
- liquidity: bar is outside the midday low-liquidity window
- market: market condition is excellent or good
"""

from typing import Dict, Optional, Tuple

import pandas as pd
from loguru import logger

from ..config.schema import ConfirmationConfig
from ..features.bar_series import (
    MarketCondition,
    candle_body,
    candle_range,
    close_position,
    wick_to_body,
)
from .state import Direction


class ConfirmationScorer:
    """Score and validate a breakout candle against configured thresholds."""

    def __init__(self, config: Optional[ConfirmationConfig] = None) -> None:
        self.config = config or ConfirmationConfig()

    def is_exhausted(self, bar: pd.Series, atr: float) -> bool:
        """True when the candle body exceeds ``max_body_atr_mult`` x ATR."""
        return candle_body(bar) > self.config.max_body_atr_mult * atr

    def sustainability(
        self,
        bar: pd.Series,
        direction: Direction,
        level: float,
        atr: float,
    ) -> Tuple[bool, Dict[str, float]]:
        """Check that the breakout is likely to hold.

        Args:
            bar: Breakout candle.
            direction: Breakout direction.
            level: Broken range boundary.
            atr: Current ATR.

        Returns:
            Tuple of (passed, metrics). Metrics hold ``distance``,
            ``close_position`` and ``close_strength``.
        """
        cfg = self.config
        close = float(bar["close"])
        distance = direction.sign * (close - level)
        position = close_position(bar)

        if direction is Direction.LONG:
            excursion = float(bar["high"]) - level
            outer_close = position >= 1.0 - cfg.outer_close_pct
        else:
            excursion = level - float(bar["low"])
            outer_close = position <= cfg.outer_close_pct

        strength = distance / excursion if excursion > 0 else 0.0

        metrics = {
            "distance": distance,
            "close_position": position,
            "close_strength": strength,
        }
        passed = (
            distance >= cfg.min_breakout_atr_mult * atr
            and outer_close
            and strength >= cfg.min_close_strength
        )
        return passed, metrics

    def score(
        self,
        bar: pd.Series,
        prev_bar: Optional[pd.Series],
        direction: Direction,
        volume_ratio: Optional[float],
        breakout_multiplier: float,
        low_liquidity: bool,
        condition: MarketCondition,
    ) -> Tuple[int, Dict[str, bool]]:
        """Compute the confirmation score.

        Returns:
            Tuple of (score, factor flags).

        Examples:
            >>> score, factors = scorer.score(
            ...     bar, prev_bar, Direction.LONG, volume_ratio=1.6,
            ...     breakout_multiplier=1.4, low_liquidity=False,
            ...     condition=MarketCondition.GOOD,
            ... )
            >>> assert factors['volume'] is True
        """
        close = float(bar["close"])
        body_with_trend = direction.sign * (close - float(bar["open"])) > 0
        if prev_bar is not None:
            beyond_prev = direction.sign * (close - float(prev_bar["close"])) > 0
        else:
            beyond_prev = True

        factors = {
            "volume": volume_ratio is not None and volume_ratio >= breakout_multiplier,
            "momentum": body_with_trend and beyond_prev,
            "wicks": wick_to_body(bar) <= self.config.max_wick_to_body,
            "liquidity": not low_liquidity,
            "market": condition.tradeable,
        }
        score = sum(1 for flag in factors.values() if flag)

        logger.debug(f"{direction.value.upper()} confirmation: score={score}, factors={factors}")
        return score, factors

    def required_score(self, condition: MarketCondition) -> int:
        if condition is MarketCondition.EXCELLENT:
            return self.config.excellent_required_score
        return self.config.required_score

    def is_immediate_candidate(
        self,
        bar: pd.Series,
        direction: Direction,
        level: float,
    ) -> bool:
        """Candle shape of an immediate breakout (volume is checked separately).

        Close just beyond the level, strong body, close near the extreme on the
        breakout side and a candle closing in the breakout direction.
        """
        cfg = self.config
        close = float(bar["close"])
        distance = direction.sign * (close - level)
        if distance <= 0 or distance > cfg.immediate_max_distance:
            return False

        span = candle_range(bar)
        if span <= 0 or candle_body(bar) / span < cfg.immediate_min_body_pct:
            return False

        if direction.sign * (close - float(bar["open"])) <= 0:
            return False

        position = close_position(bar)
        if direction is Direction.LONG:
            return position >= cfg.immediate_close_position
        return position <= 1.0 - cfg.immediate_close_position
