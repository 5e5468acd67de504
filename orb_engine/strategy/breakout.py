"""Breakout signal detection with volume, candle and confirmation gating.

Detects when the latest post-range bar closes beyond the opening range,
subject to the immediate fast path or the standard gate sequence:
volume -> exhaustion -> close beyond level -> sustainability -> score.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pandas as pd
from loguru import logger

from ..config.schema import EngineConfig
from ..data.base import EntryType
from ..features.bar_series import (
    MarketCondition,
    average_true_range,
    classify_market_condition,
    classify_structure,
    classify_trend,
    volume_baseline,
)
from .calendar import SessionCalendar
from .confirmation import ConfirmationScorer
from .state import Direction


@dataclass
class BreakoutSignal:
    """Breakout signal with metadata."""

    symbol: str
    timestamp: datetime
    direction: Direction
    close_price: float
    breakout_level: float
    is_immediate: bool
    preferred_entry: EntryType
    atr: float
    volume_ratio: Optional[float] = None
    score: Optional[int] = None

    def __repr__(self) -> str:
        kind = "IMMEDIATE" if self.is_immediate else "STANDARD"
        ratio = f"{self.volume_ratio:.2f}x" if self.volume_ratio is not None else "n/a"
        return (
            f"BreakoutSignal({self.symbol} {self.direction.value.upper()} {kind} "
            f"close={self.close_price:.2f} level={self.breakout_level:.2f} vol={ratio})"
        )


@dataclass
class DetectionResult:
    """Outcome of one detection pass.

    Exactly one of ``signal`` and ``filter_reason`` is set when a gate
    decided; both are None when the bar simply did not break out.
    """

    signal: Optional[BreakoutSignal] = None
    filter_reason: Optional[str] = None
    atr: Optional[float] = None
    volume_ratio: Optional[float] = None
    market_condition: Optional[MarketCondition] = None
    details: Dict[str, Any] = field(default_factory=dict)


class SignalDetector:
    """Evaluate the latest post-range bar for an opening range breakout.

    Example:
        >>> detector = SignalDetector(config, calendar)
        >>> result = detector.detect("SPY", bars, 102.0, 100.0, range_end, now)
        >>> if result.signal:
        ...     print(result.signal)
    """

    def __init__(self, config: EngineConfig, calendar: SessionCalendar) -> None:
        self.config = config
        self.calendar = calendar
        self.scorer = ConfirmationScorer(config.confirmation)

    def detect(
        self,
        symbol: str,
        bars: pd.DataFrame,
        orb_high: float,
        orb_low: float,
        range_end: datetime,
        now: datetime,
    ) -> DetectionResult:
        """Run the gate sequence against the latest bar.

        Args:
            symbol: Instrument symbol.
            bars: Session bars (range window and later), normalized, ascending.
            orb_high: Opening range high.
            orb_low: Opening range low.
            range_end: Inclusive end of the range window.
            now: Evaluation time (selects time-of-day multipliers).

        Returns:
            DetectionResult.
        """
        cfg = self.config
        ccfg = cfg.confirmation

        end_ts = pd.Timestamp(range_end)
        post = bars[bars["timestamp"] > end_ts]
        if post.empty:
            logger.debug(f"[{symbol}] No post-range bars yet")
            return DetectionResult(details={"skip": "no_post_range_bars"})
        in_range = bars[bars["timestamp"] <= end_ts]

        condition = classify_market_condition(bars, ccfg.market)
        if not condition.tradeable:
            logger.info(f"[{symbol}] Breakout filtered: market condition {condition.value}")
            return DetectionResult(filter_reason="market_condition", market_condition=condition)

        latest = post.iloc[-1]
        prev = bars.iloc[-2] if len(bars) >= 2 else None

        baseline = volume_baseline(
            post,
            lookback=cfg.volume.baseline_lookback,
            exclude_initial=cfg.volume.exclude_initial_bars,
            fallback_bars=in_range,
        )
        volume_ratio = float(latest["volume"]) / baseline if baseline else None
        atr = average_true_range(bars, ccfg.atr_period, ccfg.default_atr)

        close = float(latest["close"])
        if close > orb_high:
            direction, level = Direction.LONG, orb_high
        elif close < orb_low:
            direction, level = Direction.SHORT, orb_low
        else:
            direction, level = None, None

        base = DetectionResult(atr=atr, volume_ratio=volume_ratio, market_condition=condition)

        if (
            direction is not None
            and volume_ratio is not None
            and volume_ratio >= self.calendar.immediate_multiplier(now)
            and self.scorer.is_immediate_candidate(latest, direction, level)
        ):
            base.signal = self._signal(symbol, latest, direction, level, True, atr, volume_ratio)
            logger.info(f"[{symbol}] Immediate breakout: {base.signal}")
            return base

        breakout_mult = self.calendar.breakout_multiplier(now)
        if volume_ratio is not None and volume_ratio < breakout_mult:
            logger.info(
                f"[{symbol}] Breakout filtered: volume {volume_ratio:.2f}x < {breakout_mult:.2f}x"
            )
            base.filter_reason = "volume"
            return base

        if self.scorer.is_exhausted(latest, atr):
            logger.info(f"[{symbol}] Breakout filtered: exhaustion candle (ATR={atr:.3f})")
            base.filter_reason = "exhaustion"
            return base

        if direction is None:
            logger.debug(
                f"[{symbol}] No breakout: close={close:.2f} range=[{orb_low:.2f}, {orb_high:.2f}]"
            )
            return base

        sustained, metrics = self.scorer.sustainability(latest, direction, level, atr)
        base.details.update(metrics)
        if not sustained:
            logger.info(f"[{symbol}] Breakout filtered: not sustainable {metrics}")
            base.filter_reason = "sustainability"
            return base

        score, factors = self.scorer.score(
            latest,
            prev,
            direction,
            volume_ratio,
            breakout_mult,
            self.calendar.in_low_liquidity(now),
            condition,
        )
        required = self.scorer.required_score(condition)
        base.details.update({"score": score, "required": required, "factors": factors})
        if score < required:
            logger.info(f"[{symbol}] Breakout filtered: confirmation {score}/{required}")
            base.filter_reason = "confirmation"
            return base

        base.signal = self._signal(symbol, latest, direction, level, False, atr, volume_ratio, score)
        logger.info(f"[{symbol}] Breakout detected: {base.signal}")
        return base

    @staticmethod
    def _signal(
        symbol: str,
        bar: pd.Series,
        direction: Direction,
        level: float,
        is_immediate: bool,
        atr: float,
        volume_ratio: Optional[float],
        score: Optional[int] = None,
    ) -> BreakoutSignal:
        return BreakoutSignal(
            symbol=symbol,
            timestamp=bar["timestamp"].to_pydatetime(),
            direction=direction,
            close_price=float(bar["close"]),
            breakout_level=level,
            is_immediate=is_immediate,
            preferred_entry=EntryType.LIMIT if is_immediate else EntryType.STOP_LIMIT,
            atr=atr,
            volume_ratio=volume_ratio,
            score=score,
        )


def check_trade_alignment(
    direction: Direction,
    bars: pd.DataFrame,
    now: datetime,
    last_trade_time: Optional[datetime],
    config: EngineConfig,
) -> Optional[str]:
    """Gates applied after a breakout is recorded and before any entry.

    Returns:
        Filter reason (``cooldown``, ``trend``, ``structure``) or None when aligned.
    """
    cooldown = timedelta(minutes=config.execution.trade_cooldown_minutes)
    if last_trade_time is not None and now - last_trade_time < cooldown:
        return "cooldown"

    if config.confirmation.trend_filter:
        trend = classify_trend(bars)
        wanted = "up" if direction is Direction.LONG else "down"
        if trend is not None and trend != wanted:
            logger.info(f"Entry against trend: {direction.value} vs {trend}")
            return "trend"

    if config.confirmation.structure_filter:
        structure, confidence = classify_structure(bars)
        aligned = (
            (direction is Direction.LONG and structure == "bullish")
            or (direction is Direction.SHORT and structure == "bearish")
            or (structure == "neutral" and confidence < 0.7)
        )
        if not aligned:
            logger.info(f"Structure not aligned: {direction.value} vs {structure} ({confidence:.2f})")
            return "structure"

    return None
