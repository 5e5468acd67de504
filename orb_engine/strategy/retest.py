"""Retest monitoring for pending breakouts.

After a breakout, each tick looks at the last few 1-minute bars for price
returning to the broken level and closing back beyond it on rising volume.
If no retest shows up within ``max_bars_without_retest`` ticks, a timeout
entry at the latest close is requested instead.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import pandas as pd
from loguru import logger

from ..config.schema import RetestConfig
from .calendar import SessionCalendar
from .state import Direction, PendingRetest


class RetestAction(str, Enum):
    """What the coordinator should do for a pending retest this tick."""

    NONE = "none"
    RETEST = "retest"
    TIMEOUT = "timeout"


@dataclass
class RetestDecision:
    """Result of one retest evaluation."""

    action: RetestAction
    entry_price: Optional[float] = None
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RetestMonitor:
    """Evaluate a pending retest against recent 1-minute bars."""

    def __init__(self, config: RetestConfig, calendar: SessionCalendar) -> None:
        self.config = config
        self.calendar = calendar

    def window(self, now: datetime) -> Tuple[datetime, datetime]:
        """Bar window ``[now - lookback, now - 1 minute]``."""
        return (
            now - timedelta(minutes=self.config.lookback_minutes),
            now - timedelta(minutes=1),
        )

    def evaluate(
        self,
        symbol: str,
        pending: PendingRetest,
        bars: pd.DataFrame,
        in_position: bool,
        now: datetime,
    ) -> RetestDecision:
        """Decide between retest entry, timeout entry, or waiting.

        Args:
            symbol: Instrument symbol.
            pending: Pending retest with its tick counter already advanced.
            bars: 1-minute bars for ``window(now)``, ascending.
            in_position: Broker-synchronized position flag.
            now: Evaluation time.

        Returns:
            RetestDecision.
        """
        if in_position:
            logger.debug(f"[{symbol}] Retest skipped: already in position")
            return RetestDecision(RetestAction.NONE, reason="in_position")

        if len(bars) < 2:
            logger.debug(f"[{symbol}] Retest skipped: {len(bars)} bars in window")
            return RetestDecision(RetestAction.NONE, reason="insufficient_bars")

        prev = bars.iloc[-2]
        latest = bars.iloc[-1]
        level = pending.breakout_level

        volume_confirmed = True
        multiplier = self.calendar.confirm_multiplier(now)
        if len(bars) >= 3:
            prior = bars.iloc[:-1].tail(3)
            avg_volume = float(prior["volume"].mean())
            volume_confirmed = float(latest["volume"]) > avg_volume * multiplier

        if pending.direction is Direction.LONG:
            touched = float(prev["low"]) <= level
            reclaimed = float(latest["close"]) > level
        else:
            touched = float(prev["high"]) >= level
            reclaimed = float(latest["close"]) < level

        details = {
            "touched": touched,
            "reclaimed": reclaimed,
            "volume_confirmed": volume_confirmed,
            "bars_since_breakout": pending.bars_since_breakout,
        }
        entry = float(latest["close"])

        if touched and reclaimed and volume_confirmed:
            logger.info(
                f"[{symbol}] Retest confirmed {pending.direction.value.upper()} at {entry:.2f} "
                f"(level {level:.2f})"
            )
            return RetestDecision(RetestAction.RETEST, entry_price=entry, details=details)

        if pending.bars_since_breakout >= self.config.max_bars_without_retest:
            logger.info(
                f"[{symbol}] No retest after {pending.bars_since_breakout} ticks; "
                f"timeout entry at {entry:.2f}"
            )
            return RetestDecision(RetestAction.TIMEOUT, entry_price=entry, details=details)

        logger.debug(f"[{symbol}] Waiting for retest: {details}")
        return RetestDecision(RetestAction.NONE, reason="waiting", details=details)
