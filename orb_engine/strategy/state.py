"""Per-symbol daily state, pending retests and daily counters.

``SymbolState`` records are frozen. Callers read them via ``get``; the store
replaces them through the named operations below, which keep the
pending-retest and phase invariants in one place.
"""

import math
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Union

from loguru import logger

from ..errors import InvalidTransitionError


class Direction(str, Enum):
    """Breakout direction."""

    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class TradeType(str, Enum):
    """Trade taken today, recorded on the symbol until the daily reset."""

    NONE = "none"
    BREAKOUT = "breakout"
    RETEST = "retest"


class EntryKind(str, Enum):
    """How the position was entered."""

    BREAKOUT = "breakout"
    RETEST = "retest"
    TIMEOUT = "timeout"


class Phase(str, Enum):
    """Daily lifecycle of a symbol. Moves forward only within a day."""

    IDLE = "idle"
    RANGE_SET = "range_set"
    BREAKOUT_PENDING = "breakout_pending"
    IN_POSITION = "in_position"
    CLOSED_FOR_DAY = "closed_for_day"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [
    Phase.IDLE,
    Phase.RANGE_SET,
    Phase.BREAKOUT_PENDING,
    Phase.IN_POSITION,
    Phase.CLOSED_FOR_DAY,
]


@dataclass(frozen=True)
class PendingRetest:
    """Unresolved breakout awaiting a retest or the timeout entry.

    Attributes:
        direction: Breakout direction.
        breakout_level: Range boundary that was broken.
        bars_since_breakout: Retest ticks evaluated since the breakout.
        created_at: Breakout detection time.
    """

    direction: Direction
    breakout_level: float
    bars_since_breakout: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: Union["PendingRetest", Mapping[str, Any]]) -> "PendingRetest":
        """Normalize a pending retest at a boundary.

        Args:
            raw: An existing PendingRetest, or a mapping with ``direction`` and
                ``breakout_level`` (``breakoutLevel`` is accepted).

        Returns:
            PendingRetest instance.

        Raises:
            ValueError: For bare numbers, unknown directions or non-finite levels.
        """
        if isinstance(raw, PendingRetest):
            return raw

        if not isinstance(raw, Mapping):
            raise ValueError(
                f"Pending retest must carry a direction and level, got {type(raw).__name__}"
            )

        try:
            direction = Direction(raw["direction"])
        except KeyError:
            raise ValueError("Pending retest is missing 'direction'")
        except ValueError:
            raise ValueError(f"Unknown retest direction: {raw['direction']!r}")

        level_raw = raw.get("breakout_level", raw.get("breakoutLevel"))
        if level_raw is None or isinstance(level_raw, bool):
            raise ValueError("Pending retest is missing 'breakout_level'")
        try:
            level = float(level_raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid breakout level: {level_raw!r}")
        if not math.isfinite(level):
            raise ValueError(f"Breakout level must be finite, got {level}")

        bars = int(raw.get("bars_since_breakout", raw.get("barsSinceBreakout", 0)) or 0)

        return cls(
            direction=direction,
            breakout_level=level,
            bars_since_breakout=bars,
            created_at=raw.get("created_at"),
        )

    def advanced(self) -> "PendingRetest":
        """Copy with the tick counter incremented."""
        return replace(self, bars_since_breakout=self.bars_since_breakout + 1)

    def __repr__(self) -> str:
        return (
            f"PendingRetest({self.direction.value} @ {self.breakout_level:.2f}, "
            f"bars={self.bars_since_breakout})"
        )


@dataclass(frozen=True)
class SymbolState:
    """Daily trading state for one symbol. Immutable; the store swaps records.

    Attributes:
        symbol: Instrument symbol.
        orb_high: Opening range high (None until computed).
        orb_low: Opening range low (None until computed).
        in_position: Cached broker position flag.
        pending_retest: Unresolved breakout, if any.
        has_traded_today: Entry taken this session.
        trade_type: Kind of trade taken today.
        entry_kind: How the position was entered.
        last_trade_date: Session date of the last entry.
        last_trade_time: Time of the last entry (cooldown anchor).
        session_date: Session date the state belongs to.
        phase: Lifecycle phase.
    """

    symbol: str
    orb_high: Optional[float] = None
    orb_low: Optional[float] = None
    in_position: bool = False
    pending_retest: Optional[PendingRetest] = None
    has_traded_today: bool = False
    trade_type: TradeType = TradeType.NONE
    entry_kind: Optional[EntryKind] = None
    last_trade_date: Optional[date] = None
    last_trade_time: Optional[datetime] = None
    session_date: Optional[date] = None
    phase: Phase = Phase.IDLE

    @property
    def has_valid_range(self) -> bool:
        """True when both bounds are finite and high > low."""
        if self.orb_high is None or self.orb_low is None:
            return False
        if not (math.isfinite(self.orb_high) and math.isfinite(self.orb_low)):
            return False
        return self.orb_high > self.orb_low

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view for status reporting."""
        return {
            "symbol": self.symbol,
            "orb_high": self.orb_high,
            "orb_low": self.orb_low,
            "in_position": self.in_position,
            "pending_retest": (
                {
                    "direction": self.pending_retest.direction.value,
                    "breakout_level": self.pending_retest.breakout_level,
                    "bars_since_breakout": self.pending_retest.bars_since_breakout,
                }
                if self.pending_retest
                else None
            ),
            "has_traded_today": self.has_traded_today,
            "trade_type": self.trade_type.value,
            "entry_kind": self.entry_kind.value if self.entry_kind else None,
            "last_trade_date": self.last_trade_date.isoformat() if self.last_trade_date else None,
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
            "phase": self.phase.value,
        }


@dataclass
class DailyCounters:
    """Aggregate decision statistics for one trading day.

    Attributes:
        session_date: Day the counters belong to.
        total_trades: Entries submitted.
        trades_by_type: Entries per trade type.
        filtered_by_reason: Breakouts or entries filtered, per reason.
        failures_by_reason: Typed per-symbol failures.
        breakouts_detected: Breakout signals emitted.
    """

    session_date: Optional[date] = None
    total_trades: int = 0
    trades_by_type: Counter = field(default_factory=Counter)
    filtered_by_reason: Counter = field(default_factory=Counter)
    failures_by_reason: Counter = field(default_factory=Counter)
    breakouts_detected: int = 0

    def record_trade(self, trade_type: TradeType) -> None:
        self.total_trades += 1
        self.trades_by_type[trade_type.value] += 1

    def record_filter(self, reason: str) -> None:
        self.filtered_by_reason[reason] += 1

    def record_failure(self, reason: str) -> None:
        self.failures_by_reason[reason] += 1

    def record_breakout(self) -> None:
        self.breakouts_detected += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.session_date.isoformat() if self.session_date else None,
            "total_trades": self.total_trades,
            "trades_by_type": dict(self.trades_by_type),
            "filtered_by_reason": dict(self.filtered_by_reason),
            "failures_by_reason": dict(self.failures_by_reason),
            "breakouts_detected": self.breakouts_detected,
        }


class SymbolStateStore:
    """Keyed store of frozen SymbolState records.

    Every write goes through a named operation, which validates the phase move
    and then swaps in a new record. ``get`` hands out the current record.

    Example:
        >>> store = SymbolStateStore()
        >>> store.reset_daily(["SPY"], date(2025, 3, 10))
        >>> store.set_range("SPY", 102.0, 100.0)
        >>> store.get("SPY").phase
        <Phase.RANGE_SET: 'range_set'>
    """

    def __init__(self) -> None:
        self._states: Dict[str, SymbolState] = {}

    def get(self, symbol: str) -> SymbolState:
        """Return the state for ``symbol``, creating an idle one lazily."""
        state = self._states.get(symbol)
        if state is None:
            state = self._states[symbol] = SymbolState(symbol=symbol)
        return state

    def __iter__(self) -> Iterator[SymbolState]:
        return iter(list(self._states.values()))

    def _update(self, symbol: str, phase: Optional[Phase] = None, **changes: Any) -> SymbolState:
        state = self.get(symbol)
        if phase is not None and phase != state.phase:
            if phase.rank < state.phase.rank:
                raise InvalidTransitionError(
                    f"{symbol}: cannot move from {state.phase.value} back to {phase.value}"
                )
            logger.debug(f"[{symbol}] phase {state.phase.value} -> {phase.value}")
            changes["phase"] = phase
        updated = self._states[symbol] = replace(state, **changes)
        return updated

    def transition(self, symbol: str, phase: Phase) -> None:
        """Move ``symbol`` forward to ``phase``.

        Raises:
            InvalidTransitionError: On any backward move within a day.
        """
        self._update(symbol, phase)

    def reset_daily(self, symbols: Iterable[str], session_date: date) -> None:
        """Pre-market reset: clear date-keyed fields and return to IDLE.

        ``has_traded_today`` and ``trade_type`` are cleared regardless of the
        prior day's outcome. ``in_position`` is kept as a broker cache and is
        resynchronized separately.
        """
        symbols = list(symbols)
        for symbol in symbols:
            state = self.get(symbol)
            self._states[symbol] = SymbolState(
                symbol=symbol,
                in_position=state.in_position,
                last_trade_date=state.last_trade_date,
                last_trade_time=state.last_trade_time,
                session_date=session_date,
            )
        logger.info(f"Daily state reset for {session_date}: {len(symbols)} symbols")

    def set_range(self, symbol: str, high: float, low: float) -> None:
        """Record today's opening range and move to RANGE_SET."""
        if not (math.isfinite(high) and math.isfinite(low)) or high <= low:
            raise ValueError(f"{symbol}: invalid opening range high={high} low={low}")
        self._update(
            symbol, Phase.RANGE_SET, orb_high=high, orb_low=low, in_position=False,
            pending_retest=None,
        )

    def set_in_position(self, symbol: str, in_position: bool) -> None:
        self._update(symbol, in_position=in_position)

    def set_pending_retest(
        self, symbol: str, pending: Union[PendingRetest, Mapping[str, Any]]
    ) -> None:
        """Record a breakout awaiting retest. Replaces nothing: one at a time.

        Raises:
            InvalidTransitionError: If a retest is already pending or the
                symbol already traded today.
        """
        state = self.get(symbol)
        if state.pending_retest is not None:
            raise InvalidTransitionError(f"{symbol}: a retest is already pending")
        if state.has_traded_today:
            raise InvalidTransitionError(f"{symbol}: already traded today")
        self._update(symbol, Phase.BREAKOUT_PENDING, pending_retest=PendingRetest.from_raw(pending))

    def advance_pending_retest(self, symbol: str) -> Optional[PendingRetest]:
        """Increment the pending retest tick counter and return the new value."""
        pending = self.get(symbol).pending_retest
        if pending is None:
            return None
        return self._update(symbol, pending_retest=pending.advanced()).pending_retest

    def mark_traded(
        self,
        symbol: str,
        trade_type: TradeType,
        entry_kind: EntryKind,
        now: datetime,
        session_date: date,
    ) -> None:
        """Record a submitted entry. Clears the pending retest in the same step."""
        self._update(
            symbol,
            Phase.IN_POSITION,
            in_position=True,
            pending_retest=None,
            has_traded_today=True,
            trade_type=trade_type,
            entry_kind=entry_kind,
            last_trade_date=session_date,
            last_trade_time=now,
        )

    def mark_failed(self, symbol: str) -> None:
        """Revert after a failed submission and close the symbol for the day."""
        self._update(symbol, Phase.CLOSED_FOR_DAY, in_position=False, pending_retest=None)

    def close_for_day(self, symbol: str) -> None:
        self._update(symbol, Phase.CLOSED_FOR_DAY, pending_retest=None)

    def sweep_stale(self, max_ticks: int) -> Dict[str, PendingRetest]:
        """Clear pending retests older than ``max_ticks`` and close those symbols.

        Returns:
            Mapping of symbol -> cleared retest.
        """
        cleared: Dict[str, PendingRetest] = {}
        for state in self:
            pending = state.pending_retest
            if pending is not None and pending.bars_since_breakout > max_ticks:
                cleared[state.symbol] = pending
                self.close_for_day(state.symbol)
                logger.warning(
                    f"[{state.symbol}] Cleared stale pending retest after "
                    f"{pending.bars_since_breakout} ticks"
                )
        return cleared
