"""Coordinator: per-symbol fan-out under a single-flight sweep guard.

Every sweep (``run_tick``, ``evaluate_breakouts``, ``evaluate_retests``)
shares one in-flight flag. A sweep that starts while another is running is
skipped, not queued. Per-symbol failures are caught, logged and recorded as
typed outcomes so one symbol never aborts the others.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import pandas as pd
from loguru import logger

from ..config.schema import EngineConfig
from ..data.base import BrokerClient, EntryType, MarketDataClient, normalize_bars
from ..errors import BrokerError
from ..execution.executor import OrderExecutor, SubmissionStatus
from ..execution.retry import RetryingMarketData
from ..features.bar_series import average_true_range
from ..features.opening_range import OpeningRange, RangeCalculator
from ..strategy.breakout import SignalDetector, check_trade_alignment
from ..strategy.calendar import SessionCalendar
from ..strategy.retest import RetestAction, RetestMonitor
from ..strategy.risk import RiskEngine, RiskPlan
from ..strategy.state import (
    DailyCounters,
    EntryKind,
    PendingRetest,
    Phase,
    SymbolStateStore,
    TradeType,
)
from ..utils.logging import log_trade_event


@dataclass
class SymbolOutcome:
    """Result of evaluating one symbol in a sweep.

    ``action`` is one of: skipped, no_breakout, filtered, breakout_pending,
    waiting, submitted, suppressed, duplicate, failed.
    """

    symbol: str
    stage: str
    action: str
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SweepReport:
    """Summary of one guarded sweep."""

    kind: str
    started_at: datetime
    skipped: bool = False
    outcomes: List[SymbolOutcome] = field(default_factory=list)

    @property
    def evaluations(self) -> int:
        return len(self.outcomes)

    @property
    def submissions(self) -> int:
        return sum(1 for o in self.outcomes if o.action == "submitted")

    @property
    def failures(self) -> int:
        return sum(1 for o in self.outcomes if o.action == "failed")

    def __repr__(self) -> str:
        if self.skipped:
            return f"SweepReport({self.kind} SKIPPED @ {self.started_at.isoformat()})"
        return (
            f"SweepReport({self.kind} @ {self.started_at.isoformat()}: "
            f"evaluated={self.evaluations}, submitted={self.submissions}, failed={self.failures})"
        )


class Coordinator:
    """Drive range, breakout, retest and close-out work across symbols.

    Example:
        >>> coordinator = Coordinator(config, market_data, broker)
        >>> coordinator.reset_daily()
        >>> await coordinator.compute_ranges()
        >>> report = await coordinator.run_tick()
    """

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataClient,
        broker: BrokerClient,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.symbols = list(config.symbols)
        self.calendar = SessionCalendar(config.session, config.volume)
        self.market_data = RetryingMarketData(market_data, config.execution.retry, sleep)
        self.broker = broker

        self.store = SymbolStateStore()
        self.counters = DailyCounters()
        self.risk = RiskEngine(config.risk)
        self.executor = OrderExecutor(broker, self.risk, config.execution, sleep)
        self.detector = SignalDetector(config, self.calendar)
        self.retest_monitor = RetestMonitor(config.retest, self.calendar)
        self.range_calculator = RangeCalculator(
            self.market_data, self.calendar.range_window, config.session.bar_timeframe
        )

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ranges: Dict[str, OpeningRange] = {}
        self._sweep_in_flight = False
        self.last_sweep: Optional[SweepReport] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def reset_daily(self, now: Optional[datetime] = None) -> None:
        """Pre-market reset of per-symbol state, counters and idempotency keys."""
        now = now or self.now()
        session_date = self.calendar.session_date(now)
        self.store.reset_daily(self.symbols, session_date)
        self.counters = DailyCounters(session_date=session_date)
        self.executor.reset_daily(session_date)
        self._ranges = {}
        logger.info(f"Session {session_date} reset for {len(self.symbols)} symbols")

    def _ensure_session(self, now: datetime) -> None:
        if self.counters.session_date != self.calendar.session_date(now):
            self.reset_daily(now)

    async def sync_positions(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """Refresh the cached ``in_position`` flag for each symbol from the broker."""
        result: Dict[str, bool] = {}
        for symbol in symbols or self.symbols:
            in_position = await self.executor.sync_position(symbol)
            self.store.set_in_position(symbol, in_position)
            result[symbol] = in_position
        return result

    # ------------------------------------------------------------------
    # Opening range
    # ------------------------------------------------------------------

    async def compute_range(self, symbol: str, now: Optional[datetime] = None) -> Optional[OpeningRange]:
        """Compute today's range for ``symbol`` once the window has closed.

        Idempotent: an already-set range for today is returned unchanged.
        """
        now = now or self.now()
        self._ensure_session(now)
        session_date = self.calendar.session_date(now)

        existing = self._ranges.get(symbol)
        if existing is not None and existing.session_date == session_date:
            return existing

        if not self.calendar.is_trading_day(session_date):
            logger.debug(f"[{symbol}] No range on non-trading day {session_date}")
            return None

        _, range_end = self.calendar.range_window(session_date)
        if now < range_end:
            logger.debug(f"[{symbol}] Range window still open until {range_end}")
            return None

        orng = await self.range_calculator.compute(symbol, session_date)
        if orng is None:
            logger.warning(f"[{symbol}] Opening range unavailable; will retry on health check")
            return None

        self.store.set_range(symbol, orng.high, orng.low)
        self._ranges[symbol] = orng
        return orng

    async def compute_ranges(
        self,
        symbols: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Optional[OpeningRange]]:
        """Compute ranges for all symbols; per-symbol failures are isolated."""
        now = now or self.now()
        symbols = list(symbols or self.symbols)

        async def one(symbol: str) -> Optional[OpeningRange]:
            try:
                return await self.compute_range(symbol, now)
            except Exception as exc:
                logger.error(f"[{symbol}] Range computation failed: {exc}")
                self.counters.record_failure(f"range:{type(exc).__name__}")
                return None

        results = await asyncio.gather(*(one(s) for s in symbols))
        return dict(zip(symbols, results))

    # ------------------------------------------------------------------
    # Guarded sweeps
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        kind: str,
        symbols: Optional[Iterable[str]],
        worker: Callable[[str, datetime], Awaitable[List[SymbolOutcome]]],
        now: Optional[datetime],
    ) -> SweepReport:
        now = now or self.now()
        if self._sweep_in_flight:
            logger.warning(f"{kind} sweep skipped: previous sweep still in flight")
            return SweepReport(kind=kind, started_at=now, skipped=True)

        self._sweep_in_flight = True
        try:
            self._ensure_session(now)
            symbols = list(symbols or self.symbols)
            results = await asyncio.gather(
                *(self._isolated(kind, worker, symbol, now) for symbol in symbols)
            )
            report = SweepReport(
                kind=kind,
                started_at=now,
                outcomes=[outcome for outcomes in results for outcome in outcomes],
            )
            self.last_sweep = report
            logger.debug(repr(report))
            return report
        finally:
            self._sweep_in_flight = False

    async def _isolated(
        self,
        kind: str,
        worker: Callable[[str, datetime], Awaitable[List[SymbolOutcome]]],
        symbol: str,
        now: datetime,
    ) -> List[SymbolOutcome]:
        try:
            return await worker(symbol, now)
        except Exception as exc:
            reason = type(exc).__name__
            logger.exception(f"[{symbol}] {kind} evaluation failed: {exc}")
            self.counters.record_failure(reason)
            return [SymbolOutcome(symbol, kind, "failed", reason=reason, error=str(exc))]

    @property
    def sweep_in_flight(self) -> bool:
        return self._sweep_in_flight

    async def evaluate_breakouts(
        self,
        symbols: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> SweepReport:
        async def worker(symbol: str, at: datetime) -> List[SymbolOutcome]:
            return [await self._evaluate_breakout(symbol, at)]

        return await self._guarded("breakouts", symbols, worker, now)

    async def evaluate_retests(
        self,
        symbols: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> SweepReport:
        async def worker(symbol: str, at: datetime) -> List[SymbolOutcome]:
            return [await self._evaluate_retest(symbol, at)]

        return await self._guarded("retests", symbols, worker, now)

    async def run_tick(
        self,
        symbols: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> SweepReport:
        """Retest evaluation, then breakout evaluation, per symbol in one sweep."""

        async def worker(symbol: str, at: datetime) -> List[SymbolOutcome]:
            outcomes = [await self._evaluate_retest(symbol, at)]
            outcomes.append(await self._evaluate_breakout(symbol, at))
            return outcomes

        return await self._guarded("tick", symbols, worker, now)

    # ------------------------------------------------------------------
    # Per-symbol evaluation
    # ------------------------------------------------------------------

    def entry_block_reason(self, symbol: str, now: datetime, phase: Phase) -> Optional[str]:
        """Why ``symbol`` may not enter at ``now`` from ``phase``, or None."""
        state = self.store.get(symbol)
        calendar_reason = self.calendar.entry_block_reason(now)
        if calendar_reason:
            return calendar_reason
        if state.has_traded_today:
            return "traded_today"
        if state.trade_type is not TradeType.NONE:
            return "trade_taken"
        if state.phase is not phase:
            return f"phase_{state.phase.value}"
        if not state.has_valid_range:
            return "invalid_range"
        return None

    async def _session_bars(self, symbol: str, now: datetime) -> pd.DataFrame:
        start, _ = self.calendar.range_window(self.calendar.session_date(now))
        raw = await self.market_data.fetch_bars(
            symbol, self.config.session.bar_timeframe, start, now
        )
        return normalize_bars(raw)

    async def _evaluate_breakout(self, symbol: str, now: datetime) -> SymbolOutcome:
        stage = "breakout"
        block = self.entry_block_reason(symbol, now, Phase.RANGE_SET)
        if block:
            logger.debug(f"[{symbol}] Skipping breakout monitoring: {block}")
            return SymbolOutcome(symbol, stage, "skipped", reason=block)

        in_position = await self.executor.sync_position(symbol)
        self.store.set_in_position(symbol, in_position)
        if in_position:
            return SymbolOutcome(symbol, stage, "skipped", reason="in_position")

        state = self.store.get(symbol)
        session_date = self.calendar.session_date(now)
        _, range_end = self.calendar.range_window(session_date)
        bars = await self._session_bars(symbol, now)
        if self.store.get(symbol).phase is not Phase.RANGE_SET:
            return SymbolOutcome(symbol, stage, "skipped", reason="state_changed")

        result = self.detector.detect(symbol, bars, state.orb_high, state.orb_low, range_end, now)
        if result.filter_reason:
            self.counters.record_filter(result.filter_reason)
            return SymbolOutcome(symbol, stage, "filtered", reason=result.filter_reason)
        if result.signal is None:
            return SymbolOutcome(symbol, stage, "no_breakout")

        signal = result.signal
        self.counters.record_breakout()
        self.store.set_pending_retest(
            symbol,
            PendingRetest(
                direction=signal.direction,
                breakout_level=signal.breakout_level,
                created_at=now,
            ),
        )

        misaligned = check_trade_alignment(
            signal.direction, bars, now, state.last_trade_time, self.config
        )
        if misaligned:
            logger.info(f"[{symbol}] Breakout entry deferred to retest: {misaligned}")
            self.counters.record_filter(misaligned)
            return SymbolOutcome(symbol, stage, "breakout_pending", reason=misaligned)

        plan = self.risk.plan(
            signal.direction,
            signal.close_price,
            signal.atr,
            state.orb_high - state.orb_low,
            is_immediate=signal.is_immediate,
        )
        if not plan.approved:
            self.counters.record_filter(plan.reason)
            return SymbolOutcome(symbol, stage, "breakout_pending", reason=plan.reason)

        return await self._enter(
            symbol,
            stage,
            plan,
            TradeType.BREAKOUT,
            EntryKind.BREAKOUT,
            signal.preferred_entry,
            now,
            signal.atr,
            signal.is_immediate,
        )

    async def _evaluate_retest(self, symbol: str, now: datetime) -> SymbolOutcome:
        stage = "retest"
        state = self.store.get(symbol)
        if state.pending_retest is None:
            return SymbolOutcome(symbol, stage, "skipped", reason="no_pending_retest")

        block = self.entry_block_reason(symbol, now, Phase.BREAKOUT_PENDING)
        if block:
            logger.debug(f"[{symbol}] Retest check skipped: {block}")
            return SymbolOutcome(symbol, stage, "skipped", reason=block)

        pending = self.store.advance_pending_retest(symbol)
        in_position = await self.executor.sync_position(symbol)
        self.store.set_in_position(symbol, in_position)

        start, end = self.retest_monitor.window(now)
        raw = await self.market_data.fetch_bars(
            symbol, self.config.session.retest_timeframe, start, end
        )
        decision = self.retest_monitor.evaluate(
            symbol, pending, normalize_bars(raw), in_position, now
        )
        if decision.action is RetestAction.NONE:
            return SymbolOutcome(symbol, stage, "waiting", reason=decision.reason)

        session_bars = await self._session_bars(symbol, now)
        if self.store.get(symbol).phase is not Phase.BREAKOUT_PENDING:
            return SymbolOutcome(symbol, stage, "skipped", reason="state_changed")
        ccfg = self.config.confirmation
        atr = average_true_range(session_bars, ccfg.atr_period, ccfg.default_atr)
        plan = self.risk.plan(
            pending.direction,
            decision.entry_price,
            atr,
            state.orb_high - state.orb_low,
            is_immediate=False,
        )

        if decision.action is RetestAction.TIMEOUT:
            if not plan.approved:
                self.counters.record_filter(plan.reason)
                self.store.close_for_day(symbol)
                return SymbolOutcome(symbol, stage, "filtered", reason=plan.reason)
            return await self._enter(
                symbol, stage, plan, TradeType.BREAKOUT, EntryKind.TIMEOUT,
                EntryType.MARKET, now, atr, False,
            )

        if not plan.approved:
            self.counters.record_filter(plan.reason)
            return SymbolOutcome(symbol, stage, "filtered", reason=plan.reason)
        return await self._enter(
            symbol, stage, plan, TradeType.RETEST, EntryKind.RETEST,
            EntryType.STOP_LIMIT, now, atr, False,
        )

    async def _enter(
        self,
        symbol: str,
        stage: str,
        plan: RiskPlan,
        trade_type: TradeType,
        entry_kind: EntryKind,
        entry_type: EntryType,
        now: datetime,
        atr: float,
        is_immediate: bool,
    ) -> SymbolOutcome:
        session_date = self.calendar.session_date(now)
        try:
            result = await self.executor.submit(
                plan, symbol, trade_type, entry_type, now, session_date, atr, is_immediate
            )
        except Exception as exc:
            reason = type(exc).__name__
            self.store.mark_failed(symbol)
            self.counters.record_failure(reason)
            log_trade_event(
                f"{symbol} {entry_kind.value.upper()} FAILED - {reason}: {exc}", symbol=symbol
            )
            await self._resync_quietly(symbol)
            return SymbolOutcome(symbol, stage, "failed", reason=reason, error=str(exc))

        if result.submitted:
            self.store.mark_traded(symbol, trade_type, entry_kind, now, session_date)
            self.counters.record_trade(trade_type)
            await self._resync_quietly(symbol)
            return SymbolOutcome(symbol, stage, "submitted", reason=entry_kind.value)

        self.store.set_in_position(symbol, result.in_position)
        if result.status is SubmissionStatus.SUPPRESSED:
            self.counters.record_filter(result.reason)
        return SymbolOutcome(symbol, stage, result.status.value, reason=result.reason)

    async def _resync_quietly(self, symbol: str) -> None:
        try:
            self.store.set_in_position(symbol, await self.executor.sync_position(symbol))
        except Exception as exc:
            logger.warning(f"[{symbol}] Position resync failed: {exc}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_stale_retests(self) -> List[str]:
        """Clear pending retests older than ``stale_after_ticks`` ticks."""
        cleared = self.store.sweep_stale(self.config.retest.stale_after_ticks)
        for _ in cleared:
            self.counters.record_failure("stale_retest")
        return list(cleared)

    async def health_check(
        self,
        symbols: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, List[str]]:
        """Recover missing ranges and clear stale retests."""
        now = now or self.now()
        self._ensure_session(now)
        symbols = list(symbols or self.symbols)

        missing = [s for s in symbols if self.store.get(s).phase is Phase.IDLE]
        recovered: List[str] = []
        if missing and now < self.calendar.entry_cutoff(self.calendar.session_date(now)):
            ranges = await self.compute_ranges(missing, now)
            recovered = [s for s, orng in ranges.items() if orng is not None]
            if recovered:
                logger.info(f"Health check recovered ranges: {recovered}")

        stale = self.sweep_stale_retests()
        return {"ranges_recovered": recovered, "stale_cleared": stale}

    async def close_all(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """Flatten every symbol and close it for the day.

        Not guarded by the sweep flag: end-of-session close must always run.
        """
        symbols = list(symbols or self.symbols)

        async def one(symbol: str) -> bool:
            try:
                closed = await self.executor.close_position(symbol)
            except BrokerError as exc:
                logger.error(f"[{symbol}] Close failed: {exc}")
                self.counters.record_failure(f"close:{type(exc).__name__}")
                return False
            self.store.set_in_position(symbol, False)
            self.store.close_for_day(symbol)
            return closed

        results = await asyncio.gather(*(one(s) for s in symbols))
        return dict(zip(symbols, results))

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Read-only view of state, counters and the active volume gates."""
        now = now or self.now()
        session_date = self.calendar.session_date(now)
        return {
            "session_date": session_date.isoformat(),
            "sweep_in_flight": self._sweep_in_flight,
            "symbols": {state.symbol: state.snapshot() for state in self.store},
            "counters": self.counters.to_dict(),
            "volume_filter": {
                "low_liquidity": self.calendar.in_low_liquidity(now),
                "strictness_factor": self.calendar.strictness_factor(session_date),
                "breakout_multiplier": self.calendar.breakout_multiplier(now),
                "confirm_multiplier": self.calendar.confirm_multiplier(now),
                "immediate_multiplier": self.calendar.immediate_multiplier(now),
            },
            "last_sweep": repr(self.last_sweep) if self.last_sweep else None,
        }

    def daily_summary(self) -> Dict[str, Any]:
        """End-of-day counters plus each symbol's outcome, also written as a trade event."""
        summary = self.counters.to_dict()
        summary["symbols"] = {
            state.symbol: {
                "phase": state.phase.value,
                "trade_type": state.trade_type.value,
                "entry_kind": state.entry_kind.value if state.entry_kind else None,
            }
            for state in self.store
        }
        log_trade_event(
            f"DAILY SUMMARY {summary['date']} - trades: {summary['total_trades']}, "
            f"by type: {summary['trades_by_type']}, filtered: {summary['filtered_by_reason']}, "
            f"failures: {summary['failures_by_reason']}"
        )
        return summary
