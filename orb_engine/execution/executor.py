"""Order execution: pre-submit checks, sizing and bracket submission."""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from loguru import logger

from ..config.schema import ExecutionConfig
from ..data.base import BracketOrderSpec, BrokerClient, EntryType, Order, OrderSide
from ..strategy.risk import RiskEngine, RiskPlan, TradeDecision, round_price
from ..strategy.state import Direction, TradeType
from ..utils.ids import generate_client_order_id, idempotency_key
from ..utils.logging import log_trade_event
from .retry import with_retry


class SubmissionStatus(str, Enum):
    """Outcome of a submission attempt that did not raise."""

    SUBMITTED = "submitted"
    SUPPRESSED = "suppressed"
    DUPLICATE = "duplicate"


@dataclass
class SubmissionResult:
    """Submission outcome.

    Attributes:
        status: Submitted, suppressed (position or open entry order) or duplicate.
        in_position: Broker position state observed right before submission.
        decision: Sized decision (submitted only).
        order: Broker order (submitted only).
        reason: Why the submission was suppressed.
    """

    status: SubmissionStatus
    in_position: bool = False
    decision: Optional[TradeDecision] = None
    order: Optional[Order] = None
    reason: Optional[str] = None

    @property
    def submitted(self) -> bool:
        return self.status is SubmissionStatus.SUBMITTED


class OrderExecutor:
    """Submit bracket orders with position, open-order and idempotency guards.

    Example:
        >>> executor = OrderExecutor(broker, RiskEngine(), ExecutionConfig())
        >>> result = await executor.submit(plan, "SPY", TradeType.BREAKOUT,
        ...                                EntryType.LIMIT, now, session_date, atr=0.4)
    """

    def __init__(
        self,
        broker: BrokerClient,
        risk: RiskEngine,
        config: Optional[ExecutionConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.broker = broker
        self.risk = risk
        self.config = config or ExecutionConfig()
        self._sleep = sleep
        self._used_keys: Set[str] = set()

    async def _call(self, fn, description: str):
        retry = self.config.retry
        return await with_retry(
            fn,
            max_retries=retry.max_retries,
            delay_seconds=retry.delay_seconds,
            description=description,
            sleep=self._sleep,
        )

    async def sync_position(self, symbol: str) -> bool:
        """Return the broker's view of whether ``symbol`` has an open position."""
        position = await self._call(
            lambda: self.broker.fetch_position(symbol), f"{symbol} position"
        )
        return position is not None and position.is_open

    async def has_open_entry_order(self, symbol: str) -> bool:
        """True when a live entry order exists (bracket legs excluded)."""
        orders = await self._call(
            lambda: self.broker.list_open_orders(symbol), f"{symbol} open orders"
        )
        return any(order.is_open_entry for order in orders)

    def reset_daily(self, session_date: date) -> None:
        """Forget idempotency keys from earlier sessions."""
        today = f":{session_date.isoformat()}:"
        self._used_keys = {k for k in self._used_keys if today in k}

    def build_spec(
        self,
        symbol: str,
        direction: Direction,
        qty: int,
        plan: RiskPlan,
        entry_type: EntryType,
        client_order_id: str,
    ) -> BracketOrderSpec:
        """Bracket spec with entry, stop-loss and take-profit legs."""
        entry_price: Optional[float] = None
        limit_price: Optional[float] = None
        if entry_type is EntryType.STOP_LIMIT:
            entry_price = plan.entry
            limit_price = round_price(plan.entry + direction.sign * self.config.stop_limit_offset)
        elif entry_type is EntryType.LIMIT:
            entry_price = plan.entry

        return BracketOrderSpec(
            symbol=symbol,
            side=OrderSide.BUY if direction is Direction.LONG else OrderSide.SELL,
            qty=qty,
            entry_type=entry_type,
            entry_price=entry_price,
            limit_price=limit_price,
            stop_loss_price=plan.stop,
            take_profit_price=plan.target,
            time_in_force=self.config.time_in_force,
            client_order_id=client_order_id,
        )

    async def submit(
        self,
        plan: RiskPlan,
        symbol: str,
        trade_type: TradeType,
        entry_type: EntryType,
        now: datetime,
        session_date: date,
        atr: Optional[float] = None,
        is_immediate: bool = False,
    ) -> SubmissionResult:
        """Run the pre-submit checks, size the position and submit the bracket.

        Args:
            plan: Approved risk plan.
            symbol: Instrument symbol.
            trade_type: Trade type recorded for the day.
            entry_type: Entry leg order type.
            now: Submission time.
            session_date: Exchange date (idempotency scope).
            atr: ATR for volatility-scaled sizing.
            is_immediate: Carried onto the TradeDecision.

        Returns:
            SubmissionResult.

        Raises:
            BrokerError: When a broker call fails after retries. Any error from
                the bracket submission releases the idempotency key first.
        """
        if self.config.pre_submit_delay_seconds > 0:
            await self._sleep(self.config.pre_submit_delay_seconds)

        if await self.sync_position(symbol):
            logger.info(f"[{symbol}] Entry suppressed: position already open")
            return SubmissionResult(SubmissionStatus.SUPPRESSED, in_position=True, reason="in_position")

        if await self.has_open_entry_order(symbol):
            logger.info(f"[{symbol}] Entry suppressed: open entry order detected")
            return SubmissionResult(SubmissionStatus.SUPPRESSED, reason="open_order")

        key = idempotency_key(symbol, session_date, trade_type.value)
        if key in self._used_keys:
            logger.warning(f"[{symbol}] Duplicate entry attempt suppressed ({key})")
            return SubmissionResult(SubmissionStatus.DUPLICATE, reason="duplicate")

        equity = await self._call(self.broker.fetch_account_equity, "account equity")
        qty = self.risk.position_size(equity, plan.entry, plan.stop, atr)

        decision = TradeDecision(
            symbol=symbol,
            direction=plan.direction,
            entry=plan.entry,
            stop=plan.stop,
            target=plan.target,
            quantity=qty,
            risk_reward=plan.risk_reward,
            is_immediate=is_immediate,
            entry_type=entry_type.value,
        )
        spec = self.build_spec(
            symbol,
            plan.direction,
            qty,
            plan,
            entry_type,
            generate_client_order_id(symbol, now, trade_type.value),
        )

        self._used_keys.add(key)
        try:
            order = await self._call(
                lambda: self.broker.submit_bracket_order(spec), f"{symbol} bracket order"
            )
        except Exception:
            self._used_keys.discard(key)
            raise

        log_trade_event(
            f"{symbol} {trade_type.value.upper()} {plan.direction.value.upper()} x{qty} "
            f"({entry_type.value}) - Entry: {plan.entry:.2f}, Stop: {plan.stop:.2f}, "
            f"Target: {plan.target:.2f}, RR: {plan.risk_reward:.2f}:1",
            symbol=symbol,
            order_id=order.id,
        )
        return SubmissionResult(
            SubmissionStatus.SUBMITTED,
            in_position=True,
            decision=decision,
            order=order,
        )

    async def close_position(self, symbol: str) -> bool:
        """Flatten ``symbol``. False when there was nothing to close."""
        closed = await self._call(
            lambda: self.broker.close_position(symbol), f"{symbol} close position"
        )
        if closed:
            log_trade_event(f"{symbol} CLOSE - position flattened", symbol=symbol)
        return bool(closed)
