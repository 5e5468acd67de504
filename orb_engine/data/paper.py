"""In-memory paper broker and market-data source over 1-minute bars.

Serves both collaborator contracts for simulations: bars are released only
once their minute has completed relative to the broker clock, and bracket
orders fill immediately at their entry price, with the stop/target legs
resolved against later bars by ``advance``.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

import pandas as pd
from loguru import logger

from .base import (
    BracketOrderSpec,
    EntryType,
    Order,
    OrderSide,
    Position,
    empty_bars,
    normalize_bars,
)

_TIMEFRAME_RE = re.compile(r"^(\d+)(Min|Hour|Day)$")
_PANDAS_UNITS = {"Min": "min", "Hour": "h", "Day": "D"}


def timeframe_to_freq(timeframe: str) -> str:
    """Translate ``5Min``-style timeframes to a pandas frequency string.

    Raises:
        ValueError: For unsupported timeframes.
    """
    match = _TIMEFRAME_RE.match(timeframe)
    if not match:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return f"{match.group(1)}{_PANDAS_UNITS[match.group(2)]}"


def resample_bars(bars: pd.DataFrame, timeframe: str) -> pd.DataFrame:
    """Aggregate minute bars to ``timeframe``, labelled by bar open time."""
    if bars.empty:
        return empty_bars()
    freq = timeframe_to_freq(timeframe)
    if freq == "1min":
        return bars.reset_index(drop=True)

    agg = (
        bars.set_index("timestamp")
        .resample(freq, label="left", closed="left")
        .agg({"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"})
        .dropna(subset=["open"])
        .reset_index()
    )
    return normalize_bars(agg)


class PaperBroker:
    """Paper trading collaborator driven by an explicit clock.

    Example:
        >>> broker = PaperBroker({"SPY": minute_bars}, equity=100_000.0)
        >>> broker.advance(now)
        >>> bars = await broker.fetch_bars("SPY", "5Min", start, end)
    """

    def __init__(self, minute_bars: Dict[str, pd.DataFrame], equity: float = 100_000.0) -> None:
        self._bars = {symbol: normalize_bars(df) for symbol, df in minute_bars.items()}
        self.cash = equity
        self.now: Optional[datetime] = None
        self.positions: Dict[str, Position] = {}
        self.orders: List[Order] = []
        self.realized_pnl = 0.0
        self._brackets: Dict[str, BracketOrderSpec] = {}

    def _completed(self, symbol: str) -> pd.DataFrame:
        bars = self._bars.get(symbol)
        if bars is None or bars.empty:
            return empty_bars()
        if self.now is None:
            return bars
        cutoff = pd.Timestamp(self.now) - pd.Timedelta(minutes=1)
        return bars[bars["timestamp"] <= cutoff]

    def last_price(self, symbol: str) -> Optional[float]:
        bars = self._completed(symbol)
        if bars.empty:
            return None
        return float(bars["close"].iloc[-1])

    def advance(self, now: datetime) -> None:
        """Move the clock and resolve bracket legs hit by the newest bar."""
        self.now = now
        for symbol in list(self.positions):
            bars = self._completed(symbol)
            spec = self._brackets.get(symbol)
            if bars.empty or spec is None:
                continue
            bar = bars.iloc[-1]
            long = spec.side is OrderSide.BUY
            stop_hit = bar["low"] <= spec.stop_loss_price if long else bar["high"] >= spec.stop_loss_price
            target_hit = (
                bar["high"] >= spec.take_profit_price if long else bar["low"] <= spec.take_profit_price
            )
            if stop_hit:
                self._flatten(symbol, spec.stop_loss_price, "stop_loss")
            elif target_hit:
                self._flatten(symbol, spec.take_profit_price, "take_profit")

    async def fetch_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        bars = resample_bars(self._completed(symbol), timeframe)
        if bars.empty:
            return bars
        ts = bars["timestamp"]
        return bars[(ts >= pd.Timestamp(start)) & (ts <= pd.Timestamp(end))].reset_index(drop=True)

    async def fetch_account_equity(self) -> float:
        equity = self.cash
        for symbol, position in self.positions.items():
            price = self.last_price(symbol) or position.avg_entry_price
            equity += position.qty * price
        return equity

    async def fetch_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    async def list_open_orders(self, symbol: str) -> List[Order]:
        return [o for o in self.orders if o.symbol == symbol and o.status in Order.OPEN_STATUSES]

    async def submit_bracket_order(self, spec: BracketOrderSpec) -> Order:
        if spec.entry_type is EntryType.MARKET or spec.entry_price is None:
            fill = self.last_price(spec.symbol)
            if fill is None:
                raise ValueError(f"No price available to fill {spec.symbol}")
        else:
            fill = spec.entry_price

        signed_qty = spec.qty if spec.side is OrderSide.BUY else -spec.qty
        self.cash -= signed_qty * fill
        self.positions[spec.symbol] = Position(
            symbol=spec.symbol, qty=signed_qty, avg_entry_price=fill
        )
        self._brackets[spec.symbol] = spec

        parent = Order(
            id=str(uuid4()),
            symbol=spec.symbol,
            side=spec.side,
            qty=spec.qty,
            status="filled",
            order_type=spec.entry_type.value,
            client_order_id=spec.client_order_id,
        )
        exit_side = OrderSide.SELL if spec.side is OrderSide.BUY else OrderSide.BUY
        legs = [
            Order(id=str(uuid4()), symbol=spec.symbol, side=exit_side, qty=spec.qty,
                  order_type="stop", leg="stop_loss"),
            Order(id=str(uuid4()), symbol=spec.symbol, side=exit_side, qty=spec.qty,
                  order_type="limit", leg="take_profit"),
        ]
        self.orders.extend([parent, *legs])

        logger.info(
            f"[paper] {spec.symbol} {spec.side.value} x{spec.qty} filled at {fill:.2f} "
            f"(stop {spec.stop_loss_price:.2f}, target {spec.take_profit_price:.2f})"
        )
        return parent

    async def close_position(self, symbol: str) -> bool:
        if symbol not in self.positions:
            return False
        price = self.last_price(symbol) or self.positions[symbol].avg_entry_price
        self._flatten(symbol, price, "close")
        return True

    def _flatten(self, symbol: str, price: float, reason: str) -> None:
        position = self.positions.pop(symbol)
        self._brackets.pop(symbol, None)
        self.cash += position.qty * price
        pnl = position.qty * (price - position.avg_entry_price)
        self.realized_pnl += pnl
        for order in self.orders:
            if order.symbol == symbol and order.status in Order.OPEN_STATUSES:
                order.status = "filled" if order.leg == reason else "canceled"
        logger.info(f"[paper] {symbol} flattened at {price:.2f} ({reason}), PnL {pnl:+.2f}")
