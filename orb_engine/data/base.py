"""Collaborator contracts and the bar / order schemas they exchange."""

from datetime import datetime
from enum import Enum
from typing import ClassVar, List, Optional, Protocol, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

BAR_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def empty_bars() -> pd.DataFrame:
    """Empty bar frame with the standard columns."""
    frame = {"timestamp": pd.Series(dtype="datetime64[ns, UTC]")}
    for col in BAR_COLUMNS[1:]:
        frame[col] = pd.Series(dtype="float64")
    return pd.DataFrame(frame)


def normalize_bars(df: pd.DataFrame) -> pd.DataFrame:
    """Validate columns, coerce timestamps to UTC and sort ascending.

    Raises:
        ValueError: If DataFrame is missing required columns.
    """
    for col in BAR_COLUMNS:
        if col not in df.columns:
            raise ValueError(f"Missing required column: {col}")

    if df.empty:
        return empty_bars()

    out = df[BAR_COLUMNS].copy()
    out["timestamp"] = pd.to_datetime(out["timestamp"], utc=True)
    for col in BAR_COLUMNS[1:]:
        out[col] = out[col].astype(float)

    return out.sort_values("timestamp").reset_index(drop=True)


class OrderSide(str, Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"


class EntryType(str, Enum):
    """Entry leg order type."""

    MARKET = "market"
    LIMIT = "limit"
    STOP_LIMIT = "stop_limit"


class Position(BaseModel):
    """Open broker position."""

    symbol: str
    qty: float = Field(..., description="Signed quantity (negative = short)")
    avg_entry_price: float = 0.0

    @property
    def is_open(self) -> bool:
        return abs(self.qty) > 0


class Order(BaseModel):
    """Broker order snapshot.

    ``leg`` is ``None`` for an entry (parent) order and ``stop_loss`` or
    ``take_profit`` for bracket children.
    """

    id: str
    symbol: str
    side: OrderSide
    qty: float
    status: str = "new"
    order_type: str = EntryType.MARKET.value
    order_class: Optional[str] = "bracket"
    leg: Optional[str] = None
    client_order_id: Optional[str] = None

    OPEN_STATUSES: ClassVar[Tuple[str, ...]] = ("new", "accepted", "pending_new", "partially_filled")

    @property
    def is_open_entry(self) -> bool:
        """True for a live entry order (bracket legs excluded)."""
        return self.status in self.OPEN_STATUSES and self.leg not in ("stop_loss", "take_profit")


class BracketOrderSpec(BaseModel):
    """Entry + protective stop + target submitted atomically."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    side: OrderSide
    qty: int = Field(..., ge=1)
    entry_type: EntryType
    entry_price: Optional[float] = Field(None, description="Stop trigger or limit price")
    limit_price: Optional[float] = Field(None, description="Limit for stop-limit entries")
    stop_loss_price: float
    take_profit_price: float
    time_in_force: str = "gtc"
    client_order_id: Optional[str] = None


class MarketDataClient(Protocol):
    """Market-data collaborator."""

    async def fetch_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """Return bars in ascending timestamp order within ``[start, end]``.

        An empty frame is a valid result.
        """
        ...


class BrokerClient(Protocol):
    """Execution collaborator."""

    async def fetch_account_equity(self) -> float:
        ...

    async def fetch_position(self, symbol: str) -> Optional[Position]:
        """Return the open position, or None when there is none."""
        ...

    async def list_open_orders(self, symbol: str) -> List[Order]:
        ...

    async def submit_bracket_order(self, spec: BracketOrderSpec) -> Order:
        ...

    async def close_position(self, symbol: str) -> bool:
        """Close the position. False when there was nothing to close."""
        ...
