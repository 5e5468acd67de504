"""Collaborator contracts, bar schema and simulation collaborators."""

from .base import (
    BAR_COLUMNS,
    BracketOrderSpec,
    BrokerClient,
    EntryType,
    MarketDataClient,
    Order,
    OrderSide,
    Position,
    empty_bars,
    normalize_bars,
)
from .paper import PaperBroker, resample_bars, timeframe_to_freq
from .synthetic import SyntheticSession

__all__ = [
    "BAR_COLUMNS",
    "BracketOrderSpec",
    "BrokerClient",
    "EntryType",
    "MarketDataClient",
    "Order",
    "OrderSide",
    "Position",
    "empty_bars",
    "normalize_bars",
    "PaperBroker",
    "resample_bars",
    "timeframe_to_freq",
    "SyntheticSession",
]
