"""Shared utilities: logging, timezones and identifiers."""

from .ids import generate_client_order_id, idempotency_key
from .logging import log_trade_event, setup_logger
from .timezones import exchange_datetime, localize_time

__all__ = [
    "generate_client_order_id",
    "idempotency_key",
    "log_trade_event",
    "setup_logger",
    "exchange_datetime",
    "localize_time",
]
