"""ID generation utilities."""

from datetime import date, datetime
from uuid import uuid4


def idempotency_key(symbol: str, session_date: date, trade_type: str) -> str:
    """Key identifying one entry attempt per symbol, day and trade type.

    Examples:
        >>> idempotency_key("SPY", date(2025, 3, 10), "retest")
        'SPY:2025-03-10:retest'
    """
    return f"{symbol}:{session_date.isoformat()}:{trade_type}"


def generate_client_order_id(symbol: str, timestamp: datetime, trade_type: str) -> str:
    """Client order ID for a bracket submission.

    Args:
        symbol: Instrument symbol.
        timestamp: Submission timestamp.
        trade_type: ``breakout`` or ``retest``.

    Returns:
        Client order ID string.
    """
    ts_str = timestamp.strftime("%Y%m%d_%H%M%S")
    uid = str(uuid4())[:8]
    return f"orb_{symbol}_{trade_type}_{ts_str}_{uid}"
