"""Exception taxonomy for the engine.

Expected absence (no position, no order) is not an exception: collaborators
return ``None`` or ``False`` for it.
"""


class EngineError(Exception):
    """Base class for engine errors."""


class BrokerError(EngineError):
    """Broker or market-data call failed."""


class TransientBrokerError(BrokerError):
    """Timeout, 5xx or connection abort. Safe to retry."""


class OrderRejectedError(BrokerError):
    """Broker refused the order (4xx other than not-found)."""


class DataUnavailableError(EngineError):
    """Required bars were not available for a computation."""


class InvalidTransitionError(EngineError):
    """Symbol state machine asked to move backwards within a day."""
