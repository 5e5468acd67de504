"""Order execution and retry policy."""

from .retry import RetryingMarketData, with_retry
from .executor import OrderExecutor, SubmissionResult, SubmissionStatus

__all__ = [
    "RetryingMarketData",
    "with_retry",
    "OrderExecutor",
    "SubmissionResult",
    "SubmissionStatus",
]
