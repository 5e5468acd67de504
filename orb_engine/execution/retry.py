"""Fixed-delay retry for transient collaborator failures."""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import pandas as pd
from loguru import logger

from ..config.schema import RetryConfig
from ..data.base import MarketDataClient
from ..errors import TransientBrokerError


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = 2,
    delay_seconds: float = 1.0,
    description: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """Await ``fn()``, retrying transient failures with a fixed delay.

    Only ``TransientBrokerError`` is retried. Any other exception, and the
    last transient one once the budget is spent, propagates to the caller.

    Args:
        fn: Zero-argument coroutine factory.
        max_retries: Retries after the first attempt.
        delay_seconds: Sleep between attempts.
        description: Label for log lines.
        sleep: Awaitable sleep used between attempts.

    Returns:
        Whatever ``fn`` returns.

    Examples:
        >>> equity = await with_retry(broker.fetch_account_equity, max_retries=2)
    """
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except TransientBrokerError as exc:
            if attempt == max_retries:
                logger.error(f"{description} failed after {attempt + 1} attempts: {exc}")
                raise
            logger.warning(
                f"{description} failed ({exc}); retry {attempt + 1}/{max_retries} "
                f"in {delay_seconds:.1f}s"
            )
            await sleep(delay_seconds)


class RetryingMarketData:
    """Market-data client wrapper applying ``with_retry`` to every fetch."""

    def __init__(
        self,
        client: MarketDataClient,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.retry = retry or RetryConfig()
        self._sleep = sleep

    async def fetch_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        return await with_retry(
            lambda: self.client.fetch_bars(symbol, timeframe, start, end),
            max_retries=self.retry.max_retries,
            delay_seconds=self.retry.delay_seconds,
            description=f"{symbol} {timeframe} bars",
            sleep=self._sleep,
        )
