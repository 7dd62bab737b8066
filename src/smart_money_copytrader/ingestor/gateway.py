"""Rate-limited, retrying facade over the external collaborators."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

from smart_money_copytrader.ingestor.models import (
    AssetSecurityInfo,
    MarketData,
    Trade,
    TradeSide,
)
from smart_money_copytrader.ingestor.sources import (
    DataUnavailableError,
    ExecutionFailedError,
    MarketDataSource,
    SecurityChecker,
    TradeExecutor,
    TradeSource,
    TransientSourceError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Constants
MAX_REQUESTS_PER_SECOND = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0


class RateLimiter:
    """Minimum-interval rate limiter shared by all outbound calls."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class RetryError(DataUnavailableError):
    """Raised when all retry attempts for a read are exhausted."""

    def __init__(
        self,
        message: str,
        last_exception: Exception | None = None,
        *,
        source: str = "",
        key: str = "",
    ) -> None:
        super().__init__(message, source=source, key=key)
        self.last_exception = last_exception


class CollaboratorGateway:
    """Single entry point for every call leaving the engine.

    Reads (trades, market data, security) are rate limited and retried with
    exponential backoff on ``TransientSourceError``; any other failure is
    surfaced as ``DataUnavailableError`` so callers can skip the item.
    ``execute_trade`` is called exactly once and never retried.

    Example:
        ```python
        gateway = CollaboratorGateway(
            trades=rpc_client,
            market_data=price_feed,
            security=rugcheck,
            executor=jupiter,
        )
        market = await gateway.fetch_market_data("So111...")
        ```
    """

    def __init__(
        self,
        *,
        trades: TradeSource,
        market_data: MarketDataSource,
        security: SecurityChecker,
        executor: TradeExecutor,
        rate_limiter: RateLimiter | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self._trades = trades
        self._market_data = market_data
        self._security = security
        self._executor = executor
        self._rate_limiter = rate_limiter or RateLimiter()
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    async def _call_with_retry(
        self,
        source: str,
        key: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        last_exception: Exception | None = None

        for attempt in range(self._max_retries + 1):
            await self._rate_limiter.acquire()
            try:
                return await call()
            except TransientSourceError as e:
                last_exception = e
                if attempt == self._max_retries:
                    break
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "%s(%s) attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    source,
                    key,
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
            except DataUnavailableError:
                raise
            except Exception as e:
                raise DataUnavailableError(
                    f"{source} failed for {key}: {e}", source=source, key=key
                ) from e

        raise RetryError(
            f"All {self._max_retries + 1} attempts failed for {source}({key})",
            last_exception=last_exception,
            source=source,
            key=key,
        )

    async def fetch_trades(self, wallet_address: str, since: datetime | None) -> list[Trade]:
        """Fetch a wallet's trades, ordered by timestamp."""
        trades: Sequence[Trade] = await self._call_with_retry(
            "fetch_trades",
            wallet_address,
            lambda: self._trades.fetch_trades(wallet_address, since),
        )
        return sorted(trades, key=lambda t: (t.timestamp, t.trade_id))

    async def fetch_market_data(self, asset_id: str) -> MarketData:
        """Fetch market data for an asset."""
        market = await self._call_with_retry(
            "fetch_market_data",
            asset_id,
            lambda: self._market_data.fetch_market_data(asset_id),
        )
        if market.price <= 0:
            raise DataUnavailableError(
                f"Non-positive price for {asset_id}", source="fetch_market_data", key=asset_id
            )
        return market

    async def check_security(self, asset_id: str) -> AssetSecurityInfo:
        """Fetch the security classification for an asset."""
        return await self._call_with_retry(
            "check_security",
            asset_id,
            lambda: self._security.check_security(asset_id),
        )

    async def execute_trade(
        self,
        asset_id: str,
        side: TradeSide,
        amount: Decimal,
        max_slippage_bps: int,
    ) -> str:
        """Submit a trade exactly once.

        Raises:
            ExecutionFailedError: If the executor raises or returns no signature.
        """
        await self._rate_limiter.acquire()
        try:
            signature = await self._executor.execute_trade(asset_id, side, amount, max_slippage_bps)
        except Exception as e:
            raise ExecutionFailedError(
                f"Execution failed for {side.value} {asset_id} ({amount}): {e}",
                asset_id=asset_id,
            ) from e
        if not signature:
            raise ExecutionFailedError(
                f"Executor returned no signature for {asset_id}", asset_id=asset_id
            )
        return signature
