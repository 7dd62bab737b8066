"""Interfaces to the external collaborators the engine consumes.

Concrete RPC, market-data, security and execution clients live outside
this package; they only have to satisfy these protocols.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from smart_money_copytrader.ingestor.models import (
    AssetSecurityInfo,
    MarketData,
    Trade,
    TradeSide,
)


class DataUnavailableError(Exception):
    """Raised when wallet, market or security data cannot be obtained.

    Callers recover by skipping the affected wallet or asset for the
    current cycle.
    """

    def __init__(self, message: str, *, source: str = "", key: str = "") -> None:
        super().__init__(message)
        self.source = source
        self.key = key


class TransientSourceError(Exception):
    """Raised by a collaborator for a retryable failure (rate limit, timeout)."""


class ExecutionFailedError(Exception):
    """Raised when the execution collaborator fails to fill an approved trade."""

    def __init__(self, message: str, *, asset_id: str = "") -> None:
        super().__init__(message)
        self.asset_id = asset_id


@runtime_checkable
class TradeSource(Protocol):
    """Wallet trade history provider."""

    async def fetch_trades(self, wallet_address: str, since: datetime | None) -> Sequence[Trade]:
        """Return trades for a wallet ordered by timestamp."""
        ...


@runtime_checkable
class MarketDataSource(Protocol):
    """Price, volume and liquidity feed."""

    async def fetch_market_data(self, asset_id: str) -> MarketData: ...


@runtime_checkable
class SecurityChecker(Protocol):
    """Third-party scam and security classifier."""

    async def check_security(self, asset_id: str) -> AssetSecurityInfo: ...


@runtime_checkable
class TradeExecutor(Protocol):
    """Order execution collaborator."""

    async def execute_trade(
        self,
        asset_id: str,
        side: TradeSide,
        amount: Decimal,
        max_slippage_bps: int,
    ) -> str:
        """Execute a trade and return its signature.

        Raises:
            Exception: Any failure; the engine never retries a submitted trade.
        """
        ...
