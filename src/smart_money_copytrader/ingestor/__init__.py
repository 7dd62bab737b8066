"""Data ingestion layer - External collaborator interfaces and data types."""

from smart_money_copytrader.ingestor.gateway import (
    CollaboratorGateway,
    RateLimiter,
    RetryError,
)
from smart_money_copytrader.ingestor.models import (
    AssetSecurityInfo,
    MarketData,
    RiskTier,
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

__all__ = [
    "AssetSecurityInfo",
    "CollaboratorGateway",
    "DataUnavailableError",
    "ExecutionFailedError",
    "MarketData",
    "MarketDataSource",
    "RateLimiter",
    "RetryError",
    "RiskTier",
    "SecurityChecker",
    "Trade",
    "TradeExecutor",
    "TradeSide",
    "TradeSource",
    "TransientSourceError",
]
