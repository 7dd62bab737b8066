"""Data models for the ingestor module."""

import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

# Top-holder share above which an asset is treated as a bundle
BUNDLE_HOLDER_THRESHOLD_PCT = 80.0


class TradeSide(str, Enum):
    """Side of an observed trade."""

    BUY = "BUY"
    SELL = "SELL"


class RiskTier(str, Enum):
    """Security risk tier, ordered Safe < Low < Medium < High < Critical."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position of this tier in the severity ordering."""
        return _TIER_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_ORDER = (
    RiskTier.SAFE,
    RiskTier.LOW,
    RiskTier.MEDIUM,
    RiskTier.HIGH,
    RiskTier.CRITICAL,
)


def _parse_timestamp(raw: Any) -> datetime:
    """Parse epoch seconds/milliseconds or ISO-8601 into an aware UTC datetime."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if isinstance(raw, (int, float)):
        ts = float(raw)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(raw, str):
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    raise ValueError(f"Unparseable timestamp: {raw!r}")


@dataclass(frozen=True)
class Trade:
    """A single trade observed for a tracked wallet.

    Attributes:
        trade_id: Unique identifier (transaction signature) of the trade.
        wallet_address: Address of the wallet that traded.
        asset_id: Identifier of the traded asset (token mint).
        side: BUY or SELL.
        amount: USD-denominated trade amount.
        price: Execution price per unit.
        timestamp: When the trade executed.
    """

    trade_id: str
    wallet_address: str
    asset_id: str
    side: TradeSide
    amount: Decimal
    price: Decimal
    timestamp: datetime

    @property
    def is_buy(self) -> bool:
        """Return True for buy-side trades."""
        return self.side == TradeSide.BUY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trade":
        """Create a Trade from a raw collaborator payload.

        Accepts either snake_case or camelCase keys and epoch or ISO
        timestamps.

        Raises:
            ValueError: If required fields are missing or malformed.
        """
        trade_id = str(data.get("trade_id") or data.get("signature") or "")
        wallet = str(data.get("wallet_address") or data.get("wallet") or "")
        asset_id = str(data.get("asset_id") or data.get("mint") or data.get("token") or "")
        if not trade_id or not wallet or not asset_id:
            raise ValueError("Trade payload requires trade_id, wallet_address and asset_id")

        side_raw = str(data.get("side", "")).upper()
        if side_raw not in (TradeSide.BUY.value, TradeSide.SELL.value):
            raise ValueError(f"Unknown trade side: {data.get('side')!r}")

        price = Decimal(str(data["price"]))
        if price <= 0:
            raise ValueError("Trade price must be positive")

        return cls(
            trade_id=trade_id,
            wallet_address=wallet,
            asset_id=asset_id,
            side=TradeSide(side_raw),
            amount=Decimal(str(data.get("amount", data.get("amount_usd", "0")))),
            price=price,
            timestamp=_parse_timestamp(data.get("timestamp", data.get("block_time"))),
        )


@dataclass(frozen=True)
class AssetSecurityInfo:
    """Security snapshot for an asset, produced by an external classifier.

    Read-only input to the decision engine; refreshed per evaluation.
    """

    asset_id: str
    liquidity: Decimal
    top_holders_percentage: float
    is_scam: bool
    is_bundle: bool
    risk_tier: RiskTier
    lp_locked: bool = False
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def effective_risk_tier(self) -> RiskTier:
        """Risk tier escalated to at least HIGH for bundled or concentrated holdings."""
        concentrated = self.top_holders_percentage > BUNDLE_HOLDER_THRESHOLD_PCT
        if (self.is_bundle or concentrated) and self.risk_tier < RiskTier.HIGH:
            return RiskTier.HIGH
        return self.risk_tier


@dataclass(frozen=True)
class MarketData:
    """Point-in-time market data for an asset.

    Price changes are expressed in percent (e.g. 12.5 means +12.5%).
    """

    asset_id: str
    price: Decimal
    volume_24h: Decimal
    liquidity: Decimal
    price_change_5m: float
    price_change_1h: float
    price_change_24h: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def volume_liquidity_ratio(self) -> float:
        """24h volume divided by liquidity, 0.0 when liquidity is unknown."""
        if self.liquidity <= 0:
            return 0.0
        return float(self.volume_24h / self.liquidity)
