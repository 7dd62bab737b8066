"""Data models for the wallet profiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from smart_money_copytrader.ingestor.models import Trade

# Behaviour thresholds
INSIDER_MIN_WIN_RATE = 0.8
INSIDER_MIN_TRADES = 10
INSIDER_MIN_AVG_PROFIT_USD = Decimal("1000")
WHALE_MIN_VOLUME_7D_USD = Decimal("100000")
OVERTRADING_MIN_TRADES_24H = 20
OVERTRADING_MAX_WIN_RATE = 0.5


@dataclass(frozen=True)
class RoundTrip:
    """A completed buy-then-sell cycle on one asset."""

    asset_id: str
    entry_price: Decimal
    exit_price: Decimal
    amount: Decimal
    opened_at: datetime
    closed_at: datetime

    @property
    def return_pct(self) -> float:
        """Fractional return, (exit - entry) / entry."""
        return float((self.exit_price - self.entry_price) / self.entry_price)

    @property
    def profit_usd(self) -> Decimal:
        return (self.exit_price - self.entry_price) * self.amount / self.entry_price

    @property
    def is_win(self) -> bool:
        return self.exit_price > self.entry_price

    @property
    def hold_seconds(self) -> float:
        return (self.closed_at - self.opened_at).total_seconds()


@dataclass(frozen=True)
class WalletMetrics:
    """Derived performance metrics for a wallet's trade history.

    Attributes:
        trade_count: Number of observed trades.
        round_trip_count: Number of completed round trips.
        win_rate: Fraction of round trips closed at a profit.
        total_return: Sum of round-trip fractional returns.
        avg_return: Mean round-trip return.
        return_variance: Population variance of round-trip returns.
        max_drawdown: Largest peak-to-trough fall of the cumulative return curve.
        sharpe_ratio: Mean return over its standard deviation.
        avg_hold_seconds: Mean holding time of round trips.
        timing_ratio: Median exit/entry price ratio across round trips.
        distinct_assets: Number of distinct assets traded.
        trades_24h: Trades in the 24 hours before the evaluation time.
        recent_win_rate: Win rate of round trips closed in the last 24 hours,
            or the overall win rate when none closed.
        volume_7d: USD volume traded over the last 7 days.
        avg_profit_usd: Mean USD profit per round trip.
    """

    trade_count: int
    round_trip_count: int
    win_rate: float
    total_return: float
    avg_return: float
    return_variance: float
    max_drawdown: float
    sharpe_ratio: float
    avg_hold_seconds: float
    timing_ratio: float | None
    distinct_assets: int
    trades_24h: int
    recent_win_rate: float
    volume_7d: Decimal
    avg_profit_usd: Decimal

    @property
    def is_insider_like(self) -> bool:
        """Suspiciously consistent or outsized wins."""
        if self.win_rate > INSIDER_MIN_WIN_RATE and self.trade_count >= INSIDER_MIN_TRADES:
            return True
        return self.avg_profit_usd > INSIDER_MIN_AVG_PROFIT_USD

    @property
    def is_whale(self) -> bool:
        return self.volume_7d > WHALE_MIN_VOLUME_7D_USD

    @property
    def is_overtrading(self) -> bool:
        """High recent activity paired with a falling win rate."""
        return (
            self.trades_24h > OVERTRADING_MIN_TRADES_24H
            and self.recent_win_rate < OVERTRADING_MAX_WIN_RATE
        )


@dataclass
class WalletRecord:
    """A tracked wallet: its trade history, metrics and skill score.

    Records are never deleted; they are marked inactive once their last
    trade falls outside the staleness window.
    """

    address: str
    trades: list[Trade] = field(default_factory=list)
    metrics: WalletMetrics | None = None
    score: float | None = None
    is_active: bool = True
    first_seen: datetime | None = None
    scored_at: datetime | None = None

    @property
    def last_trade_at(self) -> datetime | None:
        return self.trades[-1].timestamp if self.trades else None

    @property
    def last_trade_id(self) -> str | None:
        return self.trades[-1].trade_id if self.trades else None

    def add_trades(self, trades: list[Trade]) -> int:
        """Merge new trades into the history.

        Duplicates (by trade id) and trades belonging to other wallets are
        ignored; history stays ordered by timestamp.

        Returns:
            Number of trades actually added.
        """
        known = {t.trade_id for t in self.trades}
        fresh = [
            t
            for t in trades
            if t.trade_id not in known and t.wallet_address == self.address
        ]
        if not fresh:
            return 0

        # Drop duplicates within the batch itself
        unique: dict[str, Trade] = {}
        for trade in fresh:
            unique.setdefault(trade.trade_id, trade)

        self.trades.extend(unique.values())
        self.trades.sort(key=lambda t: (t.timestamp, t.trade_id))
        if self.first_seen is None:
            self.first_seen = self.trades[0].timestamp
        self.is_active = True
        return len(unique)
