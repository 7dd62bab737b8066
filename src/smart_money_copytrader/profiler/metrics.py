"""Performance metrics derived from a wallet's trade history."""

from __future__ import annotations

import statistics
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from smart_money_copytrader.ingestor.models import Trade
from smart_money_copytrader.profiler.models import RoundTrip, WalletMetrics

RECENT_WINDOW = timedelta(hours=24)
VOLUME_WINDOW = timedelta(days=7)


def build_round_trips(trades: Sequence[Trade]) -> list[RoundTrip]:
    """Pair sells with the most recent unmatched buy of the same asset.

    Sells with no open buy (positions opened before tracking started) are
    ignored, as are buys never sold.
    """
    open_buys: dict[str, list[Trade]] = defaultdict(list)
    trips: list[RoundTrip] = []

    for trade in sorted(trades, key=lambda t: (t.timestamp, t.trade_id)):
        if trade.is_buy:
            open_buys[trade.asset_id].append(trade)
            continue
        stack = open_buys.get(trade.asset_id)
        if not stack:
            continue
        buy = stack.pop()
        trips.append(
            RoundTrip(
                asset_id=trade.asset_id,
                entry_price=buy.price,
                exit_price=trade.price,
                amount=buy.amount,
                opened_at=buy.timestamp,
                closed_at=trade.timestamp,
            )
        )
    return trips


def max_drawdown(returns: Sequence[float]) -> float:
    """Largest peak-to-trough fall of the cumulative return curve."""
    cumulative = 0.0
    peak = 0.0
    worst = 0.0
    for r in returns:
        cumulative += r
        peak = max(peak, cumulative)
        worst = max(worst, peak - cumulative)
    return worst


def compute_metrics(trades: Sequence[Trade], *, now: datetime) -> WalletMetrics:
    """Compute the full metric set for a trade history as of ``now``."""
    trips = build_round_trips(trades)
    returns = [rt.return_pct for rt in trips]
    wins = sum(1 for rt in trips if rt.is_win)

    win_rate = wins / len(trips) if trips else 0.0
    avg_return = statistics.fmean(returns) if returns else 0.0
    variance = statistics.pvariance(returns) if returns else 0.0

    sharpe = 0.0
    if len(returns) >= 2:
        std = statistics.pstdev(returns)
        if std > 0:
            sharpe = avg_return / std

    recent_cutoff = now - RECENT_WINDOW
    recent_trips = [rt for rt in trips if rt.closed_at > recent_cutoff]
    if recent_trips:
        recent_win_rate = sum(1 for rt in recent_trips if rt.is_win) / len(recent_trips)
    else:
        recent_win_rate = win_rate

    volume_cutoff = now - VOLUME_WINDOW
    volume_7d = sum(
        (t.amount for t in trades if volume_cutoff < t.timestamp <= now),
        Decimal(0),
    )

    avg_profit = Decimal(0)
    if trips:
        avg_profit = sum((rt.profit_usd for rt in trips), Decimal(0)) / len(trips)

    return WalletMetrics(
        trade_count=len(trades),
        round_trip_count=len(trips),
        win_rate=win_rate,
        total_return=sum(returns),
        avg_return=avg_return,
        return_variance=variance,
        max_drawdown=max_drawdown(returns),
        sharpe_ratio=sharpe,
        avg_hold_seconds=statistics.fmean(rt.hold_seconds for rt in trips) if trips else 0.0,
        timing_ratio=(
            statistics.median(float(rt.exit_price / rt.entry_price) for rt in trips)
            if trips
            else None
        ),
        distinct_assets=len({t.asset_id for t in trades}),
        trades_24h=sum(1 for t in trades if recent_cutoff < t.timestamp <= now),
        recent_win_rate=recent_win_rate,
        volume_7d=volume_7d,
        avg_profit_usd=avg_profit,
    )
