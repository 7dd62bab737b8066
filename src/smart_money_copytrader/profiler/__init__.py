"""Wallet profiler - Trade history metrics and skill scoring."""

from smart_money_copytrader.profiler.metrics import build_round_trips, compute_metrics
from smart_money_copytrader.profiler.models import RoundTrip, WalletMetrics, WalletRecord
from smart_money_copytrader.profiler.registry import RefreshReport, WalletRegistry
from smart_money_copytrader.profiler.scorer import WalletScoreBreakdown, WalletScorer

__all__ = [
    "RefreshReport",
    "RoundTrip",
    "WalletMetrics",
    "WalletRecord",
    "WalletRegistry",
    "WalletScoreBreakdown",
    "WalletScorer",
    "build_round_trips",
    "compute_metrics",
]
