"""Wallet convergence detection.

This module provides the ConvergenceDetector class that identifies assets
bought by several skilled wallets inside a short window.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from smart_money_copytrader.detector.models import Direction, Signal, SignalKind
from smart_money_copytrader.ingestor.models import Trade

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_WINDOW = timedelta(minutes=60)
DEFAULT_MIN_WALLET_SCORE = 0.8
DEFAULT_CONVERGENCE_THRESHOLD = 3

# Strength curve
BASE_STRENGTH = 0.80
STRENGTH_PER_EXTRA_WALLET = 0.05
MAX_STRENGTH = 0.95


def convergence_strength(
    wallet_count: int,
    *,
    threshold: int = DEFAULT_CONVERGENCE_THRESHOLD,
) -> float:
    """Raw strength for a convergence of ``wallet_count`` wallets.

    0.80 at the threshold, +0.05 per additional wallet, capped at 0.95.
    """
    extra = max(0, wallet_count - threshold)
    return min(MAX_STRENGTH, BASE_STRENGTH + STRENGTH_PER_EXTRA_WALLET * extra)


class ConvergenceDetector:
    """Detector for multiple skilled wallets buying the same asset.

    Within a sliding window ending at the evaluation time, buy-side trades
    are grouped by asset and the distinct wallets whose skill score exceeds
    the floor are counted. Reaching the threshold emits a WalletConvergence
    signal.

    Example:
        ```python
        detector = ConvergenceDetector()
        signals = detector.detect(trades, registry.eligible_scores(), now=now)
        ```
    """

    def __init__(
        self,
        *,
        window: timedelta = DEFAULT_WINDOW,
        min_wallet_score: float = DEFAULT_MIN_WALLET_SCORE,
        threshold: int = DEFAULT_CONVERGENCE_THRESHOLD,
    ) -> None:
        """Initialize the convergence detector.

        Args:
            window: Sliding window length (default 60 minutes).
            min_wallet_score: Skill score a wallet must exceed to count (default 0.8).
            threshold: Distinct wallets required to emit a signal (default 3).
        """
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._window = window
        self._min_wallet_score = min_wallet_score
        self._threshold = threshold

    @property
    def window(self) -> timedelta:
        return self._window

    def detect(
        self,
        trades: Sequence[Trade],
        wallet_scores: Mapping[str, float],
        *,
        now: datetime,
    ) -> list[Signal]:
        """Find convergence events in the window ending at ``now``.

        Args:
            trades: Candidate trades; sells and out-of-window trades are ignored.
            wallet_scores: Current skill score per wallet. Unscored wallets
                never count.
            now: End of the sliding window.

        Returns:
            One signal per converging asset, ordered by asset id.
        """
        cutoff = now - self._window
        wallets_by_asset: dict[str, set[str]] = defaultdict(set)

        for trade in trades:
            if not trade.is_buy or not cutoff < trade.timestamp <= now:
                continue
            score = wallet_scores.get(trade.wallet_address)
            if score is None or score <= self._min_wallet_score:
                continue
            wallets_by_asset[trade.asset_id].add(trade.wallet_address)

        signals: list[Signal] = []
        for asset_id in sorted(wallets_by_asset):
            wallets = wallets_by_asset[asset_id]
            if len(wallets) < self._threshold:
                continue

            strength = convergence_strength(len(wallets), threshold=self._threshold)
            avg_score = sum(wallet_scores[w] for w in wallets) / len(wallets)
            logger.info(
                "Convergence signal: asset=%s, wallets=%d, strength=%.2f",
                asset_id[:10] + "...",
                len(wallets),
                strength,
            )
            signals.append(
                Signal(
                    asset_id=asset_id,
                    direction=Direction.ENTER,
                    wallets=frozenset(wallets),
                    kind=SignalKind.WALLET_CONVERGENCE,
                    strength=strength,
                    detected_at=now,
                    factors={
                        "wallet_count": float(len(wallets)),
                        "avg_wallet_score": avg_score,
                    },
                )
            )
        return signals
