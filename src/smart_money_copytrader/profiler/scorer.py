"""Wallet skill scoring.

This module provides the WalletScorer class that turns a wallet's trade
history into a bounded skill score in [0, 1].
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from smart_money_copytrader.ingestor.models import Trade
from smart_money_copytrader.profiler.metrics import compute_metrics
from smart_money_copytrader.profiler.models import WalletMetrics, WalletRecord

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_TRADES = 10
NEUTRAL_SCORE = 0.5

# Sub-score calibration
RISK_ADJUSTED_TARGET = 3.0  # return/drawdown ratio that earns a full sub-score
DRAWDOWN_FLOOR = 0.01
CONSISTENCY_SCALE = 10.0
FOCUS_SPECIALIST_ASSETS = 3

# Default weights for each sub-score
DEFAULT_WEIGHTS = {
    "win_rate": 0.30,
    "risk_adjusted": 0.25,
    "consistency": 0.15,
    "timing": 0.20,
    "focus": 0.10,
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class WalletScoreBreakdown:
    """Skill score together with the sub-scores that produced it."""

    score: float
    sub_scores: dict[str, float]
    metrics: WalletMetrics
    insufficient_data: bool = False


class WalletScorer:
    """Scores wallets by historical trading skill.

    The score is a weighted blend of five sub-scores, each clamped to
    [0, 1] before weighting:

    - win_rate: fraction of round trips closed at a profit
    - risk_adjusted: total return divided by max drawdown, scaled so a
      ratio of 3 earns a full sub-score
    - consistency: 1 / (1 + 10 * variance of round-trip returns)
    - timing: median exit/entry price ratio minus 0.5 (breakeven scores 0.5)
    - focus: min(1, 3 / distinct assets traded)

    Wallets with fewer than ``min_trades`` trades, or with no completed
    round trip yet, score a neutral 0.5. Wallets with no trades at all have
    no score and are excluded from signal generation.

    Example:
        ```python
        scorer = WalletScorer(min_trades=10)
        skill = scorer.score(trades)
        if skill is not None and skill > 0.8:
            ...
        ```
    """

    def __init__(
        self,
        *,
        weights: dict[str, float] | None = None,
        min_trades: int = DEFAULT_MIN_TRADES,
    ) -> None:
        """Initialize the scorer.

        Args:
            weights: Custom sub-score weights. Defaults to DEFAULT_WEIGHTS.
            min_trades: Trade count below which the neutral score is returned.
        """
        self._weights = DEFAULT_WEIGHTS.copy()
        if weights is not None:
            self.set_weights(weights)
        self._min_trades = min_trades

    def get_weights(self) -> dict[str, float]:
        """Get the current sub-score weights."""
        return self._weights.copy()

    def set_weights(self, weights: dict[str, float]) -> None:
        """Replace the sub-score weights.

        Raises:
            ValueError: If keys differ from DEFAULT_WEIGHTS, a weight is
                negative, or the weights do not sum to 1.0.
        """
        if set(weights) != set(DEFAULT_WEIGHTS):
            raise ValueError(f"Weights must define exactly {sorted(DEFAULT_WEIGHTS)}")
        if any(w < 0 for w in weights.values()):
            raise ValueError("Weights must be non-negative")
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ValueError("Weights must sum to 1.0")
        self._weights = dict(weights)

    def sub_scores(self, metrics: WalletMetrics) -> dict[str, float]:
        """Compute the clamped sub-scores for a metric set."""
        risk_adjusted = 0.0
        if metrics.total_return > 0:
            ratio = metrics.total_return / max(metrics.max_drawdown, DRAWDOWN_FLOOR)
            risk_adjusted = ratio / RISK_ADJUSTED_TARGET

        timing = NEUTRAL_SCORE
        if metrics.timing_ratio is not None:
            timing = metrics.timing_ratio - 0.5

        focus = 0.0
        if metrics.distinct_assets > 0:
            focus = FOCUS_SPECIALIST_ASSETS / metrics.distinct_assets

        return {
            "win_rate": _clamp(metrics.win_rate),
            "risk_adjusted": _clamp(risk_adjusted),
            "consistency": _clamp(1.0 / (1.0 + CONSISTENCY_SCALE * metrics.return_variance)),
            "timing": _clamp(timing),
            "focus": _clamp(focus),
        }

    def breakdown(
        self,
        trades: Sequence[Trade],
        *,
        now: datetime | None = None,
    ) -> WalletScoreBreakdown | None:
        """Score a trade history and return the full breakdown.

        Args:
            trades: The wallet's trade history.
            now: Evaluation time for windowed metrics. Defaults to the
                timestamp of the latest trade.

        Returns:
            The breakdown, or None when the history is empty.
        """
        if not trades:
            return None

        as_of = now or max(t.timestamp for t in trades)
        metrics = compute_metrics(trades, now=as_of)

        if metrics.trade_count < self._min_trades or metrics.round_trip_count == 0:
            return WalletScoreBreakdown(
                score=NEUTRAL_SCORE,
                sub_scores={},
                metrics=metrics,
                insufficient_data=True,
            )

        subs = self.sub_scores(metrics)
        weighted = sum(subs[name] * self._weights[name] for name in subs)
        return WalletScoreBreakdown(score=_clamp(weighted), sub_scores=subs, metrics=metrics)

    def score(self, trades: Sequence[Trade], *, now: datetime | None = None) -> float | None:
        """Return the skill score in [0, 1], or None for an empty history."""
        result = self.breakdown(trades, now=now)
        return result.score if result is not None else None

    def score_record(self, record: WalletRecord, *, now: datetime | None = None) -> float | None:
        """Rescore a wallet record in place and return its new score."""
        result = self.breakdown(record.trades, now=now)
        if result is None:
            record.metrics = None
            record.score = None
            return None

        record.metrics = result.metrics
        record.score = result.score
        record.scored_at = now or record.last_trade_at
        logger.debug(
            "Scored wallet %s: score=%.3f trades=%d trips=%d",
            record.address[:10] + "...",
            result.score,
            result.metrics.trade_count,
            result.metrics.round_trip_count,
        )
        return result.score
