"""Confidence aggregation for candidate signals.

This module provides the ConfidenceAggregator class that fuses wallet
quality, asset security, market timing, historical outcomes and liquidity
into a single bounded confidence value.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from smart_money_copytrader.detector.models import Direction, Signal, SignalKind
from smart_money_copytrader.ingestor.models import AssetSecurityInfo, RiskTier
from smart_money_copytrader.profiler.models import WalletMetrics

if TYPE_CHECKING:
    from smart_money_copytrader.portfolio.models import OutcomeSample

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_LIQUIDITY = Decimal("10000")
DEFAULT_MIN_HISTORY = 5

# Component calibration
TIER_SECURITY_SCORES = {
    RiskTier.SAFE: 1.0,
    RiskTier.LOW: 0.8,
    RiskTier.MEDIUM: 0.5,
    RiskTier.HIGH: 0.25,
    RiskTier.CRITICAL: 0.0,
}
HOLDER_CONCENTRATION_START_PCT = 50.0
MARKET_TREND_SPAN_PCT = 40.0

# Multiplicative adjustments
TIER_PENALTIES = {
    RiskTier.CRITICAL: 0.1,
    RiskTier.HIGH: 0.5,
    RiskTier.MEDIUM: 0.8,
}
OVERTRADING_PENALTY = 0.7
INSIDER_BONUS = 1.2


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class ConfidenceWeights:
    """Named component weights; must be non-negative and sum to 1.0."""

    wallet_quality: float = 0.40
    asset_security: float = 0.25
    market_timing: float = 0.15
    historical: float = 0.10
    liquidity: float = 0.10

    def __post_init__(self) -> None:
        values = self.as_dict().values()
        if any(v < 0 for v in values):
            raise ValueError("Confidence weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError("Confidence weights must sum to 1.0")

    def as_dict(self) -> dict[str, float]:
        return {
            "wallet_quality": self.wallet_quality,
            "asset_security": self.asset_security,
            "market_timing": self.market_timing,
            "historical": self.historical,
            "liquidity": self.liquidity,
        }


@dataclass(frozen=True)
class ConfidenceAssessment:
    """Aggregated confidence with the inputs that produced it.

    Attributes:
        asset_id: Asset being assessed.
        confidence: Final confidence (0.0 to 1.0).
        base_score: Weighted component score before adjustments.
        components: Component values; None marks an unavailable component.
        adjustments: Multipliers applied after weighting, by name.
        vetoed: True when a scam classification forced confidence to 0.
        direction: Direction of the primary signal.
        signal_kind: Kind of the primary signal.
    """

    asset_id: str
    confidence: float
    base_score: float
    components: dict[str, float | None]
    adjustments: dict[str, float] = field(default_factory=dict)
    vetoed: bool = False
    direction: Direction = Direction.ENTER
    signal_kind: SignalKind = SignalKind.WALLET_CONVERGENCE

    def to_dict(self) -> dict[str, object]:
        return {
            "asset_id": self.asset_id,
            "confidence": self.confidence,
            "base_score": self.base_score,
            "components": self.components,
            "adjustments": self.adjustments,
            "vetoed": self.vetoed,
            "direction": self.direction.value,
            "signal_kind": self.signal_kind.value,
        }


class ConfidenceAggregator:
    """Fuses the available evidence for an asset into one confidence value.

    Scoring Formula:
        base = sum(component * weight) / sum(weight of available components)

        confidence = base
            * tier penalty (Critical 0.1, High 0.5, Medium 0.8)
            * 0.7 if a contributing wallet is over-trading
            * 1.2 if a contributing wallet looks like an insider (entries only)

        confidence = min(confidence, 1.0)

    A scam classification short-circuits everything and returns exactly 0.

    Example:
        ```python
        aggregator = ConfidenceAggregator()
        confidence = aggregator.aggregate(
            convergence_signal,
            chart_signal,
            security_info,
            market_trend=3.5,
        )
        ```
    """

    def __init__(
        self,
        *,
        weights: ConfidenceWeights | None = None,
        min_liquidity: Decimal = DEFAULT_MIN_LIQUIDITY,
        min_history: int = DEFAULT_MIN_HISTORY,
    ) -> None:
        """Initialize the aggregator.

        Args:
            weights: Component weights. Defaults to ConfidenceWeights().
            min_liquidity: Liquidity that earns a full liquidity component.
            min_history: Closed outcomes of the same kind needed before the
                historical component is used.
        """
        self._weights = weights or ConfidenceWeights()
        self._min_liquidity = min_liquidity
        self._min_history = min_history

    @property
    def weights(self) -> ConfidenceWeights:
        return self._weights

    def assess(
        self,
        wallet_signal: Signal | None,
        chart_signal: Signal | None,
        security_info: AssetSecurityInfo,
        market_trend: float | None = None,
        *,
        history: Sequence[OutcomeSample] = (),
        wallet_metrics: Sequence[WalletMetrics] = (),
    ) -> ConfidenceAssessment:
        """Assess the combined evidence for one asset.

        Args:
            wallet_signal: Convergence or hot-wallet signal, if any.
            chart_signal: Chart-pattern signal, if any.
            security_info: Security snapshot of the asset.
            market_trend: Broad-market 24h change in percent, if known.
            history: Closed outcomes used for the historical component.
            wallet_metrics: Metrics of the contributing wallets.

        Returns:
            ConfidenceAssessment with final confidence in [0, 1].

        Raises:
            ValueError: If no signal is given, or the signals disagree on asset.
        """
        primary = wallet_signal or chart_signal
        if primary is None:
            raise ValueError("At least one signal is required")
        if chart_signal is not None and chart_signal.asset_id != primary.asset_id:
            raise ValueError("Wallet and chart signals refer to different assets")

        if security_info.is_scam:
            logger.info("Scam veto for asset %s", primary.asset_id)
            return ConfidenceAssessment(
                asset_id=primary.asset_id,
                confidence=0.0,
                base_score=0.0,
                components={},
                vetoed=True,
                direction=primary.direction,
                signal_kind=primary.kind,
            )

        components: dict[str, float | None] = {
            "wallet_quality": _clamp(wallet_signal.strength) if wallet_signal else None,
            "asset_security": self._security_component(security_info),
            "market_timing": self._timing_component(chart_signal, market_trend),
            "historical": self._historical_component(primary.kind, history),
            "liquidity": self._liquidity_component(security_info),
        }
        base = self.weighted_score(components)

        adjustments: dict[str, float] = {}
        tier = security_info.effective_risk_tier
        if tier in TIER_PENALTIES:
            adjustments[f"tier_{tier.value}"] = TIER_PENALTIES[tier]
        if any(m.is_overtrading for m in wallet_metrics):
            adjustments["overtrading"] = OVERTRADING_PENALTY
        if primary.direction == Direction.ENTER and any(m.is_insider_like for m in wallet_metrics):
            adjustments["insider_activity"] = INSIDER_BONUS

        confidence = base
        for multiplier in adjustments.values():
            confidence *= multiplier
        confidence = _clamp(confidence)

        logger.debug(
            "Confidence for %s: base=%.3f final=%.3f adjustments=%s",
            primary.asset_id,
            base,
            confidence,
            adjustments,
        )
        return ConfidenceAssessment(
            asset_id=primary.asset_id,
            confidence=confidence,
            base_score=base,
            components=components,
            adjustments=adjustments,
            direction=primary.direction,
            signal_kind=primary.kind,
        )

    def aggregate(
        self,
        wallet_signal: Signal | None,
        chart_signal: Signal | None,
        security_info: AssetSecurityInfo,
        market_trend: float | None = None,
        *,
        history: Sequence[OutcomeSample] = (),
        wallet_metrics: Sequence[WalletMetrics] = (),
    ) -> float:
        """Return only the final confidence; see assess()."""
        return self.assess(
            wallet_signal,
            chart_signal,
            security_info,
            market_trend,
            history=history,
            wallet_metrics=wallet_metrics,
        ).confidence

    def weighted_score(self, components: dict[str, float | None]) -> float:
        """Weighted mean over available components, renormalizing weights."""
        weights = self._weights.as_dict()
        total_weight = 0.0
        total = 0.0
        for name, value in components.items():
            if value is None:
                continue
            total += _clamp(value) * weights[name]
            total_weight += weights[name]
        if total_weight <= 0:
            return 0.0
        return _clamp(total / total_weight)

    def _security_component(self, info: AssetSecurityInfo) -> float:
        score = TIER_SECURITY_SCORES[info.effective_risk_tier]
        excess = info.top_holders_percentage - HOLDER_CONCENTRATION_START_PCT
        if excess > 0:
            score *= 1.0 - excess / (100.0 - HOLDER_CONCENTRATION_START_PCT)
        return _clamp(score)

    def _timing_component(self, chart_signal: Signal | None, market_trend: float | None) -> float | None:
        parts: list[float] = []
        if chart_signal is not None:
            strength = _clamp(chart_signal.strength)
            parts.append(strength if chart_signal.direction == Direction.ENTER else 1.0 - strength)
        if market_trend is not None:
            parts.append(_clamp(0.5 + market_trend / MARKET_TREND_SPAN_PCT))
        if not parts:
            return None
        return sum(parts) / len(parts)

    def _historical_component(
        self,
        kind: SignalKind,
        history: Sequence[OutcomeSample],
    ) -> float | None:
        relevant = [s for s in history if s.signal_kind == kind]
        if len(relevant) < self._min_history:
            return None
        return sum(1 for s in relevant if s.is_win) / len(relevant)

    def _liquidity_component(self, info: AssetSecurityInfo) -> float:
        if self._min_liquidity <= 0:
            return 1.0
        return _clamp(float(info.liquidity / self._min_liquidity))
