"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum


class SignalKind(str, Enum):
    """Source of a candidate trade opportunity."""

    WALLET_CONVERGENCE = "wallet_convergence"
    HOT_WALLET_ACTIVITY = "hot_wallet_activity"
    CHART_PATTERN = "chart_pattern"


class Direction(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


class ChartAction(str, Enum):
    """Recommended action from price-action classification."""

    STRONG_BUY = "strong_buy"
    BUY = "buy"
    HOLD = "hold"
    SELL = "sell"
    STRONG_SELL = "strong_sell"

    @property
    def direction(self) -> Direction | None:
        if self in (ChartAction.STRONG_BUY, ChartAction.BUY):
            return Direction.ENTER
        if self in (ChartAction.SELL, ChartAction.STRONG_SELL):
            return Direction.EXIT
        return None


class ChartPattern(str, Enum):
    """Named price-action patterns recognised by the chart classifier."""

    MULTI_HORIZON_UPTREND = "multi_horizon_uptrend"
    PULLBACK_IN_UPTREND = "pullback_in_uptrend"
    CONSOLIDATION_BREAKOUT = "consolidation_breakout"
    EARLY_PUMP = "early_pump"
    OVERBOUGHT_SURGE = "overbought_surge"
    COORDINATED_DECLINE = "coordinated_decline"
    VOLUME_SPIKE = "volume_spike"
    NO_PATTERN = "no_pattern"


@dataclass(frozen=True)
class ChartClassification:
    """Result of classifying an asset's recent price action.

    Attributes:
        asset_id: Classified asset.
        action: Recommended action.
        pattern: The rule that matched.
        confidence: Rule confidence (0.0 to 1.0).
        target_multiple: Suggested exit as a multiple of entry price, for
            entry patterns only.
        reason: Human-readable explanation.
    """

    asset_id: str
    action: ChartAction
    pattern: ChartPattern
    confidence: float
    target_multiple: Decimal | None = None
    reason: str = ""


@dataclass(frozen=True)
class Signal:
    """A candidate trade opportunity.

    Immutable once created. The contributing wallet set is non-empty and,
    being a frozenset, unique by construction.

    Attributes:
        asset_id: Asset the signal refers to.
        direction: Enter or exit.
        wallets: Wallets whose activity contributed to the signal.
        kind: Detection strategy that produced the signal.
        strength: Raw strength estimate (0.0 to 1.0).
        detected_at: When the signal was detected.
        chart: Chart classification backing a ChartPattern signal.
        factors: Individual factor values behind the strength.
    """

    asset_id: str
    direction: Direction
    wallets: frozenset[str]
    kind: SignalKind
    strength: float
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    chart: ChartClassification | None = None
    factors: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.wallets:
            raise ValueError("Signal requires at least one contributing wallet")
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"Signal strength must be in [0, 1], got {self.strength}")
        if self.kind == SignalKind.CHART_PATTERN and self.chart is None:
            raise ValueError("ChartPattern signals require a chart classification")

    @property
    def wallet_count(self) -> int:
        return len(self.wallets)

    @property
    def is_entry(self) -> bool:
        return self.direction == Direction.ENTER

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for persistence and notifications."""
        return {
            "asset_id": self.asset_id,
            "direction": self.direction.value,
            "wallets": sorted(self.wallets),
            "kind": self.kind.value,
            "strength": self.strength,
            "detected_at": self.detected_at.isoformat(),
            "chart_action": self.chart.action.value if self.chart else None,
            "chart_pattern": self.chart.pattern.value if self.chart else None,
            "factors": self.factors,
        }
