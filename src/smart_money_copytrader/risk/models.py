"""Data models for risk gating and position sizing."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class RejectReason(str, Enum):
    """Why the risk gate refused a signal, in gate order."""

    CIRCUIT_BREAKER_TRIPPED = "circuit_breaker_tripped"
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    CONCENTRATION_LIMIT = "concentration_limit"
    VELOCITY_LIMIT = "velocity_limit"
    INSUFFICIENT_CAPITAL = "insufficient_capital"
    NON_POSITIVE_EDGE = "non_positive_edge"


class SizingMethod(str, Enum):
    KELLY = "kelly"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class SizingDecision:
    """Result of position sizing.

    Attributes:
        size: USD size, already capped at the max position size.
        method: Kelly or the conservative fallback.
        fraction: Fraction of capital before the absolute cap.
        samples: Outcomes inside the confidence band.
        win_probability: Empirical win probability (Kelly only).
        kelly_fraction: Raw Kelly fraction before safety factor (Kelly only).
    """

    size: Decimal
    method: SizingMethod
    fraction: float
    samples: int
    win_probability: float | None = None
    kelly_fraction: float | None = None


@dataclass(frozen=True, slots=True)
class Approved:
    """Signal approved with a reserved position size."""

    size: Decimal
    confidence: float
    sizing: SizingDecision
    reservation_id: str | None = None

    @property
    def approved(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Rejected:
    """Signal rejected by a risk gate."""

    reason: RejectReason
    detail: str = ""

    @property
    def approved(self) -> bool:
        return False


RiskDecision = Approved | Rejected
