"""Risk management layer - Circuit breaker, sizing and the risk gate."""

from smart_money_copytrader.risk.breaker import (
    Armed,
    BreakerState,
    CircuitBreaker,
    CircuitBreakerTrippedError,
    Tripped,
    TripReason,
)
from smart_money_copytrader.risk.gate import RiskGate
from smart_money_copytrader.risk.models import (
    Approved,
    Rejected,
    RejectReason,
    RiskDecision,
    SizingDecision,
    SizingMethod,
)
from smart_money_copytrader.risk.sizing import KellySizer, kelly_fraction
from smart_money_copytrader.risk.velocity import SignalVelocityTracker

__all__ = [
    "Approved",
    "Armed",
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerTrippedError",
    "KellySizer",
    "Rejected",
    "RejectReason",
    "RiskDecision",
    "RiskGate",
    "SignalVelocityTracker",
    "SizingDecision",
    "SizingMethod",
    "Tripped",
    "TripReason",
    "kelly_fraction",
]
