"""Circuit breaker guarding new position creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=1)


class TripReason(str, Enum):
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    EXTERNAL_EMERGENCY = "external_emergency"
    MANUAL_STOP = "manual_stop"
    INVARIANT_VIOLATION = "invariant_violation"


@dataclass(frozen=True, slots=True)
class Armed:
    """Breaker is armed; new positions may be opened."""


@dataclass(frozen=True, slots=True)
class Tripped:
    """Breaker is tripped; no new positions until cooldown or rearm.

    ``manual`` trips ignore the cooldown and hold until ``rearm()``.
    """

    reason: TripReason
    trip_time: datetime
    manual: bool = False
    detail: str = ""


BreakerState = Armed | Tripped


class CircuitBreakerTrippedError(Exception):
    """Raised when new trading is attempted while the breaker is tripped."""

    def __init__(self, state: Tripped) -> None:
        super().__init__(f"Circuit breaker tripped: {state.reason.value} at {state.trip_time.isoformat()}")
        self.state = state


class CircuitBreaker:
    """Global kill-switch for new position creation.

    Automatic trips (loss limit, external emergency) reset themselves once
    the cooldown has elapsed. Manual emergency stops, and trips caused by
    invariant violations, hold until ``rearm()`` is called.

    Not thread-safe on its own; the ledger serializes access.
    """

    def __init__(self, *, cooldown: timedelta = DEFAULT_COOLDOWN) -> None:
        self._cooldown = cooldown
        self._state: BreakerState = Armed()

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def state(self, now: datetime) -> BreakerState:
        """Current state, applying any due auto-reset."""
        current = self._state
        if isinstance(current, Tripped) and not current.manual:
            if now - current.trip_time >= self._cooldown:
                logger.warning(
                    "Circuit breaker auto-reset after cooldown (tripped for %s at %s)",
                    current.reason.value,
                    current.trip_time.isoformat(),
                )
                self._state = Armed()
        return self._state

    def is_tripped(self, now: datetime) -> bool:
        return isinstance(self.state(now), Tripped)

    def trip(self, reason: TripReason, now: datetime, *, detail: str = "") -> Tripped:
        """Trip the breaker automatically (subject to cooldown)."""
        current = self._state
        if isinstance(current, Tripped) and current.manual:
            # A manual stop is never downgraded to an auto-resetting trip
            return current
        self._state = Tripped(reason=reason, trip_time=now, manual=False, detail=detail)
        logger.critical("CIRCUIT BREAKER TRIPPED: %s %s", reason.value, detail)
        return self._state

    def emergency_stop(
        self,
        now: datetime,
        *,
        reason: TripReason = TripReason.MANUAL_STOP,
        detail: str = "",
    ) -> Tripped:
        """Trip the breaker until explicitly rearmed."""
        self._state = Tripped(reason=reason, trip_time=now, manual=True, detail=detail)
        logger.critical("EMERGENCY STOP: %s %s", reason.value, detail)
        return self._state

    def rearm(self) -> None:
        """Clear any trip, including a manual emergency stop."""
        if isinstance(self._state, Tripped):
            logger.warning("Circuit breaker rearmed (was %s)", self._state.reason.value)
        self._state = Armed()
