"""Risk gate: sequential hard checks plus bounded position sizing.

``evaluate`` is pure: it reads a portfolio snapshot and returns a decision.
``evaluate_and_reserve`` runs the same evaluation inside the ledger's lock
and reserves the approved size in the same critical section.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING

from smart_money_copytrader.detector.models import Signal
from smart_money_copytrader.risk.breaker import Tripped
from smart_money_copytrader.risk.models import (
    Approved,
    Rejected,
    RejectReason,
    RiskDecision,
    SizingMethod,
)
from smart_money_copytrader.risk.sizing import KellySizer
from smart_money_copytrader.risk.velocity import SignalVelocityTracker

if TYPE_CHECKING:
    from smart_money_copytrader.portfolio.ledger import PortfolioLedger
    from smart_money_copytrader.portfolio.models import OutcomeSample, PortfolioState

logger = logging.getLogger(__name__)

DEFAULT_CONCENTRATION_LIMIT = 0.30

_CENTS = Decimal("0.01")


class RiskGate:
    """Approves or rejects signals against portfolio-level limits.

    Gates run in a fixed order and the first failure rejects:

        1. circuit breaker armed
        2. daily realized loss within the limit
        3. asset exposure plus the new size within the concentration limit
        4. no contributing wallet over its signal velocity limit

    The proposed size is computed before the gates because gate 3 needs it.
    Rejections are expected outcomes, not errors, and are logged at INFO.
    """

    def __init__(
        self,
        *,
        sizer: KellySizer,
        velocity: SignalVelocityTracker,
        max_position_size: Decimal,
        max_daily_loss: Decimal,
        concentration_limit: float = DEFAULT_CONCENTRATION_LIMIT,
    ) -> None:
        if max_position_size <= 0:
            raise ValueError("max_position_size must be positive")
        if not 0 < concentration_limit <= 1:
            raise ValueError("concentration_limit must be in (0, 1]")
        self._sizer = sizer
        self._velocity = velocity
        self._max_position_size = max_position_size
        self._max_daily_loss = max_daily_loss
        self._concentration_limit = concentration_limit

    @property
    def velocity(self) -> SignalVelocityTracker:
        return self._velocity

    def evaluate(
        self,
        signal: Signal,
        confidence: float,
        state: PortfolioState,
        outcomes: Sequence[OutcomeSample],
        *,
        now: datetime,
    ) -> RiskDecision:
        """Decide whether a scored signal may open a position.

        Args:
            signal: Candidate signal.
            confidence: Aggregated confidence for the signal.
            state: Consistent portfolio snapshot.
            outcomes: Realized outcomes of previously executed signals.
            now: Evaluation time.

        Returns:
            Approved with the size to reserve, or Rejected with the first
            failing gate.
        """
        sizing = self._sizer.size(
            confidence,
            outcomes,
            capital=state.capital,
            max_position_size=self._max_position_size,
        )

        if isinstance(state.breaker, Tripped):
            return self._reject(
                signal,
                RejectReason.CIRCUIT_BREAKER_TRIPPED,
                f"{state.breaker.reason.value} since {state.breaker.trip_time.isoformat()}",
            )

        if state.daily_realized_pnl <= -self._max_daily_loss:
            return self._reject(
                signal,
                RejectReason.DAILY_LOSS_LIMIT,
                f"daily pnl {state.daily_realized_pnl} <= -{self._max_daily_loss}",
            )

        concentration_cap = state.capital * Decimal(str(self._concentration_limit))
        if state.has_pending(signal.asset_id):
            return self._reject(
                signal,
                RejectReason.CONCENTRATION_LIMIT,
                f"position already open or pending on {signal.asset_id}",
            )
        if state.exposure_for(signal.asset_id) + sizing.size > concentration_cap:
            return self._reject(
                signal,
                RejectReason.CONCENTRATION_LIMIT,
                f"exposure {sizing.size} > cap {concentration_cap}",
            )

        over_limit = self._velocity.exceeded_by(signal.wallets, now)
        if over_limit:
            return self._reject(
                signal,
                RejectReason.VELOCITY_LIMIT,
                f"sources over limit: {', '.join(over_limit)}",
            )

        size = min(sizing.size, max(state.available_capital, Decimal(0))).quantize(
            _CENTS, rounding=ROUND_DOWN
        )
        if size <= 0:
            if sizing.method == SizingMethod.KELLY and sizing.size <= 0:
                return self._reject(
                    signal,
                    RejectReason.NON_POSITIVE_EDGE,
                    f"kelly fraction {sizing.kelly_fraction} over {sizing.samples} samples",
                )
            return self._reject(
                signal,
                RejectReason.INSUFFICIENT_CAPITAL,
                f"available {state.available_capital}",
            )

        logger.info(
            "Signal approved: asset=%s kind=%s confidence=%.3f size=%s method=%s",
            signal.asset_id,
            signal.kind.value,
            confidence,
            size,
            sizing.method.value,
        )
        return Approved(size=size, confidence=confidence, sizing=sizing)

    async def evaluate_and_reserve(
        self,
        signal: Signal,
        confidence: float,
        ledger: PortfolioLedger,
        *,
        now: datetime | None = None,
    ) -> RiskDecision:
        """Evaluate against the live ledger and reserve in one atomic step."""
        now = now or datetime.now(UTC)

        def decide(state: PortfolioState, outcomes: Sequence[OutcomeSample]) -> RiskDecision:
            decision = self.evaluate(signal, confidence, state, outcomes, now=now)
            if isinstance(decision, Approved):
                self._velocity.record(signal.wallets, now)
            return decision

        return await ledger.atomic_reserve(signal.asset_id, decide, now=now)

    def _reject(self, signal: Signal, reason: RejectReason, detail: str) -> Rejected:
        logger.info(
            "Signal rejected: asset=%s kind=%s reason=%s (%s)",
            signal.asset_id,
            signal.kind.value,
            reason.value,
            detail,
        )
        return Rejected(reason=reason, detail=detail)
