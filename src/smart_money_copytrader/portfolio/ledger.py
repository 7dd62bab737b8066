"""Portfolio ledger: the single consistency boundary for portfolio state.

Every read-modify-write of capital, open positions, reservations and the
circuit breaker happens inside one ``asyncio.Lock``. Callers never touch the
underlying collections; they get copies.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal

from smart_money_copytrader.portfolio.models import (
    DailyStats,
    ExitTrigger,
    OutcomeSample,
    PortfolioState,
    Position,
    PositionStatus,
    Reservation,
    realized_pnl,
)
from smart_money_copytrader.risk.breaker import (
    CircuitBreaker,
    CircuitBreakerTrippedError,
    Tripped,
    TripReason,
)
from smart_money_copytrader.risk.models import Approved, RiskDecision

logger = logging.getLogger(__name__)

ReserveDecider = Callable[[PortfolioState, Sequence[OutcomeSample]], RiskDecision]


class InvariantViolationError(Exception):
    """Raised when an operation would leave the ledger inconsistent.

    Unreachable under correct risk-gate sequencing; when it happens the
    ledger has already halted new trading.
    """


class PortfolioLedger:
    """Owns capital, open positions, reservations and realized outcomes.

    Invariants enforced on every mutation:
        - at most one open position per asset
        - every position size <= max_position_size
        - open exposure + reservations <= capital

    Example:
        ```python
        ledger = PortfolioLedger(
            Decimal("1000"),
            max_position_size=Decimal("100"),
            max_daily_loss=Decimal("50"),
        )
        decision = await ledger.atomic_reserve("So111...", decide)
        ```
    """

    def __init__(
        self,
        capital: Decimal,
        *,
        max_position_size: Decimal,
        max_daily_loss: Decimal,
        breaker: CircuitBreaker | None = None,
        now: datetime | None = None,
    ) -> None:
        if capital < 0:
            raise ValueError("capital must be non-negative")
        self._lock = asyncio.Lock()
        self._capital = capital
        self._max_position_size = max_position_size
        self._max_daily_loss = max_daily_loss
        self._breaker = breaker or CircuitBreaker()
        self._open: dict[str, Position] = {}
        self._reservations: dict[str, Reservation] = {}
        self._closed: list[Position] = []
        self._outcomes: list[OutcomeSample] = []
        self._daily = DailyStats(trading_day=(now or datetime.now(UTC)).date())

    @property
    def max_position_size(self) -> Decimal:
        return self._max_position_size

    @property
    def max_daily_loss(self) -> Decimal:
        return self._max_daily_loss

    def _roll_day(self, now: datetime) -> None:
        today = now.astimezone(UTC).date()
        if today != self._daily.trading_day:
            logger.info(
                "Trading day %s closed: trades=%d pnl=%s",
                self._daily.trading_day,
                self._daily.trades,
                self._daily.realized_pnl,
            )
            self._daily = DailyStats(trading_day=today)

    def _snapshot(self, now: datetime) -> PortfolioState:
        self._roll_day(now)
        return PortfolioState(
            capital=self._capital,
            open_positions={a: copy.copy(p) for a, p in self._open.items()},
            reservations=dict(self._reservations),
            daily_realized_pnl=self._daily.realized_pnl,
            trading_day=self._daily.trading_day,
            breaker=self._breaker.state(now),
            closed_count=len(self._closed),
        )

    def _exposure(self) -> Decimal:
        open_exposure = sum((p.size for p in self._open.values()), Decimal(0))
        reserved = sum((r.size for r in self._reservations.values()), Decimal(0))
        return open_exposure + reserved

    def _fail_closed(self, message: str, now: datetime) -> InvariantViolationError:
        self._breaker.emergency_stop(now, reason=TripReason.INVARIANT_VIOLATION, detail=message)
        logger.critical("Ledger invariant violation, trading halted: %s", message)
        return InvariantViolationError(message)

    def _find_open(self, position_id: str) -> Position | None:
        for position in self._open.values():
            if position.position_id == position_id:
                return position
        return None

    async def snapshot(self, now: datetime | None = None) -> PortfolioState:
        """Read-only copy of the current portfolio state."""
        async with self._lock:
            return self._snapshot(now or datetime.now(UTC))

    async def atomic_reserve(
        self,
        asset_id: str,
        decide: ReserveDecider,
        *,
        now: datetime | None = None,
    ) -> RiskDecision:
        """Evaluate and reserve capital as one atomic step.

        ``decide`` runs under the ledger lock against a consistent snapshot;
        if it approves, the approved size is reserved before the lock is
        released, so no concurrent evaluation can pass its checks against
        stale state.

        Raises:
            InvariantViolationError: If ``decide`` approves a size that
                breaks a ledger invariant.
        """
        now = now or datetime.now(UTC)
        async with self._lock:
            state = self._snapshot(now)
            decision = decide(state, tuple(self._outcomes))
            if not isinstance(decision, Approved):
                return decision

            if decision.size <= 0 or decision.size > self._max_position_size:
                raise self._fail_closed(
                    f"Approved size {decision.size} outside (0, {self._max_position_size}]", now
                )
            if state.has_pending(asset_id):
                raise self._fail_closed(f"Second concurrent position on {asset_id}", now)
            if self._exposure() + decision.size > self._capital:
                raise self._fail_closed(
                    f"Reservation of {decision.size} on {asset_id} exceeds capital", now
                )

            reservation = Reservation(
                reservation_id=uuid.uuid4().hex,
                asset_id=asset_id,
                size=decision.size,
                created_at=now,
            )
            self._reservations[reservation.reservation_id] = reservation
            logger.debug("Reserved %s for %s (%s)", decision.size, asset_id, reservation.reservation_id)
            return dataclasses.replace(decision, reservation_id=reservation.reservation_id)

    async def release(self, reservation_id: str) -> bool:
        """Roll back a reservation whose trade did not fill."""
        async with self._lock:
            reservation = self._reservations.pop(reservation_id, None)
        if reservation is None:
            return False
        logger.info("Released reservation %s for %s", reservation_id, reservation.asset_id)
        return True

    async def ensure_trading_allowed(self, now: datetime | None = None) -> None:
        """Checkpoint before opening a position.

        Raises:
            CircuitBreakerTrippedError: If the breaker is tripped.
        """
        async with self._lock:
            state = self._breaker.state(now or datetime.now(UTC))
        if isinstance(state, Tripped):
            raise CircuitBreakerTrippedError(state)

    async def open_position(self, reservation_id: str, position: Position) -> Position:
        """Turn a reservation into an open position.

        Raises:
            InvariantViolationError: If the reservation is unknown or the
                position would break a ledger invariant.
        """
        now = position.entry_time
        async with self._lock:
            reservation = self._reservations.pop(reservation_id, None)
            if reservation is None:
                raise self._fail_closed(f"Unknown reservation {reservation_id}", now)
            if reservation.asset_id != position.asset_id:
                raise self._fail_closed(
                    f"Reservation for {reservation.asset_id} used for {position.asset_id}", now
                )
            if position.asset_id in self._open:
                raise self._fail_closed(f"Second concurrent position on {position.asset_id}", now)
            if position.size > reservation.size or position.size > self._max_position_size:
                raise self._fail_closed(
                    f"Position size {position.size} exceeds reservation {reservation.size}", now
                )
            if self._exposure() + position.size > self._capital:
                raise self._fail_closed("Open exposure would exceed capital", now)

            self._open[position.asset_id] = position
            logger.info(
                "Opened position %s: asset=%s size=%s entry=%s",
                position.position_id,
                position.asset_id,
                position.size,
                position.entry_price,
            )
            return copy.copy(position)

    async def mark_price(self, position_id: str, price: Decimal) -> Position | None:
        """Refresh an open position's price, peak and unrealized PnL.

        Returns:
            A copy of the updated position, or None if it is not open.
        """
        async with self._lock:
            position = self._find_open(position_id)
            if position is None:
                return None
            position.mark(price)
            return copy.copy(position)

    async def close_position(
        self,
        position_id: str,
        *,
        exit_price: Decimal,
        trigger: ExitTrigger,
        now: datetime | None = None,
    ) -> Position | None:
        """Close an open position (compare-and-set Open -> Closed).

        Closing an already closed position is a no-op and returns None, so
        concurrent evaluations that both decide to exit cannot book PnL
        twice.
        """
        now = now or datetime.now(UTC)
        async with self._lock:
            position = self._find_open(position_id)
            if position is None:
                return None

            pnl = realized_pnl(position.entry_price, exit_price, position.size)
            position.mark(exit_price)
            position.status = PositionStatus.CLOSED
            position.exit_price = exit_price
            position.exit_time = now
            position.exit_trigger = trigger
            position.realized_pnl = pnl
            position.unrealized_pnl = Decimal(0)

            del self._open[position.asset_id]
            self._closed.append(position)
            self._outcomes.append(OutcomeSample.from_position(position))
            self._capital += pnl

            self._roll_day(now)
            self._daily.record(pnl)

            logger.info(
                "Closed position %s: asset=%s trigger=%s pnl=%s capital=%s",
                position.position_id,
                position.asset_id,
                trigger.value,
                pnl,
                self._capital,
            )

            if self._daily.realized_pnl <= -self._max_daily_loss and not self._breaker.is_tripped(now):
                self._breaker.trip(
                    TripReason.DAILY_LOSS_LIMIT,
                    now,
                    detail=f"daily pnl {self._daily.realized_pnl} <= -{self._max_daily_loss}",
                )
            return copy.copy(position)

    async def trip(self, reason: TripReason, *, now: datetime | None = None, detail: str = "") -> None:
        """Trip the breaker for an externally signalled emergency."""
        async with self._lock:
            self._breaker.trip(reason, now or datetime.now(UTC), detail=detail)

    async def emergency_stop(self, *, now: datetime | None = None, detail: str = "") -> None:
        """Halt new trading until rearm()."""
        async with self._lock:
            self._breaker.emergency_stop(now or datetime.now(UTC), detail=detail)

    async def rearm(self) -> None:
        async with self._lock:
            self._breaker.rearm()

    async def open_positions(self) -> list[Position]:
        async with self._lock:
            return [copy.copy(p) for p in self._open.values()]

    async def closed_positions(self) -> list[Position]:
        async with self._lock:
            return [copy.copy(p) for p in self._closed]

    async def outcomes(self) -> list[OutcomeSample]:
        async with self._lock:
            return list(self._outcomes)

    async def daily_stats(self, now: datetime | None = None) -> DailyStats:
        async with self._lock:
            self._roll_day(now or datetime.now(UTC))
            return copy.copy(self._daily)

    def restore_outcomes(self, samples: Iterable[OutcomeSample]) -> int:
        """Seed realized outcomes at startup, before any task runs."""
        restored = list(samples)
        self._outcomes.extend(restored)
        return len(restored)

    def restore_realized_pnl(self, total: Decimal) -> Decimal:
        """Credit PnL realized before a restart to capital.

        Returns:
            Capital after the adjustment.
        """
        self._capital += total
        logger.info("Restored realized pnl %s (capital=%s)", total, self._capital)
        return self._capital

    def restore_open(self, positions: Iterable[Position], now: datetime | None = None) -> int:
        """Re-adopt positions that were still open when the engine stopped.

        Call after ``restore_realized_pnl`` so capital is already rebuilt.

        Raises:
            InvariantViolationError: If the stored positions break a ledger
                invariant; trading is halted but positions already adopted
                stay managed.
        """
        now = now or datetime.now(UTC)
        restored = 0
        for position in positions:
            if not position.is_open:
                continue
            if position.asset_id in self._open:
                raise self._fail_closed(f"Second stored open position on {position.asset_id}", now)
            self._open[position.asset_id] = position
            restored += 1
            if self._exposure() > self._capital:
                raise self._fail_closed("Stored open exposure exceeds capital", now)
        if restored:
            logger.info("Restored %d open positions (exposure=%s)", restored, self._exposure())
        return restored

    def restore_daily(self, stats: DailyStats, now: datetime | None = None) -> bool:
        """Resume today's realized results after a restart.

        Stats for any other day are ignored. If today's loss already reached
        the limit, the breaker is tripped again.

        Returns:
            True if the stats were adopted.
        """
        now = now or datetime.now(UTC)
        if stats.trading_day != now.astimezone(UTC).date():
            return False
        self._daily = copy.copy(stats)
        if self._daily.realized_pnl <= -self._max_daily_loss and not self._breaker.is_tripped(now):
            self._breaker.trip(
                TripReason.DAILY_LOSS_LIMIT,
                now,
                detail=f"restored daily pnl {self._daily.realized_pnl} <= -{self._max_daily_loss}",
            )
        return True
