"""Data models for positions and portfolio state."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from smart_money_copytrader.detector.models import SignalKind
from smart_money_copytrader.risk.breaker import BreakerState


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitTrigger(str, Enum):
    """Why a position was closed, in evaluation priority order."""

    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    CHART_REVERSAL = "chart_reversal"
    STALE = "stale"
    TRAILING_STOP = "trailing_stop"


def realized_pnl(entry_price: Decimal, exit_price: Decimal, size: Decimal) -> Decimal:
    """(exit - entry) * size / entry, for a USD-sized position."""
    return (exit_price - entry_price) * size / entry_price


@dataclass
class Position:
    """A copy-trade position from approval to close.

    Mutated only by the lifecycle (price updates) and the ledger's close
    step; ``Closed`` is terminal.

    Attributes:
        position_id: Unique identifier.
        asset_id: Asset held.
        entry_price: Fill price at entry.
        entry_time: When the position was opened.
        size: USD-denominated sized amount.
        stop_loss_price: Close at or below this price.
        take_profit_price: Close at or above this price.
        peak_price: Highest price observed since entry.
        current_price: Latest observed price.
        unrealized_pnl: Mark-to-market PnL at current_price.
        status: Open or Closed.
        signal_kind: Kind of the signal that opened the position.
        confidence: Confidence at approval.
        wallets: Wallets behind the originating signal.
        entry_signature: Execution signature of the entry trade.
        exit_price: Price at close.
        exit_time: When the position closed.
        exit_trigger: Which exit rule fired.
        realized_pnl: PnL booked at close.
    """

    asset_id: str
    entry_price: Decimal
    entry_time: datetime
    size: Decimal
    stop_loss_price: Decimal
    take_profit_price: Decimal
    signal_kind: SignalKind
    confidence: float
    wallets: frozenset[str] = frozenset()
    entry_signature: str = ""
    position_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    peak_price: Decimal = Decimal(0)
    current_price: Decimal = Decimal(0)
    unrealized_pnl: Decimal = Decimal(0)
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Decimal | None = None
    exit_time: datetime | None = None
    exit_trigger: ExitTrigger | None = None
    realized_pnl: Decimal | None = None

    def __post_init__(self) -> None:
        if self.entry_price <= 0:
            raise ValueError("entry_price must be positive")
        if self.size <= 0:
            raise ValueError("size must be positive")
        if self.peak_price < self.entry_price:
            self.peak_price = self.entry_price
        if self.current_price <= 0:
            self.current_price = self.entry_price

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def gain_pct(self) -> float:
        """Current unrealized gain as a fraction of entry."""
        return float((self.current_price - self.entry_price) / self.entry_price)

    @property
    def peak_gain_pct(self) -> float:
        return float((self.peak_price - self.entry_price) / self.entry_price)

    @property
    def drop_from_peak_pct(self) -> float:
        if self.peak_price <= 0:
            return 0.0
        return float((self.peak_price - self.current_price) / self.peak_price)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.entry_time).total_seconds()

    def mark(self, price: Decimal) -> None:
        """Refresh current price, peak and unrealized PnL."""
        self.current_price = price
        if price > self.peak_price:
            self.peak_price = price
        self.unrealized_pnl = realized_pnl(self.entry_price, price, self.size)

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for notifications and dashboards."""
        return {
            "position_id": self.position_id,
            "asset_id": self.asset_id,
            "status": self.status.value,
            "entry_price": str(self.entry_price),
            "entry_time": self.entry_time.isoformat(),
            "size": str(self.size),
            "stop_loss_price": str(self.stop_loss_price),
            "take_profit_price": str(self.take_profit_price),
            "peak_price": str(self.peak_price),
            "current_price": str(self.current_price),
            "unrealized_pnl": str(self.unrealized_pnl),
            "signal_kind": self.signal_kind.value,
            "confidence": self.confidence,
            "wallets": sorted(self.wallets),
            "entry_signature": self.entry_signature,
            "exit_price": str(self.exit_price) if self.exit_price is not None else None,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "exit_trigger": self.exit_trigger.value if self.exit_trigger else None,
            "realized_pnl": str(self.realized_pnl) if self.realized_pnl is not None else None,
        }


@dataclass(frozen=True)
class OutcomeSample:
    """Realized outcome of a previously executed signal."""

    confidence: float
    size: Decimal
    pnl: Decimal
    signal_kind: SignalKind
    closed_at: datetime

    @property
    def return_pct(self) -> float:
        return float(self.pnl / self.size) if self.size > 0 else 0.0

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @classmethod
    def from_position(cls, position: Position) -> OutcomeSample:
        if position.realized_pnl is None or position.exit_time is None:
            raise ValueError("Position is not closed")
        return cls(
            confidence=position.confidence,
            size=position.size,
            pnl=position.realized_pnl,
            signal_kind=position.signal_kind,
            closed_at=position.exit_time,
        )


@dataclass(frozen=True)
class Reservation:
    """Capital held for an approved signal until its trade fills or fails."""

    reservation_id: str
    asset_id: str
    size: Decimal
    created_at: datetime


@dataclass
class DailyStats:
    """Realized trading results for one UTC day."""

    trading_day: date
    trades: int = 0
    wins: int = 0
    losses: int = 0
    realized_pnl: Decimal = Decimal(0)
    biggest_win: Decimal = Decimal(0)
    biggest_loss: Decimal = Decimal(0)

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades else 0.0

    def record(self, pnl: Decimal) -> None:
        self.trades += 1
        self.realized_pnl += pnl
        if pnl > 0:
            self.wins += 1
            self.biggest_win = max(self.biggest_win, pnl)
        else:
            self.losses += 1
            self.biggest_loss = min(self.biggest_loss, pnl)


@dataclass(frozen=True)
class PortfolioState:
    """Read-only snapshot of the portfolio.

    Positions in the snapshot are copies; mutating them has no effect on
    the ledger.
    """

    capital: Decimal
    open_positions: Mapping[str, Position]
    reservations: Mapping[str, Reservation]
    daily_realized_pnl: Decimal
    trading_day: date
    breaker: BreakerState
    closed_count: int = 0

    @property
    def open_exposure(self) -> Decimal:
        return sum((p.size for p in self.open_positions.values()), Decimal(0))

    @property
    def reserved_exposure(self) -> Decimal:
        return sum((r.size for r in self.reservations.values()), Decimal(0))

    @property
    def available_capital(self) -> Decimal:
        return self.capital - self.open_exposure - self.reserved_exposure

    def exposure_for(self, asset_id: str) -> Decimal:
        """Open plus reserved exposure on one asset."""
        exposure = Decimal(0)
        position = self.open_positions.get(asset_id)
        if position is not None:
            exposure += position.size
        exposure += sum(
            (r.size for r in self.reservations.values() if r.asset_id == asset_id),
            Decimal(0),
        )
        return exposure

    def has_pending(self, asset_id: str) -> bool:
        return asset_id in self.open_positions or any(
            r.asset_id == asset_id for r in self.reservations.values()
        )
