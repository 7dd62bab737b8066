"""Portfolio layer - Positions, the ledger and the position lifecycle."""

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
from smart_money_copytrader.portfolio.ledger import InvariantViolationError, PortfolioLedger
from smart_money_copytrader.portfolio.lifecycle import PositionLifecycle

__all__ = [
    "DailyStats",
    "ExitTrigger",
    "InvariantViolationError",
    "OutcomeSample",
    "PortfolioLedger",
    "PortfolioState",
    "Position",
    "PositionLifecycle",
    "PositionStatus",
    "Reservation",
    "realized_pnl",
]
