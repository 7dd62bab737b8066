"""SQLAlchemy models for persistent storage.

This module defines the database schema for positions, scored signals,
wallet scores, and per-day trading statistics.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class PositionModel(Base):
    """Open and closed copy-trade positions.

    Closed rows are never deleted; they are the realized-outcome history
    used for sizing and confidence after a restart.
    """

    __tablename__ = "positions"

    position_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    signal_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    wallets_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    entry_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    size: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    stop_loss_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    take_profit_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    peak_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    unrealized_pnl: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    entry_signature: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    exit_price: Mapped[Decimal | None] = mapped_column(Numeric(30, 12), nullable=True)
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exit_trigger: Mapped[str | None] = mapped_column(String(20), nullable=True)
    realized_pnl: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_positions_asset", "asset_id"),
        Index("idx_positions_status", "status"),
        Index("idx_positions_exit_time", "exit_time"),
    )


class SignalRecordModel(Base):
    """Every scored signal with the decision taken on it."""

    __tablename__ = "signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    wallets_json: Mapped[str] = mapped_column(Text, nullable=False)
    strength: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    # approved | rejected | filtered | failed
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    reject_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    size: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    position_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    components_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_signals_asset_detected", "asset_id", "detected_at"),
        Index("idx_signals_decision", "decision"),
    )


class WalletScoreModel(Base):
    """Latest score and metrics per tracked wallet."""

    __tablename__ = "wallet_scores"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    score: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trade_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)
    metrics_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_trade_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_wallet_scores_active_score", "is_active", "score"),)


class DailyStatsModel(Base):
    """Realized trading results per UTC day."""

    __tablename__ = "daily_stats"

    trading_day: Mapped[date] = mapped_column(Date, primary_key=True)
    trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    biggest_win: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    biggest_loss: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
