"""Repository pattern implementations for data access.

This module provides data access abstractions for positions, scored
signals, wallet scores, and daily trading statistics.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from smart_money_copytrader.detector.models import SignalKind
from smart_money_copytrader.portfolio.models import (
    DailyStats,
    ExitTrigger,
    OutcomeSample,
    Position,
    PositionStatus,
)
from smart_money_copytrader.storage.models import (
    DailyStatsModel,
    PositionModel,
    SignalRecordModel,
    WalletScoreModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from smart_money_copytrader.profiler.models import WalletRecord

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """INSERT ... ON CONFLICT builder for the bound dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ============================================================================
# Positions
# ============================================================================


@dataclass
class PositionDTO:
    """Data transfer object for positions."""

    position_id: str
    asset_id: str
    status: str
    signal_kind: str
    confidence: Decimal
    wallets: list[str]
    entry_price: Decimal
    entry_time: datetime
    size: Decimal
    stop_loss_price: Decimal
    take_profit_price: Decimal
    peak_price: Decimal
    current_price: Decimal
    unrealized_pnl: Decimal
    entry_signature: str
    exit_price: Decimal | None = None
    exit_time: datetime | None = None
    exit_trigger: str | None = None
    realized_pnl: Decimal | None = None

    @classmethod
    def from_model(cls, model: PositionModel) -> PositionDTO:
        return cls(
            position_id=model.position_id,
            asset_id=model.asset_id,
            status=model.status,
            signal_kind=model.signal_kind,
            confidence=model.confidence,
            wallets=json.loads(model.wallets_json),
            entry_price=model.entry_price,
            entry_time=_as_utc(model.entry_time),
            size=model.size,
            stop_loss_price=model.stop_loss_price,
            take_profit_price=model.take_profit_price,
            peak_price=model.peak_price,
            current_price=model.current_price,
            unrealized_pnl=model.unrealized_pnl,
            entry_signature=model.entry_signature,
            exit_price=model.exit_price,
            exit_time=_as_utc(model.exit_time),
            exit_trigger=model.exit_trigger,
            realized_pnl=model.realized_pnl,
        )

    @classmethod
    def from_position(cls, position: Position) -> PositionDTO:
        return cls(
            position_id=position.position_id,
            asset_id=position.asset_id,
            status=position.status.value,
            signal_kind=position.signal_kind.value,
            confidence=Decimal(str(round(position.confidence, 4))),
            wallets=sorted(position.wallets),
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            size=position.size,
            stop_loss_price=position.stop_loss_price,
            take_profit_price=position.take_profit_price,
            peak_price=position.peak_price,
            current_price=position.current_price,
            unrealized_pnl=position.unrealized_pnl,
            entry_signature=position.entry_signature,
            exit_price=position.exit_price,
            exit_time=position.exit_time,
            exit_trigger=position.exit_trigger.value if position.exit_trigger else None,
            realized_pnl=position.realized_pnl,
        )

    def to_position(self) -> Position:
        return Position(
            asset_id=self.asset_id,
            entry_price=self.entry_price,
            entry_time=self.entry_time,
            size=self.size,
            stop_loss_price=self.stop_loss_price,
            take_profit_price=self.take_profit_price,
            signal_kind=SignalKind(self.signal_kind),
            confidence=float(self.confidence),
            wallets=frozenset(self.wallets),
            entry_signature=self.entry_signature,
            position_id=self.position_id,
            peak_price=self.peak_price,
            current_price=self.current_price,
            unrealized_pnl=self.unrealized_pnl,
            status=PositionStatus(self.status),
            exit_price=self.exit_price,
            exit_time=self.exit_time,
            exit_trigger=ExitTrigger(self.exit_trigger) if self.exit_trigger else None,
            realized_pnl=self.realized_pnl,
        )

    def to_outcome(self) -> OutcomeSample | None:
        """Realized outcome for a closed position, None while open."""
        if self.realized_pnl is None or self.exit_time is None:
            return None
        return OutcomeSample(
            confidence=float(self.confidence),
            size=self.size,
            pnl=self.realized_pnl,
            signal_kind=SignalKind(self.signal_kind),
            closed_at=self.exit_time,
        )


class PositionRepository:
    """Repository for position data access."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, position_id: str) -> PositionDTO | None:
        result = await self.session.execute(
            select(PositionModel).where(PositionModel.position_id == position_id)
        )
        model = result.scalar_one_or_none()
        return PositionDTO.from_model(model) if model else None

    async def list_open(self) -> list[PositionDTO]:
        result = await self.session.execute(
            select(PositionModel)
            .where(PositionModel.status == PositionStatus.OPEN.value)
            .order_by(PositionModel.entry_time)
        )
        return [PositionDTO.from_model(m) for m in result.scalars().all()]

    async def list_closed(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[PositionDTO]:
        """Closed positions, oldest close first."""
        stmt = select(PositionModel).where(PositionModel.status == PositionStatus.CLOSED.value)
        if since is not None:
            stmt = stmt.where(PositionModel.exit_time >= since)
        stmt = stmt.order_by(PositionModel.exit_time)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [PositionDTO.from_model(m) for m in result.scalars().all()]

    async def load_outcomes(self, *, limit: int | None = None) -> list[OutcomeSample]:
        """Realized outcomes of closed positions, for restoring the ledger."""
        outcomes = []
        for dto in await self.list_closed(limit=limit):
            outcome = dto.to_outcome()
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def total_realized_pnl(self) -> Decimal:
        """Sum of realized PnL over every closed position."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(PositionModel.realized_pnl), 0)).where(
                PositionModel.status == PositionStatus.CLOSED.value
            )
        )
        return Decimal(str(result.scalar_one()))

    async def upsert(self, dto: PositionDTO) -> PositionDTO:
        """Upsert a position by position_id."""
        now = datetime.now(UTC)
        values = {
            "position_id": dto.position_id,
            "asset_id": dto.asset_id,
            "status": dto.status,
            "signal_kind": dto.signal_kind,
            "confidence": dto.confidence,
            "wallets_json": json.dumps(dto.wallets),
            "entry_price": dto.entry_price,
            "entry_time": dto.entry_time,
            "size": dto.size,
            "stop_loss_price": dto.stop_loss_price,
            "take_profit_price": dto.take_profit_price,
            "peak_price": dto.peak_price,
            "current_price": dto.current_price,
            "unrealized_pnl": dto.unrealized_pnl,
            "entry_signature": dto.entry_signature,
            "exit_price": dto.exit_price,
            "exit_time": dto.exit_time,
            "exit_trigger": dto.exit_trigger,
            "realized_pnl": dto.realized_pnl,
        }
        stmt = _dialect_insert(self.session, PositionModel).values(
            **values, created_at=now, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["position_id"],
            set_={
                "status": stmt.excluded.status,
                "peak_price": stmt.excluded.peak_price,
                "current_price": stmt.excluded.current_price,
                "unrealized_pnl": stmt.excluded.unrealized_pnl,
                "exit_price": stmt.excluded.exit_price,
                "exit_time": stmt.excluded.exit_time,
                "exit_trigger": stmt.excluded.exit_trigger,
                "realized_pnl": stmt.excluded.realized_pnl,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


# ============================================================================
# Signals
# ============================================================================


@dataclass
class SignalRecordDTO:
    """Data transfer object for scored signals."""

    asset_id: str
    kind: str
    direction: str
    wallets: list[str]
    strength: Decimal
    confidence: Decimal
    decision: str
    detected_at: datetime
    reject_reason: str | None = None
    size: Decimal | None = None
    position_id: str | None = None
    components: dict[str, Any] = dataclasses.field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_model(cls, model: SignalRecordModel) -> SignalRecordDTO:
        return cls(
            id=model.id,
            asset_id=model.asset_id,
            kind=model.kind,
            direction=model.direction,
            wallets=json.loads(model.wallets_json),
            strength=model.strength,
            confidence=model.confidence,
            decision=model.decision,
            reject_reason=model.reject_reason,
            size=model.size,
            position_id=model.position_id,
            components=json.loads(model.components_json),
            detected_at=_as_utc(model.detected_at),
        )


class SignalRepository:
    """Repository for the scored-signal audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: SignalRecordDTO) -> SignalRecordDTO:
        model = SignalRecordModel(
            asset_id=dto.asset_id,
            kind=dto.kind,
            direction=dto.direction,
            wallets_json=json.dumps(dto.wallets),
            strength=dto.strength,
            confidence=dto.confidence,
            decision=dto.decision,
            reject_reason=dto.reject_reason,
            size=dto.size,
            position_id=dto.position_id,
            components_json=json.dumps(dto.components, default=str),
            detected_at=dto.detected_at,
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto

    async def list_recent(self, *, asset_id: str | None = None, limit: int = 100) -> list[SignalRecordDTO]:
        stmt = select(SignalRecordModel)
        if asset_id is not None:
            stmt = stmt.where(SignalRecordModel.asset_id == asset_id)
        stmt = stmt.order_by(SignalRecordModel.detected_at.desc(), SignalRecordModel.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [SignalRecordDTO.from_model(m) for m in result.scalars().all()]

    async def count_by_decision(self) -> dict[str, int]:
        result = await self.session.execute(
            select(SignalRecordModel.decision, func.count()).group_by(SignalRecordModel.decision)
        )
        return {decision: int(count) for decision, count in result.all()}


# ============================================================================
# Wallet scores
# ============================================================================


@dataclass
class WalletScoreDTO:
    """Data transfer object for wallet scores."""

    address: str
    score: Decimal | None
    is_active: bool
    trade_count: int
    win_rate: Decimal | None = None
    metrics: dict[str, Any] = dataclasses.field(default_factory=dict)
    scored_at: datetime | None = None
    last_trade_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletScoreModel) -> WalletScoreDTO:
        return cls(
            address=model.address,
            score=model.score,
            is_active=model.is_active,
            trade_count=model.trade_count,
            win_rate=model.win_rate,
            metrics=json.loads(model.metrics_json),
            scored_at=_as_utc(model.scored_at),
            last_trade_at=_as_utc(model.last_trade_at),
        )

    @classmethod
    def from_record(cls, record: WalletRecord) -> WalletScoreDTO:
        metrics = record.metrics
        return cls(
            address=record.address,
            score=Decimal(str(round(record.score, 4))) if record.score is not None else None,
            is_active=record.is_active,
            trade_count=len(record.trades),
            win_rate=Decimal(str(round(metrics.win_rate, 4))) if metrics else None,
            metrics=dataclasses.asdict(metrics) if metrics else {},
            scored_at=record.scored_at,
            last_trade_at=record.last_trade_at,
        )


class WalletScoreRepository:
    """Repository for per-wallet score snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> WalletScoreDTO | None:
        result = await self.session.execute(
            select(WalletScoreModel).where(WalletScoreModel.address == address)
        )
        model = result.scalar_one_or_none()
        return WalletScoreDTO.from_model(model) if model else None

    async def list_eligible(self, *, min_score: float) -> list[WalletScoreDTO]:
        """Active wallets scored strictly above ``min_score``, best first."""
        result = await self.session.execute(
            select(WalletScoreModel)
            .where(
                (WalletScoreModel.is_active.is_(True))
                & (WalletScoreModel.score > Decimal(str(min_score)))
            )
            .order_by(WalletScoreModel.score.desc())
        )
        return [WalletScoreDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, dto: WalletScoreDTO) -> WalletScoreDTO:
        now = datetime.now(UTC)
        values = {
            "address": dto.address,
            "score": dto.score,
            "is_active": dto.is_active,
            "trade_count": dto.trade_count,
            "win_rate": dto.win_rate,
            "metrics_json": json.dumps(dto.metrics, default=str),
            "scored_at": dto.scored_at,
            "last_trade_at": dto.last_trade_at,
        }
        stmt = _dialect_insert(self.session, WalletScoreModel).values(**values, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["address"],
            set_={
                "score": stmt.excluded.score,
                "is_active": stmt.excluded.is_active,
                "trade_count": stmt.excluded.trade_count,
                "win_rate": stmt.excluded.win_rate,
                "metrics_json": stmt.excluded.metrics_json,
                "scored_at": stmt.excluded.scored_at,
                "last_trade_at": stmt.excluded.last_trade_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


# ============================================================================
# Daily stats
# ============================================================================


@dataclass
class DailyStatsDTO:
    """Data transfer object for per-day trading statistics."""

    trading_day: date
    trades: int
    wins: int
    losses: int
    realized_pnl: Decimal
    biggest_win: Decimal
    biggest_loss: Decimal

    @classmethod
    def from_model(cls, model: DailyStatsModel) -> DailyStatsDTO:
        return cls(
            trading_day=model.trading_day,
            trades=model.trades,
            wins=model.wins,
            losses=model.losses,
            realized_pnl=model.realized_pnl,
            biggest_win=model.biggest_win,
            biggest_loss=model.biggest_loss,
        )

    @classmethod
    def from_stats(cls, stats: DailyStats) -> DailyStatsDTO:
        return cls(
            trading_day=stats.trading_day,
            trades=stats.trades,
            wins=stats.wins,
            losses=stats.losses,
            realized_pnl=stats.realized_pnl,
            biggest_win=stats.biggest_win,
            biggest_loss=stats.biggest_loss,
        )

    def to_stats(self) -> DailyStats:
        return DailyStats(
            trading_day=self.trading_day,
            trades=self.trades,
            wins=self.wins,
            losses=self.losses,
            realized_pnl=self.realized_pnl,
            biggest_win=self.biggest_win,
            biggest_loss=self.biggest_loss,
        )


class DailyStatsRepository:
    """Repository for per-day trading statistics."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, trading_day: date) -> DailyStatsDTO | None:
        result = await self.session.execute(
            select(DailyStatsModel).where(DailyStatsModel.trading_day == trading_day)
        )
        model = result.scalar_one_or_none()
        return DailyStatsDTO.from_model(model) if model else None

    async def list_range(self, start: date, end: date) -> list[DailyStatsDTO]:
        result = await self.session.execute(
            select(DailyStatsModel)
            .where((DailyStatsModel.trading_day >= start) & (DailyStatsModel.trading_day <= end))
            .order_by(DailyStatsModel.trading_day)
        )
        return [DailyStatsDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, dto: DailyStatsDTO) -> DailyStatsDTO:
        now = datetime.now(UTC)
        values = {
            "trading_day": dto.trading_day,
            "trades": dto.trades,
            "wins": dto.wins,
            "losses": dto.losses,
            "realized_pnl": dto.realized_pnl,
            "biggest_win": dto.biggest_win,
            "biggest_loss": dto.biggest_loss,
        }
        stmt = _dialect_insert(self.session, DailyStatsModel).values(**values, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["trading_day"],
            set_={
                "trades": stmt.excluded.trades,
                "wins": stmt.excluded.wins,
                "losses": stmt.excluded.losses,
                "realized_pnl": stmt.excluded.realized_pnl,
                "biggest_win": stmt.excluded.biggest_win,
                "biggest_loss": stmt.excluded.biggest_loss,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto
