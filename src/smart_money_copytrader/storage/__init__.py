"""Storage layer - Database schemas and repositories."""

from smart_money_copytrader.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from smart_money_copytrader.storage.models import (
    Base,
    DailyStatsModel,
    PositionModel,
    SignalRecordModel,
    WalletScoreModel,
)
from smart_money_copytrader.storage.repos import (
    DailyStatsDTO,
    DailyStatsRepository,
    PositionDTO,
    PositionRepository,
    SignalRecordDTO,
    SignalRepository,
    WalletScoreDTO,
    WalletScoreRepository,
)

__all__ = [
    "Base",
    "DailyStatsDTO",
    "DailyStatsModel",
    "DailyStatsRepository",
    "DatabaseManager",
    "PositionDTO",
    "PositionModel",
    "PositionRepository",
    "SignalRecordDTO",
    "SignalRecordModel",
    "SignalRepository",
    "WalletScoreDTO",
    "WalletScoreModel",
    "WalletScoreRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
