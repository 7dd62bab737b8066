"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from factories import NOW, make_market, make_round_trips, make_security, make_trade
from smart_money_copytrader.config import Settings
from smart_money_copytrader.detector.models import SignalKind
from smart_money_copytrader.ingestor.models import RiskTier, TradeSide
from smart_money_copytrader.pipeline import (
    DRY_RUN_SIGNATURE_PREFIX,
    Pipeline,
    PipelineState,
)
from smart_money_copytrader.portfolio.models import DailyStats, ExitTrigger, Position, PositionStatus
from smart_money_copytrader.risk.breaker import Tripped, TripReason
from smart_money_copytrader.storage.database import DatabaseManager
from smart_money_copytrader.storage.repos import (
    DailyStatsDTO,
    DailyStatsRepository,
    PositionDTO,
    PositionRepository,
)

TARGET = "TargetMint1111111111111111111111111111111111"
WALLETS = ("wallet_a", "wallet_b", "wallet_c")


def _histories() -> dict[str, list]:
    """Three skilled wallets converging on TARGET within 40 minutes."""
    histories = {}
    for offset, wallet in zip((40, 20, 10), WALLETS, strict=True):
        trips = make_round_trips(
            wallet=wallet,
            asset_id="HistoryMint",
            end=NOW - timedelta(days=2),
        )
        entry = make_trade(
            trade_id=f"{wallet}-target",
            wallet=wallet,
            asset_id=TARGET,
            timestamp=NOW - timedelta(minutes=offset),
        )
        histories[wallet] = [*trips, entry]
    return histories


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    """Real settings built from a clean environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("REDIS_CACHE_ENABLED", "false")
    monkeypatch.setenv("DRY_RUN", "true")
    monkeypatch.setenv("TRACKED_WALLETS", ",".join(WALLETS))
    monkeypatch.setenv("SIGNAL_MIN_CONFIDENCE", "0.5")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return Settings()


@pytest.fixture
def collaborators() -> dict[str, MagicMock]:
    """Mock trade source, price feed, security checker and executor."""
    histories = _histories()

    trade_source = MagicMock()
    trade_source.fetch_trades = AsyncMock(
        side_effect=lambda wallet, since: list(histories.get(wallet, []))
    )
    market_data_source = MagicMock()
    market_data_source.fetch_market_data = AsyncMock(
        side_effect=lambda asset_id: make_market(asset_id=asset_id)
    )
    security_checker = MagicMock()
    security_checker.check_security = AsyncMock(
        side_effect=lambda asset_id: make_security(asset_id=asset_id)
    )
    executor = MagicMock()
    executor.execute_trade = AsyncMock(return_value="sig-entry")
    return {
        "trade_source": trade_source,
        "market_data_source": market_data_source,
        "security_checker": security_checker,
        "executor": executor,
    }


@pytest.fixture
def pipeline(settings: Settings, collaborators: dict[str, MagicMock]) -> Pipeline:
    return Pipeline(settings, **collaborators)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, pipeline: Pipeline) -> None:
        """Pipeline should start in stopped state."""
        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.is_running is False

    def test_initial_stats(self, pipeline: Pipeline) -> None:
        """Stats should start empty."""
        stats = pipeline.stats

        assert stats.started_at is None
        assert stats.cycles_run == 0
        assert stats.positions_opened == 0
        assert stats.errors == 0

    def test_tracks_configured_wallets(self, pipeline: Pipeline) -> None:
        """Tracked wallets from settings are registered."""
        assert set(pipeline.registry.addresses) == set(WALLETS)


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_override(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Explicit dry_run should override settings."""
        pipeline = Pipeline(settings, dry_run=False, **collaborators)

        assert pipeline._dry_run is False

    def test_uses_get_settings_when_none_provided(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Should use get_settings() when no settings provided."""
        with patch("smart_money_copytrader.pipeline.get_settings") as mock_get:
            mock_get.return_value = settings
            Pipeline(**collaborators)
            mock_get.assert_called_once()


class TestRunCycle:
    """Tests for the evaluation cycle."""

    async def test_convergence_opens_position(self, pipeline: Pipeline) -> None:
        """Three skilled wallets buying one asset open a paper position."""
        opened_hook = AsyncMock()
        pipeline.hooks.on_new_signal_approved(opened_hook)

        report = await pipeline.run_cycle(now=NOW)

        assert report.wallets_refreshed == 3
        assert report.wallets_failed == 0
        assert report.signals >= 1
        assert report.approved == 1
        assert len(report.opened) == 1

        position = report.opened[0]
        assert position.asset_id == TARGET
        assert position.signal_kind == SignalKind.WALLET_CONVERGENCE
        assert position.wallets == frozenset(WALLETS)
        assert position.size == Decimal("25.00")
        assert position.entry_price == Decimal("1.00")
        assert position.entry_signature.startswith(DRY_RUN_SIGNATURE_PREFIX)
        opened_hook.assert_awaited_once_with(position)

        state = await pipeline.portfolio_snapshot(NOW)
        assert list(state.open_positions) == [TARGET]
        assert state.reserved_exposure == Decimal("0")
        assert pipeline.stats.cycles_run == 1
        assert pipeline.stats.positions_opened == 1

    async def test_second_cycle_does_not_double_up(self, pipeline: Pipeline) -> None:
        """An asset with an open position is rejected on the next cycle."""
        await pipeline.run_cycle(now=NOW)

        report = await pipeline.run_cycle(now=NOW + timedelta(minutes=5))

        assert report.opened == []
        assert report.rejected == 1
        assert len(await pipeline.ledger.open_positions()) == 1

    async def test_live_execution(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Live mode submits the entry through the executor exactly once."""
        pipeline = Pipeline(settings, dry_run=False, **collaborators)

        report = await pipeline.run_cycle(now=NOW)

        collaborators["executor"].execute_trade.assert_awaited_once_with(
            TARGET, TradeSide.BUY, Decimal("25.00"), settings.risk.max_slippage_bps
        )
        assert report.opened[0].entry_signature == "sig-entry"

    async def test_execution_failure_releases_reservation(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """A failed entry frees its reserved capital and opens nothing."""
        collaborators["executor"].execute_trade.side_effect = RuntimeError("no route")
        pipeline = Pipeline(settings, dry_run=False, **collaborators)

        report = await pipeline.run_cycle(now=NOW)

        assert report.approved == 1
        assert report.opened == []
        state = await pipeline.portfolio_snapshot(NOW)
        assert state.reserved_exposure == Decimal("0")
        assert state.open_positions == {}
        assert pipeline.stats.execution_failures == 1
        assert collaborators["executor"].execute_trade.await_count == 1

    async def test_low_confidence_is_filtered(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """Signals below the confidence threshold never reach the risk gate."""
        collaborators["security_checker"].check_security.side_effect = (
            lambda asset_id: make_security(asset_id=asset_id, risk_tier=RiskTier.HIGH)
        )

        report = await pipeline.run_cycle(now=NOW)

        assert report.filtered == 1
        assert report.approved == 0
        assert report.opened == []

    async def test_scam_asset_is_filtered(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """A scam classification vetoes the signal."""
        collaborators["security_checker"].check_security.side_effect = (
            lambda asset_id: make_security(asset_id=asset_id, is_scam=True)
        )

        report = await pipeline.run_cycle(now=NOW)

        assert report.filtered == 1
        assert report.opened == []

    async def test_missing_market_data_skips_asset(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """An asset without market data is skipped for the cycle."""
        collaborators["market_data_source"].fetch_market_data.side_effect = ValueError("no pool")

        report = await pipeline.run_cycle(now=NOW)

        assert report.assets_skipped == 1
        assert report.opened == []

    async def test_failed_wallet_is_skipped(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """A wallet whose history cannot be fetched does not stop the cycle."""
        histories = _histories()

        def fetch(wallet, since):
            if wallet == "wallet_c":
                raise ValueError("rpc down")
            return list(histories[wallet])

        collaborators["trade_source"].fetch_trades.side_effect = fetch

        report = await pipeline.run_cycle(now=NOW)

        assert report.wallets_refreshed == 2
        assert report.wallets_failed == 1
        # Two wallets are below the convergence threshold
        assert all(p.signal_kind != SignalKind.WALLET_CONVERGENCE for p in report.opened)

    async def test_tripped_breaker_rejects(self, pipeline: Pipeline) -> None:
        """No positions open while the circuit breaker is tripped."""
        await pipeline.emergency_stop("maintenance")

        report = await pipeline.run_cycle(now=NOW)

        assert report.opened == []
        assert report.rejected == 1

        await pipeline.rearm()
        report = await pipeline.run_cycle(now=NOW + timedelta(minutes=1))
        assert len(report.opened) == 1


class TestMonitorPositions:
    """Tests for the position monitor."""

    async def test_no_open_positions(self, pipeline: Pipeline) -> None:
        """Monitoring an empty portfolio does nothing."""
        assert await pipeline.monitor_positions(now=NOW) == []

    async def test_stop_loss_closes_position(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """A price drop below the stop closes the position and notifies."""
        closed_hook = AsyncMock()
        pipeline.hooks.on_position_closed(closed_hook)
        await pipeline.run_cycle(now=NOW)
        collaborators["market_data_source"].fetch_market_data.side_effect = (
            lambda asset_id: make_market(asset_id=asset_id, price=Decimal("0.85"))
        )

        closed = await pipeline.monitor_positions(now=NOW + timedelta(minutes=15))

        assert len(closed) == 1
        assert closed[0].status == PositionStatus.CLOSED
        assert closed[0].exit_trigger == ExitTrigger.STOP_LOSS
        assert closed[0].realized_pnl == Decimal("-3.75")
        closed_hook.assert_awaited_once_with(closed[0])
        assert pipeline.stats.positions_closed == 1
        # Paper exits never reach the executor
        collaborators["executor"].execute_trade.assert_not_awaited()

    async def test_live_exit_submits_sell(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Live exits sell the position's current value once."""
        pipeline = Pipeline(settings, dry_run=False, **collaborators)
        await pipeline.run_cycle(now=NOW)
        collaborators["market_data_source"].fetch_market_data.side_effect = (
            lambda asset_id: make_market(asset_id=asset_id, price=Decimal("1.60"))
        )

        closed = await pipeline.monitor_positions(now=NOW + timedelta(minutes=15))

        assert closed[0].exit_trigger == ExitTrigger.TAKE_PROFIT
        collaborators["executor"].execute_trade.assert_awaited_with(
            TARGET, TradeSide.SELL, Decimal("40.00"), settings.risk.max_slippage_bps
        )

    async def test_failed_exit_keeps_position_open(
        self, settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """An unsold holding stays open, keeps its capital and is retried next tick."""
        pipeline = Pipeline(settings, dry_run=False, **collaborators)
        await pipeline.run_cycle(now=NOW)
        executor = collaborators["executor"].execute_trade
        executor.side_effect = RuntimeError("timeout")
        collaborators["market_data_source"].fetch_market_data.side_effect = (
            lambda asset_id: make_market(asset_id=asset_id, price=Decimal("0.50"))
        )

        closed = await pipeline.monitor_positions(now=NOW + timedelta(minutes=15))

        assert closed == []
        assert pipeline.stats.execution_failures == 1
        assert pipeline.stats.positions_closed == 0
        still_open = await pipeline.ledger.open_positions()
        assert [p.asset_id for p in still_open] == [TARGET]
        snapshot = await pipeline.portfolio_snapshot(NOW + timedelta(minutes=15))
        assert snapshot.capital == Decimal("1000")
        assert snapshot.open_exposure == Decimal("25.00")

        executor.side_effect = None
        executor.return_value = "sig-exit"
        closed = await pipeline.monitor_positions(now=NOW + timedelta(minutes=16))

        assert len(closed) == 1
        assert closed[0].exit_trigger == ExitTrigger.STOP_LOSS
        assert closed[0].realized_pnl == Decimal("-12.5")
        assert executor.await_count == 3
        executor.assert_awaited_with(
            TARGET, TradeSide.SELL, Decimal("12.5"), settings.risk.max_slippage_bps
        )
        assert await pipeline.ledger.open_positions() == []

    async def test_exits_run_while_breaker_tripped(
        self, pipeline: Pipeline, collaborators: dict[str, MagicMock]
    ) -> None:
        """Open positions are still closed after an emergency stop."""
        await pipeline.run_cycle(now=NOW)
        await pipeline.emergency_stop()
        collaborators["market_data_source"].fetch_market_data.side_effect = (
            lambda asset_id: make_market(asset_id=asset_id, price=Decimal("0.80"))
        )

        closed = await pipeline.monitor_positions(now=NOW + timedelta(minutes=15))

        assert len(closed) == 1

    async def test_daily_summary(self, pipeline: Pipeline, collaborators) -> None:
        """The daily summary reflects realized results."""
        await pipeline.run_cycle(now=NOW)
        collaborators["market_data_source"].fetch_market_data.side_effect = (
            lambda asset_id: make_market(asset_id=asset_id, price=Decimal("0.85"))
        )
        await pipeline.monitor_positions(now=NOW + timedelta(minutes=15))

        alert = await pipeline.daily_summary(now=NOW + timedelta(minutes=20))

        assert alert.title == "📉 Portfolio Update 2026-10-18"
        assert "Capital: $996.25" in alert.plain_text


class TestPipelineLifecycle:
    """Tests for pipeline start/stop lifecycle."""

    @pytest.fixture
    def idle_settings(self, monkeypatch, settings: Settings) -> Settings:
        monkeypatch.setenv("TRACKED_WALLETS", "")
        monkeypatch.setenv("CYCLE_EVALUATION_INTERVAL_SECONDS", "3600")
        monkeypatch.setenv("CYCLE_PRICE_TICK_SECONDS", "3600")
        return Settings()

    async def test_start_and_stop(
        self, idle_settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Pipeline runs after start() and stops cleanly."""
        pipeline = Pipeline(idle_settings, **collaborators)

        await pipeline.start()
        assert pipeline.state == PipelineState.RUNNING
        assert pipeline.stats.started_at is not None

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    async def test_cannot_start_when_not_stopped(
        self, idle_settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Should raise when starting a running pipeline."""
        pipeline = Pipeline(idle_settings, **collaborators)
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError, match="Cannot start"):
                await pipeline.start()
        finally:
            await pipeline.stop()

    async def test_stop_when_already_stopped(
        self, idle_settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Stopping a stopped pipeline is a no-op."""
        pipeline = Pipeline(idle_settings, **collaborators)

        await pipeline.stop()

        assert pipeline.state == PipelineState.STOPPED

    async def test_context_manager(
        self, idle_settings: Settings, collaborators: dict[str, MagicMock]
    ) -> None:
        """Async context manager starts and stops the pipeline."""
        async with Pipeline(idle_settings, **collaborators) as pipeline:
            assert pipeline.is_running

        assert pipeline.state == PipelineState.STOPPED

    async def test_restores_outcomes_from_storage(
        self,
        monkeypatch,
        tmp_path,
        idle_settings: Settings,
        collaborators: dict[str, MagicMock],
    ) -> None:
        """Closed positions in the database seed the ledger's outcome history."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'copytrader.db'}"
        await _seed(url, _closed_position())

        monkeypatch.setenv("DATABASE_URL", url)
        pipeline = Pipeline(Settings(), **collaborators)
        await pipeline.start()
        try:
            outcomes = await pipeline.ledger.outcomes()
        finally:
            await pipeline.stop()

        assert len(outcomes) == 1
        assert outcomes[0].pnl == Decimal("5")

    async def test_restart_resumes_open_positions(
        self,
        monkeypatch,
        tmp_path,
        idle_settings: Settings,
        collaborators: dict[str, MagicMock],
    ) -> None:
        """Positions still open at shutdown are managed again after a restart."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'copytrader.db'}"
        held = _open_position()
        await _seed(url, _closed_position(), held)

        monkeypatch.setenv("DATABASE_URL", url)
        pipeline = Pipeline(Settings(), **collaborators)
        await pipeline.start()
        try:
            restored = await pipeline.ledger.open_positions()
            snapshot = await pipeline.portfolio_snapshot(NOW)
            collaborators["market_data_source"].fetch_market_data.side_effect = (
                lambda asset_id: make_market(asset_id=asset_id, price=Decimal("0.80"))
            )
            closed = await pipeline.monitor_positions(now=NOW)
        finally:
            await pipeline.stop()

        assert [p.position_id for p in restored] == [held.position_id]
        assert snapshot.capital == Decimal("1005")
        assert snapshot.open_exposure == Decimal("25")
        assert [p.position_id for p in closed] == [held.position_id]
        assert closed[0].exit_trigger == ExitTrigger.STOP_LOSS

    async def test_restart_keeps_daily_loss_halt(
        self,
        monkeypatch,
        tmp_path,
        idle_settings: Settings,
        collaborators: dict[str, MagicMock],
    ) -> None:
        """A daily loss limit hit before a restart still blocks new entries."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'copytrader.db'}"
        today = DailyStats(trading_day=datetime.now(UTC).date())
        today.record(Decimal("-60"))
        await _seed(url, daily=today)

        monkeypatch.setenv("DATABASE_URL", url)
        pipeline = Pipeline(Settings(), **collaborators)
        await pipeline.start()
        try:
            snapshot = await pipeline.portfolio_snapshot()
        finally:
            await pipeline.stop()

        assert snapshot.daily_realized_pnl == Decimal("-60")
        assert isinstance(snapshot.breaker, Tripped)
        assert snapshot.breaker.reason == TripReason.DAILY_LOSS_LIMIT


def _closed_position() -> Position:
    position = Position(
        asset_id=TARGET,
        entry_price=Decimal("1.00"),
        entry_time=NOW - timedelta(hours=3),
        size=Decimal("25"),
        stop_loss_price=Decimal("0.90"),
        take_profit_price=Decimal("1.50"),
        signal_kind=SignalKind.WALLET_CONVERGENCE,
        confidence=0.75,
    )
    position.mark(Decimal("1.20"))
    position.status = PositionStatus.CLOSED
    position.exit_price = Decimal("1.20")
    position.exit_time = NOW - timedelta(hours=1)
    position.exit_trigger = ExitTrigger.TRAILING_STOP
    position.realized_pnl = Decimal("5")
    return position


def _open_position() -> Position:
    return Position(
        asset_id="HeldMint1111111111111111111111111111111111111",
        entry_price=Decimal("1.00"),
        entry_time=NOW - timedelta(hours=1),
        size=Decimal("25"),
        stop_loss_price=Decimal("0.90"),
        take_profit_price=Decimal("1.50"),
        signal_kind=SignalKind.HOT_WALLET_ACTIVITY,
        confidence=0.8,
        wallets=frozenset({"wallet_a"}),
        entry_signature="sig-held",
    )


async def _seed(url: str, *positions: Position, daily: DailyStats | None = None) -> None:
    """Write positions and daily stats the way a previous run would have."""
    manager = DatabaseManager(url)
    await manager.init_schema_async()
    async with manager.get_async_session() as session:
        repo = PositionRepository(session)
        for position in positions:
            await repo.upsert(PositionDTO.from_position(position))
        if daily is not None:
            await DailyStatsRepository(session).upsert(DailyStatsDTO.from_stats(daily))
    await manager.dispose_async()
