"""Main pipeline orchestrator for the smart-money copy trader.

This module provides the Pipeline class that wires together wallet scoring,
signal detection, confidence aggregation, risk gating and the position
lifecycle, and schedules the evaluation cycle and the position monitor.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from smart_money_copytrader.alerter.formatter import PositionAlertFormatter
from smart_money_copytrader.alerter.hooks import NotificationHooks
from smart_money_copytrader.alerter.models import FormattedAlert
from smart_money_copytrader.config import Settings, get_settings
from smart_money_copytrader.detector.chart import ChartPatternDetector
from smart_money_copytrader.detector.convergence import ConvergenceDetector
from smart_money_copytrader.detector.hot_wallet import HotWalletDetector
from smart_money_copytrader.detector.models import Signal
from smart_money_copytrader.detector.scorer import (
    ConfidenceAggregator,
    ConfidenceAssessment,
    ConfidenceWeights,
)
from smart_money_copytrader.ingestor.gateway import CollaboratorGateway
from smart_money_copytrader.ingestor.models import AssetSecurityInfo, MarketData, TradeSide
from smart_money_copytrader.ingestor.sources import (
    DataUnavailableError,
    ExecutionFailedError,
    MarketDataSource,
    SecurityChecker,
    TradeExecutor,
    TradeSource,
)
from smart_money_copytrader.portfolio.ledger import InvariantViolationError, PortfolioLedger
from smart_money_copytrader.portfolio.lifecycle import PositionLifecycle
from smart_money_copytrader.portfolio.models import ExitTrigger, PortfolioState, Position
from smart_money_copytrader.profiler.registry import WalletRegistry
from smart_money_copytrader.profiler.scorer import WalletScorer
from smart_money_copytrader.risk.breaker import (
    CircuitBreaker,
    CircuitBreakerTrippedError,
    TripReason,
)
from smart_money_copytrader.risk.gate import RiskGate
from smart_money_copytrader.risk.models import Approved, RejectReason
from smart_money_copytrader.risk.sizing import KellySizer
from smart_money_copytrader.risk.velocity import SignalVelocityTracker
from smart_money_copytrader.storage.database import DatabaseManager
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

if TYPE_CHECKING:
    from smart_money_copytrader.risk.models import RiskDecision

logger = logging.getLogger(__name__)

DRY_RUN_SIGNATURE_PREFIX = "dry-run-"
# Outcomes loaded from storage at startup
OUTCOME_RESTORE_LIMIT = 5000

_SCORE_PLACES = Decimal("0.0001")


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    cycles_run: int = 0
    signals_detected: int = 0
    signals_approved: int = 0
    signals_rejected: int = 0
    positions_opened: int = 0
    positions_closed: int = 0
    execution_failures: int = 0
    errors: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None


@dataclass
class CycleReport:
    """What one evaluation cycle did."""

    wallets_refreshed: int = 0
    wallets_failed: int = 0
    signals: int = 0
    assets_skipped: int = 0
    filtered: int = 0
    approved: int = 0
    rejected: int = 0
    opened: list[Position] = field(default_factory=list)


@dataclass
class _Candidate:
    """Evidence gathered for one asset within a cycle."""

    asset_id: str
    signal: Signal
    chart_signal: Signal | None
    market: MarketData
    security: AssetSecurityInfo
    assessment: ConfidenceAssessment


def _score(value: float) -> Decimal:
    return Decimal(str(value)).quantize(_SCORE_PLACES)


class Pipeline:
    """Main pipeline orchestrator for the copy trader.

    Wires together every decision component and runs two background tasks:
    the evaluation cycle (wallet refresh, signal detection, confidence,
    risk gating, execution) and the position monitor (price ticks and
    exits). Both check the stop event between iterations.

    Pipeline flow:
        Wallet refresh -> Detectors -> ConfidenceAggregator -> RiskGate
        -> Execution -> PositionLifecycle -> Hooks / Storage

    The decision components are built eagerly in ``__init__`` so a cycle
    can be driven directly (``run_cycle`` / ``monitor_positions``) without
    starting the background tasks; ``start()`` only adds the Redis cache,
    the database and the scheduling loops.

    Example:
        ```python
        from smart_money_copytrader.config import get_settings
        from smart_money_copytrader.pipeline import Pipeline

        pipeline = Pipeline(
            get_settings(),
            trade_source=rpc_client,
            market_data_source=price_feed,
            security_checker=rugcheck,
            executor=jupiter,
        )

        @pipeline.hooks.on_position_closed
        async def report(position):
            ...

        await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        trade_source: TradeSource,
        market_data_source: MarketDataSource,
        security_checker: SecurityChecker,
        executor: TradeExecutor,
        dry_run: bool | None = None,
        hooks: NotificationHooks | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            trade_source: Wallet trade history collaborator.
            market_data_source: Price feed collaborator.
            security_checker: Scam/security classifier collaborator.
            executor: Order execution collaborator.
            dry_run: If True, paper trade instead of executing.
                Overrides settings.dry_run.
            hooks: Notification hooks; a fresh registry is created if omitted.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        settings = self._settings
        risk = settings.risk
        window = timedelta(minutes=settings.signal.window_minutes)

        self._gateway = CollaboratorGateway(
            trades=trade_source,
            market_data=market_data_source,
            security=security_checker,
            executor=executor,
        )
        self._registry = WalletRegistry(
            WalletScorer(weights=settings.scoring.weights(), min_trades=settings.scoring.min_trades),
            staleness_window=timedelta(days=settings.scoring.staleness_days),
            max_concurrency=settings.scoring.refresh_concurrency,
            cache_ttl_seconds=settings.scoring.cache_ttl_seconds,
        )
        for address in settings.tracked_wallets:
            self._registry.track(address)

        self._convergence_detector = ConvergenceDetector(
            window=window,
            min_wallet_score=settings.signal.min_wallet_score,
            threshold=settings.signal.convergence_threshold,
        )
        self._hot_wallet_detector = HotWalletDetector(window=window)
        self._chart_detector = ChartPatternDetector()
        self._aggregator = ConfidenceAggregator(
            weights=ConfidenceWeights(**settings.confidence.weights()),
            min_liquidity=settings.confidence.min_liquidity,
            min_history=settings.confidence.min_history,
        )

        self._breaker = CircuitBreaker(cooldown=timedelta(seconds=risk.breaker_cooldown_seconds))
        self._ledger = PortfolioLedger(
            risk.capital,
            max_position_size=risk.max_position_size,
            max_daily_loss=risk.max_daily_loss,
            breaker=self._breaker,
        )
        self._risk_gate = RiskGate(
            sizer=KellySizer(
                band=risk.kelly_band,
                min_samples=risk.kelly_min_samples,
                kelly_multiplier=risk.kelly_multiplier,
                max_fraction=risk.kelly_max_fraction,
                fallback_fraction=risk.fallback_fraction,
            ),
            velocity=SignalVelocityTracker(
                max_signals=risk.velocity_max_signals,
                window=timedelta(seconds=risk.velocity_window_seconds),
            ),
            max_position_size=risk.max_position_size,
            max_daily_loss=risk.max_daily_loss,
            concentration_limit=risk.concentration_limit,
        )
        self._lifecycle = PositionLifecycle(
            self._ledger,
            self._chart_detector.classifier,
            stop_loss_pct=settings.position.stop_loss_pct,
            take_profit_pct=settings.position.take_profit_pct,
            trailing_arm_pct=settings.position.trailing_arm_pct,
            trailing_drop_pct=settings.position.trailing_drop_pct,
            stale_after=timedelta(hours=settings.position.stale_hours),
            stale_min_profit_pct=settings.position.stale_min_profit_pct,
            exit_order=self._submit_exit,
        )
        self._hooks = hooks or NotificationHooks()
        self._formatter = PositionAlertFormatter()

        # Infrastructure (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._evaluation_task: asyncio.Task[None] | None = None
        self._monitor_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def hooks(self) -> NotificationHooks:
        return self._hooks

    @property
    def ledger(self) -> PortfolioLedger:
        return self._ledger

    @property
    def registry(self) -> WalletRegistry:
        return self._registry

    async def portfolio_snapshot(self, now: datetime | None = None) -> PortfolioState:
        """Read-only portfolio state for dashboards and persistence."""
        return await self._ledger.snapshot(now)

    async def start(self) -> None:
        """Start the pipeline.

        Connects the cache and database, restores realized outcomes and
        launches the evaluation and monitor loops.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline (dry_run=%s)...", self._dry_run)

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops both loops and cleans up resources. Open positions stay in
        the ledger.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize cache and storage."""
        settings = self._settings

        if settings.redis.cache_enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            self._registry.attach_cache(self._redis)

        if settings.database.enabled:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager.from_settings(settings.database)
            await self._db_manager.init_schema_async()
            await self._restore_portfolio(datetime.now(UTC))
        else:
            logger.warning("No database configured; positions and signals are not persisted")

    async def _restore_portfolio(self, now: datetime) -> None:
        """Rebuild the ledger from storage: capital, open positions, today's stats.

        Open positions are managed again from the first monitor tick, and a
        daily loss limit hit before the restart stays in force.
        """
        if not self._db_manager:
            return
        async with self._db_manager.get_async_session() as session:
            positions = PositionRepository(session)
            outcomes = await positions.load_outcomes(limit=OUTCOME_RESTORE_LIMIT)
            realized = await positions.total_realized_pnl()
            open_rows = await positions.list_open()
            daily = await DailyStatsRepository(session).get(now.date())

        restored = self._ledger.restore_outcomes(outcomes)
        capital = self._ledger.restore_realized_pnl(realized)
        reopened = self._ledger.restore_open([row.to_position() for row in open_rows], now)
        if daily is not None:
            self._ledger.restore_daily(daily.to_stats(), now)
        logger.info(
            "Restored portfolio: outcomes=%d open_positions=%d capital=%s",
            restored,
            reopened,
            capital,
        )

    async def _start_background_services(self) -> None:
        """Start the evaluation and monitor loops."""
        logger.debug("Starting evaluation loop...")
        self._evaluation_task = asyncio.create_task(self._run_evaluation_loop())
        logger.debug("Starting position monitor loop...")
        self._monitor_task = asyncio.create_task(self._run_monitor_loop())

    async def _run_evaluation_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.cycle.evaluation_interval_seconds
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._record_error(e)
                logger.error("Evaluation cycle error: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass
            except asyncio.CancelledError:
                break

    async def _run_monitor_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.cycle.price_tick_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                await self.monitor_positions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._record_error(e)
                logger.error("Position monitor error: %s", e)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._evaluation_task:
            self._evaluation_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._evaluation_task
            self._evaluation_task = None

        if self._monitor_task:
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
            self._monitor_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            self._registry.attach_cache(None)
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    def _record_error(self, error: Exception) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)

    # ------------------------------------------------------------------
    # Evaluation cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """Run one evaluation cycle.

        Steps:
        1. Refresh tracked wallets (concurrently) and rescore them
        2. Detect convergence and hot-wallet signals
        3. Fetch market and security data per candidate asset
        4. Classify the chart and aggregate confidence
        5. Drop candidates below the minimum confidence
        6. Gate, reserve, checkpoint the breaker, execute and open

        Args:
            now: Evaluation time (defaults to the current time).

        Returns:
            CycleReport describing the cycle.
        """
        now = now or datetime.now(UTC)
        settings = self._settings
        report = CycleReport()

        refresh = await self._registry.refresh(
            self._gateway,
            now=now,
            lookback=timedelta(hours=settings.cycle.lookback_hours),
        )
        report.wallets_refreshed = refresh.wallets_refreshed
        report.wallets_failed = refresh.wallets_failed
        await self._persist_wallet_scores()

        window = timedelta(minutes=settings.signal.window_minutes)
        trades = self._registry.recent_trades(since=now - window, until=now)
        eligible = self._registry.eligible_scores(min_score=settings.signal.min_wallet_score)
        hot = self._registry.hot_wallets(
            min_trades_24h=settings.signal.hot_min_trades_24h,
            min_win_rate=settings.signal.hot_min_win_rate,
            min_score=settings.signal.hot_min_score,
        )

        wallet_signals: dict[str, Signal] = {}
        detected = [
            *self._convergence_detector.detect(trades, eligible, now=now),
            *self._hot_wallet_detector.detect(trades, hot, now=now),
        ]
        for signal in detected:
            current = wallet_signals.get(signal.asset_id)
            if current is None or signal.strength > current.strength:
                wallet_signals[signal.asset_id] = signal

        # Assets any eligible wallet bought this window are chart candidates
        active_wallets: dict[str, set[str]] = {}
        for trade in trades:
            if trade.wallet_address in eligible:
                active_wallets.setdefault(trade.asset_id, set()).add(trade.wallet_address)

        asset_ids = sorted(set(wallet_signals) | set(active_wallets))
        report.signals = len(detected)
        self._stats.signals_detected += len(detected)
        if not asset_ids:
            logger.debug("No candidate assets this cycle")
            self._finish_cycle(now)
            return report

        inputs = await asyncio.gather(*(self._fetch_asset_inputs(asset_id) for asset_id in asset_ids))
        history = await self._ledger.outcomes()

        candidates: list[_Candidate] = []
        for asset_id, fetched in zip(asset_ids, inputs, strict=True):
            if fetched is None:
                report.assets_skipped += 1
                continue
            market, security = fetched
            wallet_signal = wallet_signals.get(asset_id)
            chart_wallets = active_wallets.get(asset_id) or (wallet_signal.wallets if wallet_signal else ())
            chart_signal = self._chart_detector.analyze(market, chart_wallets, now=now)
            signal = wallet_signal or chart_signal
            if signal is None:
                continue

            assessment = self._aggregator.assess(
                wallet_signal,
                chart_signal,
                security,
                market.price_change_24h,
                history=history,
                wallet_metrics=self._registry.metrics_for(signal.wallets),
            )
            candidates.append(
                _Candidate(
                    asset_id=asset_id,
                    signal=signal,
                    chart_signal=chart_signal,
                    market=market,
                    security=security,
                    assessment=assessment,
                )
            )

        # Most confident candidates get capital first
        candidates.sort(key=lambda c: (-c.assessment.confidence, c.asset_id))
        for candidate in candidates:
            await self._act_on_candidate(candidate, report, now=now)

        self._finish_cycle(now)
        logger.info(
            "Cycle complete: wallets=%d/%d signals=%d candidates=%d approved=%d rejected=%d "
            "filtered=%d opened=%d",
            report.wallets_refreshed,
            report.wallets_refreshed + report.wallets_failed,
            report.signals,
            len(candidates),
            report.approved,
            report.rejected,
            report.filtered,
            len(report.opened),
        )
        return report

    def _finish_cycle(self, now: datetime) -> None:
        self._stats.cycles_run += 1
        self._stats.last_cycle_at = now

    async def _fetch_asset_inputs(self, asset_id: str) -> tuple[MarketData, AssetSecurityInfo] | None:
        """Market data and security info for one asset, or None to skip it."""
        try:
            market, security = await asyncio.gather(
                self._gateway.fetch_market_data(asset_id),
                self._gateway.check_security(asset_id),
            )
        except DataUnavailableError as e:
            logger.warning("Skipping asset %s this cycle: %s", asset_id, e)
            return None
        return market, security

    async def _act_on_candidate(self, candidate: _Candidate, report: CycleReport, *, now: datetime) -> None:
        signal = candidate.signal
        assessment = candidate.assessment
        confidence = assessment.confidence

        if not signal.is_entry:
            logger.debug("Exit-only chart signal for %s; handled by the position monitor", signal.asset_id)
            return

        if confidence < self._settings.signal.min_confidence:
            report.filtered += 1
            logger.debug(
                "Signal for %s below confidence threshold (%.3f < %.3f)",
                signal.asset_id,
                confidence,
                self._settings.signal.min_confidence,
            )
            await self._persist_signal(signal, assessment, "filtered")
            return

        try:
            decision = await self._risk_gate.evaluate_and_reserve(signal, confidence, self._ledger, now=now)
        except InvariantViolationError as e:
            self._record_error(e)
            logger.critical("Ledger invariant violated for %s: %s", signal.asset_id, e)
            await self._persist_signal(signal, assessment, "failed")
            return

        if not isinstance(decision, Approved):
            report.rejected += 1
            self._stats.signals_rejected += 1
            await self._persist_signal(signal, assessment, "rejected", decision=decision)
            return

        report.approved += 1
        self._stats.signals_approved += 1
        position = await self._execute_and_open(candidate, decision, now=now)
        if position is None:
            return

        report.opened.append(position)
        await self._hooks.notify_opened(position)
        await self._persist_position(position)
        await self._persist_signal(signal, assessment, "approved", decision=decision, position=position)

    async def _execute_and_open(
        self,
        candidate: _Candidate,
        decision: Approved,
        *,
        now: datetime,
    ) -> Position | None:
        """Checkpoint the breaker, execute the entry and open the position.

        The reservation is released on every path that does not open.
        """
        signal = candidate.signal
        reservation_id = decision.reservation_id
        if reservation_id is None:
            raise ValueError(f"Approved decision for {signal.asset_id} carries no reservation")

        try:
            await self._ledger.ensure_trading_allowed(now)
        except CircuitBreakerTrippedError as e:
            await self._ledger.release(reservation_id)
            logger.warning("Entry for %s halted at checkpoint: %s", signal.asset_id, e)
            await self._persist_signal(
                signal,
                candidate.assessment,
                "rejected",
                decision=None,
                reject_reason=RejectReason.CIRCUIT_BREAKER_TRIPPED.value,
            )
            return None

        if self._dry_run:
            signature = f"{DRY_RUN_SIGNATURE_PREFIX}{uuid.uuid4().hex}"
            logger.info(
                "[DRY RUN] Paper entry: asset=%s size=%s price=%s",
                signal.asset_id,
                decision.size,
                candidate.market.price,
            )
        else:
            try:
                signature = await self._gateway.execute_trade(
                    signal.asset_id,
                    TradeSide.BUY,
                    decision.size,
                    self._settings.risk.max_slippage_bps,
                )
            except ExecutionFailedError as e:
                await self._ledger.release(reservation_id)
                self._stats.execution_failures += 1
                self._stats.last_error = str(e)
                logger.error("Entry execution failed for %s: %s", signal.asset_id, e)
                await self._persist_signal(signal, candidate.assessment, "failed", decision=decision)
                return None

        try:
            position = await self._lifecycle.open(
                signal,
                decision,
                entry_price=candidate.market.price,
                entry_signature=signature,
                now=now,
            )
        except InvariantViolationError as e:
            self._record_error(e)
            logger.critical("Could not open position for %s: %s", signal.asset_id, e)
            return None

        self._stats.positions_opened += 1
        return position

    # ------------------------------------------------------------------
    # Position monitor
    # ------------------------------------------------------------------

    async def monitor_positions(self, now: datetime | None = None) -> list[Position]:
        """Tick every open position against fresh market data.

        Exits are never blocked by the circuit breaker.

        Returns:
            Positions closed during this pass.
        """
        now = now or datetime.now(UTC)
        open_positions = await self._ledger.open_positions()
        if not open_positions:
            return []

        asset_ids = sorted({p.asset_id for p in open_positions})
        results = await asyncio.gather(
            *(self._gateway.fetch_market_data(asset_id) for asset_id in asset_ids),
            return_exceptions=True,
        )

        market_data: dict[str, MarketData] = {}
        for asset_id, result in zip(asset_ids, results, strict=True):
            if isinstance(result, DataUnavailableError):
                logger.warning("No price for open position on %s: %s", asset_id, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                market_data[asset_id] = result

        closed = await self._lifecycle.sweep(market_data, now)
        for position in closed:
            self._stats.positions_closed += 1
            await self._hooks.notify_closed(position)
            await self._persist_position(position)
        if closed:
            await self._persist_daily_stats(now)
        return closed

    async def _submit_exit(self, position: Position, price: Decimal, trigger: ExitTrigger) -> None:
        """Sell a position's holding before the ledger closes it.

        Each call submits one order; a failed exit is retried by the next
        price tick, not here.

        Raises:
            ExecutionFailedError: If the sell did not go through.
        """
        if self._dry_run:
            logger.info(
                "[DRY RUN] Paper exit: asset=%s trigger=%s price=%s",
                position.asset_id,
                trigger.value,
                price,
            )
            return

        amount = position.size * price / position.entry_price
        try:
            await self._gateway.execute_trade(
                position.asset_id,
                TradeSide.SELL,
                amount,
                self._settings.risk.max_slippage_bps,
            )
        except ExecutionFailedError as e:
            self._stats.execution_failures += 1
            self._stats.last_error = str(e)
            raise

    # ------------------------------------------------------------------
    # Emergency controls
    # ------------------------------------------------------------------

    async def emergency_stop(self, detail: str = "") -> None:
        """Halt new trading until rearm(). Open positions keep being managed."""
        await self._ledger.emergency_stop(detail=detail)

    async def signal_emergency(self, detail: str = "") -> None:
        """Trip the breaker for an external emergency (auto-resets after cooldown)."""
        await self._ledger.trip(TripReason.EXTERNAL_EMERGENCY, detail=detail)

    async def rearm(self) -> None:
        await self._ledger.rearm()
        logger.warning("Circuit breaker rearmed")

    async def daily_summary(self, now: datetime | None = None) -> FormattedAlert:
        """Formatted summary of today's realized results."""
        now = now or datetime.now(UTC)
        stats = await self._ledger.daily_stats(now)
        snapshot = await self._ledger.snapshot(now)
        return self._formatter.format_daily_summary(stats, snapshot.capital)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_position(self, position: Position) -> None:
        if not self._db_manager:
            return
        try:
            async with self._db_manager.get_async_session() as session:
                await PositionRepository(session).upsert(PositionDTO.from_position(position))
        except Exception as e:
            self._record_error(e)
            logger.warning("Failed to persist position %s: %s", position.position_id, e)

    async def _persist_signal(
        self,
        signal: Signal,
        assessment: ConfidenceAssessment,
        outcome: str,
        *,
        decision: RiskDecision | None = None,
        position: Position | None = None,
        reject_reason: str | None = None,
    ) -> None:
        if not self._db_manager:
            return

        size: Decimal | None = None
        if isinstance(decision, Approved):
            size = decision.size
        elif decision is not None:
            reject_reason = decision.reason.value

        dto = SignalRecordDTO(
            asset_id=signal.asset_id,
            kind=signal.kind.value,
            direction=signal.direction.value,
            wallets=sorted(signal.wallets),
            strength=_score(signal.strength),
            confidence=_score(assessment.confidence),
            decision=outcome,
            detected_at=signal.detected_at,
            reject_reason=reject_reason,
            size=size,
            position_id=position.position_id if position else None,
            components=assessment.to_dict(),
        )
        try:
            async with self._db_manager.get_async_session() as session:
                await SignalRepository(session).insert(dto)
        except Exception as e:
            self._record_error(e)
            logger.warning("Failed to persist signal for %s: %s", signal.asset_id, e)

    async def _persist_wallet_scores(self) -> None:
        if not self._db_manager:
            return
        records: Sequence[Any] = [
            record
            for address in self._registry.addresses
            if (record := self._registry.get(address)) is not None and record.score is not None
        ]
        if not records:
            return
        try:
            async with self._db_manager.get_async_session() as session:
                repo = WalletScoreRepository(session)
                for record in records:
                    await repo.upsert(WalletScoreDTO.from_record(record))
        except Exception as e:
            self._record_error(e)
            logger.warning("Failed to persist wallet scores: %s", e)

    async def _persist_daily_stats(self, now: datetime) -> None:
        if not self._db_manager:
            return
        stats = await self._ledger.daily_stats(now)
        try:
            async with self._db_manager.get_async_session() as session:
                await DailyStatsRepository(session).upsert(DailyStatsDTO.from_stats(stats))
        except Exception as e:
            self._record_error(e)
            logger.warning("Failed to persist daily stats: %s", e)

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
