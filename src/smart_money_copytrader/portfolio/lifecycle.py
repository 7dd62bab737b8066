"""Position lifecycle: entry construction and the five-trigger exit machine.

States are Open and Closed; Closed is terminal. On every price tick the
position's peak and unrealized PnL are refreshed, then exit triggers are
evaluated in strict priority order and the first one that holds fires.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from smart_money_copytrader.detector.chart import ChartPatternClassifier
from smart_money_copytrader.detector.models import ChartAction, Signal
from smart_money_copytrader.ingestor.models import MarketData
from smart_money_copytrader.ingestor.sources import ExecutionFailedError
from smart_money_copytrader.portfolio.ledger import PortfolioLedger
from smart_money_copytrader.portfolio.models import ExitTrigger, Position
from smart_money_copytrader.risk.models import Approved

logger = logging.getLogger(__name__)

ExitOrder = Callable[[Position, Decimal, ExitTrigger], Awaitable[None]]

# Default configuration
DEFAULT_STOP_LOSS_PCT = 0.10
DEFAULT_TAKE_PROFIT_PCT = 0.50
DEFAULT_TRAILING_ARM_PCT = 0.30
DEFAULT_TRAILING_DROP_PCT = 0.15
DEFAULT_STALE_AFTER = timedelta(hours=24)
DEFAULT_STALE_MIN_PROFIT_PCT = 0.05


class PositionLifecycle:
    """Opens positions on approval and closes them when an exit fires.

    Exit priority (first true condition wins):

        1. stop-loss: price <= stop-loss price
        2. take-profit: price >= take-profit price
        3. chart reversal: chart classification is StrongSell
        4. stale: older than ``stale_after`` and gain below ``stale_min_profit_pct``
        5. trailing stop: peak gain reached ``trailing_arm_pct`` and price
           fell ``trailing_drop_pct`` from that peak

    Exits never consult the circuit breaker; open positions can always close.

    When an ``exit_order`` is given it is awaited before the ledger close.
    If it raises ``ExecutionFailedError`` the holding was not sold, so the
    position stays open and the exit is retried on the next tick.
    """

    def __init__(
        self,
        ledger: PortfolioLedger,
        classifier: ChartPatternClassifier | None = None,
        *,
        stop_loss_pct: float = DEFAULT_STOP_LOSS_PCT,
        take_profit_pct: float = DEFAULT_TAKE_PROFIT_PCT,
        trailing_arm_pct: float = DEFAULT_TRAILING_ARM_PCT,
        trailing_drop_pct: float = DEFAULT_TRAILING_DROP_PCT,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        stale_min_profit_pct: float = DEFAULT_STALE_MIN_PROFIT_PCT,
        exit_order: ExitOrder | None = None,
    ) -> None:
        if not 0 < stop_loss_pct < 1:
            raise ValueError("stop_loss_pct must be in (0, 1)")
        if take_profit_pct <= 0:
            raise ValueError("take_profit_pct must be positive")
        self._ledger = ledger
        self._classifier = classifier or ChartPatternClassifier()
        self._stop_loss_pct = Decimal(str(stop_loss_pct))
        self._take_profit_pct = Decimal(str(take_profit_pct))
        self._trailing_arm_pct = trailing_arm_pct
        self._trailing_drop_pct = trailing_drop_pct
        self._stale_after = stale_after
        self._stale_min_profit_pct = stale_min_profit_pct
        self._exit_order = exit_order
        # Positions with an exit order in flight
        self._exiting: set[str] = set()

    def build_position(
        self,
        signal: Signal,
        decision: Approved,
        *,
        entry_price: Decimal,
        entry_signature: str,
        now: datetime,
    ) -> Position:
        """Construct the Position for an approved signal at its fill price."""
        stop_loss = entry_price * (1 - self._stop_loss_pct)
        if signal.chart is not None and signal.chart.target_multiple is not None:
            take_profit = entry_price * Decimal(str(signal.chart.target_multiple))
        else:
            take_profit = entry_price * (1 + self._take_profit_pct)

        return Position(
            asset_id=signal.asset_id,
            entry_price=entry_price,
            entry_time=now,
            size=decision.size,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            signal_kind=signal.kind,
            confidence=decision.confidence,
            wallets=signal.wallets,
            entry_signature=entry_signature,
        )

    async def open(
        self,
        signal: Signal,
        decision: Approved,
        *,
        entry_price: Decimal,
        entry_signature: str,
        now: datetime | None = None,
    ) -> Position:
        """Open a position against the reservation held by ``decision``."""
        if decision.reservation_id is None:
            raise ValueError("Approved decision carries no reservation")
        position = self.build_position(
            signal,
            decision,
            entry_price=entry_price,
            entry_signature=entry_signature,
            now=now or datetime.now(UTC),
        )
        return await self._ledger.open_position(decision.reservation_id, position)

    def evaluate_exit(
        self,
        position: Position,
        chart_action: ChartAction | None,
        now: datetime,
    ) -> ExitTrigger | None:
        """Return the highest-priority exit trigger that holds, if any."""
        price = position.current_price

        if price <= position.stop_loss_price:
            return ExitTrigger.STOP_LOSS

        if price >= position.take_profit_price:
            return ExitTrigger.TAKE_PROFIT

        if chart_action == ChartAction.STRONG_SELL:
            return ExitTrigger.CHART_REVERSAL

        age = now - position.entry_time
        if age > self._stale_after and position.gain_pct < self._stale_min_profit_pct:
            return ExitTrigger.STALE

        if (
            position.peak_gain_pct >= self._trailing_arm_pct
            and position.drop_from_peak_pct >= self._trailing_drop_pct
        ):
            return ExitTrigger.TRAILING_STOP

        return None

    async def on_price_tick(
        self,
        position_id: str,
        price: Decimal,
        chart_action: ChartAction | None = None,
        now: datetime | None = None,
    ) -> Position | None:
        """Refresh a position at ``price`` and close it if an exit fires.

        Returns:
            The closed position, or None if it stays open, its exit order
            failed, or it was already closed by a concurrent evaluation.
        """
        now = now or datetime.now(UTC)
        position = await self._ledger.mark_price(position_id, price)
        if position is None:
            return None

        trigger = self.evaluate_exit(position, chart_action, now)
        if trigger is None or position_id in self._exiting:
            return None

        logger.info(
            "Exit triggered: position=%s asset=%s trigger=%s price=%s peak=%s",
            position.position_id,
            position.asset_id,
            trigger.value,
            price,
            position.peak_price,
        )
        self._exiting.add(position_id)
        try:
            if self._exit_order is not None:
                try:
                    await self._exit_order(position, price, trigger)
                except ExecutionFailedError as e:
                    logger.error(
                        "Exit order for position %s failed, keeping it open: %s",
                        position_id,
                        e,
                    )
                    return None
            return await self._ledger.close_position(
                position_id, exit_price=price, trigger=trigger, now=now
            )
        finally:
            self._exiting.discard(position_id)

    async def sweep(
        self,
        market_data: Mapping[str, MarketData],
        now: datetime | None = None,
    ) -> list[Position]:
        """Tick every open position that has fresh market data.

        Args:
            market_data: Latest market snapshot per asset id.
            now: Evaluation time.

        Returns:
            Positions closed during this sweep.
        """
        now = now or datetime.now(UTC)
        closed: list[Position] = []
        for position in await self._ledger.open_positions():
            market = market_data.get(position.asset_id)
            if market is None:
                logger.debug("No market data for open position %s", position.position_id)
                continue
            action = self._classifier.classify(market).action
            result = await self.on_price_tick(position.position_id, market.price, action, now)
            if result is not None:
                closed.append(result)
        return closed
