"""Tests for the portfolio ledger."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from factories import ASSET, NOW, make_outcomes
from smart_money_copytrader.detector.models import SignalKind
from smart_money_copytrader.portfolio.ledger import InvariantViolationError, PortfolioLedger
from smart_money_copytrader.portfolio.models import DailyStats, ExitTrigger, Position, PositionStatus
from smart_money_copytrader.risk.breaker import CircuitBreakerTrippedError, Tripped, TripReason
from smart_money_copytrader.risk.models import (
    Approved,
    Rejected,
    RejectReason,
    SizingDecision,
    SizingMethod,
)


def _approve(size: str):
    def decide(state, outcomes):
        amount = Decimal(size)
        if state.available_capital < amount:
            return Rejected(reason=RejectReason.INSUFFICIENT_CAPITAL)
        return Approved(
            size=amount,
            confidence=0.8,
            sizing=SizingDecision(
                size=amount, method=SizingMethod.FALLBACK, fraction=0.0, samples=0
            ),
        )

    return decide


def _position(asset_id: str = ASSET, size: str = "100", entry: str = "1.00") -> Position:
    return Position(
        asset_id=asset_id,
        entry_price=Decimal(entry),
        entry_time=NOW,
        size=Decimal(size),
        stop_loss_price=Decimal(entry) * Decimal("0.9"),
        take_profit_price=Decimal(entry) * Decimal("1.5"),
        signal_kind=SignalKind.WALLET_CONVERGENCE,
        confidence=0.8,
    )


@pytest.fixture
def ledger() -> PortfolioLedger:
    return PortfolioLedger(
        Decimal("1000"),
        max_position_size=Decimal("100"),
        max_daily_loss=Decimal("50"),
        now=NOW,
    )


async def _open(ledger: PortfolioLedger, asset_id: str = ASSET, size: str = "100") -> Position:
    decision = await ledger.atomic_reserve(asset_id, _approve(size), now=NOW)
    assert isinstance(decision, Approved)
    return await ledger.open_position(decision.reservation_id, _position(asset_id, size))


class TestReservations:
    """Tests for atomic evaluate-and-reserve."""

    async def test_reserve_and_release(self, ledger: PortfolioLedger) -> None:
        """Test that a reservation holds capital until released."""
        decision = await ledger.atomic_reserve(ASSET, _approve("40"), now=NOW)

        assert isinstance(decision, Approved)
        state = await ledger.snapshot(NOW)
        assert state.available_capital == Decimal("960")
        assert state.has_pending(ASSET) is True

        assert await ledger.release(decision.reservation_id) is True
        assert await ledger.release(decision.reservation_id) is False
        assert (await ledger.snapshot(NOW)).available_capital == Decimal("1000")

    async def test_rejection_reserves_nothing(self, ledger: PortfolioLedger) -> None:
        """Test that a rejected decision leaves the ledger untouched."""
        decision = await ledger.atomic_reserve(
            ASSET, lambda state, outcomes: Rejected(reason=RejectReason.VELOCITY_LIMIT), now=NOW
        )

        assert isinstance(decision, Rejected)
        assert (await ledger.snapshot(NOW)).reserved_exposure == Decimal("0")

    async def test_decider_sees_outcomes(self, ledger: PortfolioLedger) -> None:
        """Test that restored outcomes are passed to the decider."""
        ledger.restore_outcomes(make_outcomes(3, 1))
        seen = []

        def decide(state, outcomes):
            seen.append(len(outcomes))
            return Rejected(reason=RejectReason.VELOCITY_LIMIT)

        await ledger.atomic_reserve(ASSET, decide, now=NOW)

        assert seen == [4]

    async def test_concurrent_reserves_never_exceed_capital(self) -> None:
        """Test that concurrent evaluations cannot over-commit capital."""
        ledger = PortfolioLedger(
            Decimal("250"),
            max_position_size=Decimal("100"),
            max_daily_loss=Decimal("50"),
            now=NOW,
        )

        def decide_for(asset_id: str):
            def decide(state, outcomes):
                if state.available_capital < Decimal("100"):
                    return Rejected(reason=RejectReason.INSUFFICIENT_CAPITAL)
                return Approved(
                    size=Decimal("100"),
                    confidence=0.8,
                    sizing=SizingDecision(
                        size=Decimal("100"),
                        method=SizingMethod.FALLBACK,
                        fraction=0.0,
                        samples=0,
                    ),
                )

            return decide

        decisions = await asyncio.gather(
            *(ledger.atomic_reserve(f"asset{i}", decide_for(f"asset{i}"), now=NOW) for i in range(10))
        )

        approved = [d for d in decisions if isinstance(d, Approved)]
        assert len(approved) == 2
        state = await ledger.snapshot(NOW)
        assert state.reserved_exposure <= state.capital

    async def test_oversized_approval_fails_closed(self, ledger: PortfolioLedger) -> None:
        """Test that an approval above the max position size halts trading."""
        with pytest.raises(InvariantViolationError):
            await ledger.atomic_reserve(ASSET, _approve("150"), now=NOW)

        state = await ledger.snapshot(NOW)
        assert isinstance(state.breaker, Tripped)
        assert state.breaker.reason == TripReason.INVARIANT_VIOLATION
        assert state.reserved_exposure == Decimal("0")

    async def test_second_reservation_same_asset_fails_closed(
        self, ledger: PortfolioLedger
    ) -> None:
        """Test that approving a second position on one asset is an invariant violation."""
        await ledger.atomic_reserve(ASSET, _approve("10"), now=NOW)

        def careless(state, outcomes):
            return Approved(
                size=Decimal("10"),
                confidence=0.8,
                sizing=SizingDecision(
                    size=Decimal("10"), method=SizingMethod.FALLBACK, fraction=0.0, samples=0
                ),
            )

        with pytest.raises(InvariantViolationError):
            await ledger.atomic_reserve(ASSET, careless, now=NOW)


class TestPositions:
    """Tests for opening, marking and closing positions."""

    async def test_open_position(self, ledger: PortfolioLedger) -> None:
        """Test that opening consumes the reservation."""
        position = await _open(ledger)

        state = await ledger.snapshot(NOW)
        assert state.open_exposure == Decimal("100")
        assert state.reserved_exposure == Decimal("0")
        assert list(state.open_positions) == [ASSET]
        assert position.status == PositionStatus.OPEN

    async def test_unknown_reservation_fails_closed(self, ledger: PortfolioLedger) -> None:
        """Test that opening without a reservation halts trading."""
        with pytest.raises(InvariantViolationError):
            await ledger.open_position("missing", _position())

        with pytest.raises(CircuitBreakerTrippedError):
            await ledger.ensure_trading_allowed(NOW)

    async def test_snapshot_is_a_copy(self, ledger: PortfolioLedger) -> None:
        """Test that mutating a snapshot does not affect the ledger."""
        await _open(ledger)
        state = await ledger.snapshot(NOW)

        state.open_positions[ASSET].size = Decimal("1")

        assert (await ledger.snapshot(NOW)).open_exposure == Decimal("100")

    async def test_mark_price(self, ledger: PortfolioLedger) -> None:
        """Test that marking updates peak and unrealized PnL."""
        position = await _open(ledger)

        marked = await ledger.mark_price(position.position_id, Decimal("1.20"))

        assert marked.peak_price == Decimal("1.20")
        assert marked.unrealized_pnl == Decimal("20")
        assert await ledger.mark_price("missing", Decimal("1")) is None

    async def test_close_books_pnl(self, ledger: PortfolioLedger) -> None:
        """Test that closing realizes PnL into capital and daily stats."""
        position = await _open(ledger)

        closed = await ledger.close_position(
            position.position_id,
            exit_price=Decimal("1.50"),
            trigger=ExitTrigger.TAKE_PROFIT,
            now=NOW + timedelta(hours=1),
        )

        assert closed.status == PositionStatus.CLOSED
        assert closed.realized_pnl == Decimal("50")
        assert closed.exit_trigger == ExitTrigger.TAKE_PROFIT
        state = await ledger.snapshot(NOW + timedelta(hours=1))
        assert state.capital == Decimal("1050")
        assert state.open_positions == {}
        assert state.closed_count == 1
        stats = await ledger.daily_stats(NOW + timedelta(hours=1))
        assert stats.trades == 1
        assert stats.wins == 1
        outcomes = await ledger.outcomes()
        assert outcomes[0].pnl == Decimal("50")

    async def test_close_is_idempotent(self, ledger: PortfolioLedger) -> None:
        """Test that concurrent closes book PnL exactly once."""
        position = await _open(ledger)

        results = await asyncio.gather(
            *(
                ledger.close_position(
                    position.position_id,
                    exit_price=Decimal("0.80"),
                    trigger=ExitTrigger.STOP_LOSS,
                    now=NOW,
                )
                for _ in range(3)
            )
        )

        assert sum(1 for r in results if r is not None) == 1
        assert (await ledger.snapshot(NOW)).capital == Decimal("980")
        assert len(await ledger.closed_positions()) == 1

    async def test_daily_loss_trips_breaker(self, ledger: PortfolioLedger) -> None:
        """Test that crossing the daily loss limit trips the breaker."""
        first = await _open(ledger, asset_id="a")
        second = await _open(ledger, asset_id="b")

        await ledger.close_position(
            first.position_id, exit_price=Decimal("0.70"), trigger=ExitTrigger.STOP_LOSS, now=NOW
        )
        assert not isinstance((await ledger.snapshot(NOW)).breaker, Tripped)

        await ledger.close_position(
            second.position_id, exit_price=Decimal("0.70"), trigger=ExitTrigger.STOP_LOSS, now=NOW
        )

        state = await ledger.snapshot(NOW)
        assert state.daily_realized_pnl == Decimal("-60")
        assert isinstance(state.breaker, Tripped)
        assert state.breaker.reason == TripReason.DAILY_LOSS_LIMIT

    async def test_daily_stats_roll_over(self, ledger: PortfolioLedger) -> None:
        """Test that a new UTC day starts fresh daily stats."""
        position = await _open(ledger)
        await ledger.close_position(
            position.position_id, exit_price=Decimal("0.9"), trigger=ExitTrigger.STOP_LOSS, now=NOW
        )

        stats = await ledger.daily_stats(NOW + timedelta(days=1))

        assert stats.trades == 0
        assert stats.trading_day == (NOW + timedelta(days=1)).date()


class TestBreakerControls:
    """Tests for the ledger's circuit breaker controls."""

    async def test_emergency_stop_and_rearm(self, ledger: PortfolioLedger) -> None:
        """Test halting and resuming new trading."""
        await ledger.emergency_stop(now=NOW, detail="operator")

        with pytest.raises(CircuitBreakerTrippedError):
            await ledger.ensure_trading_allowed(NOW + timedelta(days=1))

        await ledger.rearm()
        await ledger.ensure_trading_allowed(NOW)

    async def test_external_trip(self, ledger: PortfolioLedger) -> None:
        """Test tripping for an external emergency."""
        await ledger.trip(TripReason.EXTERNAL_EMERGENCY, now=NOW)

        state = await ledger.snapshot(NOW)
        assert isinstance(state.breaker, Tripped)
        assert state.breaker.manual is False

    async def test_exits_ignore_breaker(self, ledger: PortfolioLedger) -> None:
        """Test that open positions can close while trading is halted."""
        position = await _open(ledger)
        await ledger.emergency_stop(now=NOW)

        closed = await ledger.close_position(
            position.position_id, exit_price=Decimal("1.1"), trigger=ExitTrigger.STALE, now=NOW
        )

        assert closed is not None


class TestRestore:
    """Tests for rebuilding the ledger after a restart."""

    async def test_restore_open_positions(self, ledger: PortfolioLedger) -> None:
        """Test that stored open positions are managed and count as exposure."""
        ledger.restore_realized_pnl(Decimal("20"))

        restored = ledger.restore_open([_position("a1", "100"), _position("a2", "50")], NOW)

        state = await ledger.snapshot(NOW)
        assert restored == 2
        assert state.capital == Decimal("1020")
        assert state.open_exposure == Decimal("150")
        assert state.available_capital == Decimal("870")
        assert sorted(state.open_positions) == ["a1", "a2"]

    async def test_restored_position_can_close(self, ledger: PortfolioLedger) -> None:
        """Test that a restored position goes through the normal close."""
        position = _position()
        ledger.restore_open([position], NOW)

        closed = await ledger.close_position(
            position.position_id, exit_price=Decimal("0.9"), trigger=ExitTrigger.STOP_LOSS, now=NOW
        )

        assert closed.realized_pnl == Decimal("-10")
        assert await ledger.open_positions() == []

    async def test_restore_skips_closed_rows(self, ledger: PortfolioLedger) -> None:
        """Test that only open positions are adopted."""
        position = _position()
        position.status = PositionStatus.CLOSED

        assert ledger.restore_open([position], NOW) == 0

    async def test_duplicate_stored_asset_fails_closed(self, ledger: PortfolioLedger) -> None:
        """Test that two stored open positions on one asset halt trading."""
        with pytest.raises(InvariantViolationError):
            ledger.restore_open([_position(), _position()], NOW)

        state = await ledger.snapshot(NOW)
        assert isinstance(state.breaker, Tripped)
        assert state.breaker.reason == TripReason.INVARIANT_VIOLATION

    async def test_restore_daily_loss_keeps_breaker_tripped(self, ledger: PortfolioLedger) -> None:
        """Test that a loss limit hit before the restart stays in force."""
        stats = DailyStats(trading_day=NOW.date())
        stats.record(Decimal("-60"))

        assert ledger.restore_daily(stats, NOW) is True

        state = await ledger.snapshot(NOW)
        assert state.daily_realized_pnl == Decimal("-60")
        assert isinstance(state.breaker, Tripped)
        assert state.breaker.reason == TripReason.DAILY_LOSS_LIMIT

    async def test_restore_daily_ignores_other_days(self, ledger: PortfolioLedger) -> None:
        """Test that yesterday's results do not count toward today."""
        stats = DailyStats(trading_day=(NOW - timedelta(days=1)).date())
        stats.record(Decimal("-60"))

        assert ledger.restore_daily(stats, NOW) is False

        state = await ledger.snapshot(NOW)
        assert state.daily_realized_pnl == Decimal(0)
        await ledger.ensure_trading_allowed(NOW)
