"""Tests for capped fractional-Kelly position sizing."""

from decimal import Decimal

import pytest

from factories import make_outcomes
from smart_money_copytrader.risk.models import SizingMethod
from smart_money_copytrader.risk.sizing import KellySizer, kelly_fraction

CAPITAL = Decimal("1000")
MAX_POSITION = Decimal("500")


class TestKellyFraction:
    """Tests for the raw Kelly formula."""

    def test_positive_edge(self) -> None:
        """Test a favourable win rate and payoff."""
        assert kelly_fraction(0.75, 0.5, 0.5) == pytest.approx(0.5)

    def test_negative_edge(self) -> None:
        """Test that losing odds give a negative fraction."""
        assert kelly_fraction(0.2, 0.5, 0.5) < 0

    def test_no_wins(self) -> None:
        """Test that no observed win sizes to zero."""
        assert kelly_fraction(0.0, 0.0, 0.3) == 0.0


class TestKellySizer:
    """Tests for KellySizer."""

    def test_fallback_with_small_sample(self) -> None:
        """Test that fewer than 10 outcomes in band use the fixed fraction."""
        decision = KellySizer().size(
            0.8,
            make_outcomes(9, 0),
            capital=CAPITAL,
            max_position_size=Decimal("100"),
        )

        assert decision.method == SizingMethod.FALLBACK
        assert decision.samples == 9
        assert decision.size == Decimal("25.00")
        assert decision.kelly_fraction is None

    def test_fallback_bounded_by_capital_fraction(self) -> None:
        """Test that the fallback never exceeds the max fraction of capital."""
        decision = KellySizer().size(
            0.8, [], capital=Decimal("100"), max_position_size=Decimal("1000")
        )

        assert decision.method == SizingMethod.FALLBACK
        assert decision.size == Decimal("20.00")

    def test_outcomes_outside_band_ignored(self) -> None:
        """Test that only similarly-confident outcomes count."""
        decision = KellySizer().size(
            0.8,
            make_outcomes(20, 0, confidence=0.5),
            capital=CAPITAL,
            max_position_size=MAX_POSITION,
        )

        assert decision.method == SizingMethod.FALLBACK
        assert decision.samples == 0

    def test_quarter_kelly(self) -> None:
        """Test Kelly sizing with a quarter-Kelly multiplier."""
        outcomes = make_outcomes(
            15, 5, win_pnl=Decimal("50"), loss_pnl=Decimal("-50"), confidence=0.85
        )

        decision = KellySizer().size(
            0.8, outcomes, capital=CAPITAL, max_position_size=MAX_POSITION
        )

        assert decision.method == SizingMethod.KELLY
        assert decision.samples == 20
        assert decision.win_probability == pytest.approx(0.75)
        assert decision.kelly_fraction == pytest.approx(0.5)
        assert decision.fraction == pytest.approx(0.125)
        assert decision.size == Decimal("125.00")

    def test_kelly_capped_at_max_fraction(self) -> None:
        """Test that a large edge is capped at 20% of capital."""
        decision = KellySizer().size(
            0.8, make_outcomes(12, 0), capital=CAPITAL, max_position_size=MAX_POSITION
        )

        assert decision.fraction == pytest.approx(0.20)
        assert decision.size == Decimal("200.00")

    def test_kelly_capped_at_max_position(self) -> None:
        """Test that the absolute position cap applies."""
        decision = KellySizer().size(
            0.8,
            make_outcomes(12, 0),
            capital=Decimal("10000"),
            max_position_size=Decimal("100"),
        )

        assert decision.size == Decimal("100.00")

    def test_negative_edge_sizes_zero(self) -> None:
        """Test that a losing record sizes to zero."""
        outcomes = make_outcomes(2, 8, win_pnl=Decimal("10"), loss_pnl=Decimal("-10"))

        decision = KellySizer().size(
            0.8, outcomes, capital=CAPITAL, max_position_size=MAX_POSITION
        )

        assert decision.method == SizingMethod.KELLY
        assert decision.fraction == 0.0
        assert decision.size == Decimal("0.00")

    def test_no_capital(self) -> None:
        """Test that zero capital sizes to zero."""
        decision = KellySizer().size(
            0.8, [], capital=Decimal("0"), max_position_size=MAX_POSITION
        )
        assert decision.size == Decimal("0")

    def test_invalid_configuration(self) -> None:
        """Test rejecting out-of-range fractions."""
        with pytest.raises(ValueError):
            KellySizer(max_fraction=0)
        with pytest.raises(ValueError):
            KellySizer(fallback_fraction=1.5)
