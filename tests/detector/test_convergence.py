"""Tests for wallet convergence detection."""

from datetime import timedelta

import pytest

from factories import ASSET, NOW, make_trade
from smart_money_copytrader.detector.convergence import (
    ConvergenceDetector,
    convergence_strength,
)
from smart_money_copytrader.detector.models import Direction, SignalKind
from smart_money_copytrader.ingestor.models import TradeSide

SCORES = {"w1": 0.85, "w2": 0.90, "w3": 0.82, "w4": 0.88, "low": 0.60}


def _buys(*wallets: str, minutes_ago: int = 10, asset_id: str = ASSET) -> list:
    return [
        make_trade(
            trade_id=f"{wallet}-{asset_id}-{minutes_ago}",
            wallet=wallet,
            asset_id=asset_id,
            timestamp=NOW - timedelta(minutes=minutes_ago),
        )
        for wallet in wallets
    ]


class TestConvergenceStrength:
    """Tests for the strength curve."""

    def test_at_threshold(self) -> None:
        """Test that exactly the threshold gives the base strength."""
        assert convergence_strength(3) == pytest.approx(0.80)

    def test_extra_wallets(self) -> None:
        """Test the per-wallet increment above the threshold."""
        assert convergence_strength(4) == pytest.approx(0.85)
        assert convergence_strength(5) == pytest.approx(0.90)

    def test_capped(self) -> None:
        """Test that strength never exceeds 0.95."""
        assert convergence_strength(50) == pytest.approx(0.95)


class TestConvergenceDetector:
    """Tests for ConvergenceDetector."""

    def test_three_skilled_wallets_converge(self) -> None:
        """Test three skilled wallets buying within 40 minutes."""
        trades = (
            _buys("w1", minutes_ago=40)
            + _buys("w2", minutes_ago=20)
            + _buys("w3", minutes_ago=1)
        )

        signals = ConvergenceDetector().detect(trades, SCORES, now=NOW)

        assert len(signals) == 1
        signal = signals[0]
        assert signal.asset_id == ASSET
        assert signal.kind == SignalKind.WALLET_CONVERGENCE
        assert signal.direction == Direction.ENTER
        assert signal.wallets == frozenset({"w1", "w2", "w3"})
        assert signal.strength == pytest.approx(0.80)
        assert signal.detected_at == NOW

    def test_below_threshold(self) -> None:
        """Test that two wallets are not enough."""
        signals = ConvergenceDetector().detect(_buys("w1", "w2"), SCORES, now=NOW)
        assert signals == []

    def test_low_score_wallets_do_not_count(self) -> None:
        """Test that wallets at or below the score floor are ignored."""
        scores = dict(SCORES, w3=0.8)
        trades = _buys("w1", "w2", "w3", "low")

        signals = ConvergenceDetector().detect(trades, scores, now=NOW)

        assert signals == []

    def test_unscored_wallets_do_not_count(self) -> None:
        """Test that wallets missing from the score map are ignored."""
        trades = _buys("w1", "w2", "stranger")
        assert ConvergenceDetector().detect(trades, SCORES, now=NOW) == []

    def test_repeat_buys_count_once(self) -> None:
        """Test that one wallet buying repeatedly is counted once."""
        trades = _buys("w1", "w2") + _buys("w1", minutes_ago=5) + _buys("w1", minutes_ago=3)
        assert ConvergenceDetector().detect(trades, SCORES, now=NOW) == []

    def test_window_excludes_old_trades(self) -> None:
        """Test that trades at or before the window start are ignored."""
        trades = _buys("w1", "w2") + _buys("w3", minutes_ago=60)
        assert ConvergenceDetector().detect(trades, SCORES, now=NOW) == []

    def test_sells_ignored(self) -> None:
        """Test that sell-side trades never converge."""
        trades = _buys("w1", "w2") + [
            make_trade(trade_id="sell", wallet="w3", side=TradeSide.SELL, timestamp=NOW)
        ]
        assert ConvergenceDetector().detect(trades, SCORES, now=NOW) == []

    def test_assets_grouped_separately(self) -> None:
        """Test one signal per converging asset."""
        trades = _buys("w1", "w2", "w3", "w4") + _buys("w1", "w2", asset_id="other")

        signals = ConvergenceDetector().detect(trades, SCORES, now=NOW)

        assert [s.asset_id for s in signals] == [ASSET]
        assert signals[0].strength == pytest.approx(0.85)
        assert signals[0].factors["wallet_count"] == 4.0

    def test_custom_threshold(self) -> None:
        """Test a lower convergence threshold."""
        detector = ConvergenceDetector(threshold=2, window=timedelta(minutes=15))
        signals = detector.detect(_buys("w1", "w2"), SCORES, now=NOW)

        assert len(signals) == 1
        assert signals[0].strength == pytest.approx(0.80)

    def test_invalid_threshold(self) -> None:
        """Test that a threshold below one is rejected."""
        with pytest.raises(ValueError):
            ConvergenceDetector(threshold=0)
