"""Tests for the position alert formatter."""

from datetime import timedelta
from decimal import Decimal

import pytest

from factories import ASSET, NOW
from smart_money_copytrader.alerter.formatter import (
    COLOR_LOSS,
    COLOR_OPENED,
    COLOR_WIN,
    PositionAlertFormatter,
    escape_telegram_markdown,
    format_usd,
    truncate_address,
)
from smart_money_copytrader.detector.models import SignalKind
from smart_money_copytrader.portfolio.models import (
    DailyStats,
    ExitTrigger,
    Position,
    PositionStatus,
)


@pytest.fixture
def position() -> Position:
    return Position(
        asset_id=ASSET,
        entry_price=Decimal("1.00"),
        entry_time=NOW,
        size=Decimal("50"),
        stop_loss_price=Decimal("0.90"),
        take_profit_price=Decimal("1.50"),
        signal_kind=SignalKind.WALLET_CONVERGENCE,
        confidence=0.8,
        wallets=frozenset({"w1", "w2", "w3"}),
        entry_signature="sig",
    )


def _close(position: Position, exit_price: str, trigger: ExitTrigger) -> Position:
    price = Decimal(exit_price)
    position.mark(price)
    position.status = PositionStatus.CLOSED
    position.exit_price = price
    position.exit_time = NOW + timedelta(minutes=90)
    position.exit_trigger = trigger
    position.realized_pnl = (price - position.entry_price) * position.size / position.entry_price
    return position


class TestHelpers:
    """Tests for formatting helpers."""

    def test_truncate_address(self) -> None:
        """Test shortening long addresses."""
        assert truncate_address(ASSET) == "So11...1112"

    def test_truncate_short_address(self) -> None:
        """Test that short identifiers are left alone."""
        assert truncate_address("wallet_a") == "wallet_a"

    def test_format_usd(self) -> None:
        """Test USD formatting with separators."""
        assert format_usd(Decimal("12345.678")) == "$12,345.68"
        assert format_usd(Decimal("-5")) == "$-5.00"

    def test_escape_telegram_markdown(self) -> None:
        """Test escaping MarkdownV2 special characters."""
        assert escape_telegram_markdown("1.5 (x)") == "1\\.5 \\(x\\)"


class TestFormatOpened:
    """Tests for opened position alerts."""

    def test_detailed(self, position: Position) -> None:
        """Test the detailed opened alert."""
        alert = PositionAlertFormatter().format_opened(position)

        assert alert.title == "🟢 New Position Opened"
        assert "$50.00" in alert.body
        assert "80%" in alert.body
        assert alert.discord_embed["color"] == COLOR_OPENED
        field_names = [f["name"] for f in alert.discord_embed["fields"]]
        assert field_names == [
            "Token",
            "Entry Price",
            "Amount",
            "Confidence",
            "Take Profit",
            "Stop Loss",
            "Signal",
            "Wallets",
        ]
        assert "Take Profit: $1.500000 (+50.0%)" in alert.plain_text
        assert "Signal: Wallet Convergence" in alert.plain_text
        assert alert.links["token"].endswith(ASSET)

    def test_compact(self, position: Position) -> None:
        """Test that compact alerts omit targets and links text."""
        alert = PositionAlertFormatter(verbosity="compact").format_opened(position)

        field_names = [f["name"] for f in alert.discord_embed["fields"]]
        assert field_names == ["Token", "Entry Price", "Amount", "Confidence"]
        assert "[View Token]" not in alert.telegram_markdown

    def test_plain_text_heading(self, position: Position) -> None:
        """Test that the plain text heading drops the emoji."""
        alert = PositionAlertFormatter().format_opened(position)

        assert alert.plain_text.splitlines()[0] == "NEW POSITION OPENED"

    def test_telegram_links(self, position: Position) -> None:
        """Test that detailed Telegram messages carry links."""
        alert = PositionAlertFormatter().format_opened(position)

        assert alert.telegram_markdown.startswith("*🟢 New Position Opened*")
        assert "[View Chart](" in alert.telegram_markdown


class TestFormatClosed:
    """Tests for closed position alerts."""

    def test_win(self, position: Position) -> None:
        """Test a profitable close."""
        alert = PositionAlertFormatter().format_closed(
            _close(position, "1.20", ExitTrigger.TRAILING_STOP)
        )

        assert alert.title == "✅ Position Closed - WIN"
        assert alert.discord_embed["color"] == COLOR_WIN
        assert "PnL: $10.00 (+20.0%)" in alert.plain_text
        assert "Trigger: Trailing Stop" in alert.plain_text
        assert "Hold Time: 90 min" in alert.plain_text

    def test_loss(self, position: Position) -> None:
        """Test a losing close."""
        alert = PositionAlertFormatter().format_closed(
            _close(position, "0.90", ExitTrigger.STOP_LOSS)
        )

        assert alert.title == "❌ Position Closed - LOSS"
        assert alert.discord_embed["color"] == COLOR_LOSS
        assert alert.plain_text.splitlines()[0] == "POSITION CLOSED - LOSS"
        assert "Trigger: Stop Loss" in alert.plain_text


class TestFormatDailySummary:
    """Tests for the daily summary alert."""

    def test_positive_day(self) -> None:
        """Test a profitable day."""
        stats = DailyStats(trading_day=NOW.date())
        stats.record(Decimal("30"))
        stats.record(Decimal("-10"))

        alert = PositionAlertFormatter().format_daily_summary(stats, Decimal("1020"))

        assert alert.title == "📈 Portfolio Update 2026-10-18"
        assert "Capital: $1,020.00" in alert.plain_text
        assert "Win Rate: 1/2 (50.0%)" in alert.plain_text
        assert "Biggest Loss: $-10.00" in alert.plain_text
        assert alert.links == {}

    def test_flat_day(self) -> None:
        """Test a day without trades."""
        stats = DailyStats(trading_day=NOW.date())

        alert = PositionAlertFormatter().format_daily_summary(stats, Decimal("1000"))

        assert alert.title.startswith("➡️")
        assert alert.discord_embed["color"] == COLOR_WIN
