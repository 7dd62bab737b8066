"""Position alert formatter for multi-channel delivery.

This module turns opened and closed Position objects into human-readable
alert messages for Discord, Telegram, and plain text.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from smart_money_copytrader.alerter.models import FormattedAlert
from smart_money_copytrader.portfolio.models import DailyStats, Position

# Explorer URLs
TOKEN_EXPLORER_URL = "https://solscan.io/token/{asset_id}"
CHART_URL = "https://dexscreener.com/solana/{asset_id}"

# Discord embed colors (decimal values)
COLOR_OPENED = 3447003  # Blue (#3498DB)
COLOR_WIN = 3066993  # Green (#2ECC71)
COLOR_LOSS = 15158332  # Red (#E74C3C)

TRIGGER_LABELS = {
    "stop_loss": "Stop Loss",
    "take_profit": "Take Profit",
    "chart_reversal": "Chart Reversal",
    "stale": "Stale Position",
    "trailing_stop": "Trailing Stop",
}

_TELEGRAM_SPECIAL_CHARS = "_*[]()~`>#+-=|{}.!"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to 1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_usd(amount: Decimal) -> str:
    """Format a USD amount with commas and 2 decimal places."""
    return f"${amount:,.2f}"


def format_signed_pct(value: float) -> str:
    return f"{value:+.1%}"


def escape_telegram_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    for char in _TELEGRAM_SPECIAL_CHARS:
        text = text.replace(char, f"\\{char}")
    return text


def _pct_from_entry(price: Decimal, entry: Decimal) -> float:
    return float((price - entry) / entry)


class PositionAlertFormatter:
    """Formats position events into multi-channel alert messages.

    Supports two verbosity levels:
    - compact: Essential info only (asset, size, price)
    - detailed: Full context (targets, wallets, links)
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "detailed",
    ) -> None:
        self.verbosity = verbosity

    def _build_links(self, asset_id: str) -> dict[str, str]:
        return {
            "token": TOKEN_EXPLORER_URL.format(asset_id=asset_id),
            "chart": CHART_URL.format(asset_id=asset_id),
        }

    def _opened_lines(self, position: Position, asset_short: str) -> list[tuple[str, str]]:
        fields = [
            ("Token", asset_short),
            ("Entry Price", f"${position.entry_price:.6f}"),
            ("Amount", format_usd(position.size)),
            ("Confidence", f"{position.confidence:.0%}"),
        ]
        if self.verbosity == "detailed":
            tp_pct = _pct_from_entry(position.take_profit_price, position.entry_price)
            sl_pct = _pct_from_entry(position.stop_loss_price, position.entry_price)
            fields.extend(
                [
                    ("Take Profit", f"${position.take_profit_price:.6f} ({format_signed_pct(tp_pct)})"),
                    ("Stop Loss", f"${position.stop_loss_price:.6f} ({format_signed_pct(sl_pct)})"),
                    ("Signal", position.signal_kind.value.replace("_", " ").title()),
                    ("Wallets", str(len(position.wallets))),
                ]
            )
        return fields

    def _closed_lines(self, position: Position, asset_short: str) -> list[tuple[str, str]]:
        pnl = position.realized_pnl or Decimal(0)
        exit_price = position.exit_price if position.exit_price is not None else position.current_price
        pnl_pct = _pct_from_entry(exit_price, position.entry_price)
        trigger = position.exit_trigger.value if position.exit_trigger else ""
        fields = [
            ("Token", asset_short),
            ("PnL", f"{format_usd(pnl)} ({format_signed_pct(pnl_pct)})"),
            ("Trigger", TRIGGER_LABELS.get(trigger, trigger)),
        ]
        if self.verbosity == "detailed":
            fields.extend(
                [
                    ("Entry", f"${position.entry_price:.6f}"),
                    ("Exit", f"${exit_price:.6f}"),
                    ("Peak", f"${position.peak_price:.6f}"),
                ]
            )
            if position.exit_time is not None:
                hold_minutes = int(position.age_seconds(position.exit_time) // 60)
                fields.append(("Hold Time", f"{hold_minutes} min"))
        return fields

    def format_opened(self, position: Position) -> FormattedAlert:
        """Format a newly opened position.

        Args:
            position: The position that was just opened.

        Returns:
            FormattedAlert with all channel formats.
        """
        asset_short = truncate_address(position.asset_id)
        title = "🟢 New Position Opened"
        fields = self._opened_lines(position, asset_short)
        links = self._build_links(position.asset_id)
        body = (
            f"Opened {format_usd(position.size)} on {asset_short} "
            f"@ ${position.entry_price:.6f} (confidence {position.confidence:.0%})"
        )
        return self._render(title, body, fields, links, COLOR_OPENED)

    def format_closed(self, position: Position) -> FormattedAlert:
        """Format a closed position with its realized result."""
        asset_short = truncate_address(position.asset_id)
        pnl = position.realized_pnl or Decimal(0)
        is_win = pnl > 0
        title = f"{'✅' if is_win else '❌'} Position Closed - {'WIN' if is_win else 'LOSS'}"
        fields = self._closed_lines(position, asset_short)
        links = self._build_links(position.asset_id)
        body = f"Closed {asset_short}: {format_usd(pnl)}"
        return self._render(title, body, fields, links, COLOR_WIN if is_win else COLOR_LOSS)

    def format_daily_summary(self, stats: DailyStats, capital: Decimal) -> FormattedAlert:
        """Format the realized results of one trading day."""
        emoji = "📈" if stats.realized_pnl > 0 else "📉" if stats.realized_pnl < 0 else "➡️"
        title = f"{emoji} Portfolio Update {stats.trading_day.isoformat()}"
        fields = [
            ("Capital", format_usd(capital)),
            ("Daily PnL", format_usd(stats.realized_pnl)),
            ("Win Rate", f"{stats.wins}/{stats.trades} ({stats.win_rate:.1%})"),
            ("Biggest Win", format_usd(stats.biggest_win)),
            ("Biggest Loss", format_usd(stats.biggest_loss)),
        ]
        body = f"{stats.trades} trades, daily PnL {format_usd(stats.realized_pnl)}"
        color = COLOR_WIN if stats.realized_pnl >= 0 else COLOR_LOSS
        return self._render(title, body, fields, {}, color)

    def _render(
        self,
        title: str,
        body: str,
        fields: list[tuple[str, str]],
        links: dict[str, str],
        color: int,
    ) -> FormattedAlert:
        return FormattedAlert(
            title=title,
            body=body,
            discord_embed=self._build_discord_embed(title, fields, links, color),
            telegram_markdown=self._build_telegram_markdown(title, fields, links),
            plain_text=self._build_plain_text(title, fields, links),
            links=links,
        )

    def _build_discord_embed(
        self,
        title: str,
        fields: list[tuple[str, str]],
        links: dict[str, str],
        color: int,
    ) -> dict[str, object]:
        """Build Discord-optimized embed format."""
        embed: dict[str, object] = {
            "title": title,
            "color": color,
            "fields": [{"name": name, "value": value, "inline": True} for name, value in fields],
            "footer": {"text": "Smart Money Copytrader"},
        }
        if "chart" in links:
            embed["url"] = links["chart"]
        return embed

    def _build_telegram_markdown(
        self,
        title: str,
        fields: list[tuple[str, str]],
        links: dict[str, str],
    ) -> str:
        """Build Telegram-optimized markdown format."""
        lines = [f"*{escape_telegram_markdown(title)}*", ""]
        for name, value in fields:
            lines.append(f"*{escape_telegram_markdown(name)}:* {escape_telegram_markdown(value)}")

        if links and self.verbosity == "detailed":
            lines.append("")
            if "token" in links:
                lines.append(f"[View Token]({links['token']})")
            if "chart" in links:
                lines.append(f"[View Chart]({links['chart']})")
        return "\n".join(lines)

    def _build_plain_text(
        self,
        title: str,
        fields: list[tuple[str, str]],
        links: dict[str, str],
    ) -> str:
        """Build plain text format for generic channels."""
        heading = title.split(" ", 1)[-1].upper()
        lines = [heading, "=" * 30, ""]
        lines.extend(f"{name}: {value}" for name, value in fields)

        if links:
            lines.append("")
            for name, url in links.items():
                lines.append(f"{name.title()}: {url}")
        return "\n".join(lines)
