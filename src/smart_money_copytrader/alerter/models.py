"""Data models for formatted notifications."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FormattedAlert:
    """A notification rendered for every delivery channel.

    Attributes:
        title: Short headline.
        body: Channel-neutral summary text.
        discord_embed: Discord embed payload.
        telegram_markdown: Telegram MarkdownV2 text.
        plain_text: Plain text for generic channels and logs.
        links: Named links referenced by the alert.
    """

    title: str
    body: str
    discord_embed: dict[str, object]
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)
