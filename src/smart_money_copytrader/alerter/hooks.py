"""Notification hooks for dashboards and alert channels.

Callbacks are fire-and-forget from the engine's point of view: they run
concurrently, and a failing callback is logged without affecting trading.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from smart_money_copytrader.portfolio.models import Position

logger = logging.getLogger(__name__)

PositionCallback = Callable[[Position], Awaitable[None] | None]


class NotificationHooks:
    """Registry of position event callbacks.

    Example:
        ```python
        hooks = NotificationHooks()
        hooks.on_new_signal_approved(lambda p: print(p.asset_id))
        await hooks.notify_opened(position)
        ```
    """

    def __init__(self) -> None:
        self._on_opened: list[PositionCallback] = []
        self._on_closed: list[PositionCallback] = []

    def on_new_signal_approved(self, callback: PositionCallback) -> PositionCallback:
        """Register a callback for newly opened positions."""
        self._on_opened.append(callback)
        return callback

    def on_position_closed(self, callback: PositionCallback) -> PositionCallback:
        """Register a callback for closed positions."""
        self._on_closed.append(callback)
        return callback

    async def notify_opened(self, position: Position) -> int:
        return await self._dispatch("on_new_signal_approved", self._on_opened, position)

    async def notify_closed(self, position: Position) -> int:
        return await self._dispatch("on_position_closed", self._on_closed, position)

    async def _dispatch(
        self,
        event: str,
        callbacks: list[PositionCallback],
        position: Position,
    ) -> int:
        """Run every callback; returns how many failed."""
        if not callbacks:
            return 0

        async def _invoke(callback: PositionCallback) -> None:
            result = callback(position)
            if inspect.isawaitable(result):
                await result

        results = await asyncio.gather(
            *(_invoke(cb) for cb in callbacks),
            return_exceptions=True,
        )
        failures = 0
        for callback, result in zip(callbacks, results, strict=True):
            if isinstance(result, Exception):
                failures += 1
                logger.warning(
                    "Notification hook %s failed for %s (%s): %s",
                    getattr(callback, "__name__", repr(callback)),
                    event,
                    position.position_id,
                    result,
                )
        return failures
