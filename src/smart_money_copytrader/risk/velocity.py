"""Per-source signal velocity tracking."""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable
from datetime import datetime, timedelta

DEFAULT_MAX_SIGNALS = 5
DEFAULT_WINDOW = timedelta(minutes=10)


class SignalVelocityTracker:
    """Counts approved signals per wallet inside a sliding window.

    A wallet behind too many approvals in a short window is more likely a
    malfunctioning or manipulated source than a run of good calls.
    """

    def __init__(
        self,
        *,
        max_signals: int = DEFAULT_MAX_SIGNALS,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        self._max_signals = max_signals
        self._window = window
        self._events: dict[str, deque[datetime]] = defaultdict(deque)

    def _prune(self, source: str, now: datetime) -> deque[datetime]:
        events = self._events[source]
        cutoff = now - self._window
        while events and events[0] <= cutoff:
            events.popleft()
        return events

    def count(self, source: str, now: datetime) -> int:
        return len(self._prune(source, now))

    def exceeded_by(self, sources: Iterable[str], now: datetime) -> list[str]:
        """Sources already at the limit; one more signal would exceed it."""
        return sorted(s for s in sources if self.count(s, now) >= self._max_signals)

    def record(self, sources: Iterable[str], now: datetime) -> None:
        for source in sources:
            self._prune(source, now).append(now)
