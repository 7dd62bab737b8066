"""Capped fractional-Kelly position sizing."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING

from smart_money_copytrader.risk.models import SizingDecision, SizingMethod

if TYPE_CHECKING:
    from smart_money_copytrader.portfolio.models import OutcomeSample

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CONFIDENCE_BAND = 0.1
DEFAULT_MIN_SAMPLES = 10
DEFAULT_KELLY_MULTIPLIER = 0.25  # quarter Kelly
DEFAULT_MAX_FRACTION = 0.20
DEFAULT_FALLBACK_FRACTION = 0.25  # of max position size

_CENTS = Decimal("0.01")


def kelly_fraction(win_probability: float, avg_win: float, avg_loss: float) -> float:
    """Kelly fraction f = (p * avg_win - (1 - p) * avg_loss) / avg_win.

    Returns 0.0 when there is no observed win to size against.
    """
    if avg_win <= 0:
        return 0.0
    return (win_probability * avg_win - (1.0 - win_probability) * avg_loss) / avg_win


class KellySizer:
    """Sizes positions from the outcomes of similarly-confident signals.

    Outcomes whose confidence lies within ``band`` of the current confidence
    are the sample. With at least ``min_samples`` of them:

        f = kelly_fraction(p, avg_win, avg_loss) * kelly_multiplier
        f = clamp(f, 0, max_fraction)
        size = min(f * capital, max_position_size)

    With fewer, a conservative ``fallback_fraction`` of the max position
    size is used instead, still bounded by ``max_fraction`` of capital.
    """

    def __init__(
        self,
        *,
        band: float = DEFAULT_CONFIDENCE_BAND,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        kelly_multiplier: float = DEFAULT_KELLY_MULTIPLIER,
        max_fraction: float = DEFAULT_MAX_FRACTION,
        fallback_fraction: float = DEFAULT_FALLBACK_FRACTION,
    ) -> None:
        if not 0 < max_fraction <= 1:
            raise ValueError("max_fraction must be in (0, 1]")
        if not 0 < fallback_fraction <= 1:
            raise ValueError("fallback_fraction must be in (0, 1]")
        self._band = band
        self._min_samples = min_samples
        self._kelly_multiplier = kelly_multiplier
        self._max_fraction = max_fraction
        self._fallback_fraction = fallback_fraction

    def size(
        self,
        confidence: float,
        outcomes: Sequence[OutcomeSample],
        *,
        capital: Decimal,
        max_position_size: Decimal,
    ) -> SizingDecision:
        """Compute the position size for a signal.

        Args:
            confidence: Confidence of the signal being sized.
            outcomes: Realized outcomes of previously executed signals.
            capital: Total portfolio capital.
            max_position_size: Absolute cap on any single position.

        Returns:
            SizingDecision; ``size`` may be 0 when Kelly finds no edge.
        """
        if capital <= 0:
            return SizingDecision(
                size=Decimal(0), method=SizingMethod.FALLBACK, fraction=0.0, samples=0
            )

        band = [o for o in outcomes if abs(o.confidence - confidence) <= self._band + 1e-9]
        cap_by_capital = capital * Decimal(str(self._max_fraction))

        if len(band) < self._min_samples:
            size = min(max_position_size * Decimal(str(self._fallback_fraction)), cap_by_capital)
            size = size.quantize(_CENTS, rounding=ROUND_DOWN)
            logger.debug(
                "Fallback sizing: %d/%d samples in band, size=%s",
                len(band),
                self._min_samples,
                size,
            )
            return SizingDecision(
                size=size,
                method=SizingMethod.FALLBACK,
                fraction=float(size / capital),
                samples=len(band),
            )

        wins = [o.return_pct for o in band if o.is_win]
        losses = [abs(o.return_pct) for o in band if not o.is_win]
        p = len(wins) / len(band)
        avg_win = sum(wins) / len(wins) if wins else 0.0
        avg_loss = sum(losses) / len(losses) if losses else 0.0

        raw = kelly_fraction(p, avg_win, avg_loss)
        fraction = max(0.0, min(self._max_fraction, raw * self._kelly_multiplier))
        size = min(capital * Decimal(str(fraction)), max_position_size).quantize(
            _CENTS, rounding=ROUND_DOWN
        )

        logger.debug(
            "Kelly sizing: samples=%d p=%.2f avg_win=%.3f avg_loss=%.3f f=%.4f size=%s",
            len(band),
            p,
            avg_win,
            avg_loss,
            fraction,
            size,
        )
        return SizingDecision(
            size=size,
            method=SizingMethod.KELLY,
            fraction=fraction,
            samples=len(band),
            win_probability=p,
            kelly_fraction=raw,
        )
