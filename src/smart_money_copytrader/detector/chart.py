"""Chart-pattern classification from multi-horizon price changes.

The classifier is a fixed decision tree over the 5-minute, 1-hour and
24-hour price changes (in percent) and the 24h volume/liquidity ratio.
Rules are evaluated top to bottom and the first match wins:

    1. StrongBuy  multi-horizon uptrend   5m > 5, 1h > 10, 24h > 20, vol > 2x liq
    2. Buy        pullback in uptrend     -5 < 5m < -2, 24h > 10
    3. Buy        consolidation breakout  |5m| < 1, |1h| < 2, vol > 1.5x liq
    4. StrongBuy  early pump              5m > 8, 1h > 15, 24h < 30, vol > liq
    5. Sell       overbought surge        5m > 20, 1h > 50
    6. StrongSell coordinated decline     5m < -5, 1h < -10, 24h < -15
    7. Buy        volume spike            vol > 3x liq, 5m > 3
    8. Hold       no distinguishing pattern
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from smart_money_copytrader.detector.models import (
    ChartAction,
    ChartClassification,
    ChartPattern,
    Signal,
    SignalKind,
)
from smart_money_copytrader.ingestor.models import MarketData

logger = logging.getLogger(__name__)

HOLD_CONFIDENCE = 0.5


class ChartPatternClassifier:
    """Deterministic price-action classifier."""

    def classify(self, market: MarketData) -> ChartClassification:
        """Classify an asset's recent price action.

        Args:
            market: Market data with 5m/1h/24h changes and liquidity.

        Returns:
            The classification from the first matching rule.
        """
        m5 = market.price_change_5m
        h1 = market.price_change_1h
        h24 = market.price_change_24h
        vol_ratio = market.volume_liquidity_ratio

        def result(
            action: ChartAction,
            pattern: ChartPattern,
            confidence: float,
            target: str | None,
            reason: str,
        ) -> ChartClassification:
            return ChartClassification(
                asset_id=market.asset_id,
                action=action,
                pattern=pattern,
                confidence=confidence,
                target_multiple=Decimal(target) if target is not None else None,
                reason=reason,
            )

        if m5 > 5 and h1 > 10 and h24 > 20 and vol_ratio > 2:
            return result(
                ChartAction.STRONG_BUY,
                ChartPattern.MULTI_HORIZON_UPTREND,
                0.85,
                "1.5",
                "Strong uptrend on all timeframes with high volume",
            )
        if -5 < m5 < -2 and h24 > 10:
            return result(
                ChartAction.BUY,
                ChartPattern.PULLBACK_IN_UPTREND,
                0.75,
                "1.3",
                "Healthy pullback in uptrend",
            )
        if abs(m5) < 1 and abs(h1) < 2 and vol_ratio > 1.5:
            return result(
                ChartAction.BUY,
                ChartPattern.CONSOLIDATION_BREAKOUT,
                0.70,
                "1.25",
                "Consolidation with building volume",
            )
        if m5 > 8 and h1 > 15 and h24 < 30 and vol_ratio > 1:
            return result(
                ChartAction.STRONG_BUY,
                ChartPattern.EARLY_PUMP,
                0.80,
                "1.4",
                "Early pump with room to run",
            )
        if m5 > 20 and h1 > 50:
            return result(
                ChartAction.SELL,
                ChartPattern.OVERBOUGHT_SURGE,
                0.80,
                None,
                "Overbought: short-horizon surge suggests exhaustion",
            )
        if m5 < -5 and h1 < -10 and h24 < -15:
            return result(
                ChartAction.STRONG_SELL,
                ChartPattern.COORDINATED_DECLINE,
                0.90,
                None,
                "Decline across all timeframes",
            )
        if vol_ratio > 3 and m5 > 3:
            return result(
                ChartAction.BUY,
                ChartPattern.VOLUME_SPIKE,
                0.75,
                "1.35",
                "Volume spike with price increase",
            )
        return result(
            ChartAction.HOLD,
            ChartPattern.NO_PATTERN,
            HOLD_CONFIDENCE,
            None,
            "No clear pattern",
        )


class ChartPatternDetector:
    """Turns chart classifications into ChartPattern signals.

    Only assets with eligible wallet activity are analysed, so every chart
    signal carries the wallets that brought the asset into view. Hold
    classifications produce no signal.
    """

    def __init__(self, classifier: ChartPatternClassifier | None = None) -> None:
        self._classifier = classifier or ChartPatternClassifier()

    @property
    def classifier(self) -> ChartPatternClassifier:
        return self._classifier

    def analyze(
        self,
        market: MarketData,
        wallets: Iterable[str],
        *,
        now: datetime,
    ) -> Signal | None:
        """Classify ``market`` and emit a signal for any non-Hold action."""
        contributing = frozenset(wallets)
        if not contributing:
            return None

        classification = self._classifier.classify(market)
        direction = classification.action.direction
        if direction is None:
            logger.debug("No chart pattern for %s", market.asset_id)
            return None

        logger.info(
            "Chart signal: asset=%s, action=%s, pattern=%s, confidence=%.2f",
            market.asset_id[:10] + "...",
            classification.action.value,
            classification.pattern.value,
            classification.confidence,
        )
        return Signal(
            asset_id=market.asset_id,
            direction=direction,
            wallets=contributing,
            kind=SignalKind.CHART_PATTERN,
            strength=classification.confidence,
            detected_at=now,
            chart=classification,
            factors={
                "price_change_5m": market.price_change_5m,
                "price_change_1h": market.price_change_1h,
                "price_change_24h": market.price_change_24h,
                "volume_liquidity_ratio": market.volume_liquidity_ratio,
            },
        )
