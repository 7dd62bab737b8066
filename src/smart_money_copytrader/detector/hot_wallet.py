"""Hot wallet activity detection."""

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from smart_money_copytrader.detector.models import Direction, Signal, SignalKind
from smart_money_copytrader.ingestor.models import Trade

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=60)
MAX_STRENGTH = 0.95


class HotWalletDetector:
    """Emits a signal when a wallet on a winning streak buys an asset.

    Which wallets are hot is decided by the registry (recent activity, win
    rate and score); this detector only maps their in-window buys to
    per-asset HotWalletActivity signals. Strength is the best contributing
    wallet score, capped at 0.95.
    """

    def __init__(self, *, window: timedelta = DEFAULT_WINDOW) -> None:
        self._window = window

    def detect(
        self,
        trades: Sequence[Trade],
        hot_wallets: Mapping[str, float],
        *,
        now: datetime,
    ) -> list[Signal]:
        cutoff = now - self._window
        wallets_by_asset: dict[str, set[str]] = defaultdict(set)
        for trade in trades:
            if trade.wallet_address not in hot_wallets:
                continue
            if trade.is_buy and cutoff < trade.timestamp <= now:
                wallets_by_asset[trade.asset_id].add(trade.wallet_address)

        signals: list[Signal] = []
        for asset_id in sorted(wallets_by_asset):
            wallets = wallets_by_asset[asset_id]
            best = max(hot_wallets[w] for w in wallets)
            strength = min(MAX_STRENGTH, best)
            logger.info(
                "Hot wallet signal: asset=%s, wallets=%d, strength=%.2f",
                asset_id[:10] + "...",
                len(wallets),
                strength,
            )
            signals.append(
                Signal(
                    asset_id=asset_id,
                    direction=Direction.ENTER,
                    wallets=frozenset(wallets),
                    kind=SignalKind.HOT_WALLET_ACTIVITY,
                    strength=strength,
                    detected_at=now,
                    factors={"best_wallet_score": best, "wallet_count": float(len(wallets))},
                )
            )
        return signals
