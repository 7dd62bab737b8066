"""Tracked-wallet registry with incremental ingestion and parallel refresh."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from redis.asyncio import Redis

from smart_money_copytrader.ingestor.models import Trade, TradeSide
from smart_money_copytrader.ingestor.sources import DataUnavailableError
from smart_money_copytrader.profiler.metrics import compute_metrics
from smart_money_copytrader.profiler.models import WalletMetrics, WalletRecord
from smart_money_copytrader.profiler.scorer import WalletScorer

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_STALENESS_WINDOW = timedelta(days=7)
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_SCORE_CACHE_TTL = 300  # 5 minutes
DEFAULT_REDIS_KEY_PREFIX = "copytrader:wallet_score:"

# Hot wallet criteria
HOT_MIN_TRADES_24H = 3
HOT_MIN_WIN_RATE = 0.8
HOT_MIN_SCORE = 0.85


class TradeFetcher(Protocol):
    async def fetch_trades(self, wallet_address: str, since: datetime | None) -> Sequence[Trade]: ...


@dataclass
class RefreshReport:
    """Outcome of one registry refresh."""

    wallets_refreshed: int = 0
    wallets_failed: int = 0
    trades_added: int = 0


class WalletRegistry:
    """Owns every WalletRecord and keeps their scores current.

    Refresh fetches and rescores each tracked wallet in its own task; a task
    only touches its own record, so wallets are scored concurrently without
    shared mutable state. Wallets whose data cannot be fetched are skipped
    for the cycle.

    Example:
        ```python
        registry = WalletRegistry(WalletScorer(), redis=redis)
        registry.track("7xKX...")
        report = await registry.refresh(gateway, now=datetime.now(UTC))
        eligible = registry.eligible_scores(min_score=0.8)
        ```
    """

    def __init__(
        self,
        scorer: WalletScorer,
        *,
        staleness_window: timedelta = DEFAULT_STALENESS_WINDOW,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_SCORE_CACHE_TTL,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        self._scorer = scorer
        self._staleness_window = staleness_window
        self._max_concurrency = max_concurrency
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._key_prefix = key_prefix
        self._records: dict[str, WalletRecord] = {}

    @property
    def addresses(self) -> list[str]:
        return list(self._records)

    def attach_cache(self, redis: Redis | None) -> None:
        """Use ``redis`` for score caching (None disables caching)."""
        self._redis = redis

    def get(self, address: str) -> WalletRecord | None:
        return self._records.get(address)

    def track(self, address: str) -> WalletRecord:
        """Start tracking a wallet (no-op if already tracked)."""
        record = self._records.get(address)
        if record is None:
            record = WalletRecord(address=address)
            self._records[address] = record
        return record

    def ingest(self, trades: Iterable[Trade], *, now: datetime | None = None) -> set[str]:
        """Add observed trades and rescore the wallets they belong to.

        Returns:
            Addresses whose history changed.
        """
        by_wallet: dict[str, list[Trade]] = {}
        for trade in trades:
            by_wallet.setdefault(trade.wallet_address, []).append(trade)

        changed: set[str] = set()
        for address, wallet_trades in by_wallet.items():
            record = self.track(address)
            if record.add_trades(wallet_trades):
                self._scorer.score_record(record, now=now)
                changed.add(address)
        return changed

    def _cache_key(self, address: str, last_trade_id: str) -> str:
        return f"{self._key_prefix}{address}:{last_trade_id}"

    async def _get_cached_score(self, record: WalletRecord) -> float | None:
        if not self._redis or record.last_trade_id is None:
            return None
        try:
            cached = await self._redis.get(self._cache_key(record.address, record.last_trade_id))
            if cached is None:
                return None
            data = json.loads(cached if isinstance(cached, str) else cached.decode())
            return float(data["score"])
        except Exception as e:
            logger.warning("Failed to read cached score for %s: %s", record.address, e)
            return None

    async def _cache_score(self, record: WalletRecord) -> None:
        if not self._redis or record.score is None or record.last_trade_id is None:
            return
        try:
            payload = {
                "address": record.address,
                "score": record.score,
                "trade_count": len(record.trades),
                "scored_at": (record.scored_at or datetime.now(UTC)).isoformat(),
            }
            await self._redis.set(
                self._cache_key(record.address, record.last_trade_id),
                json.dumps(payload),
                ex=self._cache_ttl,
            )
        except Exception as e:
            logger.warning("Failed to cache score for %s: %s", record.address, e)

    async def _rescore(self, record: WalletRecord, *, now: datetime) -> None:
        cached = await self._get_cached_score(record)
        if cached is not None:
            record.metrics = compute_metrics(record.trades, now=now)
            record.score = cached
            record.scored_at = now
            return
        self._scorer.score_record(record, now=now)
        await self._cache_score(record)

    async def _refresh_one(
        self,
        record: WalletRecord,
        source: TradeFetcher,
        semaphore: asyncio.Semaphore,
        *,
        now: datetime,
        lookback: timedelta,
    ) -> int:
        since = record.last_trade_at or (now - lookback)
        async with semaphore:
            trades = await source.fetch_trades(record.address, since)
        added = record.add_trades(list(trades))
        if added or record.score is None:
            await self._rescore(record, now=now)
        elif record.metrics is not None:
            # Windowed metrics (24h activity) move with the clock
            record.metrics = compute_metrics(record.trades, now=now)
        return added

    async def refresh(
        self,
        source: TradeFetcher,
        *,
        now: datetime,
        lookback: timedelta = timedelta(hours=24),
    ) -> RefreshReport:
        """Fetch new trades for every tracked wallet and rescore them concurrently.

        Args:
            source: Trade fetcher (usually the CollaboratorGateway).
            now: Evaluation time.
            lookback: How far back to fetch for wallets with no history.

        Returns:
            RefreshReport with counts of refreshed and skipped wallets.
        """
        report = RefreshReport()
        records = list(self._records.values())
        if not records:
            return report

        semaphore = asyncio.Semaphore(self._max_concurrency)
        results = await asyncio.gather(
            *(
                self._refresh_one(record, source, semaphore, now=now, lookback=lookback)
                for record in records
            ),
            return_exceptions=True,
        )

        for record, result in zip(records, results, strict=True):
            if isinstance(result, DataUnavailableError):
                report.wallets_failed += 1
                logger.warning("Skipping wallet %s this cycle: %s", record.address, result)
            elif isinstance(result, Exception):
                report.wallets_failed += 1
                logger.error("Unexpected error refreshing wallet %s: %s", record.address, result)
            elif isinstance(result, BaseException):
                # Cancellation of a child task cancels the refresh
                raise result
            else:
                report.wallets_refreshed += 1
                report.trades_added += result

        self.mark_stale(now)
        logger.info(
            "Wallet refresh: refreshed=%d failed=%d new_trades=%d",
            report.wallets_refreshed,
            report.wallets_failed,
            report.trades_added,
        )
        return report

    def mark_stale(self, now: datetime) -> int:
        """Mark wallets with no trade inside the staleness window inactive."""
        cutoff = now - self._staleness_window
        marked = 0
        for record in self._records.values():
            last = record.last_trade_at
            if record.is_active and (last is None or last < cutoff):
                record.is_active = False
                marked += 1
                logger.info("Wallet %s marked inactive (last trade %s)", record.address, last)
        return marked

    def eligible_scores(self, *, min_score: float | None = None) -> dict[str, float]:
        """Scores of active, scored wallets, optionally above a floor."""
        return {
            address: record.score
            for address, record in self._records.items()
            if record.is_active
            and record.score is not None
            and (min_score is None or record.score > min_score)
        }

    def recent_trades(
        self,
        *,
        since: datetime,
        until: datetime,
        side: TradeSide | None = TradeSide.BUY,
        wallets: Iterable[str] | None = None,
    ) -> list[Trade]:
        """Trades inside (since, until] from active wallets, oldest first."""
        addresses = set(wallets) if wallets is not None else set(self._records)
        trades = [
            trade
            for address in addresses
            if (record := self._records.get(address)) is not None and record.is_active
            for trade in record.trades
            if since < trade.timestamp <= until and (side is None or trade.side == side)
        ]
        trades.sort(key=lambda t: (t.timestamp, t.trade_id))
        return trades

    def hot_wallets(
        self,
        *,
        min_trades_24h: int = HOT_MIN_TRADES_24H,
        min_win_rate: float = HOT_MIN_WIN_RATE,
        min_score: float = HOT_MIN_SCORE,
    ) -> dict[str, float]:
        """Active wallets that are trading often and winning right now."""
        hot: dict[str, float] = {}
        for address, record in self._records.items():
            metrics = record.metrics
            if not record.is_active or record.score is None or metrics is None:
                continue
            if (
                metrics.trades_24h >= min_trades_24h
                and metrics.win_rate > min_win_rate
                and record.score > min_score
            ):
                hot[address] = record.score
        return hot

    def metrics_for(self, addresses: Iterable[str]) -> list[WalletMetrics]:
        """Metrics of the given wallets, skipping unscored ones."""
        return [
            record.metrics
            for address in addresses
            if (record := self._records.get(address)) is not None and record.metrics is not None
        ]
