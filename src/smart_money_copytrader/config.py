"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Smart Money Copytrader engine, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"
_WEIGHT_TOLERANCE = 1e-6


def _check_weights(name: str, weights: dict[str, float]) -> None:
    if abs(sum(weights.values()) - 1.0) > _WEIGHT_TOLERANCE:
        raise ValueError(f"{name} weights must sum to 1.0, got {sum(weights.values()):.4f}")


class DatabaseSettings(BaseSettings):
    """Database connection settings.

    Persistence is optional; without DATABASE_URL the engine runs purely
    in memory.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite (aiosqlite) connection string",
    )
    pool_size: int = Field(default=5, ge=1, le=50, alias="DATABASE_POOL_SIZE")
    max_overflow: int = Field(default=10, ge=0, le=100, alias="DATABASE_MAX_OVERFLOW")
    echo: bool = Field(default=False, alias="DATABASE_ECHO")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate database URL format."""
        if v is None:
            return v
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    cache_enabled: bool = Field(
        default=True,
        alias="REDIS_CACHE_ENABLED",
        description="Cache wallet scores in Redis",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class ScoringSettings(BaseSettings):
    """Wallet skill scoring settings."""

    model_config = SettingsConfigDict(env_prefix="SCORING_", extra="ignore")

    min_trades: int = Field(
        default=10,
        alias="SCORING_MIN_TRADES",
        ge=1,
        le=10_000,
        description="Trades required before a wallet gets a non-neutral score",
    )
    staleness_days: int = Field(
        default=7,
        alias="SCORING_STALENESS_DAYS",
        ge=1,
        le=365,
        description="Days without a trade before a wallet is marked inactive",
    )
    refresh_concurrency: int = Field(
        default=8,
        alias="SCORING_REFRESH_CONCURRENCY",
        ge=1,
        le=256,
        description="Maximum wallets fetched and scored in parallel",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="SCORING_CACHE_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="Redis TTL for cached wallet scores",
    )
    weight_win_rate: float = Field(default=0.30, alias="SCORING_WEIGHT_WIN_RATE", ge=0.0, le=1.0)
    weight_risk_adjusted: float = Field(
        default=0.25, alias="SCORING_WEIGHT_RISK_ADJUSTED", ge=0.0, le=1.0
    )
    weight_consistency: float = Field(
        default=0.15, alias="SCORING_WEIGHT_CONSISTENCY", ge=0.0, le=1.0
    )
    weight_timing: float = Field(default=0.20, alias="SCORING_WEIGHT_TIMING", ge=0.0, le=1.0)
    weight_focus: float = Field(default=0.10, alias="SCORING_WEIGHT_FOCUS", ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_weights(self) -> ScoringSettings:
        _check_weights("SCORING", self.weights())
        return self

    def weights(self) -> dict[str, float]:
        return {
            "win_rate": self.weight_win_rate,
            "risk_adjusted": self.weight_risk_adjusted,
            "consistency": self.weight_consistency,
            "timing": self.weight_timing,
            "focus": self.weight_focus,
        }


class SignalSettings(BaseSettings):
    """Signal detection settings."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore")

    window_minutes: int = Field(
        default=60,
        alias="SIGNAL_WINDOW_MINUTES",
        ge=1,
        le=24 * 60,
        description="Convergence and hot-wallet detection window",
    )
    min_wallet_score: float = Field(
        default=0.8,
        alias="SIGNAL_MIN_WALLET_SCORE",
        ge=0.0,
        le=1.0,
        description="Wallets must score strictly above this to contribute",
    )
    convergence_threshold: int = Field(
        default=3,
        alias="SIGNAL_CONVERGENCE_THRESHOLD",
        ge=1,
        le=100,
        description="Distinct wallets buying one asset to form a convergence signal",
    )
    hot_min_trades_24h: int = Field(
        default=3,
        alias="SIGNAL_HOT_MIN_TRADES_24H",
        ge=1,
        le=1000,
        description="Trades in the last 24h for a wallet to count as hot",
    )
    hot_min_win_rate: float = Field(
        default=0.8,
        alias="SIGNAL_HOT_MIN_WIN_RATE",
        ge=0.0,
        le=1.0,
        description="Win rate a hot wallet must exceed",
    )
    hot_min_score: float = Field(
        default=0.85,
        alias="SIGNAL_HOT_MIN_SCORE",
        ge=0.0,
        le=1.0,
        description="Score a hot wallet must exceed",
    )
    min_confidence: float = Field(
        default=0.7,
        alias="SIGNAL_MIN_CONFIDENCE",
        ge=0.0,
        le=1.0,
        description="Minimum aggregated confidence to send a signal to the risk gate",
    )


class ConfidenceSettings(BaseSettings):
    """Confidence aggregation settings."""

    model_config = SettingsConfigDict(env_prefix="CONFIDENCE_", extra="ignore")

    weight_wallet_quality: float = Field(
        default=0.40, alias="CONFIDENCE_WEIGHT_WALLET_QUALITY", ge=0.0, le=1.0
    )
    weight_asset_security: float = Field(
        default=0.25, alias="CONFIDENCE_WEIGHT_ASSET_SECURITY", ge=0.0, le=1.0
    )
    weight_market_timing: float = Field(
        default=0.15, alias="CONFIDENCE_WEIGHT_MARKET_TIMING", ge=0.0, le=1.0
    )
    weight_historical: float = Field(
        default=0.10, alias="CONFIDENCE_WEIGHT_HISTORICAL", ge=0.0, le=1.0
    )
    weight_liquidity: float = Field(
        default=0.10, alias="CONFIDENCE_WEIGHT_LIQUIDITY", ge=0.0, le=1.0
    )
    min_liquidity: Decimal = Field(
        default=Decimal("10000"),
        alias="CONFIDENCE_MIN_LIQUIDITY",
        description="Liquidity (USD) that earns a full liquidity component",
    )
    min_history: int = Field(
        default=5,
        alias="CONFIDENCE_MIN_HISTORY",
        ge=1,
        le=10_000,
        description="Closed outcomes required before the historical component is used",
    )

    @field_validator("min_liquidity")
    @classmethod
    def validate_min_liquidity(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("CONFIDENCE_MIN_LIQUIDITY must be > 0")
        return v

    @model_validator(mode="after")
    def validate_weights(self) -> ConfidenceSettings:
        _check_weights("CONFIDENCE", self.weights())
        return self

    def weights(self) -> dict[str, float]:
        return {
            "wallet_quality": self.weight_wallet_quality,
            "asset_security": self.weight_asset_security,
            "market_timing": self.weight_market_timing,
            "historical": self.weight_historical,
            "liquidity": self.weight_liquidity,
        }


class RiskSettings(BaseSettings):
    """Portfolio risk limits and position sizing settings."""

    model_config = SettingsConfigDict(env_prefix="RISK_", extra="ignore")

    capital: Decimal = Field(
        default=Decimal("1000"),
        alias="RISK_CAPITAL",
        description="Starting portfolio capital (USD)",
    )
    max_position_size: Decimal = Field(
        default=Decimal("100"),
        alias="RISK_MAX_POSITION_SIZE",
        description="Absolute cap on any single position (USD)",
    )
    max_daily_loss: Decimal = Field(
        default=Decimal("50"),
        alias="RISK_MAX_DAILY_LOSS",
        description="Daily realized loss (USD) that halts new trading",
    )
    concentration_limit: float = Field(
        default=0.30,
        alias="RISK_CONCENTRATION_LIMIT",
        gt=0.0,
        le=1.0,
        description="Maximum fraction of capital exposed to one asset",
    )
    kelly_band: float = Field(
        default=0.1,
        alias="RISK_KELLY_BAND",
        gt=0.0,
        le=1.0,
        description="Confidence band for selecting comparable outcomes",
    )
    kelly_min_samples: int = Field(
        default=10,
        alias="RISK_KELLY_MIN_SAMPLES",
        ge=1,
        le=10_000,
        description="Comparable outcomes required before Kelly sizing is used",
    )
    kelly_multiplier: float = Field(
        default=0.25,
        alias="RISK_KELLY_MULTIPLIER",
        gt=0.0,
        le=1.0,
        description="Fractional Kelly safety factor",
    )
    kelly_max_fraction: float = Field(
        default=0.20,
        alias="RISK_KELLY_MAX_FRACTION",
        gt=0.0,
        le=1.0,
        description="Maximum fraction of capital per signal",
    )
    fallback_fraction: float = Field(
        default=0.25,
        alias="RISK_FALLBACK_FRACTION",
        gt=0.0,
        le=1.0,
        description="Fraction of max position size used without enough outcomes",
    )
    velocity_max_signals: int = Field(
        default=5,
        alias="RISK_VELOCITY_MAX_SIGNALS",
        ge=1,
        le=1000,
        description="Approved signals allowed per wallet inside the velocity window",
    )
    velocity_window_seconds: int = Field(
        default=600,
        alias="RISK_VELOCITY_WINDOW_SECONDS",
        ge=1,
        le=86_400,
        description="Sliding window for signal velocity",
    )
    breaker_cooldown_seconds: int = Field(
        default=3600,
        alias="RISK_BREAKER_COOLDOWN_SECONDS",
        ge=0,
        le=7 * 86_400,
        description="Time before an automatic circuit-breaker trip resets",
    )
    max_slippage_bps: int = Field(
        default=100,
        alias="RISK_MAX_SLIPPAGE_BPS",
        ge=1,
        le=10_000,
        description="Maximum slippage passed to the execution collaborator",
    )

    @field_validator("capital", "max_position_size", "max_daily_loss")
    @classmethod
    def validate_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Risk amounts must be > 0")
        return v


class LifecycleSettings(BaseSettings):
    """Position exit rule settings."""

    model_config = SettingsConfigDict(env_prefix="POSITION_", extra="ignore")

    stop_loss_pct: float = Field(
        default=0.10,
        alias="POSITION_STOP_LOSS_PCT",
        gt=0.0,
        lt=1.0,
        description="Stop-loss distance below entry",
    )
    take_profit_pct: float = Field(
        default=0.50,
        alias="POSITION_TAKE_PROFIT_PCT",
        gt=0.0,
        le=100.0,
        description="Take-profit distance above entry when no chart target exists",
    )
    trailing_arm_pct: float = Field(
        default=0.30,
        alias="POSITION_TRAILING_ARM_PCT",
        gt=0.0,
        le=100.0,
        description="Peak gain that arms the trailing stop",
    )
    trailing_drop_pct: float = Field(
        default=0.15,
        alias="POSITION_TRAILING_DROP_PCT",
        gt=0.0,
        lt=1.0,
        description="Drop from peak that fires an armed trailing stop",
    )
    stale_hours: float = Field(
        default=24.0,
        alias="POSITION_STALE_HOURS",
        gt=0.0,
        le=24 * 365,
        description="Age after which an unprofitable position is stale",
    )
    stale_min_profit_pct: float = Field(
        default=0.05,
        alias="POSITION_STALE_MIN_PROFIT_PCT",
        ge=0.0,
        le=100.0,
        description="Gain a stale position needs to stay open",
    )


class SchedulerSettings(BaseSettings):
    """Evaluation cycle scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="CYCLE_", extra="ignore")

    evaluation_interval_seconds: int = Field(
        default=300,
        alias="CYCLE_EVALUATION_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Seconds between signal evaluation cycles",
    )
    price_tick_seconds: int = Field(
        default=15,
        alias="CYCLE_PRICE_TICK_SECONDS",
        ge=1,
        le=3600,
        description="Seconds between open-position price checks",
    )
    lookback_hours: int = Field(
        default=24,
        alias="CYCLE_LOOKBACK_HOURS",
        ge=1,
        le=24 * 30,
        description="Trade history fetched on a wallet's first refresh",
    )


def _nested(cls: type[BaseSettings]) -> Any:
    return Field(
        default_factory=lambda: cls(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from smart_money_copytrader.config import get_settings

        settings = get_settings()
        print(settings.risk.max_position_size)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings must be given the same env_file, otherwise it
    # only reads the process environment.
    database: DatabaseSettings = _nested(DatabaseSettings)
    redis: RedisSettings = _nested(RedisSettings)
    scoring: ScoringSettings = _nested(ScoringSettings)
    signal: SignalSettings = _nested(SignalSettings)
    confidence: ConfidenceSettings = _nested(ConfidenceSettings)
    risk: RiskSettings = _nested(RiskSettings)
    position: LifecycleSettings = _nested(LifecycleSettings)
    cycle: SchedulerSettings = _nested(SchedulerSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Paper trade: skip execution and fill at the observed price",
    )
    # Kept as a plain string so the env source does not try to JSON-decode it
    tracked_wallets_csv: str = Field(
        default="",
        alias="TRACKED_WALLETS",
        description="Wallet addresses to copy (comma-separated)",
    )

    @property
    def tracked_wallets(self) -> tuple[str, ...]:
        """Tracked wallet addresses, deduplicated in order."""
        parts = (p.strip() for p in self.tracked_wallets_csv.split(","))
        return tuple(dict.fromkeys(p for p in parts if p))

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url) if self.database.url else "(not set)",
            "redis_url": self._redact_url(self.redis.url),
            "redis_cache_enabled": str(self.redis.cache_enabled),
            "scoring": {
                "min_trades": str(self.scoring.min_trades),
                "staleness_days": str(self.scoring.staleness_days),
                "refresh_concurrency": str(self.scoring.refresh_concurrency),
            },
            "signal": {
                "window_minutes": str(self.signal.window_minutes),
                "min_wallet_score": str(self.signal.min_wallet_score),
                "convergence_threshold": str(self.signal.convergence_threshold),
                "min_confidence": str(self.signal.min_confidence),
            },
            "risk": {
                "capital": str(self.risk.capital),
                "max_position_size": str(self.risk.max_position_size),
                "max_daily_loss": str(self.risk.max_daily_loss),
                "concentration_limit": str(self.risk.concentration_limit),
            },
            "position": {
                "stop_loss_pct": str(self.position.stop_loss_pct),
                "take_profit_pct": str(self.position.take_profit_pct),
            },
            "tracked_wallets": str(len(self.tracked_wallets)),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
