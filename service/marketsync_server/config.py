"""
Configuration management for MarketSync Server.

All configuration is done via environment variables. Engine and store
settings are frozen dataclasses with from_env() loaders; HTTP bind settings
use pydantic-settings like the other service front ends.

Invariants:
    - All settings have sensible defaults for local development
    - Rule constants (fees, bonuses, payout table) are read once at startup
      and never change during a merge

How to change safely:
    - Add new settings with defaults that keep existing rooms valid
    - Changing economy constants changes outcomes of future merges only;
      stored snapshots are not rewritten
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported snapshot store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


# Cumulative probability -> payout, checked in order after the jackpot draw.
DEFAULT_ROULETTE_TABLE: tuple[tuple[float, int], ...] = (
    (0.05, 500),
    (0.15, 200),
    (0.40, 100),
    (1.0, 0),
)


@dataclass(frozen=True)
class EngineConfig:
    """Economy constants used by the rule handlers.

    Attributes:
        starting_balance: Balance minted for a newly registered user
        fee_percent: Marketplace fee taken by the house on each sale
        claim_base_bonus: Morning claim bonus per streak day
        claim_max_streak: Streak cap for the bonus multiplier
        claim_timezone: Zone whose calendar date decides "already claimed"
        roulette_entry_fee: Cost of one roulette spin
        roulette_jackpot_chance: Probability of winning the whole house balance
        roulette_table: Cumulative probability table for ordinary payouts
    """

    starting_balance: int = 10000
    fee_percent: int = 10
    claim_base_bonus: int = 100
    claim_max_streak: int = 7
    claim_timezone: str = "Asia/Tokyo"
    roulette_entry_fee: int = 100
    roulette_jackpot_chance: float = 0.01
    roulette_table: tuple[tuple[float, int], ...] = DEFAULT_ROULETTE_TABLE

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables."""
        return cls(
            starting_balance=int(os.getenv("STARTING_BALANCE", "10000")),
            fee_percent=int(os.getenv("MARKET_FEE_PERCENT", "10")),
            claim_base_bonus=int(os.getenv("CLAIM_BASE_BONUS", "100")),
            claim_max_streak=int(os.getenv("CLAIM_MAX_STREAK", "7")),
            claim_timezone=os.getenv("CLAIM_TIMEZONE", "Asia/Tokyo"),
            roulette_entry_fee=int(os.getenv("ROULETTE_ENTRY_FEE", "100")),
            roulette_jackpot_chance=float(os.getenv("ROULETTE_JACKPOT_CHANCE", "0.01")),
        )

    def fee_for(self, price: int) -> int:
        """House fee for a sale at the given price (rounded down)."""
        return price * self.fee_percent // 100


@dataclass(frozen=True)
class RetentionConfig:
    """Sliding windows for log pruning.

    Attributes:
        log_window_ms: Age after which ProcessedOp and Conflict entries drop
        notification_ttl_ms: Age after which notifications drop
    """

    log_window_ms: int = 60 * 60 * 1000  # 1 hour
    notification_ttl_ms: int = 60 * 1000

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            log_window_ms=int(os.getenv("RETENTION_LOG_WINDOW_MS", str(60 * 60 * 1000))),
            notification_ttl_ms=int(os.getenv("RETENTION_NOTIFICATION_TTL_MS", "60000")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Snapshot store configuration.

    Attributes:
        backend: Which store backend to use
        sqlite_path: Database file for the sqlite backend
        ttl_seconds: Expiry applied on every put
        busy_timeout_ms: SQLite busy timeout in milliseconds
        purge_interval_seconds: How often the room service deletes expired
            snapshots (0 disables the background purge)
    """

    backend: StoreBackend = StoreBackend.MEMORY
    sqlite_path: str = "/var/lib/marketsync/snapshots.db"
    ttl_seconds: int = 60 * 60 * 24 * 7  # 7 days
    busy_timeout_ms: int = 5000
    purge_interval_seconds: int = 60 * 60

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORE_BACKEND names an unknown backend
        """
        backend_str = os.getenv("STORE_BACKEND", "memory").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite")

        return cls(
            backend=backend,
            sqlite_path=os.getenv("SQLITE_PATH", "/var/lib/marketsync/snapshots.db"),
            ttl_seconds=int(os.getenv("STATE_TTL_SECONDS", str(60 * 60 * 24 * 7))),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            purge_interval_seconds=int(os.getenv("STORE_PURGE_INTERVAL_SECONDS", "3600")),
        )


@dataclass(frozen=True)
class WriterConfig:
    """Read-merge-write loop configuration.

    Attributes:
        max_retries: Merge retries after a revision mismatch
        retry_delay_ms: Delay between retries
    """

    max_retries: int = 3
    retry_delay_ms: int = 50

    @classmethod
    def from_env(cls) -> WriterConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("WRITER_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("WRITER_RETRY_DELAY_MS", "50")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


class HttpSettings(BaseSettings):
    """HTTP front end settings."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8787, description="Bind port")
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "MARKETSYNC_HTTP_"}


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        engine: Economy constants
        retention: Log retention windows
        store: Snapshot store configuration
        writer: Read-merge-write retry configuration
        observability: Logging configuration
    """

    engine: EngineConfig = field(default_factory=EngineConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            engine=EngineConfig.from_env(),
            retention=RetentionConfig.from_env(),
            store=StoreConfig.from_env(),
            writer=WriterConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 <= self.engine.fee_percent <= 100:
            raise ValueError("MARKET_FEE_PERCENT must be between 0 and 100")
        if self.engine.claim_max_streak < 1:
            raise ValueError("CLAIM_MAX_STREAK must be at least 1")
        if not 0.0 <= self.engine.roulette_jackpot_chance < 1.0:
            raise ValueError("ROULETTE_JACKPOT_CHANCE must be in [0, 1)")
        if self.retention.log_window_ms <= 0 or self.retention.notification_ttl_ms <= 0:
            raise ValueError("Retention windows must be positive")
        if self.writer.max_retries < 0:
            raise ValueError("WRITER_MAX_RETRIES must not be negative")
        if self.store.purge_interval_seconds < 0:
            raise ValueError("STORE_PURGE_INTERVAL_SECONDS must not be negative")

        if self.store.backend == StoreBackend.SQLITE and not self.store.sqlite_path:
            raise ValueError("SQLITE_PATH is required when STORE_BACKEND=sqlite")

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store.backend.value,
                "sqlite_path": self.store.sqlite_path
                if self.store.backend == StoreBackend.SQLITE
                else None,
                "state_ttl_seconds": self.store.ttl_seconds,
                "purge_interval_seconds": self.store.purge_interval_seconds,
                "fee_percent": self.engine.fee_percent,
                "log_window_ms": self.retention.log_window_ms,
                "max_retries": self.writer.max_retries,
                "log_level": self.observability.log_level,
            },
        )
