"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class MarketplaceType(str, Enum):
    """Tenant marketplace flavours.

    Only athletic marketplaces translate sport/position experience into
    professional skills.
    """

    INSTITUTION = "institution"
    ATHLETIC = "athletic"

    @property
    def enables_skill_transfer(self) -> bool:
        return self is MarketplaceType.ATHLETIC


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _duration_seconds(value: str, min_seconds: int, max_seconds: int, label: str) -> int:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds, max_seconds, label=label)
        return seconds
    except DurationParseError as e:
        raise ValueError(str(e)) from e


class MatchingConfig(BaseModel):
    """Scoring behaviour settings."""

    marketplace_type: MarketplaceType = Field(
        MarketplaceType.INSTITUTION,
        description="Marketplace type; 'athletic' enables sport-to-skill translation",
    )

    @property
    def athletic_transfer_enabled(self) -> bool:
        return MarketplaceType(self.marketplace_type).enables_skill_transfer


class RecommendationsConfig(BaseModel):
    """Read-path settings for the recommendation endpoints."""

    default_listing_limit: int = Field(10, ge=1, le=200)
    default_student_limit: int = Field(20, ge=1, le=500)
    candidate_pool_size: int = Field(
        200, ge=1, le=5000, description="Maximum published listings/students considered per request"
    )
    min_score: int = Field(0, ge=0, le=100, description="Drop recommendations scoring below this")
    sync_timeout: str = Field(
        "2s", description="Budget for a synchronous single-pair recomputation"
    )

    sync_timeout_seconds: Optional[int] = None

    @field_validator("sync_timeout")
    @classmethod
    def validate_sync_timeout(cls, v: str) -> str:
        _duration_seconds(v, 1, 60, "sync_timeout")
        return v

    @model_validator(mode="after")
    def compute_fields(self):
        self.sync_timeout_seconds = parse_duration(self.sync_timeout)
        return self


class QueueConfig(BaseModel):
    """Recomputation queue and worker settings."""

    batch_size: int = Field(50, ge=1, le=1000, description="Entries claimed per worker run")
    max_attempts: int = Field(
        5, ge=1, le=20, description="Attempts before an entry is dead-lettered"
    )
    retry_initial_delay: int = Field(
        30, ge=1, le=3600, description="Delay before the first retry (seconds)"
    )
    retry_backoff_multiplier: float = Field(2.0, ge=1.0, le=10.0)
    retry_max_delay: int = Field(
        3600, ge=1, le=86400, description="Upper bound on a single retry delay (seconds)"
    )
    backlog_threshold: int = Field(
        10000, ge=1, description="Pending entries above which reads stop recomputing inline"
    )
    worker_interval: str = Field("1m", description="How often the worker drains the queue")
    sweep_interval: str = Field("1h", description="How often stale rows are re-enqueued")
    claim_timeout: str = Field(
        "15m", description="Claims older than this are released by the sweep"
    )
    sweep_limit: int = Field(
        1000, ge=1, le=100000, description="Stale rows re-enqueued per sweep"
    )

    worker_interval_seconds: Optional[int] = None
    sweep_interval_seconds: Optional[int] = None
    claim_timeout_seconds: Optional[int] = None

    @field_validator("worker_interval")
    @classmethod
    def validate_worker_interval(cls, v: str) -> str:
        _duration_seconds(v, 5, 3600, "worker_interval")
        return v

    @field_validator("sweep_interval")
    @classmethod
    def validate_sweep_interval(cls, v: str) -> str:
        _duration_seconds(v, 60, 86400, "sweep_interval")
        return v

    @field_validator("claim_timeout")
    @classmethod
    def validate_claim_timeout(cls, v: str) -> str:
        _duration_seconds(v, 60, 86400, "claim_timeout")
        return v

    @model_validator(mode="after")
    def validate_retry_window(self):
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError(
                "retry_max_delay must be greater than or equal to retry_initial_delay"
            )
        self.worker_interval_seconds = parse_duration(self.worker_interval)
        self.sweep_interval_seconds = parse_duration(self.sweep_interval)
        self.claim_timeout_seconds = parse_duration(self.claim_timeout)
        return self

    def retry_delay_seconds(self, attempts: int) -> float:
        """Backoff delay after ``attempts`` failed attempts (1-based)."""
        delay = self.retry_initial_delay * (self.retry_backoff_multiplier ** max(attempts - 1, 0))
        return min(delay, float(self.retry_max_delay))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the match engine."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    recommendations: RecommendationsConfig = Field(default_factory=RecommendationsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
