"""Pydantic models for btannounce.

Provides validated data models for configuration and for the peers handed
to the peer sink.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AnnounceEvent(str, Enum):
    """Lifecycle event tags sent as the ``event`` announce parameter."""

    STARTED = "started"
    STOPPED = "stopped"
    COMPLETED = "completed"


class OtherFailurePolicy(str, Enum):
    """What a session does after a non-timeout transport failure."""

    BACKOFF = "backoff"
    REPORT = "report"
    TERMINATE = "terminate"


class PeerEntry(BaseModel):
    """Peer address learned from a tracker reply."""

    ip: str = Field(..., description="Peer IP address or hostname")
    port: int = Field(..., ge=1, le=65535, description="Peer port number")
    peer_id: bytes | None = Field(
        None,
        description="Peer ID (absent for compact peer lists)",
    )

    @field_validator("ip")
    @classmethod
    def validate_ip(cls, v):
        """Validate IP address format."""
        if not v:
            msg = "IP address cannot be empty"
            raise ValueError(msg)
        return v

    def __str__(self) -> str:
        """String representation of peer entry."""
        return f"{self.ip}:{self.port}"


class NetworkConfig(BaseModel):
    """Network configuration."""

    listen_port: int = Field(
        default=6881,
        ge=1,
        le=65535,
        description="Listen port reported to trackers",
    )


class TrackerConfig(BaseModel):
    """Tracker announce configuration."""

    default_interval: int = Field(
        default=180,
        ge=1,
        le=86400,
        description="Announce interval used when a reply omits a valid one",
    )
    timeout_fallback_interval: int = Field(
        default=1800,
        ge=1,
        le=86400,
        description="Delay before the next announce after a tracker timeout",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Total deadline for one tracker request in seconds",
    )
    connect_timeout: float = Field(
        default=15.0,
        gt=0.0,
        le=600.0,
        description="Connect deadline for one tracker request in seconds",
    )
    other_failure_policy: OtherFailurePolicy = Field(
        default=OtherFailurePolicy.BACKOFF,
        description="Reaction to non-timeout transport failures",
    )
    retry_base_delay: float = Field(
        default=15.0,
        ge=1.0,
        le=86400.0,
        description="First retry delay for the backoff failure policy",
    )
    retry_max_delay: float = Field(
        default=1800.0,
        ge=1.0,
        le=86400.0,
        description="Retry delay ceiling for the backoff failure policy",
    )
    retry_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Fraction of each backoff delay to randomize",
    )
    echo_tracker_id: bool = Field(
        default=False,
        description="Send a learned tracker id back as the trackerid parameter",
    )
    user_agent: str | None = Field(
        default=None,
        description="User-Agent header override",
    )

    @model_validator(mode="after")
    def validate_retry_delays(self):
        """Ensure the retry ceiling is not below the first retry delay."""
        if self.retry_max_delay < self.retry_base_delay:
            msg = "retry_max_delay must be >= retry_base_delay"
            raise ValueError(msg)
        return self


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Use structured (JSON) logging",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main configuration model."""

    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Network configuration",
    )
    tracker: TrackerConfig = Field(
        default_factory=TrackerConfig,
        description="Tracker announce configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
