"""
Controller configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded hosts or credentials. The override API reads the same
settings so both processes agree on document paths and channels.

CHANGELOG:
- 2026-10-09: Add LOG_LEVEL (STORY-011)
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

_REDIS_SCHEMES = ("redis://", "rediss://", "unix://")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ControllerSettings(BaseSettings):
    """Load-shedding controller configuration.

    All values are loaded from environment variables. Only REDIS_URL is
    required; every other variable has a default matching the layout the
    dashboard writes.

    Attributes:
        redis_url: Redis connection URL for the realtime document store.
        key_prefix: Prefix prepended to every document path to form its key.
        channel_prefix: Prefix of the pub/sub channel announcing changes to
            a document path.
        telemetry_path: Document path of the power-source telemetry.
        policy_path: Document path of the load policy.
        rooms_path: Root path of per-room device documents.
        device_logs_path: Root path of per-device activity logs.
        notification_channel: Channel for user-facing notifications.
        default_battery_capacity_wh: Battery capacity used when the
            telemetry does not report one.
        health_path: Path of the JSON health file.
        resubscribe_max_backoff_s: Cap for the re-subscribe backoff after a
            subscription drops.
        log_level: Root log level.
    """

    redis_url: str
    key_prefix: str = "doc:"
    channel_prefix: str = "changes:"
    telemetry_path: str = "powerSources"
    policy_path: str = "loadSettings"
    rooms_path: str = "rooms"
    device_logs_path: str = "deviceLogs"
    notification_channel: str = "notifications"
    default_battery_capacity_wh: float = 5000.0
    health_path: str = "/data/health.json"
    resubscribe_max_backoff_s: float = 60.0
    log_level: str = "INFO"

    @field_validator("redis_url")
    @classmethod
    def redis_url_must_have_known_scheme(cls, v: str) -> str:
        """Validate that REDIS_URL uses a scheme redis-py understands."""
        if not v.startswith(_REDIS_SCHEMES):
            raise ValueError(
                "REDIS_URL must start with one of "
                f"{', '.join(_REDIS_SCHEMES)}"
            )
        return v

    @field_validator(
        "telemetry_path",
        "policy_path",
        "rooms_path",
        "device_logs_path",
        "notification_channel",
    )
    @classmethod
    def path_must_be_relative(cls, v: str) -> str:
        """Validate document paths are non-empty and have no outer slashes."""
        if not v or v.startswith("/") or v.endswith("/"):
            raise ValueError(
                f"Document path must be non-empty without leading or trailing '/' (got: '{v}')"
            )
        return v

    @field_validator("default_battery_capacity_wh")
    @classmethod
    def capacity_must_be_positive(cls, v: float) -> float:
        """Validate the fallback battery capacity is positive."""
        if v <= 0:
            raise ValueError("DEFAULT_BATTERY_CAPACITY_WH must be > 0")
        return v

    @field_validator("resubscribe_max_backoff_s")
    @classmethod
    def backoff_cap_must_be_valid(cls, v: float) -> float:
        """Validate the re-subscribe backoff cap is at least one second."""
        if v < 1:
            raise ValueError("RESUBSCRIBE_MAX_BACKOFF_S must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")
        return level

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
