import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./docgate.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Cache Configuration (seconds)
    cache_default_ttl: float = Field(default=300.0, alias="CACHE_DEFAULT_TTL")
    cache_max_size: int = Field(default=1000, alias="CACHE_MAX_SIZE")
    cache_sweep_interval: float = Field(default=60.0, alias="CACHE_SWEEP_INTERVAL")

    # Retry Configuration (seconds)
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=30.0, alias="RETRY_MAX_DELAY")
    retry_backoff_multiplier: float = Field(
        default=2.0, alias="RETRY_BACKOFF_MULTIPLIER"
    )
    retry_jitter: bool = Field(default=True, alias="RETRY_JITTER")
    retry_attempt_timeout: float | None = Field(
        default=None, alias="RETRY_ATTEMPT_TIMEOUT"
    )

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_timeout: float = Field(default=60.0, alias="CIRCUIT_RESET_TIMEOUT")
    circuit_required_successes: int = Field(
        default=3, alias="CIRCUIT_REQUIRED_SUCCESSES"
    )

    # Telemetry Configuration
    error_tracker_capacity: int = Field(default=10000, alias="ERROR_TRACKER_CAPACITY")
    performance_capacity: int = Field(default=1000, alias="PERFORMANCE_CAPACITY")
    performance_slow_threshold_ms: float = Field(
        default=1000.0, alias="PERFORMANCE_SLOW_THRESHOLD_MS"
    )

    # Health Configuration
    health_check_timeout: float = Field(default=10.0, alias="HEALTH_CHECK_TIMEOUT")
    health_sentinel_collection: str = Field(
        default="health-check", alias="HEALTH_SENTINEL_COLLECTION"
    )
    memory_limit_mb: float = Field(default=512.0, alias="MEMORY_LIMIT_MB")
    metrics_poll_interval: float = Field(default=30.0, alias="METRICS_POLL_INTERVAL")

    # Monitoring Server Configuration
    monitor_host: str = Field(default="127.0.0.1", alias="MONITOR_HOST")
    monitor_port: int = Field(default=8080, alias="MONITOR_PORT")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (after .env is loaded)."""
        return cls.model_validate(dict(os.environ))


global_settings = Settings.from_env()
