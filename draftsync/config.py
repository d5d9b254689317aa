"""Configuration management using pydantic-settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings
    db_server: str = "localhost"
    db_name: str = "draftsync"
    db_user: str = "draftsync"
    db_password: str = ""
    db_port: int = 5432
    db_pool_size: int = 20
    db_max_overflow: int = 40
    sql_echo: bool = False

    # Full URL override (e.g. sqlite+aiosqlite for local runs)
    database_url_override: Optional[str] = None

    # Redis settings (ARQ broker)
    redis_url: str = "redis://localhost:6379/0"

    # ARQ Worker settings
    # Seconds within each minute at which the analytics queue is drained
    # Default "0,10,20,30,40,50" = every 10 seconds
    arq_analytics_poll_seconds: str = "0,10,20,30,40,50"

    # Hour of day (24h) for the old-job cleanup cron
    arq_cleanup_hour: int = 3

    # Snapshot settings
    snapshot_max_count: int = 50  # In-memory collection bound per document
    snapshot_retention_limit: int = 50  # Durable autosave snapshots kept per document

    # Autosave coordinator settings
    autosave_debounce_seconds: float = 1.0
    autosave_reconnect_delay_seconds: float = 0.25
    autosave_request_timeout_seconds: float = 10.0

    # Analytics job queue settings
    job_max_attempts: int = 3
    job_retry_delay_seconds: float = 5.0  # Multiplied by attempts so far
    job_timeout_seconds: int = 60  # Lease on a running job before it is reclaimed
    job_batch_size: int = 10
    job_max_batch_size: int = 50
    job_poll_interval_seconds: float = 2.0
    job_wait_timeout_seconds: float = 60.0
    job_retention_days: int = 30

    @property
    def database_url(self) -> str:
        """Build PostgreSQL async connection string."""
        if self.database_url_override:
            return self.database_url_override
        from urllib.parse import quote_plus
        return (
            f"postgresql+asyncpg://{self.db_user}:{quote_plus(self.db_password)}"
            f"@{self.db_server}:{self.db_port}/{self.db_name}"
        )

    @property
    def sync_database_url(self) -> str:
        """Build PostgreSQL sync connection string for Alembic."""
        if self.database_url_override:
            return self.database_url_override.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")
        from urllib.parse import quote_plus
        return (
            f"postgresql+psycopg2://{self.db_user}:{quote_plus(self.db_password)}"
            f"@{self.db_server}:{self.db_port}/{self.db_name}"
        )


# Global settings instance
settings = Settings()
