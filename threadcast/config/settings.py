"""Threadcast settings, read from the environment and ``.env``."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Every tunable of the comment service.

    Field names map to upper-case environment variables, e.g.
    ``COMMENT_MAX_LENGTH=500``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="threadcast", description="Service name")
    app_version: str = Field(default="0.1.0", description="Service version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Deployment environment"
    )
    api_host: str = Field(default="0.0.0.0", description="Bind address")  # noqa: S104
    api_port: int = Field(default=8000, description="Bind port")

    # Tokens are issued by the platform auth service and only verified here
    auth_secret_key: str = Field(
        default="dev-comment-service-secret-change-me-32chars",
        description="HS256 key shared with the auth service",
    )
    auth_algorithm: str = Field(default="HS256", description="JWT algorithm")
    auth_access_token_expire_minutes: int = Field(
        default=30, description="Lifetime of locally minted tokens (dev and tests)"
    )

    # Storage
    storage_backend: Literal["cassandra", "memory"] = Field(
        default="memory", description="Where comments live"
    )
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Cassandra contact points"
    )
    cassandra_port: int = Field(default=9042, description="Cassandra native port")
    cassandra_keyspace: str = Field(
        default="threadcast", description="Keyspace holding comment tables"
    )
    cassandra_username: str | None = Field(default=None, description="Cassandra user")
    cassandra_password: str | None = Field(
        default=None, description="Cassandra password"
    )
    cassandra_protocol_version: int = Field(
        default=4, description="Native protocol version"
    )
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Seconds to wait for a contact point"
    )

    # Redis pub/sub (realtime_backend=redis)
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis URL for comment events"
    )
    redis_max_connections: int = Field(
        default=10, description="Pool size; each room subscription holds one"
    )
    redis_socket_timeout: float = Field(default=5.0, description="Socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Seconds between connection health checks"
    )

    # Realtime
    realtime_backend: Literal["local", "redis"] = Field(
        default="local", description="Fan-out backend for comment events"
    )
    realtime_queue_size: int = Field(
        default=256, description="Buffered events per subscriber before dropping"
    )
    realtime_ping_interval: int = Field(
        default=30, description="WebSocket keep-alive ping interval (seconds)"
    )

    # Comments
    comment_max_length: int = Field(
        default=1000, description="Maximum comment length after trimming"
    )
    comment_default_page_size: int = Field(
        default=20, description="Default top-level page size"
    )
    comment_max_page_size: int = Field(default=100, description="Maximum page size")
    comment_thread_default_depth: int = Field(
        default=5, description="Default max depth for thread fetches"
    )
    comment_thread_max_depth: int = Field(
        default=10, description="Upper bound accepted for thread max depth"
    )
    comment_dedupe_reports: bool = Field(
        default=False,
        description="Reject a second report of the same comment by the same user",
    )
    comment_search_scan_limit: int = Field(
        default=2000, description="Rows scanned per search on Cassandra"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Stdout renderer"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Add module, function and line to events"
    )
    log_dir: str = Field(default="logs", description="Directory for JSON log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Rotate a log file past this size"
    )
    log_file_backup_count: int = Field(
        default=5, description="Rotated files kept per log"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start and completion"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health"], description="Path prefixes without request logs"
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="Allowed origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="Preflight cache seconds")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()
