"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from urllib.parse import quote
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1024, le=65535)
    debug: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=8)

    # Security
    admin_api_key: str = Field(default="default-admin-key", min_length=8)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/chapters.db")
    database_echo: bool = Field(default=False)
    database_pool_size: int = Field(default=10, ge=1, le=100)
    database_max_overflow: int = Field(default=20, ge=0, le=100)
    database_query_timeout: float = Field(default=30.0, gt=0)

    # Redis Backend
    redis_enabled: bool = Field(default=True)
    redis_url: Optional[str] = Field(default=None)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0, ge=0)
    redis_socket_timeout: float = Field(default=5.0, gt=0)
    redis_operation_timeout: float = Field(default=2.0, gt=0)
    redis_connect_attempts: int = Field(default=20, ge=1, le=50)
    redis_retry_backoff_ms: int = Field(default=100, ge=1)
    redis_retry_backoff_max_ms: int = Field(default=3000, ge=1)
    redis_retry_max_seconds: float = Field(default=15.0, gt=0)
    redis_auto_reconnect: bool = Field(default=True)

    # Response Cache
    cache_enabled: bool = Field(default=True)
    cache_ttl: int = Field(default=3600, ge=1)

    # Rate Limiting (window in seconds, max requests per window)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_fallback: Literal["memory", "allow"] = Field(default="memory")
    rate_limit_trust_proxy: bool = Field(default=False)
    rate_limit_skip_failed_requests: bool = Field(default=False)
    rate_limit_api_window: int = Field(default=60)
    rate_limit_api_max: int = Field(default=30)
    rate_limit_upload_window: int = Field(default=60)
    rate_limit_upload_max: int = Field(default=5)
    rate_limit_auth_window: int = Field(default=15 * 60)
    rate_limit_auth_max: int = Field(default=10)
    rate_limit_sensitive_window: int = Field(default=60 * 60)
    rate_limit_sensitive_max: int = Field(default=3)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite") and ":memory:" not in v:
            if ":///" in v:
                db_path = v.split("///")[1]
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def resolved_redis_url(self) -> str:
        """REDIS_URL when set, otherwise built from host/port/password/db."""
        if self.redis_url:
            return self.redis_url
        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
