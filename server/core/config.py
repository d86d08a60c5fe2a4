"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default_factory=list, env="CORS_ORIGINS")

    # Redis Configuration (absent -> in-process store)
    redis_enabled: bool = Field(default=False, env="REDIS_ENABLED")
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_host: Optional[str] = Field(default=None, env="REDIS_HOST")
    redis_port: int = Field(default=6379, env="REDIS_PORT", ge=1, le=65535)
    redis_password: Optional[str] = Field(default=None, env="REDIS_PASSWORD")
    redis_db: int = Field(default=0, env="REDIS_DB", ge=0, le=15)
    redis_socket_timeout: float = Field(default=5.0, env="REDIS_SOCKET_TIMEOUT", gt=0, le=60)

    # Cache Configuration
    cache_ttl: int = Field(default=3600, env="CACHE_TTL", ge=1)
    cache_prefix: str = Field(default="cache:", env="CACHE_PREFIX")
    response_cache_ttl: int = Field(default=300, env="RESPONSE_CACHE_TTL", ge=1)

    # Sessions
    session_ttl: int = Field(default=86400, env="SESSION_TTL", ge=1)  # 24 hours
    session_prefix: str = Field(default="session:", env="SESSION_PREFIX")
    session_cookie_name: str = Field(default="timesheet_session", env="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, env="SESSION_COOKIE_SECURE")  # True in production
    session_cookie_samesite: Literal["lax", "strict", "none"] = Field(default="lax", env="SESSION_COOKIE_SAMESITE")
    session_max_ttl: int = Field(default=2592000, env="SESSION_MAX_TTL", ge=1)  # 30 days
    admin_user_ids: List[str] = Field(default_factory=list, env="ADMIN_USER_IDS")

    # Cleanup
    cleanup_enabled: bool = Field(default=True, env="CLEANUP_ENABLED")
    cleanup_interval: int = Field(default=60, env="CLEANUP_INTERVAL", ge=1)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("cache_prefix", "session_prefix")
    @classmethod
    def validate_prefix(cls, v):
        """Key prefixes must not contain glob metacharacters."""
        if any(ch in v for ch in "*?[]"):
            raise ValueError("key prefix must not contain glob characters")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {v}")
        return level

    @property
    def redis_dsn(self) -> Optional[str]:
        """Connection URL for Redis, built from discrete variables if needed."""
        if self.redis_url:
            return self.redis_url
        if not self.redis_host:
            return None
        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def use_redis(self) -> bool:
        """Redis is used only when enabled and a connection target exists."""
        return self.redis_enabled and self.redis_dsn is not None

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
    }
