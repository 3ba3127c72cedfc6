from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 5000
    service_name: str = "rate-limit-service"
    service_version: str = "1.0.0"

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "rate_limits"
    postgres_user: str = "ratekeeper"
    postgres_password: str = "ratekeeper"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 5
    db_pool_recycle_seconds: int = 1800
    db_auto_create: bool = False
    db_connect_retries: int = 3
    db_connect_retry_delay_seconds: float = 2.0

    cache_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    cache_key_prefix: str = "rate_limit"
    cache_max_ttl_seconds: int = 3600
    cache_socket_timeout_seconds: float = 0.5

    health_rate_limit: int = 60
    health_rate_window_seconds: int = 60

    cors_allowed_origins_raw: str = "*"
    log_level: str = "INFO"
    log_format: str = "plain"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return _as_asyncpg_url(self.database_url_override)
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def validate_runtime_settings(self) -> None:
        if self.db_pool_size < 1:
            raise ValueError("DB_POOL_SIZE must be at least 1.")
        if self.db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must not be negative.")
        if self.db_connect_retries < 1:
            raise ValueError("DB_CONNECT_RETRIES must be at least 1.")
        if self.cache_max_ttl_seconds < 1:
            raise ValueError("CACHE_MAX_TTL_SECONDS must be at least 1.")
        if self.health_rate_limit < 1 or self.health_rate_window_seconds < 1:
            raise ValueError(
                "HEALTH_RATE_LIMIT and HEALTH_RATE_WINDOW_SECONDS must be positive."
            )
        if self.log_format.lower() not in {"plain", "json"}:
            raise ValueError("LOG_FORMAT must be either 'plain' or 'json'.")

        if not self.is_production:
            return

        if not self.database_url_override:
            raise ValueError("DATABASE_URL must be set explicitly in production.")
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")


def _as_asyncpg_url(url: str) -> str:
    # Hosting platforms hand out plain postgres:// URLs.
    for scheme in ("postgresql://", "postgres://"):
        if url.startswith(scheme):
            return "postgresql+asyncpg://" + url[len(scheme) :]
    return url


@lru_cache
def get_settings() -> Settings:
    return Settings()
