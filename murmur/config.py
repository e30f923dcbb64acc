"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ─────────────────────────────────────────────────────────
    postgres_host: str = "postgres"
    postgres_port: int = 5432
    postgres_user: str = "murmur"
    postgres_password: str = ""
    postgres_database: str = "murmur"
    # Full SQLAlchemy URL; takes precedence over the postgres_* fields.
    # sqlite+aiosqlite URLs are accepted for local development.
    database_url: Optional[str] = None
    db_pool_size: int = 10
    db_max_overflow: int = 10
    # Create tables on startup instead of relying on Alembic migrations
    db_auto_create: bool = False

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"
        )

    # ── Redis (token introspection cache) ──────────────────────────────────
    redis_url: str = "redis://redis:6379/0"

    # ── OIDC identity provider ─────────────────────────────────────────────
    oidc_issuer: str = "https://auth.example.com"
    # Application key JSON as downloaded from the IdP console
    # ({"type": "application", "keyId": ..., "key": ..., "appId": ..., "clientId": ...})
    oidc_application_key: str = ""
    oidc_cache_ttl: int = 6 * 3600       # 6h, bounded by the token's exp
    oidc_timeout: float = 5.0

    # ── Object storage (S3-compatible) ─────────────────────────────────────
    s3_endpoint: Optional[str] = None    # None → AWS default endpoint
    s3_access_key: str = "minioadmin"
    s3_secret_key: str = "minioadmin"
    s3_region: str = "us-east-1"
    s3_bucket: str = "murmur-media"
    # Base for public object URLs: {s3_public_url}/{bucket}/{name}
    s3_public_url: str = "https://storage.example.com"

    # ── Upload limits ──────────────────────────────────────────────────────
    post_media_max_bytes: int = 2 * 1024 * 1024
    avatar_max_bytes: int = 512 * 1024

    # ── Server-sent events ─────────────────────────────────────────────────
    sse_queue_size: int = 100            # per-subscriber backlog before dropping
    sse_keepalive_seconds: float = 15.0

    # ── HTTP ───────────────────────────────────────────────────────────────
    cors_origins: list[str] = ["*"]

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "murmur-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
