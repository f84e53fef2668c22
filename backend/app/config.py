import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_int(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be greater than or equal to {minimum}")
    return value


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


class Settings(BaseModel):
    app_name: str = Field(default="PhotoApp Admin")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    authz_cache_ttl_seconds: int = Field(default=300)
    authz_cache_max_size: int = Field(default=1000)
    authz_cache_sweep_seconds: int = Field(default=300)
    authz_store_timeout_seconds: float = Field(default=2.0)
    authz_expiry_guard_seconds: int = Field(default=5)
    authz_invalidation_channel: str | None = Field(default=None)

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        defaults = cls.model_fields

        db_pool_size = _parse_int("DB_POOL_SIZE", defaults["db_pool_size"].default, minimum=1)
        db_max_overflow = _parse_int(
            "DB_MAX_OVERFLOW", defaults["db_max_overflow"].default, minimum=0
        )
        db_pool_recycle = _parse_int(
            "DB_POOL_RECYCLE", defaults["db_pool_recycle"].default, minimum=1
        )
        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(defaults["db_pool_pre_ping"].default)),
        )

        # Authorization engine tuning
        cache_ttl = _parse_int(
            "AUTHZ_CACHE_TTL_SECONDS", defaults["authz_cache_ttl_seconds"].default, minimum=1
        )
        cache_max_size = _parse_int(
            "AUTHZ_CACHE_MAX_SIZE", defaults["authz_cache_max_size"].default, minimum=1
        )
        cache_sweep = _parse_int(
            "AUTHZ_CACHE_SWEEP_SECONDS",
            defaults["authz_cache_sweep_seconds"].default,
            minimum=1,
        )
        store_timeout = _parse_float(
            "AUTHZ_STORE_TIMEOUT_SECONDS", defaults["authz_store_timeout_seconds"].default
        )
        expiry_guard = _parse_int(
            "AUTHZ_EXPIRY_GUARD_SECONDS",
            defaults["authz_expiry_guard_seconds"].default,
            minimum=0,
        )
        invalidation_channel = os.getenv("AUTHZ_INVALIDATION_CHANNEL", "").strip() or None

        log_level = os.getenv("LOG_LEVEL", defaults["log_level"].default).strip().upper()

        return cls(
            app_name=os.getenv("APP_NAME", defaults["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=log_level,
            database_url=database_url,
            redis_url=os.getenv("REDIS_URL", defaults["redis_url"].default).strip(),
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            authz_cache_ttl_seconds=cache_ttl,
            authz_cache_max_size=cache_max_size,
            authz_cache_sweep_seconds=cache_sweep,
            authz_store_timeout_seconds=store_timeout,
            authz_expiry_guard_seconds=expiry_guard,
            authz_invalidation_channel=invalidation_channel,
        )


# Settings are created on first access so the module imports without a configured environment
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first access from several
    threads or tasks builds exactly one instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
