import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_ttl_days: int,
        cors_origins: list[str],
        gemini_api_key: str,
        gemini_model: str,
        ai_timeout_secs: float,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_ttl_days = token_ttl_days
        self.cors_origins = cors_origins
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.ai_timeout_secs = ai_timeout_secs
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level

    @property
    def token_max_age_secs(self) -> int:
        return self.token_ttl_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'finance.db'}"
    timezone = os.getenv("FINANCE_TIMEZONE", "Asia/Kolkata")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "5d2f7c0b9a41e8f36c1d0b72a9e4f5c8b3a6d1e0f9c27b48a5e3d6c1f0b2a798",
    )
    token_ttl_days = int(os.getenv("FINANCE_TOKEN_TTL_DAYS", "30"))
    cors_raw = os.getenv("FINANCE_CORS_ORIGINS", "*")
    cors_origins = [o.strip() for o in cors_raw.split(",") if o.strip()]
    gemini_api_key = os.getenv("FINANCE_GEMINI_API_KEY", "")
    gemini_model = os.getenv("FINANCE_GEMINI_MODEL", "gemini-2.0-flash")
    ai_timeout_secs = float(os.getenv("FINANCE_AI_TIMEOUT_SECS", "20"))
    scheduler_enabled = _env_flag("FINANCE_SCHEDULER_ENABLED", True)
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_ttl_days=token_ttl_days,
        cors_origins=cors_origins,
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        ai_timeout_secs=ai_timeout_secs,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
