from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    log_level: str
    sentry_dsn: str | None
    rate_limit: str
    rate_limit_enabled: bool
    cors_allowed_origins: tuple[str, ...]
    frontend_url: str
    database_path: str
    google_client_id: str | None
    google_client_secret: str | None
    gmail_redirect_uri: str
    microsoft_client_id: str | None
    microsoft_client_secret: str | None
    microsoft_authority: str
    outlook_redirect_uri: str
    mail_timeout_s: float
    harvest_page_size: int
    harvest_max_workers: int
    harvest_max_part_depth: int
    harvest_default_days: int
    openai_api_key: str | None
    openai_base_url: str | None
    openai_model: str
    openai_timeout_s: float
    scoring_temperature: float
    scoring_max_tokens: int
    scoring_max_cv_chars: int


settings = Settings(
    api_key=_get_env("API_KEY"),
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    rate_limit=_get_env("RATE_LIMIT", "10/minute") or "10/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5000",
            "http://127.0.0.1:5000",
            "http://localhost:5173",
            "http://localhost:3000",
        ],
    ),
    frontend_url=_get_env("FRONTEND_URL", "http://localhost:5000") or "http://localhost:5000",
    database_path=_get_env("DATABASE_PATH", "data/screener.db") or "data/screener.db",
    google_client_id=_get_env("GOOGLE_CLIENT_ID"),
    google_client_secret=_get_env("GOOGLE_CLIENT_SECRET"),
    gmail_redirect_uri=_get_env("GMAIL_REDIRECT_URI", "http://localhost:8000/v1/auth/callback/gmail")
    or "http://localhost:8000/v1/auth/callback/gmail",
    microsoft_client_id=_get_env("MICROSOFT_CLIENT_ID"),
    microsoft_client_secret=_get_env("MICROSOFT_CLIENT_SECRET"),
    microsoft_authority=_get_env("MICROSOFT_AUTHORITY", "https://login.microsoftonline.com/common")
    or "https://login.microsoftonline.com/common",
    outlook_redirect_uri=_get_env("OUTLOOK_REDIRECT_URI", "http://localhost:8000/v1/auth/callback/outlook")
    or "http://localhost:8000/v1/auth/callback/outlook",
    mail_timeout_s=_get_env_float("MAIL_TIMEOUT_S", 30.0),
    harvest_page_size=_get_env_int("HARVEST_PAGE_SIZE", 50),
    harvest_max_workers=_get_env_int("HARVEST_MAX_WORKERS", 4),
    harvest_max_part_depth=_get_env_int("HARVEST_MAX_PART_DEPTH", 20),
    harvest_default_days=_get_env_int("HARVEST_DEFAULT_DAYS", 30),
    openai_api_key=_get_env("OPENAI_API_KEY"),
    openai_base_url=_get_env("OPENAI_BASE_URL"),
    openai_model=_get_env("OPENAI_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
    openai_timeout_s=_get_env_float("OPENAI_TIMEOUT_S", 60.0),
    scoring_temperature=_get_env_float("SCORING_TEMPERATURE", 0.7),
    scoring_max_tokens=_get_env_int("SCORING_MAX_TOKENS", 500),
    scoring_max_cv_chars=_get_env_int("SCORING_MAX_CV_CHARS", 8000),
)

if settings.harvest_max_workers < 1:
    raise RuntimeError("HARVEST_MAX_WORKERS must be at least 1.")

if not 1 <= settings.harvest_page_size <= 500:
    raise RuntimeError("HARVEST_PAGE_SIZE must be between 1 and 500.")
