"""Runtime settings read from the environment.

Values are read on every ``get_settings()`` call so tests can patch
``os.environ`` without reloading modules.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

_TRUTHY = {"1", "true", "TRUE", "yes", "on"}


def _split_csv(raw: str | None) -> List[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+pysqlite:///./local.db"
    auth_secret: str = "dev-secret-change-me"
    jwt_issuer: str = "miniorg-desktop"
    jwt_audience: str = "miniorg-desktop"
    state_audience: str = "miniorg-desktop-oauth-state"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_calendar_redirect_uri: str | None = None
    google_signin_redirect_uri: str | None = None
    desktop_signin_redirect_uri: str = "tauri://localhost"
    app_base_url: str = "http://localhost:3000"
    resend_api_key: str | None = None
    mail_from: str = "MiniOrg <noreply@miniorg.app>"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    oauth_state_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    provider_timeout_seconds: float = 20.0
    session_ttl_days: int = 30
    log_level: str = "INFO"

    @property
    def calendar_redirect_uri(self) -> str:
        return self.google_calendar_redirect_uri or f"{self.app_base_url}/auth/google-calendar/callback"

    @property
    def signin_redirect_uri(self) -> str:
        return self.google_signin_redirect_uri or f"{self.app_base_url}/auth/google/callback"


def get_settings() -> Settings:
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        auth_secret=os.getenv("AUTH_SECRET", defaults.auth_secret),
        jwt_issuer=os.getenv("AUTH_JWT_ISSUER", defaults.jwt_issuer),
        jwt_audience=os.getenv("AUTH_JWT_AUDIENCE", defaults.jwt_audience),
        state_audience=os.getenv("AUTH_STATE_AUDIENCE", defaults.state_audience),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
        google_calendar_redirect_uri=os.getenv("GOOGLE_CALENDAR_REDIRECT_URI"),
        google_signin_redirect_uri=os.getenv("GOOGLE_SIGNIN_REDIRECT_URI"),
        desktop_signin_redirect_uri=os.getenv("DESKTOP_SIGNIN_REDIRECT_URI", defaults.desktop_signin_redirect_uri),
        app_base_url=os.getenv("APP_BASE_URL", defaults.app_base_url).rstrip("/"),
        resend_api_key=os.getenv("RESEND_API_KEY"),
        mail_from=os.getenv("MAIL_FROM", defaults.mail_from),
        cors_allow_origins=_split_csv(os.getenv("CORS_ALLOW_ORIGINS")) or defaults.cors_allow_origins,
        oauth_state_backend=os.getenv("OAUTH_STATE_BACKEND", defaults.oauth_state_backend).lower(),
        redis_url=os.getenv("REDIS_URL", defaults.redis_url),
        provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", defaults.provider_timeout_seconds)),
        session_ttl_days=int(os.getenv("SESSION_TTL_DAYS", defaults.session_ttl_days)),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


def load_dotenv_if_requested() -> None:  # pragma: no cover
    if os.getenv("APP_LOAD_DOTENV") not in _TRUTHY:
        return
    from dotenv import load_dotenv

    # Respect existing env (override=False). Default search walks up from CWD.
    load_dotenv(override=False)
