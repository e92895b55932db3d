"""OAuth flows for calendar connections and Google sign-in.

Both use the authorization-code flow with PKCE. The ``state`` parameter is a
signed short-lived token (see ``token_service``) whose nonce is remembered by
the state store until the callback redeems it once. The token's purpose keeps
a sign-in state from completing a calendar connection and vice versa.
"""
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
from urllib.parse import urlencode

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import models
from ..errors import BaseAppException
from ..ports.calendar_provider import CalendarProvider
from ..repositories.calendar_repository import SqlAlchemyCalendarConnectionRepository
from .auth_service import AuthService
from .state_store import StateStore, backend_name, get_state_store
from .token_service import STATE_PURPOSE_CALENDAR, STATE_PURPOSE_SIGNIN, StateClaims, TokenInvalid, TokenService

try:  # optional tracing
    from opentelemetry import trace
    _oauth_tracer = trace.get_tracer(__name__)
except ImportError:  # pragma: no cover
    _oauth_tracer = None

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALLBACK_PATH = "/settings/calendars"
DEFAULT_SIGNIN_PATH = "/"
DESKTOP_SCHEME = "miniorg://"

OAUTH_START_COUNT = Counter("miniorg_oauth_start_total", "OAuth start requests", ["provider"])
OAUTH_EXCHANGE_COUNT = Counter(
    "miniorg_oauth_exchange_total", "OAuth code exchange attempts", ["provider", "outcome"]
)
OAUTH_EXCHANGE_LATENCY = Histogram(
    "miniorg_oauth_exchange_duration_seconds", "OAuth code exchange latency", ["provider"]
)
OAUTH_STATE_SIZE = Gauge("miniorg_oauth_state_store_size", "Number of pending OAuth states", ["backend"])


class OAuthError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, http_status=400)


@dataclass
class CallbackResult:
    claims: StateClaims
    connections: List[models.CalendarConnection]


@dataclass
class SignInResult:
    claims: StateClaims
    user: models.User


def _pkce_pair():
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode("utf-8")).digest()).decode("utf-8").rstrip("=")
    return verifier, challenge


def safe_callback_path(value: Optional[str], default: str = DEFAULT_CALLBACK_PATH) -> str:
    """Only same-site relative paths are allowed as post-auth destinations."""
    if not value or not value.startswith("/") or value.startswith("//"):
        return default
    return value


class OAuthService:
    """OAuth 2.0 service for calendar connections and account sign-in."""

    def __init__(
        self,
        provider: CalendarProvider,
        state_store: Optional[StateStore] = None,
        tokens: Optional[TokenService] = None,
        settings: Optional[Settings] = None,
    ):
        self.provider = provider
        self.settings = settings or get_settings()
        self.state_store = state_store or get_state_store()
        self.tokens = tokens or TokenService(self.settings)
        self.connections = SqlAlchemyCalendarConnectionRepository()

    @property
    def redirect_uri(self) -> str:
        return self.settings.calendar_redirect_uri

    def start_calendar_auth(self, user_id: str, callback_url: Optional[str] = None, source: str = "web") -> dict:
        """Issue a signed state, remember its nonce and return the consent URL."""
        state, nonce = self.tokens.issue_state_token(user_id, safe_callback_path(callback_url), source)
        code_verifier, code_challenge = _pkce_pair()
        self.state_store.put(nonce, code_verifier)
        OAUTH_STATE_SIZE.labels(backend=backend_name(self.state_store)).set(self.state_store.size())
        auth_url = self.provider.get_auth_url(self.redirect_uri, state, code_challenge)
        OAUTH_START_COUNT.labels(provider=self.provider.name).inc()
        return {"authUrl": auth_url, "state": state}

    def read_state(self, state: str) -> StateClaims:
        try:
            return self.tokens.verify_state_token(state)
        except TokenInvalid as exc:
            logger.info("Rejected OAuth state: %s", exc)
            raise OAuthError("OAUTH_STATE_INVALID", "State is invalid or expired") from exc

    def _redeem(self, state: str, purpose: str) -> Tuple[StateClaims, Dict[str, Any]]:
        claims = self.read_state(state)
        if claims.purpose != purpose:
            logger.info("Rejected OAuth state issued for %s", claims.purpose)
            raise OAuthError("OAUTH_STATE_INVALID", "State is invalid or expired")
        entry = self.state_store.pop(claims.nonce)
        if not entry:
            raise OAuthError("OAUTH_STATE_INVALID", "State was already used or has expired")
        return claims, entry

    def _exchange(self, span_name: str, exchange: Callable[[], T]) -> T:
        provider = self.provider.name
        try:
            with OAUTH_EXCHANGE_LATENCY.labels(provider=provider).time():
                if _oauth_tracer:
                    with _oauth_tracer.start_as_current_span(span_name) as span:
                        span.set_attribute("oauth.provider", provider)
                        result = exchange()
                else:
                    result = exchange()
        except BaseAppException:
            OAUTH_EXCHANGE_COUNT.labels(provider=provider, outcome="error").inc()
            raise
        OAUTH_EXCHANGE_COUNT.labels(provider=provider, outcome="success").inc()
        return result

    def complete_calendar_auth(self, db: Session, state: str, code: str) -> CallbackResult:
        claims, entry = self._redeem(state, STATE_PURPOSE_CALENDAR)
        user = db.query(models.User).filter(models.User.id == claims.user_id).first()
        if not user:
            raise OAuthError("USER_NOT_FOUND", "User not found")

        provider = self.provider.name
        tokens = self._exchange(
            "oauth.exchange_code",
            lambda: self.provider.exchange_code_for_tokens(code, self.redirect_uri, entry["code_verifier"]),
        )
        calendars = self.provider.list_calendars(tokens.access_token)
        connections = [
            self.connections.upsert_from_external(db, user.id, provider, calendar, tokens, provider_account_id=calendar.id)
            for calendar in calendars
        ]
        db.commit()
        logger.info("Connected %d %s calendars for user %s", len(connections), provider, user.id)
        return CallbackResult(claims=claims, connections=connections)

    # --- account sign-in ---
    def start_sign_in(self, callback_url: Optional[str] = None) -> dict:
        state, nonce = self.tokens.issue_state_token(
            None, safe_callback_path(callback_url, DEFAULT_SIGNIN_PATH), "web", purpose=STATE_PURPOSE_SIGNIN
        )
        code_verifier, code_challenge = _pkce_pair()
        self.state_store.put(nonce, code_verifier)
        OAUTH_STATE_SIZE.labels(backend=backend_name(self.state_store)).set(self.state_store.size())
        auth_url = self.provider.get_signin_url(self.settings.signin_redirect_uri, state, code_challenge)
        OAUTH_START_COUNT.labels(provider=self.provider.name).inc()
        return {"authUrl": auth_url, "state": state}

    def complete_sign_in(self, db: Session, state: str, code: str) -> SignInResult:
        claims, entry = self._redeem(state, STATE_PURPOSE_SIGNIN)
        identity = self._exchange(
            "oauth.exchange_signin_code",
            lambda: self.provider.exchange_signin_code(code, self.settings.signin_redirect_uri, entry["code_verifier"]),
        )
        return SignInResult(claims=claims, user=AuthService(db).sign_in_with_google(identity))

    def desktop_sign_in(
        self, db: Session, code: str, redirect_uri: Optional[str] = None, code_verifier: Optional[str] = None
    ) -> models.User:
        """Desktop apps run the consent step themselves and hand over the code."""
        identity = self._exchange(
            "oauth.exchange_signin_code",
            lambda: self.provider.exchange_signin_code(
                code, redirect_uri or self.settings.desktop_signin_redirect_uri, code_verifier
            ),
        )
        return AuthService(db).sign_in_with_google(identity)

    def signin_success_redirect(self, claims: StateClaims) -> str:
        return f"{self.settings.app_base_url}{safe_callback_path(claims.callback_url, DEFAULT_SIGNIN_PATH)}"

    def signin_error_redirect(self, error: str) -> str:
        return f"{self.settings.app_base_url}/login?{urlencode({'error': error})}"

    # --- redirects ---
    def success_redirect(self, claims: StateClaims) -> str:
        query = urlencode({"onboarding": "true"})
        if claims.source == "desktop":
            return f"{DESKTOP_SCHEME}{DEFAULT_CALLBACK_PATH.lstrip('/')}?{query}"
        path = safe_callback_path(claims.callback_url)
        separator = "&" if "?" in path else "?"
        return f"{self.settings.app_base_url}{path}{separator}{query}"

    def error_redirect(self, error: str, source: str = "web") -> str:
        query = urlencode({"error": error})
        if source == "desktop":
            return f"{DESKTOP_SCHEME}{DEFAULT_CALLBACK_PATH.lstrip('/')}?{query}"
        return f"{self.settings.app_base_url}{DEFAULT_CALLBACK_PATH}?{query}"
