from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from ..errors import BaseAppException


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime  # naive UTC
    scope: str = ""


@dataclass
class ExternalCalendar:
    id: str
    name: str
    description: Optional[str] = None
    background_color: Optional[str] = None
    access_role: str = "reader"


@dataclass
class ExternalEvent:
    id: str
    title: str
    start_time: datetime  # naive UTC
    end_time: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    color: Optional[str] = None
    is_all_day: bool = False
    status: Optional[str] = None
    attendees: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


@dataclass
class EventPage:
    events: List[ExternalEvent]
    next_sync_token: Optional[str] = None


@dataclass
class ExternalIdentity:
    """The account behind a sign-in, as asserted by the provider's ID token."""

    subject: str
    email: str
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None


class ProviderError(BaseAppException):
    """Any provider failure that is not one of the specific cases below."""

    def __init__(self, message: str, code: str = "PROVIDER_ERROR", http_status: int = 502):
        super().__init__(code, message, http_status)


class OAuthExchangeError(ProviderError):
    def __init__(self, message: str):
        super().__init__(message, code="OAUTH_CODE_INVALID", http_status=400)


class TokenRefreshError(ProviderError):
    def __init__(self, message: str):
        super().__init__(message, code="TOKEN_REFRESH_FAILED")


class ProviderTokenExpired(ProviderError):
    def __init__(self, message: str = "access token expired or revoked"):
        super().__init__(message, code="PROVIDER_TOKEN_EXPIRED", http_status=401)


class SyncTokenInvalid(ProviderError):
    def __init__(self, message: str = "sync token no longer valid"):
        super().__init__(message, code="SYNC_TOKEN_INVALID", http_status=410)


class CalendarProvider(Protocol):
    """Abstracts external calendar operations for testability."""

    name: str

    def get_auth_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        """Consent URL requesting offline access; ``state`` is passed through untouched."""
        ...

    def exchange_code_for_tokens(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> TokenSet:
        ...

    def refresh_access_token(self, refresh_token: str) -> TokenSet:
        ...

    def list_calendars(self, access_token: str) -> List[ExternalCalendar]:
        ...

    def list_events(
        self,
        access_token: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        sync_token: Optional[str] = None,
    ) -> EventPage:
        """Events in ``[start, end]``, or the changes since ``sync_token`` when given.

        Cancelled events come back with ``status == "cancelled"``.
        """
        ...

    def create_event(self, access_token: str, calendar_id: str, event: ExternalEvent) -> ExternalEvent:
        ...

    def update_event(self, access_token: str, calendar_id: str, event_id: str, event: ExternalEvent) -> ExternalEvent:
        ...

    def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        ...

    # --- account sign-in with the same OAuth client ---
    def get_signin_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        """Consent URL for the identity scopes only (no calendar access)."""
        ...

    def exchange_signin_code(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> ExternalIdentity:
        ...
