from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httplib2
from dateutil import parser as dateparser
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.oauth2 import id_token as google_id_token
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import Settings, get_settings
from ..ports.calendar_provider import (
    CalendarProvider,
    EventPage,
    ExternalCalendar,
    ExternalEvent,
    ExternalIdentity,
    OAuthExchangeError,
    ProviderError,
    ProviderTokenExpired,
    SyncTokenInvalid,
    TokenRefreshError,
    TokenSet,
)
from ..utils.timeutil import to_utc_naive, utcnow

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/calendar"]
SIGNIN_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]
SKIPPED_EVENT_TYPES = {"workingLocation", "outOfOffice"}


class _TimeoutRequest(GoogleRequest):
    """google-auth transport with a default timeout for token endpoint calls."""

    def __init__(self, timeout: float):
        super().__init__()
        self._timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(url, method=method, body=body, headers=headers,
                                timeout=timeout or self._timeout, **kwargs)


def _parse_when(value: Optional[Dict[str, Any]]) -> datetime:
    value = value or {}
    if value.get("dateTime"):
        return to_utc_naive(dateparser.isoparse(value["dateTime"]))
    if value.get("date"):
        return datetime.fromisoformat(value["date"])
    return utcnow()


def _format_when(moment: datetime, all_day: bool) -> Dict[str, str]:
    if all_day:
        return {"date": moment.date().isoformat()}
    return {"dateTime": to_utc_naive(moment).isoformat() + "Z", "timeZone": "UTC"}


def _to_external_event(item: Dict[str, Any]) -> ExternalEvent:
    return ExternalEvent(
        id=item["id"],
        title=item.get("summary") or "Untitled Event",
        description=item.get("description"),
        start_time=_parse_when(item.get("start")),
        end_time=_parse_when(item.get("end")),
        location=item.get("location"),
        color=item.get("colorId"),
        is_all_day=bool((item.get("start") or {}).get("date")),
        status=item.get("status"),
        attendees=[a.get("email") for a in item.get("attendees") or [] if a.get("email")],
    )


def _to_body(event: ExternalEvent) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "summary": event.title,
        "description": event.description,
        "start": _format_when(event.start_time, event.is_all_day),
        "end": _format_when(event.end_time, event.is_all_day),
    }
    if event.location:
        body["location"] = event.location
    if event.color:
        body["colorId"] = event.color
    if event.attendees:
        body["attendees"] = [{"email": email} for email in event.attendees]
    return body


class GoogleCalendarProvider(CalendarProvider):
    name = "google"

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        if not settings.google_client_id or not settings.google_client_secret:
            raise ProviderError("Google OAuth credentials not configured", code="OAUTH_CONFIG_MISSING", http_status=500)
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.timeout = settings.provider_timeout_seconds

    # --- OAuth ---
    def _flow(self, redirect_uri: str, scopes: Optional[List[str]] = None) -> Flow:
        return Flow.from_client_config(
            {
                "web": {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "auth_uri": AUTH_URI,
                    "token_uri": TOKEN_URI,
                }
            },
            scopes=scopes or SCOPES,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )

    def get_auth_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"access_type": "offline", "prompt": "consent", "state": state}
        if code_challenge:
            params.update(code_challenge=code_challenge, code_challenge_method="S256")
        authorization_url, _ = self._flow(redirect_uri).authorization_url(**params)
        return authorization_url

    def _fetch_credentials(self, flow: Flow, code: str, code_verifier: Optional[str]) -> Credentials:
        kwargs: Dict[str, Any] = {"code": code, "timeout": self.timeout}
        if code_verifier:
            kwargs["code_verifier"] = code_verifier
        try:
            flow.fetch_token(**kwargs)
        except Exception as exc:  # oauthlib / requests raise a wide range of types
            raise OAuthExchangeError(f"Failed to exchange code: {exc}") from exc
        return flow.credentials

    def exchange_code_for_tokens(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenSet:
        creds = self._fetch_credentials(self._flow(redirect_uri), code, code_verifier)
        if not creds.token:
            raise OAuthExchangeError("No access token received from Google")
        return TokenSet(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=creds.expiry or utcnow() + timedelta(hours=1),
            scope=" ".join(creds.scopes or []),
        )

    def refresh_access_token(self, refresh_token: str) -> TokenSet:
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            creds.refresh(_TimeoutRequest(self.timeout))
        except (GoogleAuthError, OSError) as exc:
            raise TokenRefreshError(f"Failed to refresh access token: {exc}") from exc
        return TokenSet(
            access_token=creds.token,
            refresh_token=creds.refresh_token or refresh_token,
            expires_at=creds.expiry or utcnow() + timedelta(hours=1),
            scope=" ".join(creds.scopes or []),
        )

    # --- Sign-in ---
    def get_signin_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"state": state, "prompt": "select_account"}
        if code_challenge:
            params.update(code_challenge=code_challenge, code_challenge_method="S256")
        authorization_url, _ = self._flow(redirect_uri, SIGNIN_SCOPES).authorization_url(**params)
        return authorization_url

    def exchange_signin_code(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> ExternalIdentity:
        creds = self._fetch_credentials(self._flow(redirect_uri, SIGNIN_SCOPES), code, code_verifier)
        if not creds.id_token:
            raise OAuthExchangeError("No ID token received from Google")
        try:
            claims = google_id_token.verify_oauth2_token(creds.id_token, _TimeoutRequest(self.timeout), self.client_id)
        except (GoogleAuthError, ValueError) as exc:
            raise OAuthExchangeError(f"Invalid ID token: {exc}") from exc
        return ExternalIdentity(
            subject=claims["sub"],
            email=claims.get("email") or "",
            email_verified=bool(claims.get("email_verified")),
            name=claims.get("name"),
            picture=claims.get("picture"),
        )

    # --- Calendar API ---
    def _service(self, access_token: str):
        # Refresh is owned by calendar_service, so 401s must surface instead of auto-refreshing.
        http = AuthorizedHttp(
            Credentials(token=access_token),
            http=httplib2.Http(timeout=self.timeout),
            refresh_status_codes=(),
        )
        return build("calendar", "v3", http=http, cache_discovery=False)

    def _execute(self, request):
        try:
            return request.execute()
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            if status == 401:
                raise ProviderTokenExpired() from exc
            if status == 410:
                raise SyncTokenInvalid() from exc
            raise ProviderError(f"Google Calendar API error: {status} {exc}") from exc
        except RefreshError as exc:
            raise ProviderTokenExpired(str(exc)) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:  # includes socket timeouts
            raise ProviderError(f"Google Calendar request failed: {exc}") from exc

    def list_calendars(self, access_token: str) -> List[ExternalCalendar]:
        res = self._execute(self._service(access_token).calendarList().list())
        return [
            ExternalCalendar(
                id=item["id"],
                name=item.get("summary") or "Unnamed Calendar",
                description=item.get("description"),
                background_color=item.get("backgroundColor"),
                access_role=item.get("accessRole") or "reader",
            )
            for item in res.get("items", [])
        ]

    def list_events(
        self,
        access_token: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        sync_token: Optional[str] = None,
    ) -> EventPage:
        service = self._service(access_token)
        params: Dict[str, Any] = {"calendarId": calendar_id, "singleEvents": True, "maxResults": 2500}
        if sync_token:
            params["syncToken"] = sync_token
        else:
            params.update(
                timeMin=to_utc_naive(start).isoformat() + "Z",
                timeMax=to_utc_naive(end).isoformat() + "Z",
                orderBy="startTime",
            )
        events: List[ExternalEvent] = []
        page_token = None
        while True:
            res = self._execute(service.events().list(pageToken=page_token, **params))
            for item in res.get("items", []):
                if (item.get("eventType") or "default") in SKIPPED_EVENT_TYPES:
                    continue
                events.append(_to_external_event(item))
            page_token = res.get("nextPageToken")
            if not page_token:
                return EventPage(events=events, next_sync_token=res.get("nextSyncToken"))

    def create_event(self, access_token: str, calendar_id: str, event: ExternalEvent) -> ExternalEvent:
        data = self._execute(
            self._service(access_token).events().insert(calendarId=calendar_id, body=_to_body(event))
        )
        return _to_external_event(data)

    def update_event(self, access_token: str, calendar_id: str, event_id: str, event: ExternalEvent) -> ExternalEvent:
        data = self._execute(
            self._service(access_token).events().patch(calendarId=calendar_id, eventId=event_id, body=_to_body(event))
        )
        return _to_external_event(data)

    def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        self._execute(self._service(access_token).events().delete(calendarId=calendar_id, eventId=event_id))
