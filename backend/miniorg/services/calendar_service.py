"""Access-token lifecycle for calendar connections.

Every provider call for a connection goes through ``call_with_token_refresh``:
the stored token is refreshed up front when it is about to expire, and once
more if the provider still rejects it. A second rejection propagates.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from prometheus_client import Counter
from sqlalchemy.orm import Session

from ..db import models
from ..ports.calendar_provider import (
    CalendarProvider,
    EventPage,
    ExternalEvent,
    ProviderError,
    ProviderTokenExpired,
    TokenRefreshError,
)
from ..repositories.calendar_repository import SqlAlchemyCalendarConnectionRepository
from ..utils.timeutil import utcnow
from .encryption_service import TokenDecryptError, get_encryption_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

REFRESH_MARGIN = timedelta(minutes=5)

TOKEN_REFRESH_COUNT = Counter(
    "miniorg_calendar_token_refresh_total", "Calendar access token refreshes", ["provider", "outcome"]
)


def get_calendar_provider(name: str = "google") -> CalendarProvider:
    if name == "google":
        from ..adapters.google_calendar_provider import GoogleCalendarProvider

        return GoogleCalendarProvider()
    raise ProviderError(f"Unsupported calendar provider: {name}", code="UNSUPPORTED_PROVIDER", http_status=400)


class CalendarService:
    def __init__(self, provider: CalendarProvider, repo: Optional[SqlAlchemyCalendarConnectionRepository] = None):
        self.provider = provider
        self.repo = repo or SqlAlchemyCalendarConnectionRepository()

    def _decrypt(self, value: Optional[str], what: str) -> Optional[str]:
        try:
            return get_encryption_service().decrypt_optional(value)
        except TokenDecryptError as exc:
            raise ProviderError(f"Failed to decrypt {what}", code="TOKEN_DECRYPT_FAILED") from exc

    def _rotate_keys(self, db: Session, connection: models.CalendarConnection) -> None:
        enc = get_encryption_service()
        stale = [
            field
            for field in ("access_token_encrypted", "refresh_token_encrypted")
            if getattr(connection, field) and enc.is_stale(getattr(connection, field))
        ]
        for field in stale:
            setattr(connection, field, enc.rotate(getattr(connection, field)))
        if stale:
            db.commit()
            logger.info("Re-encrypted tokens for connection %s under the current key", connection.id)

    def refresh_connection_token(self, db: Session, connection: models.CalendarConnection) -> str:
        refresh_token = self._decrypt(connection.refresh_token_encrypted, "refresh token")
        if not refresh_token:
            TOKEN_REFRESH_COUNT.labels(provider=connection.provider, outcome="missing").inc()
            raise TokenRefreshError("Access token expired and no refresh token is stored")
        try:
            tokens = self.provider.refresh_access_token(refresh_token)
        except ProviderError:
            TOKEN_REFRESH_COUNT.labels(provider=connection.provider, outcome="error").inc()
            raise
        self.repo.store_tokens(connection, tokens)
        db.commit()
        TOKEN_REFRESH_COUNT.labels(provider=connection.provider, outcome="success").inc()
        logger.info("Refreshed access token for connection %s", connection.id)
        return tokens.access_token

    def ensure_valid_token(self, db: Session, connection: models.CalendarConnection) -> str:
        """Return a usable access token, refreshing when it expires within five minutes."""
        access_token = self._decrypt(connection.access_token_encrypted, "access token")
        self._rotate_keys(db, connection)
        expires_soon = connection.expires_at is None or connection.expires_at <= utcnow() + REFRESH_MARGIN
        if access_token and not expires_soon:
            return access_token
        return self.refresh_connection_token(db, connection)

    def call_with_token_refresh(
        self, db: Session, connection: models.CalendarConnection, fn: Callable[[str], T]
    ) -> T:
        access_token = self.ensure_valid_token(db, connection)
        try:
            return fn(access_token)
        except ProviderTokenExpired:
            logger.info("Provider rejected token for connection %s; refreshing once", connection.id)
            access_token = self.refresh_connection_token(db, connection)
            return fn(access_token)

    def fetch_events(
        self,
        db: Session,
        connection: models.CalendarConnection,
        start: datetime,
        end: datetime,
        sync_token: Optional[str] = None,
    ) -> EventPage:
        return self.call_with_token_refresh(
            db,
            connection,
            lambda token: self.provider.list_events(token, connection.calendar_id, start, end, sync_token=sync_token),
        )

    # --- export mirroring ---
    def export_create(self, db: Session, connection: models.CalendarConnection, event: ExternalEvent) -> ExternalEvent:
        return self.call_with_token_refresh(
            db, connection, lambda token: self.provider.create_event(token, connection.calendar_id, event)
        )

    def export_update(
        self, db: Session, connection: models.CalendarConnection, external_id: str, event: ExternalEvent
    ) -> ExternalEvent:
        return self.call_with_token_refresh(
            db,
            connection,
            lambda token: self.provider.update_event(token, connection.calendar_id, external_id, event),
        )

    def export_delete(self, db: Session, connection: models.CalendarConnection, external_id: str) -> None:
        self.call_with_token_refresh(
            db, connection, lambda token: self.provider.delete_event(token, connection.calendar_id, external_id)
        )
