from __future__ import annotations
from typing import Protocol, List, Optional
from sqlalchemy.orm import Session
from ..db import models
from ..ports.calendar_provider import ExternalCalendar, TokenSet
from ..services.encryption_service import get_encryption_service


class CalendarConnectionRepository(Protocol):
    def list_active_by_user(self, db: Session, user_id: str) -> List[models.CalendarConnection]:
        ...

    def upsert_from_external(
        self,
        db: Session,
        user_id: str,
        provider: str,
        calendar: ExternalCalendar,
        tokens: TokenSet,
        provider_account_id: Optional[str] = None,
    ) -> models.CalendarConnection:
        ...


class SqlAlchemyCalendarConnectionRepository:
    def list_by_user(self, db: Session, user_id: str) -> List[models.CalendarConnection]:
        return (
            db.query(models.CalendarConnection)
            .filter(models.CalendarConnection.user_id == user_id)
            .order_by(models.CalendarConnection.created_at)
            .all()
        )

    def list_active_by_user(self, db: Session, user_id: str) -> List[models.CalendarConnection]:
        return (
            db.query(models.CalendarConnection)
            .filter(models.CalendarConnection.user_id == user_id, models.CalendarConnection.is_active.is_(True))
            .order_by(models.CalendarConnection.created_at)
            .all()
        )

    def get_owned(self, db: Session, user_id: str, connection_id: str) -> Optional[models.CalendarConnection]:
        return (
            db.query(models.CalendarConnection)
            .filter(models.CalendarConnection.id == connection_id, models.CalendarConnection.user_id == user_id)
            .first()
        )

    def get_export_target(self, db: Session, user_id: str) -> Optional[models.CalendarConnection]:
        return (
            db.query(models.CalendarConnection)
            .filter(
                models.CalendarConnection.user_id == user_id,
                models.CalendarConnection.is_export_target.is_(True),
            )
            .first()
        )

    def set_export_target(self, db: Session, connection: models.CalendarConnection) -> None:
        """Make ``connection`` the user's only export target."""
        (
            db.query(models.CalendarConnection)
            .filter(
                models.CalendarConnection.user_id == connection.user_id,
                models.CalendarConnection.id != connection.id,
                models.CalendarConnection.is_export_target.is_(True),
            )
            .update({models.CalendarConnection.is_export_target: False}, synchronize_session="fetch")
        )
        connection.is_export_target = True

    def store_tokens(self, connection: models.CalendarConnection, tokens: TokenSet) -> None:
        enc = get_encryption_service()
        connection.access_token_encrypted = enc.encrypt(tokens.access_token)
        if tokens.refresh_token:
            connection.refresh_token_encrypted = enc.encrypt(tokens.refresh_token)
        connection.expires_at = tokens.expires_at

    def upsert_from_external(
        self,
        db: Session,
        user_id: str,
        provider: str,
        calendar: ExternalCalendar,
        tokens: TokenSet,
        provider_account_id: Optional[str] = None,
    ) -> models.CalendarConnection:
        existing = (
            db.query(models.CalendarConnection)
            .filter(
                models.CalendarConnection.user_id == user_id,
                models.CalendarConnection.provider == provider,
                models.CalendarConnection.calendar_id == calendar.id,
            )
            .first()
        )
        if existing:
            # Reconnect: refresh tokens, keep the user's activation choices.
            existing.name = calendar.name or existing.name
            existing.provider_account_id = provider_account_id or existing.provider_account_id
            existing.last_error = None
            self.store_tokens(existing, tokens)
            return existing
        conn = models.CalendarConnection(
            user_id=user_id,
            provider=provider,
            provider_account_id=provider_account_id,
            name=calendar.name,
            calendar_id=calendar.id,
            is_active=False,
            is_export_target=False,
        )
        self.store_tokens(conn, tokens)
        db.add(conn)
        return conn
