from __future__ import annotations
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import models
from ..domain.enums import EventSource
from ..errors import BaseAppException
from ..ports.calendar_provider import CalendarProvider, ExternalEvent, SyncTokenInvalid
from ..repositories.calendar_repository import CalendarConnectionRepository, SqlAlchemyCalendarConnectionRepository
from ..repositories.event_repository import CalendarEventRepository, SqlAlchemyCalendarEventRepository
from ..services.calendar_service import CalendarService
from ..utils.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=30)

SYNC_CONNECTION_COUNT = Counter(
    "miniorg_calendar_sync_connections_total", "Calendar connection sync attempts", ["provider", "outcome"]
)
SYNC_CONNECTION_LATENCY = Histogram(
    "miniorg_calendar_sync_connection_duration_seconds", "Latency of one connection sync", ["provider"]
)


def content_hash(event: ExternalEvent) -> str:
    payload = {
        "title": event.title,
        "description": event.description,
        "start": event.start_time.isoformat(),
        "end": event.end_time.isoformat(),
        "allDay": event.is_all_day,
        "color": event.color,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


@dataclass
class ConnectionSyncResult:
    connection_id: str
    connection_name: Optional[str]
    status: str  # 'success' | 'error'
    error: Optional[str] = None
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectionId": self.connection_id,
            "connectionName": self.connection_name,
            "status": self.status,
            "error": self.error,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
        }


@dataclass
class SyncAllResult:
    synced_count: int
    total_count: int
    results: List[ConnectionSyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "syncedCount": self.synced_count,
            "totalCount": self.total_count,
            "results": [r.to_dict() for r in self.results],
        }


class SyncConnectionsUseCase:
    """Reconcile remote events of every active connection into local rows.

    Connections are processed one after another; each one commits or rolls
    back on its own so a failing calendar never blocks the others.
    """

    def __init__(
        self,
        provider: CalendarProvider,
        connection_repo: CalendarConnectionRepository | None = None,
        event_repo: CalendarEventRepository | None = None,
    ):
        self.connection_repo = connection_repo or SqlAlchemyCalendarConnectionRepository()
        self.event_repo = event_repo or SqlAlchemyCalendarEventRepository()
        self.calendar_service = CalendarService(provider)

    def execute(
        self,
        db: Session,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SyncAllResult:
        use_sync_token = start is None and end is None
        now = utcnow()
        start = start or now - DEFAULT_WINDOW
        end = end or now + DEFAULT_WINDOW

        connections = self.connection_repo.list_active_by_user(db, user_id)
        results: List[ConnectionSyncResult] = []
        for conn in connections:
            conn_id, conn_name, provider = conn.id, conn.name, conn.provider
            try:
                with SYNC_CONNECTION_LATENCY.labels(provider=provider).time():
                    result = self._sync_connection(db, conn, start, end, use_sync_token)
                db.commit()
            except Exception as exc:  # one connection's failure must not abort the batch
                db.rollback()
                message = exc.message if isinstance(exc, BaseAppException) else str(exc) or type(exc).__name__
                logger.warning("Calendar sync failed for connection %s: %s", conn_id, message, exc_info=True)
                SYNC_CONNECTION_COUNT.labels(provider=provider, outcome="error").inc()
                self._record_error(db, conn, message)
                results.append(ConnectionSyncResult(conn_id, conn_name, "error", error=message))
                continue
            SYNC_CONNECTION_COUNT.labels(provider=provider, outcome="success").inc()
            results.append(result)

        synced = sum(1 for r in results if r.status == "success")
        logger.info("Calendar sync for user %s: %d/%d connections", user_id, synced, len(results))
        return SyncAllResult(synced_count=synced, total_count=len(results), results=results)

    def _sync_connection(
        self,
        db: Session,
        conn: models.CalendarConnection,
        start: datetime,
        end: datetime,
        use_sync_token: bool,
    ) -> ConnectionSyncResult:
        sync_token = conn.sync_token if use_sync_token else None
        try:
            page = self.calendar_service.fetch_events(db, conn, start, end, sync_token=sync_token)
        except SyncTokenInvalid:
            if not sync_token:
                raise
            logger.info("Sync token expired for connection %s; full resync", conn.id)
            conn.sync_token = None
            page = self.calendar_service.fetch_events(db, conn, start, end)

        result = ConnectionSyncResult(conn.id, conn.name, "success")
        seen = set()
        for event in page.events:
            if event.id in seen:
                continue
            seen.add(event.id)
            self._apply(db, conn, event, result)

        if page.next_sync_token:
            conn.sync_token = page.next_sync_token
        conn.last_sync_at = utcnow()
        conn.last_error = None
        return result

    def _apply(
        self, db: Session, conn: models.CalendarConnection, event: ExternalEvent, result: ConnectionSyncResult
    ) -> None:
        existing = self.event_repo.find_by_external(db, conn.id, event.id)
        locally_owned = existing is not None and (existing.source == EventSource.MINIORG.value or existing.task_id)

        if event.cancelled:
            if existing is not None and not locally_owned:
                db.delete(existing)
                result.deleted += 1
            return

        digest = content_hash(event)
        now = utcnow()
        if existing is None:
            db.add(
                models.CalendarEvent(
                    user_id=conn.user_id,
                    title=event.title,
                    description=event.description,
                    start_time=event.start_time,
                    end_time=event.end_time,
                    is_all_day=event.is_all_day,
                    color=event.color,
                    source=conn.provider,
                    connection_id=conn.id,
                    external_id=event.id,
                    content_hash=digest,
                    sync_status="synced",
                    last_synced_at=now,
                )
            )
            result.created += 1
        elif locally_owned or existing.content_hash == digest:
            result.unchanged += 1
        else:
            existing.title = event.title
            existing.description = event.description
            existing.start_time = event.start_time
            existing.end_time = event.end_time
            existing.is_all_day = event.is_all_day
            existing.color = event.color
            existing.content_hash = digest
            existing.sync_status = "synced"
            existing.last_synced_at = now
            result.updated += 1

    def _record_error(self, db: Session, conn: models.CalendarConnection, message: str) -> None:
        try:
            conn.last_error = message[:1000]
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record sync error on connection %s", conn.id)
