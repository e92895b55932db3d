from sqlalchemy.orm import Session
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

from ..db import models
from ..domain.enums import EventSource
from ..errors import NotFoundError, ValidationAppError
from ..ports.calendar_provider import CalendarProvider, ExternalEvent, ProviderError
from ..repositories.calendar_repository import SqlAlchemyCalendarConnectionRepository
from ..repositories.event_repository import SqlAlchemyCalendarEventRepository
from ..utils.timeutil import utcnow
from .calendar_service import CalendarService, get_calendar_provider

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "description", "start_time", "end_time", "is_all_day", "color", "task_id", "is_completed"}
IMPORTED_EDITABLE_FIELDS = {"is_completed"}
NON_NULLABLE_FIELDS = {"title", "start_time", "end_time", "is_all_day", "is_completed"}


def _as_external(event: models.CalendarEvent) -> ExternalEvent:
    return ExternalEvent(
        id=event.external_id or "",
        title=event.title,
        description=event.description,
        start_time=event.start_time,
        end_time=event.end_time,
        is_all_day=event.is_all_day,
        color=event.color,
    )


class EventService:
    """Local calendar events, their task links and the export-target mirror.

    Imported events are read-only except for ``is_completed``. Changes to
    local events are copied to the user's export target after the local
    commit; a failed copy is logged and marked on the event but never undoes
    the local change.
    """

    def __init__(self, provider_factory: Callable[[], CalendarProvider] = get_calendar_provider):
        self.provider_factory = provider_factory
        self.events = SqlAlchemyCalendarEventRepository()
        self.connections = SqlAlchemyCalendarConnectionRepository()

    def _calendar_service(self) -> CalendarService:
        return CalendarService(self.provider_factory(), self.connections)

    def _check_task(self, db: Session, user_id: str, task_id: Optional[str]) -> None:
        if task_id is None:
            return
        owned = db.query(models.Task.id).filter(models.Task.id == task_id, models.Task.user_id == user_id).first()
        if not owned:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")

    @staticmethod
    def _check_range(start: datetime, end: datetime) -> None:
        if end < start:
            raise ValidationAppError("EVENT_INVALID_RANGE", "endTime must not be before startTime")

    def get_event(self, db: Session, user_id: str, event_id: str) -> models.CalendarEvent:
        event = self.events.get_owned(db, user_id, event_id)
        if not event:
            raise NotFoundError("EVENT_NOT_FOUND", "Event not found")
        return event

    def list_events(
        self,
        db: Session,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> List[models.CalendarEvent]:
        return self.events.list_in_range(db, user_id, start, end, task_id)

    def create_event(
        self,
        db: Session,
        user_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        description: Optional[str] = None,
        is_all_day: bool = False,
        color: Optional[str] = None,
        task_id: Optional[str] = None,
        is_completed: bool = False,
    ) -> models.CalendarEvent:
        self._check_range(start_time, end_time)
        self._check_task(db, user_id, task_id)
        event = models.CalendarEvent(
            user_id=user_id,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            is_all_day=is_all_day,
            color=color,
            task_id=task_id,
            is_completed=is_completed,
            source=EventSource.MINIORG.value,
        )
        db.add(event)
        db.commit()
        self._export_upsert(db, event)
        return event

    def update_event(self, db: Session, user_id: str, event_id: str, changes: Dict[str, Any]) -> models.CalendarEvent:
        event = self.get_event(db, user_id, event_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationAppError("INVALID_FIELDS", f"Cannot update: {', '.join(sorted(unknown))}")
        nulled = sorted(k for k in set(changes) & NON_NULLABLE_FIELDS if changes[k] is None)
        if nulled:
            raise ValidationAppError("INVALID_FIELDS", f"Cannot clear: {', '.join(nulled)}")
        if event.source != EventSource.MINIORG.value and set(changes) - IMPORTED_EDITABLE_FIELDS:
            raise ValidationAppError("EVENT_READ_ONLY", "Imported events can only be marked completed")
        if "task_id" in changes:
            self._check_task(db, user_id, changes["task_id"])
        self._check_range(changes.get("start_time", event.start_time), changes.get("end_time", event.end_time))

        for name, value in changes.items():
            setattr(event, name, value)
        db.commit()
        if event.source == EventSource.MINIORG.value and set(changes) - {"is_completed", "task_id"}:
            self._export_upsert(db, event)
        return event

    def delete_event(self, db: Session, user_id: str, event_id: str) -> None:
        event = self.get_event(db, user_id, event_id)
        if event.source != EventSource.MINIORG.value:
            raise ValidationAppError("EVENT_READ_ONLY", "Imported events can only be marked completed")
        self.delete_events(db, user_id, [event])

    def delete_events(self, db: Session, user_id: str, events: Iterable[models.CalendarEvent]) -> None:
        """Delete local events and commit the session, then remove exported copies."""
        exported: List[Tuple[str, str]] = []
        for event in events:
            if event.user_id != user_id:
                raise NotFoundError("EVENT_NOT_FOUND", "Event not found")
            if event.connection_id and event.external_id:
                exported.append((event.connection_id, event.external_id))
            db.delete(event)
        db.commit()
        for connection_id, external_id in exported:
            self._export_delete(db, user_id, connection_id, external_id)

    # --- export mirror ---
    def _export_upsert(self, db: Session, event: models.CalendarEvent) -> None:
        if event.connection_id and event.external_id:
            connection = self.connections.get_owned(db, event.user_id, event.connection_id)
        else:
            connection = self.connections.get_export_target(db, event.user_id)
        if connection is None:
            return
        try:
            service = self._calendar_service()
            if event.external_id:
                remote = service.export_update(db, connection, event.external_id, _as_external(event))
            else:
                remote = service.export_create(db, connection, _as_external(event))
        except ProviderError as exc:
            logger.warning("Export of event %s to connection %s failed: %s", event.id, connection.id, exc.message)
            event.sync_status = "error"
            db.commit()
            return
        event.connection_id = connection.id
        event.external_id = remote.id
        event.sync_status = "synced"
        event.last_synced_at = utcnow()
        db.commit()

    def _export_delete(self, db: Session, user_id: str, connection_id: str, external_id: str) -> None:
        connection = self.connections.get_owned(db, user_id, connection_id)
        if connection is None:
            return
        try:
            self._calendar_service().export_delete(db, connection, external_id)
        except ProviderError as exc:
            logger.warning("Remote delete of %s on connection %s failed: %s", external_id, connection_id, exc.message)
