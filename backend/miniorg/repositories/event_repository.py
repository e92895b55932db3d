from __future__ import annotations
from typing import Protocol, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session

from ..db import models


class CalendarEventRepository(Protocol):
    def find_by_external(self, db: Session, connection_id: str, external_id: str) -> Optional[models.CalendarEvent]: ...
    def list_in_range(
        self, db: Session, user_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> List[models.CalendarEvent]: ...


class SqlAlchemyCalendarEventRepository:
    def find_by_external(self, db: Session, connection_id: str, external_id: str) -> Optional[models.CalendarEvent]:
        return (
            db.query(models.CalendarEvent)
            .filter(
                models.CalendarEvent.connection_id == connection_id,
                models.CalendarEvent.external_id == external_id,
            )
            .first()
        )

    def get_owned(self, db: Session, user_id: str, event_id: str) -> Optional[models.CalendarEvent]:
        return (
            db.query(models.CalendarEvent)
            .filter(models.CalendarEvent.id == event_id, models.CalendarEvent.user_id == user_id)
            .first()
        )

    def list_in_range(
        self,
        db: Session,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> List[models.CalendarEvent]:
        """Events overlapping ``[start, end]``; either bound may be open."""
        q = db.query(models.CalendarEvent).filter(models.CalendarEvent.user_id == user_id)
        if start is not None:
            q = q.filter(models.CalendarEvent.end_time >= start)
        if end is not None:
            q = q.filter(models.CalendarEvent.start_time <= end)
        if task_id is not None:
            q = q.filter(models.CalendarEvent.task_id == task_id)
        return q.order_by(models.CalendarEvent.start_time).all()
