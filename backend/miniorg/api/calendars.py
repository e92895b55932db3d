from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import models
from ..db.session import get_db
from ..errors import NotFoundError
from ..repositories.calendar_repository import SqlAlchemyCalendarConnectionRepository
from ..usecases.sync_connections import SyncConnectionsUseCase
from ..utils.timeutil import to_utc_naive
from .auth import Caller, get_caller
from .deps import get_provider_factory

sync_router = APIRouter(prefix="/calendar-sync", tags=["calendars"])
connections_router = APIRouter(prefix="/calendar-connections", tags=["calendars"])

repo = SqlAlchemyCalendarConnectionRepository()


class SyncIn(BaseModel):
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class ConnectionPatch(BaseModel):
    isActive: Optional[bool] = None
    isExportTarget: Optional[bool] = None
    name: Optional[str] = None


def connection_out(c: models.CalendarConnection) -> dict:
    return {
        "id": c.id,
        "provider": c.provider,
        "name": c.name,
        "calendarId": c.calendar_id,
        "isActive": c.is_active,
        "isExportTarget": c.is_export_target,
        "lastSyncAt": c.last_sync_at,
        "lastError": c.last_error,
        "createdAt": c.created_at,
    }


@sync_router.post("")
def sync_calendars(
    body: Optional[SyncIn] = Body(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    provider_factory=Depends(get_provider_factory),
):
    body = body or SyncIn()
    start = to_utc_naive(body.startDate) if body.startDate else None
    end = to_utc_naive(body.endDate) if body.endDate else None
    uc = SyncConnectionsUseCase(provider_factory())
    return uc.execute(db, caller.user_id, start, end).to_dict()


@connections_router.get("")
def list_connections(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return [connection_out(c) for c in repo.list_by_user(db, caller.user_id)]


@connections_router.patch("/{connection_id}")
def update_connection(
    connection_id: str,
    body: ConnectionPatch,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    conn = repo.get_owned(db, caller.user_id, connection_id)
    if not conn:
        raise NotFoundError("CONNECTION_NOT_FOUND", "Calendar connection not found")
    if body.isActive is not None:
        conn.is_active = body.isActive
    if body.name is not None:
        conn.name = body.name
    if body.isExportTarget is True:
        repo.set_export_target(db, conn)
    elif body.isExportTarget is False:
        conn.is_export_target = False
    db.commit()
    return connection_out(conn)


@connections_router.delete("/{connection_id}")
def delete_connection(connection_id: str, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    conn = repo.get_owned(db, caller.user_id, connection_id)
    if not conn:
        raise NotFoundError("CONNECTION_NOT_FOUND", "Calendar connection not found")
    # Imported events go with the connection; exported local events stay, unlinked.
    db.query(models.CalendarEvent).filter(
        models.CalendarEvent.connection_id == conn.id,
        models.CalendarEvent.source != "miniorg",
    ).delete(synchronize_session="fetch")
    db.query(models.CalendarEvent).filter(models.CalendarEvent.connection_id == conn.id).update(
        {models.CalendarEvent.connection_id: None, models.CalendarEvent.external_id: None},
        synchronize_session="fetch",
    )
    db.delete(conn)
    db.commit()
    return {"success": True}
