from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional
from ..db.session import get_db
from ..db import models
from ..services.event_service import EventService
from ..utils.timeutil import to_utc_naive
from .auth import Caller, get_caller
from .deps import get_provider_factory

router = APIRouter(prefix="/calendar-events", tags=["events"])


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    description: Optional[str] = None
    is_all_day: bool = Field(default=False, alias="isAllDay")
    color: Optional[str] = None
    task_id: Optional[str] = Field(None, alias="taskId")
    is_completed: bool = Field(default=False, alias="isCompleted")

    model_config = ConfigDict(populate_by_name=True)


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    description: Optional[str] = None
    is_all_day: Optional[bool] = Field(None, alias="isAllDay")
    color: Optional[str] = None
    task_id: Optional[str] = Field(None, alias="taskId")
    is_completed: Optional[bool] = Field(None, alias="isCompleted")

    model_config = ConfigDict(populate_by_name=True)


def event_out(e: models.CalendarEvent) -> dict:
    task = e.task
    return {
        "id": e.id,
        "title": e.title,
        "description": e.description,
        "startTime": e.start_time,
        "endTime": e.end_time,
        "isAllDay": e.is_all_day,
        "color": e.color,
        "source": e.source,
        "taskId": e.task_id,
        "connectionId": e.connection_id,
        "externalId": e.external_id,
        "isCompleted": e.is_completed,
        "syncStatus": e.sync_status,
        "task": {"id": task.id, "title": task.title, "status": task.status} if task else None,
    }


def get_event_service(provider_factory=Depends(get_provider_factory)) -> EventService:
    return EventService(provider_factory)


@router.get("")
def list_events(
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    taskId: Optional[str] = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    start = to_utc_naive(startDate) if startDate else None
    end = to_utc_naive(endDate) if endDate else None
    return [event_out(e) for e in svc.list_events(db, caller.user_id, start, end, taskId)]


@router.post("", status_code=201)
def create_event(
    body: EventCreate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    event = svc.create_event(
        db,
        caller.user_id,
        title=body.title,
        start_time=to_utc_naive(body.start_time),
        end_time=to_utc_naive(body.end_time),
        description=body.description,
        is_all_day=body.is_all_day,
        color=body.color,
        task_id=body.task_id,
        is_completed=body.is_completed,
    )
    return event_out(event)


@router.patch("/{event_id}")
def update_event(
    event_id: str,
    body: EventUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    changes = body.model_dump(exclude_unset=True)
    for key in ("start_time", "end_time"):
        if changes.get(key) is not None:
            changes[key] = to_utc_naive(changes[key])
    return event_out(svc.update_event(db, caller.user_id, event_id, changes))


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    svc.delete_event(db, caller.user_id, event_id)
    return {"success": True}
