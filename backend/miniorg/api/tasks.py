from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import models
from ..db.session import get_db
from ..domain.enums import RescheduleEventAction, TaskStatus
from ..errors import ValidationAppError
from ..services import task_service
from ..utils.timeutil import parse_day, to_utc_naive
from .auth import Caller, get_caller
from .events import get_event_service

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: str = TaskStatus.NONE.value
    scheduled_date: Optional[datetime] = Field(None, alias="scheduledDate")
    deadline_type: Optional[str] = Field(None, alias="deadlineType")
    deadline_set_at: Optional[datetime] = Field(None, alias="deadlineSetAt")
    duration: Optional[int] = Field(None, ge=1)
    tag_id: Optional[str] = Field(None, alias="tagId")

    model_config = ConfigDict(populate_by_name=True)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    status: Optional[str] = None
    scheduled_date: Optional[datetime] = Field(None, alias="scheduledDate")
    deadline_type: Optional[str] = Field(None, alias="deadlineType")
    deadline_set_at: Optional[datetime] = Field(None, alias="deadlineSetAt")
    duration: Optional[int] = Field(None, ge=1)
    order: Optional[int] = None
    tag_id: Optional[str] = Field(None, alias="tagId")
    event_action: Optional[RescheduleEventAction] = Field(None, alias="eventAction")

    model_config = ConfigDict(populate_by_name=True)


class HighlightIn(BaseModel):
    title: str = Field(..., min_length=1)
    date: Optional[str] = None


class RolloverIn(BaseModel):
    task_ids: List[str] = Field(..., min_length=1, alias="taskIds")
    target_date: Optional[str] = Field(None, alias="targetDate")

    model_config = ConfigDict(populate_by_name=True)


def task_out(t: models.Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "type": t.type,
        "scheduledDate": t.scheduled_date,
        "deadlineType": t.deadline_type,
        "deadlineSetAt": t.deadline_set_at,
        "duration": t.duration,
        "order": t.order,
        "completedAt": t.completed_at,
        "rollupCount": t.rollup_count,
        "tagId": t.tag_id,
        "tag": {"id": t.tag.id, "name": t.tag.name, "color": t.tag.color} if t.tag else None,
        "calendarEvents": [
            {"id": e.id, "startTime": e.start_time, "endTime": e.end_time} for e in t.calendar_events
        ],
        "createdAt": t.created_at,
        "updatedAt": t.updated_at,
    }


def request_day(value: Optional[str], caller: Caller) -> date:
    try:
        return parse_day(value, caller.timezone)
    except ValueError:
        raise ValidationAppError("INVALID_DATE", f"Invalid date: {value}")


@router.get("")
def list_tasks(
    status: Optional[str] = Query(None),
    scheduledDate: Optional[str] = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    day = request_day(scheduledDate, caller) if scheduledDate else None
    tasks = task_service.list_tasks(db, caller.user_id, status=status, day=day, tz=caller.timezone)
    return [task_out(t) for t in tasks]


@router.post("", status_code=201)
def create_task(body: TaskCreate, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    task = task_service.create_task(
        db,
        caller.user_id,
        title=body.title,
        description=body.description,
        status=body.status,
        scheduled_date=to_utc_naive(body.scheduled_date) if body.scheduled_date else None,
        deadline_type=body.deadline_type,
        deadline_set_at=to_utc_naive(body.deadline_set_at) if body.deadline_set_at else None,
        duration=body.duration,
        tag_id=body.tag_id,
    )
    return task_out(task)


@router.get("/backlog-groups")
def backlog_groups(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    groups = task_service.backlog_groups(db, caller.user_id)
    return {name: [task_out(t) for t in tasks] for name, tasks in groups.items()}


@router.get("/highlight")
def get_highlight(
    date: Optional[str] = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    task = task_service.get_highlight(db, caller.user_id, request_day(date, caller), caller.timezone)
    return task_out(task) if task else None


@router.post("/highlight")
def upsert_highlight(
    body: HighlightIn,
    response: Response,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    task, created = task_service.upsert_highlight(
        db, caller.user_id, request_day(body.date, caller), body.title, caller.timezone
    )
    response.status_code = 201 if created else 200
    return task_out(task)


@router.post("/rollover")
def rollover(body: RolloverIn, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    target = request_day(body.target_date, caller) if body.target_date else None
    tasks = task_service.rollover_tasks(db, caller.user_id, body.task_ids, target, caller.timezone)
    return {"success": True, "count": len(tasks), "tasks": [task_out(t) for t in tasks]}


@router.get("/{task_id}")
def get_task(task_id: str, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return task_out(task_service.get_task(db, caller.user_id, task_id))


@router.patch("/{task_id}")
def update_task(
    task_id: str,
    body: TaskUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    event_service=Depends(get_event_service),
):
    changes = body.model_dump(exclude_unset=True, exclude={"event_action"})
    for key in ("scheduled_date", "deadline_set_at"):
        if changes.get(key) is not None:
            changes[key] = to_utc_naive(changes[key])
    task = task_service.update_task(
        db,
        caller.user_id,
        task_id,
        changes,
        event_action=body.event_action,
        tz=caller.timezone,
        event_service=event_service,
    )
    return task_out(task)


@router.delete("/{task_id}")
def delete_task(task_id: str, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    task_service.delete_task(db, caller.user_id, task_id)
    return {"success": True}
