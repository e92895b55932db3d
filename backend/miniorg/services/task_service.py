import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy.orm import Session

from ..db import models
from ..db.upsert import upsert_returning_id
from ..domain.enums import DeadlineType, EventSource, RescheduleEventAction, TaskStatus, TaskType
from ..errors import ConflictError, NotFoundError, ValidationAppError
from ..utils.timeutil import day_bounds, local_day, start_of_day, tomorrow, utcnow
from . import deadlines

logger = logging.getLogger(__name__)

ROLLOVER_TASK_COUNT = Counter("miniorg_tasks_rolled_over_total", "Tasks moved by rollover")

UPDATABLE_FIELDS = {
    "title",
    "description",
    "status",
    "scheduled_date",
    "deadline_type",
    "deadline_set_at",
    "duration",
    "order",
    "tag_id",
}


class RescheduleConfirmationRequired(ConflictError):
    def __init__(self, events: List[models.CalendarEvent]):
        super().__init__(
            "RESCHEDULE_CONFIRMATION_REQUIRED",
            "Task has calendar events today; choose whether to delete or keep them",
            extra={
                "events": [
                    {"id": e.id, "title": e.title, "startTime": e.start_time.isoformat(), "endTime": e.end_time.isoformat()}
                    for e in events
                ]
            },
        )
        self.events = events


def _normalize_deadline_type(value: Optional[str]) -> Optional[str]:
    if not value or value == "no_date":
        return None
    try:
        return DeadlineType(value).value
    except ValueError:
        raise ValidationAppError("INVALID_DEADLINE_TYPE", f"Unknown deadline type: {value}")


def _check_tag(db: Session, user_id: str, tag_id: Optional[str]) -> None:
    if tag_id is None:
        return
    exists = db.query(models.Tag.id).filter(models.Tag.id == tag_id, models.Tag.user_id == user_id).first()
    if not exists:
        raise NotFoundError("TAG_NOT_FOUND", "Tag not found")


def create_task(
    db: Session,
    user_id: str,
    title: str,
    description: Optional[str] = None,
    status: str = TaskStatus.NONE.value,
    scheduled_date: Optional[datetime] = None,
    deadline_type: Optional[str] = None,
    deadline_set_at: Optional[datetime] = None,
    duration: Optional[int] = None,
    tag_id: Optional[str] = None,
) -> models.Task:
    deadline_type = _normalize_deadline_type(deadline_type)
    _check_tag(db, user_id, tag_id)
    task = models.Task(
        user_id=user_id,
        title=title,
        description=description,
        status=status,
        scheduled_date=scheduled_date,
        deadline_type=deadline_type,
        deadline_set_at=deadline_set_at or (utcnow() if deadline_type else None),
        duration=duration,
        tag_id=tag_id,
        completed_at=utcnow() if status == TaskStatus.DONE.value else None,
    )
    db.add(task)
    db.commit()
    return task


def get_task(db: Session, user_id: str, task_id: str) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id, models.Task.user_id == user_id).first()
    if not task:
        raise NotFoundError("TASK_NOT_FOUND", "Task not found")
    return task


def list_tasks(
    db: Session,
    user_id: str,
    status: Optional[str] = None,
    day: Optional[date] = None,
    tz: Optional[str] = None,
) -> List[models.Task]:
    q = db.query(models.Task).filter(models.Task.user_id == user_id)
    if status is not None:
        q = q.filter(models.Task.status == status)
    if day is not None:
        start, end = day_bounds(day, tz)
        q = q.filter(models.Task.scheduled_date >= start, models.Task.scheduled_date <= end)
    return q.order_by(models.Task.order.asc(), models.Task.created_at.desc()).all()


def backlog_groups(db: Session, user_id: str, now: Optional[datetime] = None) -> Dict[str, List[models.Task]]:
    tasks = (
        db.query(models.Task)
        .filter(models.Task.user_id == user_id, models.Task.status != TaskStatus.DONE.value)
        .order_by(models.Task.order.asc(), models.Task.created_at.desc())
        .all()
    )
    return deadlines.group_tasks(tasks, now)


# --- reschedule ---
def events_today(
    db: Session, task: models.Task, tz: Optional[str] = None, now: Optional[datetime] = None
) -> List[models.CalendarEvent]:
    """Local (miniorg) events of ``task`` starting today in the user's timezone."""
    start, end = day_bounds(local_day(now or utcnow(), tz), tz)
    return (
        db.query(models.CalendarEvent)
        .filter(
            models.CalendarEvent.task_id == task.id,
            models.CalendarEvent.source == EventSource.MINIORG.value,
            models.CalendarEvent.start_time >= start,
            models.CalendarEvent.start_time <= end,
        )
        .order_by(models.CalendarEvent.start_time)
        .all()
    )


def needs_reschedule_confirmation(
    db: Session, task: models.Task, new_date: datetime, tz: Optional[str] = None, now: Optional[datetime] = None
) -> List[models.CalendarEvent]:
    """Events that block a silent reschedule; empty when no confirmation is needed."""
    now = now or utcnow()
    if local_day(new_date, tz) <= local_day(now, tz):
        return []
    return events_today(db, task, tz, now)


def _move_highlight(db: Session, task: models.Task, new_day: Optional[date]) -> None:
    """Keep ``highlight_day`` in step with the schedule, demoting on collision."""
    if task.type != TaskType.HIGHLIGHT.value:
        return
    if new_day is None:
        task.highlight_day = None
        return
    occupant = (
        db.query(models.Task.id)
        .filter(
            models.Task.user_id == task.user_id,
            models.Task.highlight_day == new_day,
            models.Task.id != task.id,
        )
        .first()
    )
    if occupant:
        logger.info("Day %s already has a highlight; task %s becomes a normal task", new_day, task.id)
        task.type = TaskType.NORMAL.value
        task.highlight_day = None
    else:
        task.highlight_day = new_day
    db.flush()


def update_task(
    db: Session,
    user_id: str,
    task_id: str,
    changes: Dict[str, Any],
    event_action: Optional[RescheduleEventAction] = None,
    tz: Optional[str] = None,
    event_service=None,
    now: Optional[datetime] = None,
) -> models.Task:
    task = get_task(db, user_id, task_id)
    changes = dict(changes)
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationAppError("INVALID_FIELDS", f"Cannot update: {', '.join(sorted(unknown))}")
    nulled = sorted(k for k in ("title", "status", "order") if k in changes and changes[k] is None)
    if nulled:
        raise ValidationAppError("INVALID_FIELDS", f"Cannot clear: {', '.join(nulled)}")
    now = now or utcnow()

    if "tag_id" in changes:
        _check_tag(db, user_id, changes["tag_id"])
    if "deadline_type" in changes:
        changes["deadline_type"] = _normalize_deadline_type(changes["deadline_type"])
        if changes["deadline_type"] and "deadline_set_at" not in changes:
            changes["deadline_set_at"] = now

    to_delete: List[models.CalendarEvent] = []
    new_date = changes.get("scheduled_date")
    if new_date is not None and new_date != task.scheduled_date:
        blocking = needs_reschedule_confirmation(db, task, new_date, tz, now)
        if blocking and event_action is None:
            raise RescheduleConfirmationRequired(blocking)
        if blocking and event_action == RescheduleEventAction.DELETE:
            to_delete = blocking

    if "status" in changes:
        _apply_status(db, task, changes.pop("status"), now)
    for name, value in changes.items():
        setattr(task, name, value)
    if "scheduled_date" in changes:
        _move_highlight(db, task, local_day(task.scheduled_date, tz) if task.scheduled_date else None)

    if to_delete and event_service is not None:
        # commits the task changes together with the deletions
        event_service.delete_events(db, user_id, to_delete)
    else:
        for event in to_delete:
            db.delete(event)
        db.commit()
    return task


def _apply_status(db: Session, task: models.Task, status: str, now: datetime) -> None:
    was_done = task.status == TaskStatus.DONE.value
    task.status = status
    if status == TaskStatus.DONE.value:
        if task.completed_at is None:
            task.completed_at = now
        _mirror_completion(db, task, True)
    elif was_done:
        task.completed_at = None
        _mirror_completion(db, task, False)


def _mirror_completion(db: Session, task: models.Task, completed: bool) -> None:
    (
        db.query(models.CalendarEvent)
        .filter(models.CalendarEvent.task_id == task.id)
        .update({models.CalendarEvent.is_completed: completed}, synchronize_session="fetch")
    )


def delete_task(db: Session, user_id: str, task_id: str) -> None:
    task = get_task(db, user_id, task_id)
    (
        db.query(models.CalendarEvent)
        .filter(models.CalendarEvent.task_id == task.id)
        .update({models.CalendarEvent.task_id: None}, synchronize_session="fetch")
    )
    (
        db.query(models.DailyRitual)
        .filter(models.DailyRitual.highlight_id == task.id)
        .update({models.DailyRitual.highlight_id: None}, synchronize_session="fetch")
    )
    db.delete(task)
    db.commit()


# --- rollover ---
def rollover_tasks(
    db: Session,
    user_id: str,
    task_ids: Iterable[str],
    target_day: Optional[date] = None,
    tz: Optional[str] = None,
) -> List[models.Task]:
    """Move every task to the start of ``target_day`` (default tomorrow), all or nothing."""
    ids = list(dict.fromkeys(task_ids))
    if not ids:
        raise ValidationAppError("NO_TASKS", "taskIds must not be empty")
    target_day = target_day or tomorrow(tz)
    target = start_of_day(target_day, tz)

    tasks = (
        db.query(models.Task)
        .filter(models.Task.id.in_(ids), models.Task.user_id == user_id)
        .with_for_update()
        .all()
    )
    if len(tasks) != len(ids):
        db.rollback()
        raise NotFoundError("TASK_NOT_FOUND", "One or more tasks were not found")

    by_id = {t.id: t for t in tasks}
    ordered = [by_id[i] for i in ids]
    try:
        for task in ordered:
            task.scheduled_date = target
            task.rollup_count = models.Task.rollup_count + 1
            _move_highlight(db, task, target_day)
        db.commit()
    except Exception:
        db.rollback()
        raise
    ROLLOVER_TASK_COUNT.inc(len(ordered))
    logger.info("Rolled over %d tasks for user %s to %s", len(ordered), user_id, target_day)
    return ordered


# --- daily highlight ---
def get_highlight(db: Session, user_id: str, day: date, tz: Optional[str] = None) -> Optional[models.Task]:
    start, end = day_bounds(day, tz)
    return (
        db.query(models.Task)
        .filter(
            models.Task.user_id == user_id,
            models.Task.type == TaskType.HIGHLIGHT.value,
            models.Task.scheduled_date >= start,
            models.Task.scheduled_date <= end,
        )
        .first()
    )


def upsert_highlight(
    db: Session, user_id: str, day: date, title: str, tz: Optional[str] = None
) -> Tuple[models.Task, bool]:
    """Create the day's highlight or retitle the existing one. Returns ``(task, created)``."""
    if not title or not title.strip():
        raise ValidationAppError("TITLE_REQUIRED", "title is required")
    now = utcnow()
    new_id = models.gen_uuid()
    task_id = upsert_returning_id(
        db,
        models.Task,
        values={
            "id": new_id,
            "user_id": user_id,
            "title": title,
            "status": TaskStatus.PLANNED.value,
            "type": TaskType.HIGHLIGHT.value,
            "scheduled_date": start_of_day(day, tz),
            "highlight_day": day,
            "order": 0,
            "rollup_count": 0,
            "created_at": now,
            "updated_at": now,
        },
        conflict_on=("user_id", "highlight_day"),
        update_fields=("title", "updated_at"),
    )
    db.commit()
    task = db.query(models.Task).filter(models.Task.id == task_id).populate_existing().one()
    return task, task_id == new_id
