import json
from datetime import date
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from ..db import models
from ..db.upsert import upsert_returning_id
from ..errors import NotFoundError
from ..utils.timeutil import utcnow


def timeline_of(ritual: models.DailyRitual) -> List[str]:
    if not ritual.timeline:
        return []
    try:
        value = json.loads(ritual.timeline)
    except ValueError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def get_ritual(db: Session, user_id: str, day: date) -> Optional[models.DailyRitual]:
    return (
        db.query(models.DailyRitual)
        .filter(models.DailyRitual.user_id == user_id, models.DailyRitual.date == day)
        .first()
    )


_UNSET: Any = object()


def upsert_ritual(
    db: Session,
    user_id: str,
    day: date,
    highlight_id: Optional[str] = _UNSET,
    timeline: Optional[List[str]] = _UNSET,
) -> models.DailyRitual:
    """Create or update the ritual for ``day``; one row per user and day.

    Fields left out of the call keep their stored value on update.
    """
    if highlight_id is not _UNSET and highlight_id is not None:
        owned = (
            db.query(models.Task.id)
            .filter(models.Task.id == highlight_id, models.Task.user_id == user_id)
            .first()
        )
        if not owned:
            raise NotFoundError("TASK_NOT_FOUND", "Highlight task not found")
    now = utcnow()
    values = {"id": models.gen_uuid(), "user_id": user_id, "date": day, "created_at": now, "updated_at": now}
    update_fields = ["updated_at"]
    if highlight_id is not _UNSET:
        values["highlight_id"] = highlight_id
        update_fields.append("highlight_id")
    if timeline is not _UNSET:
        values["timeline"] = json.dumps(timeline) if timeline is not None else None
        update_fields.append("timeline")
    ritual_id = upsert_returning_id(
        db,
        models.DailyRitual,
        values=values,
        conflict_on=("user_id", "date"),
        update_fields=update_fields,
    )
    db.commit()
    return db.query(models.DailyRitual).filter(models.DailyRitual.id == ritual_id).populate_existing().one()
