from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import models
from ..db.session import get_db
from ..services import ritual_service
from .auth import Caller, get_caller
from .tasks import request_day, task_out

router = APIRouter(prefix="/daily-ritual", tags=["rituals"])


class RitualIn(BaseModel):
    date: Optional[str] = None
    highlight_id: Optional[str] = Field(None, alias="highlightId")
    timeline: Optional[List[str]] = None

    model_config = ConfigDict(populate_by_name=True)


def ritual_out(r: models.DailyRitual) -> dict:
    return {
        "id": r.id,
        "date": r.date.isoformat(),
        "highlightId": r.highlight_id,
        "highlight": task_out(r.highlight) if r.highlight else None,
        "timeline": ritual_service.timeline_of(r),
        "updatedAt": r.updated_at,
    }


@router.get("")
def get_ritual(
    date: Optional[str] = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    ritual = ritual_service.get_ritual(db, caller.user_id, request_day(date, caller))
    return ritual_out(ritual) if ritual else None


@router.post("")
def upsert_ritual(body: RitualIn, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    sent = {name: getattr(body, name) for name in ("highlight_id", "timeline") if name in body.model_fields_set}
    ritual = ritual_service.upsert_ritual(db, caller.user_id, request_day(body.date, caller), **sent)
    return ritual_out(ritual)
