from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import models
from ..db.session import get_db
from ..services import tag_service
from .auth import Caller, get_caller

router = APIRouter(prefix="/tags", tags=["tags"])


class TagCreate(BaseModel):
    name: str
    color: Optional[str] = None


def tag_out(t: models.Tag) -> dict:
    return {"id": t.id, "name": t.name, "color": t.color, "createdAt": t.created_at}


@router.get("")
def list_tags(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return [tag_out(t) for t in tag_service.list_tags(db, caller.user_id)]


@router.post("", status_code=201)
def create_tag(body: TagCreate, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return tag_out(tag_service.create_tag(db, caller.user_id, body.name, body.color))
