from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import models
from ..errors import ValidationAppError

DEFAULT_TAG_COLOR = "#E17C4F"


def list_tags(db: Session, user_id: str) -> List[models.Tag]:
    return db.query(models.Tag).filter(models.Tag.user_id == user_id).order_by(models.Tag.name.asc()).all()


def create_tag(db: Session, user_id: str, name: str, color: Optional[str] = None) -> models.Tag:
    name = (name or "").strip()
    if not name:
        raise ValidationAppError("TAG_NAME_REQUIRED", "Name is required")
    tag = models.Tag(user_id=user_id, name=name, color=color or DEFAULT_TAG_COLOR)
    db.add(tag)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationAppError("TAG_EXISTS", "Tag already exists")
    db.refresh(tag)
    return tag
