"""Profile and preference updates for the signed-in user."""
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..db import models
from ..domain.enums import RitualMode
from ..errors import NotFoundError, ValidationAppError
from ..utils.timeutil import is_known_zone

PROFILE_FIELDS = {"name", "image", "timezone"}


def get_user(db: Session, user_id: str) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("USER_NOT_FOUND", "User not found")
    return user


def auth_method(user: models.User) -> str:
    if user.oauth_provider == "google":
        return "google"
    return "credentials" if user.hashed_password else "unknown"


def update_profile(db: Session, user_id: str, changes: Dict[str, Any]) -> models.User:
    user = get_user(db, user_id)
    unknown = set(changes) - PROFILE_FIELDS
    if unknown:
        raise ValidationAppError("INVALID_FIELDS", f"Cannot update: {', '.join(sorted(unknown))}")
    if "timezone" in changes and not is_known_zone(changes["timezone"]):
        raise ValidationAppError("INVALID_TIMEZONE", f"Unknown timezone: {changes['timezone']}")
    for key, value in changes.items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def update_settings(db: Session, user_id: str, ritual_mode: RitualMode) -> models.User:
    user = get_user(db, user_id)
    user.ritual_mode = ritual_mode.value
    db.commit()
    db.refresh(user)
    return user
