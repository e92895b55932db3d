from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import models
from ..db.session import get_db
from ..domain.enums import RitualMode
from ..services import user_service
from .auth import Caller, get_caller

router = APIRouter(prefix="/user", tags=["user"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    image: Optional[str] = None
    timezone: Optional[str] = None


class SettingsUpdate(BaseModel):
    ritual_mode: Optional[RitualMode] = Field(None, alias="ritualMode")

    model_config = ConfigDict(populate_by_name=True)


def profile_out(user: models.User) -> dict:
    method = user_service.auth_method(user)
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "timezone": user.timezone,
        "authMethod": method,
        "hasGoogleAccount": method == "google",
        "hasPassword": bool(user.hashed_password),
    }


def settings_out(user: models.User) -> dict:
    return {"ritualMode": user.ritual_mode}


@router.get("/profile")
def get_profile(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return profile_out(user_service.get_user(db, caller.user_id))


@router.patch("/profile")
def update_profile(body: ProfileUpdate, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    return profile_out(user_service.update_profile(db, caller.user_id, changes))


@router.get("/settings")
def get_settings(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return settings_out(user_service.get_user(db, caller.user_id))


@router.patch("/settings")
def update_settings(body: SettingsUpdate, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    user = user_service.get_user(db, caller.user_id)
    if body.ritual_mode is not None:
        user = user_service.update_settings(db, caller.user_id, body.ritual_mode)
    return settings_out(user)
