from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .session import Base
from ..utils.timeutil import utcnow
import uuid


def gen_uuid():
    return str(uuid.uuid4())

class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=gen_uuid)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    email_verified_at = Column(DateTime, nullable=True)
    oauth_provider = Column(String, nullable=True)  # 'google' for Google sign-in accounts
    timezone = Column(String, nullable=False, default="UTC")
    ritual_mode = Column(String, nullable=False, default="separate")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class WebSession(Base):
    __tablename__ = "web_sessions"
    id = Column(String, primary_key=True, default=gen_uuid)
    token = Column(String, unique=True, nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"
    __table_args__ = (UniqueConstraint("identifier", "type", name="uq_verification_tokens_identifier_type"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    identifier = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)  # 'email' | 'password_reset'
    token = Column(String, nullable=False)
    expires = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tags_user_name"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Task(Base):
    __tablename__ = "tasks"
    # One highlight per user per day; NULL highlight_day (normal tasks) never conflicts.
    __table_args__ = (UniqueConstraint("user_id", "highlight_day", name="uq_tasks_user_highlight_day"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="", index=True)
    scheduled_date = Column(DateTime, nullable=True, index=True)
    deadline_type = Column(String, nullable=True)
    deadline_set_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # minutes
    order = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime, nullable=True)
    rollup_count = Column(Integer, nullable=False, default=0)
    type = Column(String, nullable=False, default="normal", index=True)
    highlight_day = Column(Date, nullable=True)
    tag_id = Column(String, ForeignKey("tags.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tag = relationship("Tag", lazy="joined")
    calendar_events = relationship("CalendarEvent", back_populates="task", order_by="CalendarEvent.start_time")


class CalendarConnection(Base):
    __tablename__ = "calendar_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", "calendar_id", name="uq_calendar_connections_user_calendar"),
    )
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String, nullable=False, default="google", index=True)
    provider_account_id = Column(String, nullable=True)
    name = Column(String, nullable=True)
    calendar_id = Column(String, nullable=False)
    # Fernet-encrypted (see services/encryption_service.py)
    access_token_encrypted = Column(String, nullable=True)
    refresh_token_encrypted = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    is_export_target = Column(Boolean, nullable=False, default=False)
    sync_token = Column(String, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class CalendarEvent(Base):
    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_calendar_events_connection_external"),
    )
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    is_all_day = Column(Boolean, nullable=False, default=False)
    color = Column(String, nullable=True)
    source = Column(String, nullable=False, default="miniorg", index=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    connection_id = Column(String, ForeignKey("calendar_connections.id", ondelete="CASCADE"), nullable=True, index=True)
    external_id = Column(String, nullable=True, index=True)
    content_hash = Column(String, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    sync_status = Column(String, nullable=True)  # 'synced' | 'pending' | 'error'
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="calendar_events")
    connection = relationship("CalendarConnection")


class DailyRitual(Base):
    __tablename__ = "daily_rituals"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_rituals_user_date"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    highlight_id = Column(String, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    timeline = Column(Text, nullable=True)  # JSON array of task ids
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    highlight = relationship("Task", lazy="joined")
