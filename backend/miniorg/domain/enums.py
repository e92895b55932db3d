"""Domain enumerations for strong typing & validation."""
from enum import Enum

class TaskType(str, Enum):
    NORMAL = "normal"
    HIGHLIGHT = "highlight"

class TaskStatus(str, Enum):
    NONE = ""
    BACKLOG = "backlog"
    PLANNED = "planned"
    DONE = "done"

class DeadlineType(str, Enum):
    NEXT_3_DAYS = "next_3_days"
    NEXT_WEEK = "next_week"
    NEXT_MONTH = "next_month"
    NEXT_QUARTER = "next_quarter"
    NEXT_YEAR = "next_year"

class DeadlineGroup(str, Enum):
    OVERDUE = "overdue"
    NEXT_3_DAYS = "next_3_days"
    NEXT_WEEK = "next_week"
    NEXT_MONTH = "next_month"
    NEXT_QUARTER = "next_quarter"
    NEXT_YEAR = "next_year"
    NO_DATE = "no_date"

class EventSource(str, Enum):
    MINIORG = "miniorg"
    GOOGLE = "google"

class TokenType(str, Enum):
    EMAIL = "email"
    PASSWORD_RESET = "password_reset"

class RescheduleEventAction(str, Enum):
    DELETE = "delete"
    KEEP = "keep"

class RitualMode(str, Enum):
    SEPARATE = "separate"
    MORNING = "morning"
    EVENING = "evening"
