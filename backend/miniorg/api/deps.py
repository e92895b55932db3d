"""Shared FastAPI dependencies.

Tests replace these through ``app.dependency_overrides`` to inject a fake
calendar provider or a recording mailer.
"""
from typing import Callable

from ..ports.calendar_provider import CalendarProvider
from ..services.calendar_service import get_calendar_provider
from ..services.mailer import Mailer, get_mailer
from ..services.state_store import StateStore, get_state_store
from ..services.token_service import TokenService


def get_provider_factory() -> Callable[[], CalendarProvider]:
    """Return a factory so routes only build the provider when they need it."""
    return get_calendar_provider


def get_mailer_dep() -> Mailer:
    return get_mailer()


def get_token_service() -> TokenService:
    return TokenService()


def get_state_store_dep() -> StateStore:
    return get_state_store()
