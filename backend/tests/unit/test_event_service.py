from datetime import datetime

import pytest

from conftest import FakeProvider, make_connection, make_user
from miniorg.db import models
from miniorg.errors import NotFoundError, ValidationAppError
from miniorg.ports.calendar_provider import ProviderError
from miniorg.services import task_service
from miniorg.services.event_service import EventService

START = datetime(2026, 5, 4, 9, 0)
END = datetime(2026, 5, 4, 10, 0)


def imported_event(db, user, conn):
    event = models.CalendarEvent(
        user_id=user.id,
        title="Board meeting",
        start_time=START,
        end_time=END,
        source="google",
        connection_id=conn.id,
        external_id="g-1",
    )
    db.add(event)
    db.commit()
    return event


def test_create_without_export_target_stays_local(db, user):
    provider = FakeProvider()
    svc = EventService(lambda: provider)
    event = svc.create_event(db, user.id, "Focus", START, END)
    assert event.source == "miniorg"
    assert event.external_id is None
    assert provider.created == []


def test_create_rejects_inverted_range_and_foreign_task(db, user):
    svc = EventService(lambda: FakeProvider())
    with pytest.raises(ValidationAppError) as exc:
        svc.create_event(db, user.id, "Backwards", END, START)
    assert exc.value.code == "EVENT_INVALID_RANGE"

    other = make_user(db, email="bob@example.com")
    theirs = task_service.create_task(db, other.id, "Not yours")
    with pytest.raises(NotFoundError):
        svc.create_event(db, user.id, "Focus", START, END, task_id=theirs.id)


def test_local_event_is_mirrored_to_export_target(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    conn.is_export_target = True
    db.commit()
    svc = EventService(lambda: provider)

    event = svc.create_event(db, user.id, "Focus", START, END)
    assert event.external_id == "remote-1"
    assert event.connection_id == conn.id
    assert event.sync_status == "synced"

    svc.update_event(db, user.id, event.id, {"title": "Focus (long)"})
    assert provider.updated == ["remote-1"]

    svc.delete_event(db, user.id, event.id)
    assert provider.deleted == ["remote-1"]
    assert db.query(models.CalendarEvent).count() == 0


def test_export_failure_keeps_local_change(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    conn.is_export_target = True
    db.commit()

    def broken(*args, **kwargs):
        raise ProviderError("quota exceeded")

    provider.create_event = broken
    event = EventService(lambda: provider).create_event(db, user.id, "Focus", START, END)
    db.refresh(event)
    assert event.sync_status == "error"
    assert event.external_id is None


def test_imported_event_only_allows_completion(db, user):
    conn = make_connection(db, user)
    event = imported_event(db, user, conn)
    svc = EventService(lambda: FakeProvider())

    updated = svc.update_event(db, user.id, event.id, {"is_completed": True})
    assert updated.is_completed is True

    with pytest.raises(ValidationAppError) as exc:
        svc.update_event(db, user.id, event.id, {"title": "Renamed"})
    assert exc.value.code == "EVENT_READ_ONLY"

    with pytest.raises(ValidationAppError) as exc:
        svc.delete_event(db, user.id, event.id)
    assert exc.value.code == "EVENT_READ_ONLY"


def test_other_users_events_are_not_found(db, user):
    other = make_user(db, email="bob@example.com")
    svc = EventService(lambda: FakeProvider())
    event = svc.create_event(db, other.id, "Private", START, END)
    with pytest.raises(NotFoundError):
        svc.get_event(db, user.id, event.id)
    with pytest.raises(NotFoundError):
        svc.update_event(db, user.id, event.id, {"title": "x"})


def test_list_events_overlapping_window(db, user):
    svc = EventService(lambda: FakeProvider())
    svc.create_event(db, user.id, "Morning", START, END)
    svc.create_event(db, user.id, "Next day", datetime(2026, 5, 5, 9, 0), datetime(2026, 5, 5, 10, 0))
    found = svc.list_events(db, user.id, datetime(2026, 5, 4, 9, 30), datetime(2026, 5, 4, 23, 59))
    assert [e.title for e in found] == ["Morning"]
