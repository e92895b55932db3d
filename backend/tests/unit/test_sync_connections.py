from datetime import datetime

from conftest import FakeProvider, make_connection
from miniorg.db import models
from miniorg.ports.calendar_provider import ExternalEvent, ProviderError, SyncTokenInvalid
from miniorg.usecases.sync_connections import SyncConnectionsUseCase, content_hash


def remote(event_id="g1", title="Standup", status=None, hour=9):
    return ExternalEvent(
        id=event_id,
        title=title,
        start_time=datetime(2026, 5, 4, hour, 0),
        end_time=datetime(2026, 5, 4, hour, 30),
        status=status,
    )


def events_for(db, user):
    return db.query(models.CalendarEvent).filter(models.CalendarEvent.user_id == user.id).all()


def test_creates_then_updates_then_reports_unchanged(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    provider.events["primary"] = [remote()]
    uc = SyncConnectionsUseCase(provider)

    first = uc.execute(db, user.id)
    assert first.synced_count == 1
    assert first.results[0].created == 1
    (row,) = events_for(db, user)
    assert row.source == "google"
    assert row.connection_id == conn.id
    assert row.content_hash == content_hash(remote())

    second = uc.execute(db, user.id)
    assert second.results[0].unchanged == 1

    provider.events["primary"] = [remote(title="Standup (moved)", hour=10)]
    third = uc.execute(db, user.id)
    assert third.results[0].updated == 1
    db.refresh(row)
    assert row.title == "Standup (moved)"
    assert row.start_time == datetime(2026, 5, 4, 10, 0)


def test_cancelled_remote_event_removes_imported_row(db, user):
    provider = FakeProvider()
    make_connection(db, user)
    provider.events["primary"] = [remote()]
    uc = SyncConnectionsUseCase(provider)
    uc.execute(db, user.id)

    provider.events["primary"] = [remote(status="cancelled")]
    result = uc.execute(db, user.id)
    assert result.results[0].deleted == 1
    assert events_for(db, user) == []


def test_locally_owned_rows_are_not_overwritten(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    local = models.CalendarEvent(
        user_id=user.id,
        title="My focus block",
        start_time=datetime(2026, 5, 4, 9, 0),
        end_time=datetime(2026, 5, 4, 10, 0),
        source="miniorg",
        connection_id=conn.id,
        external_id="g1",
    )
    db.add(local)
    db.commit()

    provider.events["primary"] = [remote(title="Changed remotely")]
    SyncConnectionsUseCase(provider).execute(db, user.id)
    db.refresh(local)
    assert local.title == "My focus block"

    provider.events["primary"] = [remote(status="cancelled")]
    SyncConnectionsUseCase(provider).execute(db, user.id)
    assert db.query(models.CalendarEvent).filter(models.CalendarEvent.id == local.id).count() == 1


def test_one_failing_connection_does_not_block_others(db, user):
    provider = FakeProvider()
    good = make_connection(db, user, calendar_id="primary", name="Work")
    bad = make_connection(db, user, calendar_id="broken", name="Broken")
    provider.events["primary"] = [remote()]
    provider.failures["broken"] = ProviderError("backend unavailable")

    result = SyncConnectionsUseCase(provider).execute(db, user.id)
    assert result.to_dict()["syncedCount"] == 1
    assert result.to_dict()["totalCount"] == 2
    by_id = {r.connection_id: r for r in result.results}
    assert by_id[good.id].status == "success"
    assert by_id[bad.id].status == "error"
    assert by_id[bad.id].error == "backend unavailable"

    db.refresh(bad)
    db.refresh(good)
    assert bad.last_error == "backend unavailable"
    assert good.last_error is None
    assert good.last_sync_at is not None
    assert len(events_for(db, user)) == 1


def test_inactive_connections_are_skipped(db, user):
    provider = FakeProvider()
    make_connection(db, user, active=False)
    result = SyncConnectionsUseCase(provider).execute(db, user.id)
    assert result.total_count == 0
    assert provider.sync_tokens_seen == []


def test_sync_token_reused_and_reset_on_gone(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    uc = SyncConnectionsUseCase(provider)
    uc.execute(db, user.id)
    db.refresh(conn)
    assert conn.sync_token == "sync-primary"

    uc.execute(db, user.id)
    assert provider.sync_tokens_seen[-1] == "sync-primary"

    calls = []
    original = provider.list_events

    def gone_once(access_token, calendar_id, start, end, sync_token=None):
        calls.append(sync_token)
        if sync_token:
            raise SyncTokenInvalid()
        return original(access_token, calendar_id, start, end, sync_token=sync_token)

    provider.list_events = gone_once
    result = uc.execute(db, user.id)
    assert result.synced_count == 1
    assert calls == ["sync-primary", None]


def test_explicit_window_ignores_sync_token(db, user):
    provider = FakeProvider()
    make_connection(db, user)
    uc = SyncConnectionsUseCase(provider)
    uc.execute(db, user.id)
    uc.execute(db, user.id, start=datetime(2026, 5, 1), end=datetime(2026, 5, 31))
    assert provider.sync_tokens_seen[-1] is None
