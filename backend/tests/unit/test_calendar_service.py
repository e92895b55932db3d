from datetime import timedelta

import pytest
from cryptography.fernet import Fernet

from conftest import FakeProvider, make_connection
from miniorg.ports.calendar_provider import ProviderTokenExpired, TokenRefreshError
from miniorg.services import calendar_service
from miniorg.services.calendar_service import CalendarService
from miniorg.services.encryption_service import EncryptionService, get_encryption_service
from miniorg.utils.timeutil import utcnow


def fetch(svc, db, conn):
    now = utcnow()
    return svc.fetch_events(db, conn, now - timedelta(days=1), now + timedelta(days=1))


def test_valid_token_used_without_refresh(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user)
    fetch(CalendarService(provider), db, conn)
    assert provider.refresh_calls == 0


def test_token_expiring_within_five_minutes_is_refreshed_first(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user, expires_in=timedelta(minutes=4))
    fetch(CalendarService(provider), db, conn)
    assert provider.refresh_calls == 1
    db.refresh(conn)
    assert get_encryption_service().decrypt(conn.access_token_encrypted) == "access-r1"
    assert conn.expires_at > utcnow() + timedelta(minutes=50)


def test_rejected_token_is_refreshed_and_retried_once(db, user):
    provider = FakeProvider()
    provider.rejected_tokens = {"access-1"}
    conn = make_connection(db, user)
    page = fetch(CalendarService(provider), db, conn)
    assert page.events == []
    assert provider.refresh_calls == 1


def test_second_rejection_propagates(db, user):
    provider = FakeProvider()
    provider.rejected_tokens = {"access-1", "access-r1"}
    conn = make_connection(db, user)
    with pytest.raises(ProviderTokenExpired):
        fetch(CalendarService(provider), db, conn)
    assert provider.refresh_calls == 1


def test_refresh_keeps_stored_refresh_token_when_provider_omits_it(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user, expires_in=timedelta(minutes=-1))
    fetch(CalendarService(provider), db, conn)
    db.refresh(conn)
    assert get_encryption_service().decrypt(conn.refresh_token_encrypted) == "refresh-1"


def test_missing_refresh_token_fails(db, user):
    provider = FakeProvider()
    conn = make_connection(db, user, refresh_token=None, expires_in=timedelta(minutes=-1))
    with pytest.raises(TokenRefreshError):
        fetch(CalendarService(provider), db, conn)


def test_tokens_under_old_key_are_reencrypted_on_read(db, user, monkeypatch):
    old, new = Fernet.generate_key(), Fernet.generate_key()
    legacy = EncryptionService(old)
    conn = make_connection(db, user)
    conn.access_token_encrypted = legacy.encrypt("access-1")
    conn.refresh_token_encrypted = legacy.encrypt("refresh-1")
    db.commit()

    monkeypatch.setattr(calendar_service, "get_encryption_service", lambda: EncryptionService([new, old]))
    provider = FakeProvider()
    fetch(CalendarService(provider), db, conn)
    assert provider.refresh_calls == 0

    db.refresh(conn)
    current = EncryptionService(new)
    assert current.decrypt(conn.access_token_encrypted) == "access-1"
    assert current.decrypt(conn.refresh_token_encrypted) == "refresh-1"
