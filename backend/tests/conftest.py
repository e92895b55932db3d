import os, sys
import tempfile
from dataclasses import replace
from datetime import timedelta
from typing import Dict, List, Optional
from urllib.parse import urlencode

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Put backend/ first on sys.path so the local miniorg package wins
backend_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if backend_root not in sys.path:
    sys.path.insert(0, backend_root)

_tmpdir = tempfile.mkdtemp(prefix="miniorg-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{_tmpdir}/test.db")
os.environ.setdefault("APP_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("AUTH_SECRET", "test-secret")
os.environ.setdefault("APP_BASE_URL", "http://app.test")

from miniorg.main import app  # noqa: E402
from miniorg.api.deps import get_mailer_dep, get_provider_factory  # noqa: E402
from miniorg.db import models  # noqa: E402
from miniorg.db.session import SessionLocal, engine, Base  # noqa: E402
from miniorg.ports.calendar_provider import (  # noqa: E402
    EventPage,
    ExternalCalendar,
    ExternalEvent,
    ExternalIdentity,
    OAuthExchangeError,
    ProviderTokenExpired,
    TokenSet,
)
from miniorg.repositories.calendar_repository import SqlAlchemyCalendarConnectionRepository  # noqa: E402
from miniorg.services.credentials import hash_password  # noqa: E402
from miniorg.services.state_store import MemoryStateStore, set_state_store  # noqa: E402
from miniorg.services.token_service import TokenService  # noqa: E402
from miniorg.utils.timeutil import utcnow  # noqa: E402

PASSWORD = "Str0ng!pass"


class FakeProvider:
    """In-memory calendar provider.

    ``rejected_tokens`` makes list/create/update/delete raise ProviderTokenExpired
    for those access tokens; ``failures`` maps calendar ids to exceptions.
    ``identity`` is who a sign-in code resolves to.
    """

    name = "google"

    def __init__(self):
        self.calendars: List[ExternalCalendar] = [ExternalCalendar(id="primary", name="Work")]
        self.events: Dict[str, List[ExternalEvent]] = {}
        self.failures: Dict[str, Exception] = {}
        self.rejected_tokens = set()
        self.refresh_calls = 0
        self.sync_tokens_seen: List[Optional[str]] = []
        self.created: List[ExternalEvent] = []
        self.updated: List[str] = []
        self.deleted: List[str] = []
        self.identity = ExternalIdentity(
            subject="google-sub-1", email="gina@example.com", email_verified=True, name="Gina", picture="https://img.test/g.png"
        )
        self.signin_exchanges: List[dict] = []

    def _check(self, access_token):
        if access_token in self.rejected_tokens:
            raise ProviderTokenExpired()

    def get_auth_url(self, redirect_uri, state, code_challenge=None):
        query = urlencode({"redirect_uri": redirect_uri, "state": state, "code_challenge": code_challenge})
        return f"https://accounts.example.test/o/oauth2/auth?{query}"

    def exchange_code_for_tokens(self, code, redirect_uri, code_verifier=None):
        if code == "bad-code":
            raise OAuthExchangeError("invalid_grant")
        return TokenSet("access-1", "refresh-1", utcnow() + timedelta(hours=1), "calendar")

    def get_signin_url(self, redirect_uri, state, code_challenge=None):
        query = urlencode({"redirect_uri": redirect_uri, "state": state, "code_challenge": code_challenge, "scope": "openid"})
        return f"https://accounts.example.test/o/oauth2/auth?{query}"

    def exchange_signin_code(self, code, redirect_uri, code_verifier=None):
        if code == "bad-code":
            raise OAuthExchangeError("invalid_grant")
        self.signin_exchanges.append({"code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier})
        return self.identity

    def refresh_access_token(self, refresh_token):
        self.refresh_calls += 1
        return TokenSet(f"access-r{self.refresh_calls}", None, utcnow() + timedelta(hours=1))

    def list_calendars(self, access_token):
        self._check(access_token)
        return list(self.calendars)

    def list_events(self, access_token, calendar_id, start, end, sync_token=None):
        self._check(access_token)
        self.sync_tokens_seen.append(sync_token)
        failure = self.failures.get(calendar_id)
        if failure is not None:
            raise failure
        return EventPage(list(self.events.get(calendar_id, [])), next_sync_token=f"sync-{calendar_id}")

    def create_event(self, access_token, calendar_id, event):
        self._check(access_token)
        self.created.append(event)
        return replace(event, id=f"remote-{len(self.created)}")

    def update_event(self, access_token, calendar_id, event_id, event):
        self._check(access_token)
        self.updated.append(event_id)
        return replace(event, id=event_id)

    def delete_event(self, access_token, calendar_id, event_id):
        self._check(access_token)
        self.deleted.append(event_id)


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html_body):
        self.sent.append({"to": to, "subject": subject, "html": html_body})


@pytest.fixture(scope="function")  # fresh DB per test
def client(fake_provider, mailer):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_state_store(MemoryStateStore())
    app.dependency_overrides[get_provider_factory] = lambda: (lambda: fake_provider)
    app.dependency_overrides[get_mailer_dep] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()
    set_state_store(None)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def db(client):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(db, email="alice@example.com", password=PASSWORD, verified=True, timezone="UTC", **kw):
    user = models.User(
        email=email,
        hashed_password=hash_password(password) if password else None,
        email_verified_at=utcnow() if verified else None,
        timezone=timezone,
        **kw,
    )
    db.add(user)
    db.commit()
    return user


def make_connection(db, user, calendar_id="primary", name="Work", active=True,
                    access_token="access-1", refresh_token="refresh-1", expires_in=timedelta(hours=1)):
    conn = models.CalendarConnection(
        user_id=user.id,
        provider="google",
        calendar_id=calendar_id,
        name=name,
        is_active=active,
    )
    SqlAlchemyCalendarConnectionRepository().store_tokens(
        conn, TokenSet(access_token, refresh_token, utcnow() + expires_in)
    )
    db.add(conn)
    db.commit()
    return conn


def bearer(user):
    token, _ = TokenService().issue_session_token(user.id, user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def auth_headers(user):
    return bearer(user)
