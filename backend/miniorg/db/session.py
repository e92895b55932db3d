"""Engine and session factory.

SQLite is used locally and in tests (a file database, since ``:memory:`` gives
every connection its own empty database); PostgreSQL in deployments. SQLite
only honours ``ON DELETE CASCADE`` / ``SET NULL`` with ``foreign_keys`` on, so
the pragma is set for every new connection.
"""
import threading

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from ..config import get_settings

DATABASE_URL = get_settings().database_url
_is_sqlite = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=not _is_sqlite,
    # TestClient and the threadpool hand sessions across threads
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)

if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


_init_lock = threading.Lock()
_tables_created = False


def ensure_tables():
    """create_all once per process; Alembic owns the schema outside local runs."""
    global _tables_created
    if _tables_created:
        return
    with _init_lock:
        if not _tables_created:
            from . import models  # noqa: F401 register metadata
            Base.metadata.create_all(bind=engine)
            _tables_created = True


def get_db():
    ensure_tables()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
