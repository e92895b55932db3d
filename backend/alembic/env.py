"""Alembic environment for the miniorg schema.

The database URL always comes from application settings (``DATABASE_URL``),
never from alembic.ini, so migrations and the app cannot drift apart.
"""
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# backend/ on sys.path so `alembic -c backend/alembic.ini` works from the repo root
sys.path.append(str(Path(__file__).resolve().parents[1]))

from miniorg.config import get_settings  # noqa: E402
from miniorg.db.session import Base  # noqa: E402
from miniorg.db import models  # noqa: E402,F401 register tables

url = get_settings().database_url
config.set_main_option("sqlalchemy.url", url)
target_metadata = Base.metadata


def run_migrations_offline():
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section), prefix="sqlalchemy.", poolclass=pool.NullPool
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
