"""Dialect-aware ``INSERT ... ON CONFLICT DO UPDATE``.

Used wherever a single row per key must exist (daily ritual, highlight task,
verification token) so concurrent writers cannot create duplicates.
"""
from typing import Any, Dict, Iterable

from sqlalchemy.orm import Session


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:  # pragma: no cover
        raise NotImplementedError(f"upsert not supported for dialect {dialect}")
    return insert


def upsert_returning_id(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_on: Iterable[str],
    update_fields: Iterable[str],
) -> str:
    """Insert ``values`` or update ``update_fields`` of the conflicting row.

    Returns the id of the row that now holds the key.
    """
    insert = _insert_for(db)
    stmt = insert(model.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_on),
        set_={name: stmt.excluded[name] for name in update_fields},
    ).returning(model.__table__.c.id)
    return db.execute(stmt).scalar_one()
