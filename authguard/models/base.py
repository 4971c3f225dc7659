from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, declarative_base

# Create declarative base
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo (SQLite)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def insert_if_absent(db: Session, model, values: dict, conflict_columns: List[str]) -> None:
    """INSERT ... ON CONFLICT DO NOTHING on the model's unique key.

    Two requests creating the same row concurrently both succeed; the caller
    re-reads the row afterwards and applies its own changes on top.
    """
    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else postgresql_insert
    statement = insert(model.__table__).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    db.execute(statement)
