"""Column helpers shared by every ORM model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes.

    SQLite hands timestamps back without tzinfo even for
    DateTime(timezone=True) columns; everything is stored in UTC, so this is
    lossless and lets callers compare against utcnow().
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def id_column() -> Mapped[str]:
    # String ids (not a dialect UUID type) so the same models run on
    # PostgreSQL and on the SQLite database used by the test-suite
    return mapped_column(String(36), primary_key=True, default=new_id)


class TimestampMixin:
    """created_at / updated_at maintained in UTC."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.current_timestamp(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.current_timestamp(),
    )
