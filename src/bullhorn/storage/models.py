"""SQLAlchemy models for persistent storage.

The only persistent state is the set of event ids that have already been
processed, so a restart never notifies twice.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class SeenEventModel(Base):
    """SQLAlchemy model for processed events.

    The primary key on ``event_id`` provides both the uniqueness constraint
    used for the atomic insert and the index used for lookups.
    """

    __tablename__ = "seen_events"

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[int | None] = mapped_column(Integer, nullable=True)
    seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
