"""Cheaters - confirmed entries of the public database, soft-deleted via tombstones."""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class DeletionReason(str, enum.Enum):
    MOVED_TO_PENDING = "moved_to_pending"
    APPEAL_ACCEPTED = "appeal_accepted"
    ACCOUNT_NOT_FOUND = "account_not_found"
    HANDLE_CHANGED = "handle_changed"


@dataclass(frozen=True)
class Active:
    """Cheater is listed and exported."""


@dataclass(frozen=True)
class Tombstoned:
    """Cheater is soft-deleted and waits for the export to drop it."""

    reason: DeletionReason | None
    at: datetime | None


Lifecycle = Active | Tombstoned


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Cheater(Base):
    """Cheater model."""

    __tablename__ = "cheaters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    evidence: Mapped[str] = mapped_column(Text, nullable=False)
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    accepted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Soft deletion
    marked_for_deletion: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deletion_reason: Mapped[DeletionReason | None] = mapped_column(
        Enum(
            DeletionReason,
            name="deletion_reason",
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )
    deletion_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        # At most one active record per username
        Index(
            "uq_cheaters_active_username",
            "username",
            unique=True,
            postgresql_where=text("marked_for_deletion = false"),
            sqlite_where=text("marked_for_deletion = 0"),
        ),
        Index("idx_cheaters_username", "username"),
        Index("idx_cheaters_last_modified", "last_modified"),
    )

    @property
    def is_active(self) -> bool:
        return not self.marked_for_deletion

    @property
    def lifecycle(self) -> Lifecycle:
        if self.marked_for_deletion:
            return Tombstoned(reason=self.deletion_reason, at=self.deletion_timestamp)
        return Active()

    def tombstone(self, reason: DeletionReason, now: datetime | None = None) -> None:
        """Soft-delete the record; the snapshot export removes it later."""
        now = now or _utcnow()
        self.marked_for_deletion = True
        self.deletion_reason = reason
        self.deletion_timestamp = now
        self.last_modified = now

    def __repr__(self) -> str:
        return f"<Cheater(id={self.id}, username={self.username}, active={self.is_active})>"
