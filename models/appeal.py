"""Appeals - a listed user's single request to be removed from the database."""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class AppealStatus(str, enum.Enum):
    PENDING = "pending"
    DECLINED = "declined"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appeal(Base):
    """Appeal model. Accepted appeals are deleted, declined ones stay forever."""

    __tablename__ = "appeals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[AppealStatus] = mapped_column(
        Enum(
            AppealStatus,
            name="appeal_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AppealStatus.PENDING,
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    declined_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        # One appeal per user, ever
        UniqueConstraint("username", name="uq_appeals_username"),
        Index("idx_appeals_status_submitted_at", "status", "submitted_at"),
    )

    def __repr__(self) -> str:
        return f"<Appeal(id={self.id}, username={self.username}, status={self.status})>"
