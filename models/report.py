"""Reports - unreviewed accusations waiting in the moderation queue."""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class ReportStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Report(Base):
    """Crowd-sourced report that a Codeforces handle cheated."""

    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)  # normalized handle
    evidence: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(
            ReportStatus,
            name="report_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ReportStatus.PENDING,
    )
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    # Rating snapshot taken when the report was filed
    info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Provenance when the report was re-opened from a cheater record
    moved_to_pending_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    moved_to_pending_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Pending queue and duplicate lookups by username
        Index("idx_reports_username_status", "username", "status"),
        Index("idx_reports_status_reported_at", "status", "reported_at"),
    )

    def __repr__(self) -> str:
        return f"<Report(id={self.id}, username={self.username}, status={self.status})>"
