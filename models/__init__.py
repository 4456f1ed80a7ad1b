"""Database models."""

from models.appeal import Appeal, AppealStatus
from models.cheater import Active, Cheater, DeletionReason, Lifecycle, Tombstoned
from models.report import Report, ReportStatus

__all__ = [
    "Report",
    "ReportStatus",
    "Cheater",
    "DeletionReason",
    "Lifecycle",
    "Active",
    "Tombstoned",
    "Appeal",
    "AppealStatus",
]
