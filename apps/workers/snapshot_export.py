"""Incremental export of active cheater usernames to the static snapshot.

The snapshot is the only thing the browser extension reads:
``{"cheaters": [usernames...], "lastExportTime": iso8601}``. Each run merges
cheaters modified since the previous export into the file, then hard-deletes
the tombstones it processed. ``lastExportTime`` is the newest
``last_modified`` the run saw, so the next run picks up exactly where this
one stopped.
"""

import json
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.moderation.listing import invalidate_count_cache
from core.config import settings
from core.db import AsyncSessionLocal
from core.metrics import snapshot_exports_total, tombstones_purged_total
from models import Cheater

logger = logging.getLogger(__name__)


class SnapshotFormatError(Exception):
    """The existing snapshot file has a shape we do not understand."""


@dataclass
class Snapshot:
    cheaters: set[str]
    last_export_time: datetime | None


@dataclass
class ExportResult:
    processed: int = 0
    added: int = 0
    removed: int = 0
    total: int = 0
    purged: int = 0
    written: bool = False
    exported_at: datetime | None = None
    watermark: datetime | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def parse_snapshot(data: Any, source: str) -> Snapshot:
    """
    Interpret decoded snapshot JSON, accepting the legacy bare-list format.

    Raises:
        SnapshotFormatError: If the data has an unknown shape
    """
    if isinstance(data, list):
        return Snapshot(cheaters={str(u) for u in data}, last_export_time=None)
    if isinstance(data, dict) and isinstance(data.get("cheaters"), list):
        raw_time = data.get("lastExportTime")
        last_export_time = _as_utc(datetime.fromisoformat(raw_time.replace("Z", "+00:00"))) if raw_time else None
        return Snapshot(cheaters={str(u) for u in data["cheaters"]}, last_export_time=last_export_time)

    raise SnapshotFormatError(f"{source} has an unknown snapshot format")


def read_snapshot(path: str | Path) -> Snapshot:
    """
    Load a snapshot file; a missing file is an empty snapshot.

    Raises:
        SnapshotFormatError: If the file is not valid JSON or has an unknown shape
    """
    path = Path(path)
    if not path.exists():
        return Snapshot(cheaters=set(), last_export_time=None)

    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SnapshotFormatError(f"{path} is not valid JSON: {e}") from e
    return parse_snapshot(data, str(path))


def write_snapshot(path: str | Path, cheaters: set[str], last_export_time: datetime | None) -> None:
    """Replace the snapshot file atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {"cheaters": sorted(cheaters)}
    if last_export_time is not None:
        payload["lastExportTime"] = last_export_time.isoformat().replace("+00:00", "Z")
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".snapshot-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


async def purge_tombstones(db: AsyncSession, cheater_ids: list[int], watermark: datetime) -> int:
    """
    Hard-delete tombstones an export has already removed from the snapshot.

    Only the given rows go, and only while they are still tombstoned and
    unmodified since the watermark. Safe to run repeatedly.

    Args:
        db: Database session
        cheater_ids: Tombstoned rows the export processed
        watermark: Newest last_modified the export saw
    """
    if not cheater_ids:
        return 0
    result = await db.execute(
        delete(Cheater)
        .where(
            Cheater.id.in_(cheater_ids),
            Cheater.marked_for_deletion.is_(True),
            Cheater.last_modified <= watermark,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    purged = result.rowcount or 0
    if purged:
        tombstones_purged_total.inc(purged)
        await invalidate_count_cache()
    return purged


class SnapshotExporter:
    """Merges cheater changes into the published snapshot file."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        path: str | Path | None = None,
        overlap: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.path = Path(path or settings.snapshot_path)
        self.overlap = timedelta(seconds=settings.snapshot_export_overlap if overlap is None else overlap)

    async def export(self) -> ExportResult:
        """
        Run one incremental export followed by the tombstone purge.

        Returns:
            What the run changed

        Raises:
            SnapshotFormatError: If the existing snapshot cannot be read
        """
        try:
            result = await self._export()
        except Exception:
            snapshot_exports_total.labels(outcome="failed").inc()
            raise
        snapshot_exports_total.labels(outcome="written" if result.written else "unchanged").inc()
        return result

    async def _export(self) -> ExportResult:
        snapshot = read_snapshot(self.path)
        result = ExportResult(exported_at=datetime.now(timezone.utc))
        cheaters = set(snapshot.cheaters)

        async with self.session_factory() as db:
            stmt = select(Cheater).order_by(Cheater.last_modified.asc(), Cheater.id.asc())
            if snapshot.last_export_time is not None:
                # Rows stamped before the watermark may have committed after the last run
                stmt = stmt.where(Cheater.last_modified > snapshot.last_export_time - self.overlap)
            changed = list((await db.execute(stmt)).scalars().all())
            result.processed = len(changed)

            to_add = {c.username for c in changed if c.is_active}
            to_remove = {c.username for c in changed if not c.is_active} - to_add
            if to_remove:
                still_active = (
                    await db.execute(
                        select(Cheater.username).where(
                            Cheater.username.in_(to_remove), Cheater.marked_for_deletion.is_(False)
                        )
                    )
                ).scalars()
                to_remove -= set(still_active)
            tombstone_ids = [c.id for c in changed if not c.is_active]

            seen = [_as_utc(c.last_modified) for c in changed]
            if snapshot.last_export_time is not None:
                seen.append(snapshot.last_export_time)
            result.watermark = max(seen, default=None)

            result.added = len(to_add - cheaters)
            result.removed = len(to_remove & cheaters)
            cheaters |= to_add
            cheaters -= to_remove
            result.total = len(cheaters)

            if (
                cheaters != snapshot.cheaters
                or result.watermark != snapshot.last_export_time
                or not self.path.exists()
            ):
                write_snapshot(self.path, cheaters, result.watermark)
                result.written = True
                logger.info(
                    f"Snapshot written to {self.path}: {result.total} cheaters "
                    f"(+{result.added}, -{result.removed}, {result.processed} records processed)"
                )
            else:
                logger.info("No cheater changes since last export")

            # The file no longer lists these names, so their rows can go
            if tombstone_ids and result.watermark is not None:
                result.purged = await purge_tombstones(db, tombstone_ids, result.watermark)
                if result.purged:
                    logger.info(f"Purged {result.purged} tombstoned cheater records")

        return result


def load_published_snapshot(path: str | Path | None = None) -> dict[str, Any]:
    """The published snapshot as served to clients, empty before the first export."""
    path = Path(path or settings.snapshot_path)
    if not path.exists():
        return {"cheaters": []}
    snapshot = read_snapshot(path)
    payload: dict[str, Any] = {"cheaters": sorted(snapshot.cheaters)}
    if snapshot.last_export_time is not None:
        payload["lastExportTime"] = snapshot.last_export_time.isoformat().replace("+00:00", "Z")
    return payload
