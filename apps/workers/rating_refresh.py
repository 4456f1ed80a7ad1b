"""Rating refresh worker: keeps cheater rating snapshots and handles current."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import CodeforcesClient, info_from_user
from apps.moderation.common import atomic, get_active_cheater, utcnow
from apps.moderation.listing import invalidate_count_cache
from core.config import settings
from core.db import AsyncSessionLocal
from core.metrics import rating_refresh_changes_total
from models import Cheater, DeletionReason

logger = logging.getLogger(__name__)


@dataclass
class RefreshStats:
    updated: int = 0
    tombstoned: int = 0
    skipped: int = 0

    def merge(self, other: "RefreshStats") -> None:
        self.updated += other.updated
        self.tombstoned += other.tombstoned
        self.skipped += other.skipped


def _rename_marker(cheater: Cheater, now: datetime) -> Cheater:
    """Tombstone under the old handle so the next export unlists it."""
    return Cheater(
        username=cheater.username,
        evidence=cheater.evidence,
        reported_at=cheater.reported_at,
        accepted_by=cheater.accepted_by,
        accepted_at=cheater.accepted_at,
        marked_for_deletion=True,
        deletion_reason=DeletionReason.HANDLE_CHANGED,
        deletion_timestamp=now,
        last_modified=now,
    )


class RatingRefreshJob:
    """Refreshes info and handles of active cheaters from user.info."""

    def __init__(
        self,
        codeforces: CodeforcesClient,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        batch_size: int | None = None,
    ) -> None:
        self.codeforces = codeforces
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.codeforces_batch_size
        self.running = False

    async def run(self) -> RefreshStats:
        """
        Refresh every active cheater once.

        Returns:
            Totals over all batches; batches the API failed for count as skipped
        """
        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    select(Cheater.id, Cheater.username)
                    .where(Cheater.marked_for_deletion.is_(False))
                    .order_by(Cheater.id.asc())
                )
            ).all()

        logger.info(f"Refreshing info for {len(rows)} active cheaters")
        stats = RefreshStats()

        for start in range(0, len(rows), self.batch_size):
            batch = rows[start : start + self.batch_size]
            batch_number = start // self.batch_size + 1
            try:
                batch_stats = await self._process_batch(dict(batch))
            except IntegrityError as e:
                logger.error(f"Batch {batch_number} rolled back on a username collision: {e}")
                batch_stats = RefreshStats(skipped=len(batch))
            logger.info(
                f"Batch {batch_number}: {batch_stats.updated} updated, "
                f"{batch_stats.tombstoned} tombstoned, {batch_stats.skipped} skipped"
            )
            stats.merge(batch_stats)

        if stats.updated or stats.tombstoned:
            await invalidate_count_cache()
        rating_refresh_changes_total.labels(kind="updated").inc(stats.updated)
        rating_refresh_changes_total.labels(kind="tombstoned").inc(stats.tombstoned)
        rating_refresh_changes_total.labels(kind="skipped").inc(stats.skipped)
        return stats

    async def _process_batch(self, usernames_by_id: dict[int, str]) -> RefreshStats:
        stats = RefreshStats()
        lookup = await self.codeforces.user_info_batched(list(usernames_by_id.values()))
        if not lookup:
            logger.warning(f"No user info returned for a batch of {len(usernames_by_id)} cheaters, skipping")
            stats.skipped = len(usernames_by_id)
            return stats

        async with self.session_factory() as db:
            async with atomic(db, "rating_refresh"):
                cheaters = (
                    await db.execute(
                        select(Cheater)
                        .where(Cheater.id.in_(list(usernames_by_id)), Cheater.marked_for_deletion.is_(False))
                        .with_for_update()
                    )
                ).scalars().all()

                now = utcnow()
                for cheater in cheaters:
                    key = cheater.username.lower()
                    if key not in lookup:
                        logger.info(f"No info found for {cheater.username} (skipped)")
                        stats.skipped += 1
                        continue

                    user = lookup[key]
                    if user is None:
                        cheater.tombstone(DeletionReason.ACCOUNT_NOT_FOUND, now)
                        stats.tombstoned += 1
                        logger.info(f"Codeforces account {cheater.username} no longer exists, tombstoned")
                        continue

                    changed = False
                    new_info = info_from_user(user)
                    if cheater.info != new_info:
                        cheater.info = new_info
                        changed = True

                    new_username = str(user.get("handle") or cheater.username).lower()
                    if new_username != cheater.username:
                        other = await get_active_cheater(db, new_username)
                        if other is not None and other.id != cheater.id:
                            logger.warning(
                                f"Not renaming {cheater.username} to {new_username}: "
                                f"cheater {other.id} already holds that handle"
                            )
                        else:
                            logger.info(f"Handle changed: {cheater.username} -> {new_username}")
                            db.add(_rename_marker(cheater, now))
                            cheater.username = new_username
                            changed = True

                    if changed:
                        cheater.last_modified = now
                        stats.updated += 1

        return stats

    async def start(self) -> None:
        """Run the refresh periodically until stopped."""
        self.running = True
        logger.info(f"Rating refresh worker started, interval={settings.rating_refresh_interval}s")
        while self.running:
            try:
                stats = await self.run()
                logger.info(
                    f"Rating refresh done: {stats.updated} updated, "
                    f"{stats.tombstoned} tombstoned, {stats.skipped} skipped"
                )
            except Exception as e:
                logger.error(f"Error in rating refresh loop: {e}")
            await asyncio.sleep(settings.rating_refresh_interval)

    async def stop(self) -> None:
        """Stop the worker after the current run."""
        self.running = False
