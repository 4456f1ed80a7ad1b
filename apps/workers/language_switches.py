"""Language switch detector: files pending reports from contest submissions.

A contestant who resubmits a problem in another language a few minutes
after a previous attempt has often pasted a solution from somewhere else.
Each hit becomes an ordinary pending report so a moderator makes the call.
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import CodeforcesClient
from apps.moderation.common import atomic, utcnow
from core.config import settings
from core.db import AsyncSessionLocal
from core.errors import ExternalServiceError
from core.metrics import automated_reports_total, reports_submitted_total
from models import Cheater, Report, ReportStatus

logger = logging.getLogger(__name__)

KNOWN_LANGUAGES = (
    "java",
    "kotlin",
    "rust",
    "haskell",
    "go",
    "php",
    "delphi",
    "ocaml",
    "perl",
    "ruby",
    "c#",
    "f#",
    "scala",
)
_C_FAMILY_RE = re.compile(r"c\+\+|cpp|g\+\+|gnu[_-]?c|gcc|clang|\bc\b(?!#)|c11|c99")


def normalize_language(name: str | None) -> str:
    """Collapse compiler names into language families, e.g. ``GNU G++17 7.3.0`` -> ``c/cpp``."""
    if not name:
        return "unknown"
    lang = name.lower()
    if _C_FAMILY_RE.search(lang):
        return "c/cpp"
    if lang == "d":
        return "d"
    if "python" in lang or "pypy" in lang:
        return "python"
    if "pascal" in lang or "fpc" in lang:
        return "pascal"
    if "node.js" in lang or "javascript" in lang:
        return "js"
    for known in KNOWN_LANGUAGES:
        if known in lang:
            return known
    logger.debug(f"Unknown language {name}")
    return lang


def format_duration(seconds: int) -> str:
    """``3725`` -> ``1h2m5s``; hours and minutes are left out when zero."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return (f"{hours}h" if hours else "") + (f"{minutes}m" if minutes else "") + f"{secs}s"


@dataclass
class LanguageSwitch:
    """Two submissions of one problem by one contestant in different languages."""

    handle: str
    contest_id: int
    problem_index: str
    first_id: int
    first_language: str
    second_id: int
    second_language: str
    seconds: int

    def evidence(self) -> str:
        base = f"https://codeforces.com/contest/{self.contest_id}"
        problem = f"{self.contest_id}{self.problem_index}"
        return "\n\n".join(
            [
                "**Language Change Detection (Automated)**",
                f"{self.handle} switched from {self.first_language} to {self.second_language} on "
                f"[{problem}]({base}/problem/{self.problem_index}) in {format_duration(self.seconds)}.",
                f"Submissions: [1st]({base}/submission/{self.first_id}) → "
                f"[2nd]({base}/submission/{self.second_id}).",
            ]
        )


@dataclass
class DetectionStats:
    contests: int = 0
    failed_contests: int = 0
    switches: int = 0
    reports: int = 0
    skipped: int = 0

    def merge(self, other: "DetectionStats") -> None:
        self.contests += other.contests
        self.failed_contests += other.failed_contests
        self.switches += other.switches
        self.reports += other.reports
        self.skipped += other.skipped


def find_language_switches(
    submissions: Iterable[dict[str, Any]],
    contest_id: int,
    window: int,
    ignore_compilation_errors: bool = True,
) -> list[LanguageSwitch]:
    """
    Find same-problem language switches in a contest's submissions.

    Args:
        submissions: contest.status results, newest first
        contest_id: Contest the submissions belong to
        window: Max seconds between the earlier and the later submission
        ignore_compilation_errors: Skip COMPILATION_ERROR submissions

    Returns:
        At most one switch per contestant and problem, the latest one
    """
    # (problem index, handle) -> (language, time, id) of the next submission in time
    later: dict[tuple[str, str], tuple[str, int, int]] = {}
    found: dict[tuple[str, str], LanguageSwitch] = {}

    for submission in submissions:
        author = submission.get("author") or {}
        members = author.get("members") or []
        verdict = (submission.get("verdict") or "").upper()
        if verdict == "SKIPPED" or (ignore_compilation_errors and verdict == "COMPILATION_ERROR"):
            continue
        if author.get("participantType") != "CONTESTANT" or not members:
            continue
        handle = (members[0].get("handle") or "").lower()
        if not handle:
            continue

        key = ((submission.get("problem") or {}).get("index") or "?", handle)
        language = normalize_language(submission.get("programmingLanguage"))
        created = int(submission.get("creationTimeSeconds") or 0)

        if key in later and key not in found:
            next_language, next_created, next_id = later[key]
            gap = next_created - created
            if next_language != language and 0 <= gap <= window:
                found[key] = LanguageSwitch(
                    handle=handle,
                    contest_id=contest_id,
                    problem_index=key[0],
                    first_id=submission["id"],
                    first_language=language,
                    second_id=next_id,
                    second_language=next_language,
                    seconds=gap,
                )
        later[key] = (language, created, submission["id"])

    return list(found.values())


class LanguageSwitchDetector:
    """Scans contests and files a pending report per detected switch."""

    def __init__(
        self,
        codeforces: CodeforcesClient,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        window: int | None = None,
        page_size: int | None = None,
    ) -> None:
        self.codeforces = codeforces
        self.session_factory = session_factory
        self.window = window or settings.language_switch_window
        self.page_size = page_size or settings.contest_status_page_size

    async def fetch_submissions(self, contest_id: int) -> list[dict[str, Any]]:
        """All submissions of a contest; stops early and keeps what it has on API errors."""
        submissions: list[dict[str, Any]] = []
        start = 1
        while True:
            try:
                page = await self.codeforces.contest_status(contest_id, start, self.page_size)
            except ExternalServiceError as e:
                logger.error(f"Fetching contest {contest_id} from {start} failed: {e}")
                break
            if not page:
                break
            submissions.extend(page)
            logger.info(f"Contest {contest_id}: fetched {len(page)} submissions starting at {start}")
            if len(page) < self.page_size:
                break
            start += self.page_size
        return submissions

    async def scan_contest(self, contest_id: int) -> DetectionStats:
        """
        Detect switches in one contest and file reports in a single transaction.

        Active cheaters are skipped, and so are users with a pending report
        when duplicate pending reports are disabled.
        """
        submissions = await self.fetch_submissions(contest_id)
        switches = find_language_switches(
            submissions, contest_id, self.window, settings.language_switch_ignore_compilation_errors
        )
        stats = DetectionStats(contests=1, switches=len(switches))
        if not switches:
            return stats

        handles = {switch.handle for switch in switches}
        async with self.session_factory() as db:
            async with atomic(db, "language_switch_reports"):
                excluded = set(
                    (
                        await db.execute(
                            select(Cheater.username).where(
                                Cheater.username.in_(handles), Cheater.marked_for_deletion.is_(False)
                            )
                        )
                    ).scalars()
                )
                if not settings.allow_duplicate_pending_reports:
                    pending = await db.execute(
                        select(Report.username).where(
                            Report.username.in_(handles), Report.status == ReportStatus.PENDING
                        )
                    )
                    excluded |= set(pending.scalars())

                now = utcnow()
                for switch in switches:
                    if switch.handle in excluded:
                        stats.skipped += 1
                        continue
                    db.add(
                        Report(
                            username=switch.handle,
                            evidence=switch.evidence(),
                            status=ReportStatus.PENDING,
                            reported_at=now,
                        )
                    )
                    stats.reports += 1
                    if not settings.allow_duplicate_pending_reports:
                        excluded.add(switch.handle)

        reports_submitted_total.inc(stats.reports)
        automated_reports_total.inc(stats.reports)
        return stats

    async def run(self, contest_ids: Iterable[int]) -> DetectionStats:
        """Scan contests one by one; a failing contest is logged and skipped."""
        total = DetectionStats()
        for contest_id in contest_ids:
            logger.info(f"Processing contest {contest_id}")
            try:
                stats = await self.scan_contest(contest_id)
            except Exception as e:
                logger.error(f"Error scanning contest {contest_id}: {e}")
                stats = DetectionStats(contests=1, failed_contests=1)
            logger.info(
                f"Contest {contest_id}: {stats.switches} switches, {stats.reports} reports filed, "
                f"{stats.skipped} skipped"
            )
            total.merge(stats)
        return total
