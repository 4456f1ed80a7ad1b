"""Shared test doubles and record factories."""

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import CodeforcesClient, UsernameValidation, normalize_username
from core.auth import Principal
from models import Appeal, AppealStatus, Cheater, DeletionReason, Report, ReportStatus

MODERATOR = Principal.moderator("mod_alice")
ANONYMOUS = Principal.anonymous()

EVIDENCE = "Identical code in [this submission](https://codeforces.com/contest/1/submission/42)"


class FakeRedis:
    """The slice of redis.asyncio.Redis the application uses."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> Any:
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def hget(self, name: str, key: str) -> str | None:
        return self.data.get(name, {}).get(key)

    async def hset(self, name: str, key: str, value: Any) -> int:
        bucket = self.data.setdefault(name, {})
        is_new = key not in bucket
        bucket[key] = str(value)
        return int(is_new)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


def codeforces_mock(info: dict[str, Any] | None = None, missing: set[str] | None = None) -> AsyncMock:
    """Codeforces client whose existence check knows every handle except ``missing``."""
    missing = missing or set()
    client = AsyncMock(spec=CodeforcesClient)

    async def validate(raw: str) -> UsernameValidation:
        username = normalize_username(raw)
        if username in missing:
            return UsernameValidation(
                exists=False, username=username, error=f'Codeforces user "{username}" does not exist.'
            )
        return UsernameValidation(
            exists=True,
            username=username,
            info=info
            or {"current_rating": 1500, "max_rating": 1600, "current_rank": "specialist", "max_rank": "expert"},
        )

    client.validate_username.side_effect = validate
    return client


def verifier_mock(verified: bool = True) -> AsyncMock:
    verifier = AsyncMock()
    verifier.verify.return_value = verified
    return verifier


def utc(minutes_ago: int = 0) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)


async def make_report(
    db: AsyncSession,
    username: str,
    status: ReportStatus = ReportStatus.PENDING,
    minutes_ago: int = 0,
    **fields: Any,
) -> Report:
    report = Report(
        username=username,
        evidence=fields.pop("evidence", EVIDENCE),
        status=status,
        reported_at=utc(minutes_ago),
        **fields,
    )
    db.add(report)
    await db.commit()
    return report


async def make_cheater(
    db: AsyncSession,
    username: str,
    active: bool = True,
    minutes_ago: int = 0,
    **fields: Any,
) -> Cheater:
    now = utc(minutes_ago)
    cheater = Cheater(
        username=username,
        evidence=fields.pop("evidence", EVIDENCE),
        reported_at=fields.pop("reported_at", now),
        accepted_by=fields.pop("accepted_by", "mod_bob"),
        accepted_at=now,
        marked_for_deletion=not active,
        deletion_reason=None if active else fields.pop("deletion_reason", DeletionReason.MOVED_TO_PENDING),
        deletion_timestamp=None if active else now,
        last_modified=fields.pop("last_modified", now),
        **fields,
    )
    db.add(cheater)
    await db.commit()
    return cheater


async def make_appeal(
    db: AsyncSession,
    username: str,
    status: AppealStatus = AppealStatus.PENDING,
    minutes_ago: int = 0,
    message: str = "I solved it myself, see my other submissions.",
) -> Appeal:
    appeal = Appeal(
        username=username,
        message=message,
        status=status,
        submitted_at=utc(minutes_ago),
        last_modified=utc(minutes_ago),
    )
    db.add(appeal)
    await db.commit()
    return appeal
