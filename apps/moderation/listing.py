"""Read side of the cheater database: counts, sorted pages and prefix search.

Pages are keyset based. Each page hands out an opaque cursor built from the
sort value and id of its last row, and the next page starts strictly after
it. Callers that need random access keep a page -> cursor map; pages whose
predecessor cursor is unknown are reached by walking forward.
"""

import base64
import binascii
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from apps.codeforces.client import normalize_username
from core.auth import Principal, require_moderator
from core.config import settings
from core.errors import InvalidRequestError
from core.redis import get_redis, redis_key
from models import Cheater, Report, ReportStatus

logger = logging.getLogger(__name__)

COUNT_CACHE_KEY = redis_key("cheaters", "count")
DEFAULT_SORT = "reported_at_desc"
SEARCH_UPPER_BOUND = "\uf8ff"  # highest BMP private-use codepoint, closes the prefix range


def _rating_expr(key: str) -> ColumnElement[int]:
    return func.coalesce(Cheater.info[key].as_integer(), 0)


def _info_int(cheater: Cheater, key: str) -> int:
    return int((cheater.info or {}).get(key) or 0)


# sort field -> (SQL expression, value of a loaded row)
SORT_FIELDS: dict[str, tuple[Any, Callable[[Cheater], Any]]] = {
    "reported_at": (Cheater.reported_at, lambda c: c.reported_at),
    "rating": (_rating_expr("current_rating"), lambda c: _info_int(c, "current_rating")),
    "max_rating": (_rating_expr("max_rating"), lambda c: _info_int(c, "max_rating")),
    "username": (Cheater.username, lambda c: c.username),
}


@dataclass
class PageData:
    cheaters: list[Cheater]
    last_cursor: str | None
    has_more: bool = False


@dataclass
class ReportPage:
    reports: list[Report]
    last_cursor: str | None
    has_more: bool = False


def parse_sort_option(option: str | None) -> tuple[str, bool]:
    """
    Split a sort option such as ``max_rating_desc`` into (field, descending).

    Unknown options fall back to ``reported_at_desc``.
    """
    field, _, direction = (option or "").rpartition("_")
    if field not in SORT_FIELDS or direction not in ("asc", "desc"):
        field, _, direction = DEFAULT_SORT.rpartition("_")
    return field, direction == "desc"


def clamp_page_size(page_size: int | None) -> int:
    if not page_size or page_size < 1:
        return settings.default_page_size
    return min(page_size, settings.max_page_size)


def encode_cursor(sort_key: str, value: Any, row_id: int) -> str:
    if isinstance(value, datetime):
        value = value.isoformat()
    raw = json.dumps({"s": sort_key, "v": value, "id": row_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, sort_key: str) -> tuple[Any, int]:
    """
    Decode a cursor issued for ``sort_key``.

    Raises:
        InvalidRequestError: If the cursor is malformed or was issued for another ordering
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        if data["s"] != sort_key:
            raise ValueError("cursor issued for another ordering")
        value = data["v"]
        if sort_key in ("reported_at", "pending"):
            value = datetime.fromisoformat(value)
        return value, int(data["id"])
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise InvalidRequestError("Invalid page cursor.") from e


def _after(expr: Any, id_column: Any, value: Any, row_id: int, descending: bool) -> ColumnElement[bool]:
    """Keyset predicate: rows strictly after (value, row_id) in the given direction."""
    if descending:
        return or_(expr < value, and_(expr == value, id_column < row_id))
    return or_(expr > value, and_(expr == value, id_column > row_id))


async def fetch_total_count(db: AsyncSession, search: str = "") -> int:
    """
    Count active cheaters, optionally restricted to a username prefix.

    Counts are cached per search string until the next write that touches
    cheaters. When Redis is unavailable the count comes straight from the
    database.
    """
    term = normalize_username(search or "")
    redis = await get_redis()
    cache_available = True
    try:
        cached = await redis.hget(COUNT_CACHE_KEY, term)
    except RedisError as e:
        logger.warning(f"Count cache read failed, counting in the database: {e}")
        cached, cache_available = None, False
    if cached is not None:
        return int(cached)

    stmt = select(func.count()).select_from(Cheater).where(Cheater.marked_for_deletion.is_(False))
    if term:
        stmt = stmt.where(Cheater.username >= term, Cheater.username <= term + SEARCH_UPPER_BOUND)
    total = int((await db.execute(stmt)).scalar_one())

    if cache_available:
        try:
            await redis.hset(COUNT_CACHE_KEY, term, total)
        except RedisError as e:
            logger.warning(f"Count cache write failed: {e}")
    return total


async def invalidate_count_cache() -> None:
    """
    Drop every cached count; called after writes that change cheaters.

    Runs after the write has committed, so a Redis failure is logged and
    never reported as a failed operation.
    """
    try:
        redis = await get_redis()
        await redis.delete(COUNT_CACHE_KEY)
    except RedisError as e:
        logger.warning(f"Failed to invalidate cheater count cache: {e}")


async def fetch_cheaters_after(
    db: AsyncSession,
    search: str = "",
    sort_option: str | None = None,
    page_size: int | None = None,
    after: str | None = None,
) -> PageData:
    """
    Fetch one page of active cheaters starting after a cursor.

    Args:
        db: Database session
        search: Username prefix; when set, results are ordered by username
        sort_option: Ordering used without a search term
        page_size: Requested page size, clamped to the configured maximum
        after: Cursor of the previous page, None for the first page

    Returns:
        The page and the cursor of its last row
    """
    term = normalize_username(search or "")
    limit = clamp_page_size(page_size)

    if term:
        sort_key, descending = "username", False
    else:
        sort_key, descending = parse_sort_option(sort_option)
    expr, value_of = SORT_FIELDS[sort_key]

    stmt = select(Cheater).where(Cheater.marked_for_deletion.is_(False))
    if term:
        stmt = stmt.where(Cheater.username >= term, Cheater.username <= term + SEARCH_UPPER_BOUND)
    if after:
        value, row_id = decode_cursor(after, sort_key)
        stmt = stmt.where(_after(expr, Cheater.id, value, row_id, descending))

    if descending:
        stmt = stmt.order_by(expr.desc(), Cheater.id.desc())
    else:
        stmt = stmt.order_by(expr.asc(), Cheater.id.asc())

    rows = list((await db.execute(stmt.limit(limit + 1))).scalars().all())
    has_more = len(rows) > limit
    rows = rows[:limit]

    last_cursor = encode_cursor(sort_key, value_of(rows[-1]), rows[-1].id) if rows else None
    return PageData(cheaters=rows, last_cursor=last_cursor, has_more=has_more)


async def fetch_page_data(
    db: AsyncSession,
    page: int,
    search: str = "",
    sort_option: str | None = None,
    page_size: int | None = None,
    cursor_map: dict[int, str] | None = None,
) -> PageData:
    """
    Fetch page ``page`` (1-based) using and filling a page -> cursor map.

    ``cursor_map[n]`` holds the cursor of the last row of page n. Going back
    reuses the stored cursors; a page whose predecessor is unknown is reached
    by walking forward from the nearest known page.
    """
    if page < 1:
        raise InvalidRequestError("Page must be 1 or greater.")
    if cursor_map is None:
        cursor_map = {}

    known = max((p for p in cursor_map if p < page), default=0)
    after = cursor_map.get(known)
    for walk_page in range(known + 1, page):
        walked = await fetch_cheaters_after(db, search, sort_option, page_size, after)
        if not walked.cheaters:
            return PageData(cheaters=[], last_cursor=None)
        cursor_map[walk_page] = walked.last_cursor  # type: ignore[assignment]
        after = walked.last_cursor

    page_data = await fetch_cheaters_after(db, search, sort_option, page_size, after)
    if page_data.last_cursor:
        cursor_map[page] = page_data.last_cursor
    return page_data


async def list_pending_reports(
    db: AsyncSession,
    principal: Principal,
    page_size: int | None = None,
    after: str | None = None,
) -> ReportPage:
    """
    Pending reports, oldest first, for the moderation queue.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
    """
    require_moderator(principal)
    limit = clamp_page_size(page_size)

    stmt = select(Report).where(Report.status == ReportStatus.PENDING)
    if after:
        value, row_id = decode_cursor(after, "pending")
        stmt = stmt.where(_after(Report.reported_at, Report.id, value, row_id, descending=False))
    stmt = stmt.order_by(Report.reported_at.asc(), Report.id.asc()).limit(limit + 1)

    rows = list((await db.execute(stmt)).scalars().all())
    has_more = len(rows) > limit
    rows = rows[:limit]

    last_cursor = encode_cursor("pending", rows[-1].reported_at, rows[-1].id) if rows else None
    return ReportPage(reports=rows, last_cursor=last_cursor, has_more=has_more)
