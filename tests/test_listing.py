from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from apps.moderation.listing import (
    decode_cursor,
    encode_cursor,
    fetch_cheaters_after,
    fetch_page_data,
    fetch_total_count,
    list_pending_reports,
    parse_sort_option,
)
from core.errors import AuthenticationRequiredError, InvalidRequestError
from models import ReportStatus
from tests import helpers
from tests.helpers import ANONYMOUS, MODERATOR


async def _seed(db):
    """Five active cheaters with distinct report times and ratings, plus noise."""
    ratings = {"alpha": 1900, "alpine": 1400, "bravo": 2100, "charlie": 1400, "delta": None}
    for minutes_ago, (name, rating) in enumerate(ratings.items()):
        info = None if rating is None else {"current_rating": rating, "max_rating": rating + 100}
        await helpers.make_cheater(db, name, minutes_ago=minutes_ago * 10, info=info)
    await helpers.make_cheater(db, "alpaca", active=False)


class TestSortOptions:
    """Test sort option parsing."""

    def test_known_options(self):
        """Test field/direction splitting."""
        assert parse_sort_option("max_rating_desc") == ("max_rating", True)
        assert parse_sort_option("username_asc") == ("username", False)
        assert parse_sort_option("reported_at_asc") == ("reported_at", False)

    def test_unknown_options_fall_back(self):
        """Test the reported_at_desc default."""
        assert parse_sort_option(None) == ("reported_at", True)
        assert parse_sort_option("karma_desc") == ("reported_at", True)
        assert parse_sort_option("rating_sideways") == ("reported_at", True)


class TestCursor:
    """Test opaque cursors."""

    def test_cursor_is_bound_to_ordering(self):
        """Test that a cursor from one ordering is refused by another."""
        cursor = encode_cursor("username", "bob", 3)

        assert decode_cursor(cursor, "username") == ("bob", 3)
        with pytest.raises(InvalidRequestError):
            decode_cursor(cursor, "rating")

    def test_garbage_cursor(self):
        """Test that tampered cursors are a user error."""
        with pytest.raises(InvalidRequestError):
            decode_cursor("not-a-cursor!!", "username")


class TestCounts:
    """Test cached counts."""

    @pytest.mark.asyncio
    async def test_counts_active_only(self, db):
        """Test totals with and without a prefix."""
        await _seed(db)

        assert await fetch_total_count(db) == 5
        assert await fetch_total_count(db, "AL") == 2
        assert await fetch_total_count(db, "zulu") == 0

    @pytest.mark.asyncio
    async def test_counts_are_cached_per_search(self, db, fake_redis):
        """Test that the cache answers until invalidated."""
        await _seed(db)
        assert await fetch_total_count(db, "al") == 2

        await helpers.make_cheater(db, "alright")

        assert await fetch_total_count(db, "al") == 2
        assert fake_redis.data["cfdb:cheaters:count"]["al"] == "2"
        del fake_redis.data["cfdb:cheaters:count"]
        assert await fetch_total_count(db, "al") == 3

    @pytest.mark.asyncio
    async def test_redis_outage_counts_in_database(self, db, fake_redis, monkeypatch):
        """Test that counts still work when the cache cannot be reached."""
        await _seed(db)
        monkeypatch.setattr(fake_redis, "hget", AsyncMock(side_effect=RedisConnectionError("down")))
        monkeypatch.setattr(fake_redis, "hset", AsyncMock())

        assert await fetch_total_count(db, "al") == 2
        fake_redis.hset.assert_not_called()


class TestPages:
    """Test keyset pagination and search."""

    @pytest.mark.asyncio
    async def test_default_order_is_newest_first(self, db):
        """Test reported_at_desc without a search term."""
        await _seed(db)

        page = await fetch_cheaters_after(db, page_size=10)

        assert [c.username for c in page.cheaters] == ["alpha", "alpine", "bravo", "charlie", "delta"]
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_rating_order_breaks_ties_by_id(self, db):
        """Test rating sort with missing info counted as zero."""
        await _seed(db)

        desc = await fetch_cheaters_after(db, sort_option="rating_desc", page_size=10)
        asc = await fetch_cheaters_after(db, sort_option="rating_asc", page_size=10)

        assert [c.username for c in desc.cheaters] == ["bravo", "alpha", "charlie", "alpine", "delta"]
        assert [c.username for c in asc.cheaters] == ["delta", "alpine", "charlie", "alpha", "bravo"]

    @pytest.mark.asyncio
    async def test_search_is_prefix_ordered_by_username(self, db):
        """Test that a search term overrides the sort option."""
        await _seed(db)

        page = await fetch_cheaters_after(db, search=" AL ", sort_option="rating_desc", page_size=10)

        assert [c.username for c in page.cheaters] == ["alpha", "alpine"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sort_option", ["reported_at_desc", "rating_asc", "max_rating_desc", "username_asc"])
    async def test_keyset_visits_every_cheater_once(self, db, sort_option):
        """Test walking all pages of size two."""
        await _seed(db)
        seen = []
        cursor = None

        while True:
            page = await fetch_cheaters_after(db, sort_option=sort_option, page_size=2, after=cursor)
            seen.extend(c.username for c in page.cheaters)
            if not page.has_more:
                break
            cursor = page.last_cursor

        assert sorted(seen) == ["alpha", "alpine", "bravo", "charlie", "delta"]
        assert len(seen) == len(set(seen))

    @pytest.mark.asyncio
    async def test_cursor_map_walks_forward(self, db):
        """Test jumping straight to page three and then going back to page two."""
        await _seed(db)
        cursor_map: dict[int, str] = {}

        third = await fetch_page_data(db, 3, sort_option="username_asc", page_size=2, cursor_map=cursor_map)

        assert [c.username for c in third.cheaters] == ["delta"]
        assert set(cursor_map) == {1, 2, 3}

        second = await fetch_page_data(db, 2, sort_option="username_asc", page_size=2, cursor_map=cursor_map)
        assert [c.username for c in second.cheaters] == ["bravo", "charlie"]

    @pytest.mark.asyncio
    async def test_page_past_the_end(self, db):
        """Test that walking beyond the data yields an empty page."""
        await _seed(db)

        page = await fetch_page_data(db, 9, page_size=2)

        assert page.cheaters == []
        assert page.last_cursor is None

    @pytest.mark.asyncio
    async def test_page_must_be_positive(self, db):
        """Test page numbering starts at one."""
        with pytest.raises(InvalidRequestError):
            await fetch_page_data(db, 0)


class TestPendingReports:
    """Test the moderator report queue."""

    @pytest.mark.asyncio
    async def test_oldest_first(self, db):
        """Test ordering, paging and filtering of the queue."""
        await helpers.make_report(db, "new", minutes_ago=1)
        await helpers.make_report(db, "old", minutes_ago=90)
        await helpers.make_report(db, "mid", minutes_ago=45)
        await helpers.make_report(db, "done", status=ReportStatus.ACCEPTED, minutes_ago=120)

        first = await list_pending_reports(db, MODERATOR, page_size=2)
        second = await list_pending_reports(db, MODERATOR, page_size=2, after=first.last_cursor)

        assert [r.username for r in first.reports] == ["old", "mid"]
        assert first.has_more is True
        assert [r.username for r in second.reports] == ["new"]
        assert second.has_more is False

    @pytest.mark.asyncio
    async def test_requires_moderator(self, db):
        """Test that the queue is not public."""
        with pytest.raises(AuthenticationRequiredError):
            await list_pending_reports(db, ANONYMOUS)
