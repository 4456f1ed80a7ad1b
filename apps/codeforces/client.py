"""HTTP client for the Codeforces public API."""

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from core.config import settings
from core.errors import ExternalServiceError
from core.metrics import codeforces_requests_total

logger = logging.getLogger(__name__)

LOOKUP_FAILED_TEXT = "Failed to validate Codeforces username. Please try again."

_NOT_FOUND_RE = re.compile(r"User with handle (\S+) not found")
_MARKDOWN_LINK_RE = re.compile(r"\[[^\]]+\]\((https?://[^)]+)\)")
_PLAIN_URL_RE = re.compile(r"https?://[\w\-._~:/?#\[\]@!$&'()*+,;=%]+")


class HandleNotFoundError(Exception):
    """user.info rejected the request because one handle does not exist."""

    def __init__(self, handle: str) -> None:
        super().__init__(f"User with handle {handle} not found")
        self.handle = handle


@dataclass
class UsernameValidation:
    exists: bool
    username: str
    error: str | None = None
    info: dict[str, Any] | None = None


def normalize_username(raw: str) -> str:
    """Strip all whitespace and lowercase a handle."""
    return "".join(raw.split()).lower()


def evidence_has_link(evidence: str) -> bool:
    """True if the evidence holds a markdown link or a bare http(s) URL."""
    return bool(_MARKDOWN_LINK_RE.search(evidence) or _PLAIN_URL_RE.search(evidence))


def info_from_user(user: dict[str, Any]) -> dict[str, Any]:
    """Rating snapshot stored on reports and cheaters."""
    return {
        "current_rating": user.get("rating") or 0,
        "max_rating": user.get("maxRating") or 0,
        "current_rank": user.get("rank") or "unrated",
        "max_rank": user.get("maxRank") or "unrated",
    }


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class CodeforcesClient:
    """Thin wrapper over user.info, user.status and contest.status."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.codeforces_api_url).rstrip("/")
        self.batch_size = batch_size or settings.codeforces_batch_size
        self.batch_delay = settings.codeforces_batch_delay if batch_delay is None else batch_delay
        self.client = http_client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout or settings.codeforces_timeout
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Call an API method and return the decoded envelope.

        Codeforces answers FAILED requests with a 4xx status and a JSON body,
        so the body is decoded regardless of the HTTP status.

        Raises:
            ExternalServiceError: On transport errors or a non-JSON body
        """
        try:
            response = await self.client.get(f"/{method}", params=params)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            codeforces_requests_total.labels(method=method, outcome="error").inc()
            logger.error(f"Codeforces request failed: {method} - {e}")
            raise ExternalServiceError(LOOKUP_FAILED_TEXT) from e

        if not isinstance(payload, dict):
            codeforces_requests_total.labels(method=method, outcome="error").inc()
            raise ExternalServiceError(LOOKUP_FAILED_TEXT)

        outcome = "ok" if payload.get("status") == "OK" else "failed"
        codeforces_requests_total.labels(method=method, outcome=outcome).inc()
        return payload

    async def user_info(self, handles: list[str]) -> list[dict[str, Any]]:
        """
        Look up several handles with a single user.info request.

        Args:
            handles: Handles to look up

        Returns:
            User objects in request order

        Raises:
            HandleNotFoundError: If one of the handles does not exist
            ExternalServiceError: On any other API failure
        """
        payload = await self._call("user.info", {"handles": ";".join(handles)})
        if payload.get("status") == "OK":
            return list(payload.get("result") or [])

        comment = payload.get("comment")
        if isinstance(comment, str) and comment.startswith("handles: User with handle"):
            match = _NOT_FOUND_RE.search(comment)
            if match:
                raise HandleNotFoundError(match.group(1))

        logger.error(f"Codeforces API error: {comment}")
        raise ExternalServiceError(LOOKUP_FAILED_TEXT)

    async def user_info_batched(self, handles: list[str]) -> dict[str, dict[str, Any] | None]:
        """
        Look up any number of handles, batching requests.

        Handles that do not exist map to None; the batch is retried without
        them. Handles of a batch that failed otherwise are left out of the
        result so the caller can skip them.

        Args:
            handles: Handles to look up

        Returns:
            Lowercased requested handle -> user object or None
        """
        results: dict[str, dict[str, Any] | None] = {}
        first_request = True

        for batch in _chunks(list(handles), self.batch_size):
            remaining = list(batch)
            while remaining:
                if not first_request and self.batch_delay:
                    await asyncio.sleep(self.batch_delay)
                first_request = False

                try:
                    users = await self.user_info(remaining)
                except HandleNotFoundError as e:
                    missing = e.handle.lower()
                    logger.info(f"Codeforces handle not found: {missing}")
                    results[missing] = None
                    pruned = [h for h in remaining if h.lower() != missing]
                    if len(pruned) == len(remaining):
                        # API named a handle we did not send; give up on this batch
                        logger.error(f"Unexpected not-found handle {missing}, skipping batch")
                        break
                    remaining = pruned
                    continue
                except ExternalServiceError:
                    logger.warning(f"Skipping batch of {len(remaining)} handles after API failure")
                    break

                for handle, user in zip(remaining, users):
                    results[handle.lower()] = user
                break

        return results

    async def user_status(self, handle: str, count: int) -> list[dict[str, Any]] | None:
        """
        Fetch a handle's most recent submissions.

        Returns:
            Submissions newest first, or None when the API answered non-OK
        """
        payload = await self._call("user.status", {"handle": handle, "from": 1, "count": count})
        if payload.get("status") != "OK":
            logger.info(f"user.status failed for {handle}: {payload.get('comment')}")
            return None
        return list(payload.get("result") or [])

    async def contest_status(self, contest_id: int, start: int, count: int) -> list[dict[str, Any]] | None:
        """
        Fetch one page of a contest's submissions, newest first.

        Args:
            contest_id: Contest to read
            start: 1-based index of the first submission
            count: Page size

        Returns:
            Submissions, or None when the API answered non-OK

        Raises:
            ExternalServiceError: If the API could not be reached
        """
        payload = await self._call("contest.status", {"contestId": contest_id, "from": start, "count": count})
        if payload.get("status") != "OK":
            logger.warning(f"contest.status failed for contest {contest_id}: {payload.get('comment')}")
            return None
        return list(payload.get("result") or [])

    async def validate_username(self, raw: str) -> UsernameValidation:
        """
        Check that a handle exists on Codeforces.

        Args:
            raw: Handle as typed by the user

        Returns:
            Validation result with the normalized handle and its rating snapshot

        Raises:
            ExternalServiceError: If the API could not be reached
        """
        username = normalize_username(raw)
        if not username:
            return UsernameValidation(exists=False, username=username, error="Please fill in all fields.")
        try:
            users = await self.user_info([username])
        except HandleNotFoundError:
            return UsernameValidation(
                exists=False,
                username=username,
                error=f'Codeforces user "{username}" does not exist.',
            )
        if not users:
            return UsernameValidation(
                exists=False,
                username=username,
                error=f'Codeforces user "{username}" does not exist.',
            )
        return UsernameValidation(exists=True, username=username, info=info_from_user(users[0]))
