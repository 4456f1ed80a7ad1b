"""Challenge-response proof that a caller controls a Codeforces account.

The claimant is handed a random problem and has to submit something that
fails to compile against it. Challenges live in Redis so that any API
process can verify a challenge another process issued.
"""

import json
import logging
import random
import secrets
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from redis.exceptions import RedisError

from apps.codeforces.client import CodeforcesClient, normalize_username
from core.config import settings
from core.errors import NotFoundError, VerificationFailedError
from core.metrics import verification_attempts_total
from core.redis import get_redis, redis_key

logger = logging.getLogger(__name__)

COMPILATION_ERROR = "COMPILATION_ERROR"

VERIFICATION_FAILED_TEXT = (
    "We cannot verify your Codeforces account. Please submit a compilation error to the link above."
)
CHALLENGE_EXPIRED_TEXT = "Verification challenge expired. Please start again."


def _challenge_key(challenge_id: str) -> str:
    return redis_key("verify", "challenge", challenge_id)


@dataclass
class Challenge:
    """A verification problem handed to one claimant."""

    id: str
    handle: str
    contest_id: int
    problem_index: str

    @property
    def problem_url(self) -> str:
        return f"https://codeforces.com/contest/{self.contest_id}/problem/{self.problem_index}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["problem_url"] = self.problem_url
        return data


class IdentityVerifier(Protocol):
    """Anything that can prove a caller owns a handle."""

    async def issue_challenge(self, handle: str) -> Challenge: ...

    async def reroll(self, challenge_id: str) -> Challenge: ...

    async def verify(self, challenge_id: str, handle: str) -> bool: ...

    async def consume(self, challenge_id: str) -> None: ...


class CompilationErrorVerifier:
    """Verifies ownership by a compilation-error submission on a random problem."""

    def __init__(self, codeforces: CodeforcesClient, rng: random.Random | None = None) -> None:
        self.codeforces = codeforces
        self.rng = rng or random.Random()

    def _draw_contest(self, exclude: int | None = None) -> int:
        while True:
            contest_id = self.rng.randint(settings.verification_contest_min, settings.verification_contest_max)
            if contest_id != exclude:
                return contest_id

    async def _save(self, challenge: Challenge) -> None:
        redis = await get_redis()
        key = _challenge_key(challenge.id)
        value = json.dumps(
            {
                "handle": challenge.handle,
                "contest_id": challenge.contest_id,
                "problem_index": challenge.problem_index,
            }
        )
        await redis.setex(key, settings.verification_challenge_ttl, value)

    async def _load(self, challenge_id: str) -> Challenge | None:
        redis = await get_redis()
        data = await redis.get(_challenge_key(challenge_id))
        if not data:
            return None
        stored = json.loads(data)
        return Challenge(
            id=challenge_id,
            handle=stored["handle"],
            contest_id=int(stored["contest_id"]),
            problem_index=stored["problem_index"],
        )

    async def issue_challenge(self, handle: str) -> Challenge:
        """
        Draw a verification problem for a handle and remember it.

        Args:
            handle: Handle the caller claims to own

        Returns:
            The stored challenge
        """
        challenge = Challenge(
            id=secrets.token_urlsafe(16),
            handle=normalize_username(handle),
            contest_id=self._draw_contest(),
            problem_index=settings.verification_problem_index,
        )
        await self._save(challenge)
        logger.info(f"Issued verification challenge {challenge.id} for {challenge.handle}")
        return challenge

    async def reroll(self, challenge_id: str) -> Challenge:
        """
        Replace the problem of a live challenge with a different contest.

        Raises:
            NotFoundError: If the challenge expired or never existed
        """
        challenge = await self._load(challenge_id)
        if challenge is None:
            raise NotFoundError(CHALLENGE_EXPIRED_TEXT)
        challenge.contest_id = self._draw_contest(exclude=challenge.contest_id)
        await self._save(challenge)
        return challenge

    async def verify(self, challenge_id: str, handle: str) -> bool:
        """
        Scan the handle's recent submissions for the challenge's compilation error.

        The challenge stays valid until ``consume`` is called, so a caller
        whose write fails can retry with the same challenge.

        Args:
            challenge_id: Challenge issued earlier
            handle: Handle being proven

        Returns:
            True if a matching COMPILATION_ERROR submission was found

        Raises:
            ExternalServiceError: If Codeforces could not be reached
        """
        challenge = await self._load(challenge_id)
        if challenge is None:
            verification_attempts_total.labels(result="expired").inc()
            return False

        handle = normalize_username(handle)
        if challenge.handle != handle:
            verification_attempts_total.labels(result="handle_mismatch").inc()
            return False

        submissions = await self.codeforces.user_status(handle, settings.verification_submission_window)
        if submissions is None:
            verification_attempts_total.labels(result="api_failed").inc()
            return False

        found = any(
            (submission.get("problem") or {}).get("contestId") == challenge.contest_id
            and (submission.get("problem") or {}).get("index") == challenge.problem_index
            and submission.get("verdict") == COMPILATION_ERROR
            for submission in submissions
        )
        if not found:
            verification_attempts_total.labels(result="not_found").inc()
            return False

        verification_attempts_total.labels(result="verified").inc()
        logger.info(f"Verified ownership of {handle} via challenge {challenge_id}")
        return True

    async def consume(self, challenge_id: str) -> None:
        """Forget a challenge once the write it authorized has committed."""
        try:
            redis = await get_redis()
            await redis.delete(_challenge_key(challenge_id))
        except RedisError as e:
            logger.warning(f"Failed to consume verification challenge {challenge_id}: {e}")


async def require_ownership(verifier: IdentityVerifier, challenge_id: str | None, handle: str) -> None:
    """
    Raise unless the verifier accepts the challenge for the handle.

    Raises:
        VerificationFailedError: If no challenge was given or it did not verify
    """
    if not challenge_id or not await verifier.verify(challenge_id, handle):
        raise VerificationFailedError(VERIFICATION_FAILED_TEXT)
