"""Authentication and authorization utilities for API."""

import hmac
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from core.config import settings
from core.errors import AuthenticationRequiredError

# HTTPBasic security for moderator endpoints; anonymous callers are let through
# and rejected by the operation itself.
_security = HTTPBasic(auto_error=False)

ROLE_ANONYMOUS = "anonymous"
ROLE_MODERATOR = "moderator"


@dataclass(frozen=True)
class Principal:
    """The caller of a moderation operation."""

    name: str
    role: str = ROLE_ANONYMOUS

    @property
    def is_moderator(self) -> bool:
        return self.role == ROLE_MODERATOR

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(name="", role=ROLE_ANONYMOUS)

    @classmethod
    def moderator(cls, name: str) -> "Principal":
        return cls(name=name, role=ROLE_MODERATOR)


def require_moderator(principal: Principal) -> None:
    """
    Reject anonymous callers at the operation boundary.

    Raises:
        AuthenticationRequiredError: If the principal is not a moderator
    """
    if not principal.is_moderator:
        raise AuthenticationRequiredError("Moderator authentication required.")


def _credentials_match(credentials: HTTPBasicCredentials) -> bool:
    user_ok = hmac.compare_digest(credentials.username.encode(), settings.admin_user.encode())
    pass_ok = hmac.compare_digest(credentials.password.encode(), settings.admin_pass.encode())
    return user_ok and pass_ok


async def get_principal(credentials: HTTPBasicCredentials | None = Depends(_security)) -> Principal:
    """
    Resolve the caller from HTTP Basic Auth credentials.

    Args:
        credentials: HTTP Basic credentials from request, if any

    Returns:
        Moderator principal for valid credentials, anonymous principal when none were sent

    Raises:
        HTTPException: If credentials were sent but are invalid
    """
    if credentials is None:
        return Principal.anonymous()
    if not _credentials_match(credentials):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return Principal.moderator(str(credentials.username))
