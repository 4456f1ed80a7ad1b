"""Moderation error taxonomy.

Every error carries a user-facing text and renders as the tagged
``{"type": "error", "text": ...}`` message the clients display.
"""

from fastapi import status


class ModerationError(Exception):
    """Base class for errors surfaced to the caller of a moderation operation."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    message_type: str = "error"

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.text = text

    def to_message(self) -> dict[str, str]:
        return {"type": self.message_type, "text": self.text}


class InvalidRequestError(ModerationError):
    """User-correctable validation failure (empty fields, unknown handle, ...)."""


class VerificationFailedError(ModerationError):
    """The ownership challenge found no matching compilation-error submission."""


class AuthenticationRequiredError(ModerationError):
    """An anonymous caller invoked a moderator-only operation."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(ModerationError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ModerationError):
    """The record is no longer in a state the operation applies to."""

    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(ModerationError):
    """Codeforces API failure or network error."""

    status_code = status.HTTP_502_BAD_GATEWAY
