"""
Domain errors raised by the services.
Routers translate each of them into exactly one HTTP status code.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)


class MurmurError(Exception):
    """Base class for all domain errors."""


class PostNotFoundError(MurmurError):
    """Post does not exist or was soft-deleted."""


class PostInvalidError(MurmurError):
    """Post would end up with neither text nor media."""


class PostIsAReplyError(MurmurError):
    """Replies cannot have replies."""


class ForbiddenError(MurmurError):
    """Caller is authenticated but does not own the resource."""


class UserNotFoundError(MurmurError):
    pass


class UsernameTakenError(MurmurError):
    pass


class StorageError(MurmurError):
    """Object storage upload failed."""


def ensure_owner(principal_id: str, owner_id: str) -> None:
    """Single authorization predicate used before every mutation."""
    if principal_id != owner_id:
        raise ForbiddenError()


# ─────────────────────────── HTTP mapping ─────────────────────────────────

_STATUS = {
    PostNotFoundError: (404, "Post not found."),
    UserNotFoundError: (404, "User not found."),
    ForbiddenError: (403, "Forbidden."),
    PostInvalidError: (400, "Post data is not valid."),
    PostIsAReplyError: (400, "Post is a reply and cannot have replies."),
    UsernameTakenError: (409, "Username is already taken."),
}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MurmurError)
    async def murmur_error_handler(request: Request, exc: MurmurError):
        status_code, message = _STATUS.get(type(exc), (500, "Internal server error."))
        if status_code >= 500:
            logger.error("%s %s failed: %r", request.method, request.url.path, exc)
        return PlainTextResponse(message, status_code=status_code)
