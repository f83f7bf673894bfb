"""
core/errors.py -- Request-level error taxonomy.

Every failure a handler can report is one of these classes. Each carries a
human-readable `reason` that is sent to the client verbatim inside the
uniform envelope ({"success": false, "reason": ...}). api/main.py registers a
single exception handler for ServiceError, so handlers just raise.

InternalError deliberately has a fixed reason: the cause is logged
server-side, the client only learns that something went wrong.

Layer rule: core/ is the kernel. No imports from api/, auth/, or handlers/.
"""

from __future__ import annotations

# Reasons shared by more than one handler.
INVALID_SESSION = "Invalid session"
ORPHANED_SESSION = "User bound to this session was removed, this session will be revoked"
INTERNAL_ERROR = "Internal server error"


class ServiceError(Exception):
    """Base class for every error that is converted to a failure envelope."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(ServiceError):
    """Missing or malformed input: absent credentials, bad token, bad body, conflicting filters."""


class NotFoundError(ServiceError):
    """No such user, no such session."""


class UnauthorizedError(ServiceError):
    """Credentials were checked and rejected."""


class ForbiddenError(ServiceError):
    """Authenticated, but the caller's role does not allow the operation."""


class ConflictError(ServiceError):
    """A uniqueness rule would be broken (token already bound, username taken)."""


class InternalError(ServiceError):
    def __init__(self, reason: str = INTERNAL_ERROR) -> None:
        super().__init__(reason)
