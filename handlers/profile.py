"""
handlers/profile.py -- Self-read and self-update of the caller's profile.

post_me() ordering:
  1. resolve the session and load the fresh row (orphan check)
  2. parse the partial update
  3. merge it over the row
  4. swap the session snapshot            <- a concurrent disconnect is
                                             detected here, before any write
  5. persist to the user store
  6. on a failed write, put the previous snapshot back (compare-and-swap, so
     a newer snapshot written by another request is never clobbered)

Once step 5 has started it is not compensated on the database side.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.sessions import SessionStore, SessionToken
from auth.store import UserStore
from core.errors import ConflictError, InternalError, NotFoundError, ValidationError
from handlers.common import load_current_user, repository_call, resolve_session, revoke_orphan

logger = logging.getLogger("rtest.handlers")

SESSION_REVOKED = "Session was revoked while this request was processed"


class ProfilePatch(BaseModel):
    """Partial profile sent to POST /me/{uuid}/.

    Unknown keys -- including id and student -- are ignored. None and empty
    strings mean "leave this field as it is".
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=255)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=255)

    def changes(self) -> dict[str, str]:
        return {name: value for name, value in self.model_dump().items() if value}


def _parse_patch(body: bytes) -> ProfilePatch:
    try:
        return ProfilePatch.model_validate_json(body or b"{}")
    except PydanticValidationError as exc:
        raise ValidationError("Malformed request body") from exc


class ProfileHandler:
    def __init__(self, sessions: SessionStore, users: UserStore) -> None:
        self.sessions = sessions
        self.users = users

    async def get_me(self, raw_token: Optional[str]) -> User:
        """Return the caller's current profile, read from the user store."""
        token, session = resolve_session(self.sessions, raw_token)
        return await load_current_user(self.sessions, self.users, token, session)

    async def post_me(self, raw_token: Optional[str], body: bytes) -> None:
        """Apply a partial profile update to the caller's account."""
        token, session = resolve_session(self.sessions, raw_token)
        current = await load_current_user(self.sessions, self.users, token, session)

        changes = _parse_patch(body).changes()
        merged = User(
            id=current.id,
            username=changes.get("username", current.username),
            first_name=changes.get("first_name", current.first_name),
            last_name=changes.get("last_name", current.last_name),
            student=current.student,
            grade=current.grade,
        )

        try:
            self.sessions.update(token, merged)
        except NotFoundError as exc:
            raise NotFoundError(SESSION_REVOKED) from exc

        try:
            updated = await repository_call(self.users.update_profile, current.id, **changes)
        except IntegrityError as exc:
            self._restore(token, merged, session.user)
            raise ConflictError("Username is already taken") from exc
        except InternalError:
            self._restore(token, merged, session.user)
            raise

        if not updated:
            raise revoke_orphan(self.sessions, token, session)
        logger.info("User %s updated fields %s", merged.username, sorted(changes))

    def _restore(self, token: SessionToken, merged: User, previous: User) -> None:
        """Put the pre-update snapshot back unless the session moved on meanwhile."""
        try:
            self.sessions.update(token, previous, expected=merged)
        except (NotFoundError, ConflictError):
            logger.debug("Session snapshot for %s changed concurrently, not restored", previous.username)
