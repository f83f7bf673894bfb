"""
handlers/auth.py -- Credential verification and session issuance/revocation.

connect() reports an unknown username and a wrong password with different
reasons, so no timing equalization is attempted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from auth.passwords import verify_password
from auth.sessions import SessionStore, SessionToken, parse_token
from auth.store import UserStore
from core.errors import INVALID_SESSION, NotFoundError, UnauthorizedError, ValidationError
from handlers.common import repository_call

logger = logging.getLogger("rtest.handlers")


class AuthHandler:
    def __init__(self, sessions: SessionStore, users: UserStore) -> None:
        self.sessions = sessions
        self.users = users

    async def connect(self, username: Optional[str], password: Optional[str]) -> SessionToken:
        """Verify username/password and return the token of a new session."""
        if not username or not password:
            raise ValidationError("Missing `username` or `password`")

        record = await repository_call(self.users.get_record_by_username, username)
        if record is None:
            raise NotFoundError("No such user found")

        # bcrypt verification also runs off the event loop.
        if not await asyncio.to_thread(verify_password, password, record.hashed_password):
            logger.info("Rejected password for %s", username)
            raise UnauthorizedError("Incorrect password")

        token = self.sessions.create_session(record.user)
        logger.info("User %s connected", username)
        return token

    def disconnect(self, raw_token: Optional[str]) -> None:
        """Revoke a session. Revoking an unknown or already revoked token fails."""
        token = parse_token(raw_token)
        try:
            session = self.sessions.revoke(token)
        except NotFoundError as exc:
            raise NotFoundError(INVALID_SESSION) from exc
        logger.info("User %s disconnected", session.user.username)
