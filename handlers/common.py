"""
handlers/common.py -- Validation and session helpers shared by all handlers.

  repository_call()   run a blocking UserStore method in a worker thread,
                      logging and masking database failures as InternalError.
  resolve_session()   raw path token -> (token, Session) or "Invalid session".
  load_current_user() fetch the fresh row behind a session; when the row is
                      gone, revoke the session (self-heal) and report it.
  parse_flag()        query-string boolean, including bare presence.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Session, User
from auth.sessions import SessionStore, SessionToken, parse_token
from auth.store import UserStore
from core.errors import INVALID_SESSION, ORPHANED_SESSION, InternalError, NotFoundError, ValidationError

logger = logging.getLogger("rtest.handlers")

T = TypeVar("T")

_TRUE = {"", "1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


async def repository_call(func: Callable[..., T], *args, **kwargs) -> T:
    """Await a blocking repository call without blocking the event loop.

    IntegrityError propagates unchanged so callers can map constraint
    violations to a precise error. Every other database error is logged with
    its cause and replaced by a generic InternalError.
    """
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("User store call %s failed: %s", getattr(func, "__name__", func), exc, exc_info=True)
        raise InternalError() from exc


def resolve_session(sessions: SessionStore, raw_token: Optional[str]) -> tuple[SessionToken, Session]:
    """Parse a path token and look up its session.

    Malformed tokens raise ValidationError, unknown ones NotFoundError; both
    carry the same "Invalid session" reason.
    """
    token = parse_token(raw_token)
    session = sessions.find(token)
    if session is None:
        raise NotFoundError(INVALID_SESSION)
    return token, session


def revoke_orphan(sessions: SessionStore, token: SessionToken, session: Session) -> NotFoundError:
    """Revoke a session whose user row is gone and return the error to raise.

    The revoke is best effort: a concurrent disconnect may already have
    removed the token, and the caller reports the orphan either way.
    """
    logger.warning("User %s (%s) no longer exists, revoking its session", session.user.username, session.user.id)
    try:
        sessions.revoke(token)
    except NotFoundError:
        logger.debug("Orphaned session for %s was already revoked", session.user.username)
    return NotFoundError(ORPHANED_SESSION)


async def load_current_user(
    sessions: SessionStore, users: UserStore, token: SessionToken, session: Session
) -> User:
    """Return the current repository row for the session's user, self-healing orphans."""
    user = await repository_call(users.get_by_id, session.user.id)
    if user is None:
        raise revoke_orphan(sessions, token, session)
    return user


def parse_flag(name: str, raw: Optional[str]) -> bool:
    """Interpret a query-string flag. Absent is False; bare `?name` is True."""
    if raw is None:
        return False
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(f"Malformed `{name}` flag")
