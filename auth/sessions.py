"""
auth/sessions.py -- In-memory session table: token -> Session.

The store is intentionally dumb. It knows nothing about passwords, roles or
the database; it caches the last known good profile of a user together with
the fact "this token was issued to this user". That isolates the one hot,
concurrently mutated piece of state from the I/O-heavy handlers.

Concurrency:
  Handlers mutate the table from independent requests (connect inserts,
  disconnect and self-heal remove, post_me replaces). Every mutation is a
  single check-then-act performed under one threading.Lock, so "fail if
  already bound" can never interleave with another create for the same
  token, and an update can never resurrect a token revoked a moment earlier.
  A lock rather than relying on the event loop: repository work runs in
  worker threads and the CLI/tests may call the store from any thread.

Tokens:
  uuid4 values (122 random bits). create_session() still checks for a
  collision and draws again, which costs one dict lookup.

Lifecycle: one SessionStore is built in the FastAPI lifespan, placed on
app.state and injected into the handlers; clear() runs at shutdown.

Layer rule: no imports from api/ or handlers/.
"""

from __future__ import annotations

import logging
import threading
import uuid

from auth.models import Session, User
from core.errors import INVALID_SESSION, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("rtest.sessions")

SessionToken = uuid.UUID


def parse_token(raw: object) -> SessionToken:
    """Parse the canonical text form of a session token.

    Anything that is not a UUID string -- None, braces, URNs, hex without
    dashes -- raises ValidationError with the same "Invalid session" reason
    an unknown token gets, so clients cannot tell the two apart.
    """
    if not isinstance(raw, str):
        raise ValidationError(INVALID_SESSION)
    try:
        token = uuid.UUID(raw)
    except ValueError as exc:
        raise ValidationError(INVALID_SESSION) from exc
    if str(token) != raw.lower():
        raise ValidationError(INVALID_SESSION)
    return token


class SessionStore:
    """Thread-safe registry of active sessions.

    Usage:
        sessions = SessionStore()
        token = sessions.create_session(user)
        session = sessions.find(token)
        sessions.revoke(token)
    """

    def __init__(self) -> None:
        self._sessions: dict[SessionToken, Session] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_with_token(self, token: SessionToken, user: User) -> Session:
        """Bind a caller-chosen token. Raises ConflictError if it is already bound."""
        session = Session(user=user)
        with self._lock:
            if self._sessions.setdefault(token, session) is not session:
                raise ConflictError(f"Session with ID '{token}' already exists")
        return session

    def create_session(self, user: User) -> SessionToken:
        """Bind a fresh random token to a new session for user and return the token."""
        session = Session(user=user)
        with self._lock:
            token = uuid.uuid4()
            while token in self._sessions:
                token = uuid.uuid4()
            self._sessions[token] = session
        logger.debug("Session created for %s", user.username)
        return token

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, token: SessionToken) -> Session | None:
        return self._sessions.get(token)

    def find_all_for_user(self, user: User) -> set[SessionToken]:
        """Return every token whose session belongs to user (matched by username)."""
        key = user.key
        with self._lock:
            return {token for token, session in self._sessions.items() if session.key == key}

    def exists(self, token: SessionToken) -> bool:
        return token in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update(self, token: SessionToken, user: User, expected: User | None = None) -> Session:
        """Replace the user snapshot of a bound session.

        Raises NotFoundError if the token is not bound -- an update never
        creates a session. When expected is given the replace only happens
        while the bound snapshot is still that exact object (compare-and-swap);
        otherwise ConflictError is raised and the table is left untouched.
        """
        with self._lock:
            current = self._sessions.get(token)
            if current is None:
                raise NotFoundError(f"Session with ID '{token}' doesn't exist")
            if expected is not None and current.user is not expected:
                raise ConflictError(f"Session with ID '{token}' was modified concurrently")
            session = Session(user=user, created_at=current.created_at)
            self._sessions[token] = session
        return session

    def revoke(self, token: SessionToken) -> Session:
        """Remove a binding and return the removed session.

        Raises NotFoundError if the token is not bound, so revoking twice
        fails the second time.
        """
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is None:
            raise NotFoundError(f"Session with ID '{token}' doesn't exist")
        logger.debug("Session revoked for %s", session.user.username)
        return session

    def clear(self) -> int:
        """Drop every session. Returns how many were dropped."""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        return count
