"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_record are the mappers.
Handler and route code never touches SQL directly.

The methods are plain blocking calls. The request handlers run them in a
worker thread (asyncio.to_thread) so the event loop never waits on the
database; the admin CLI calls them directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Password hashes only leave this module inside a UserRecord returned by
  get_record_by_username(). Every other query maps rows to plain Users.

Directory queries:
  list_users() is the single query builder for the directory listing. It
  turns a DirectoryFilter into one SELECT: role condition, then the grade
  condition. A grade with a letter ("11A") is an exact match; a bare grade
  number ("11") matches "11" and every "11<letter>" class but not "110".

DB path: auth/rtest_users.db by default (see core.config).

Layer rule: no imports from api/ or handlers/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, and_, create_engine, event, not_, or_, text
from sqlalchemy.engine import Engine

from auth.models import DirectoryFilter, User, UserRecord

logger = logging.getLogger("rtest.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID text
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("student", Boolean, nullable=False, server_default="1"),
    Column("grade", String(8)),  # NULL for teachers
    Column("created_at", String(32), nullable=False),
)

# Only these columns may be changed through update_profile(). id, student and
# grade are never client-settable.
_PROFILE_FIELDS = frozenset({"username", "first_name", "last_name"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _directory_clause(criteria: DirectoryFilter):
    """Build the WHERE clause for a directory query. None means no condition."""
    conditions = []
    students = criteria.students
    if criteria.grade is not None:
        # Teachers have no grade, so a grade always narrows to students.
        students = True
    if students is not None:
        conditions.append(_users.c.student == students)

    grade = criteria.grade
    if grade is not None:
        if criteria.grade_is_number:
            # "11" -> "11", "11A", "11B"... but not "110" or "1" -> "10A".
            conditions.append(
                or_(
                    _users.c.grade == grade,
                    and_(
                        _users.c.grade.like(f"{grade}_"),
                        not_(or_(*(_users.c.grade == f"{grade}{digit}" for digit in "0123456789"))),
                    ),
                )
            )
        else:
            conditions.append(_users.c.grade == grade)

    if not conditions:
        return None
    return and_(*conditions)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for user accounts.

    Usage:
        store = UserStore(get_settings().database_url)
        store.create_user("alice", hash_password("secret"), first_name="Alice", grade="11A")
        record = store.get_record_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        hashed_password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        student: bool = True,
        grade: str | None = None,
    ) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        grade is stored upper-case and dropped for teachers.
        """
        user_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=username,
                    hashed_password=hashed_password,
                    first_name=first_name,
                    last_name=last_name,
                    student=student,
                    grade=grade.upper() if student and grade else None,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        logger.info("User %s created (student=%s)", username, student)
        return user_id

    def update_profile(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields on an existing user.

        Accepted fields: username, first_name, last_name. Unknown fields raise
        ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        Raises sqlalchemy.exc.IntegrityError if the new username is taken.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Sessions bound to the user are not touched here: the handlers notice
        the missing row on the next request and revoke the session then.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record_by_username(self, username: str) -> UserRecord | None:
        """Look up a user and its password hash by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        record = self.get_record_by_username(username)
        return record.user if record is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, criteria: DirectoryFilter | None = None) -> list[User]:
        """Return the users matching criteria, ordered by last name, first name, username."""
        query = _users.select().order_by(_users.c.last_name, _users.c.first_name, _users.c.username)
        clause = _directory_clause(criteria or DirectoryFilter())
        if clause is not None:
            query = query.where(clause)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        student=bool(row.student),
        grade=row.grade,
    )


def _row_to_record(row) -> UserRecord:
    return UserRecord(user=_row_to_user(row), hashed_password=row.hashed_password)
