"""
auth/models.py -- Domain dataclasses for users, sessions and directory queries.

Pattern: Data class (pure data container, almost no logic). The session
store, the user store and the handlers do the work.

Identity: two User snapshots denote the same person when their usernames
match, even if the other fields differ (a stale cached snapshot vs a freshly
fetched row). That rule is modelled as an explicit key -- User.key returns a
Username -- instead of overriding __eq__, so dataclass equality stays
structural and unsurprising.

Layer rule: no imports from api/ or handlers/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NewType, Optional

Username = NewType("Username", str)


@dataclass(frozen=True)
class User:
    """Public identity snapshot of a student or teacher.

    id is a UUID in canonical text form, assigned by the user store and never
    changed. student and grade are read-only through the HTTP surface; grade
    is None for teachers.
    """

    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    student: bool = True
    grade: Optional[str] = None  # class designator, e.g. "11A"

    @property
    def key(self) -> Username:
        return Username(self.username)


@dataclass(frozen=True)
class UserRecord:
    """A user row together with its bcrypt hash.

    Only the credential check in handlers/auth.py receives this type. Every
    other path gets a plain User, so hashes never leave the login flow.
    """

    user: User
    hashed_password: str


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Session:
    """An active authentication binding wrapping exactly one User snapshot.

    created_at is informational only. Sessions never expire.
    """

    user: User
    created_at: str = field(default_factory=_now_iso)

    @property
    def key(self) -> Username:
        return self.user.key


@dataclass(frozen=True)
class DirectoryFilter:
    """Criteria for the user directory listing.

    students: True = students only, False = teachers only, None = everyone.
    grade:    class designator. "11A" matches that class exactly; a bare
              grade number such as "11" matches every class of that grade.
              Only meaningful for students.
    """

    students: Optional[bool] = None
    grade: Optional[str] = None

    @property
    def grade_is_number(self) -> bool:
        return self.grade is not None and self.grade.isdigit()
