"""
handlers/directory.py -- Role-gated listing of students and teachers.

The caller's role is read from the user store on every request, never from
the cached session snapshot, so a stale snapshot cannot grant access.
"""

from __future__ import annotations

import re
from typing import Optional

from auth.models import DirectoryFilter, User
from auth.sessions import SessionStore
from auth.store import UserStore
from core.errors import ForbiddenError, ValidationError
from handlers.common import load_current_user, parse_flag, repository_call, resolve_session

# 1-2 digit grade number with an optional single class letter: "9", "11", "11A", "7Б".
_GRADE_RE = re.compile(r"^[0-9]{1,2}[^\W\d_]?$")


def normalize_grade(grade: str) -> str:
    """Return grade stripped and upper-cased, the form it is stored and queried in.

    Raises ValidationError("Malformed `grade`") for anything that is not a
    class designator.
    """
    grade = grade.strip()
    if not _GRADE_RE.match(grade):
        raise ValidationError("Malformed `grade`")
    return grade.upper()


def build_filter(
    only_students: Optional[str], only_teachers: Optional[str], grade: Optional[str]
) -> DirectoryFilter:
    """Turn raw query parameters into a DirectoryFilter.

    Raises ValidationError for conflicting or malformed parameters.
    """
    students = parse_flag("onlyStudents", only_students)
    teachers = parse_flag("onlyTeachers", only_teachers)
    if students and teachers:
        raise ValidationError("`onlyStudents` and `onlyTeachers` are mutually exclusive")

    if grade is not None:
        grade = normalize_grade(grade)
        if teachers:
            raise ValidationError("`grade` can only be used to filter students")

    if students or grade is not None:
        return DirectoryFilter(students=True, grade=grade)
    if teachers:
        return DirectoryFilter(students=False)
    return DirectoryFilter()


class DirectoryHandler:
    def __init__(self, sessions: SessionStore, users: UserStore) -> None:
        self.sessions = sessions
        self.users = users

    async def list_users(
        self,
        raw_token: Optional[str],
        only_students: Optional[str] = None,
        only_teachers: Optional[str] = None,
        grade: Optional[str] = None,
    ) -> list[User]:
        token, session = resolve_session(self.sessions, raw_token)
        caller = await load_current_user(self.sessions, self.users, token, session)
        if caller.student:
            raise ForbiddenError("Students are not allowed to use this method")

        criteria = build_filter(only_students, only_teachers, grade)
        return await repository_call(self.users.list_users, criteria)
