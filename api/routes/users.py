"""
api/routes/users.py -- User directory (teachers only).

Routes:
  GET /users/{uuid}/?onlyStudents&onlyTeachers&grade=11A

Query flags are passed through as raw strings so that bare presence
(`?onlyStudents`) works; handlers.common.parse_flag() interprets them.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from api.models import Envelope, UserOut
from handlers.directory import DirectoryHandler

router = APIRouter()


@router.get("/users/{uuid}/")
async def list_users(
    request: Request,
    uuid: str,
    only_students: Optional[str] = Query(default=None, alias="onlyStudents"),
    only_teachers: Optional[str] = Query(default=None, alias="onlyTeachers"),
    grade: Optional[str] = Query(default=None, max_length=8),
) -> JSONResponse:
    handler: DirectoryHandler = request.app.state.directory_handler
    users = await handler.list_users(uuid, only_students, only_teachers, grade)
    return JSONResponse(Envelope.ok(users=[UserOut.from_user(u) for u in users]).to_content())
