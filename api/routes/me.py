"""
api/routes/me.py -- The caller's own profile.

Routes:
  GET  /me/{uuid}/   -- current profile, read fresh from the user store
  POST /me/{uuid}/   -- partial update {username?, firstName?, lastName?}
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import Envelope, UserOut
from handlers.profile import ProfileHandler

router = APIRouter()


@router.get("/me/{uuid}/")
async def get_me(request: Request, uuid: str) -> JSONResponse:
    handler: ProfileHandler = request.app.state.profile_handler
    user = await handler.get_me(uuid)
    return JSONResponse(Envelope.ok(user=UserOut.from_user(user)).to_content())


@router.post("/me/{uuid}/")
async def post_me(request: Request, uuid: str) -> JSONResponse:
    """Update the caller's profile. id and student are never changed here.

    The raw body goes to the handler untouched: it is only parsed after the
    session has been validated, so a bad token always wins over a bad body.
    """
    handler: ProfileHandler = request.app.state.profile_handler
    await handler.post_me(uuid, await request.body())
    return JSONResponse(Envelope.ok().to_content())
