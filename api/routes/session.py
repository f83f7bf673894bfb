"""
api/routes/session.py -- Session issuance and revocation.

Routes:
  POST /connect/              -- username/password -> new session token
  POST /disconnect/{uuid}/    -- revoke a session

POST /connect/ accepts the credentials either as a JSON object or as a
urlencoded/multipart form, whichever Content-Type says.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import Envelope
from core.errors import ValidationError
from handlers.auth import AuthHandler

router = APIRouter()


async def _read_credentials(request: Request) -> tuple[object, object]:
    """Extract username/password from a JSON or form body.

    Values are returned as-is; AuthHandler.connect() decides what counts as
    missing. Non-string JSON values are treated as missing.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return form.get("username"), form.get("password")

    body = await request.body()
    if not body:
        return None, None
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Malformed request body") from exc
    if not isinstance(data, dict):
        raise ValidationError("Malformed request body")
    return data.get("username"), data.get("password")


def _text(value: object) -> str | None:
    return value if isinstance(value, str) else None


@router.post("/connect/")
async def connect(request: Request) -> JSONResponse:
    """Authenticate and open a session. Returns the session token as `uuid`."""
    handler: AuthHandler = request.app.state.auth_handler
    username, password = await _read_credentials(request)
    token = await handler.connect(_text(username), _text(password))
    return JSONResponse(Envelope.ok(uuid=str(token)).to_content())


@router.post("/disconnect/{uuid}/")
async def disconnect(request: Request, uuid: str) -> JSONResponse:
    """Revoke the session. A second call with the same token fails."""
    handler: AuthHandler = request.app.state.auth_handler
    handler.disconnect(uuid)
    return JSONResponse(Envelope.ok().to_content())
