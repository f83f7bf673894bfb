"""
API response models for the rtest HTTP surface.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Every endpoint answers with the same envelope:
    {"success": bool, "reason"?: str, "uuid"?: str, "user"?: User, "users"?: [User]}
Keys that were not set are left out of the JSON (see Envelope.to_content).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User


class UserOut(BaseModel):
    """Public shape of a user. No password or hash field exists here."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    username: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    student: bool
    grade: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        """Factory Method: the domain-to-transport mapping lives with the output model."""
        return cls(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            student=user.student,
            grade=user.grade,
        )


class Envelope(BaseModel):
    """Uniform result envelope returned by every endpoint."""

    success: bool
    reason: Optional[str] = None
    uuid: Optional[str] = None
    user: Optional[UserOut] = None
    users: Optional[list[UserOut]] = None

    def to_content(self) -> dict:
        """Serialize with camelCase user keys, dropping envelope keys never set.

        exclude_unset (not exclude_none) keeps null firstName/lastName inside
        a user object, since UserOut.from_user always sets every field.
        """
        return self.model_dump(by_alias=True, exclude_unset=True)

    @classmethod
    def ok(cls, **fields) -> "Envelope":
        return cls(success=True, **fields)

    @classmethod
    def fail(cls, reason: str) -> "Envelope":
        return cls(success=False, reason=reason)


class HealthResponse(BaseModel):
    """Response for GET /health/. status is "degraded" when the user store does not answer."""

    status: str = "healthy"
    version: str
    database: str = "ok"
    sessions: int
