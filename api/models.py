"""
API request and response models for the Quillpress auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field limits here are transport hygiene only. Password strength and email
ownership are the identity provider's call.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import ActionResult, Profile
from auth.roles import Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class PasswordResetVerify(BaseModel):
    token: str = Field(min_length=1, max_length=512)


class PasswordResetComplete(BaseModel):
    password: str = Field(min_length=1, max_length=255)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/me. Omitted fields are left alone."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """The public projection of a profile. Never carries credential data."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str]
    role: Role
    created_at: str
    updated_at: str

    @classmethod
    def from_profile(cls, profile: Profile) -> "UserResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            name=profile.name,
            role=profile.role,
            created_at=profile.created_at or "",
            updated_at=profile.updated_at or "",
        )


class ActionResponse(BaseModel):
    """Success body for auth actions: {success} or {success, message}, plus redirect."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    redirect_to: Optional[str] = None

    @classmethod
    def from_result(cls, result: ActionResult) -> "ActionResponse":
        return cls(success=result.success, message=result.message, redirect_to=result.redirect_to)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
