"""
api/routes/v1/users.py -- Profile endpoints.

Routes:
  POST  /api/v1/users              -- create a profile {id, email, name} (self only)
  GET   /api/v1/users              -- list profiles (EDITOR or above)
  GET   /api/v1/users/{id}         -- read one profile (any live session)
  PATCH /api/v1/users/{id}/role    -- change a profile's role (ADMIN only)

POST /users is the profile-creation endpoint: it answers 201 with the row,
or 500 {"error": "Failed to create user"} on any storage failure. The caller
must hold a session for the same subject id, and the email must be the
session's own (compared case-insensitively). That makes it the path by which
an orphaned identity gets its profile; the row stores the session's email.

GET /users/{id} is the read endpoint the session observer polls after each
session change. It only needs a live session, so an orphan can see its own
404.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import RoleUpdate, UserCreate, UserResponse
from auth.actions import AuthActions
from auth.dependencies import get_auth_actions, get_current_session, require_admin, require_role
from auth.models import Profile, Session
from auth.roles import DEFAULT_ROLE, Role
from auth.store import ProfileStore

logger = logging.getLogger("quillpress.api.users")

# Auth policy:
# - POST  /users:            live session whose subject == body.id and email == body.email
# - GET   /users:            EDITOR or above (require_role)
# - GET   /users/{id}:       live session (get_current_session)
# - PATCH /users/{id}/role:  exact ADMIN (require_admin)
router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    session: Session = Depends(get_current_session),
) -> JSONResponse:
    """Create the caller's own profile with role AUTHOR."""
    if session.subject_id != body.id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only create your own profile."},
        )
    if body.email.lower() != session.email.strip().lower():
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Profile email must match your account email."},
        )
    profile_store: ProfileStore = request.app.state.profile_store
    try:
        profile = profile_store.create(id=body.id, email=session.email, name=body.name, role=DEFAULT_ROLE)
    except Exception:
        logger.exception("Error creating user %s", body.id)
        return JSONResponse(status_code=500, content={"error": "Failed to create user"})
    return JSONResponse(status_code=201, content=UserResponse.from_profile(profile).model_dump(mode="json"))


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: Profile = Depends(require_role(Role.EDITOR)),
) -> list[UserResponse]:
    """List every profile. Editors and admins only."""
    profile_store: ProfileStore = request.app.state.profile_store
    return [UserResponse.from_profile(p) for p in profile_store.list_profiles()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    session: Session = Depends(get_current_session),
    actions: AuthActions = Depends(get_auth_actions),
) -> UserResponse:
    """Return one profile by subject id. Storage errors read as 404."""
    profile = actions.user_by_id(user_id)
    if profile is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return UserResponse.from_profile(profile)


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    user_id: str,
    body: RoleUpdate,
    current_user: Profile = Depends(require_admin),
    actions: AuthActions = Depends(get_auth_actions),
) -> UserResponse:
    """Set a profile's role. Admin only.

    An admin cannot demote themselves -- the last path to ADMIN would be the
    CLI.
    """
    if actions.user_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    if user_id == current_user.id and body.role is not Role.ADMIN:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_demotion", "message": "You cannot remove your own admin role."},
        )
    result = actions.change_role(user_id, body.role)
    if not result.success or result.user is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "update_failed", "message": result.error},
        )
    return UserResponse.from_profile(result.user)
