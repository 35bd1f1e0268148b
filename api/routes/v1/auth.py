"""
api/routes/v1/auth.py -- Authentication and own-profile REST endpoints.

Routes:
  POST  /api/v1/auth/register                 -- sign up + create AUTHOR profile
  POST  /api/v1/auth/login                    -- password login; sets session cookie
  POST  /api/v1/auth/logout                   -- end session; clears cookie
  POST  /api/v1/auth/password-reset           -- request a reset link (generic answer)
  POST  /api/v1/auth/password-reset/verify    -- exchange link token for a recovery session
  POST  /api/v1/auth/password-reset/complete  -- set the new password
  GET   /api/v1/auth/me                       -- current user's profile (requires auth)
  PATCH /api/v1/auth/me                       -- partial profile update (requires auth)

Every handler builds one AuthActions for the request and maps its
ActionResult onto HTTP: success -> ActionResponse, error -> the ErrorResponse
envelope. Provider messages pass through verbatim.

Security:
  POST /login and POST /password-reset are rate-limited per client address.
  Cache-Control: no-store on every response that sets or clears the cookie.
  POST /password-reset answers identically for known and unknown emails.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ActionResponse,
    LoginRequest,
    PasswordResetComplete,
    PasswordResetRequest,
    PasswordResetVerify,
    ProfilePatch,
    RegisterRequest,
    UserResponse,
)
from auth.actions import PROFILE_VIEW, AuthActions
from auth.dependencies import (
    clear_session_cookie,
    get_auth_actions,
    get_current_user,
    get_identity_client,
    set_session_cookie,
)
from auth.models import ActionResult, Profile
from cache.store import ViewCache
from core.config import get_settings

# Auth policy:
# - POST  /auth/register, /auth/login, /auth/logout, /auth/password-reset*: public
# - GET   /auth/me:   requires auth (get_current_user)
# - PATCH /auth/me:   requires auth (get_current_user); users edit only themselves
router = APIRouter()

_settings = get_settings()


def _error(status_code: int, code: str, result: ActionResult) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": result.error}},
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _success(result: ActionResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=ActionResponse.from_result(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=ActionResponse, status_code=201)
def register(body: RegisterRequest, actions: AuthActions = Depends(get_auth_actions)) -> JSONResponse:
    """Create the identity, then its profile with role AUTHOR.

    A failure after the identity exists is reported as an error; the
    identity stays orphaned until its owner self-provisions via POST /users.
    """
    result = actions.register(body.email, body.password, body.name)
    if not result.success:
        return _error(400, "registration_failed", result)
    return _success(result, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=ActionResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    The provider's error message is returned verbatim. The profile is not
    checked here -- GET /auth/me is where an orphaned identity shows up.
    """
    result = get_auth_actions(request).login(body.email, body.password)
    if not result.success:
        return _error(401, "bad_credentials", result)
    resp = _success(result)
    set_session_cookie(resp, result.session)
    return resp


@router.post("/auth/logout", response_model=ActionResponse)
def logout(actions: AuthActions = Depends(get_auth_actions)) -> JSONResponse:
    """End the provider session and clear the cookie."""
    result = actions.logout()
    if not result.success:
        return _error(400, "logout_failed", result)
    resp = _success(result)
    clear_session_cookie(resp)
    return resp


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/password-reset", response_model=ActionResponse)
def request_password_reset(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Send a reset link if the address is registered. Always the same answer."""
    result = get_auth_actions(request).request_password_reset(body.email)
    return _success(result)


@router.post("/auth/password-reset/verify", response_model=ActionResponse)
def verify_password_reset(body: PasswordResetVerify, actions: AuthActions = Depends(get_auth_actions)) -> JSONResponse:
    """Trade the one-time token from the reset link for a recovery session cookie."""
    result = actions.verify_password_reset(body.token)
    if not result.success:
        return _error(400, "invalid_link", result)
    resp = _success(result)
    set_session_cookie(resp, result.session)
    return resp


@router.post("/auth/password-reset/complete", response_model=ActionResponse)
def complete_password_reset(
    body: PasswordResetComplete, actions: AuthActions = Depends(get_auth_actions)
) -> JSONResponse:
    """Set a new password. Needs the recovery (or any live) session."""
    result = actions.complete_password_reset(body.password)
    if not result.success:
        return _error(400, "password_update_failed", result)
    return _success(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request) -> UserResponse:
    """Return the current user's profile.

    The session is verified with the provider on every call; only the profile
    view is served from the page-state cache. No session, or a session whose
    identity has no profile, is a 401.
    """
    views: ViewCache = request.app.state.view_cache
    session = get_identity_client(request).get_session()
    if session is not None:
        cached = views.get(PROFILE_VIEW, session.subject_id)
        if cached is not None:
            return UserResponse(**cached)

    user = get_current_user(request)
    response = UserResponse.from_profile(user)
    views.set(PROFILE_VIEW, user.id, response.model_dump(mode="json"))
    return response


@router.patch("/auth/me", response_model=UserResponse)
def update_me(
    body: ProfilePatch,
    current_user: Profile = Depends(get_current_user),
    actions: AuthActions = Depends(get_auth_actions),
) -> UserResponse:
    """Update name and/or email of the current user. Omitted fields are kept."""
    result = actions.update_profile(current_user.id, name=body.name, email=body.email)
    if not result.success or result.user is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "update_failed", "message": result.error},
        )
    return UserResponse.from_profile(result.user)
