"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and role gates.

The access token is taken from, in priority order:
  1. the "access_token" httpOnly cookie -- set by POST /auth/login;
  2. an "Authorization: Bearer <token>" header -- API clients and the
     session observer's profile fetches.
Only the identity provider can tell whether a token is live; every request
builds its own provider client bound to that token.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 when there is no session, or when the
session's identity has no profile (orphaned identity reads as logged out).
get_current_session() only needs a live session -- orphans pass.
require_role(Role.X) gates on the role hierarchy; require_admin() on the
exact ADMIN role.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.actions import AuthActions
from auth.errors import InvalidRoleError
from auth.models import Profile, Session
from auth.provider import IdentityProvider
from auth.roles import Role, is_admin_exact, is_authorized
from core.config import get_settings

logger = logging.getLogger("quillpress.auth.dependencies")

SESSION_COOKIE = "access_token"


def get_access_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None


def get_identity_client(request: Request) -> IdentityProvider:
    return request.app.state.identity.client(get_access_token(request))


def get_auth_actions(request: Request) -> AuthActions:
    """Build the per-request coordinator from app.state collaborators."""
    return AuthActions(
        provider=get_identity_client(request),
        profiles=request.app.state.profile_store,
        views=request.app.state.view_cache,
        settings=get_settings(),
    )


def try_get_current_user(request: Request) -> Profile | None:
    """Return the current user's profile, or None. Never raises."""
    return get_auth_actions(request).current_user()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
    )


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "forbidden", "message": message})


def get_current_user(request: Request) -> Profile:
    """Require a session with a profile. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: Profile = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise _unauthorized()
    return user


def get_current_session(request: Request) -> Session:
    """Require a live provider session. The profile may be missing."""
    session = get_identity_client(request).get_session()
    if session is None:
        raise _unauthorized()
    return session


def require_role(required: Role) -> Callable[[Request], Profile]:
    """Return a dependency admitting users at or above `required` in the hierarchy.

    An unknown role on either side is a configuration error: logged at ERROR
    and answered with 403.
    """

    def dependency(request: Request) -> Profile:
        user = get_current_user(request)
        try:
            allowed = is_authorized(user.role, required)
        except InvalidRoleError:
            logger.error("Role check failed for %s: unknown role in %r / %r", user.id, user.role, required)
            raise _forbidden("Access denied.") from None
        if not allowed:
            raise _forbidden(f"{Role(required).value.title()} access required.")
        return user

    return dependency


def require_admin(request: Request) -> Profile:
    """Require the exact ADMIN role. Raises HTTP 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if not is_admin_exact(user.role):
        raise _forbidden("Admin access required.")
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session: Session) -> None:
    """Write the provider access token as an httpOnly cookie.

    max_age follows the session expiry so cookie and token expire together.
    """
    settings = get_settings()
    max_age = session.expires_at - int(time.time()) if session.expires_at else settings.token_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=session.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=max(max_age, 0),
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
