"""
auth/gotrue.py -- IdentityProvider adapter for a GoTrue-compatible auth server.

GoTrue is the auth server behind Supabase. Endpoints used (all under
{base_url}/auth/v1):

  POST /signup                          -- sign_up
  POST /token?grant_type=password       -- sign_in_with_password
  POST /token?grant_type=refresh_token  -- refresh_session
  POST /logout                          -- sign_out (Bearer)
  GET  /user                            -- get_session (Bearer)
  PUT  /user                            -- update_user (Bearer)
  POST /recover?redirect_to=...         -- reset_password_for_email
  POST /verify                          -- verify_recovery (type=recovery)

Every request carries the project's apikey header. Error bodies put the
human-readable text in "msg", "error_description" or "message" depending on
the endpoint; whichever is present becomes ProviderError.message. Transport
failures become a generic ProviderError with status 503 and are logged.

The requests.Session lives on GoTrueBackend so connection pooling spans
requests; each GoTrueClient only carries its own access/refresh tokens.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from auth.errors import ProviderError
from auth.models import IdentityUser, Session, SessionEventType
from auth.provider import SessionEventEmitter

logger = logging.getLogger("quillpress.auth.gotrue")

_TIMEOUT = 10
_GENERIC_ERROR = "Authentication service unavailable. Please try again."


class GoTrueBackend:
    """Connection settings and the pooled HTTP session for one GoTrue project."""

    def __init__(self, base_url: str, api_key: str, http: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.api_key = api_key
        self.http = http or requests.Session()
        self.http.max_redirects = 3

    def client(self, access_token: str | None = None) -> GoTrueClient:
        return GoTrueClient(self, access_token)

    def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body ({} when empty).

        Raises ProviderError on a non-2xx answer or a transport failure.
        """
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = self.http.request(
                method, f"{self.base_url}{path}", headers=headers, params=params, json=json, timeout=_TIMEOUT
            )
        except requests.RequestException as e:
            logger.warning("GoTrue %s %s failed: %s", method, path, e)
            raise ProviderError(_GENERIC_ERROR, status=503) from e

        body: dict[str, Any] = {}
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = {}
        if resp.status_code >= 400:
            message = body.get("msg") or body.get("error_description") or body.get("message") or _GENERIC_ERROR
            raise ProviderError(str(message), status=resp.status_code)
        return body

    def close(self) -> None:
        self.http.close()


def _identity_from_user(user: dict[str, Any]) -> IdentityUser:
    return IdentityUser(
        subject_id=user["id"],
        email=user.get("email", ""),
        email_verified=bool(user.get("email_confirmed_at")),
    )


def _session_from_token_response(body: dict[str, Any]) -> Session:
    user = body.get("user") or {}
    expires_at = body.get("expires_at") or int(time.time()) + int(body.get("expires_in", 0))
    return Session(
        access_token=body["access_token"],
        refresh_token=body.get("refresh_token"),
        subject_id=user["id"],
        email=user.get("email", ""),
        expires_at=int(expires_at),
    )


class GoTrueClient(SessionEventEmitter):
    """IdentityProvider implementation talking to a GoTrue server."""

    def __init__(self, backend: GoTrueBackend, access_token: str | None = None) -> None:
        super().__init__()
        self._backend = backend
        self._access_token = access_token
        self._refresh_token: str | None = None

    def _adopt(self, session: Session) -> None:
        self._access_token = session.access_token
        self._refresh_token = session.refresh_token

    def sign_up(self, email: str, password: str) -> IdentityUser:
        body = self._backend.request("POST", "/signup", json={"email": email, "password": password})
        # With email confirmation on, the body is the user; with it off, a
        # token response wrapping the user.
        user = body.get("user") if "access_token" in body else body
        if not user or "id" not in user:
            raise ProviderError(_GENERIC_ERROR, status=502)
        return _identity_from_user(user)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        body = self._backend.request(
            "POST", "/token", params={"grant_type": "password"}, json={"email": email, "password": password}
        )
        session = _session_from_token_response(body)
        self._adopt(session)
        self._emit(SessionEventType.SIGNED_IN, session)
        return session

    def sign_out(self) -> None:
        if self._access_token:
            self._backend.request("POST", "/logout", token=self._access_token)
        self._access_token = None
        self._refresh_token = None
        self._emit(SessionEventType.SIGNED_OUT, None)

    def get_session(self) -> Session | None:
        """Verify the bound access token with the server. None if not live."""
        if not self._access_token:
            return None
        try:
            user = self._backend.request("GET", "/user", token=self._access_token)
        except ProviderError as e:
            if e.status >= 500:
                logger.warning("Session lookup failed: %s", e.message)
            return None
        return Session(
            access_token=self._access_token,
            refresh_token=self._refresh_token,
            subject_id=user["id"],
            email=user.get("email", ""),
            expires_at=0,
        )

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        self._backend.request("POST", "/recover", params={"redirect_to": redirect_to}, json={"email": email})

    def verify_recovery(self, token: str) -> Session:
        body = self._backend.request("POST", "/verify", json={"type": "recovery", "token_hash": token})
        session = _session_from_token_response(body)
        self._adopt(session)
        self._emit(SessionEventType.PASSWORD_RECOVERY, session)
        return session

    def update_user(self, password: str) -> IdentityUser:
        session = self.get_session()
        if session is None:
            raise ProviderError("Auth session missing!", status=401)
        user = self._backend.request("PUT", "/user", token=self._access_token, json={"password": password})
        self._emit(SessionEventType.USER_UPDATED, session)
        return _identity_from_user(user)

    def refresh_session(self) -> Session:
        if not self._refresh_token:
            raise ProviderError("Auth session missing!", status=401)
        body = self._backend.request(
            "POST", "/token", params={"grant_type": "refresh_token"}, json={"refresh_token": self._refresh_token}
        )
        session = _session_from_token_response(body)
        self._adopt(session)
        self._emit(SessionEventType.TOKEN_REFRESHED, session)
        return session
