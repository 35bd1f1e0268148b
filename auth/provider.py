"""
auth/provider.py -- Identity provider contract and session-event plumbing.

The identity provider is an external service. This module defines the only
surface the rest of the system sees:

  IdentityBackend.client(access_token)  -> IdentityProvider
      A long-lived backend (lives on app.state) hands out short-lived
      clients. Each HTTP request gets its own client bound to the access
      token from its cookie/Bearer header, so server-side actions stay
      stateless and single-shot.

  IdentityProvider
      sign_up / sign_in_with_password / sign_out / get_session /
      on_session_change / reset_password_for_email / verify_recovery /
      update_user / refresh_session. Every failure raises ProviderError.

SessionEventEmitter is the shared implementation of on_session_change():
callbacks run synchronously, one at a time, in subscription order, on the
thread that caused the transition. Subscription.unsubscribe() is idempotent.

build_identity_backend() picks the concrete adapter from settings.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from auth.models import IdentityUser, Session, SessionEvent, SessionEventType

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("quillpress.auth.provider")

SessionCallback = Callable[[SessionEvent], None]


class IdentityProvider(Protocol):
    def sign_up(self, email: str, password: str) -> IdentityUser: ...

    def sign_in_with_password(self, email: str, password: str) -> Session: ...

    def sign_out(self) -> None: ...

    def get_session(self) -> Session | None: ...

    def on_session_change(self, callback: SessionCallback) -> Subscription: ...

    def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    def verify_recovery(self, token: str) -> Session: ...

    def update_user(self, password: str) -> IdentityUser: ...

    def refresh_session(self) -> Session: ...


class IdentityBackend(Protocol):
    def client(self, access_token: str | None = None) -> IdentityProvider: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Session-change subscriptions
# ---------------------------------------------------------------------------


class Subscription:
    """Handle returned by on_session_change(). Call unsubscribe() on teardown."""

    def __init__(self, emitter: SessionEventEmitter, callback: SessionCallback) -> None:
        self._emitter = emitter
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._emitter._remove(self._callback)


class SessionEventEmitter:
    """Mixin holding the subscriber list for one provider client."""

    def __init__(self) -> None:
        self._subscribers: list[SessionCallback] = []

    def on_session_change(self, callback: SessionCallback) -> Subscription:
        self._subscribers.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: SessionCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def _emit(self, event_type: SessionEventType, session: Session | None) -> None:
        event = SessionEvent(type=event_type, session=session)
        # Copy: a callback may unsubscribe itself while we iterate.
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Session change subscriber failed on %s", event_type.value)


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


def build_identity_backend(settings: Settings) -> IdentityBackend:
    """Return the identity backend named by settings.identity_backend."""
    if settings.identity_backend == "gotrue":
        from auth.gotrue import GoTrueBackend

        logger.info("Identity backend: gotrue at %s", settings.gotrue_url)
        return GoTrueBackend(settings.gotrue_url, settings.gotrue_api_key)

    from auth.local_provider import LocalIdentityBackend

    logger.info("Identity backend: local")
    return LocalIdentityBackend(
        db_url=settings.identity_database_url,
        secret_key=settings.secret_key,
        token_expire_seconds=settings.token_expire_seconds,
        reset_token_expire_seconds=settings.reset_token_expire_seconds,
    )
