"""
auth/models.py -- Domain dataclasses for identity and profile entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, providers and the coordinator do the work.

Two records describe one person:
  Profile      -- locally owned (name, role, audit timestamps).
  IdentityUser -- provider-owned credential record, seen only through its
                  subject id and email.
Profile.id == IdentityUser.subject_id is the join key between them.

Layer rule: no imports from api/, cache/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.roles import Role


@dataclass
class Profile:
    """The application-side user record.

    Only these six fields are ever read out of the profile table, and no
    credential material lives here -- passwords belong to the provider.
    """

    id: str  # provider subject id
    email: str
    role: Role
    name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class IdentityUser:
    """What the identity provider tells us about a credential record."""

    subject_id: str
    email: str
    email_verified: bool = False


@dataclass
class Session:
    """An authenticated provider session.

    access_token is opaque to this system; only the provider can verify it.
    expires_at is a unix timestamp (seconds).
    """

    access_token: str
    subject_id: str
    email: str
    expires_at: int
    refresh_token: str | None = None


class SessionEventType(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


@dataclass
class SessionEvent:
    type: SessionEventType
    session: Session | None = None


class IdentityStatus(str, Enum):
    ANONYMOUS = "anonymous"  # no session
    AUTHENTICATED = "authenticated"  # session + profile
    ORPHANED = "orphaned"  # session, but no profile row for its subject


@dataclass
class IdentityResolution:
    status: IdentityStatus
    session: Session | None = None
    profile: Profile | None = None


@dataclass
class ActionResult:
    """Tagged outcome of a coordinator action.

    Exactly one of success / error is meaningful:
      ActionResult(success=True)                    -- {success}
      ActionResult(success=True, message="...")     -- {success, message}
      ActionResult(error="...")                     -- {error}

    redirect_to and session let the HTTP layer transfer control and set or
    clear the session cookie. orphaned_subject_id is set when registration
    created an identity but not its profile.
    """

    success: bool = False
    message: str | None = None
    error: str | None = None
    redirect_to: str | None = None
    session: Session | None = None
    user: Profile | None = None
    orphaned_subject_id: str | None = None

    @classmethod
    def ok(cls, message: str | None = None, **extra) -> ActionResult:
        return cls(success=True, message=message, **extra)

    @classmethod
    def fail(cls, error: str, **extra) -> ActionResult:
        return cls(success=False, error=error, **extra)

    def as_dict(self) -> dict:
        """Return the wire form: {success} | {success, message} | {error}."""
        if not self.success:
            return {"error": self.error}
        if self.message is None:
            return {"success": True}
        return {"success": True, "message": self.message}
