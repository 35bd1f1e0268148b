"""
auth/actions.py -- Auth action coordinator.

AuthActions orchestrates every flow that touches both the identity provider
and the profile store, and owns the partial-failure policy between them.

Registration is a two-step saga with no compensation:

  1. provider.sign_up()        -> subject id          (provider store)
  2. profiles.create(id=...)   -> profile row          (profile store)

If step 1 fails nothing else happens. If step 2 fails the identity already
exists and stays there without a profile -- an orphaned identity. No
rollback of step 1 is attempted; the failure window is logged at ERROR with
the subject id so an operator can find it. Afterwards the orphan reads as
IdentityStatus.ORPHANED / current_user() is None, and the owner can
self-provision through POST /api/v1/users once signed in.

Error policy (nothing raises out of a public method):
  ProviderError          -> ActionResult.fail(provider message verbatim)
  SQLAlchemyError etc.   -> logged with traceback, generic message
  InvalidRoleError       -> logged at ERROR, generic message / denial

One AuthActions is built per request (see api/routes/v1/auth.py) around a
provider client bound to that request's access token.

Layer rule: no imports from api/. cache/ is imported for the page-state
invalidation hook only.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import InvalidRoleError, ProfileNotFoundError, ProviderError
from auth.models import ActionResult, IdentityResolution, IdentityStatus, Profile
from auth.provider import IdentityProvider
from auth.roles import DEFAULT_ROLE, Role, at_least_editor, check_user_role, is_admin_exact
from auth.store import ProfileStore
from cache.store import ViewCache
from core.config import Settings, get_settings

logger = logging.getLogger("quillpress.auth.actions")

MSG_UNEXPECTED = "An unexpected error occurred"
MSG_PROFILE_CREATE_FAILED = "Failed to create user profile"
MSG_PROFILE_UPDATE_FAILED = "Failed to update profile"
MSG_RESET_SENT = "Password reset email sent. Check your inbox."
MSG_PASSWORD_UPDATED = "Password updated successfully"

PROFILE_VIEW = "/admin/profile"
ADMIN_LAYOUT = "/admin"


class AuthActions:
    def __init__(
        self,
        provider: IdentityProvider,
        profiles: ProfileStore,
        views: ViewCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.provider = provider
        self.profiles = profiles
        self.views = views
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Page-state invalidation
    # ------------------------------------------------------------------

    def _invalidate(self, path: str, layout: bool = False) -> None:
        if self.views is None:
            return
        try:
            self.views.invalidate(path, layout=layout)
        except Exception:
            # Stale views expire by TTL; the action itself already succeeded.
            logger.exception("View invalidation failed for %s", path)

    # ------------------------------------------------------------------
    # Mutating actions
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str | None = None) -> ActionResult:
        """Create the identity, then its AUTHOR profile. See module docstring."""
        try:
            identity = self.provider.sign_up(email, password)
        except ProviderError as e:
            return ActionResult.fail(e.message)
        except Exception:
            logger.exception("Sign-up failed unexpectedly")
            return ActionResult.fail(MSG_UNEXPECTED)

        try:
            self.profiles.create(id=identity.subject_id, email=identity.email or email, name=name, role=DEFAULT_ROLE)
        except Exception:
            logger.exception(
                "Profile creation failed after sign-up; identity %s is orphaned",
                identity.subject_id,
            )
            return ActionResult.fail(MSG_PROFILE_CREATE_FAILED, orphaned_subject_id=identity.subject_id)

        logger.info("Registered %s", identity.subject_id)
        return ActionResult.ok()

    def login(self, email: str, password: str) -> ActionResult:
        """Verify credentials with the provider and hand back the session.

        Does not check for a profile -- the first protected read does.
        """
        try:
            session = self.provider.sign_in_with_password(email, password)
        except ProviderError as e:
            return ActionResult.fail(e.message)
        except Exception:
            logger.exception("Sign-in failed unexpectedly")
            return ActionResult.fail(MSG_UNEXPECTED)

        self._invalidate("/", layout=True)
        return ActionResult.ok(redirect_to=self.settings.landing_path, session=session)

    def logout(self) -> ActionResult:
        try:
            self.provider.sign_out()
        except ProviderError as e:
            return ActionResult.fail(e.message)
        except Exception:
            logger.exception("Sign-out failed unexpectedly")
            return ActionResult.fail(MSG_UNEXPECTED)

        self._invalidate("/", layout=True)
        return ActionResult.ok(redirect_to=self.settings.login_path)

    def request_password_reset(self, email: str) -> ActionResult:
        """Ask the provider to send a reset link.

        The answer is identical for registered and unregistered addresses,
        including when the provider itself fails.
        """
        try:
            self.provider.reset_password_for_email(email, redirect_to=self.settings.reset_redirect_url)
        except ProviderError as e:
            logger.warning("Password reset request not sent: %s", e.message)
        except Exception:
            logger.exception("Password reset request failed unexpectedly")
        return ActionResult.ok(MSG_RESET_SENT)

    def verify_password_reset(self, token: str) -> ActionResult:
        """Exchange the one-time link token for a recovery session."""
        try:
            session = self.provider.verify_recovery(token)
        except ProviderError as e:
            return ActionResult.fail(e.message)
        except Exception:
            logger.exception("Recovery verification failed unexpectedly")
            return ActionResult.fail(MSG_UNEXPECTED)
        return ActionResult.ok(session=session)

    def complete_password_reset(self, new_password: str) -> ActionResult:
        """Set a new password inside an established recovery session."""
        try:
            self.provider.update_user(password=new_password)
        except ProviderError as e:
            return ActionResult.fail(e.message)
        except Exception:
            logger.exception("Password update failed unexpectedly")
            return ActionResult.fail(MSG_UNEXPECTED)
        return ActionResult.ok(MSG_PASSWORD_UPDATED, redirect_to=self.settings.login_path)

    def update_profile(self, profile_id: str, name: str | None = None, email: str | None = None) -> ActionResult:
        """Write only the supplied, non-empty fields. No fields is a no-op."""
        fields: dict[str, str] = {}
        if name:
            fields["name"] = name
        if email:
            fields["email"] = email
        try:
            user = self.profiles.update(profile_id, **fields)
        except ProfileNotFoundError:
            logger.warning("Profile update for unknown id %s", profile_id)
            return ActionResult.fail(MSG_PROFILE_UPDATE_FAILED)
        except SQLAlchemyError:
            logger.exception("Error updating user profile %s", profile_id)
            return ActionResult.fail(MSG_PROFILE_UPDATE_FAILED)

        self._invalidate(PROFILE_VIEW)
        return ActionResult.ok(user=user)

    def change_role(self, profile_id: str, role: Role | str) -> ActionResult:
        try:
            user = self.profiles.update(profile_id, role=role)
        except InvalidRoleError as e:
            logger.error("Rejected role change for %s: %s", profile_id, e)
            return ActionResult.fail(str(e))
        except ProfileNotFoundError:
            return ActionResult.fail(MSG_PROFILE_UPDATE_FAILED)
        except SQLAlchemyError:
            logger.exception("Error changing role of %s", profile_id)
            return ActionResult.fail(MSG_PROFILE_UPDATE_FAILED)

        logger.info("Role of %s set to %s", profile_id, user.role.value)
        self._invalidate(ADMIN_LAYOUT, layout=True)
        return ActionResult.ok(user=user)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def resolve_identity(self) -> IdentityResolution:
        """Classify the bound session as anonymous, authenticated or orphaned.

        Storage errors while loading the profile propagate; current_user()
        is the forgiving variant.
        """
        session = self.provider.get_session()
        if session is None:
            return IdentityResolution(IdentityStatus.ANONYMOUS)
        profile = self.profiles.find_by_id(session.subject_id)
        if profile is None:
            logger.warning("Session subject %s has no profile (orphaned identity)", session.subject_id)
            return IdentityResolution(IdentityStatus.ORPHANED, session=session)
        return IdentityResolution(IdentityStatus.AUTHENTICATED, session=session, profile=profile)

    def current_user(self) -> Profile | None:
        """Profile of the session's subject, or None.

        No session and no profile (orphaned identity) both read as "not
        logged in".
        """
        try:
            return self.resolve_identity().profile
        except ProviderError as e:
            logger.warning("Session lookup failed: %s", e.message)
            return None
        except SQLAlchemyError:
            logger.exception("Error loading current user")
            return None

    def user_by_id(self, profile_id: str) -> Profile | None:
        try:
            return self.profiles.find_by_id(profile_id)
        except SQLAlchemyError:
            logger.exception("Error fetching user %s", profile_id)
            return None

    # ------------------------------------------------------------------
    # Role checks against the current user
    # ------------------------------------------------------------------

    def check_role(self, required: Role | str) -> bool:
        try:
            return check_user_role(self.current_user(), required)
        except InvalidRoleError:
            logger.error("Role check against unknown role %r denied", required)
            return False

    def is_admin(self) -> bool:
        user = self.current_user()
        return user is not None and is_admin_exact(user.role)

    def is_editor_or_admin(self) -> bool:
        user = self.current_user()
        return user is not None and at_least_editor(user.role)
