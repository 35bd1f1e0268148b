"""
auth/errors.py -- Exception types raised by the auth layer.

ProviderError carries a message that is safe to show to the user verbatim --
identity providers phrase their errors for end users ("Invalid login
credentials", "User already registered"). Storage errors are not wrapped;
SQLAlchemy exceptions propagate out of auth/store.py and the coordinator
turns them into a generic message.

Layer rule: no imports from api/, cache/, or core/.
"""

from __future__ import annotations


class ProviderError(Exception):
    """An identity-provider call failed.

    status mirrors the HTTP status the provider answered with (or 500 for
    transport failures) so the API layer can pick 400 vs 401.
    """

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class InvalidRoleError(ValueError):
    """A role value outside ADMIN / EDITOR / AUTHOR reached the role policy.

    This is a configuration or data error, never a policy outcome.
    """

    def __init__(self, role: object) -> None:
        super().__init__(f"Unknown role: {role!r}")
        self.role = role


class ProfileNotFoundError(LookupError):
    """No profile row exists for the given id."""

    def __init__(self, profile_id: str) -> None:
        super().__init__(f"Profile not found: {profile_id!r}")
        self.profile_id = profile_id
