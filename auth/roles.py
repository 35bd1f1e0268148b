"""
auth/roles.py -- Role hierarchy and the authorization decision procedure.

The hierarchy is a fixed total order: ADMIN (3) > EDITOR (2) > AUTHOR (1).
is_authorized() is the single comparison rule every gate goes through.

Two admin checks exist on purpose and are NOT interchangeable:
  is_admin_exact(role)   -- role == ADMIN (exact match)
  at_least_editor(role)  -- hierarchy check against EDITOR
Whether "admin" should ever mean "at least admin" is an open product
question; the exact-match semantics are preserved until it is answered.

Unknown roles raise InvalidRoleError. Callers must treat that as a denial
and surface it as a configuration error -- never default-permit.

Layer rule: pure module, no imports from api/, cache/, or core/.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from auth.errors import InvalidRoleError

if TYPE_CHECKING:
    from auth.models import Profile


class Role(str, Enum):
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    AUTHOR = "AUTHOR"


_RANKS: dict[Role, int] = {
    Role.ADMIN: 3,
    Role.EDITOR: 2,
    Role.AUTHOR: 1,
}

# Every self-registered profile starts here.
DEFAULT_ROLE = Role.AUTHOR


def parse_role(value: Role | str) -> Role:
    """Return the Role for value, or raise InvalidRoleError."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError as exc:
        raise InvalidRoleError(value) from exc


def rank(role: Role | str) -> int:
    return _RANKS[parse_role(role)]


def is_authorized(subject_role: Role | str, required_role: Role | str) -> bool:
    """Return True iff subject_role ranks at or above required_role.

    Raises:
        InvalidRoleError: either argument is not a defined role.
    """
    return rank(subject_role) >= rank(required_role)


def is_admin_exact(role: Role | str) -> bool:
    return parse_role(role) is Role.ADMIN


def at_least_editor(role: Role | str) -> bool:
    return is_authorized(role, Role.EDITOR)


def check_user_role(profile: Profile | None, required_role: Role | str) -> bool:
    """Apply is_authorized() to an optional profile. No profile is a denial."""
    if profile is None:
        return False
    return is_authorized(profile.role, required_role)
