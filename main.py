#!/usr/bin/env python3
"""
Quillpress -- operator commands for the profile database.

Roles are only ever raised by a person with database access; the API never
lets a user grant themselves one. These commands are that person's tool, and
the way the first ADMIN comes to exist. A role change also drops the cached
/admin views so the next request re-reads the profile database.

Usage:
  python main.py list
  python main.py show SUBJECT-ID
  python main.py set-role ann@example.com ADMIN
  python main.py set-role ann@example.com EDITOR

Environment variables:
  PROFILE_DATABASE_URL   SQLAlchemy URL of the profile database
                         (default: sqlite file quillpress_profiles.db at the project root)
"""

import argparse
import sys
from typing import Optional

from auth.actions import ADMIN_LAYOUT
from auth.errors import InvalidRoleError, ProfileNotFoundError
from auth.models import Profile
from auth.roles import Role
from auth.store import ProfileStore
from cache.store import ViewCache


def _print_profile(profile: Profile) -> None:
    print(f"  id:       {profile.id}")
    print(f"  email:    {profile.email}")
    print(f"  name:     {profile.name or '-'}")
    print(f"  role:     {profile.role.value}")
    print(f"  created:  {profile.created_at}")
    print(f"  updated:  {profile.updated_at}")


def cmd_list(store: ProfileStore, views: ViewCache, args: argparse.Namespace) -> int:
    profiles = store.list_profiles()
    if not profiles:
        print("  No profiles.")
        return 0
    for p in profiles:
        print(f"  {p.role.value:<7} {p.email:<40} {p.id}")
    return 0


def cmd_show(store: ProfileStore, views: ViewCache, args: argparse.Namespace) -> int:
    profile = store.find_by_id(args.id)
    if profile is None:
        print(f"  [!] No profile with id '{args.id}'.", file=sys.stderr)
        return 1
    _print_profile(profile)
    return 0


def cmd_set_role(store: ProfileStore, views: ViewCache, args: argparse.Namespace) -> int:
    """Set the role of the profile registered under EMAIL."""
    profile = store.find_by_email(args.email.strip().lower()) or store.find_by_email(args.email.strip())
    if profile is None:
        print(f"  [!] No profile registered with '{args.email}'.", file=sys.stderr)
        return 1
    try:
        updated = store.update(profile.id, role=args.role.upper())
    except InvalidRoleError:
        choices = ", ".join(r.value for r in Role)
        print(f"  [!] '{args.role}' is not a role. Expected one of: {choices}", file=sys.stderr)
        return 1
    except ProfileNotFoundError:
        print(f"  [!] Profile '{profile.id}' disappeared during the update.", file=sys.stderr)
        return 1
    views.invalidate(ADMIN_LAYOUT, layout=True)
    print(f"  {updated.email}: {profile.role.value} -> {updated.role.value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quillpress",
        description="Inspect profiles and assign roles in the Quillpress profile database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py list
  python main.py show 5f0c1d2e-0000-4000-8000-000000000000
  python main.py set-role ann@example.com ADMIN
  PROFILE_DATABASE_URL=sqlite:////srv/quillpress/profiles.db python main.py list
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_list = sub.add_parser("list", help="List every profile with its role")
    p_list.set_defaults(func=cmd_list)

    p_show = sub.add_parser("show", help="Print one profile")
    p_show.add_argument("id", metavar="SUBJECT-ID", help="Identity provider subject id of the profile")
    p_show.set_defaults(func=cmd_show)

    p_role = sub.add_parser("set-role", help="Assign a role to the profile registered under an email")
    p_role.add_argument("email", metavar="EMAIL", help="Email address of the profile")
    p_role.add_argument("role", metavar="ROLE", help="ADMIN, EDITOR or AUTHOR")
    p_role.set_defaults(func=cmd_set_role)
    return parser


def main(
    argv: Optional[list[str]] = None,
    store: Optional[ProfileStore] = None,
    views: Optional[ViewCache] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    own_store, own_views = store is None, views is None
    store = store or ProfileStore()
    views = views or ViewCache()
    try:
        return args.func(store, views, args)
    finally:
        if own_store:
            store.close()
        if own_views:
            views.close()


if __name__ == "__main__":
    sys.exit(main())
