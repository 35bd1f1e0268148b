"""
auth/store.py -- SQLAlchemy Core persistence layer for profiles.

Pattern: Repository + Data Mapper. ProfileStore is the repository;
_row_to_profile is the mapper. Route, coordinator and CLI code never touch
SQL directly.

The profile table is keyed by the identity provider's subject id. Rows are
created once per id (primary key), mutated by update(), never deleted.
The store knows nothing about the provider -- keeping the two in step is
auth/actions.py's job.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update() accepts only the columns in _MUTABLE_FIELDS.

DB path: quillpress_profiles.db at the project root unless
PROFILE_DATABASE_URL says otherwise.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.errors import ProfileNotFoundError
from auth.models import Profile
from auth.roles import DEFAULT_ROLE, Role, parse_role
from core.config import get_settings

logger = logging.getLogger("quillpress.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", String(64), primary_key=True),  # provider subject id
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255)),
    Column("role", String(16), nullable=False, server_default=DEFAULT_ROLE.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fixed projection. Anything else that ever lands in the table stays out of
# Profile objects.
_PROJECTION = (
    _profiles.c.id,
    _profiles.c.email,
    _profiles.c.name,
    _profiles.c.role,
    _profiles.c.created_at,
    _profiles.c.updated_at,
)

_MUTABLE_FIELDS = frozenset({"name", "email", "role"})


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_sqlite_aware_engine(db_url: str) -> Engine:
    """create_engine() with the SQLite connect args and WAL listener applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProfileStore:
    """Repository for Profile rows.

    Usage:
        store = ProfileStore()
        store.create(id=session.subject_id, email="a@b.c", name="Ann", role=Role.AUTHOR)
        profile = store.find_by_id(session.subject_id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_sqlite_aware_engine(db_url or get_settings().profile_database_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def create(self, id: str, email: str, name: str | None = None, role: Role | str = DEFAULT_ROLE) -> Profile:
        """Insert a profile row and return it.

        Raises sqlalchemy.exc.IntegrityError if the id or email already exists.
        Raises InvalidRoleError before touching the DB if role is unknown.
        """
        role = parse_role(role)
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _profiles.insert().values(
                    id=id,
                    email=email,
                    name=name,
                    role=role.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return Profile(id=id, email=email, name=name, role=role, created_at=now, updated_at=now)

    def find_by_id(self, profile_id: str) -> Profile | None:
        """Look up a profile by subject id. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select_profiles().where(_profiles.c.id == profile_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def find_by_email(self, email: str) -> Profile | None:
        """Look up a profile by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select_profiles().where(_profiles.c.email == email)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def list_profiles(self) -> list[Profile]:
        """Return all profiles ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(select_profiles().order_by(_profiles.c.email)).fetchall()
        return [_row_to_profile(r) for r in rows]

    def update(self, profile_id: str, **fields) -> Profile:
        """Write the given fields and return the updated row.

        Only keys passed are written; absent fields are left as they are. An
        empty call writes nothing and returns the current row unchanged
        (updated_at included).

        Raises:
            ValueError:           a key outside name / email / role.
            InvalidRoleError:     role is not a defined Role.
            ProfileNotFoundError: no row has this id.
            IntegrityError:       the new email belongs to another profile.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if "role" in fields:
            fields["role"] = parse_role(fields["role"]).value

        if not fields:
            current = self.find_by_id(profile_id)
            if current is None:
                raise ProfileNotFoundError(profile_id)
            return current

        with self.engine.connect() as conn:
            result = conn.execute(
                _profiles.update().where(_profiles.c.id == profile_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        if result.rowcount == 0:
            raise ProfileNotFoundError(profile_id)
        updated = self.find_by_id(profile_id)
        if updated is None:
            raise ProfileNotFoundError(profile_id)
        logger.info("Profile %s updated (%s)", profile_id, ", ".join(sorted(fields)))
        return updated

    def close(self) -> None:
        self.engine.dispose()


def select_profiles():
    """SELECT over the fixed profile projection."""
    return select(*_PROJECTION)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_profile(row) -> Profile:
    return Profile(
        id=row.id,
        email=row.email,
        name=row.name,
        role=parse_role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
