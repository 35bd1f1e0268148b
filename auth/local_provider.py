"""
auth/local_provider.py -- Self-contained identity provider for development and tests.

Implements the IdentityProvider contract against its own database, separate
from the profile database. The two stores fail independently, the same way a
hosted provider and the application database do in production.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in _authenticate() so response time does
       not reveal whether an email is registered.

  Sessions: python-jose HS256 JWTs signed with SECRET_KEY, carrying sub
       (subject id), email, sid (session row id) and exp. A token is only
       valid while its identity_sessions row is unrevoked and unexpired, so
       sign-out takes effect immediately rather than at token expiry.

  Recovery tokens: secrets.token_urlsafe(32). Only SHA-256(token) is stored.
       Single use, expiring after reset_token_expire_seconds. Delivery goes
       through the deliver_reset callable (default: log the link), standing
       in for the provider's email sender.

Error messages match the ones a GoTrue server returns so the user-facing
text is the same whichever backend is configured.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from urllib.parse import urlencode

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ProviderError
from auth.models import IdentityUser, Session, SessionEventType
from auth.provider import SessionEventEmitter
from auth.store import create_sqlite_aware_engine
from core.config import get_settings

logger = logging.getLogger("quillpress.auth.local_provider")

_ALGORITHM = "HS256"
_MIN_PASSWORD_LENGTH = 6

MSG_ALREADY_REGISTERED = "User already registered"
MSG_INVALID_CREDENTIALS = "Invalid login credentials"
MSG_SESSION_MISSING = "Auth session missing!"
MSG_INVALID_LINK = "Email link is invalid or has expired"
MSG_WEAK_PASSWORD = f"Password should be at least {_MIN_PASSWORD_LENGTH} characters."

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "identity_sessions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("subject_id", String(64), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", Integer, nullable=False),  # unix seconds
    Column("revoked", Integer, nullable=False, server_default="0"),
)

_recovery_tokens = Table(
    "recovery_tokens",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex
    Column("subject_id", String(64), nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash, computed once at module load. Always call
# verify_password() even when the email is unknown.
_DUMMY_HASH: str = hash_password("quillpress_timing_dummy")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def log_reset_link(email: str, link: str) -> None:
    """Default recovery delivery: write the link to the log."""
    logger.info("Password reset link for %s: %s", email, link)


# ---------------------------------------------------------------------------
# Backend (long-lived, one per process)
# ---------------------------------------------------------------------------


class LocalIdentityBackend:
    """Credential store plus session and recovery-token bookkeeping.

    Usage:
        backend = LocalIdentityBackend("sqlite:///:memory:", secret_key="x" * 32)
        client = backend.client()
        client.sign_up("ann@example.com", "hunter22")
        session = client.sign_in_with_password("ann@example.com", "hunter22")
        backend.client(session.access_token).get_session()
    """

    def __init__(
        self,
        db_url: str | None = None,
        secret_key: str | None = None,
        token_expire_seconds: int | None = None,
        reset_token_expire_seconds: int | None = None,
        deliver_reset: Callable[[str, str], None] = log_reset_link,
    ) -> None:
        settings = get_settings()
        self.engine: Engine = create_sqlite_aware_engine(db_url or settings.identity_database_url)
        self._secret_key = secret_key or settings.secret_key
        self._token_expire_seconds = token_expire_seconds or settings.token_expire_seconds
        self._reset_expire_seconds = reset_token_expire_seconds or settings.reset_token_expire_seconds
        self.deliver_reset = deliver_reset
        _metadata.create_all(self.engine)

    def client(self, access_token: str | None = None) -> LocalIdentityClient:
        return LocalIdentityClient(self, access_token)

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def create_identity(self, email: str, password: str) -> IdentityUser:
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise ProviderError(MSG_WEAK_PASSWORD, status=422)
        email = _normalize_email(email)
        subject_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _identities.insert().values(
                        id=subject_id,
                        email=email,
                        hashed_password=hash_password(password),
                        email_verified=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ProviderError(MSG_ALREADY_REGISTERED, status=422) from exc
        logger.info("Identity %s created", subject_id)
        return IdentityUser(subject_id=subject_id, email=email, email_verified=True)

    def get_identity(self, subject_id: str) -> IdentityUser | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == subject_id)).fetchone()
        if row is None:
            return None
        return IdentityUser(subject_id=row.id, email=row.email, email_verified=bool(row.email_verified))

    def _authenticate(self, email: str, password: str) -> IdentityUser | None:
        """Constant-work credential check. Returns None on any mismatch."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _identities.select().where(_identities.c.email == _normalize_email(email))
            ).fetchone()
        if row is None:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, row.hashed_password):
            return None
        return IdentityUser(subject_id=row.id, email=row.email, email_verified=bool(row.email_verified))

    def set_password(self, subject_id: str, password: str) -> IdentityUser:
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise ProviderError(MSG_WEAK_PASSWORD, status=422)
        with self.engine.connect() as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == subject_id)
                .values(hashed_password=hash_password(password), updated_at=_now_iso())
            )
            conn.commit()
        identity = self.get_identity(subject_id)
        if result.rowcount == 0 or identity is None:
            raise ProviderError(MSG_SESSION_MISSING, status=401)
        return identity

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _issue_session(self, identity: IdentityUser, session_id: str | None = None) -> Session:
        """Create (or extend) a session row and sign a token for it."""
        expires_at = int(time.time()) + self._token_expire_seconds
        with self.engine.connect() as conn:
            if session_id is None:
                session_id = uuid.uuid4().hex
                conn.execute(
                    _sessions.insert().values(
                        id=session_id,
                        subject_id=identity.subject_id,
                        created_at=_now_iso(),
                        expires_at=expires_at,
                        revoked=0,
                    )
                )
            else:
                conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(expires_at=expires_at))
            conn.commit()
        token = jwt.encode(
            {"sub": identity.subject_id, "email": identity.email, "sid": session_id, "exp": expires_at},
            self._secret_key,
            algorithm=_ALGORITHM,
        )
        return Session(
            access_token=token,
            subject_id=identity.subject_id,
            email=identity.email,
            expires_at=expires_at,
        )

    def _decode(self, token: str) -> dict | None:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if not all(k in payload for k in ("sub", "sid", "email", "exp")):
            return None
        return payload

    def verify_access_token(self, token: str) -> Session | None:
        """Return the Session a token belongs to, or None if it is not live."""
        payload = self._decode(token)
        if payload is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == payload["sid"])).fetchone()
        if row is None or row.revoked or row.expires_at < int(time.time()):
            return None
        if row.subject_id != payload["sub"]:
            return None
        return Session(
            access_token=token,
            subject_id=payload["sub"],
            email=payload["email"],
            expires_at=int(payload["exp"]),
        )

    def session_id_of(self, token: str) -> str | None:
        payload = self._decode(token)
        return payload["sid"] if payload else None

    def revoke_session(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(revoked=1))
            conn.commit()

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def start_recovery(self, email: str, redirect_to: str) -> None:
        """Issue a recovery token for email if it is registered.

        Unknown addresses return silently. The caller cannot tell the two
        cases apart.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _identities.select().where(_identities.c.email == _normalize_email(email))
            ).fetchone()
            if row is None:
                return
            raw = secrets.token_urlsafe(32)
            conn.execute(
                _recovery_tokens.insert().values(
                    token_hash=_hash_token(raw),
                    subject_id=row.id,
                    expires_at=int(time.time()) + self._reset_expire_seconds,
                    used=0,
                )
            )
            conn.commit()
        self.deliver_reset(row.email, f"{redirect_to}?{urlencode({'token': raw})}")

    def consume_recovery(self, raw_token: str) -> Session:
        """Exchange a recovery token for a session. Single use."""
        token_hash = _hash_token(raw_token)
        with self.engine.connect() as conn:
            result = conn.execute(
                _recovery_tokens.update()
                .where(
                    (_recovery_tokens.c.token_hash == token_hash)
                    & (_recovery_tokens.c.used == 0)
                    & (_recovery_tokens.c.expires_at >= int(time.time()))
                )
                .values(used=1)
            )
            row = conn.execute(
                _recovery_tokens.select().where(_recovery_tokens.c.token_hash == token_hash)
            ).fetchone()
            conn.commit()
        if result.rowcount == 0 or row is None:
            raise ProviderError(MSG_INVALID_LINK, status=403)
        identity = self.get_identity(row.subject_id)
        if identity is None:
            raise ProviderError(MSG_INVALID_LINK, status=403)
        return self._issue_session(identity)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Client (short-lived, one per request or per observing context)
# ---------------------------------------------------------------------------


class LocalIdentityClient(SessionEventEmitter):
    """IdentityProvider implementation bound to one (optional) access token."""

    def __init__(self, backend: LocalIdentityBackend, access_token: str | None = None) -> None:
        super().__init__()
        self._backend = backend
        self._access_token = access_token

    def _require_session(self) -> Session:
        session = self.get_session()
        if session is None:
            raise ProviderError(MSG_SESSION_MISSING, status=401)
        return session

    def sign_up(self, email: str, password: str) -> IdentityUser:
        return self._backend.create_identity(email, password)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        identity = self._backend._authenticate(email, password)
        if identity is None:
            raise ProviderError(MSG_INVALID_CREDENTIALS, status=400)
        session = self._backend._issue_session(identity)
        self._access_token = session.access_token
        self._emit(SessionEventType.SIGNED_IN, session)
        return session

    def sign_out(self) -> None:
        if self._access_token:
            session_id = self._backend.session_id_of(self._access_token)
            if session_id:
                self._backend.revoke_session(session_id)
        self._access_token = None
        self._emit(SessionEventType.SIGNED_OUT, None)

    def get_session(self) -> Session | None:
        if not self._access_token:
            return None
        return self._backend.verify_access_token(self._access_token)

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        self._backend.start_recovery(email, redirect_to)

    def verify_recovery(self, token: str) -> Session:
        session = self._backend.consume_recovery(token)
        self._access_token = session.access_token
        self._emit(SessionEventType.PASSWORD_RECOVERY, session)
        return session

    def update_user(self, password: str) -> IdentityUser:
        session = self._require_session()
        identity = self._backend.set_password(session.subject_id, password)
        self._emit(SessionEventType.USER_UPDATED, session)
        return identity

    def refresh_session(self) -> Session:
        current = self._require_session()
        identity = self._backend.get_identity(current.subject_id)
        session_id = self._backend.session_id_of(current.access_token)
        if identity is None or session_id is None:
            raise ProviderError(MSG_SESSION_MISSING, status=401)
        session = self._backend._issue_session(identity, session_id=session_id)
        self._access_token = session.access_token
        self._emit(SessionEventType.TOKEN_REFRESHED, session)
        return session
