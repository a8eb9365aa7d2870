"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(phone) and UNIQUE(email) are the authority for account uniqueness.
  create_user() / update_user() pre-check for a friendlier error, but a
  concurrent insert that slips past the pre-check still hits the constraint,
  and the IntegrityError is mapped to the same Conflict.

  SQLite treats NULLs as distinct in UNIQUE constraints, which is exactly what
  we want here: many users may have no email, or no phone.

Transactions:
  Multi-statement operations (user delete cascade, code replacement, code
  redemption + its side effect, refresh rotation) run inside engine.begin() so
  they either fully apply or not at all. Redemption is a conditional UPDATE
  (used_at IS NULL AND expires_at > now), so two concurrent redemptions of the
  same code cannot both succeed.

Timestamps: UTC ISO-8601 strings with fixed microsecond precision, so string
comparison in SQL orders them chronologically.

DB path: classsite_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import Conflict, NotFound
from auth.models import LoginAttempt, Role, Session, User, UserUpdate, VerificationCode, VerificationPurpose
from auth.validators import is_phone_identifier, normalize_email, normalize_phone

logger = logging.getLogger("classsite.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("phone", String(20), unique=True),  # normalized, 11 digits
    Column("email", String(255), unique=True),  # lower-cased
    Column("full_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.STUDENT.value),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_verification_codes = Table(
    "verification_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("code", String(12), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True),  # NULL = unknown login
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("success", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON makes the ON DELETE CASCADE
    clauses effective; delete_user() also removes children explicitly.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _purpose_value(purpose: VerificationPurpose | str) -> str:
    return purpose.value if isinstance(purpose, VerificationPurpose) else purpose


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session, VerificationCode and LoginAttempt rows.

    Usage:
        store = AuthStore(settings.database_url)
        uid = store.create_user(User(full_name="Anna", phone="79123456789", password_hash=h))
        user = store.find_by_login_identifier("+7 912 345-67-89")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_phone(self, phone: str, active_only: bool = True) -> User | None:
        """Look up a user by phone in any accepted spelling."""
        query = _users.select().where(_users.c.phone == normalize_phone(phone))
        if active_only:
            query = query.where(_users.c.is_active.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, active_only: bool = True) -> User | None:
        query = _users.select().where(_users.c.email == normalize_email(email))
        if active_only:
            query = query.where(_users.c.is_active.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_login_identifier(self, identifier: str) -> User | None:
        """Resolve a login string to an active user.

        Anything without '@' is treated as a phone number and normalized before
        the lookup; anything with '@' is an email compared case-insensitively.
        """
        if is_phone_identifier(identifier):
            return self.get_by_phone(identifier)
        return self.get_by_email(identifier)

    def has_admin(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.ADMIN.value)
            ).scalar()
        return (result or 0) > 0

    def find_conflict(self, phone: str | None, email: str | None, exclude_user_id: int | None = None) -> str | None:
        """Return "phone" or "email" if another user already holds that value, else None.

        Inputs must already be normalized.
        """
        with self.engine.connect() as conn:
            for column, value in (("phone", phone), ("email", email)):
                if not value:
                    continue
                query = select(_users.c.id).where(_users.c[column] == value)
                if exclude_user_id is not None:
                    query = query.where(_users.c.id != exclude_user_id)
                if conn.execute(query).first() is not None:
                    return column
        return None

    def list_users(
        self,
        search: str | None = None,
        role: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        search matches full name and email case-insensitively and phone as a
        digit substring. % and _ in search match literally.
        """
        conditions = []
        if search:
            needle = search.lower()
            clauses = [
                func.lower(_users.c.full_name).contains(needle, autoescape=True),
                _users.c.email.contains(needle, autoescape=True),
            ]
            digits = "".join(c for c in search if c.isdigit())
            if digits:
                clauses.append(_users.c.phone.contains(digits))
            conditions.append(or_(*clauses))
        if role:
            conditions.append(_users.c.role == role)

        query = _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())
        count_query = select(func.count()).select_from(_users)
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))
        with self.engine.connect() as conn:
            rows = conn.execute(query.offset((page - 1) * limit).limit(limit)).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    # ------------------------------------------------------------------
    # User writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        phone/email are normalized here as well, so two spellings of the same
        number can never produce two rows. Raises Conflict when the phone or
        email is already taken, whether caught by the pre-check or by the
        UNIQUE constraint.
        """
        phone = normalize_phone(user.phone) if user.phone else None
        email = normalize_email(user.email) if user.email else None
        if self.find_conflict(phone, email) is not None:
            raise Conflict()
        stamp = now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        phone=phone,
                        email=email,
                        full_name=user.full_name,
                        password_hash=user.password_hash,
                        role=user.role,
                        is_active=user.is_active,
                        is_verified=user.is_verified,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
        except IntegrityError as exc:
            raise Conflict() from exc
        return result.inserted_primary_key[0]

    def update_user(self, user_id: int, update: UserUpdate) -> User:
        """Apply a validated partial update and return the fresh record.

        A phone change resets is_verified to False unless the caller sets
        is_verified explicitly, and deletes the user's PHONE_VERIFICATION
        codes in the same transaction: they were sent to the old number.
        Raises NotFound / Conflict.
        """
        current = self.get_by_id(user_id)
        if current is None:
            raise NotFound()

        values = update.changes()
        if values.get("phone"):
            values["phone"] = normalize_phone(values["phone"])
        if values.get("email"):
            values["email"] = normalize_email(values["email"])

        clash = self.find_conflict(values.get("phone"), values.get("email"), exclude_user_id=user_id)
        if clash is not None:
            raise Conflict(f"This {clash} is already used by another user.")

        phone_changed = "phone" in values and values["phone"] != current.phone
        if phone_changed and update.is_verified is None:
            values["is_verified"] = False

        if values:
            values["updated_at"] = now_iso()
            try:
                with self.engine.begin() as conn:
                    conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                    if phone_changed:
                        conn.execute(
                            _verification_codes.delete().where(
                                (_verification_codes.c.user_id == user_id)
                                & (_verification_codes.c.purpose == VerificationPurpose.PHONE_VERIFICATION.value)
                            )
                        )
            except IntegrityError as exc:
                raise Conflict() from exc

        updated = self.get_by_id(user_id)
        if updated is None:
            raise NotFound()
        return updated

    def touch_last_login(self, user_id: int) -> None:
        """Stamp last_login_at. Best effort -- a failure is logged, never raised."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now_iso()))
        except SQLAlchemyError:
            logger.warning("Could not update last_login_at for user %s", user_id, exc_info=True)

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and everything it owns in one transaction.

        Returns True if the user existed. Permission checks (admin only, no
        self-delete) are the caller's responsibility.
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_verification_codes.delete().where(_verification_codes.c.user_id == user_id))
            conn.execute(_login_attempts.delete().where(_login_attempts.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def record_login_attempt(self, attempt: LoginAttempt) -> None:
        """Append an audit row. Best effort -- auditing never blocks a login response."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _login_attempts.insert().values(
                        user_id=attempt.user_id,
                        ip_address=attempt.ip_address,
                        user_agent=attempt.user_agent,
                        success=attempt.success,
                        created_at=now_iso(),
                    )
                )
        except SQLAlchemyError:
            logger.warning("Could not record login attempt for user %s", attempt.user_id, exc_info=True)

    def list_login_attempts(self, user_id: int | None = None) -> list[LoginAttempt]:
        """Return attempts for one user, or the anonymous ones when user_id is None."""
        if user_id is None:
            condition = _login_attempts.c.user_id.is_(None)
        else:
            condition = _login_attempts.c.user_id == user_id
        with self.engine.connect() as conn:
            rows = conn.execute(
                _login_attempts.select().where(condition).order_by(_login_attempts.c.id)
            ).fetchall()
        return [_row_to_login_attempt(r) for r in rows]

    # ------------------------------------------------------------------
    # Sessions (refresh tokens)
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    refresh_token=session.refresh_token,
                    expires_at=session.expires_at,
                    created_at=now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    def get_active_session(self, refresh_token: str) -> Session | None:
        """Return the session for refresh_token if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.refresh_token == refresh_token) & (_sessions.c.expires_at > now_iso())
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, refresh_token: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.refresh_token == refresh_token))
        return result.rowcount > 0

    def rotate_session(self, old_token: str, replacement: Session) -> bool:
        """Swap an unexpired refresh token for a new one atomically.

        Returns False (and writes nothing) if old_token is unknown or expired,
        so a token can be exchanged at most once.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.refresh_token == old_token)
                    & (_sessions.c.user_id == replacement.user_id)
                    & (_sessions.c.expires_at > now_iso())
                )
            )
            if result.rowcount == 0:
                return False
            conn.execute(
                _sessions.insert().values(
                    user_id=replacement.user_id,
                    refresh_token=replacement.refresh_token,
                    expires_at=replacement.expires_at,
                    created_at=now_iso(),
                )
            )
        return True

    def list_sessions(self, user_id: int) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def replace_verification_code(self, code: VerificationCode) -> int:
        """Delete every code for (user, purpose) and insert the new one.

        Keeps the invariant "at most one pending code per (user, purpose)".
        """
        purpose = _purpose_value(code.purpose)
        with self.engine.begin() as conn:
            conn.execute(
                _verification_codes.delete().where(
                    (_verification_codes.c.user_id == code.user_id) & (_verification_codes.c.purpose == purpose)
                )
            )
            result = conn.execute(
                _verification_codes.insert().values(
                    user_id=code.user_id,
                    code=code.code,
                    purpose=purpose,
                    expires_at=code.expires_at,
                    created_at=now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    def list_verification_codes(
        self, user_id: int, purpose: VerificationPurpose | str | None = None
    ) -> list[VerificationCode]:
        query = _verification_codes.select().where(_verification_codes.c.user_id == user_id)
        if purpose is not None:
            query = query.where(_verification_codes.c.purpose == _purpose_value(purpose))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_verification_codes.c.id)).fetchall()
        return [_row_to_code(r) for r in rows]

    def redeem_code(self, user_id: int, purpose: VerificationPurpose | str, code: str) -> bool:
        """Mark a pending code as used. Returns False if no pending code matched."""
        with self.engine.begin() as conn:
            return self._redeem(conn, user_id, purpose, code)

    def redeem_code_and_verify_user(self, user_id: int, code: str) -> bool:
        """Redeem a PHONE_VERIFICATION code and set is_verified in one transaction."""
        with self.engine.begin() as conn:
            if not self._redeem(conn, user_id, VerificationPurpose.PHONE_VERIFICATION, code):
                return False
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_verified=True, updated_at=now_iso())
            )
        return True

    def redeem_code_and_set_password(self, user_id: int, code: str, password_hash: str) -> bool:
        """Redeem a PASSWORD_RESET code and replace the password hash in one transaction.

        If either statement fails the transaction rolls back, so a consumed
        code without a changed password is never observable.
        """
        with self.engine.begin() as conn:
            if not self._redeem(conn, user_id, VerificationPurpose.PASSWORD_RESET, code):
                return False
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=now_iso())
            )
        return True

    @staticmethod
    def _redeem(conn: Connection, user_id: int, purpose: VerificationPurpose | str, code: str) -> bool:
        stamp = now_iso()
        result = conn.execute(
            _verification_codes.update()
            .where(
                (_verification_codes.c.user_id == user_id)
                & (_verification_codes.c.purpose == _purpose_value(purpose))
                & (_verification_codes.c.code == code)
                & (_verification_codes.c.used_at.is_(None))
                & (_verification_codes.c.expires_at > stamp)
            )
            .values(used_at=stamp)
        )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        phone=row.phone,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash,
        role=row.role,
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        purpose=row.purpose,
        expires_at=row.expires_at,
        used_at=row.used_at,
        created_at=row.created_at,
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        user_id=row.user_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        success=bool(row.success),
        created_at=row.created_at,
    )
