"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and artifacts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_* are the mappers. Workflow code never touches SQL directly.

Connections: the store owns the Engine (the connection pool) but never opens
a connection for itself. Every method takes the Connection handed out by
auth.transactions.unit_of_work(), so each logical operation runs in exactly
one transaction and callers decide its boundaries.

Concurrency: safety against concurrent requests rests on the database, not
on in-process locks.
  - Account uniqueness is enforced by named UNIQUE constraints; the
    IntegrityError is translated to ConflictError by unit_of_work.
  - Verification artifacts are UNIQUE per account_id. Re-issuing is a
    compare-and-set UPDATE guarded by the resend cooldown, so replacing the
    old artifact and checking the rate limit are one statement.
  - Failed code attempts are an atomic "attempts = attempts + 1" bounded by
    the attempt limit.
  - Credential replacement can be guarded by the expected version.

Security:
  All queries use bound parameters. No f-strings in SQL.
  No method returns a password hash or salt.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so that string comparison in SQL matches time order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    false,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import SingletonThreadPool

from auth.errors import ClaimAlreadyConsumed, SamePasswordError
from auth.models import Account, AccountStatus, EmailVerification, PhoneVerification, Role
from auth.tokens import burn_password_check, generate_salt, hash_password, verify_password

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(255), nullable=False),
    Column("last_name", String(255), nullable=False),
    Column("username", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("email_verified", Boolean, nullable=False, server_default=false()),
    Column("phone", String(15), nullable=False),
    Column("phone_verified", Boolean, nullable=False, server_default=false()),
    Column("role", Integer, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("email", name="uq_accounts_email"),
    UniqueConstraint("username", name="uq_accounts_username"),
    UniqueConstraint("phone", name="uq_accounts_phone"),
)

# Kept apart from accounts so that a query for profile data can never pull
# credential material along with it.
_credentials = Table(
    "account_credentials",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("salted_hash", String(255), nullable=False),
    Column("salt", String(255), nullable=False),
    Column("version", Integer, nullable=False, server_default="1"),
    UniqueConstraint("account_id", name="uq_account_credentials_account_id"),
)

_email_verifications = Table(
    "email_verifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("email", String(255), nullable=False),
    Column("token", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    UniqueConstraint("account_id", name="uq_email_verifications_account_id"),
    UniqueConstraint("token", name="uq_email_verifications_token"),
)

_phone_verifications = Table(
    "phone_verifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("phone", String(15), nullable=False),
    Column("code", String(6), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    UniqueConstraint("account_id", name="uq_phone_verifications_account_id"),
)

# Columns an admin update may touch. Anything else is a programming error.
_UPDATABLE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "username",
        "email",
        "phone",
        "role",
        "status",
        "email_verified",
        "phone_verified",
    }
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _is_sqlite_memory(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _account_filters(role: Optional[int], status: Optional[str], email_verified: Optional[bool]) -> list:
    clauses = []
    if role is not None:
        clauses.append(_accounts.c.role == int(role))
    if status is not None:
        clauses.append(_accounts.c.status == AccountStatus(status).value)
    if email_verified is not None:
        clauses.append(_accounts.c.email_verified == email_verified)
    return clauses


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Credential and verification artifacts.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        with unit_of_work(store.engine) as conn:
            account_id = store.create_account(conn, account)
            store.attach_credential(conn, account_id, "secret")
        store.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        elif db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(int(timeout_seconds), 1)
        engine_args: dict = {}
        if _is_sqlite_memory(db_url):
            # One connection per thread; shared-cache URIs still see one database.
            engine_args["poolclass"] = SingletonThreadPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, conn: Connection, account: Account) -> int:
        """Insert an account row and return its ID.

        Uniqueness of email/username/phone is left to the UNIQUE constraints;
        two concurrent inserts with the same email cannot both commit. The
        IntegrityError surfaces as ConflictError(field) from unit_of_work.
        """
        now = _to_iso(_utcnow())
        result = conn.execute(
            _accounts.insert().values(
                first_name=account.first_name,
                last_name=account.last_name,
                username=account.username,
                email=account.email,
                phone=account.phone,
                role=int(account.role),
                status=AccountStatus(account.status).value,
                email_verified=account.email_verified,
                phone_verified=account.phone_verified,
                created_at=now,
                updated_at=now,
            )
        )
        return result.inserted_primary_key[0]

    def get_account(self, conn: Connection, account_id: int) -> Optional[Account]:
        row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, conn: Connection, email: str) -> Optional[Account]:
        """Exact, case-sensitive match. Returns None if not found."""
        row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, conn: Connection, account_id: int, **fields) -> bool:
        """Update the given columns and stamp updated_at.

        Only columns in _UPDATABLE_FIELDS are accepted. Returns True if a row
        was updated, False if account_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = int(Role(fields["role"]))
        if "status" in fields:
            fields["status"] = AccountStatus(fields["status"]).value
        result = conn.execute(
            _accounts.update()
            .where(_accounts.c.id == account_id)
            .values(updated_at=_to_iso(_utcnow()), **fields)
        )
        return result.rowcount > 0

    def list_accounts(
        self,
        conn: Connection,
        role: Optional[int] = None,
        status: Optional[str] = None,
        email_verified: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Account]:
        """Return accounts newest first, optionally filtered."""
        query = (
            _accounts.select()
            .where(*_account_filters(role, status, email_verified))
            .order_by(_accounts.c.created_at.desc(), _accounts.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [_row_to_account(r) for r in conn.execute(query).fetchall()]

    def count_accounts(
        self,
        conn: Connection,
        role: Optional[int] = None,
        status: Optional[str] = None,
        email_verified: Optional[bool] = None,
    ) -> int:
        query = select(func.count()).select_from(_accounts).where(*_account_filters(role, status, email_verified))
        return conn.execute(query).scalar() or 0

    def search_accounts(self, conn: Connection, query: str, limit: int = 20) -> list[Account]:
        """Case-insensitive substring match on names, username and email."""
        pattern = f"%{query.strip()}%"
        rows = conn.execute(
            _accounts.select()
            .where(
                or_(
                    _accounts.c.first_name.ilike(pattern),
                    _accounts.c.last_name.ilike(pattern),
                    _accounts.c.username.ilike(pattern),
                    _accounts.c.email.ilike(pattern),
                )
            )
            .order_by(_accounts.c.created_at.desc(), _accounts.c.id.desc())
            .limit(limit)
        ).fetchall()
        return [_row_to_account(r) for r in rows]

    def account_stats(self, conn: Connection, now: Optional[datetime] = None) -> dict:
        """Aggregate counts for the admin dashboard."""
        since = _to_iso((now or _utcnow()) - timedelta(days=7))
        by_role = conn.execute(
            select(_accounts.c.role, func.count()).group_by(_accounts.c.role).order_by(_accounts.c.role)
        ).fetchall()
        by_status = conn.execute(select(_accounts.c.status, func.count()).group_by(_accounts.c.status)).fetchall()
        total = conn.execute(select(func.count()).select_from(_accounts)).scalar() or 0
        email_verified = (
            conn.execute(select(func.count()).select_from(_accounts).where(_accounts.c.email_verified.is_(True))).scalar()
            or 0
        )
        phone_verified = (
            conn.execute(select(func.count()).select_from(_accounts).where(_accounts.c.phone_verified.is_(True))).scalar()
            or 0
        )
        both_verified = (
            conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where(_accounts.c.email_verified.is_(True) & _accounts.c.phone_verified.is_(True))
            ).scalar()
            or 0
        )
        recent = (
            conn.execute(select(func.count()).select_from(_accounts).where(_accounts.c.created_at >= since)).scalar() or 0
        )
        return {
            "total": total,
            "by_role": {int(role): count for role, count in by_role},
            "by_status": {status: count for status, count in by_status},
            "email_verified": email_verified,
            "phone_verified": phone_verified,
            "both_verified": both_verified,
            "created_last_7_days": recent,
        }

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def attach_credential(self, conn: Connection, account_id: int, password: str) -> None:
        """Store a fresh salted hash for a new account (version 1)."""
        salt = generate_salt()
        conn.execute(
            _credentials.insert().values(
                account_id=account_id,
                salted_hash=hash_password(password, salt),
                salt=salt,
                version=1,
            )
        )

    def verify_credential(self, conn: Connection, account_id: Optional[int], password: str) -> bool:
        """Return True if password matches the stored credential.

        When the account has no credential (or account_id is None) a dummy
        bcrypt round still runs, so the miss costs the same as a mismatch [C1].
        """
        row = None
        if account_id is not None:
            row = conn.execute(
                select(_credentials.c.salted_hash, _credentials.c.salt).where(_credentials.c.account_id == account_id)
            ).fetchone()
        if row is None:
            burn_password_check(password)
            return False
        return verify_password(password, row.salt, row.salted_hash)

    def get_credential_version(self, conn: Connection, account_id: int) -> Optional[int]:
        return conn.execute(
            select(_credentials.c.version).where(_credentials.c.account_id == account_id)
        ).scalar()

    def replace_credential(
        self,
        conn: Connection,
        account_id: int,
        new_password: str,
        expected_version: Optional[int] = None,
    ) -> int:
        """Replace the password with a new salt and return the new version.

        Raises SamePasswordError when new_password already matches. When
        expected_version is given the update only applies if the stored
        version still equals it; otherwise ClaimAlreadyConsumed (another reset
        or password change won the race).
        """
        if self.verify_credential(conn, account_id, new_password):
            raise SamePasswordError()
        salt = generate_salt()
        condition = _credentials.c.account_id == account_id
        if expected_version is not None:
            condition = condition & (_credentials.c.version == expected_version)
        result = conn.execute(
            _credentials.update()
            .where(condition)
            .values(
                salted_hash=hash_password(new_password, salt),
                salt=salt,
                version=_credentials.c.version + 1,
            )
        )
        if result.rowcount == 0:
            raise ClaimAlreadyConsumed()
        return self.get_credential_version(conn, account_id)

    # ------------------------------------------------------------------
    # Email verification artifacts
    # ------------------------------------------------------------------

    def get_email_verification(self, conn: Connection, account_id: int) -> Optional[EmailVerification]:
        row = conn.execute(
            _email_verifications.select().where(_email_verifications.c.account_id == account_id)
        ).fetchone()
        return _row_to_email_verification(row) if row is not None else None

    def get_email_verification_by_token(self, conn: Connection, token: str) -> Optional[EmailVerification]:
        row = conn.execute(_email_verifications.select().where(_email_verifications.c.token == token)).fetchone()
        return _row_to_email_verification(row) if row is not None else None

    def issue_email_verification(
        self,
        conn: Connection,
        account_id: int,
        email: str,
        token: str,
        now: datetime,
        expires_at: datetime,
        cooldown: timedelta,
    ) -> bool:
        """Replace or create the account's email artifact.

        Returns False when the existing artifact was issued less than cooldown
        ago (rate limited). The replacement is one UPDATE conditioned on the
        old issue time, so the check and the write cannot be separated by a
        concurrent send. A concurrent first insert loses on the UNIQUE
        account_id constraint.
        """
        values = {
            "email": email,
            "token": token,
            "created_at": _to_iso(now),
            "expires_at": _to_iso(expires_at),
        }
        replaced = conn.execute(
            _email_verifications.update()
            .where(
                (_email_verifications.c.account_id == account_id)
                & (_email_verifications.c.created_at <= _to_iso(now - cooldown))
            )
            .values(**values)
        )
        if replaced.rowcount:
            return True
        if self.get_email_verification(conn, account_id) is not None:
            return False
        conn.execute(_email_verifications.insert().values(account_id=account_id, **values))
        return True

    def delete_email_verification(self, conn: Connection, account_id: int, token: Optional[str] = None) -> bool:
        """Delete the account's artifact (only if it still holds token, when given)."""
        condition = _email_verifications.c.account_id == account_id
        if token is not None:
            condition = condition & (_email_verifications.c.token == token)
        return conn.execute(_email_verifications.delete().where(condition)).rowcount > 0

    # ------------------------------------------------------------------
    # Phone verification artifacts
    # ------------------------------------------------------------------

    def get_phone_verification(self, conn: Connection, account_id: int) -> Optional[PhoneVerification]:
        row = conn.execute(
            _phone_verifications.select().where(_phone_verifications.c.account_id == account_id)
        ).fetchone()
        return _row_to_phone_verification(row) if row is not None else None

    def issue_phone_verification(
        self,
        conn: Connection,
        account_id: int,
        phone: str,
        code: str,
        now: datetime,
        expires_at: datetime,
        cooldown: timedelta,
    ) -> bool:
        """Replace or create the account's SMS artifact with attempts reset to 0.

        Same compare-and-set scheme as issue_email_verification.
        """
        values = {
            "phone": phone,
            "code": code,
            "attempts": 0,
            "created_at": _to_iso(now),
            "expires_at": _to_iso(expires_at),
        }
        replaced = conn.execute(
            _phone_verifications.update()
            .where(
                (_phone_verifications.c.account_id == account_id)
                & (_phone_verifications.c.created_at <= _to_iso(now - cooldown))
            )
            .values(**values)
        )
        if replaced.rowcount:
            return True
        if self.get_phone_verification(conn, account_id) is not None:
            return False
        conn.execute(_phone_verifications.insert().values(account_id=account_id, **values))
        return True

    def record_failed_attempt(self, conn: Connection, account_id: int, max_attempts: int) -> Optional[int]:
        """Atomically count one failed check and return the new attempt count.

        Returns None if the artifact is gone or already exhausted.
        """
        result = conn.execute(
            _phone_verifications.update()
            .where(
                (_phone_verifications.c.account_id == account_id)
                & (_phone_verifications.c.attempts < max_attempts)
            )
            .values(attempts=_phone_verifications.c.attempts + 1)
        )
        if result.rowcount == 0:
            return None
        return conn.execute(
            select(_phone_verifications.c.attempts).where(_phone_verifications.c.account_id == account_id)
        ).scalar()

    def delete_phone_verification(
        self,
        conn: Connection,
        account_id: int,
        code: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """Delete the account's SMS artifact.

        With code/max_attempts the delete only happens while the artifact still
        holds that code and is not exhausted, which makes a successful check
        single use even under concurrent verifies.
        """
        condition = _phone_verifications.c.account_id == account_id
        if code is not None:
            condition = condition & (_phone_verifications.c.code == code)
        if max_attempts is not None:
            condition = condition & (_phone_verifications.c.attempts < max_attempts)
        return conn.execute(_phone_verifications.delete().where(condition)).rowcount > 0

    def ping(self, conn: Connection) -> bool:
        """Cheap liveness probe for the health endpoint."""
        return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        username=row.username,
        email=row.email,
        phone=row.phone,
        role=Role(row.role),
        status=AccountStatus(row.status),
        email_verified=bool(row.email_verified),
        phone_verified=bool(row.phone_verified),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_email_verification(row) -> EmailVerification:
    return EmailVerification(
        account_id=row.account_id,
        email=row.email,
        token=row.token,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
    )


def _row_to_phone_verification(row) -> PhoneVerification:
    return PhoneVerification(
        account_id=row.account_id,
        phone=row.phone,
        code=row.code,
        attempts=row.attempts,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
    )
