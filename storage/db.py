"""
storage/db.py

SQLite backend for the MedSeal verification and funding engine.

Schema
------
users                  — registered identities, keyed by id, unique identity token
verification_requests  — doctor / NGO credential submissions
patient_cases          — case metadata in the clear + encrypted case detail
contribution_pools     — one pool per approved case
contributions          — append-only pledges
settings               — process-wide flags (the singleton-admin marker)
audit_log              — append-only action log

Each record is stored as its pydantic JSON dump next to the handful of
columns the workflows filter on.  Patient case detail is only ever persisted
inside patient_cases.encrypted_blob, encrypted by storage.crypto.

Usage
-----
    from storage.db import Store
    store = Store()             # data/medseal.db, or $MEDSEAL_DB_PATH
    store = Store(":memory:")   # isolated store, e.g. per test

Operations read or replace a single record.  Callers that must update two
records together wrap the calls in :meth:`Store.transaction`, which holds the
store lock and one SQLite transaction for the whole block.
"""

import logging
import os
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from storage.crypto import decrypt_json, encrypt_json, get_fernet
from storage.models import (
    AuditEntry,
    CaseStatus,
    Contribution,
    ContributionPool,
    PatientCase,
    User,
    UserRole,
    VerificationRequest,
    VerificationStatus,
    VerificationType,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database location
# ---------------------------------------------------------------------------

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_ENV_PATH_NAME = "MEDSEAL_DB_PATH"
_ADMIN_FLAG = "admin_exists"


def default_db_path() -> Path:
    """Return $MEDSEAL_DB_PATH, or data/medseal.db under the project root."""
    raw = os.environ.get(_ENV_PATH_NAME)
    if raw:
        return Path(raw)
    return _PROJECT_ROOT / "data" / "medseal.db"


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id        TEXT PRIMARY KEY,
    identity  TEXT NOT NULL UNIQUE,          -- opaque caller token
    role      TEXT NOT NULL CHECK(role IN ('doctor', 'patient', 'admin', 'ngo')),
    data      TEXT NOT NULL                  -- User JSON
);

CREATE TABLE IF NOT EXISTS verification_requests (
    id                TEXT PRIMARY KEY,
    requester_id      TEXT NOT NULL REFERENCES users(id),
    verification_type TEXT NOT NULL,
    status            TEXT NOT NULL,
    submitted_at      TEXT NOT NULL,
    data              TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patient_cases (
    id             TEXT PRIMARY KEY,
    patient_id     TEXT NOT NULL REFERENCES users(id),
    status         TEXT NOT NULL,
    created_at     TEXT NOT NULL,
    encrypted_blob TEXT NOT NULL             -- Fernet token from crypto.py
);

CREATE TABLE IF NOT EXISTS contribution_pools (
    id           TEXT PRIMARY KEY,
    case_id      TEXT NOT NULL UNIQUE REFERENCES patient_cases(id),
    ngo_id       TEXT NOT NULL REFERENCES users(id),
    is_active    INTEGER NOT NULL,
    is_completed INTEGER NOT NULL,
    created_at   TEXT NOT NULL,
    data         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contributions (
    id             TEXT PRIMARY KEY,
    pool_id        TEXT NOT NULL REFERENCES contribution_pools(id),
    contributor    TEXT NOT NULL,
    contributed_at TEXT NOT NULL,
    data           TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    actor     TEXT NOT NULL,
    action    TEXT NOT NULL,
    entity_id TEXT,
    timestamp TEXT NOT NULL                 -- ISO-8601 UTC
);
"""


def _now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


def _sql_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class Store:
    """
    Keyed collections for users, verification requests, cases, pools and
    contributions, plus the singleton-admin flag.

    One connection is shared by all callers and guarded by a re-entrant lock,
    so a store operation (or a :meth:`transaction` block) runs to completion
    before any other thread touches the database.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        data_key: str | bytes | None = None,
    ) -> None:
        self.path = str(path) if path is not None else str(default_db_path())
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._fernet = get_fernet(data_key)
        self._lock = threading.RLock()
        self._depth = 0
        # isolation_level=None: transactions are managed by transaction().
        self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self.init_db()

    def init_db(self) -> None:
        """Create all tables if they do not already exist (idempotent)."""
        with self._lock:
            self._conn.executescript(_DDL)
        logger.info("Database initialised at %s", self.path)

    def close(self) -> None:
        """Close the underlying connection; the store is unusable afterwards."""
        with self._lock:
            self._conn.close()

    # -----------------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of store calls as one unit.

        Nested blocks join the outermost transaction.  An exception escaping
        the outermost block rolls back every write made inside it.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._conn.execute("COMMIT")

    def _select(self, table: str, **filters: Any) -> list[sqlite3.Row]:
        """
        SELECT rows from *table* matching every non-None filter.

        A list/tuple/set filter value becomes an ``IN`` clause.
        """
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple, set, frozenset)):
                values = [_sql_value(v) for v in value]
                if not values:
                    return []
                clauses.append(f"{column} IN ({', '.join('?' * len(values))})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(_sql_value(value))

        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY rowid"

        with self.transaction() as conn:
            return conn.execute(sql, params).fetchall()

    # -----------------------------------------------------------------------
    # Users and identities
    # -----------------------------------------------------------------------

    def store_user(self, user: User) -> None:
        """Insert *user* or replace the stored copy with the same id."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, identity, role, data) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    identity = excluded.identity,
                    role     = excluded.role,
                    data     = excluded.data
                """,
                (user.id, user.identity, user.role.value, user.model_dump_json()),
            )
        logger.debug("Stored user id=%s role=%s", user.id, user.role.value)

    def get_user(self, user_id: str) -> User | None:
        """
        Retrieve a user by id.

        Args:
            user_id: The user's id, e.g. ``'user_3f2a...'``.

        Returns:
            The stored :class:`User`, or ``None`` if not found.
        """

        rows = self._select("users", id=user_id)
        return User.model_validate_json(rows[0]["data"]) if rows else None

    def get_user_by_identity(self, identity: str) -> User | None:
        """Resolve a caller identity token to its user, or ``None``."""
        rows = self._select("users", identity=identity)
        return User.model_validate_json(rows[0]["data"]) if rows else None

    def identity_has_account(self, identity: str) -> bool:
        """Return ``True`` if *identity* is already mapped to a user."""
        return bool(self._select("users", identity=identity))

    def list_users(self, role: UserRole | None = None) -> list[User]:
        """
        Return users in registration order.

        Args:
            role: Only return users with this role; all users when ``None``.

        Returns:
            List of :class:`User` models.
        """

        return [User.model_validate_json(r["data"]) for r in self._select("users", role=role)]

    def admin_exists(self) -> bool:
        """Return ``True`` once an admin has ever been registered in this store."""
        rows = self._select("settings", key=_ADMIN_FLAG)
        return bool(rows) and rows[0]["value"] == "1"

    def set_admin_exists(self, exists: bool) -> None:
        """Persist the singleton-admin flag."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_ADMIN_FLAG, "1" if exists else "0"),
            )

    # -----------------------------------------------------------------------
    # Verification requests
    # -----------------------------------------------------------------------

    def store_verification_request(self, request: VerificationRequest) -> None:
        """
        Insert *request* or replace the stored copy with the same id.

        Only ``status`` and the JSON body change on replace; the requester,
        type and submission time are fixed at first insert.
        """

        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO verification_requests
                    (id, requester_id, verification_type, status, submitted_at, data)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    data   = excluded.data
                """,
                (
                    request.id,
                    request.requester_id,
                    request.verification_type.value,
                    request.status.value,
                    request.submitted_at.isoformat(),
                    request.model_dump_json(),
                ),
            )

    def get_verification_request(self, request_id: str) -> VerificationRequest | None:
        """
        Retrieve a verification request by id.

        Returns:
            The stored :class:`VerificationRequest`, or ``None`` if not found.
        """

        rows = self._select("verification_requests", id=request_id)
        return VerificationRequest.model_validate_json(rows[0]["data"]) if rows else None

    def list_verification_requests(
        self,
        status: VerificationStatus | None = None,
        verification_type: VerificationType | None = None,
        requester_id: str | None = None,
    ) -> list[VerificationRequest]:
        """
        Return verification requests matching every given filter, oldest first.

        Args:
            status:            Only requests in this status.
            verification_type: Only doctor or only NGO requests.
            requester_id:      Only requests filed by this user.
        """
        rows = self._select(
            "verification_requests",
            status=status,
            verification_type=verification_type,
            requester_id=requester_id,
        )
        return [VerificationRequest.model_validate_json(r["data"]) for r in rows]

    # -----------------------------------------------------------------------
    # Patient cases
    # -----------------------------------------------------------------------

    def store_case(self, case: PatientCase) -> None:
        """Insert or replace *case*; its detail is encrypted before storage."""
        encrypted = encrypt_json(case.model_dump(mode="json"), self._fernet)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO patient_cases (id, patient_id, status, created_at, encrypted_blob)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status         = excluded.status,
                    encrypted_blob = excluded.encrypted_blob
                """,
                (
                    case.id,
                    case.patient_id,
                    case.status.value,
                    case.created_at.isoformat(),
                    encrypted,
                ),
            )

    def _case_from_row(self, row: sqlite3.Row) -> PatientCase:
        return PatientCase.model_validate(decrypt_json(row["encrypted_blob"], self._fernet))

    def get_case(self, case_id: str) -> PatientCase | None:
        """
        Retrieve and decrypt a patient case.

        Args:
            case_id: The case id.

        Returns:
            The decrypted :class:`PatientCase`, or ``None`` if not found.

        Raises:
            cryptography.fernet.InvalidToken: If the case was written under a
                different key.
        """

        rows = self._select("patient_cases", id=case_id)
        return self._case_from_row(rows[0]) if rows else None

    def list_cases(
        self,
        statuses: list[CaseStatus] | None = None,
        patient_id: str | None = None,
    ) -> list[PatientCase]:
        """
        Return decrypted cases, oldest first.

        Args:
            statuses:   Only cases in one of these statuses; an empty list
                        matches nothing.
            patient_id: Only cases filed by this patient.
        """
        rows = self._select("patient_cases", status=statuses, patient_id=patient_id)
        return [self._case_from_row(r) for r in rows]

    # -----------------------------------------------------------------------
    # Contribution pools
    # -----------------------------------------------------------------------

    def store_pool(self, pool: ContributionPool) -> None:
        """
        Insert *pool* or replace the stored copy with the same id.

        Raises:
            sqlite3.IntegrityError: If a different pool already exists for
                ``pool.case_id``.
        """

        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO contribution_pools
                    (id, case_id, ngo_id, is_active, is_completed, created_at, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    is_active    = excluded.is_active,
                    is_completed = excluded.is_completed,
                    data         = excluded.data
                """,
                (
                    pool.id,
                    pool.case_id,
                    pool.ngo_id,
                    int(pool.is_active),
                    int(pool.is_completed),
                    pool.created_at.isoformat(),
                    pool.model_dump_json(),
                ),
            )

    def get_pool(self, pool_id: str) -> ContributionPool | None:
        """Return the pool with *pool_id*, or ``None``."""
        rows = self._select("contribution_pools", id=pool_id)
        return ContributionPool.model_validate_json(rows[0]["data"]) if rows else None

    def get_pool_by_case(self, case_id: str) -> ContributionPool | None:
        """Return the pool opened for *case_id*, or ``None`` if it has none."""
        rows = self._select("contribution_pools", case_id=case_id)
        return ContributionPool.model_validate_json(rows[0]["data"]) if rows else None

    def list_pools(
        self,
        ngo_id: str | None = None,
        active_only: bool = False,
    ) -> list[ContributionPool]:
        """Return pools, optionally only those still accepting contributions."""
        filters: dict[str, Any] = {"ngo_id": ngo_id}
        if active_only:
            filters.update(is_active=True, is_completed=False)
        rows = self._select("contribution_pools", **filters)
        return [ContributionPool.model_validate_json(r["data"]) for r in rows]

    # -----------------------------------------------------------------------
    # Contributions
    # -----------------------------------------------------------------------

    def store_contribution(self, contribution: Contribution) -> None:
        """
        Append *contribution*.

        Raises:
            sqlite3.IntegrityError: If a contribution with the same id exists.
        """
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO contributions (id, pool_id, contributor, contributed_at, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    contribution.id,
                    contribution.pool_id,
                    contribution.contributor,
                    contribution.contributed_at.isoformat(),
                    contribution.model_dump_json(),
                ),
            )

    def list_contributions(
        self,
        pool_id: str | None = None,
        contributor: str | None = None,
    ) -> list[Contribution]:
        """Return contributions to *pool_id* and/or from *contributor*, in arrival order."""
        rows = self._select("contributions", pool_id=pool_id, contributor=contributor)
        return [Contribution.model_validate_json(r["data"]) for r in rows]

    # -----------------------------------------------------------------------
    # Audit log
    # -----------------------------------------------------------------------

    def append_audit(self, actor: str, action: str, entity_id: str | None = None) -> None:
        """
        Append an entry to the audit log.

        Called inside a workflow's transaction the entry commits or rolls
        back together with the change it describes.

        Args:
            actor:     User id (or caller identity) performing the action.
            action:    Short snake_case label, e.g. ``'pool_created'``.
            entity_id: The record the action touched, if any.
        """
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_log (actor, action, entity_id, timestamp) VALUES (?, ?, ?, ?)",
                (actor, action, entity_id, _now()),
            )
        logger.debug("Audit: actor=%s action=%s entity=%s", actor, action, entity_id)

    def list_audit(self, entity_id: str | None = None) -> list[AuditEntry]:
        """
        Return audit entries, oldest first.

        Args:
            entity_id: Only return entries for this record when given.
        """

        return [AuditEntry(**dict(r)) for r in self._select("audit_log", entity_id=entity_id)]
