"""Database access shared by the repositories.

SQLite is used for development and tests; PostgreSQL (via ``psycopg2``) when
``PGHOST`` is configured.  Repository queries are written with ``?``
placeholders and translated for PostgreSQL by :meth:`DatabaseBackend.sql`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

try:  # pragma: no cover - optional dependency in pure-SQLite environments
    import psycopg2
    from psycopg2.extras import RealDictCursor
except Exception:  # pragma: no cover - psycopg2 may be missing for tests
    psycopg2 = None  # type: ignore[assignment]
    RealDictCursor = None  # type: ignore[assignment]

from config.settings import settings

logger = logging.getLogger(__name__)


DDL_SQLITE = """
CREATE TABLE IF NOT EXISTS vendors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT,
    address TEXT,
    category TEXT,
    rating REAL NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_vendors_email ON vendors (email);

CREATE TABLE IF NOT EXISTS solicitations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    budget REAL NOT NULL,
    delivery_timeline TEXT NOT NULL,
    items TEXT NOT NULL DEFAULT '[]',
    payment_terms TEXT,
    warranty_requirements TEXT,
    additional_requirements TEXT,
    status TEXT NOT NULL DEFAULT 'draft',
    sent_to TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS proposals (
    id TEXT PRIMARY KEY,
    solicitation_id TEXT NOT NULL REFERENCES solicitations (id) ON DELETE CASCADE,
    vendor_id TEXT NOT NULL,
    raw_content TEXT NOT NULL,
    parsed_data TEXT,
    ai_analysis TEXT,
    message_id TEXT,
    received_at TEXT,
    email_subject TEXT,
    email_from TEXT,
    attachments TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'received',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_proposals_solicitation_vendor
    ON proposals (solicitation_id, vendor_id);

CREATE TABLE IF NOT EXISTS email_logs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    solicitation_id TEXT REFERENCES solicitations (id) ON DELETE CASCADE,
    vendor_id TEXT,
    direction TEXT NOT NULL,
    subject TEXT,
    body TEXT,
    from_address TEXT,
    to_address TEXT,
    message_id TEXT,
    outcome TEXT NOT NULL DEFAULT 'success',
    error TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_email_logs_vendor_direction
    ON email_logs (vendor_id, direction, outcome, created_at);

CREATE INDEX IF NOT EXISTS idx_email_logs_solicitation
    ON email_logs (solicitation_id);
"""

DDL_PG = """
CREATE TABLE IF NOT EXISTS vendors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT,
    address TEXT,
    category TEXT,
    rating DOUBLE PRECISION NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_vendors_email ON vendors (email);

CREATE TABLE IF NOT EXISTS solicitations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    budget DOUBLE PRECISION NOT NULL,
    delivery_timeline TEXT NOT NULL,
    items JSONB NOT NULL DEFAULT '[]'::jsonb,
    payment_terms TEXT,
    warranty_requirements TEXT,
    additional_requirements TEXT,
    status TEXT NOT NULL DEFAULT 'draft',
    sent_to JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS proposals (
    id TEXT PRIMARY KEY,
    solicitation_id TEXT NOT NULL REFERENCES solicitations (id) ON DELETE CASCADE,
    vendor_id TEXT NOT NULL,
    raw_content TEXT NOT NULL,
    parsed_data JSONB,
    ai_analysis JSONB,
    message_id TEXT,
    received_at TIMESTAMPTZ,
    email_subject TEXT,
    email_from TEXT,
    attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
    status TEXT NOT NULL DEFAULT 'received',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_proposals_solicitation_vendor
    ON proposals (solicitation_id, vendor_id);

CREATE TABLE IF NOT EXISTS email_logs (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    solicitation_id TEXT REFERENCES solicitations (id) ON DELETE CASCADE,
    vendor_id TEXT,
    direction TEXT NOT NULL,
    subject TEXT,
    body TEXT,
    from_address TEXT,
    to_address TEXT,
    message_id TEXT,
    outcome TEXT NOT NULL DEFAULT 'success',
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_email_logs_vendor_direction
    ON email_logs (vendor_id, direction, outcome, created_at);

CREATE INDEX IF NOT EXISTS idx_email_logs_solicitation
    ON email_logs (solicitation_id);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_datetime(value: Optional[object]) -> Optional[datetime]:
    """Return ``value`` as a timezone-aware datetime (UTC when naive)."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def load_json(value: Any, default: Any) -> Any:
    """Decode JSON columns stored as TEXT (SQLite) or JSONB (PostgreSQL)."""

    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON column value %r", value)
        return default


def dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


class DatabaseBackend:
    """Simple abstraction that hides the PostgreSQL/SQLite differences."""

    def __init__(
        self,
        *,
        database_path: Optional[str] = None,
        use_postgres: Optional[bool] = None,
    ) -> None:
        if use_postgres is None:
            use_postgres = settings.uses_postgres
        if use_postgres:
            if psycopg2 is None:  # pragma: no cover - installation guard
                raise RuntimeError("psycopg2 is required for PostgreSQL connections")
            self.dialect = "postgres"
        else:
            self.dialect = "sqlite"
        self.database_path = database_path or settings.database_path

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _connect(self):
        if self.dialect == "postgres":
            return psycopg2.connect(
                host=settings.pghost,
                port=settings.pgport,
                dbname=settings.pgdatabase,
                user=settings.pguser,
                password=settings.pgpassword,
                sslmode=settings.pgsslmode or None,
            )
        conn = sqlite3.connect(self.database_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_conn(self) -> Iterator[Any]:
        """Yield a connection committed on success and rolled back on error."""

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _cursor(self, conn):
        if self.dialect == "postgres":
            return conn.cursor(cursor_factory=RealDictCursor)
        return conn.cursor()

    def sql(self, query: str) -> str:
        if self.dialect == "postgres":
            return query.replace("?", "%s")
        return query

    def param(self, value: Any) -> Any:
        """Adapt Python values that SQLite cannot store natively."""

        if self.dialect == "sqlite" and isinstance(value, datetime):
            return value.astimezone(timezone.utc).isoformat()
        return value

    # ------------------------------------------------------------------
    # Schema helpers
    # ------------------------------------------------------------------
    def ensure_schema(self) -> None:
        ddl = DDL_PG if self.dialect == "postgres" else DDL_SQLITE
        with self.get_conn() as conn:
            if self.dialect == "sqlite":
                conn.executescript(ddl)
                return
            cursor = conn.cursor()
            try:
                cursor.execute(ddl)
            finally:
                cursor.close()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""

        with self.get_conn() as conn:
            cursor = self._cursor(conn)
            try:
                cursor.execute(self.sql(query), tuple(self.param(p) for p in params))
                return cursor.rowcount
            finally:
                cursor.close()

    def fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.get_conn() as conn:
            cursor = self._cursor(conn)
            try:
                cursor.execute(self.sql(query), tuple(self.param(p) for p in params))
                row = cursor.fetchone()
            finally:
                cursor.close()
        return dict(row) if row is not None else None

    def fetchall(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.get_conn() as conn:
            cursor = self._cursor(conn)
            try:
                cursor.execute(self.sql(query), tuple(self.param(p) for p in params))
                rows = cursor.fetchall()
            finally:
                cursor.close()
        return [dict(row) for row in rows]

    def is_unique_violation(self, exc: BaseException) -> bool:
        if isinstance(exc, sqlite3.IntegrityError):
            return "UNIQUE" in str(exc).upper()
        if psycopg2 is not None and isinstance(exc, psycopg2.IntegrityError):
            return getattr(exc, "pgcode", None) == "23505"
        return False


__all__ = [
    "DatabaseBackend",
    "coerce_datetime",
    "dump_json",
    "load_json",
    "utcnow",
]
