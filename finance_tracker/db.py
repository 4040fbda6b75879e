import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import urlparse

try:
    import psycopg
    from psycopg.rows import tuple_row
except ImportError:  # pragma: no cover - dependency optional for sqlite-only environments
    psycopg = None
    tuple_row = None

INTEGRITY_ERRORS = (sqlite3.IntegrityError,) if psycopg is None else (sqlite3.IntegrityError, psycopg.IntegrityError)

# SQLite spellings used by the services, and what Postgres understands instead.
POSTGRES_REWRITES = (
    ("last_insert_rowid()", "lastval()"),
    ("BEGIN IMMEDIATE", "BEGIN"),
)


class Row:
    """Postgres result row readable by column name or position, like sqlite3.Row."""

    def __init__(self, columns, values):
        self._values = tuple(values)
        self._index = {name: position for position, name in enumerate(columns)}

    def __getitem__(self, key):
        if isinstance(key, str):
            return self._values[self._index[key]]
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def keys(self):
        return list(self._index)


class Cursor:
    def __init__(self, cursor, backend):
        self._cursor = cursor
        self._backend = backend

    @property
    def rowcount(self):
        return self._cursor.rowcount

    def fetchone(self):
        return self._wrap(self._cursor.fetchone())

    def fetchall(self):
        return [self._wrap(row) for row in self._cursor.fetchall()]

    def _wrap(self, row):
        if row is None or self._backend == "sqlite":
            return row
        return Row([column.name for column in self._cursor.description], row)


class Connection:
    """One database connection, whichever backend is configured.

    Services write SQLite-flavoured SQL with ``?`` placeholders; on Postgres
    it is rewritten before execution.
    """

    def __init__(self, conn, backend):
        self._conn = conn
        self.backend = backend
        self.transaction_depth = 0

    @property
    def in_transaction(self):
        if self.backend == "sqlite":
            return self._conn.in_transaction
        return self._conn.info.transaction_status != psycopg.pq.TransactionStatus.IDLE

    def execute(self, sql, params=None):
        sql, params = rewrite_sql(self.backend, sql, params)
        return Cursor(self._conn.execute(sql, params or ()), self.backend)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def is_postgres_url(value):
    return bool(value) and value.startswith(("postgresql://", "postgres://"))


def rewrite_sql(backend, sql, params):
    if backend != "postgres":
        return sql, params

    for sqlite_form, postgres_form in POSTGRES_REWRITES:
        sql = sql.replace(sqlite_form, postgres_form)
    sql = sql.replace("?", "%s")

    if params is None:
        params = ()
    elif not isinstance(params, (tuple, list, dict)):
        params = (params,)
    return sql, params


def parse_database_config(database_path=None):
    db_url = os.environ.get("DATABASE_URL", "").strip()
    if is_postgres_url(db_url):
        return {
            "backend": "postgres",
            "database_url": db_url,
            "database_name": urlparse(db_url).path.lstrip("/") or "postgres",
            "database_path": database_path,
        }

    return {
        "backend": "sqlite",
        "database_url": None,
        "database_name": Path(database_path).name if database_path else "sqlite",
        "database_path": database_path,
    }


def connect_db(config):
    if config["backend"] == "postgres":
        if psycopg is None:
            raise RuntimeError("psycopg is required when DATABASE_URL points to Postgres")
        return Connection(psycopg.connect(config["database_url"], row_factory=tuple_row), backend="postgres")

    db_path = config["database_path"]
    if db_path:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")
    return Connection(conn, backend="sqlite")


@contextmanager
def transaction(conn):
    """Run a block of statements as one unit of work.

    Commits when the block finishes, rolls back and re-raises when it fails.
    On SQLite the write lock is taken up front so a read-then-insert sequence
    cannot interleave with another writer. A nested block joins the enclosing
    one and leaves commit/rollback to it.
    """
    if conn.transaction_depth:
        yield conn
        return

    if conn.backend == "sqlite" and not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")
    conn.transaction_depth += 1
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.transaction_depth -= 1


def insert_returning_id(conn, sql, params):
    conn.execute(sql, params)
    return conn.execute("SELECT last_insert_rowid() AS id").fetchone()["id"]


def row_to_dict(row):
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


def is_unique_violation(exc):
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE constraint failed" in str(exc)
    return psycopg is not None and isinstance(exc, psycopg.errors.UniqueViolation)
