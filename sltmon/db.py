import json
import os
import sqlite3
import threading
from datetime import datetime, timezone

DB_PATH = os.environ.get("SLTMON_DB_PATH", "/data/sltmon.db")
DB_URL = (os.environ.get("SLTMON_DATABASE_URL") or os.environ.get("DATABASE_URL") or "").strip()

_pg_pool = None
_pg_pool_lock = threading.Lock()


def _use_postgres():
    url = (DB_URL or "").lower()
    return url.startswith(("postgres://", "postgresql://"))


def _translate_qmarks(sql):
    # psycopg2 wants "%s"; leave "?" inside quoted literals alone.
    parts = str(sql).split("'")
    for index in range(0, len(parts), 2):
        parts[index] = parts[index].replace("?", "%s")
    return "'".join(parts)


class _PGResult:
    def __init__(self, cursor=None):
        self._cursor = cursor

    def _drain(self, many):
        if self._cursor is None:
            return [] if many else None
        try:
            return self._cursor.fetchall() if many else self._cursor.fetchone()
        finally:
            self._cursor.close()
            self._cursor = None

    def fetchone(self):
        return self._drain(False)

    def fetchall(self):
        return self._drain(True)


class _PGConn:
    """Gives a pooled psycopg2 connection the sqlite3 calling convention used below."""

    def __init__(self, pool, conn):
        self._pool = pool
        self._conn = conn

    def __enter__(self):
        self._conn.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        return self._conn.__exit__(exc_type, exc, tb)

    def execute(self, sql, params=None):
        from psycopg2.extras import RealDictCursor

        cur = self._conn.cursor(cursor_factory=RealDictCursor)
        try:
            cur.execute(_translate_qmarks(sql), tuple(params or ()))
        except Exception:
            cur.close()
            raise
        if cur.description is None:
            cur.close()
            return _PGResult()
        return _PGResult(cur)

    def close(self):
        try:
            self._conn.rollback()
        finally:
            self._pool.putconn(self._conn)


def _get_pg_pool():
    global _pg_pool
    if _pg_pool is not None:
        return _pg_pool
    with _pg_pool_lock:
        if _pg_pool is None:
            from psycopg2.pool import ThreadedConnectionPool

            minconn = max(int(os.environ.get("SLTMON_PG_POOL_MIN", 1) or 1), 1)
            maxconn = max(int(os.environ.get("SLTMON_PG_POOL_MAX", 4) or 4), minconn)
            _pg_pool = ThreadedConnectionPool(minconn, maxconn, dsn=DB_URL)
        return _pg_pool


def get_conn():
    if _use_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        conn.autocommit = False
        return _PGConn(pool, conn)
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    if _use_postgres():
        id_column = "id BIGSERIAL PRIMARY KEY"
        number_type = "DOUBLE PRECISION"
    else:
        directory = os.path.dirname(DB_PATH)
        if directory:
            os.makedirs(directory, exist_ok=True)
        id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT"
        number_type = "REAL"

    conn = get_conn()
    try:
        with conn:
            conn.execute("CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
            conn.execute("CREATE TABLE IF NOT EXISTS state (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS job_status (
                    job_name TEXT PRIMARY KEY,
                    last_run_at TEXT,
                    last_success_at TEXT,
                    last_error TEXT,
                    last_error_at TEXT
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS usage_log (
                    {id_column},
                    timestamp TEXT NOT NULL,
                    package_name TEXT,
                    used_gb {number_type},
                    vas_used_gb {number_type},
                    raw_json TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_log_timestamp ON usage_log (timestamp)")
    finally:
        conn.close()


def utc_iso(value):
    """Format an instant the way rows store it: millisecond precision, trailing Z.

    Every timestamp column is compared as text, so all writers and range
    queries must go through this one format.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"


def utc_now_iso():
    return utc_iso(datetime.now(timezone.utc))


def get_json(table, key, default):
    conn = get_conn()
    try:
        row = conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
    finally:
        conn.close()
    if not row:
        return default
    try:
        return json.loads(row["value"])
    except json.JSONDecodeError:
        return default


def set_json(table, key, value):
    payload = json.dumps(value, ensure_ascii=True)
    conn = get_conn()
    try:
        with conn:
            conn.execute(
                f"INSERT INTO {table} (key, value) VALUES (?, ?)"
                " ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, payload),
            )
    finally:
        conn.close()


def update_job_status(job_name, last_run_at=None, last_success_at=None, last_error=None, last_error_at=None):
    conn = get_conn()
    try:
        existing = conn.execute("SELECT * FROM job_status WHERE job_name = ?", (job_name,)).fetchone()
        current = dict(existing) if existing else {}
        updates = {
            "last_run_at": last_run_at,
            "last_success_at": last_success_at,
            "last_error": last_error,
            "last_error_at": last_error_at,
        }
        merged = {key: value if value is not None else current.get(key) for key, value in updates.items()}
        with conn:
            conn.execute(
                """
                INSERT INTO job_status (job_name, last_run_at, last_success_at, last_error, last_error_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(job_name) DO UPDATE SET
                    last_run_at = excluded.last_run_at,
                    last_success_at = excluded.last_success_at,
                    last_error = excluded.last_error,
                    last_error_at = excluded.last_error_at
                """,
                (
                    job_name,
                    merged["last_run_at"],
                    merged["last_success_at"],
                    merged["last_error"],
                    merged["last_error_at"],
                ),
            )
    finally:
        conn.close()


def get_job_status():
    conn = get_conn()
    try:
        rows = conn.execute("SELECT * FROM job_status ORDER BY job_name").fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def insert_usage_row(record):
    """Append one normalized usage record; ``record["raw"]`` is stored verbatim as JSON."""
    conn = get_conn()
    try:
        with conn:
            conn.execute(
                """
                INSERT INTO usage_log (timestamp, package_name, used_gb, vas_used_gb, raw_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record["timestamp"],
                    record.get("package_name"),
                    record.get("used_gb"),
                    record.get("vas_used_gb"),
                    json.dumps(record.get("raw"), ensure_ascii=True),
                ),
            )
    finally:
        conn.close()


def get_usage_rows_since(since_iso):
    conn = get_conn()
    try:
        rows = conn.execute(
            """
            SELECT id, timestamp, package_name, used_gb, vas_used_gb
            FROM usage_log
            WHERE timestamp >= ?
            ORDER BY timestamp DESC, id DESC
            """,
            (since_iso,),
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def get_usage_rows_between(start_iso, end_iso):
    conn = get_conn()
    try:
        rows = conn.execute(
            """
            SELECT timestamp, used_gb, vas_used_gb
            FROM usage_log
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp ASC, id ASC
            """,
            (start_iso, end_iso),
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def get_latest_usage_row_between(start_iso, end_iso):
    conn = get_conn()
    try:
        row = conn.execute(
            """
            SELECT timestamp, package_name, used_gb, vas_used_gb
            FROM usage_log
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp DESC, id DESC
            LIMIT 1
            """,
            (start_iso, end_iso),
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()
