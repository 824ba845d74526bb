import argparse
import os
import sqlite3
import sys
import time

import psycopg2
from psycopg2.extras import execute_values

from . import db

TABLE_SPECS = [
    ("settings", ["key", "value"], None),
    ("state", ["key", "value"], None),
    ("job_status", ["job_name", "last_run_at", "last_success_at", "last_error", "last_error_at"], None),
    ("usage_log", ["id", "timestamp", "package_name", "used_gb", "vas_used_gb", "raw_json"], "id"),
]


def _env(name, default=""):
    return (os.environ.get(name) or default or "").strip()


def _iter_batches(cursor, batch_size):
    while True:
        rows = cursor.fetchmany(batch_size)
        if not rows:
            return
        yield rows


def copy_table(sqlite_con, pg_con, table, cols, id_col=None, batch_size=5000, verbose=False):
    col_sql = ", ".join(cols)
    insert_sql = f"INSERT INTO {table} ({col_sql}) VALUES %s"
    started = time.time()
    copied = 0
    with pg_con.cursor() as pcur:
        for rows in _iter_batches(sqlite_con.execute(f"SELECT {col_sql} FROM {table}"), batch_size):
            execute_values(pcur, insert_sql, [tuple(row[col] for col in cols) for row in rows], page_size=batch_size)
            copied += len(rows)
        if id_col:
            # Explicit ids bypass the sequence; move it past the copied rows.
            pcur.execute(
                f"SELECT setval(pg_get_serial_sequence(%s, %s), COALESCE(MAX({id_col}), 1), MAX({id_col}) IS NOT NULL) FROM {table}",
                (table, id_col),
            )
    pg_con.commit()
    if verbose:
        print(f"[{table}] copied {copied} rows in {time.time() - started:.1f}s")
    return copied


def main(argv=None):
    parser = argparse.ArgumentParser(description="Copy SLT usage monitor data from SQLite into Postgres.")
    parser.add_argument("--sqlite-path", default=_env("SLTMON_DB_PATH", "/data/sltmon.db"))
    parser.add_argument("--postgres-dsn", default=_env("SLTMON_DATABASE_URL", ""))
    parser.add_argument("--batch-size", type=int, default=int(_env("SLTMON_MIGRATE_BATCH", "5000") or 5000))
    parser.add_argument("--no-truncate", action="store_true", help="Keep existing Postgres rows.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    if not args.postgres_dsn:
        print("ERROR: SLTMON_DATABASE_URL is not set.", file=sys.stderr)
        return 2
    if not os.path.exists(args.sqlite_path):
        print(f"ERROR: SQLite db not found at {args.sqlite_path}", file=sys.stderr)
        return 2

    db.DB_URL = args.postgres_dsn
    db.init_db()

    sqlite_con = sqlite3.connect(args.sqlite_path)
    sqlite_con.row_factory = sqlite3.Row
    pg_con = psycopg2.connect(args.postgres_dsn)
    try:
        if not args.no_truncate:
            with pg_con.cursor() as cur:
                cur.execute("TRUNCATE TABLE " + ", ".join(spec[0] for spec in TABLE_SPECS) + " RESTART IDENTITY")
            pg_con.commit()
        for table, cols, id_col in TABLE_SPECS:
            copy_table(sqlite_con, pg_con, table, cols, id_col, max(args.batch_size, 100), args.verbose)
    finally:
        sqlite_con.close()
        pg_con.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
