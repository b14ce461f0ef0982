#!/usr/bin/env python3
"""Apply `possaas/db/migrations/*.sql` in file-name order, once each."""
import argparse
from pathlib import Path

import psycopg
from psycopg.rows import dict_row

from possaas.app.config import settings

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"


def pending_migrations(applied: set, directory: Path = MIGRATIONS_DIR):
    return [p for p in sorted(directory.glob("*.sql")) if p.name not in applied]


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    args = parser.parse_args()

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                  name text PRIMARY KEY,
                  applied_at timestamptz NOT NULL DEFAULT now()
                )
                """
            )
        applied = {r["name"] for r in conn.execute("SELECT name FROM schema_migrations").fetchall()}
        for path in pending_migrations(applied):
            with conn.transaction():
                conn.execute(path.read_text(encoding="utf-8"))
                conn.execute("INSERT INTO schema_migrations (name) VALUES (%s)", (path.name,))
            print(f"migrate: applied {path.name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
