#!/usr/bin/env python3
"""Create the first platform administrator from env. Safe to run on every deploy."""
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from possaas.app.security import hash_password


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@possaas.local").strip().lower()
    if not email:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_EMAIL is empty", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    generated = not password
    if generated:
        password = secrets.token_urlsafe(16)

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id, role FROM users WHERE email = %s", (email,))
                row = cur.fetchone()
                if row:
                    if row["role"] != "administrator":
                        print(f"bootstrap_admin: {email} exists with role {row['role']}", file=sys.stderr)
                        return 2
                    return 0
                cur.execute(
                    """
                    INSERT INTO users (id, tenant_id, email, username, first_name, password_hash, role, is_active)
                    VALUES (gen_random_uuid(), NULL, %s, %s, 'Administrator', %s, 'administrator', true)
                    """,
                    (email, email.split("@", 1)[0], hash_password(password)),
                )

    print("BOOTSTRAP_ADMIN_CREATED")
    print(f"email: {email}")
    print(f"password: {password}" if generated else "password: (provided via BOOTSTRAP_ADMIN_PASSWORD)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
