#!/usr/bin/env python3
"""Insert the default subscription plans; existing plans (matched by name) are left untouched."""
import argparse
from decimal import Decimal

import psycopg
from psycopg.rows import dict_row

from possaas.app.config import settings

DEFAULT_PLANS = [
    {
        "name": "Starter",
        "description": "One outlet for a small shop",
        "price": Decimal("99000"),
        "interval": "monthly",
        "max_stores": 1,
        "max_users": 3,
        "features": ["POS checkout", "Inventory", "Cash flow", "Receipts"],
    },
    {
        "name": "Business",
        "description": "Growing businesses with several outlets",
        "price": Decimal("249000"),
        "interval": "monthly",
        "max_stores": 3,
        "max_users": 10,
        "features": ["Everything in Starter", "Multi-store", "WhatsApp and Telegram alerts", "Custom theme"],
    },
    {
        "name": "Enterprise",
        "description": "Chains that need white-label branding",
        "price": Decimal("4990000"),
        "interval": "yearly",
        "max_stores": 20,
        "max_users": 100,
        "features": ["Everything in Business", "Custom domain", "White label", "Priority support"],
    },
]


def seed_plans(cur, currency: str) -> int:
    created = 0
    for plan in DEFAULT_PLANS:
        cur.execute(
            """
            INSERT INTO subscription_plans
              (id, name, description, price, currency, interval, max_stores, max_users, features, is_active)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, true)
            ON CONFLICT (name) DO NOTHING
            """,
            (
                plan["name"],
                plan["description"],
                plan["price"],
                currency,
                plan["interval"],
                plan["max_stores"],
                plan["max_users"],
                plan["features"],
            ),
        )
        created += cur.rowcount
    return created


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--currency", default=settings.default_currency)
    args = parser.parse_args()

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                created = seed_plans(cur, args.currency.upper())
    print(f"seed_plans: {created} created, {len(DEFAULT_PLANS) - created} already present")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
