#!/usr/bin/env python3
"""
Subscription lifecycle worker.

One pass:
- marks active subscriptions whose end_date has passed as `expired` (and their
  tenant as `expired` when no other active subscription remains),
- moves tenants whose trial ended without a subscription to `expired`,
- sends a payment reminder for subscriptions ending within REMINDER_DAYS.

Run once, or continuously with `--loop`.
"""

import argparse
import sys
import time
import traceback
from datetime import datetime, timezone

import psycopg
from psycopg.rows import dict_row

from possaas.app.config import settings
from possaas.app.logs import json_log
from possaas.app.notifications import notification_service


def expire_subscriptions(cur, now: datetime) -> int:
    cur.execute(
        """
        UPDATE subscriptions
        SET status = 'expired', updated_at = now()
        WHERE status = 'active' AND end_date IS NOT NULL AND end_date < %s
        RETURNING tenant_id
        """,
        (now,),
    )
    tenant_ids = sorted({str(r["tenant_id"]) for r in cur.fetchall()})
    for tenant_id in tenant_ids:
        cur.execute(
            """
            UPDATE tenants
            SET status = 'expired', updated_at = now()
            WHERE id = %s AND status = 'active'
              AND NOT EXISTS (
                SELECT 1 FROM subscriptions s WHERE s.tenant_id = tenants.id AND s.status = 'active'
              )
            """,
            (tenant_id,),
        )
    return len(tenant_ids)


def expire_trials(cur, now: datetime) -> int:
    cur.execute(
        """
        UPDATE tenants
        SET status = 'expired', updated_at = now()
        WHERE status = 'trial' AND trial_ends_at IS NOT NULL AND trial_ends_at < %s
          AND NOT EXISTS (
            SELECT 1 FROM subscriptions s WHERE s.tenant_id = tenants.id AND s.status = 'active'
          )
        """,
        (now,),
    )
    return cur.rowcount


def due_reminders(cur, now: datetime, days: int):
    cur.execute(
        """
        SELECT s.id, s.end_date, p.name AS plan_name, p.price, p.currency,
               u.email, u.phone, u.telegram_chat_id
        FROM subscriptions s
        JOIN subscription_plans p ON p.id = s.plan_id
        JOIN users u ON u.tenant_id = s.tenant_id AND u.role = 'owner' AND u.is_active = true
        WHERE s.status = 'active'
          AND s.end_date BETWEEN %s AND %s + make_interval(days => %s)
          AND (s.reminder_sent_at IS NULL OR s.reminder_sent_at < s.end_date - make_interval(days => %s))
        ORDER BY s.end_date
        """,
        (now, now, days, days),
    )
    return cur.fetchall()


def send_reminders(cur, now: datetime, days: int) -> int:
    sent = 0
    for r in due_reminders(cur, now, days):
        result = notification_service.send_payment_reminder(
            r, plan_name=r["plan_name"], amount=r["price"], currency=r["currency"], due_date=r["end_date"]
        )
        if any(result.values()):
            cur.execute("UPDATE subscriptions SET reminder_sent_at = %s WHERE id = %s", (now, r["id"]))
            sent += 1
    return sent


def run_once(db_url: str, reminder_days: int) -> dict:
    now = datetime.now(timezone.utc)
    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                expired = expire_subscriptions(cur, now)
                trials = expire_trials(cur, now)
        with conn.transaction():
            with conn.cursor() as cur:
                reminded = send_reminders(cur, now, reminder_days)
    stats = {"expired_tenants": expired, "expired_trials": trials, "reminders_sent": reminded}
    json_log("info", "worker.subscription_lifecycle.pass", **stats)
    return stats


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--reminder-days", type=int, default=settings.reminder_days)
    parser.add_argument("--loop", action="store_true", help="Keep running, one pass per --sleep seconds")
    parser.add_argument("--sleep", type=float, default=3600.0)
    args = parser.parse_args()

    while True:
        try:
            run_once(args.db, args.reminder_days)
        except psycopg.Error as ex:
            if not args.loop:
                raise
            json_log("error", "worker.subscription_lifecycle.error", error=str(ex))
            traceback.print_exc(file=sys.stderr)
        if not args.loop:
            break
        time.sleep(args.sleep)


if __name__ == "__main__":
    main()
