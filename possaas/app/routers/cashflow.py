from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_current_user, get_store_id, require_store_role
from ..pricing import q_money
from ..validation import CashFlowType, Money, OptionalId, PaymentStatus

router = APIRouter(prefix="/api/cash-flow", tags=["cash-flow"])

DEFAULT_CASH_FLOW_CATEGORIES = {
    "income": [
        ("Sales", "Income from sales."),
        ("Service Fees & Commissions", "Income from services or commissions."),
        ("Capital Injection", "Additional capital put into the business."),
        ("Debt Collection", "Repayments of money lent or instalments received."),
        ("Loan Received", "Borrowed money received for the business."),
        ("Payment Agent Transactions", "Income from acting as a payment agent."),
        ("Non-business Income", "Personal income unrelated to the business, such as gifts or grants."),
        ("Other Income", "Income that fits no other category."),
    ],
    "expense": [
        ("Stock Purchases", "Goods bought for resale."),
        ("Raw Materials", "Materials processed into sellable goods."),
        ("Operating Costs", "Rent, electricity, internet and similar running costs."),
        ("Salaries & Bonuses", "Wages, salaries and bonuses for staff."),
        ("Loans Given", "Money lent to others."),
        ("Payment Agent Transactions", "Outgoing payments made as a payment agent."),
        ("Debt Repayment", "Repayments of debts or instalments."),
        ("Non-business Expenses", "Personal spending unrelated to the business."),
        ("Other Expenses", "Expenses that fit no other category."),
    ],
}

_ENTRY_COLUMNS = """
    e.id, e.store_id, e.user_id, e.type, e.amount, e.description, e.category, e.category_id,
    e.product_id, e.quantity, e.cost_price, e.payment_status, e.customer_id, e.sale_id,
    e.photo_evidence, e.notes, e.is_manual_entry, e.date, e.created_at
"""


def seed_default_categories(cur, store_id: str) -> int:
    n = 0
    for cf_type, rows in DEFAULT_CASH_FLOW_CATEGORIES.items():
        for name, description in rows:
            cur.execute(
                """
                INSERT INTO cash_flow_categories (id, store_id, name, type, description)
                VALUES (gen_random_uuid(), %s, %s, %s, %s)
                ON CONFLICT (store_id, type, name) DO NOTHING
                """,
                (store_id, name, cf_type, description),
            )
            n += 1
    return n


def summarize_day(*, income: Decimal, expenses: Decimal, sales_total: Decimal, sales_count: int) -> dict:
    total_income = q_money(income) + q_money(sales_total)
    total_expenses = q_money(expenses)
    return {
        "total_sales": q_money(sales_total),
        "sales_count": int(sales_count or 0),
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net_flow": total_income - total_expenses,
    }


def group_receivables(rows) -> List[dict]:
    """Group unpaid income entries by customer, largest balance first."""
    groups: dict = {}
    for r in rows:
        cid = str(r["customer_id"])
        g = groups.get(cid)
        if g is None:
            name = " ".join(p for p in [r.get("first_name"), r.get("last_name")] if p) or "Unknown customer"
            g = groups[cid] = {
                "customer_id": cid,
                "customer_name": name,
                "phone": r.get("phone"),
                "total_unpaid": Decimal("0.00"),
                "entries": [],
            }
        g["total_unpaid"] += q_money(r["amount"])
        g["entries"].append({"id": r["id"], "amount": q_money(r["amount"]), "description": r["description"], "date": r["date"]})
    return sorted(groups.values(), key=lambda g: g["total_unpaid"], reverse=True)


def _list_entries(
    store_id: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    cf_type: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_id: Optional[str] = None,
    limit: int = 200,
):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must be on or before end")
    where = ["e.store_id = %s"]
    params: list = [store_id]
    if start:
        where.append("e.date >= %s::date")
        params.append(start)
    if end:
        where.append("e.date < (%s::date + interval '1 day')")
        params.append(end)
    if cf_type:
        where.append("e.type = %s")
        params.append(cf_type)
    if payment_status:
        where.append("e.payment_status = %s")
        params.append(payment_status)
    if customer_id:
        where.append("e.customer_id = %s")
        params.append(customer_id)
    params.append(limit)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM cash_flow_entries e
                WHERE {' AND '.join(where)}
                ORDER BY e.date DESC, e.created_at DESC
                LIMIT %s
                """,
                params,
            )
            return {"entries": cur.fetchall()}


@router.get("/entries")
def list_entries(
    start: Optional[date] = None,
    end: Optional[date] = None,
    type: Optional[CashFlowType] = None,
    payment_status: Optional[PaymentStatus] = None,
    customer_id: Optional[str] = None,
    limit: int = 200,
    store_id: str = Depends(get_store_id),
):
    return _list_entries(
        store_id, start=start, end=end, cf_type=type, payment_status=payment_status, customer_id=customer_id, limit=limit
    )


@router.get("/entries/unpaid")
def list_unpaid_entries(store_id: str = Depends(get_store_id)):
    return _list_entries(store_id, payment_status="unpaid", limit=1000)


@router.get("/entries/customer/{customer_id}")
def list_customer_entries(customer_id: str, store_id: str = Depends(get_store_id)):
    return _list_entries(store_id, customer_id=customer_id, limit=1000)


class EntryIn(BaseModel):
    type: CashFlowType
    amount: Money
    description: str
    category: str
    category_id: OptionalId = None
    product_id: OptionalId = None
    quantity: Optional[Decimal] = None
    cost_price: Optional[Money] = None
    payment_status: PaymentStatus = "paid"
    customer_id: OptionalId = None
    photo_evidence: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[datetime] = None


class EntryUpdate(BaseModel):
    type: Optional[CashFlowType] = None
    amount: Optional[Money] = None
    description: Optional[str] = None
    category: Optional[str] = None
    category_id: OptionalId = None
    payment_status: Optional[PaymentStatus] = None
    customer_id: OptionalId = None
    photo_evidence: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[datetime] = None


def _validate_entry(data) -> None:
    if data.description is not None and not data.description.strip():
        raise HTTPException(status_code=400, detail="description is required")
    if data.category is not None and not data.category.strip():
        raise HTTPException(status_code=400, detail="category is required")
    if data.payment_status == "unpaid" and not data.customer_id and isinstance(data, EntryIn):
        raise HTTPException(status_code=400, detail="unpaid entries must name a customer")


@router.post("/entries", status_code=201, dependencies=[Depends(require_store_role("manager"))])
def create_entry(data: EntryIn, store_id: str = Depends(get_store_id), user=Depends(get_current_user)):
    _validate_entry(data)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO cash_flow_entries
                  (id, store_id, user_id, type, amount, description, category, category_id, product_id,
                   quantity, cost_price, payment_status, customer_id, photo_evidence, notes, is_manual_entry, date)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, true, COALESCE(%s, now()))
                RETURNING id
                """,
                (
                    store_id,
                    user["user_id"],
                    data.type,
                    data.amount,
                    data.description.strip(),
                    data.category.strip(),
                    data.category_id,
                    data.product_id,
                    data.quantity,
                    data.cost_price,
                    data.payment_status,
                    data.customer_id,
                    data.photo_evidence,
                    data.notes,
                    data.date,
                ),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/entries/{entry_id}", dependencies=[Depends(require_store_role("manager"))])
def update_entry(entry_id: str, data: EntryUpdate, store_id: str = Depends(get_store_id)):
    _validate_entry(data)
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    params = list(patch.values()) + [store_id, entry_id]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE cash_flow_entries
                SET {', '.join(fields)}
                WHERE store_id = %s AND id = %s
                """,
                params,
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="entry not found")
            return {"ok": True}


@router.delete("/entries/{entry_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_entry(entry_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM cash_flow_entries WHERE store_id = %s AND id = %s", (store_id, entry_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="entry not found")
            return {"ok": True}


@router.get("/categories")
def list_categories(type: Optional[CashFlowType] = None, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            if type:
                cur.execute(
                    """
                    SELECT id, name, type, description, is_active
                    FROM cash_flow_categories
                    WHERE store_id = %s AND type = %s
                    ORDER BY name
                    """,
                    (store_id, type),
                )
            else:
                cur.execute(
                    """
                    SELECT id, name, type, description, is_active
                    FROM cash_flow_categories
                    WHERE store_id = %s
                    ORDER BY type, name
                    """,
                    (store_id,),
                )
            return {"categories": cur.fetchall()}


class CategoryIn(BaseModel):
    name: str
    type: CashFlowType
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


@router.post("/categories", status_code=201, dependencies=[Depends(require_store_role("manager"))])
def create_category(data: CategoryIn, store_id: str = Depends(get_store_id)):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO cash_flow_categories (id, store_id, name, type, description)
                VALUES (gen_random_uuid(), %s, %s, %s, %s)
                RETURNING id
                """,
                (store_id, name, data.type, data.description),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/categories/{category_id}", dependencies=[Depends(require_store_role("manager"))])
def update_category(category_id: str, data: CategoryUpdate, store_id: str = Depends(get_store_id)):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE cash_flow_categories SET {', '.join(fields)} WHERE store_id = %s AND id = %s",
                list(patch.values()) + [store_id, category_id],
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
            return {"ok": True}


@router.delete("/categories/{category_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_category(category_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM cash_flow_categories WHERE store_id = %s AND id = %s", (store_id, category_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
            return {"ok": True}


@router.get("/stats/today")
def today_stats(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT
                  COALESCE(SUM(amount) FILTER (WHERE type = 'income'), 0) AS income,
                  COALESCE(SUM(amount) FILTER (WHERE type = 'expense'), 0) AS expenses
                FROM cash_flow_entries
                WHERE store_id = %s AND date >= date_trunc('day', now())
                """,
                (store_id,),
            )
            cf = cur.fetchone()
            cur.execute(
                """
                SELECT COALESCE(SUM(total), 0) AS total, COUNT(*) AS n
                FROM sales
                WHERE store_id = %s AND created_at >= date_trunc('day', now())
                """,
                (store_id,),
            )
            s = cur.fetchone()
    return summarize_day(income=cf["income"], expenses=cf["expenses"], sales_total=s["total"], sales_count=s["n"])


@router.get("/accounts-receivable")
def accounts_receivable(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT e.id, e.customer_id, e.amount, e.description, e.date,
                       c.first_name, c.last_name, c.phone
                FROM cash_flow_entries e
                LEFT JOIN customers c ON c.id = e.customer_id
                WHERE e.store_id = %s
                  AND e.payment_status = 'unpaid'
                  AND e.type = 'income'
                  AND e.customer_id IS NOT NULL
                ORDER BY e.date
                """,
                (store_id,),
            )
            rows = cur.fetchall()
    groups = group_receivables(rows)
    return {"receivables": groups, "total_outstanding": sum((g["total_unpaid"] for g in groups), Decimal("0.00"))}
