from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from possaas.app.routers.cashflow import DEFAULT_CASH_FLOW_CATEGORIES, group_receivables, summarize_day
from possaas.app.routers.inventory import apply_adjustment


def test_summarize_day_counts_sales_as_income():
    s = summarize_day(
        income=Decimal("50.00"), expenses=Decimal("30.25"), sales_total=Decimal("120.50"), sales_count=4
    )
    assert s["total_sales"] == Decimal("120.50")
    assert s["sales_count"] == 4
    assert s["total_income"] == Decimal("170.50")
    assert s["total_expenses"] == Decimal("30.25")
    assert s["net_flow"] == Decimal("140.25")


def test_summarize_day_handles_empty_day():
    s = summarize_day(income=None, expenses=None, sales_total=None, sales_count=None)
    assert s["net_flow"] == Decimal("0.00")
    assert s["sales_count"] == 0


def test_receivables_grouped_per_customer_largest_first():
    rows = [
        {"id": "e1", "customer_id": "c1", "first_name": "Ana", "last_name": "Lee", "phone": "1", "amount": Decimal("10"), "description": "x", "date": date(2024, 5, 1)},
        {"id": "e2", "customer_id": "c2", "first_name": "Bo", "last_name": None, "phone": None, "amount": Decimal("25"), "description": "y", "date": date(2024, 5, 2)},
        {"id": "e3", "customer_id": "c1", "first_name": "Ana", "last_name": "Lee", "phone": "1", "amount": Decimal("20.5"), "description": "z", "date": date(2024, 5, 3)},
    ]
    groups = group_receivables(rows)
    assert [g["customer_id"] for g in groups] == ["c1", "c2"]
    assert groups[0]["customer_name"] == "Ana Lee"
    assert groups[0]["total_unpaid"] == Decimal("30.50")
    assert len(groups[0]["entries"]) == 2
    assert groups[1]["customer_name"] == "Bo"


def test_default_categories_cover_income_and_expense():
    assert set(DEFAULT_CASH_FLOW_CATEGORIES) == {"income", "expense"}
    names = [name for rows in DEFAULT_CASH_FLOW_CATEGORIES.values() for name, _desc in rows]
    assert "Sales" in names
    assert all(len(rows) == len({n for n, _d in rows}) for rows in DEFAULT_CASH_FLOW_CATEGORIES.values())


def test_adjustment_cannot_drive_stock_negative():
    assert apply_adjustment(Decimal("5"), Decimal("-5")) == Decimal("0.000")
    assert apply_adjustment(Decimal("1.5"), Decimal("2")) == Decimal("3.500")
    with pytest.raises(HTTPException) as exc_info:
        apply_adjustment(Decimal("1"), Decimal("-1.001"))
    assert exc_info.value.status_code == 400
