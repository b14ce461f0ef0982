from fastapi import APIRouter, Depends

from ..db import get_conn
from ..deps import get_store_id

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def store_stats(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT
                  (SELECT COALESCE(SUM(total), 0) FROM sales
                    WHERE store_id = %(s)s AND created_at >= date_trunc('day', now())) AS today_sales,
                  (SELECT COUNT(*) FROM sales
                    WHERE store_id = %(s)s AND created_at >= date_trunc('day', now())) AS orders_today,
                  (SELECT COUNT(*) FROM products WHERE store_id = %(s)s AND is_active) AS total_products,
                  (SELECT COUNT(*) FROM products
                    WHERE store_id = %(s)s AND is_active AND stock <= min_stock_level) AS low_stock_count,
                  (SELECT COUNT(*) FROM customers WHERE store_id = %(s)s) AS total_customers
                """,
                {"s": store_id},
            )
            return cur.fetchone()
