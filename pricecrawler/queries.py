"""Reporting queries over the price history database."""

from typing import List, Optional

from pydantic import BaseModel

from .models import PriceSnapshot, ProductRecord, RunSummary
from .storage import PriceHistoryStore

LATEST_SNAPSHOT_JOIN = """
    SELECT ps.* FROM price_snapshots ps
    INNER JOIN (
        SELECT product_id, MAX(scraped_at) AS max_scraped_at
        FROM price_snapshots
        GROUP BY product_id
    ) latest
      ON ps.product_id = latest.product_id
     AND ps.scraped_at = latest.max_scraped_at
"""


class PriceChange(BaseModel):
    """Price movement between two consecutive snapshots."""

    product_id: str
    from_date: str
    to_date: str
    from_price: float
    to_price: float
    delta: float


class DatabaseTotals(BaseModel):
    total_products: int
    total_snapshots: int
    products_on_promo: int


def get_price_changes(
    store: PriceHistoryStore,
    product_id: str,
    outlet_id: Optional[str] = None,
) -> List[PriceChange]:
    """Pairwise changes across a product's history (delta rounded to cents)."""
    history = store.get_product_history(product_id, outlet_id)
    changes: List[PriceChange] = []
    for prev, curr in zip(history, history[1:]):
        changes.append(
            PriceChange(
                product_id=product_id,
                from_date=prev.scraped_at,
                to_date=curr.scraped_at,
                from_price=prev.price,
                to_price=curr.price,
                delta=round(curr.price - prev.price, 2),
            )
        )
    return changes


def get_products_by_category(
    store: PriceHistoryStore,
    category: str,
    subcategory: Optional[str] = None,
) -> List[ProductRecord]:
    conn = store.connection
    if subcategory:
        rows = conn.execute(
            "SELECT * FROM products WHERE category = ? AND subcategory = ? ORDER BY name ASC",
            (category, subcategory),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM products WHERE category = ? ORDER BY name ASC",
            (category,),
        ).fetchall()
    return [ProductRecord(**dict(row)) for row in rows]


def get_products_on_promo(store: PriceHistoryStore) -> List[PriceSnapshot]:
    """Latest snapshots that carry a promotion."""
    rows = store.connection.execute(
        LATEST_SNAPSHOT_JOIN + " WHERE ps.promo_price IS NOT NULL ORDER BY ps.display_name ASC"
    ).fetchall()
    return [PriceSnapshot(**dict(row)) for row in rows]


def search_products(store: PriceHistoryStore, query: str) -> List[ProductRecord]:
    """Case-insensitive substring match on name or brand."""
    pattern = f"%{query}%"
    rows = store.connection.execute(
        """
        SELECT * FROM products
        WHERE name LIKE ? COLLATE NOCASE
           OR brand LIKE ? COLLATE NOCASE
        ORDER BY name ASC
        """,
        (pattern, pattern),
    ).fetchall()
    return [ProductRecord(**dict(row)) for row in rows]


def list_runs(store: PriceHistoryStore, limit: int = 20) -> List[RunSummary]:
    """Most recent runs first, with work item totals."""
    rows = store.connection.execute(
        """
        SELECT
            r.id,
            r.started_at,
            r.completed_at,
            r.status,
            COUNT(w.id) AS total_items,
            COALESCE(SUM(CASE WHEN w.status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_items
        FROM runs r
        LEFT JOIN work_items w ON r.id = w.run_id
        GROUP BY r.id
        ORDER BY r.id DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [RunSummary(**dict(row)) for row in rows]


def get_database_totals(store: PriceHistoryStore) -> DatabaseTotals:
    conn = store.connection
    total_products = conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]
    total_snapshots = conn.execute("SELECT COUNT(*) FROM price_snapshots").fetchone()[0]
    on_promo = conn.execute(
        f"SELECT COUNT(*) FROM ({LATEST_SNAPSHOT_JOIN} WHERE ps.promo_price IS NOT NULL)"
    ).fetchone()[0]
    return DatabaseTotals(
        total_products=total_products,
        total_snapshots=total_snapshots,
        products_on_promo=on_promo,
    )
