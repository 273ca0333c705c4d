"""Database-wide statistics and display formatting."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .models import PriceSnapshot
from .queries import PriceChange, get_database_totals
from .storage import PriceHistoryStore


class OverallStats(BaseModel):
    total_products: int
    total_snapshots: int
    products_on_promo: int
    total_outlets: int
    categories: List[str] = Field(default_factory=list)
    earliest: Optional[str] = None
    latest: Optional[str] = None


def get_overall_stats(store: PriceHistoryStore) -> OverallStats:
    conn = store.connection
    totals = get_database_totals(store)
    categories = [
        row[0]
        for row in conn.execute(
            "SELECT DISTINCT category FROM products WHERE category IS NOT NULL ORDER BY category"
        ).fetchall()
    ]
    date_range = conn.execute(
        "SELECT MIN(scraped_at), MAX(scraped_at) FROM price_snapshots"
    ).fetchone()
    total_outlets = conn.execute("SELECT COUNT(*) FROM outlets").fetchone()[0]

    return OverallStats(
        total_products=totals.total_products,
        total_snapshots=totals.total_snapshots,
        products_on_promo=totals.products_on_promo,
        total_outlets=total_outlets,
        categories=categories,
        earliest=date_range[0],
        latest=date_range[1],
    )


def format_price_change(change: PriceChange) -> str:
    sign = "+" if change.delta >= 0 else "-"
    return (
        f"{change.from_date} -> {change.to_date}: "
        f"${change.from_price:.2f} -> ${change.to_price:.2f} ({sign}${abs(change.delta):.2f})"
    )


def format_promo(snapshot: PriceSnapshot) -> str:
    name = snapshot.display_name or snapshot.product_id
    if snapshot.promo_price is None:
        return f"{name}: ${snapshot.price:.2f}"

    savings = 0.0
    if snapshot.price > 0:
        savings = (1 - snapshot.promo_price / snapshot.price) * 100
    return f"{name}: ${snapshot.price:.2f} -> ${snapshot.promo_price:.2f} ({savings:.0f}% off)"
