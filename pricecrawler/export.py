"""Export price history rows as CSV or JSON."""

import csv
import io
import json
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel

from .storage import PriceHistoryStore

EXPORT_FIELDS = [
    "product_id",
    "name",
    "brand",
    "category",
    "subcategory",
    "outlet_id",
    "price",
    "promo_price",
    "promo_type",
    "scraped_at",
]

DURATION_UNITS = {
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
}


class ExportRecord(BaseModel):
    product_id: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    outlet_id: str
    price: float
    promo_price: Optional[float] = None
    promo_type: Optional[str] = None
    scraped_at: str


def parse_since(since: str, now: Optional[datetime] = None) -> datetime:
    """
    Turn "7d", "24h" or "30m" into an absolute UTC cutoff.

    Raises:
        ValueError: If the duration format is not recognised
    """
    match = re.fullmatch(r"(\d+)([dhm])", since.strip())
    if not match:
        raise ValueError(f"Invalid duration format: {since}. Use format like 7d, 30d, 24h")

    value, unit = int(match.group(1)), match.group(2)
    now = now or datetime.now(timezone.utc)
    return now - value * DURATION_UNITS[unit]


def export_data(
    store: PriceHistoryStore,
    category: Optional[str] = None,
    since: Optional[str] = None,
) -> List[ExportRecord]:
    """Join products with their snapshots, newest first."""
    conditions = []
    params: list = []

    if category:
        conditions.append("p.category = ?")
        params.append(category)
    if since:
        conditions.append("ps.scraped_at >= ?")
        params.append(parse_since(since).isoformat())

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    rows = store.connection.execute(
        f"""
        SELECT
            p.product_id, p.name, p.brand, p.category, p.subcategory,
            ps.outlet_id, ps.price, ps.promo_price, ps.promo_type, ps.scraped_at
        FROM products p
        INNER JOIN price_snapshots ps ON p.product_id = ps.product_id
        {where}
        ORDER BY ps.scraped_at DESC, p.name ASC
        """,
        params,
    ).fetchall()
    return [ExportRecord(**dict(row)) for row in rows]


def format_csv(records: List[ExportRecord]) -> str:
    if not records:
        return ""

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow(record.model_dump())
    return buffer.getvalue().rstrip("\n")


def format_json(records: List[ExportRecord]) -> str:
    return json.dumps([record.model_dump() for record in records], indent=2)
