"""Convert validated catalog products into storage rows."""

from typing import Iterable, List, Tuple

from .models import CatalogProduct, PriceSnapshot, ProductRecord


def product_to_record(product: CatalogProduct, timestamp: str) -> ProductRecord:
    return ProductRecord(
        product_id=product.product_id,
        name=product.name,
        brand=product.brand or None,
        category=product.category,
        subcategory=product.subcategory or None,
        category_l2=product.category_level2 or None,
        origin=product.origin or None,
        sale_type=product.sale_type or None,
        first_seen=timestamp,
        last_seen=timestamp,
    )


def product_to_snapshot(product: CatalogProduct, outlet_id: str, timestamp: str) -> PriceSnapshot:
    return PriceSnapshot(
        product_id=product.product_id,
        outlet_id=outlet_id,
        scraped_at=timestamp,
        price=product.price,
        price_per_unit=product.price_per_unit,
        unit=product.unit_of_measure or None,
        display_name=product.display_name or None,
        in_store="IN_STORE" in product.availability,
        online="ONLINE" in product.availability,
        promo_price=product.promo_price,
        promo_price_per_unit=product.promo_price_per_unit,
        promo_type=product.promo_type or None,
        promo_desc=product.promo_description or None,
        promo_card_required=product.promo_requires_card,
        promo_limit=product.promo_limit,
    )


def products_to_records_and_snapshots(
    products: Iterable[CatalogProduct],
    outlet_id: str,
    timestamp: str,
) -> Tuple[List[ProductRecord], List[PriceSnapshot]]:
    """
    Build product and snapshot rows sharing one capture timestamp.

    Args:
        products: Validated products from one crawl result
        outlet_id: Outlet the prices belong to
        timestamp: ISO-8601 capture time

    Returns:
        (product records, price snapshots), same order as input
    """
    products = list(products)
    records = [product_to_record(p, timestamp) for p in products]
    snapshots = [product_to_snapshot(p, outlet_id, timestamp) for p in products]
    return records, snapshots
