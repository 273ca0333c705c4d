"""Validate parsed catalog products."""

import math
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .catalog import parse_product_from_api
from .errors import ProductValidationError
from .models import CatalogProduct, ProductValidationResult

logger = structlog.get_logger(__name__)

REQUIRED_STRINGS = ("product_id", "name", "display_name", "category")
OPTIONAL_STRINGS = (
    "brand",
    "unit_of_measure",
    "subcategory",
    "category_level2",
    "origin",
    "sale_type",
    "promo_type",
    "promo_description",
)
OPTIONAL_AMOUNTS = ("price_per_unit", "promo_price", "promo_price_per_unit")


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a price
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )


def _amount_error(field: str, value: Any) -> Optional[str]:
    if not _is_number(value):
        return f"{field} must be a valid number"
    if value < 0:
        return f"{field} must be non-negative"
    return None


def validate_product(data: Dict[str, Any]) -> ProductValidationResult:
    """
    Validate a parsed product dictionary.

    Args:
        data: Output of ``parse_product_from_api``

    Returns:
        ProductValidationResult holding the CatalogProduct when valid, or
        the first offending field and all error messages when not
    """
    errors: List[str] = []
    first_field: Optional[str] = None

    def fail(field: str, message: str) -> None:
        nonlocal first_field
        if first_field is None:
            first_field = field
        errors.append(f"Validation failed for {field}: {message}")

    for field in REQUIRED_STRINGS:
        value = data.get(field)
        if not isinstance(value, str) or not value:
            fail(field, f"{field} is required")

    for field in ("price",) + OPTIONAL_AMOUNTS:
        value = data.get(field)
        if value is None and field != "price":
            continue
        message = _amount_error(field, value)
        if message:
            fail(field, message)

    for field in OPTIONAL_STRINGS:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            fail(field, f"{field} must be a string")

    availability = data.get("availability", [])
    if not isinstance(availability, list) or not all(isinstance(a, str) for a in availability):
        fail("availability", "availability must be a list of strings")

    requires_card = data.get("promo_requires_card")
    if requires_card is not None and not isinstance(requires_card, bool):
        fail("promo_requires_card", "promo_requires_card must be a boolean")

    promo_limit = data.get("promo_limit")
    if promo_limit is not None:
        if not isinstance(promo_limit, int) or isinstance(promo_limit, bool):
            fail("promo_limit", "promo_limit must be an integer")
        elif promo_limit < 0:
            fail("promo_limit", "promo_limit must be non-negative")

    if errors:
        return ProductValidationResult(valid=False, field=first_field, errors=errors)

    return ProductValidationResult(valid=True, product=CatalogProduct(**data))


def parse_and_validate(raw: Dict[str, Any]) -> CatalogProduct:
    """
    Parse a raw API product and validate it.

    Raises:
        ProductValidationError: If the record is malformed
    """
    if not isinstance(raw, dict):
        raise ProductValidationError("Product record is not an object", field="root")

    result = validate_product(parse_product_from_api(raw))
    if not result.valid:
        raise ProductValidationError(result.errors[0], field=result.field or "unknown")
    return result.product


def validate_records(raw_records: List[Dict[str, Any]]) -> Tuple[List[CatalogProduct], int]:
    """
    Validate a page of raw records, skipping the invalid ones.

    Returns:
        (valid products, number skipped)
    """
    products: List[CatalogProduct] = []
    skipped = 0
    for raw in raw_records:
        try:
            products.append(parse_and_validate(raw))
        except ProductValidationError as e:
            skipped += 1
            logger.warning(
                "product_validation_failed",
                product_id=raw.get("productId") if isinstance(raw, dict) else None,
                field=e.field,
                error=str(e),
            )
    return products, skipped
