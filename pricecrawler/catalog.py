"""Catalog API payloads and response parsing."""

from typing import Any, Dict, Iterable, List, Optional

API_BASE = "https://api-prod.newworld.co.nz/v1/edge"
SITE_URL = "https://www.newworld.co.nz/"
SEARCH_PATH = "/search/paginated/products"

PAGE_SIZE = 50

STORE_ID_COOKIE = "eCom_STORE_ID"
USER_TOKEN_COOKIE = "fs-user-token"
DEFAULT_STORE_ID = "60928d93-06fa-4d8f-92a6-8c359e7e846d"


def build_product_search_payload(
    store_id: str,
    category0: Optional[str] = None,
    category1: Optional[str] = None,
    category2: Optional[str] = None,
    search_term: Optional[str] = None,
    page: int = 0,
    hits_per_page: int = PAGE_SIZE,
) -> Dict[str, Any]:
    """
    Build the JSON body for the paginated product search endpoint.

    Args:
        store_id: Outlet to price products for
        category0: Top-level category name
        category1: Subcategory name
        category2: Third-level category name
        search_term: Free-text query
        page: Zero-based page number
        hits_per_page: Page size

    Returns:
        Request payload dictionary
    """
    filters = [f"stores:{store_id}"]
    if category0:
        filters.append(f'category0NI:"{category0}"')
    if category1:
        filters.append(f'category1NI:"{category1}"')
    if category2:
        filters.append(f'category2NI:"{category2}"')

    algolia_query: Dict[str, Any] = {
        "attributesToHighlight": [],
        "attributesToRetrieve": [
            "productID",
            "Type",
            "sponsored",
            "category0NI",
            "category1NI",
            "category2NI",
        ],
        "facets": ["brand", "category2NI", "onPromotion", "productFacets", "tobacco"],
        "filters": " AND ".join(filters),
        "highlightPostTag": "__/ais-highlight__",
        "highlightPreTag": "__ais-highlight__",
        "hitsPerPage": hits_per_page,
        "maxValuesPerFacet": 100,
        "page": page,
        "analyticsTags": ["fs#WEB:desktop"],
    }
    if search_term:
        algolia_query["query"] = search_term

    return {
        "algoliaQuery": algolia_query,
        "algoliaFacetQueries": [],
        "storeId": store_id,
        "hitsPerPage": hits_per_page,
        "page": page,
        "sortOrder": "NI_POPULARITY_ASC",
        "tobaccoQuery": False,
        "precisionMedia": {
            "adDomain": "CATEGORY_PAGE",
            "adPositions": [4, 8, 12, 16],
            "publishImpressionEvent": False,
            "disableAds": True,
        },
    }


def _cents(value: Any) -> Optional[float]:
    # Upstream prices are integer cents; missing becomes 0.0, garbage becomes None
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value / 100


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) and value else None


def _best_promotion(promotions: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(promotions, list) or not promotions:
        return None
    for promo in promotions:
        if isinstance(promo, dict) and promo.get("bestPromotion") is True:
            return promo
    first = promotions[0]
    return first if isinstance(first, dict) else None


def parse_product_from_api(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a raw API product into crawler field names.

    Prices are converted from cents to dollars. Category comes from the
    first category tree, and the promotion flagged ``bestPromotion`` (or the
    first one) supplies the promo fields. No validation happens here.

    Args:
        raw: Product object from the search response

    Returns:
        Dictionary suitable for ``validate_product``
    """
    single_price = raw.get("singlePrice")
    if not isinstance(single_price, dict):
        single_price = {}
    comparative = _as_dict(single_price.get("comparativePrice"))
    trees = raw.get("categoryTrees")
    first_tree = _as_dict(trees[0]) if isinstance(trees, list) and trees else None
    first_tree = first_tree or {}

    promo = _best_promotion(raw.get("promotions"))
    promo_comparative = _as_dict(promo.get("comparativePrice")) if promo else None

    return {
        "product_id": raw.get("productId"),
        "brand": raw.get("brand"),
        "name": raw.get("name"),
        "display_name": raw.get("displayName"),
        "price": _cents(single_price.get("price")),
        "price_per_unit": _cents(comparative.get("pricePerUnit")) if comparative else None,
        "unit_of_measure": comparative.get("measureDescription") if comparative else None,
        "category": first_tree.get("level0") or "Unknown",
        "subcategory": first_tree.get("level1"),
        "category_level2": first_tree.get("level2"),
        "availability": raw.get("availability") or [],
        "origin": raw.get("originStatement"),
        "sale_type": raw.get("saleType"),
        "promo_price": _cents(promo.get("rewardValue")) if promo else None,
        "promo_price_per_unit": (
            _cents(promo_comparative.get("pricePerUnit")) if promo_comparative else None
        ),
        "promo_type": promo.get("rewardType") if promo else None,
        "promo_description": promo.get("description") if promo else None,
        "promo_requires_card": promo.get("cardDependencyFlag") if promo else None,
        "promo_limit": promo.get("maxQuantity") if promo else None,
    }


def cookie_value(cookies: Iterable[Dict[str, Any]], name: str) -> Optional[str]:
    """Return the value of the named cookie, if present and non-empty."""
    for cookie in cookies:
        if cookie.get("name") == name and cookie.get("value"):
            return cookie["value"]
    return None


def request_headers(token: Optional[str]) -> Dict[str, str]:
    """Headers the catalog API expects from a browser session."""
    headers = {
        "accept": "application/json, text/plain, */*",
        "accept-language": "en-NZ,en;q=0.9",
        "content-type": "application/json",
        "origin": SITE_URL.rstrip("/"),
        "referer": SITE_URL,
    }
    if token:
        headers[USER_TOKEN_COOKIE] = token
    return headers

