"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from pricecrawler.errors import ClientError, TokenExpiredError
from pricecrawler.models import Category, PageResult
from pricecrawler.reliability import (
    RateLimiter,
    RateLimiterConfig,
    ReliabilityConfig,
    ReliabilityExecutor,
    RetryConfig,
)
from pricecrawler.storage import PriceHistoryStore


class FakeClock:
    """Monotonic clock in seconds whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_raw_product(product_id: str = "5001234-EA-000", price: Any = 299, **overrides) -> Dict[str, Any]:
    """Raw product object shaped like a catalog search hit (prices in cents)."""
    raw = {
        "productId": product_id,
        "brand": "Pams",
        "name": f"Product {product_id}",
        "displayName": "500g",
        "singlePrice": {
            "price": price,
            "comparativePrice": {"pricePerUnit": 598, "measureDescription": "1kg"},
        },
        "categoryTrees": [{"level0": "Pantry", "level1": "Baking", "level2": "Flour"}],
        "availability": ["IN_STORE", "ONLINE"],
        "originStatement": "Made in New Zealand",
        "saleType": "UNITS",
        "promotions": [],
    }
    raw.update(overrides)
    return raw


class FakeFetcher:
    """
    In-memory fetch collaborator.

    Pages are keyed by (outlet_id, category0, category1); keys without pages
    return one empty page. Keys in ``failing`` raise a 404 ClientError, and
    keys in ``expire_once`` reject the first request with TokenExpiredError.
    """

    def __init__(
        self,
        pages: Optional[Dict[Tuple[str, str, str], List[PageResult]]] = None,
        failing: Optional[set] = None,
        expire_once: Optional[set] = None,
    ):
        self.pages = pages or {}
        self.failing = set(failing or ())
        self.expire_once = set(expire_once or ())
        self.calls: List[Tuple[str, str, Optional[str], int]] = []
        self.refresh_count = 0

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def refresh_token(self) -> None:
        self.refresh_count += 1

    async def fetch_page(self, outlet_id, category0, category1, page) -> PageResult:
        self.calls.append((outlet_id, category0, category1, page))
        key = (outlet_id, category0, category1)

        if key in self.expire_once:
            self.expire_once.discard(key)
            raise TokenExpiredError()
        if key in self.failing:
            raise ClientError(f"HTTP 404 for {category0} > {category1}", status_code=404)

        pages = self.pages.get(key, [])
        if page < len(pages):
            return pages[page]
        return PageResult(records=[], has_more=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def raw_product():
    return make_raw_product


@pytest.fixture
def store(tmp_path):
    db = PriceHistoryStore(str(tmp_path / "prices.db"))
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def categories():
    return [
        Category(category0="Pantry", category1="Baking"),
        Category(category0="Pantry", category1="Snacks"),
    ]


@pytest.fixture
def fast_executor(clock):
    """Executor with no pacing or backoff delays, on the fake clock."""
    config = ReliabilityConfig(
        rate_limiter=RateLimiterConfig(
            requests_per_minute=10_000,
            min_delay_ms=0,
            max_delay_ms=0,
            jitter_ms=0,
        ),
        retry=RetryConfig(max_retries=2, initial_delay_ms=0, max_delay_ms=0),
    )
    limiter = RateLimiter(config.rate_limiter, clock=clock, sleep=clock.sleep)
    return ReliabilityExecutor(config, rate_limiter=limiter, sleep=clock.sleep)
