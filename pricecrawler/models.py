"""Data models for PriceCrawler."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

CATEGORY_SEPARATOR = " > "


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Category(BaseModel):
    """A crawlable subcategory (top level + level 1)."""

    category0: str
    category1: str

    @property
    def slug(self) -> str:
        return f"{self.category0}{CATEGORY_SEPARATOR}{self.category1}"

    @classmethod
    def from_slug(cls, slug: str) -> "Category":
        category0, _, category1 = slug.partition(CATEGORY_SEPARATOR)
        return cls(category0=category0, category1=category1)


class Outlet(BaseModel):
    """Store location with its own pricing."""

    outlet_id: str
    name: str
    address: Optional[str] = None
    region: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    last_synced: Optional[str] = None


class CatalogProduct(BaseModel):
    """Validated product as returned by the catalog API (prices in dollars)."""

    product_id: str
    name: str
    display_name: str
    price: float
    category: str
    brand: Optional[str] = None
    price_per_unit: Optional[float] = None
    unit_of_measure: Optional[str] = None
    subcategory: Optional[str] = None
    category_level2: Optional[str] = None
    availability: List[str] = Field(default_factory=list)
    origin: Optional[str] = None
    sale_type: Optional[str] = None
    promo_price: Optional[float] = None
    promo_price_per_unit: Optional[float] = None
    promo_type: Optional[str] = None
    promo_description: Optional[str] = None
    promo_requires_card: Optional[bool] = None
    promo_limit: Optional[int] = None


class ProductRecord(BaseModel):
    """Store-agnostic product master row."""

    product_id: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    category_l2: Optional[str] = None
    origin: Optional[str] = None
    sale_type: Optional[str] = None
    first_seen: str
    last_seen: str


class PriceSnapshot(BaseModel):
    """One timestamped price observation for a product at an outlet."""

    id: Optional[int] = None
    product_id: str
    outlet_id: str
    scraped_at: str
    price: float
    price_per_unit: Optional[float] = None
    unit: Optional[str] = None
    display_name: Optional[str] = None
    in_store: bool = False
    online: bool = False
    promo_price: Optional[float] = None
    promo_price_per_unit: Optional[float] = None
    promo_type: Optional[str] = None
    promo_desc: Optional[str] = None
    promo_card_required: Optional[bool] = None
    promo_limit: Optional[int] = None


class CheckpointResult(BaseModel):
    """Result of a WAL checkpoint."""

    wal_pages: int
    moved_pages: int


class ProductValidationResult(BaseModel):
    """Result of validating one raw product."""

    valid: bool
    product: Optional[CatalogProduct] = None
    field: Optional[str] = None
    errors: List[str] = Field(default_factory=list)


class WorkItem(BaseModel):
    """One (outlet, category) unit to crawl."""

    outlet_id: str
    category: Category

    @property
    def category_slug(self) -> str:
        return self.category.slug

    @property
    def label(self) -> str:
        return f"{self.outlet_id}: {self.category.slug}"


class WorkItemRecord(BaseModel):
    """Ledger row for a work item."""

    run_id: int
    outlet_id: str
    category_slug: str
    status: WorkItemStatus = WorkItemStatus.PENDING
    last_page: Optional[int] = None
    product_count: Optional[int] = None
    error: Optional[str] = None


class RunStatus(BaseModel):
    """A run with its work items."""

    id: int
    started_at: str
    completed_at: Optional[str] = None
    status: RunState
    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    items: List[WorkItemRecord] = Field(default_factory=list)

    @property
    def pending_items(self) -> List[WorkItemRecord]:
        return [
            item for item in self.items
            if item.status in (WorkItemStatus.PENDING, WorkItemStatus.FAILED)
        ]


class RunSummary(BaseModel):
    """Run row with aggregate counts, for listings."""

    id: int
    started_at: str
    completed_at: Optional[str] = None
    status: RunState
    total_items: int = 0
    completed_items: int = 0


class PageResult(BaseModel):
    """One page of raw catalog records."""

    records: List[Dict[str, Any]] = Field(default_factory=list)
    has_more: bool = False


class ItemResult(BaseModel):
    """Outcome of crawling one work item."""

    outlet_id: str
    category: str
    success: bool
    product_count: int = 0
    pages: int = 0
    skipped: int = 0
    error: Optional[str] = None


class CrawlProgress(BaseModel):
    """Live progress of a crawl run."""

    run_id: int
    total: int
    completed: int = 0
    failed: int = 0
    current: Optional[str] = None
    results: List[ItemResult] = Field(default_factory=list)

    @property
    def total_products(self) -> int:
        return sum(r.product_count for r in self.results)
