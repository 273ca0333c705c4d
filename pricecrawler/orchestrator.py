"""Crawl orchestrator: worker pool over ledger-tracked work items."""

import asyncio
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from .catalog import PAGE_SIZE
from .converters import products_to_records_and_snapshots
from .errors import TokenExpiredError
from .fetcher import CatalogFetcher
from .ledger import CheckpointLedger, utc_now
from .models import (
    CatalogProduct,
    Category,
    CrawlProgress,
    ItemResult,
    PageResult,
    WorkItem,
    WorkItemStatus,
)
from .reliability import ReliabilityExecutor
from .storage import PriceHistoryStore
from .validator import validate_records

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[CrawlProgress], None]


def _unique(values):
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class CrawlOrchestrator:
    """
    Crawl work items with a bounded pool of async workers.

    Each item moves pending -> in_progress -> completed/failed in the
    ledger. Pages are fetched through one shared ReliabilityExecutor, so all
    workers draw on the same rate limit and circuit breaker. A failing item
    is recorded and the run carries on.
    """

    def __init__(
        self,
        store: PriceHistoryStore,
        fetcher: CatalogFetcher,
        executor: Optional[ReliabilityExecutor] = None,
        ledger: Optional[CheckpointLedger] = None,
        concurrency: int = 1,
        max_pages: int = 10,
        page_size: int = PAGE_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], str] = utc_now,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Price history store for products and snapshots
            fetcher: Fetch collaborator
            executor: Reliability wrapper shared by all workers
            ledger: Checkpoint ledger (built on ``store`` when None)
            concurrency: Number of concurrent workers
            max_pages: Page limit per work item
            page_size: A page shorter than this ends a category
            on_progress: Called with the live progress after every item
            clock: Returns the ISO-8601 capture timestamp for an item
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.store = store
        self.fetcher = fetcher
        self.executor = executor or ReliabilityExecutor()
        self.ledger = ledger or CheckpointLedger(store)
        self.concurrency = concurrency
        self.max_pages = max_pages
        self.page_size = page_size
        self.on_progress = on_progress
        self._clock = clock

    async def run(
        self,
        work_items: Sequence[WorkItem],
        run_id: Optional[int] = None,
    ) -> CrawlProgress:
        """
        Crawl all work items and complete the run.

        Args:
            work_items: Items to crawl
            run_id: Existing run to continue; a new run over the items'
                outlets x categories is created when None

        Returns:
            Final CrawlProgress
        """
        if run_id is None:
            outlet_ids = _unique(item.outlet_id for item in work_items)
            categories = [
                Category.from_slug(slug)
                for slug in _unique(item.category_slug for item in work_items)
            ]
            run_id = self.ledger.create_run(outlet_ids, categories)

        progress = CrawlProgress(run_id=run_id, total=len(work_items))
        logger.info(
            "crawl_started",
            run_id=run_id,
            items=len(work_items),
            concurrency=self.concurrency,
            max_pages=self.max_pages,
        )

        queue: asyncio.Queue = asyncio.Queue()
        for item in work_items:
            queue.put_nowait(item)

        worker_count = min(self.concurrency, len(work_items))
        workers = [
            asyncio.create_task(self._worker(queue, run_id, progress))
            for _ in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()

        self.ledger.complete_run(run_id)
        progress.current = None

        logger.info(
            "crawl_finished",
            run_id=run_id,
            completed=progress.completed,
            failed=progress.failed,
            products=progress.total_products,
        )
        return progress

    async def _worker(self, queue: asyncio.Queue, run_id: int, progress: CrawlProgress) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            progress.current = item.label
            result = await self._process_item(run_id, item)

            if result.success:
                progress.completed += 1
            else:
                progress.failed += 1
            progress.results.append(result)

            if self.on_progress is not None:
                self.on_progress(progress)

    async def _process_item(self, run_id: int, item: WorkItem) -> ItemResult:
        """Crawl one item, persist it, and record the outcome in the ledger."""
        self.ledger.update_work_item(
            run_id, item.outlet_id, item.category_slug, WorkItemStatus.IN_PROGRESS
        )

        try:
            products, pages, skipped = await self._crawl_item(item)

            timestamp = self._clock()
            records, snapshots = products_to_records_and_snapshots(
                products, item.outlet_id, timestamp
            )
            if records:
                self.store.save_batch(records, snapshots)

        except Exception as e:
            error = str(e) or type(e).__name__
            self.ledger.update_work_item(
                run_id,
                item.outlet_id,
                item.category_slug,
                WorkItemStatus.FAILED,
                error=error,
            )
            logger.error(
                "work_item_failed",
                run_id=run_id,
                outlet_id=item.outlet_id,
                category=item.category_slug,
                error=error,
                error_type=type(e).__name__,
            )
            return ItemResult(
                outlet_id=item.outlet_id,
                category=item.category_slug,
                success=False,
                error=error,
            )

        self.ledger.update_work_item(
            run_id,
            item.outlet_id,
            item.category_slug,
            WorkItemStatus.COMPLETED,
            last_page=pages,
            product_count=len(products),
        )
        logger.info(
            "work_item_completed",
            run_id=run_id,
            outlet_id=item.outlet_id,
            category=item.category_slug,
            pages=pages,
            products=len(products),
            skipped=skipped,
        )
        return ItemResult(
            outlet_id=item.outlet_id,
            category=item.category_slug,
            success=True,
            product_count=len(products),
            pages=pages,
            skipped=skipped,
        )

    async def _crawl_item(self, item: WorkItem) -> Tuple[List[CatalogProduct], int, int]:
        """
        Fetch pages until a short page, no more results, or the page limit.

        Returns:
            (unique valid products, pages fetched, invalid records skipped)
        """
        products: List[CatalogProduct] = []
        seen_ids = set()
        pages = 0
        skipped = 0

        for page in range(self.max_pages):
            result = await self._fetch_page(item, page)
            pages = page + 1

            valid, invalid = validate_records(result.records)
            skipped += invalid
            for product in valid:
                if product.product_id not in seen_ids:
                    seen_ids.add(product.product_id)
                    products.append(product)

            if len(result.records) < self.page_size or not result.has_more:
                break

        return products, pages, skipped

    async def _fetch_page(self, item: WorkItem, page: int) -> PageResult:
        """Fetch through the executor; on an expired token refresh and try once more."""

        async def fetch() -> PageResult:
            return await self.fetcher.fetch_page(
                item.outlet_id,
                item.category.category0,
                item.category.category1,
                page,
            )

        try:
            return await self.executor.execute(fetch, operation="fetch_page")
        except TokenExpiredError:
            logger.warning(
                "token_expired_refreshing",
                outlet_id=item.outlet_id,
                category=item.category_slug,
                page=page,
            )
            await self.fetcher.refresh_token()
            return await self.executor.execute(fetch, operation="fetch_page")
