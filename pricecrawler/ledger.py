"""Checkpoint ledger: runs and their per-(outlet, category) work items."""

from datetime import datetime, timezone
from typing import List, Optional, Sequence

import structlog

from .errors import LedgerError
from .models import (
    Category,
    RunState,
    RunStatus,
    WorkItemRecord,
    WorkItemStatus,
)
from .storage import PriceHistoryStore

logger = structlog.get_logger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckpointLedger:
    """Persist crawl progress so an interrupted run can be resumed."""

    def __init__(self, store: PriceHistoryStore):
        self.store = store

    def create_run(self, outlet_ids: Sequence[str], categories: Sequence[Category]) -> int:
        """
        Start a run covering every (outlet, category) pair.

        The run row and all of its pending work items are written in one
        transaction.

        Args:
            outlet_ids: Outlets to crawl
            categories: Categories to crawl at each outlet

        Returns:
            New run id
        """
        started_at = utc_now()
        pairs = [(outlet_id, category.slug) for outlet_id in outlet_ids for category in categories]

        try:
            with self.store.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO runs (started_at, status) VALUES (?, ?)",
                    (started_at, RunState.IN_PROGRESS.value),
                )
                run_id = cursor.lastrowid
                conn.executemany(
                    """
                    INSERT INTO work_items (run_id, outlet_id, category_slug, status)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(run_id, outlet_id, slug, WorkItemStatus.PENDING.value) for outlet_id, slug in pairs],
                )
        except Exception as e:
            logger.exception("run_create_failed", items=len(pairs), error=str(e))
            raise

        logger.info("run_created", run_id=run_id, items=len(pairs), started_at=started_at)
        return run_id

    def update_work_item(
        self,
        run_id: int,
        outlet_id: str,
        category_slug: str,
        status: WorkItemStatus,
        last_page: Optional[int] = None,
        product_count: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Record progress for one work item.

        Raises:
            LedgerError: If no work item matches (run_id, outlet_id, category_slug)
        """
        cursor = self.store.connection.execute(
            """
            UPDATE work_items
            SET status = ?, last_page = ?, product_count = ?, error = ?
            WHERE run_id = ? AND outlet_id = ? AND category_slug = ?
            """,
            (
                WorkItemStatus(status).value,
                last_page,
                product_count,
                error,
                run_id,
                outlet_id,
                category_slug,
            ),
        )
        if cursor.rowcount == 0:
            raise LedgerError(
                f"No work item for run {run_id}, outlet {outlet_id}, category {category_slug}"
            )

        logger.debug(
            "work_item_updated",
            run_id=run_id,
            outlet_id=outlet_id,
            category=category_slug,
            status=WorkItemStatus(status).value,
        )

    def complete_run(self, run_id: int) -> None:
        """Mark a run completed and stamp its completion time."""
        completed_at = utc_now()
        self.store.connection.execute(
            "UPDATE runs SET status = ?, completed_at = ? WHERE id = ?",
            (RunState.COMPLETED.value, completed_at, run_id),
        )
        logger.info("run_completed", run_id=run_id, completed_at=completed_at)

    def get_run(self, run_id: int) -> Optional[RunStatus]:
        """Load a run with all of its work items, or None if unknown."""
        conn = self.store.connection
        run = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        if run is None:
            return None

        rows = conn.execute(
            """
            SELECT run_id, outlet_id, category_slug, status, last_page, product_count, error
            FROM work_items
            WHERE run_id = ?
            ORDER BY id ASC
            """,
            (run_id,),
        ).fetchall()
        items = [WorkItemRecord(**dict(row)) for row in rows]

        return RunStatus(
            id=run["id"],
            started_at=run["started_at"],
            completed_at=run["completed_at"],
            status=run["status"],
            total_items=len(items),
            completed_items=sum(1 for i in items if i.status is WorkItemStatus.COMPLETED),
            failed_items=sum(1 for i in items if i.status is WorkItemStatus.FAILED),
            items=items,
        )

    def get_incomplete_run(self) -> Optional[RunStatus]:
        """Most recently started run that is still in progress."""
        row = self.store.connection.execute(
            """
            SELECT id FROM runs
            WHERE status = ?
            ORDER BY started_at DESC, id DESC
            LIMIT 1
            """,
            (RunState.IN_PROGRESS.value,),
        ).fetchone()
        return self.get_run(row["id"]) if row else None

    def get_pending_work_items(self, run_id: int) -> List[WorkItemRecord]:
        """Work items of a run that are pending or failed."""
        run = self.get_run(run_id)
        return run.pending_items if run else []
