"""Work out which work items a crawl should (re)run."""

from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from .errors import RunAlreadyCompletedError, RunNotFoundError
from .ledger import CheckpointLedger
from .models import Category, RunState, RunStatus, WorkItem

logger = structlog.get_logger(__name__)


class ResumePlan(BaseModel):
    """Initial work-item set for a crawl."""

    run_id: Optional[int] = None
    work_items: List[WorkItem] = Field(default_factory=list)
    is_resuming: bool = False
    all_completed: bool = False
    message: Optional[str] = None


def cross_product(outlet_ids: Sequence[str], categories: Sequence[Category]) -> List[WorkItem]:
    return [
        WorkItem(outlet_id=outlet_id, category=category)
        for outlet_id in outlet_ids
        for category in categories
    ]


class ResumeResolver:
    """Intersect the caller's selection with a run's unfinished work items."""

    def __init__(self, ledger: CheckpointLedger):
        self.ledger = ledger

    def resolve(
        self,
        outlet_ids: Optional[Sequence[str]],
        categories: Sequence[Category],
        resume: bool = False,
        run_id: Optional[int] = None,
    ) -> ResumePlan:
        """
        Compute the work items to crawl.

        Args:
            outlet_ids: Currently selected outlets. None matches every outlet
                of a resumed run and selects nothing for a fresh one.
            categories: Currently selected categories
            resume: Resume the most recent in-progress run
            run_id: Resume this specific run

        Returns:
            ResumePlan. ``run_id`` is None when a fresh run should be created.

        Raises:
            RunNotFoundError: If ``run_id`` does not exist
            RunAlreadyCompletedError: If ``run_id`` has already completed
        """
        selected = cross_product(outlet_ids or [], categories)

        if not resume and run_id is None:
            return ResumePlan(work_items=selected)

        run: Optional[RunStatus]
        if run_id is not None:
            run = self.ledger.get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status is RunState.COMPLETED:
                raise RunAlreadyCompletedError(run_id)
        else:
            run = self.ledger.get_incomplete_run()

        if run is None:
            logger.info("resume_nothing_to_resume")
            return ResumePlan(
                work_items=selected,
                message="No incomplete run found, starting fresh",
            )

        unfinished = {(item.outlet_id, item.category_slug) for item in run.pending_items}
        if outlet_ids is None:
            wanted = {category.slug for category in categories}
            to_crawl = [
                WorkItem(outlet_id=outlet_id, category=Category.from_slug(slug))
                for outlet_id, slug in sorted(unfinished)
                if slug in wanted
            ]
        else:
            to_crawl = [
                item for item in selected
                if (item.outlet_id, item.category_slug) in unfinished
            ]

        if not to_crawl:
            logger.info("resume_already_complete", run_id=run.id)
            return ResumePlan(
                run_id=run.id,
                is_resuming=True,
                all_completed=True,
                message=f"All work items of run {run.id} already completed",
            )

        logger.info(
            "resume_resolved",
            run_id=run.id,
            remaining=len(unfinished),
            selected=len(to_crawl),
        )
        return ResumePlan(
            run_id=run.id,
            work_items=to_crawl,
            is_resuming=True,
            message=(
                f"Resuming run {run.id} (started {run.started_at}), "
                f"{len(unfinished)} work items remaining"
            ),
        )
