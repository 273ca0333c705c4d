"""Tests for resume resolution."""

import pytest

from pricecrawler.errors import RunAlreadyCompletedError, RunNotFoundError
from pricecrawler.ledger import CheckpointLedger
from pricecrawler.models import Category, WorkItemStatus
from pricecrawler.resume import ResumeResolver, cross_product


@pytest.fixture
def ledger(store):
    return CheckpointLedger(store)


@pytest.fixture
def resolver(ledger):
    return ResumeResolver(ledger)


class TestCrossProduct:
    def test_outlets_times_categories(self, categories):
        items = cross_product(["O1", "O2"], categories)

        assert len(items) == 4
        assert items[0].label == "O1: Pantry > Baking"


class TestResumeResolver:
    """Test ResumeResolver.resolve."""

    def test_fresh_crawl_selects_everything(self, resolver, categories):
        plan = resolver.resolve(["O1"], categories)

        assert plan.run_id is None
        assert plan.is_resuming is False
        assert len(plan.work_items) == 2

    def test_returns_unfinished_items(self, resolver, ledger):
        categories = [
            Category(category0="Pantry", category1=name) for name in ("Baking", "Snacks", "Spreads")
        ]
        run_id = ledger.create_run(["O1"], categories)
        ledger.update_work_item(run_id, "O1", "Pantry > Baking", WorkItemStatus.COMPLETED)

        plan = resolver.resolve(["O1"], categories, resume=True)

        assert plan.run_id == run_id
        assert plan.is_resuming is True
        assert [item.category_slug for item in plan.work_items] == [
            "Pantry > Snacks",
            "Pantry > Spreads",
        ]

    def test_failed_items_are_retried(self, resolver, ledger, categories):
        run_id = ledger.create_run(["O1"], categories)
        ledger.update_work_item(run_id, "O1", "Pantry > Baking", WorkItemStatus.FAILED, error="boom")
        ledger.update_work_item(run_id, "O1", "Pantry > Snacks", WorkItemStatus.COMPLETED)

        plan = resolver.resolve(["O1"], categories, run_id=run_id)

        assert [item.category_slug for item in plan.work_items] == ["Pantry > Baking"]

    def test_intersects_with_current_selection(self, resolver, ledger, categories):
        run_id = ledger.create_run(["O1", "O2"], categories)

        plan = resolver.resolve(["O2"], categories[:1], resume=True)

        assert plan.run_id == run_id
        assert [item.label for item in plan.work_items] == ["O2: Pantry > Baking"]

    def test_no_outlet_selection_matches_every_run_outlet(self, resolver, ledger, categories):
        run_id = ledger.create_run(["O2", "O1"], categories)
        ledger.update_work_item(run_id, "O1", "Pantry > Snacks", WorkItemStatus.COMPLETED)

        plan = resolver.resolve(None, categories, resume=True)

        assert plan.run_id == run_id
        assert [item.label for item in plan.work_items] == [
            "O1: Pantry > Baking",
            "O2: Pantry > Baking",
            "O2: Pantry > Snacks",
        ]

        plan = resolver.resolve(None, categories[1:], resume=True)
        assert [item.label for item in plan.work_items] == ["O2: Pantry > Snacks"]

    def test_no_outlet_selection_fresh_run_is_empty(self, resolver, categories):
        plan = resolver.resolve(None, categories)

        assert plan.run_id is None
        assert plan.work_items == []

    def test_all_completed(self, resolver, ledger, categories):
        run_id = ledger.create_run(["O1"], categories)
        for category in categories:
            ledger.update_work_item(run_id, "O1", category.slug, WorkItemStatus.COMPLETED)

        plan = resolver.resolve(["O1"], categories, resume=True)

        assert plan.all_completed is True
        assert plan.work_items == []
        assert "already completed" in plan.message

    def test_nothing_to_resume_starts_fresh(self, resolver, categories):
        plan = resolver.resolve(["O1"], categories, resume=True)

        assert plan.run_id is None
        assert plan.all_completed is False
        assert len(plan.work_items) == 2
        assert plan.message == "No incomplete run found, starting fresh"

    def test_unknown_run_id(self, resolver, categories):
        with pytest.raises(RunNotFoundError):
            resolver.resolve(["O1"], categories, run_id=99)

    def test_completed_run_id(self, resolver, ledger, categories):
        run_id = ledger.create_run(["O1"], categories)
        ledger.complete_run(run_id)

        with pytest.raises(RunAlreadyCompletedError):
            resolver.resolve(["O1"], categories, run_id=run_id)
