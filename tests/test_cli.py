"""Tests for the command-line interface."""

import json
import logging

import pytest
import structlog
from click.testing import CliRunner

from pricecrawler.cli import cli
from pricecrawler.ledger import CheckpointLedger
from pricecrawler.models import Category, WorkItemStatus
from pricecrawler.storage import PriceHistoryStore

CATEGORY_TREE = [
    {"name": "Featured", "children": [{"name": "Specials"}]},
    {"name": "Pantry", "children": [{"name": "Baking"}, {"name": "Snacks"}]},
]

STORES = [
    {"id": "A1", "name": "New World Thorndon", "region": "Wellington"},
    {"id": "C3", "name": "New World Remuera", "region": "Auckland"},
]


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger().handlers = []
    structlog.reset_defaults()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def files(tmp_path):
    categories = tmp_path / "categories.json"
    categories.write_text(json.dumps(CATEGORY_TREE))
    outlets = tmp_path / "outlets.json"
    outlets.write_text(json.dumps(STORES))
    return {
        "categories": str(categories),
        "outlets": str(outlets),
        "db": str(tmp_path / "prices.db"),
    }


class TestCli:
    """Test CLI commands that need no browser."""

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("crawl", "export", "runs", "sync-outlets", "checkpoint"):
            assert command in result.output

    def test_sync_and_list_outlets(self, runner, files):
        result = runner.invoke(cli, ["sync-outlets", files["outlets"], "--db-path", files["db"]])
        assert result.exit_code == 0
        assert "Synced 2 outlets" in result.output

        result = runner.invoke(cli, ["outlets", "--db-path", files["db"]])
        assert result.exit_code == 0
        assert "A1" in result.output
        assert "C3" in result.output

    def test_crawl_dry_run(self, runner, files):
        result = runner.invoke(
            cli,
            [
                "crawl",
                "--dry-run",
                "--categories-file", files["categories"],
                "--outlets-file", files["outlets"],
                "--db-path", files["db"],
                "-c", "Pantry > Baking",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Total: 2 work items" in result.output

    def test_crawl_dry_run_resume_without_outlet_list(self, runner, files):
        with PriceHistoryStore(files["db"]) as store:
            ledger = CheckpointLedger(store)
            run_id = ledger.create_run(
                ["A1"],
                [
                    Category(category0="Pantry", category1="Baking"),
                    Category(category0="Pantry", category1="Snacks"),
                ],
            )
            ledger.update_work_item(run_id, "A1", "Pantry > Baking", WorkItemStatus.COMPLETED)

        result = runner.invoke(
            cli,
            [
                "crawl",
                "--dry-run",
                "--resume",
                "--categories-file", files["categories"],
                "--db-path", files["db"],
            ],
        )

        assert result.exit_code == 0, result.output
        assert f"Resuming run {run_id}" in result.output
        assert "Total: 1 work items" in result.output

    def test_crawl_unknown_outlet(self, runner, files):
        result = runner.invoke(
            cli,
            [
                "crawl",
                "--dry-run",
                "--categories-file", files["categories"],
                "--outlets-file", files["outlets"],
                "--db-path", files["db"],
                "-o", "Kaikoura",
            ],
        )

        assert result.exit_code == 1

    def test_crawl_missing_categories_file(self, runner, files, tmp_path):
        result = runner.invoke(
            cli,
            [
                "crawl",
                "--dry-run",
                "--categories-file", str(tmp_path / "missing.json"),
                "--db-path", files["db"],
            ],
        )

        assert result.exit_code == 1

    def test_summary_on_empty_database(self, runner, files):
        result = runner.invoke(cli, ["summary", "--db-path", files["db"]])

        assert result.exit_code == 0
        assert "Products" in result.output

    def test_runs_and_run_detail(self, runner, files):
        with PriceHistoryStore(files["db"]) as store:
            run_id = CheckpointLedger(store).create_run(
                ["A1"], [Category(category0="Pantry", category1="Baking")]
            )

        result = runner.invoke(cli, ["runs", "--db-path", files["db"]])
        assert result.exit_code == 0
        assert "in_progress" in result.output

        result = runner.invoke(cli, ["run", str(run_id), "--db-path", files["db"]])
        assert result.exit_code == 0
        assert "pending" in result.output

        result = runner.invoke(cli, ["run", "999", "--db-path", files["db"]])
        assert result.exit_code == 1

    def test_export_to_file(self, runner, files, tmp_path):
        output = tmp_path / "export.json"

        result = runner.invoke(
            cli, ["export", "--format", "json", "-o", str(output), "--db-path", files["db"]]
        )

        assert result.exit_code == 0
        assert json.loads(output.read_text()) == []

    def test_export_bad_since(self, runner, files):
        result = runner.invoke(cli, ["export", "--since", "soon", "--db-path", files["db"]])

        assert result.exit_code == 1

    def test_checkpoint(self, runner, files):
        result = runner.invoke(cli, ["checkpoint", "--db-path", files["db"]])

        assert result.exit_code == 0
        assert "WAL pages" in result.output

    def test_outlets_name_filter(self, runner, files):
        runner.invoke(cli, ["sync-outlets", files["outlets"], "--db-path", files["db"]])

        result = runner.invoke(cli, ["outlets", "--name", "thorndon", "--db-path", files["db"]])

        assert result.exit_code == 0
        assert "A1" in result.output
        assert "C3" not in result.output

    def test_prices_on_empty_database(self, runner, files):
        result = runner.invoke(cli, ["prices", "--db-path", files["db"]])

        assert result.exit_code == 0
        assert "No prices recorded yet" in result.output
