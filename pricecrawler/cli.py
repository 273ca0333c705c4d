"""
PriceCrawler CLI

Command-line interface for crawling supermarket catalog prices across
outlets and querying the recorded price history.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .categories import load_categories, select_categories
from .config import load_config
from .errors import CrawlerError
from .export import export_data, format_csv, format_json
from .fetcher import PlaywrightCatalogFetcher
from .ledger import CheckpointLedger
from .logging_config import configure_logging
from .models import CrawlProgress, Outlet, RunState
from .orchestrator import CrawlOrchestrator
from .outlets import (
    find_outlet_by_name,
    find_outlets_by_name,
    load_outlets,
    sample_outlets,
    sync_outlets,
)
from .queries import (
    get_price_changes,
    get_products_by_category,
    get_products_on_promo,
    list_runs,
    search_products,
)
from .reliability import ReliabilityConfig, ReliabilityExecutor
from .resume import ResumeResolver, cross_product
from .stats import format_price_change, format_promo, get_overall_stats
from .storage import PriceHistoryStore

console = Console()
err_console = Console(stderr=True)

SESSION_DEFAULT_OUTLET = "<session default>"


def _fail(error: Exception, verbose: bool = False) -> None:
    err_console.print(f"\n[bold red]✗ Error:[/bold red] {error}")
    if verbose:
        err_console.print_exception()
    sys.exit(1)


def _open_store(ctx: click.Context, db_path: Optional[str] = None) -> PriceHistoryStore:
    config = ctx.obj["config"]
    store = PriceHistoryStore(db_path or config["storage"]["database"])
    store.initialize()
    return store


def _money(value: Optional[float]) -> str:
    return "-" if value is None else f"${value:.2f}"


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-C", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--log-format", type=click.Choice(["console", "json"]), help="Log output format")
@click.pass_context
def cli(ctx, config_path, verbose, log_format):
    """
    PriceCrawler CLI - supermarket price history crawler.

    Crawls catalog prices per outlet and category into a SQLite database,
    with checkpointed runs that can be resumed after an interruption.
    """
    try:
        config = load_config(config_path)
    except CrawlerError as e:
        _fail(e)

    logging_config = config.get("logging", {})
    configure_logging(
        level="DEBUG" if verbose else logging_config.get("level", "INFO"),
        log_format=log_format or logging_config.get("format", "console"),
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


def _select_outlets(
    store: PriceHistoryStore,
    outlets_file: Optional[str],
    names: List[str],
    sample: Optional[int],
) -> List[Outlet]:
    """Outlets from a file (synced to the database) or already known to it."""
    if outlets_file:
        available = load_outlets(outlets_file)
        sync_outlets(store, available)
    else:
        available = store.list_outlets()

    selected = available
    if names:
        selected = []
        for name in names:
            match = next((o for o in available if o.outlet_id == name), None)
            match = match or find_outlet_by_name(available, name)
            if match is None:
                raise CrawlerError(f"Outlet not found: {name}")
            if match not in selected:
                selected.append(match)

    if sample is not None:
        selected = sample_outlets(selected, sample)
    return selected


def _print_progress(progress: CrawlProgress) -> None:
    result = progress.results[-1]
    done = progress.completed + progress.failed
    if result.success:
        console.print(
            f"  [{done}/{progress.total}] [green]✓[/green] {result.outlet_id}: {result.category} "
            f"[dim]({result.product_count} products, {result.pages} pages)[/dim]"
        )
    else:
        console.print(
            f"  [{done}/{progress.total}] [red]✗[/red] {result.outlet_id}: {result.category} "
            f"[dim]{result.error}[/dim]"
        )


def _print_crawl_summary(progress: CrawlProgress) -> None:
    table = Table(title=f"Run {progress.run_id}", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Work items", str(progress.total))
    table.add_row("Completed", str(progress.completed))
    table.add_row("Failed", str(progress.failed))
    table.add_row("Products saved", str(progress.total_products))
    table.add_row("Invalid records skipped", str(sum(r.skipped for r in progress.results)))
    console.print(table)


@cli.command()
@click.option("--category", "-c", "category_specs", multiple=True, help='Category, e.g. "Pantry" or "Pantry > Baking"')
@click.option("--outlet", "-o", "outlet_names", multiple=True, help="Outlet id or name")
@click.option("--sample", type=int, help="Crawl a random sample of N outlets")
@click.option("--pages", type=int, help="Max pages per category")
@click.option("--concurrency", type=int, help="Concurrent workers")
@click.option("--dry-run", is_flag=True, help="Show the work items without crawling")
@click.option("--resume", is_flag=True, help="Resume the most recent incomplete run")
@click.option("--run-id", type=int, help="Resume a specific run")
@click.option("--headless/--no-headless", default=None, help="Run browser headless")
@click.option("--categories-file", type=click.Path(), help="Categories JSON file")
@click.option("--outlets-file", type=click.Path(), help="Outlets JSON file")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def crawl(
    ctx,
    category_specs,
    outlet_names,
    sample,
    pages,
    concurrency,
    dry_run,
    resume,
    run_id,
    headless,
    categories_file,
    outlets_file,
    db_path,
):
    """
    Crawl prices for every selected (outlet, category) pair.

    Example:
        pricecrawler crawl -c "Pantry" --outlets-file data/outlets.json --sample 3
    """
    config = ctx.obj["config"]
    verbose = ctx.obj["verbose"]
    crawler_config: Dict[str, Any] = config["crawler"]

    max_pages = pages or crawler_config.get("max_pages", 10)
    workers = concurrency or crawler_config.get("concurrency", 1)
    if headless is None:
        headless = crawler_config.get("headless", True)

    try:
        all_categories = load_categories(categories_file or crawler_config["categories_file"])
        categories = select_categories(
            all_categories, list(category_specs) or crawler_config.get("categories") or None
        )
        if not categories:
            raise CrawlerError("No categories matched the selection")

        store = _open_store(ctx, db_path)
        outlets = _select_outlets(
            store,
            outlets_file or crawler_config.get("outlets_file"),
            list(outlet_names),
            sample,
        )
    except CrawlerError as e:
        _fail(e, verbose)

    console.print(Panel.fit(
        f"[bold cyan]Price Crawl[/bold cyan]\n\n"
        f"Outlets: {len(outlets) or 'session default'}\n"
        f"Categories: {len(categories)}\n"
        f"Max pages: {max_pages}  Concurrency: {workers}",
        border_style="cyan",
    ))

    resolver = ResumeResolver(CheckpointLedger(store))

    if dry_run:
        # Without an outlet list a resumed run keeps whatever outlets it was created with
        outlet_ids = [o.outlet_id for o in outlets] or None
        try:
            plan = resolver.resolve(outlet_ids, categories, resume=resume, run_id=run_id)
        except CrawlerError as e:
            _fail(e, verbose)
        if plan.message:
            console.print(f"[yellow]{plan.message}[/yellow]")

        work_items = plan.work_items
        if outlet_ids is None and not plan.is_resuming:
            work_items = cross_product([SESSION_DEFAULT_OUTLET], categories)

        table = Table(title="Work items (dry run)", show_header=True)
        table.add_column("Outlet", style="cyan")
        table.add_column("Category", style="yellow")
        for item in work_items:
            table.add_row(item.outlet_id, item.category_slug)
        console.print(table)
        console.print(f"\n[bold]Total:[/bold] {len(work_items)} work items")
        store.close()
        return

    proxy = crawler_config.get("proxy")
    reliability = ReliabilityConfig.from_dict(config.get("reliability"))

    async def run_crawl() -> Optional[CrawlProgress]:
        fetcher = PlaywrightCatalogFetcher(
            headless=headless,
            timeouts=reliability.timeouts,
            proxy={"server": proxy} if proxy else None,
        )
        with console.status("[bold green]Starting browser session...", spinner="dots"):
            await fetcher.start()

        try:
            crawl_outlets = outlets
            if not crawl_outlets:
                default = Outlet(
                    outlet_id=fetcher.default_outlet_id,
                    name=f"Store {fetcher.default_outlet_id}",
                )
                sync_outlets(store, [default])
                crawl_outlets = [default]
                console.print(f"✓ Using session outlet {default.outlet_id}")

            plan = resolver.resolve(
                [o.outlet_id for o in crawl_outlets],
                categories,
                resume=resume,
                run_id=run_id,
            )
            if plan.message:
                console.print(f"[yellow]{plan.message}[/yellow]")
            if plan.all_completed:
                return None

            orchestrator = CrawlOrchestrator(
                store,
                fetcher,
                executor=ReliabilityExecutor(reliability),
                concurrency=workers,
                max_pages=max_pages,
                on_progress=_print_progress,
            )
            console.print(f"\n[bold]Crawling {len(plan.work_items)} work items...[/bold]")
            return await orchestrator.run(plan.work_items, run_id=plan.run_id)
        finally:
            await fetcher.close()

    try:
        progress = asyncio.run(run_crawl())
    except CrawlerError as e:
        _fail(e, verbose)
    finally:
        store.close()

    if progress is None:
        return

    console.print()
    _print_crawl_summary(progress)
    if progress.total and progress.completed == 0:
        console.print("[bold red]✗ Every work item failed[/bold red]")
        sys.exit(1)


@cli.command("sync-outlets")
@click.argument("outlets_file", type=click.Path(exists=True))
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def sync_outlets_cmd(ctx, outlets_file, db_path):
    """Load outlets from a JSON file into the database."""
    try:
        with _open_store(ctx, db_path) as store:
            count = sync_outlets(store, load_outlets(outlets_file))
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])
    console.print(f"✓ Synced {count} outlets")


@cli.command()
@click.option("--name", help="Only outlets whose name contains this text")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def outlets(ctx, name, db_path):
    """List known outlets."""
    try:
        with _open_store(ctx, db_path) as store:
            rows = store.list_outlets()
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if name:
        rows = find_outlets_by_name(rows, name)

    if not rows:
        console.print("\n[dim]No outlets stored yet[/dim]")
        return

    table = Table(show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Region", style="yellow")
    table.add_column("Last synced", style="dim")
    for outlet in rows:
        table.add_row(outlet.outlet_id, outlet.name, outlet.region or "-", outlet.last_synced or "-")
    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(rows)} outlets")


@cli.command()
@click.option("--categories-file", type=click.Path(), help="Categories JSON file")
@click.pass_context
def categories(ctx, categories_file):
    """List crawlable categories."""
    path = categories_file or ctx.obj["config"]["crawler"]["categories_file"]
    try:
        rows = load_categories(path)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    for category in rows:
        console.print(category.slug)
    console.print(f"\n[bold]Total:[/bold] {len(rows)} categories")


@cli.command()
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def summary(ctx, db_path):
    """Show database statistics."""
    try:
        with _open_store(ctx, db_path) as store:
            stats = get_overall_stats(store)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    table = Table(title="Price History", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Products", str(stats.total_products))
    table.add_row("Snapshots", str(stats.total_snapshots))
    table.add_row("Outlets", str(stats.total_outlets))
    table.add_row("On promotion", str(stats.products_on_promo))
    table.add_row("Categories", str(len(stats.categories)))
    table.add_row("First snapshot", stats.earliest or "-")
    table.add_row("Last snapshot", stats.latest or "-")
    console.print(table)


@cli.command()
@click.option("--limit", type=int, default=50, show_default=True, help="Max rows")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def promos(ctx, limit, db_path):
    """List products currently on promotion."""
    try:
        with _open_store(ctx, db_path) as store:
            rows = get_products_on_promo(store)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if not rows:
        console.print("\n[dim]No promotions found[/dim]")
        return

    for snapshot in rows[:limit]:
        console.print(f"  {format_promo(snapshot)}")
    console.print(f"\n[bold]Total:[/bold] {len(rows)} products on promotion")


@cli.command()
@click.option("--outlet", "outlet_id", help="Restrict to one outlet")
@click.option("--limit", type=int, default=50, show_default=True, help="Max rows")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def prices(ctx, outlet_id, limit, db_path):
    """Show the latest price of each product."""
    try:
        with _open_store(ctx, db_path) as store:
            rows = store.get_latest_prices(outlet_id=outlet_id)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if not rows:
        console.print("\n[dim]No prices recorded yet[/dim]")
        return

    table = Table(title="Latest prices", show_header=True)
    table.add_column("Product", style="cyan")
    table.add_column("Outlet", style="dim")
    table.add_column("Name", style="green")
    table.add_column("Price", justify="right")
    table.add_column("Promo", justify="right", style="red")
    table.add_column("Captured", style="dim")
    for snapshot in rows[:limit]:
        table.add_row(
            snapshot.product_id,
            snapshot.outlet_id,
            snapshot.display_name or "-",
            _money(snapshot.price),
            _money(snapshot.promo_price),
            snapshot.scraped_at[:19],
        )
    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(rows)} prices")


def _print_products(products, title: str) -> None:
    if not products:
        console.print("\n[dim]No products found[/dim]")
        return

    table = Table(title=title, show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Brand", style="yellow")
    table.add_column("Category", style="magenta")
    table.add_column("Last seen", style="dim")
    for product in products:
        category = product.category or "-"
        if product.subcategory:
            category = f"{category} > {product.subcategory}"
        table.add_row(
            product.product_id,
            product.name,
            product.brand or "-",
            category,
            product.last_seen[:19],
        )
    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(products)} products")


@cli.command()
@click.argument("query")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def search(ctx, query, db_path):
    """Search products by name or brand."""
    try:
        with _open_store(ctx, db_path) as store:
            products = search_products(store, query)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])
    _print_products(products, f'Search: "{query}"')


@cli.command()
@click.argument("name")
@click.option("--sub", "subcategory", help="Subcategory")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def category(ctx, name, subcategory, db_path):
    """List products in a category."""
    try:
        with _open_store(ctx, db_path) as store:
            products = get_products_by_category(store, name, subcategory)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])
    _print_products(products, name if not subcategory else f"{name} > {subcategory}")


@cli.command()
@click.argument("product_id")
@click.option("--outlet", "outlet_id", help="Restrict to one outlet")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def history(ctx, product_id, outlet_id, db_path):
    """Show the price history of a product."""
    try:
        with _open_store(ctx, db_path) as store:
            product = store.get_product(product_id)
            snapshots = store.get_product_history(product_id, outlet_id)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if product is None:
        console.print(f"[bold red]✗ Product not found:[/bold red] {product_id}")
        sys.exit(1)

    table = Table(title=f"{product.name} ({product_id})", show_header=True)
    table.add_column("Scraped", style="dim")
    table.add_column("Outlet", style="cyan")
    table.add_column("Price", style="green", justify="right")
    table.add_column("Promo", style="yellow", justify="right")
    table.add_column("Promo type", style="magenta")
    for snapshot in snapshots:
        table.add_row(
            snapshot.scraped_at[:19],
            snapshot.outlet_id,
            _money(snapshot.price),
            _money(snapshot.promo_price),
            snapshot.promo_type or "-",
        )
    console.print(table)


@cli.command()
@click.argument("product_id")
@click.option("--outlet", "outlet_id", help="Restrict to one outlet")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def changes(ctx, product_id, outlet_id, db_path):
    """Show price changes between consecutive snapshots."""
    try:
        with _open_store(ctx, db_path) as store:
            rows = get_price_changes(store, product_id, outlet_id)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    moved = [change for change in rows if change.delta != 0]
    if not moved:
        console.print("\n[dim]No price changes recorded[/dim]")
        return
    for change in moved:
        console.print(f"  {format_price_change(change)}")


@cli.command()
@click.option("--limit", type=int, default=20, show_default=True, help="Max runs")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def runs(ctx, limit, db_path):
    """List recent crawl runs."""
    try:
        with _open_store(ctx, db_path) as store:
            rows = list_runs(store, limit)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if not rows:
        console.print("\n[dim]No runs recorded yet[/dim]")
        return

    table = Table(show_header=True)
    table.add_column("Run", style="cyan", justify="right")
    table.add_column("Started", style="dim")
    table.add_column("Completed", style="dim")
    table.add_column("Status", style="bold")
    table.add_column("Items", style="green", justify="right")
    for entry in rows:
        color = "green" if entry.status is RunState.COMPLETED else "yellow"
        table.add_row(
            str(entry.id),
            entry.started_at[:19],
            (entry.completed_at or "-")[:19],
            f"[{color}]{entry.status.value}[/{color}]",
            f"{entry.completed_items}/{entry.total_items}",
        )
    console.print(table)


@cli.command()
@click.argument("run_id", type=int)
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def run(ctx, run_id, db_path):
    """Show the work items of one run."""
    try:
        with _open_store(ctx, db_path) as store:
            status = CheckpointLedger(store).get_run(run_id)
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])

    if status is None:
        console.print(f"[bold red]✗ Run not found:[/bold red] {run_id}")
        sys.exit(1)

    console.print(Panel.fit(
        f"[bold cyan]Run {status.id}[/bold cyan] ({status.status.value})\n\n"
        f"Started: {status.started_at}\n"
        f"Completed: {status.completed_at or '-'}\n"
        f"Items: {status.completed_items} completed, {status.failed_items} failed, "
        f"{status.total_items} total",
        border_style="cyan",
    ))

    table = Table(show_header=True)
    table.add_column("Outlet", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Status", style="bold")
    table.add_column("Pages", justify="right")
    table.add_column("Products", justify="right")
    table.add_column("Error", style="dim")
    for item in status.items:
        table.add_row(
            item.outlet_id,
            item.category_slug,
            item.status.value,
            str(item.last_page) if item.last_page is not None else "-",
            str(item.product_count) if item.product_count is not None else "-",
            (item.error or "")[:60],
        )
    console.print(table)


@cli.command()
@click.option("--format", "fmt", type=click.Choice(["csv", "json"]), default="csv", show_default=True)
@click.option("--since", help="Only snapshots newer than e.g. 7d, 24h, 30m")
@click.option("--category", help="Only this top-level category")
@click.option("--output", "-o", type=click.Path(), help="Write to file instead of stdout")
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def export(ctx, fmt, since, category, output, db_path):
    """
    Export price history as CSV or JSON.

    Example:
        pricecrawler export --format json --since 7d -o prices.json
    """
    try:
        with _open_store(ctx, db_path) as store:
            records = export_data(store, category=category, since=since)
    except (CrawlerError, ValueError) as e:
        _fail(e, ctx.obj["verbose"])

    content = format_json(records) if fmt == "json" else format_csv(records)

    if output:
        Path(output).write_text(content + "\n", encoding="utf-8")
        err_console.print(f"✓ Exported {len(records)} rows to: {output}")
    else:
        click.echo(content)


@cli.command()
@click.option("--db-path", type=click.Path(), help="Database path")
@click.pass_context
def checkpoint(ctx, db_path):
    """Fold the write-ahead log back into the database file."""
    try:
        with _open_store(ctx, db_path) as store:
            result = store.checkpoint()
    except CrawlerError as e:
        _fail(e, ctx.obj["verbose"])
    console.print(f"✓ Checkpoint: {result.moved_pages}/{result.wal_pages} WAL pages moved")


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
