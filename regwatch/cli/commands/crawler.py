"""CLI commands for crawling regulatory sources."""

import json
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from ...crawler.config import CrawlerConfig, get_crawler_config
from ...crawler.jobs import JobLifecycleManager, SourceFeedbackPolicy
from ...crawler.registry import SourceRegistry, UpdateQueries
from ...crawler.scheduler import CrawlScheduler
from ...crawler.service import RegulatoryCrawlerService
from ...exceptions import JobStateError, RecordNotFoundError
from ...storage.database.base import init_db
from ...storage.database.models import JobStatus, JobType
from ...utils.async_bridge import run_async

app = typer.Typer(no_args_is_help=True)
console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "yellow",
}


def _setup() -> CrawlerConfig:
    config = get_crawler_config()
    init_db(config.database_url)
    return config


def _with_service(
    config: CrawlerConfig, action: Callable[[RegulatoryCrawlerService], Awaitable[T]]
) -> T:
    async def _run() -> T:
        service = RegulatoryCrawlerService(config)
        try:
            return await action(service)
        finally:
            await service.close()

    return run_async(_run())


def _format_dt(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


@app.command("sources")
def list_sources() -> None:
    """List registered regulatory sources."""
    _setup()
    sources = SourceRegistry().all_sources()

    if not sources:
        console.print("[yellow]No sources registered. Run 'regwatch db load-sources'.[/yellow]")
        return

    table = Table(title=f"Regulatory Sources ({len(sources)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="green")
    table.add_column("Jurisdiction")
    table.add_column("Active")
    table.add_column("Priority", justify="right")
    table.add_column("Reliability", justify="right")
    table.add_column("Next crawl")

    for source in sources:
        table.add_row(
            str(source.id),
            source.name,
            source.source_type.value,
            source.jurisdiction,
            "✅" if source.is_active else "❌",
            str(source.priority),
            f"{source.reliability:.2f}",
            _format_dt(source.next_crawl),
        )

    console.print(table)


@app.command("run-due")
def run_due() -> None:
    """Crawl every source that is due now."""
    config = _setup()

    with console.status("[bold green]Crawling due sources...[/bold green]"):
        summary = _with_service(config, lambda service: service.run_scheduled_crawls())

    console.print("\n[bold green]Scheduled crawl finished[/bold green]")
    console.print(f"Sources: {summary['sources']}")
    console.print(f"Completed: {summary['completed']}")
    console.print(f"Failed: {summary['failed']}")
    console.print(f"Cancelled: {summary['cancelled']}")
    console.print(f"New updates: {summary['new_updates']}")


@app.command("crawl")
def crawl(
    source_id: int = typer.Argument(..., help="Source ID"),
    job_type: JobType = typer.Option(JobType.MANUAL, "--job-type", "-t", help="Job type"),
) -> None:
    """Crawl a single source now."""
    config = _setup()

    with console.status(f"[bold green]Crawling source {source_id}...[/bold green]"):
        result = _with_service(config, lambda service: service.crawl_source(source_id, job_type))

    if result.job_id is None:
        console.print(f"[red]{result.error_message}[/red]")
        raise typer.Exit(1)

    style = STATUS_STYLES.get(result.status, "white") if result.status else "white"
    status = result.status.value if result.status else "unknown"
    console.print(f"Job {result.job_id}: [{style}]{status}[/{style}]")
    console.print(f"Updates found: {result.updates_found}")
    console.print(f"New updates: {result.new_updates}")
    console.print(f"Pages scraped: {result.pages_scraped}")
    console.print(f"Execution time: {result.execution_time} ms")
    if result.error_message:
        console.print(f"[red]Error: {result.error_message}[/red]")

    if not result.success:
        raise typer.Exit(1)


@app.command("cancel")
def cancel(job_id: int = typer.Argument(..., help="Crawler job ID")) -> None:
    """Cancel a pending or running crawl job."""
    config = _setup()
    jobs = JobLifecycleManager(SourceFeedbackPolicy(config))

    try:
        jobs.cancel(job_id)
    except RecordNotFoundError:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)
    except JobStateError as e:
        console.print(f"[yellow]Cannot cancel job {job_id}: {e.message}[/yellow]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Job {job_id} cancelled[/green]")


@app.command("updates")
def list_updates(
    pending: bool = typer.Option(False, "--pending", help="Only updates awaiting review"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show recently detected regulatory updates."""
    _setup()
    queries = UpdateQueries()
    updates = queries.pending_updates(limit) if pending else queries.recent_updates(limit)

    if as_json:
        console.print_json(json.dumps(updates, default=str))
        return

    if not updates:
        console.print("[yellow]No updates found[/yellow]")
        return

    table = Table(title=f"Regulatory Updates ({len(updates)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Type", style="green")
    table.add_column("Confidence", justify="right")
    table.add_column("Status")
    table.add_column("Published")

    for update in updates:
        table.add_row(
            str(update["id"]),
            update["title"][:70],
            update["update_type"] or "-",
            f"{update['confidence']:.2f}",
            update["status"].value,
            _format_dt(update["published_date"]),
        )

    console.print(table)


@app.command("stats")
def stats() -> None:
    """Show crawler statistics and the latest jobs."""
    _setup()
    data = UpdateQueries().crawler_stats()

    console.print("\n[bold blue]Crawler Statistics[/bold blue]")
    console.print(f"Sources: {data['total_sources']} ({data['active_sources']} active)")
    console.print(f"Pending updates: {data['pending_updates']}")

    if not data["recent_jobs"]:
        return

    table = Table(title="Recent Jobs")
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Source", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Time (ms)", justify="right")

    for job in data["recent_jobs"]:
        status = job["status"]
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(job["id"]),
            str(job["source_id"]),
            job["job_type"].value,
            f"[{style}]{status.value}[/{style}]",
            str(job["updates_found"]),
            str(job["new_updates"]),
            str(job["execution_time"] or "-"),
        )

    console.print(table)


@app.command("schedule")
def schedule() -> None:
    """Run the periodic crawl scheduler until interrupted."""
    config = _setup()
    scheduler = CrawlScheduler(config)
    scheduler.start()
    console.print(
        f"[bold green]Scheduler running[/bold green] "
        f"(every {config.schedule_interval_minutes} min). Press Ctrl+C to stop."
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
    finally:
        scheduler.stop()
