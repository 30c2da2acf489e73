"""
Run CLI Commands
================

CLI commands for starting, draining and inspecting pipeline runs, plus
brand management, the queue worker and adapter listing.
"""

from __future__ import annotations

import asyncio
import re
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.core.errors import CatalogPipelineError
from catalog_pipeline.core.schema import DrainRequest, DrainResult, RunSummary, StartRunRequest
from catalog_pipeline.ingestion.adapters import get_adapter_info, list_adapters

console = Console()
runs_app = typer.Typer(help="Run management commands")
brands_app = typer.Typer(help="Brand management commands")
adapters_app = typer.Typer(help="Platform adapter commands")

KIND_OPTION = typer.Option(PipelineKind.CATALOG, "--kind", "-k", help="Pipeline kind")


def _dispatcher(kind: PipelineKind):
    from catalog_pipeline.pipeline.dispatcher import RunDispatcher
    from catalog_pipeline.pipeline.factory import get_pipeline

    return RunDispatcher(get_pipeline(kind))


async def _run_closing(dispatcher, coro):
    try:
        return await coro
    finally:
        await dispatcher.pipeline.handler.aclose()


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _display_summary(summary: RunSummary) -> None:
    """Display a run summary in a formatted table."""
    status_color = {
        "processing": "blue",
        "completed": "green",
        "completed_with_errors": "yellow",
        "paused": "yellow",
        "stopped": "white",
        "blocked": "red",
    }.get(summary.status, "white")

    table = Table(title=f"{summary.kind.value} run {summary.run_id}")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Scope", summary.scope)
    table.add_row("Status", f"[{status_color}]{summary.status}[/{status_color}]")
    table.add_row("Total", str(summary.total))
    table.add_row("Completed", str(summary.completed))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Pending", str(summary.pending))
    table.add_row("Queued", str(summary.queued))
    table.add_row("In progress", str(summary.in_progress))
    if summary.last_stage:
        table.add_row("Last stage", summary.last_stage)
    if summary.block_reason:
        table.add_row("Block reason", summary.block_reason)
    if summary.last_error:
        table.add_row("Last error", f"[red]{summary.last_error}[/red]")
    console.print(table)


def _display_drain(result: DrainResult) -> None:
    rprint("\n[bold]Drain:[/bold]")
    rprint(f"  Runs: {', '.join(result.runs) or 'none'}")
    rprint(f"  Processed: {result.processed}")
    rprint(f"  Completed: [green]{result.completed}[/green]")
    rprint(f"  Failed: [red]{result.failed}[/red]")
    rprint(f"  Skipped: {result.skipped}")
    rprint(f"  Elapsed: {result.elapsed_ms}ms")
    for summary in result.summaries:
        _display_summary(summary)


# Runs subcommands


@runs_app.command("start")
def start_run(
    scope: str = typer.Argument(..., help="Brand ID, or 'all' for enrichment"),
    kind: PipelineKind = KIND_OPTION,
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Cap on discovered items"),
    resume: bool = typer.Option(False, "--resume", help="Force-resume an active run"),
    drain_batch: Optional[int] = typer.Option(None, "--drain", "-d", help="Drain this many items now"),
    use_queue: bool = typer.Option(False, "--queue", "-q", help="Enqueue items for workers"),
) -> None:
    """
    Start (or resume) a run for a scope.

    Examples:
        catalog-pipeline runs start <brand-id> --drain 20
        catalog-pipeline runs start all --kind enrichment --queue
    """
    request = StartRunRequest(
        scope=scope,
        batch_size=batch_size,
        resume=resume,
        drain_batch=drain_batch,
        use_queue=use_queue,
    )
    try:
        with console.status(f"[bold blue]Starting {kind.value} run...[/bold blue]"):
            dispatcher = _dispatcher(kind)
            summary = asyncio.run(_run_closing(dispatcher, dispatcher.start(request)))
    except CatalogPipelineError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _display_summary(summary)


@runs_app.command("drain")
def drain_runs(
    kind: PipelineKind = KIND_OPTION,
    run_id: Optional[str] = typer.Option(None, "--run", help="Run ID to drain"),
    scope: Optional[str] = typer.Option(None, "--scope", "-s", help="Drain the active run of a scope"),
    batch: Optional[int] = typer.Option(None, "--batch", "-b", help="Maximum items to process"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Items at once"),
    max_ms: Optional[int] = typer.Option(None, "--max-ms", help="Wall-clock budget (ms)"),
    max_runs: int = typer.Option(1, "--max-runs", help="Active runs to drain"),
) -> None:
    """
    Drain runs for a bounded amount of time.

    Examples:
        catalog-pipeline runs drain --scope <brand-id> --batch 50
        catalog-pipeline runs drain --kind enrichment --max-runs 3
    """
    request = DrainRequest(
        run_id=run_id,
        scope=scope,
        batch=batch,
        concurrency=concurrency,
        max_ms=max_ms,
        max_runs=max_runs,
    )
    try:
        with console.status("[bold blue]Draining...[/bold blue]"):
            dispatcher = _dispatcher(kind)
            result = asyncio.run(_run_closing(dispatcher, dispatcher.drain(request)))
    except CatalogPipelineError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _display_drain(result)


@runs_app.command("status")
def run_status(
    scope: str = typer.Argument(..., help="Run scope"),
    kind: PipelineKind = KIND_OPTION,
) -> None:
    """Show the latest run for a scope."""
    try:
        summary = _dispatcher(kind).state(scope)
    except CatalogPipelineError as e:
        rprint(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    _display_summary(summary)


@runs_app.command("pause")
def pause_run(
    scope: str = typer.Argument(..., help="Run scope"),
    kind: PipelineKind = KIND_OPTION,
) -> None:
    """Pause the active run for a scope."""
    try:
        summary = _dispatcher(kind).pause(scope)
    except CatalogPipelineError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _display_summary(summary)


@runs_app.command("stop")
def stop_run(
    scope: str = typer.Argument(..., help="Run scope"),
    kind: PipelineKind = KIND_OPTION,
) -> None:
    """Stop the active run for a scope."""
    try:
        summary = _dispatcher(kind).stop(scope)
    except CatalogPipelineError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _display_summary(summary)


# Brands subcommands


@brands_app.command("add")
def add_brand(
    name: str = typer.Argument(..., help="Brand name"),
    site_url: str = typer.Option(..., "--url", "-u", help="Storefront URL"),
    platform: Optional[str] = typer.Option(
        None, "--platform", "-p", help="shopify, woocommerce, vtex, magento (detected when omitted)"
    ),
    slug: Optional[str] = typer.Option(None, "--slug", help="Unique slug (derived from the name)"),
) -> None:
    """
    Register a brand to crawl.

    Examples:
        catalog-pipeline brands add "Mi Marca" --url https://mimarca.co --platform shopify
    """
    from catalog_pipeline.db.engine import get_session
    from catalog_pipeline.db.repositories import BrandRepository

    slug = slug or _slugify(name)
    with get_session() as session:
        repo = BrandRepository(session)
        if repo.get_by_slug(slug) is not None:
            rprint(f"[red]Error:[/red] Brand '{slug}' already exists")
            raise typer.Exit(1)
        brand = repo.create(name=name, slug=slug, site_url=site_url, ecommerce_platform=platform)
        session.commit()
        rprint(f"[green]Brand created:[/green] {brand.name} ({brand.id})")


@brands_app.command("list")
def list_brands(
    active_only: bool = typer.Option(False, "--active", "-a", help="Only active brands"),
) -> None:
    """List registered brands."""
    from catalog_pipeline.db.engine import get_session
    from catalog_pipeline.db.repositories import BrandRepository

    with get_session() as session:
        brands = BrandRepository(session).list_all(active_only=active_only)

        if not brands:
            rprint("[yellow]No brands registered[/yellow]")
            return

        table = Table(title="Brands")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="bold")
        table.add_column("Site")
        table.add_column("Platform")
        for brand in brands:
            table.add_row(brand.id, brand.name, brand.site_url or "", brand.ecommerce_platform or "-")

    console.print(table)


# Adapters subcommands


@adapters_app.command("list")
def list_platform_adapters() -> None:
    """List available platform adapters."""
    table = Table(title="Available Adapters")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Class")

    for adapter_name in list_adapters():
        info = get_adapter_info(adapter_name)
        if info:
            table.add_row(info["name"], info["version"], info["class"])

    console.print(table)


def start_worker(burst: bool) -> None:
    """Run the arq worker for pipeline items."""
    rprint("[bold]Starting pipeline worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    from arq import run_worker

    from catalog_pipeline.pipeline.queue import WorkerSettings

    run_worker(WorkerSettings, burst=burst)
