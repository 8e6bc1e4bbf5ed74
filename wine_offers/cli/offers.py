"""
Offer CLI Commands
==================

CLI commands for refreshing offers, tracing a single match and managing
price sources.
"""

from __future__ import annotations

import asyncio
import re
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from wine_offers.core.enums import AdapterType, MatchDecision
from wine_offers.core.schema import PriceSource
from wine_offers.db.engine import get_session
from wine_offers.db.repositories import ExternalOfferRepository, PriceSourceRepository
from wine_offers.offers.detect import detect_platform
from wine_offers.offers.diagnostics import DiagnosticOutput, run_diagnostic
from wine_offers.offers.overview import build_offer_overview
from wine_offers.offers.service import OfferRefreshService

console = Console()
offers_app = typer.Typer(help="Offer refresh and inspection commands")
sources_app = typer.Typer(help="Price source management commands")


def slugify(name: str) -> str:
    """Lowercase, dash-separated slug for a source name."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _format_price(amount: float | None, currency: str) -> str:
    return f"{amount:.2f} {currency}" if amount is not None else "-"


@offers_app.command("refresh")
def refresh_offers(
    wine: Optional[str] = typer.Option(None, "--wine", "-w", help="Catalog wine ID to refresh"),
    all_wines: bool = typer.Option(False, "--all", "-a", help="Refresh every catalog wine"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-n", help="Only the first N wines"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Only this price source ID"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Match threshold override"),
    enqueue: bool = typer.Option(False, "--enqueue", help="Queue the job for the worker instead"),
) -> None:
    """
    Refresh offers for one wine or the whole catalog.

    Examples:
        wine-offers offers refresh --wine 42
        wine-offers offers refresh --all --batch-size 20 --threshold 0.5
        wine-offers offers refresh --all --enqueue
    """
    if bool(wine) == all_wines:
        rprint("[red]Error:[/red] Pass exactly one of --wine or --all")
        raise typer.Exit(1)

    if enqueue:
        from wine_offers.offers.jobs import enqueue_refresh_all, enqueue_refresh_wine

        try:
            if wine:
                job_id = asyncio.run(enqueue_refresh_wine(wine, threshold, source))
            else:
                job_id = asyncio.run(enqueue_refresh_all(threshold, batch_size, source))
        except Exception as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running")
            raise typer.Exit(1)
        rprint("[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")
        return

    with get_session() as session:
        service = OfferRefreshService(session)
        if wine:
            with console.status(f"[bold blue]Refreshing wine {wine}...[/bold blue]"):
                result = asyncio.run(
                    service.refresh_wine(wine, match_threshold=threshold, source_id=source)
                )
            _display_wine_result(result.to_dict())
            errors = result.errors
            failed = not result.results and bool(errors)
        else:
            with console.status("[bold blue]Refreshing catalog...[/bold blue]"):
                batch = asyncio.run(
                    service.refresh_all_wines(
                        match_threshold=threshold, batch_size=batch_size, source_id=source
                    )
                )
            rprint(f"\n[bold]Processed:[/bold] {batch.processed}/{batch.total_wines} wines")
            errors = batch.errors
            failed = False

    _display_errors(errors)
    if failed:
        raise typer.Exit(1)


@offers_app.command("diagnose")
def diagnose_offer(
    wine_id: str = typer.Argument(..., help="Catalog wine ID"),
    source_id: str = typer.Argument(..., help="Price source ID or slug"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Match threshold override"),
    show_requests: bool = typer.Option(False, "--requests", "-r", help="List every HTTP request"),
) -> None:
    """
    Trace the match pipeline for one wine against one source.

    Examples:
        wine-offers offers diagnose 42 vinbutiken
        wine-offers offers diagnose 42 vinbutiken --requests
    """
    with get_session() as session:
        source = PriceSourceRepository(session).get_by_slug(source_id)
        if source is not None:
            source_id = source.id
        output = asyncio.run(
            run_diagnostic(session, wine_id, source_id, match_threshold=threshold)
        )

    _display_diagnostic(output, show_requests)
    if output.error:
        raise typer.Exit(1)


@offers_app.command("list")
def list_offers(
    wine: Optional[str] = typer.Option(None, "--wine", "-w", help="Only offers for this wine"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum rows to show"),
) -> None:
    """
    List stored offers.

    Examples:
        wine-offers offers list
        wine-offers offers list --wine 42
    """
    with get_session() as session:
        if wine:
            rows = ExternalOfferRepository(session).list_by_wine(wine)
            title = f"Offers for wine {wine}"
        else:
            rows = build_offer_overview(session, limit=limit)
            title = "Latest offers"

    if not rows:
        rprint("[yellow]No offers stored[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Wine", style="bold")
    table.add_column("Source")
    table.add_column("Price", justify="right")
    table.add_column("Available")
    table.add_column("Confidence", justify="right")
    table.add_column("Title")

    for row in rows[:limit]:
        wine_label = " ".join(p for p in (row.producer_name, row.wine_name, row.vintage) if p)
        available = "[green]yes[/green]" if row.available else "[yellow]no[/yellow]"
        table.add_row(
            wine_label or row.wine_id,
            row.source_name or row.price_source_id,
            _format_price(row.price_amount, row.currency),
            available,
            f"{row.match_confidence:.2f}",
            row.title_raw or "",
        )

    console.print(table)


@offers_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the refresh worker, including the nightly batch cron.

    Examples:
        wine-offers offers worker
        wine-offers offers worker --burst
    """
    from arq import run_worker

    from wine_offers.offers.jobs import WorkerSettings

    rprint("[bold]Starting refresh worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show inactive sources too"),
) -> None:
    """
    List price sources.

    Examples:
        wine-offers sources list
        wine-offers sources list --all
    """
    with get_session() as session:
        sources = PriceSourceRepository(session).list_all(active_only=not all_sources)

    if not sources:
        rprint("[yellow]No price sources configured[/yellow]")
        rprint("\nAdd one with: wine-offers sources add NAME BASE_URL")
        return

    table = Table(title="Price Sources")
    table.add_column("Name", style="bold")
    table.add_column("Slug")
    table.add_column("Base URL")
    table.add_column("Adapter")
    table.add_column("Status")
    table.add_column("Delay")
    table.add_column("Last crawled")

    for source in sources:
        status = "[green]active[/green]" if source.is_active else "[yellow]inactive[/yellow]"
        crawled = source.last_crawled_at.strftime("%Y-%m-%d %H:%M") if source.last_crawled_at else "-"
        table.add_row(
            source.name,
            source.slug,
            source.base_url,
            source.adapter_type,
            status,
            f"{source.rate_limit_delay_ms} ms",
            crawled,
        )

    console.print(table)


@sources_app.command("add")
def add_source(
    name: str = typer.Argument(..., help="Display name"),
    base_url: str = typer.Argument(..., help="Shop base URL"),
    adapter: str = typer.Option("auto", "--adapter", help="shopify, woocommerce or auto"),
    slug: Optional[str] = typer.Option(None, "--slug", help="Unique slug (derived from the name)"),
    search_url_template: Optional[str] = typer.Option(
        None, "--search-template", help="Search URL with a {query} placeholder"
    ),
    sitemap_url: Optional[str] = typer.Option(None, "--sitemap", help="Sitemap URL override"),
    delay_ms: int = typer.Option(2000, "--delay", help="Delay before each product page fetch (ms)"),
    currency: Optional[str] = typer.Option(None, "--currency", help="Default currency code"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Per-source match threshold"),
    inactive: bool = typer.Option(False, "--inactive", help="Create the source disabled"),
) -> None:
    """
    Add a price source.

    With --adapter auto the platform is detected from the home page.

    Examples:
        wine-offers sources add "Vinbutiken" https://vinbutiken.example
        wine-offers sources add "Vinhandel" https://vinhandel.example --adapter woocommerce --currency DKK
    """
    adapter = adapter.strip().lower()
    if adapter == "auto":
        with console.status(f"[bold blue]Detecting platform of {base_url}...[/bold blue]"):
            detection = asyncio.run(detect_platform(base_url))
        if detection.adapter_type == AdapterType.UNKNOWN.value:
            rprint(f"[red]Error:[/red] Could not detect the platform of {base_url}")
            if detection.error:
                rprint(f"  {detection.error}")
            rprint("Pass --adapter shopify or --adapter woocommerce")
            raise typer.Exit(1)
        adapter = detection.adapter_type
        rprint(f"Detected [bold]{adapter}[/bold] ({', '.join(detection.signals)})")
    elif adapter not in (AdapterType.SHOPIFY.value, AdapterType.WOOCOMMERCE.value):
        rprint(f"[red]Error:[/red] Unknown adapter '{adapter}'")
        raise typer.Exit(1)

    config: dict[str, object] = {}
    if currency:
        config["currency"] = currency.upper()
    if threshold is not None:
        config["matchThreshold"] = threshold

    try:
        source = PriceSource(
            name=name,
            slug=slug or slugify(name),
            base_url=base_url,
            search_url_template=search_url_template,
            sitemap_url=sitemap_url,
            adapter_type=adapter,
            is_active=not inactive,
            rate_limit_delay_ms=delay_ms,
            config=config,
        )
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    with get_session() as session:
        repo = PriceSourceRepository(session)
        if repo.get_by_slug(source.slug) is not None:
            rprint(f"[red]Error:[/red] A source with slug '{source.slug}' already exists")
            raise typer.Exit(1)
        created = repo.create(source)
        session.commit()

    rprint(f"[green]Price source '{created.name}' added[/green]")
    rprint(f"  ID: {created.id}")
    rprint(f"  Slug: {created.slug}")
    rprint(f"  Adapter: {created.adapter_type}")


@sources_app.command("detect")
def detect_source_platform(
    url: str = typer.Argument(..., help="Shop base URL"),
) -> None:
    """
    Detect whether a shop runs Shopify or WooCommerce.

    Examples:
        wine-offers sources detect https://vinbutiken.example
    """
    with console.status(f"[bold blue]Fetching {url}...[/bold blue]"):
        detection = asyncio.run(detect_platform(url))

    if detection.error:
        rprint(f"[red]Error:[/red] {detection.error}")
        raise typer.Exit(1)

    rprint(f"\n[bold]Platform:[/bold] {detection.adapter_type}")
    rprint(f"  HTTP status: {detection.status}")
    for signal in detection.signals:
        rprint(f"  • {signal}")


def _display_wine_result(result: dict) -> None:
    """Display a single-wine refresh in a formatted table."""
    rprint(f"\n[bold]Wine {result['wine_id']}:[/bold] {result['offers_updated']} offer(s) updated")
    if not result["results"]:
        return

    table = Table()
    table.add_column("Source", style="bold")
    table.add_column("Candidates", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Confidence", justify="right")

    for r in result["results"]:
        confidence = f"{r['best_confidence']:.2f}" if r["best_confidence"] is not None else "-"
        table.add_row(r["source_name"], str(r["candidates_checked"]), str(r["offers_updated"]), confidence)

    console.print(table)


def _display_errors(errors: list[str]) -> None:
    if not errors:
        return
    rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
    for error in errors[:10]:  # Show first 10
        rprint(f"  • {error}")
    if len(errors) > 10:
        rprint(f"  ... and {len(errors) - 10} more")


def _display_diagnostic(output: DiagnosticOutput, show_requests: bool) -> None:
    """Display a diagnostic trace."""
    if output.error:
        rprint(f"[red]Error:[/red] {output.error}")

    if output.wine:
        wine = output.wine
        rprint(f"\n[bold]Wine:[/bold] {wine.producer_name or ''} {wine.wine_name} {wine.vintage}".rstrip())
    if output.source:
        rprint(f"[bold]Source:[/bold] {output.source.name} ({output.source.adapter_type})")
    rprint(f"[bold]Threshold:[/bold] {output.threshold_used}")
    rprint(
        f"[bold]Requests:[/bold] {len(output.requests)} "
        f"({output.search_request_count} during search)"
    )
    rprint(f"[bold]Candidates:[/bold] {output.candidate_count}")

    if show_requests and output.requests:
        table = Table(title="Requests")
        table.add_column("Status", justify="right")
        table.add_column("Bytes", justify="right")
        table.add_column("Blocked")
        table.add_column("URL")
        for record in output.requests:
            blocked = "[red]yes[/red]" if record.bot_block_detected else ""
            table.add_row(str(record.status), str(record.body_byte_length), blocked, record.request_url)
        console.print(table)

    if not output.candidates:
        return

    table = Table(title="Candidates")
    table.add_column("URL")
    table.add_column("Status", justify="right")
    table.add_column("Title")
    table.add_column("Price", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Decision")

    for candidate in output.candidates:
        extracted = candidate.extracted or {}
        if candidate.decision == MatchDecision.ACCEPTED:
            decision = "[green]accepted[/green]"
        else:
            decision = f"[yellow]{candidate.reject_reason or 'rejected'}[/yellow]"
        table.add_row(
            candidate.pdp_url,
            str(candidate.fetch_status or "-"),
            extracted.get("title_raw") or "",
            _format_price(extracted.get("price_amount"), extracted.get("currency", "")),
            f"{candidate.match_score:.2f}",
            decision,
        )

    console.print(table)
