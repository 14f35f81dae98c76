# leadscout/__main__.py
import asyncio
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from leadscout.config import settings
from leadscout.errors import LeadScoutError
from leadscout.export import SCRAPE_COLUMNS, leads_to_csv, write_csv
from leadscout.lead_store import LeadStore, JsonSlotStore, status_report
from leadscout.logging_setup import setup_logging
from leadscout.pipeline import Pipeline, RunStage, TrackingMode

app = typer.Typer(help="leadscout - find local businesses running analytics or pixel tracking")
console = Console()


def show_banner():
    """Display the application banner."""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                        LEADSCOUT                              ║
║      Local businesses from OpenStreetMap + GA / FB Pixel      ║
╚═══════════════════════════════════════════════════════════════╝
    """
    console.print(banner, style="bold blue")


def default_output_path(category: str, location: str, filter_tracking: bool) -> Path:
    sanitized = re.sub(r"[^a-z0-9]", "-", f"{category}-{location}", flags=re.IGNORECASE).lower()
    date = datetime.now().strftime("%Y-%m-%d")
    suffix = "-tracking-only" if filter_tracking else ""
    return Path("leads") / f"{sanitized}-{date}{suffix}.csv"


def _open_store(data_dir: Optional[Path]) -> LeadStore:
    if data_dir:
        return LeadStore(slots=JsonSlotStore(data_dir))
    return LeadStore()


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def _run_with_progress(coro_factory):
    """Run a pipeline coroutine, rendering detection progress as it arrives."""
    with _progress() as progress:
        state = {"task": None}

        def on_progress(done: int, total: int, name: str, status: str):
            if state["task"] is None:
                state["task"] = progress.add_task("[cyan]Checking websites...", total=total)
            short_name = name if len(name) <= 30 else name[:27] + "..."
            progress.update(
                state["task"],
                completed=done,
                description=f"[cyan]{short_name:<30}[/cyan] [dim]{status}[/dim]",
            )

        return asyncio.run(coro_factory(on_progress))


@app.command()
def scrape(
    category: str = typer.Option("dentist", "--category", "-c", help="Business type, e.g. dentist, lawyer, cpa"),
    location: str = typer.Option("Sacramento, California, USA", "--location", "-l", help="City name"),
    limit: int = typer.Option(None, "--limit", "-n", help="Max results to keep"),
    radius: int = typer.Option(None, "--radius", "-r", help="Search radius in kilometers"),
    filter_tracking: bool = typer.Option(
        False, "--filter", "-f", help="Check websites and keep only businesses with GA or FB Pixel"
    ),
    check: bool = typer.Option(False, "--check", help="Check websites for tracking but keep all results"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV file path"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Debug logging"),
):
    """Search one category in one location and save the results to CSV."""
    setup_logging(verbose)
    show_banner()

    mode = TrackingMode.from_flags(filter_tracking, check)
    limit = settings.search.limit if limit is None else limit
    radius_km = settings.search.radius_km if radius is None else radius
    output = output or default_output_path(category, location, filter_tracking)

    table = Table(title="Search Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Category", category)
    table.add_row("Location", location)
    table.add_row("Radius", f"{radius_km}km")
    table.add_row("Limit", str(limit))
    if mode is TrackingMode.FILTER:
        table.add_row("Mode", "FILTER - only businesses with GA or FB Pixel")
    elif mode is TrackingMode.CHECK:
        table.add_row("Mode", "CHECK - will check all websites for tracking")
    console.print(table)

    pipeline = Pipeline()
    try:
        result = _run_with_progress(lambda on_progress: pipeline.scrape(
            category, location,
            limit=limit,
            radius_meters=radius_km * 1000,
            mode=mode,
            on_progress=on_progress,
        ))
    except LeadScoutError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        console.print("\n[dim]Troubleshooting:[/dim]")
        console.print("[dim]  - Check your internet connection[/dim]")
        console.print("[dim]  - Try a different location format[/dim]")
        console.print(f"[dim]  - Known cities skip geocoding: {', '.join(settings.known_city_names())}[/dim]")
        console.print("[dim]  - OpenStreetMap/Overpass may be temporarily down[/dim]")
        raise typer.Exit(1)

    if result.businesses_found == 0:
        console.print(Panel(
            "Try a larger city (better OpenStreetMap coverage in urban areas)\n"
            'Try a different category: "doctor" vs "physician"\n'
            "Increase the radius: -r 50",
            title="[yellow]No businesses found[/yellow]",
            border_style="yellow",
        ))
        return

    if mode is not TrackingMode.NONE:
        console.print(f"  [dim]{result.with_website} of {result.businesses_found} have websites[/dim]")

    if not result.records:
        console.print(Panel(
            "Increase --limit to check more businesses\n"
            "Try a different category or location\n"
            "Run without --filter to see all results",
            title="[yellow]No qualified leads found[/yellow]",
            border_style="yellow",
        ))
        return

    path = write_csv(result.records, output, columns=SCRAPE_COLUMNS)

    console.print()
    console.print(Panel(
        f"[bold green]✓ {len(result.records)} leads[/bold green]\n\n"
        f"Output saved to:\n[cyan]{path}[/cyan]",
        title="Success",
        border_style="green",
    ))

    if mode is not TrackingMode.NONE:
        with_ga = sum(1 for r in result.records if r.tracking and r.tracking.has_analytics)
        with_fb = sum(1 for r in result.records if r.tracking and r.tracking.has_pixel)
        both = sum(1 for r in result.records if r.tracking and r.tracking.has_analytics and r.tracking.has_pixel)
        breakdown = Table(title="Tracking breakdown", box=box.SIMPLE)
        breakdown.add_column("Tracker", style="cyan")
        breakdown.add_column("Count", style="green", justify="right")
        breakdown.add_row("Google Analytics", str(with_ga))
        breakdown.add_row("Facebook Pixel", str(with_fb))
        breakdown.add_row("Both GA + FB", str(both))
        breakdown.add_row("Check errors", f"[yellow]{result.detection_errors}[/yellow]")
        console.print(breakdown)

    console.print("\n  [bold]Preview (first 5):[/bold]")
    for i, record in enumerate(result.records[:5], 1):
        trackers = []
        if record.tracking and record.tracking.has_analytics:
            trackers.append("GA")
        if record.tracking and record.tracking.has_pixel:
            trackers.append("FB")
        tag = f" [magenta][{'+'.join(trackers)}][/magenta]" if trackers else ""
        console.print(f"  {i}. {record.name}{tag}")
        if record.website:
            console.print(f"     [dim]{record.website}[/dim]")


@app.command()
def rotate(
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Durable store directory"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also log to this rotating file"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Debug logging"),
):
    """Run the next category x location combination and accumulate new leads.

    Meant to be triggered on a fixed interval (cron, systemd timer).
    """
    setup_logging(verbose, log_file=log_file)
    pipeline = Pipeline(store=_open_store(data_dir))

    try:
        result = asyncio.run(pipeline.rotate())
    except LeadScoutError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if result.stage is RunStage.FAILED:
        console.print(Panel(
            f"[bold red]✗ Run #{result.run_number} failed[/bold red]\n\n"
            f"{result.category} in {result.location}\n[dim]{result.error}[/dim]\n\n"
            f"Next: {result.next_category} in {result.next_location}",
            title="Failed",
            border_style="red",
        ))
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold green]✓ Run #{result.run_number}: {result.category} in {result.location}[/bold green]\n\n"
        f"Businesses found: {result.businesses_found}\n"
        f"New leads: {result.leads_added}\n"
        f"Total leads: {result.total_leads}\n\n"
        f"Next: {result.next_category} in {result.next_location}",
        title="Complete",
        border_style="green",
    ))


@app.command()
def status(
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Durable store directory"),
):
    """Show accumulated totals, rotation position and recent runs."""
    report = status_report(_open_store(data_dir).load())

    table = Table(title="Lead Collection", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Total leads", str(report["total_leads"]))
    table.add_row("Cities scraped", str(report["cities_scraped"]))
    table.add_row("With GA", str(report["with_analytics"]))
    table.add_row("With FB Pixel", str(report["with_pixel"]))
    table.add_row("With either", str(report["with_tracking"]))
    table.add_row("Total runs", str(report["total_runs"]))
    if "next_category" in report:
        table.add_row("Next", f"{report['next_category']} in {report['next_location']}")
    console.print(table)

    if report["history"]:
        history = Table(title="Recent runs", box=box.SIMPLE)
        history.add_column("When", style="dim")
        history.add_column("Category", style="cyan")
        history.add_column("Location", style="blue")
        history.add_column("Found", justify="right")
        history.add_column("Added", justify="right", style="green")
        history.add_column("Total", justify="right")
        for entry in report["history"]:
            added = str(entry["leads_added"]) if "error" not in entry else "[red]error[/red]"
            history.add_row(
                entry["timestamp"][:16].replace("T", " "),
                entry["category"],
                entry["location"],
                str(entry["businesses_found"]),
                added,
                str(entry["total_leads_after"]),
            )
        console.print(history)


@app.command()
def export(
    format: str = typer.Option("csv", "--format", "-F", help="csv or json"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File path (default: stdout)"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Durable store directory"),
):
    """Export the accumulated leads."""
    leads = _open_store(data_dir).load().leads
    if format == "json":
        text = json.dumps([lead.to_dict() for lead in leads], indent=2)
    elif format == "csv":
        text = leads_to_csv(leads)
    else:
        console.print(f"[red]Unknown format: {format}[/red]")
        raise typer.Exit(1)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]✓ Exported {len(leads)} leads to[/green] [cyan]{output}[/cyan]")
    else:
        typer.echo(text, nl=False)


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address"),
    port: int = typer.Option(None, "--port", "-p", help="Bind port"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Durable store directory"),
):
    """Serve the read-only lead and status endpoints."""
    import uvicorn

    from leadscout.api import create_app

    setup_logging()
    if not settings.api.password:
        console.print("[yellow]⚠ LEADSCOUT_PASSWORD is not set; every request will be rejected[/yellow]")
    uvicorn.run(
        create_app(store=_open_store(data_dir)),
        host=host or settings.api.host,
        port=port or settings.api.port,
    )


if __name__ == "__main__":
    app()
