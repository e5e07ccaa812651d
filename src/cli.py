#!/usr/bin/env python3
"""
CLI interface for the ad catalog.

Configuration comes from ``ADS_*`` environment variables (see
src/adsearch/config.py); a few common ones have flags.

Usage:
    python -m src.cli refresh
    python -m src.cli search "automotive video interstitial"
    python -m src.cli serve --port 8000
"""

import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.adsearch import (
    AdCatalog,
    CacheError,
    IndexUnavailable,
    ModelUnavailable,
    ProviderError,
    Settings,
    ValidationError,
    build_catalog,
)

app = typer.Typer(
    name="ads",
    help="Ad catalog - cached campaign ads with hybrid semantic search",
    add_completion=False,
)
console = Console()

CATALOG_ERRORS = (ProviderError, CacheError, IndexUnavailable, ModelUnavailable)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )


def _load_catalog(index_dir: Optional[str] = None, csv_ads: Optional[str] = None) -> AdCatalog:
    """Build a catalog from the environment, with CLI overrides applied."""
    settings = Settings.from_env()
    if index_dir:
        settings.index_dir = Path(index_dir)
    if csv_ads:
        settings.csv_ads = csv_ads
    try:
        catalog = build_catalog(settings)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    catalog.load()
    return catalog


@app.command()
def refresh(
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    csv_ads: Optional[str] = typer.Option(None, "--csv", help="Read ads from a CSV export"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Fetch the catalog from the source, cache it and rebuild the index.

    Examples:
        ads refresh
        ads refresh --csv exports/ads.csv
    """
    setup_logging(verbose)
    catalog = _load_catalog(index_dir, csv_ads)

    console.print("\n[bold blue]Refreshing ad catalog[/bold blue]\n")
    try:
        ads = catalog.refresh()
    except CATALOG_ERRORS as e:
        console.print(f"[red]Refresh failed:[/red] {e}")
        raise typer.Exit(1)

    stats = catalog.orchestrator.last_stats
    console.print(f"[green]Success![/green] {len(ads):,} ads cached")
    if stats is not None:
        console.print(f"  Index generation: {stats.generation}")
        console.print(
            f"  Fetch {stats.fetch_seconds:.1f}s | Cache {stats.cache_seconds:.1f}s"
            f" | Index {stats.index_seconds:.1f}s"
        )


@app.command()
def search(
    query: str = typer.Argument(..., help="Free-text search query"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max results"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    csv_ads: Optional[str] = typer.Option(None, "--csv", help="Read ads from a CSV export"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Search the catalog.

    Examples:
        ads search "mercedes launch video"
        ads search "retail carousel" --limit 5
    """
    setup_logging(verbose)
    catalog = _load_catalog(index_dir, csv_ads)

    try:
        response = catalog.search(query, limit=limit)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except CATALOG_ERRORS as e:
        console.print(f"[red]Search failed:[/red] {e}")
        raise typer.Exit(1)

    if not response.results:
        console.print(f"[yellow]No ads found matching '{query}'[/yellow]")
        return

    mode = "semantic" if response.semantic else "keyword"
    console.print(
        f"\n[bold blue]Results for '{query}' ({len(response.results)} found, {mode}, "
        f"{response.search_time_ms:.0f}ms)[/bold blue]"
    )
    if response.degraded:
        console.print("[yellow]Vector search unavailable, showing keyword matches[/yellow]")
    console.print()

    table = Table(show_header=True)
    table.add_column("ID", style="dim", width=5)
    table.add_column("Brand", style="cyan", max_width=25)
    table.add_column("Industry", max_width=20)
    table.add_column("Format", max_width=20)
    table.add_column("Features", max_width=40)

    for ad in response.results:
        features = ad.features
        if len(features) > 40:
            features = features[:37] + "..."
        table.add_row(str(ad.id), ad.brand[:25], ad.industry[:20], ad.format[:20], features)

    console.print(table)


@app.command(name="list")
def list_ads(
    limit: int = typer.Option(20, "--limit", "-n", help="Max rows to show"),
    csv_ads: Optional[str] = typer.Option(None, "--csv", help="Read ads from a CSV export"),
) -> None:
    """
    List ads from the cached snapshot (refreshing on a cache miss).

    Examples:
        ads list
        ads list --limit 100
    """
    setup_logging()
    catalog = _load_catalog(csv_ads=csv_ads)

    try:
        ads = catalog.get_ads()
    except CATALOG_ERRORS as e:
        console.print(f"[red]Failed to fetch ads:[/red] {e}")
        raise typer.Exit(1)

    if not ads:
        console.print("[yellow]Catalog is empty[/yellow]")
        return

    console.print(f"\n[bold blue]Ads ({min(limit, len(ads))} of {len(ads):,} shown)[/bold blue]\n")

    table = Table(show_header=True)
    table.add_column("ID", style="dim", width=5)
    table.add_column("Brand", style="cyan", max_width=25)
    table.add_column("Campaign", max_width=30)
    table.add_column("Format", max_width=20)
    table.add_column("Impressions", justify="right")

    for ad in ads[:limit]:
        table.add_row(str(ad.id), ad.brand[:25], ad.campaign[:30], ad.format[:20], ad.impressions)

    console.print(table)


@app.command()
def clear_cache() -> None:
    """Drop the cached catalog snapshot."""
    setup_logging()
    catalog = _load_catalog()
    try:
        catalog.clear_cache()
    except CacheError as e:
        console.print(f"[red]Failed to clear cache:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Cache cleared[/green]")


@app.command()
def stats(
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
) -> None:
    """Show vector index statistics."""
    setup_logging()
    catalog = _load_catalog(index_dir)
    index_stats = catalog.index_manager.get_stats()

    console.print("\n[bold blue]Vector Index Statistics[/bold blue]\n")
    if index_stats["generation"] is None:
        console.print("[yellow]No index generation on disk[/yellow]")
        console.print("Run [bold]ads refresh[/bold] to build one.")
        return

    console.print(f"[bold]Generation:[/bold] {index_stats['generation']}")
    console.print(f"[bold]Vectors:[/bold] {index_stats['vectors']:,}")
    console.print(f"[bold]Dimension:[/bold] {index_stats['dimension']}")
    console.print(f"[bold]Model:[/bold] {index_stats['model_version']}")
    console.print(f"[bold]Directory:[/bold] {index_stats['index_dir']} ({index_stats['index_size_mb']:.1f} MB)")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-H", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    api_rate_limit: Optional[int] = typer.Option(
        None, "--rate-limit", help="Max requests per minute per IP (0 to disable)"
    ),
) -> None:
    """
    Start the catalog API server.

    Examples:
        ads serve                     # Start on localhost:8000
        ads serve --port 9000         # Custom port
        ads serve --reload            # Auto-reload for dev
    """
    import uvicorn

    # Pass config via environment so the app factory picks it up
    if index_dir:
        os.environ["ADS_INDEX_DIR"] = index_dir
    if api_rate_limit is not None:
        os.environ["ADS_RATE_LIMIT_RPM"] = str(api_rate_limit)

    settings = Settings.from_env()

    console.print("\n[bold green]Starting Ad Catalog API[/bold green]")
    console.print(f"  Index dir:  {settings.index_dir}")
    console.print(f"  Cache:      {'redis' if settings.redis_url else 'in-process'}")
    console.print(f"  Refresh:    every {settings.refresh_interval}s")
    console.print(f"  Endpoint:   http://{host}:{port}")
    console.print(f"  API docs:   http://{host}:{port}/docs")
    if settings.rate_limit_rpm > 0:
        console.print(f"  Rate limit: {settings.rate_limit_rpm} req/min per IP")
    else:
        console.print("  Rate limit: [yellow]disabled[/yellow]")
    console.print()

    uvicorn.run(
        "src.api.app:app",
        host=host,
        port=port,
        reload=reload,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    app()
