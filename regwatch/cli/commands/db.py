"""CLI commands for database setup and the source registry."""

from pathlib import Path

import typer
from rich.console import Console

from ...crawler.config import get_crawler_config
from ...crawler.registry import SourceRegistry
from ...exceptions import ConfigurationError
from ...storage.database.base import init_db

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command("init")
def init() -> None:
    """Create the database tables."""
    config = get_crawler_config()
    init_db(config.database_url)
    console.print(f"[green]✓ Database initialized[/green] ({config.database_url})")


@app.command("load-sources")
def load_sources(
    path: Path = typer.Argument(
        None, help="Source registry JSON file (defaults to the bundled registry)"
    ),
) -> None:
    """Create or update regulatory sources from a JSON registry file."""
    config = get_crawler_config()
    init_db(config.database_url)

    try:
        created, updated = SourceRegistry().load_from_file(path or config.sources_config_path)
    except ConfigurationError as e:
        console.print(f"[red]Error loading sources: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Sources loaded[/green]: {created} created, {updated} updated")
