"""Main CLI entry point for regwatch."""

import typer
from rich.console import Console

from regwatch import __version__
from regwatch.crawler.config import get_crawler_config
from regwatch.utils.logging import configure_logging

from .commands import crawler, db

app = typer.Typer(
    name="regwatch",
    help="Regulatory update monitoring",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]regwatch[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON logs"),
) -> None:
    """
    regwatch - watch regulators for new guidance, amendments and consultations.
    """
    config = get_crawler_config()
    configure_logging(log_level=config.log_level, json_logs=json_logs or config.json_logs)


app.add_typer(db.app, name="db", help="Database setup and source registry")
app.add_typer(crawler.app, name="crawler", help="Crawl sources and inspect updates")


if __name__ == "__main__":
    app()
