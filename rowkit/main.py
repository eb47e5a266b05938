from __future__ import annotations

import json
import sys
from typing import Any, Dict
from urllib.parse import urlparse

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from rowkit.cache import cache_status
from rowkit.config import get_settings
from rowkit.database import Database
from rowkit.errors import RowkitError
from rowkit.infrastructure.db_factory import build_dsn
from rowkit.utils.logging import configure_logging

app = typer.Typer(help="rowkit operator CLI.")


def mask_dsn(dsn: str) -> str:
    """Hide the password of a URL-style DSN; other forms are returned as-is."""
    parsed = urlparse(dsn)
    if not parsed.password:
        return dsn
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@", 1)
    return parsed._replace(netloc=netloc).geturl()


def _open_configured() -> Database:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return Database.open("default", settings.database_config())


def _render_table(title: str, values: Dict[str, Any]) -> Table:
    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")
    for key, value in values.items():
        if isinstance(value, dict):
            value = json.dumps(value, default=str)
        table.add_row(key, "-" if value is None else str(value))
    return table


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"dialect={settings.dialect.value} dsn={mask_dsn(build_dsn(settings))} | "
        f"max_open={settings.max_open} max_idle={settings.max_idle} "
        f"query_timeout={settings.query_timeout_seconds} "
        f"cache_ttl={settings.cache_ttl_seconds} redis={'yes' if settings.redis_url else 'no'}"
    )


@app.command()
def ping() -> None:
    """
    Open the configured database and round-trip a trivial statement.
    """
    try:
        with _open_configured() as database:
            database.ping()
    except RowkitError as exc:
        typer.echo(f"ping failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo("ok")


@app.command()
def stats() -> None:
    """
    Show pool statistics and cache status for the configured database.
    """
    console = Console()
    try:
        with _open_configured() as database:
            database.ping()
            pool = database.pool_stats().to_dict()
    except RowkitError as exc:
        typer.echo(f"stats failed: {exc}", err=True)
        raise typer.Exit(code=1)

    console.print(_render_table("Connection Pool", pool))
    status = cache_status()
    console.print(_render_table("Local Cache", status["local"]))
    if status["remote"] is not None:
        console.print(_render_table("Remote Cache", status["remote"]))
    if status["regions"]:
        console.print(_render_table("Cache Regions", status["regions"]))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
