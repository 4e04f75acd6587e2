"""Main Typer application.

Entry point: ``codecache`` (configured via pyproject.toml project.scripts).

Commands open the database read-only; writes go through ``CodeCache``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from codecache.config import CodeCacheConfig, configure_logging
from codecache.core.sqlite_storage import SqliteStorage

app = typer.Typer(
    name="codecache",
    help="codecache: inspect an instrumented code cache.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

console = Console()

_DB_OPTION = typer.Option(
    None,
    "--db",
    help="Path to the code cache database. Defaults to CODECACHE_DB_PATH.",
)


def _resolve_db(db: Path | None) -> Path:
    return db if db is not None else CodeCacheConfig().db_path


def _open(db: Path) -> SqliteStorage:
    if not db.exists():
        console.print(f"[red]No code cache at[/red] {db}")
        raise typer.Exit(code=1)
    return SqliteStorage(db, read_only=True)


@app.callback()
def _main() -> None:
    configure_logging(CodeCacheConfig())


@app.command(name="stats", help="Show entry counts and total references.")
def stats_cmd(db: Path | None = _DB_OPTION) -> None:
    db = _resolve_db(db)
    with _open(db) as storage:
        counts = storage.stats()

    table = Table(title=f"Code cache: {db}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Pristine code entries", str(counts["pristine"]))
    table.add_row("Cached code entries", str(counts["cached"]))
    table.add_row("Total references", str(counts["references"]))
    console.print(table)


@app.command(name="list", help="List cached code entries.")
def list_cmd(db: Path | None = _DB_OPTION) -> None:
    db = _resolve_db(db)
    with _open(db) as storage:
        rows = [
            (code_hash, storage.cached.get(code_hash))
            for code_hash in storage.cached.code_hashes()
        ]

    if not rows:
        console.print("[dim]No cached code.[/dim]")
        return

    table = Table(title="Cached Code")
    table.add_column("Code hash", style="cyan")
    table.add_column("Schedule", justify="right", style="green")
    table.add_column("Refcount", justify="right")
    table.add_column("Size", justify="right")
    for code_hash, record in rows:
        if record is None:
            continue
        table.add_row(
            code_hash,
            f"v{record.schedule_version}",
            str(record.refcount),
            f"{len(record.instrumented)} B",
        )
    console.print(table)


@app.command(name="show", help="Show one cached code entry.")
def show_cmd(
    code_hash: str = typer.Argument(..., help="SHA-256 hex code hash."),
    db: Path | None = _DB_OPTION,
) -> None:
    db = _resolve_db(db)
    with _open(db) as storage:
        record = storage.cached.get(code_hash)
        has_pristine = storage.pristine.get(code_hash) is not None

    if record is None:
        console.print(f"[red]Code not found:[/red] {code_hash}")
        raise typer.Exit(code=1)

    console.print(f"[bold]Code hash:[/bold]        {code_hash}")
    console.print(f"[bold]Schedule version:[/bold] v{record.schedule_version}")
    console.print(f"[bold]Refcount:[/bold]         {record.refcount}")
    console.print(f"[bold]Instrumented size:[/bold] {len(record.instrumented)} B")
    pristine = "[green]Yes[/green]" if has_pristine else "[red]Missing[/red]"
    console.print(f"[bold]Pristine code:[/bold]    {pristine}")


@app.command(name="config", help="Show the effective configuration.")
def config_cmd() -> None:
    cfg = CodeCacheConfig()
    table = Table(title="codecache configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in cfg.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
