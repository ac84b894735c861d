from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from boardroom import services
from boardroom.config import get_settings
from boardroom.db import init_db, session_scope
from boardroom.enums import FlowKind

app = typer.Typer(help="Career governance sessions: quick audits, portfolio setup and quarterly reviews")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    home: str | None = typer.Option(
        None, "--home", help="Directory holding data/ and the optional config file.",
    ),
    config: str | None = typer.Option(None, "--config", help="YAML settings file."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if home:
        os.environ["BOARDROOM_HOME"] = str(Path(home).expanduser().resolve())
    if config:
        os.environ["BOARDROOM_CONFIG"] = str(Path(config).expanduser().resolve())
    if home or config:
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _open_db() -> Path:
    path = get_settings().database_path
    init_db(path)
    return path


def _print_rows(ctx: typer.Context, title: str, rows: list[dict[str, Any]], columns: list[str]) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    table = Table(title=title, show_header=True, header_style="bold cyan", box=ROUNDED)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("-" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    """Create the database and its tables."""
    path = _open_db()
    if _wants_json(ctx):
        typer.echo(json.dumps({"database": str(path)}))
    else:
        console.print(f"[green]Database ready[/green] at {path}")


@app.command("expire-bets")
def expire_bets_command(ctx: typer.Context) -> None:
    """Mark every open bet past its due date as expired."""
    _open_db()
    with session_scope() as session:
        count = services.expire_bets(session)
    if _wants_json(ctx):
        typer.echo(json.dumps({"expired": count}))
    else:
        console.print(f"Expired {count} bet(s)")


@app.command("sessions")
def sessions_command(
    ctx: typer.Context,
    flow: str | None = typer.Option(None, help="quick, setup or quarterly"),
    limit: int = typer.Option(20, min=1, help="Maximum rows."),
) -> None:
    """List recent sessions."""
    if flow is not None and flow not in {f.value for f in FlowKind}:
        raise typer.BadParameter("flow must be quick, setup or quarterly")
    _open_db()
    with session_scope() as session:
        rows = services.list_sessions(session, FlowKind(flow) if flow else None, limit)
    _print_rows(ctx, "Sessions", rows, ["id", "flow", "state", "is_completed", "is_abandoned", "skip_count", "started_at"])


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("boardroom.app:app", host=host, port=port, reload=reload)


@app.command("mcp")
def mcp_command() -> None:
    """Run the MCP server over stdio."""
    from boardroom.mcp_server import main

    main()


if __name__ == "__main__":
    app()
