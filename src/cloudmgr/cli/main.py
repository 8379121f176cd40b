"""
cloudmgr CLI: `cloudmgr` command.

Commands:
  cloudmgr auth connect          Client-credentials login
  cloudmgr auth status           Show the saved session
  cloudmgr auth disconnect       Forget the saved session
  cloudmgr workspace switch ID   Select the active workspace
  cloudmgr request METHOD URI    Run one orchestrated request
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
    from rich.syntax import Syntax
    from rich.table import Table
except ImportError:
    raise SystemExit("CLI requires extras: pip install cloudmgr[cli]")

from cloudmgr.client import AsyncCloudClient
from cloudmgr.config import load_config, load_config_file, save_config_file
from cloudmgr.models.outcome import Complete, DryRun, Outcome, PartialSuccess
from cloudmgr.models.session import Session

console = Console()
err_console = Console(stderr=True)

EXIT_CODES = {
    "complete": 0,
    "dry_run": 0,
    "partial_success": 3,
    "failed": 1,
    "invalid": 2,
    "authentication": 4,
    "cancelled": 130,
}


def _load_config() -> dict:
    return load_config_file()


def _save_config(cfg: dict) -> None:
    save_config_file(cfg)


def _saved_session(cfg: dict) -> Optional[Session]:
    raw = cfg.get("session")
    if not raw:
        return None
    return Session.model_validate(raw)


def _store_session(client: AsyncCloudClient) -> None:
    cfg = _load_config()
    session = client.session
    if session is None:
        cfg.pop("session", None)
    else:
        cfg["session"] = json.loads(session.model_dump_json())
    _save_config(cfg)


def _get_client(base_url: Optional[str] = None) -> AsyncCloudClient:
    cfg = _load_config()
    client = AsyncCloudClient(base_url=base_url or cfg.get("base_url"), config=load_config())
    session = _saved_session(cfg)
    if session is not None:
        client.sessions.connect(session)
    return client


def _run(coro):
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def print_outcome(outcome: Outcome, json_output: bool = False) -> int:
    """Render an outcome and return the process exit code for it."""
    if json_output:
        click.echo(json.dumps(outcome.model_dump(), indent=2, default=_json_default))
        return EXIT_CODES[outcome.category]

    if isinstance(outcome, DryRun):
        console.print("[yellow]Dry run: nothing was sent.[/yellow]")
        console.print(Syntax(outcome.request.to_text(), "http", theme="ansi_dark"))
    elif isinstance(outcome, Complete):
        if outcome.pages > 1:
            console.print(f"[dim]{outcome.pages} pages[/dim]")
        if outcome.data is not None:
            console.print_json(json.dumps(outcome.data, default=_json_default))
        else:
            console.print(f"[green]Done (HTTP {outcome.status}).[/green]")
    elif isinstance(outcome, PartialSuccess):
        table = Table(title=f"Partial success: {len(outcome.failed)} of {len(outcome.items)} items failed")
        table.add_column("Item", style="bold")
        table.add_column("Result")
        table.add_column("Code")
        table.add_column("Message")
        for item in outcome.items:
            result = "[green]ok[/green]" if item.ok else "[red]failed[/red]"
            table.add_row(item.id or "-", result, item.code or "", item.message or "")
        console.print(table)
    else:
        detail = outcome.detail
        status = f" (HTTP {detail.status})" if detail.status else ""
        code = f" [{detail.code}]" if detail.code else ""
        err_console.print(f"[red]{outcome.category}{code}{status}: {detail.message}[/red]")
        if outcome.category == "authentication":
            err_console.print("[dim]Run `cloudmgr auth connect` to establish a new session.[/dim]")
    return EXIT_CODES[outcome.category]


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """cloudmgr CLI: orchestrated calls against the cloud management API."""
    _setup_logging(verbose)


# Register subcommands from separate modules
from cloudmgr.cli.auth import auth, workspace
from cloudmgr.cli.request import request_cmd

main.add_command(auth)
main.add_command(workspace)
main.add_command(request_cmd)


if __name__ == "__main__":
    main()
