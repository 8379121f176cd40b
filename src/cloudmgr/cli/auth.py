"""CLI: cloudmgr auth connect|status|disconnect, cloudmgr workspace switch"""

from typing import Optional

import click
from rich.console import Console

from cloudmgr.errors import CloudMgrError

console = Console()


def _load_config() -> dict:
    from cloudmgr.cli.main import _load_config
    return _load_config()


def _save_config(cfg: dict) -> None:
    from cloudmgr.cli.main import _save_config
    _save_config(cfg)


def _get_client(base_url: Optional[str] = None):
    from cloudmgr.cli.main import _get_client
    return _get_client(base_url)


def _store_session(client) -> None:
    from cloudmgr.cli.main import _store_session
    _store_session(client)


def _run(coro):
    from cloudmgr.cli.main import _run
    return _run(coro)


@click.group()
def auth():
    """Authentication commands."""


@auth.command("connect")
@click.option("--client-id", envvar="CLOUDMGR_CLIENT_ID", prompt=True)
@click.option("--client-secret", envvar="CLOUDMGR_CLIENT_SECRET", prompt=True, hide_input=True)
@click.option("--workspace", "workspace_id", default=None, help="Workspace to select after connecting")
@click.option("--base-url", default=None, help="Management API base URL")
def auth_connect(client_id: str, client_secret: str, workspace_id: Optional[str], base_url: Optional[str]):
    """Log in with client credentials."""

    async def _connect():
        cfg = _load_config()
        if base_url:
            _save_config({**cfg, "base_url": base_url})
        client = _get_client(base_url)
        try:
            with console.status("Requesting access token..."):
                session = await client.connect(client_id, client_secret, workspace_id=workspace_id)
            _store_session(client)
        except CloudMgrError as e:
            console.print(f"[red]Connect failed: {e}[/red]")
            raise SystemExit(4)
        finally:
            await client.close()
        console.print(f"[green]Connected[/green] (account: {session.account_id or 'unknown'})")
        console.print(f"[dim]Token expires {session.expires_at.isoformat()}[/dim]")

    _run(_connect())


@auth.command("status")
def auth_status():
    """Show current session status."""
    from cloudmgr.cli.main import _saved_session

    session = _saved_session(_load_config())
    if session is None:
        console.print("[yellow]Not connected. Run `cloudmgr auth connect`.[/yellow]")
        return
    state = "[red]expired[/red]" if session.is_expired else "[green]valid[/green]"
    console.print(f"Session {state}, expires {session.expires_at.isoformat()}")
    console.print(f"Account: {session.account_id or '-'}")
    console.print(f"Workspace: {session.workspace_name or session.workspace_id or '-'}")


@auth.command("disconnect")
def auth_disconnect():
    """Clear the saved session."""
    cfg = _load_config()
    cfg.pop("session", None)
    _save_config(cfg)
    console.print("[green]Disconnected.[/green]")


@click.group()
def workspace():
    """Workspace selection."""


@workspace.command("switch")
@click.argument("workspace_id")
@click.option("--name", default=None, help="Display name (looked up when omitted)")
def workspace_switch(workspace_id: str, name: Optional[str]):
    """Select the workspace used by workspace-scoped requests."""

    async def _switch():
        client = _get_client()
        try:
            session = await client.switch_workspace(workspace_id, name)
            _store_session(client)
        except CloudMgrError as e:
            console.print(f"[red]Switch failed: {e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()
        console.print(f"[green]Workspace: {session.workspace_name or session.workspace_id}[/green]")

    _run(_switch())
