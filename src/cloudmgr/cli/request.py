"""CLI: cloudmgr request METHOD URI"""

import asyncio
import json
import signal
from typing import Optional

import click

from cloudmgr.cancel import CancelToken

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")


def _get_client():
    from cloudmgr.cli.main import _get_client
    return _get_client()


def _store_session(client) -> None:
    from cloudmgr.cli.main import _store_session
    _store_session(client)


def _run(coro):
    from cloudmgr.cli.main import _run
    return _run(coro)


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    params = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {value!r}", param_hint="--param")
        params[key] = val
    return params


def _parse_body(body: Optional[str]):
    if body is None:
        return None
    if body.startswith("@"):
        with open(body[1:]) as fh:
            body = fh.read()
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"body is not valid JSON: {e}", param_hint="--body")


@click.command("request")
@click.argument("method", type=click.Choice(METHODS, case_sensitive=False))
@click.argument("uri")
@click.option("--body", default=None, help="JSON body, or @file.json")
@click.option("-p", "--param", "params", multiple=True, help="Query parameter key=value (repeatable)")
@click.option("--collection", is_flag=True, help="Target is a collection; aggregate all pages")
@click.option("--all", "skip_pagination_limit", is_flag=True, help="No page cap; follow continuation to the end")
@click.option("--dry-run", is_flag=True, help="Render the request without sending it")
@click.option("--no-session-check", "skip_session_check", is_flag=True, help="Call without a session")
@click.option("--workspace-scoped", is_flag=True, help="Require a selected workspace")
@click.option("--timeout", default=None, type=float, help="Cancel the whole call after N seconds")
@click.option("--json-output", "--json", is_flag=True)
def request_cmd(method, uri, body, params, collection, skip_pagination_limit, dry_run,
                skip_session_check, workspace_scoped, timeout, json_output):
    """Run one request through session, retry, pagination and dry-run handling."""
    from cloudmgr.cli.main import print_outcome

    payload = _parse_body(body)
    query = _parse_params(params)

    async def _request():
        cancel = CancelToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel.cancel, "Interrupted")
        except (NotImplementedError, RuntimeError):
            pass
        if timeout:
            loop.call_later(timeout, cancel.cancel, f"Timed out after {timeout}s")

        client = _get_client()
        try:
            outcome = await client.request(
                method, uri, payload, query,
                dry_run=dry_run,
                skip_pagination_limit=skip_pagination_limit,
                skip_session_check=skip_session_check,
                collection=collection or skip_pagination_limit,
                workspace_scoped=workspace_scoped,
                cancel=cancel,
            )
            if client.connected:
                _store_session(client)
        finally:
            await client.close()
        return outcome

    outcome = _run(_request())
    raise SystemExit(print_outcome(outcome, json_output))
