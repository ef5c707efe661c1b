"""Event history CLI command."""

from __future__ import annotations

import typer

from adb_console.cli.daemon_client import DaemonClient, format_json
from adb_console.cli.utils import parse_response_json


def events(
    limit: int = typer.Option(50, "--limit", "-n", help="Number of recent events"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show recent status and log events from the daemon."""
    client = DaemonClient()
    resp = client.request("GET", "/events", params={"limit": limit})
    client.close()

    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return
    for event in data.get("events", []):
        typer.echo(f"{event['timestamp']}  {event['level']:<7} {event['message']}")
