"""Remote shell CLI command."""

from __future__ import annotations

import typer

from adb_console.cli.daemon_client import DaemonClient
from adb_console.cli.utils import DEVICE_TIMEOUT, handle_output_response


def shell(
    command: list[str] = typer.Argument(..., help="Command to run on the device"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Run a shell command on the connected device and print its output."""
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/shell", json_body={"command": " ".join(command)})
    client.close()
    handle_output_response(resp, json_output=json_output)
