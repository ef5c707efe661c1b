"""App management CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer

from adb_console.cli.daemon_client import DaemonClient
from adb_console.cli.utils import DEVICE_TIMEOUT, handle_response

app = typer.Typer(help="App management commands")


@app.command("install")
def app_install(
    apk_path: str = typer.Argument(..., help="Local APK path"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Install an APK on the connected device."""
    path = str(Path(apk_path).expanduser().resolve())
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/apps/install", json_body={"path": path})
    client.close()
    handle_response(resp, json_output=json_output)
