"""Device connection CLI commands."""

from __future__ import annotations

from typing import Any

import typer

from adb_console.cli.daemon_client import DaemonClient, format_json
from adb_console.cli.utils import (
    DEVICE_TIMEOUT,
    describe_device,
    error_of,
    handle_response,
    parse_response_json,
    render_error,
)

app = typer.Typer(help="Device connection commands")

CHOICE_REQUIRED = "ERR_DEVICE_CHOICE_REQUIRED"


def _render_connection(data: dict[str, Any], json_output: bool) -> None:
    if json_output:
        typer.echo(format_json(data))
        return
    error = error_of(data)
    if error is not None:
        render_error(error)
    typer.echo(f"{data.get('state')}: {describe_device(data.get('device'))}")


def _prompt_serial(serials: list[str]) -> str:
    for index, serial in enumerate(serials, start=1):
        typer.echo(f"  [{index}] {serial}")
    choice = typer.prompt("Select device", type=int, default=1)
    if not 1 <= choice <= len(serials):
        typer.echo(f"Invalid choice: {choice}")
        raise typer.Exit(code=1)
    return serials[choice - 1]


@app.command("list")
def device_list(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """List devices reported by the ADB server."""
    client = DaemonClient()
    resp = client.request("GET", "/devices")
    client.close()

    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return
    error = error_of(data)
    if error is not None:
        render_error(error)

    devices = data.get("devices", [])
    if not devices:
        typer.echo("No devices found")
        return
    for device in devices:
        typer.echo(
            f"{device['serial']}  state={device['state']} "
            f"usb={device['vendor_id']:04x}:{device['product_id']:04x}"
        )


@app.command("connect")
def device_connect(
    serial: str | None = typer.Option(None, "--serial", "-s", help="Device serial"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Connect to a device, prompting when several are available."""
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    if not json_output:
        typer.echo("Requesting USB device access...")
    resp = client.request("POST", "/connection/connect", json_body={"serial": serial})
    data = parse_response_json(resp)

    error = error_of(data)
    if error is not None and error.get("code") == CHOICE_REQUIRED and not json_output:
        chosen = _prompt_serial(list(error.get("context", {}).get("serials", [])))
        resp = client.request("POST", "/connection/connect", json_body={"serial": chosen})
        data = parse_response_json(resp)
    client.close()

    _render_connection(data, json_output)


@app.command("disconnect")
def device_disconnect(
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Stop mirroring and release the device."""
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/connection/disconnect")
    client.close()
    if json_output:
        handle_response(resp, json_output=True)
        return
    data = parse_response_json(resp)
    typer.echo("Disconnected" if data.get("disconnected") else "No device connected")


@app.command("reconnect")
def device_reconnect(
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Silently reconnect to the remembered device."""
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/connection/reconnect")
    client.close()
    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return
    if not data.get("reconnected"):
        typer.echo("No remembered device available")
        return
    _render_connection(data, json_output)


@app.command("status")
def device_status(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Show the connection state."""
    client = DaemonClient()
    resp = client.request("GET", "/connection")
    client.close()
    _render_connection(parse_response_json(resp), json_output)
