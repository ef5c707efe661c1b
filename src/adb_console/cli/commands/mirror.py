"""Screen mirroring CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer

from adb_console.cli.daemon_client import DaemonClient, format_json
from adb_console.cli.utils import (
    DEVICE_TIMEOUT,
    error_of,
    handle_response,
    parse_response_json,
    render_error,
)
from adb_console.config import TARGET_HEIGHT, TARGET_WIDTH

app = typer.Typer(help="Screen mirroring commands")


def _render_status(data: dict[str, Any], json_output: bool) -> None:
    if json_output:
        typer.echo(format_json(data))
        return
    error = error_of(data)
    if error is not None:
        render_error(error)
    line = f"phase={data.get('phase')}"
    if data.get("serial"):
        line += (
            f" serial={data['serial']} agent={data.get('agent_strategy')}"
            f" renderer={data.get('renderer')} frames={data.get('frames', 0)}"
        )
    typer.echo(line)
    if data.get("agent_functional") is False:
        typer.echo("Warning: demo agent payload in use, no video will arrive")


@app.command("start")
def mirror_start(
    stay_awake: bool = typer.Option(
        True, "--stay-awake/--no-stay-awake", help="Keep the device awake while mirroring"
    ),
    power_off_on_close: bool = typer.Option(
        False, "--power-off-on-close", help="Turn the screen off when mirroring stops"
    ),
    agent_file: str | None = typer.Option(
        None, "--agent-file", help="Local scrcpy-server file used if downloads fail"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Push the agent, open the tunnels and start streaming."""
    payload: dict[str, Any] = {
        "stay_awake": stay_awake,
        "power_off_on_close": power_off_on_close,
        "agent_file": str(Path(agent_file).expanduser().resolve()) if agent_file else None,
    }
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/mirror/start", json_body=payload)
    client.close()
    _render_status(parse_response_json(resp), json_output)


@app.command("stop")
def mirror_stop(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Stop mirroring."""
    client = DaemonClient(timeout=DEVICE_TIMEOUT)
    resp = client.request("POST", "/mirror/stop")
    client.close()
    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return
    typer.echo("Mirroring stopped" if data.get("stopped") else "Mirroring not running")


@app.command("status")
def mirror_status(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Show mirror phase and stream counters."""
    client = DaemonClient()
    resp = client.request("GET", "/mirror")
    client.close()
    _render_status(parse_response_json(resp), json_output)


@app.command("touch")
def mirror_touch(
    action: str = typer.Argument(..., help="down|move|up"),
    x: float = typer.Argument(..., help="X inside the view"),
    y: float = typer.Argument(..., help="Y inside the view"),
    width: float = typer.Option(TARGET_WIDTH, "--width", help="View width"),
    height: float = typer.Option(TARGET_HEIGHT, "--height", help="View height"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Send a touch event at a point of a width x height view."""
    client = DaemonClient()
    resp = client.request(
        "POST",
        "/mirror/touch",
        json_body={"action": action.lower(), "x": x, "y": y, "width": width, "height": height},
    )
    client.close()
    handle_response(resp, json_output=json_output)


@app.command("key")
def mirror_key(
    action: str = typer.Argument(..., help="down|up"),
    key_code: int = typer.Argument(..., help="Android key code"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Send a key event."""
    client = DaemonClient()
    resp = client.request(
        "POST", "/mirror/key", json_body={"action": action.lower(), "key_code": key_code}
    )
    client.close()
    handle_response(resp, json_output=json_output)
