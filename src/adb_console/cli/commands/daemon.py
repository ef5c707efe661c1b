"""Daemon lifecycle CLI commands."""

from __future__ import annotations

import typer

from adb_console.cli.daemon_client import DaemonController, format_json

app = typer.Typer(help="Daemon lifecycle commands")


@app.command("start")
def daemon_start() -> None:
    """Start the daemon process."""
    controller = DaemonController()
    running = controller.running_pid()
    if running is not None:
        typer.echo(f"Daemon already running (pid {running})")
        return
    pid = controller.start()
    if pid == -1:
        typer.echo(f"Daemon already answering on {controller.socket_path}")
        return
    typer.echo(f"Daemon started (pid {pid}), logs in {controller.log_file}")


@app.command("stop")
def daemon_stop() -> None:
    """Stop the daemon process, releasing any connected device."""
    controller = DaemonController()
    if controller.stop():
        typer.echo("Daemon stopped")
    else:
        typer.echo("Daemon not running")


@app.command("status")
def daemon_status(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Show daemon process and health status."""
    controller = DaemonController()
    status = controller.status()
    status["health"] = controller.health()

    if json_output:
        typer.echo(format_json(status))
        return

    health = status["health"]
    if health is None:
        typer.echo(f"Daemon not responding on {status['socket']}")
        return
    typer.echo(
        f"Daemon running (pid {status['pid'] or 'unknown'})  "
        f"connection={health.get('connection')} mirror={health.get('mirror')}"
    )
