"""CLI entry point using Typer."""

from __future__ import annotations

import typer

from adb_console.cli.commands import app_cmd, daemon, device, events, mirror, shell

app = typer.Typer(
    name="adb-console",
    help="Android device console over USB: shell, install and screen mirroring",
    no_args_is_help=True,
)


@app.command()
def version() -> None:
    """Show version information."""
    from adb_console import __version__

    typer.echo(f"adb-console v{__version__}")


app.command("shell")(shell.shell)
app.command("events")(events.events)
app.add_typer(daemon.app, name="daemon")
app.add_typer(device.app, name="device")
app.add_typer(app_cmd.app, name="app")
app.add_typer(mirror.app, name="mirror")


if __name__ == "__main__":
    app()
