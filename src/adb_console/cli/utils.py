"""Shared CLI helpers and constants."""

from __future__ import annotations

from typing import Any, cast

import typer

from adb_console.cli.daemon_client import format_json

# Device operations wait as long as the device needs
DEVICE_TIMEOUT: float | None = None


def parse_response_json(resp: Any) -> dict[str, Any]:
    try:
        return cast(dict[str, Any], resp.json())
    except Exception as exc:  # pragma: no cover
        typer.echo("Failed to parse response")
        raise typer.Exit(code=1) from exc


def error_of(data: dict[str, Any]) -> dict[str, Any] | None:
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return cast(dict[str, Any], data["error"])
    return None


def render_error(error: dict[str, Any]) -> None:
    typer.echo(f"{error.get('code')}: {error.get('message')}")
    failures = (error.get("context") or {}).get("failures")
    if failures:
        for failure in failures:
            typer.echo(f"  - {failure.get('strategy')}: {failure.get('reason')}")
    remediation = error.get("remediation")
    if remediation:
        typer.echo(f"Hint: {remediation}")
    raise typer.Exit(code=1)


def _maybe_render_error(data: dict[str, Any]) -> None:
    error = error_of(data)
    if error is not None:
        render_error(error)


def _maybe_render_done(data: dict[str, Any]) -> bool:
    if not (isinstance(data, dict) and data.get("status") == "done"):
        return False
    typer.echo("✓ Done")
    return True


def _maybe_render_output(data: dict[str, Any]) -> bool:
    if not (isinstance(data, dict) and "output" in data):
        return False
    output = data.get("output")
    if output:
        typer.echo(output)
    return True


def handle_response(resp: Any, json_output: bool = False) -> dict[str, Any]:
    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return data

    _maybe_render_error(data)
    if not _maybe_render_done(data):
        typer.echo(format_json(data))
    return data


def handle_output_response(resp: Any, json_output: bool = False) -> dict[str, Any]:
    data = parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return data

    _maybe_render_error(data)
    if _maybe_render_output(data):
        return data
    if not _maybe_render_done(data):
        typer.echo(format_json(data))
    return data


def describe_device(device: dict[str, Any] | None) -> str:
    if not device:
        return "no device"
    return (
        f"{device.get('serial')}  model={device.get('model')} "
        f"android={device.get('android_version')} build={device.get('build_id')}"
    )
