"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ConsoleError(Exception):
    """
    Base error with context and remediation guidance.

    All errors should be actionable - tell the caller what went wrong
    and what they can do about it.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


# Connection lifecycle


def device_not_found_error(reason: str | None = None) -> ConsoleError:
    """Create error for no selectable device."""
    message = "No compatible Android device found"
    if reason:
        message = f"{message}: {reason}"
    return ConsoleError(
        code="ERR_DEVICE_NOT_FOUND",
        message=message,
        context={"reason": reason},
        remediation="Connect the device via USB and ensure USB debugging is enabled.",
    )


def device_choice_required_error(serials: list[str]) -> ConsoleError:
    """Create error for an ambiguous device selection."""
    return ConsoleError(
        code="ERR_DEVICE_CHOICE_REQUIRED",
        message=f"{len(serials)} devices available, choose one",
        context={"serials": serials},
        remediation="Pass --serial with one of the listed devices.",
    )


def permission_denied_error(serial: str, state: str | None = None) -> ConsoleError:
    """Create error for host-side USB access refusal."""
    return ConsoleError(
        code="ERR_PERMISSION_DENIED",
        message=f"USB device access denied: {serial}",
        context={"serial": serial, "state": state},
        remediation="Check udev rules and that your user is in the plugdev group.",
    )


def authentication_required_error(serial: str, state: str | None = None) -> ConsoleError:
    """Create error for a device that rejected the handshake."""
    return ConsoleError(
        code="ERR_AUTH_REQUIRED",
        message=f"Device authorization required: {serial}",
        context={"serial": serial, "state": state},
        remediation='Check your Android device and tap "Allow", then connect again.',
    )


def no_active_session_error() -> ConsoleError:
    """Create error for operations that need a connected device."""
    return ConsoleError(
        code="ERR_NO_ACTIVE_SESSION",
        message="No device connected",
        context={},
        remediation="Connect a device with 'device connect' first.",
    )


# Commands


def invalid_command_error(command: str) -> ConsoleError:
    """Create error for an empty or malformed shell command."""
    return ConsoleError(
        code="ERR_INVALID_COMMAND",
        message="Command is empty",
        context={"command": command},
        remediation="Provide a shell command, e.g. 'getprop ro.product.model'.",
    )


def command_failed_error(command: str, reason: str) -> ConsoleError:
    """Create error for a failed remote shell round trip."""
    return ConsoleError(
        code="ERR_COMMAND_FAILED",
        message=f"Failed to execute command: {reason}",
        context={"command": command, "reason": reason},
        remediation="Check the device connection and command syntax, then retry.",
    )


def file_not_found_error(path: str) -> ConsoleError:
    """Create error for missing local file."""
    return ConsoleError(
        code="ERR_FILE_NOT_FOUND",
        message=f"Local file not found: {path}",
        context={"path": path},
        remediation="Verify the local path and try again.",
    )


# Mirroring


def already_running_error(phase: str) -> ConsoleError:
    """Create error for a second mirror start."""
    return ConsoleError(
        code="ERR_ALREADY_RUNNING",
        message="Screen mirroring is already running",
        context={"phase": phase},
        remediation="Stop the current session with 'mirror stop' first.",
    )


def mirror_not_running_error() -> ConsoleError:
    """Create error for input sent without a streaming session."""
    return ConsoleError(
        code="ERR_MIRROR_NOT_RUNNING",
        message="Screen mirroring is not running",
        context={},
        remediation="Start mirroring with 'mirror start'.",
    )


def agent_acquisition_error(failures: list[dict[str, str]]) -> ConsoleError:
    """Create error when every agent provider strategy failed."""
    return ConsoleError(
        code="ERR_AGENT_ACQUISITION",
        message=f"All {len(failures)} agent download methods failed",
        context={"failures": failures},
        remediation=(
            "Check your internet connection, or download scrcpy-server manually and "
            "pass it with --agent-file."
        ),
    )


def agent_spawn_error(reason: str) -> ConsoleError:
    """Create error for failure to push or launch the remote agent."""
    return ConsoleError(
        code="ERR_AGENT_SPAWN",
        message=f"Failed to start mirroring agent: {reason}",
        context={"reason": reason},
        remediation="Verify /data/local/tmp is writable and the agent payload is valid.",
    )


def tunnel_error(port: int, reason: str) -> ConsoleError:
    """Create error for a port-forward that could not be installed or reached."""
    return ConsoleError(
        code="ERR_TUNNEL",
        message=f"Tunnel on tcp:{port} failed: {reason}",
        context={"port": port, "reason": reason},
        remediation="Check 'adb forward --list' for conflicting mappings and retry.",
    )


def stream_decode_error(reason: str) -> ConsoleError:
    """Create error for a video chunk that could not be decoded."""
    return ConsoleError(
        code="ERR_STREAM_DECODE",
        message=f"Video decode error: {reason}",
        context={"reason": reason},
        remediation="Non-fatal; streaming continues with the next chunk.",
    )


def teardown_error(step: str, reason: str) -> ConsoleError:
    """Create error for a failed cleanup step."""
    return ConsoleError(
        code="ERR_TEARDOWN",
        message=f"Cleanup step '{step}' failed: {reason}",
        context={"step": step, "reason": reason},
        remediation="Leftover forwards can be removed with 'adb forward --remove-all'.",
    )


def invalid_input_error(field_name: str, value: object) -> ConsoleError:
    """Create error for an unknown input action or malformed event."""
    return ConsoleError(
        code="ERR_INVALID_INPUT",
        message=f"Invalid input {field_name}: {value}",
        context={"field": field_name, "value": value},
        remediation="Touch actions are down|move|up; key actions are down|up.",
    )
