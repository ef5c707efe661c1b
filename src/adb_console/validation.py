"""Validation helpers for user input."""

from __future__ import annotations

from pathlib import Path

from adb_console.errors import file_not_found_error, invalid_command_error


def validate_command(command: str) -> str:
    """Validate a shell command and return it stripped.

    Args:
        command: Raw command text as typed by the user

    Raises:
        ConsoleError: If the command is blank
    """
    stripped = command.strip() if command else ""
    if not stripped:
        raise invalid_command_error(command)
    return stripped


def validate_local_file(path: str | Path) -> Path:
    """Resolve a user-supplied local file path.

    Args:
        path: Path to an existing regular file

    Returns:
        Expanded path

    Raises:
        ConsoleError: If the file does not exist
    """
    resolved = Path(path).expanduser()
    if not resolved.is_file():
        raise file_not_found_error(str(path))
    return resolved
