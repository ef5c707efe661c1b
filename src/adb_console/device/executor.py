"""Command executor - remote shell round trips with admin-command quoting."""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from adb_console.device.manager import ConnectionManager
from adb_console.errors import ConsoleError, command_failed_error, no_active_session_error
from adb_console.validation import validate_command, validate_local_file

logger = structlog.get_logger()

SET_DEVICE_OWNER = "dpm set-device-owner"
ADMIN_VERB = "dpm "

# dpm set-device-owner <component>, component optionally wrapped in ' or "
_SET_OWNER_PATTERN = re.compile(r"dpm set-device-owner\s+(?:[\"']([^\"']+)[\"']|(\S+))")
# package/component token not already touching a quote or another path segment
_COMPONENT_PATTERN = re.compile(r"(?<![\w./'\"])([\w.]+/[\w.]+)(?![\w./'\"])")


def sanitize_command(command: str) -> str:
    """Quote component names in device-policy commands.

    The shell would otherwise split or expand `pkg/.Receiver` arguments.
    Pure and idempotent.
    """
    if SET_DEVICE_OWNER in command:
        match = _SET_OWNER_PATTERN.search(command)
        if not match:
            return command
        component = (match.group(1) or match.group(2)).strip("'\"")
        rewritten = f"{SET_DEVICE_OWNER} '{component}'"
        return command[: match.start()] + rewritten + command[match.end() :]

    if ADMIN_VERB in command and "/" in command:
        return _COMPONENT_PATTERN.sub(r"'\1'", command)

    return command


@dataclass(frozen=True)
class ShellCommand:
    """A command as typed and as sent."""

    raw: str
    sanitized: str

    @classmethod
    def parse(cls, raw: str) -> ShellCommand:
        command = validate_command(raw)
        return cls(raw=raw, sanitized=sanitize_command(command))


def strip_trailing_newline(output: str) -> str:
    return output[:-1] if output.endswith("\n") else output


class CommandExecutor:
    """Runs shell commands through the connected TransportSession."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    async def execute(self, command: str) -> str:
        """Run one command and return its captured output.

        Raises:
            ConsoleError: ERR_NO_ACTIVE_SESSION, ERR_INVALID_COMMAND or
                ERR_COMMAND_FAILED carrying the transport's message.
        """
        session = self._connection.session
        if session is None or not self._connection.is_connected:
            raise no_active_session_error()

        shell_command = ShellCommand.parse(command)
        if shell_command.sanitized != shell_command.raw.strip():
            logger.debug("command_sanitized", raw=shell_command.raw, sent=shell_command.sanitized)

        try:
            output = await session.shell(shell_command.sanitized)
        except ConsoleError:
            raise
        except Exception as exc:
            logger.warning("command_failed", command=shell_command.sanitized, error=str(exc))
            raise command_failed_error(shell_command.sanitized, str(exc)) from exc

        logger.info("command_executed", command=shell_command.sanitized, output_len=len(output))
        return strip_trailing_newline(output)

    async def install(self, path: str) -> str:
        """Install a single local APK and return the installed file name."""
        session = self._connection.session
        if session is None or not self._connection.is_connected:
            raise no_active_session_error()

        apk = validate_local_file(path)
        try:
            await session.install(str(apk))
        except Exception as exc:
            raise command_failed_error(f"install {apk.name}", str(exc)) from exc
        logger.info("apk_installed", serial=session.serial, apk=apk.name)
        return apk.name
