"""Daemon control and HTTP client for CLI commands."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

import httpx

from adb_console.config import Settings

SOCKET_PATH = Path(os.environ.get("ADB_CONSOLE_SOCKET", "/tmp/adb-console.sock"))
BASE_URL = "http://adb-console"
HEALTH_WAIT_SECS = 5.0
STOP_WAIT_SECS = 5.0
_POLL_SECS = 0.1


def _uds_client(socket_path: Path, timeout: float | None) -> httpx.Client:
    return httpx.Client(
        transport=httpx.HTTPTransport(uds=str(socket_path)),
        base_url=BASE_URL,
        timeout=timeout,
    )


def _probe(client: httpx.Client) -> dict[str, Any] | None:
    """GET /health; None when the daemon is not answering."""
    try:
        resp = client.get("/health", timeout=1.0)
    except httpx.TransportError:
        return None
    if resp.status_code != 200:
        return None
    data: dict[str, Any] = resp.json()
    return data


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


class DaemonController:
    """Start/stop/status for the daemon process."""

    def __init__(self, socket_path: Path = SOCKET_PATH, state_dir: Path | None = None) -> None:
        self.socket_path = socket_path
        self.state_dir = state_dir or Settings.from_env().state_dir
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.pid_file = self.state_dir / "daemon.pid"
        self.log_file = self.state_dir / "daemon.log"

    def recorded_pid(self) -> int | None:
        try:
            return int(self.pid_file.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def running_pid(self) -> int | None:
        """PID of a live daemon; a stale pid file is removed."""
        pid = self.recorded_pid()
        if pid is None:
            return None
        if _alive(pid):
            return pid
        self.pid_file.unlink(missing_ok=True)
        return None

    def health(self) -> dict[str, Any] | None:
        """Return the /health payload, or None when the socket does not answer."""
        if not self.socket_path.exists():
            return None
        with _uds_client(self.socket_path, 1.0) as client:
            return _probe(client)

    def _launch_args(self) -> list[str]:
        return [
            sys.executable,
            "-m",
            "uvicorn",
            "adb_console.daemon.server:app",
            "--uds",
            str(self.socket_path),
            "--log-level",
            "info",
        ]

    def start(self) -> int:
        """Start the daemon; returns PID, or -1 if already running but PID unknown."""
        pid = self.running_pid()
        if pid is not None:
            return pid
        if self.health() is not None:
            return -1
        # uvicorn refuses to bind over a stale socket file
        self.socket_path.unlink(missing_ok=True)

        env = {**os.environ, "ADB_CONSOLE_STATE_DIR": str(self.state_dir)}
        with self.log_file.open("a", encoding="utf-8") as log_handle:
            proc = subprocess.Popen(
                self._launch_args(),
                stdout=log_handle,
                stderr=log_handle,
                env=env,
                start_new_session=True,
            )
        self.pid_file.write_text(str(proc.pid))
        return proc.pid

    def stop(self) -> bool:
        """Send SIGTERM and wait for exit. The daemon releases the device on shutdown."""
        pid = self.running_pid()
        if pid is None:
            return False

        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + STOP_WAIT_SECS
        while time.monotonic() < deadline:
            if not _alive(pid):
                self.pid_file.unlink(missing_ok=True)
                return True
            time.sleep(_POLL_SECS)
        return False

    def status(self) -> dict[str, Any]:
        pid = self.recorded_pid()
        return {
            "pid": pid,
            "pid_running": pid is not None and _alive(pid),
            "socket": str(self.socket_path),
            "socket_exists": self.socket_path.exists(),
            "state_dir": str(self.state_dir),
            "log_file": str(self.log_file),
        }


class DaemonClient:
    """HTTP client using Unix Domain Socket transport.

    `timeout=None` waits indefinitely, which device operations need while the
    user answers the authorization prompt on the phone.
    """

    def __init__(
        self,
        socket_path: Path = SOCKET_PATH,
        *,
        auto_start: bool = True,
        timeout: float | None = 10.0,
    ) -> None:
        self.socket_path = socket_path
        self.auto_start = auto_start
        self.controller = DaemonController(socket_path)
        self._client = _uds_client(socket_path, timeout)

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self.auto_start and _probe(self._client) is None:
            self._launch()

        try:
            return self._client.request(method, path, json=json_body, params=params)
        except httpx.TransportError:
            if not self.auto_start:
                raise
            self._launch()
            return self._client.request(method, path, json=json_body, params=params)

    def _launch(self) -> None:
        self.controller.start()
        deadline = time.monotonic() + HEALTH_WAIT_SECS
        while time.monotonic() < deadline:
            if _probe(self._client) is not None:
                return
            time.sleep(_POLL_SECS)
        raise RuntimeError(f"Daemon did not become healthy; see {self.controller.log_file}")


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=True)
