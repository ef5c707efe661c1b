"""FastAPI server running over Unix Domain Socket."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from adb_console import __version__
from adb_console.daemon.core import DaemonCore
from adb_console.daemon.models import (
    AppInstallRequest,
    ConnectRequest,
    KeyRequest,
    MirrorStartRequest,
    ShellRequest,
    TouchRequest,
)
from adb_console.device.manager import SerialChooser
from adb_console.errors import ConsoleError, no_active_session_error
from adb_console.mirror.input import InputAction

logger = structlog.get_logger()

ResponsePayload = dict[str, Any]
EndpointResponse = Response | ResponsePayload

_STATUS_BY_CODE = {
    "ERR_DEVICE_NOT_FOUND": 404,
    "ERR_FILE_NOT_FOUND": 404,
    "ERR_AUTH_REQUIRED": 401,
    "ERR_PERMISSION_DENIED": 403,
    "ERR_DEVICE_CHOICE_REQUIRED": 409,
    "ERR_NO_ACTIVE_SESSION": 409,
    "ERR_ALREADY_RUNNING": 409,
    "ERR_MIRROR_NOT_RUNNING": 409,
    "ERR_INVALID_COMMAND": 400,
    "ERR_INVALID_INPUT": 400,
    "ERR_AGENT_ACQUISITION": 502,
    "ERR_TUNNEL": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage daemon lifecycle."""
    logger.info("daemon_starting")
    app.state.core = DaemonCore()
    await app.state.core.start()
    yield
    logger.info("daemon_stopping")
    await app.state.core.stop()


app = FastAPI(
    title="ADB Console Daemon",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(error: ConsoleError, status_code: int | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or _STATUS_BY_CODE.get(error.code, 500),
        content={"status": "error", "error": error.to_dict()},
    )


def _connection_payload(core: DaemonCore) -> ResponsePayload:
    session = core.connection.session
    return {
        "state": core.connection.state.value,
        "device": session.describe() if session else None,
    }


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint with connection and mirror status."""
    core: DaemonCore = app.state.core
    return {
        "status": "ok",
        "running": core.is_running,
        "connection": core.connection.state.value,
        "mirror": core.mirror.phase.value,
    }


@app.get("/devices", response_model=None)
async def list_devices() -> EndpointResponse:
    """List every device the ADB server reports."""
    core: DaemonCore = app.state.core
    try:
        candidates = await core.connection.list_candidates()
    except ConsoleError as e:
        return _error_response(e)
    return {"devices": [c.to_dict() for c in candidates]}


@app.get("/connection")
async def connection_status() -> dict[str, Any]:
    """Current connection state and device."""
    core: DaemonCore = app.state.core
    return {"status": "done", **_connection_payload(core)}


@app.post("/connection/connect", response_model=None)
async def connection_connect(req: ConnectRequest) -> EndpointResponse:
    """Select, authenticate and hold one device."""
    core: DaemonCore = app.state.core
    try:
        async with core.lock:
            await core.connection.connect(SerialChooser(req.serial))
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", **_connection_payload(core)}


@app.post("/connection/disconnect", response_model=None)
async def connection_disconnect() -> EndpointResponse:
    """Stop mirroring and release the device."""
    core: DaemonCore = app.state.core
    async with core.lock:
        disconnected = await core.connection.disconnect()
    return {"status": "done", "disconnected": disconnected, **_connection_payload(core)}


@app.post("/connection/reconnect", response_model=None)
async def connection_reconnect() -> EndpointResponse:
    """Silently reconnect to the remembered device."""
    core: DaemonCore = app.state.core
    async with core.lock:
        session = await core.connection.auto_reconnect()
    return {"status": "done", "reconnected": session is not None, **_connection_payload(core)}


@app.post("/shell", response_model=None)
async def shell(req: ShellRequest) -> EndpointResponse:
    """Run one shell command on the connected device."""
    core: DaemonCore = app.state.core
    try:
        async with core.lock:
            output = await core.executor.execute(req.command)
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", "output": output}


@app.post("/apps/install", response_model=None)
async def app_install(req: AppInstallRequest) -> EndpointResponse:
    """Install a local APK on the connected device."""
    core: DaemonCore = app.state.core
    try:
        async with core.lock:
            name = await core.executor.install(req.path)
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", "installed": name}


@app.post("/mirror/start", response_model=None)
async def mirror_start(req: MirrorStartRequest) -> EndpointResponse:
    """Bootstrap the agent and start streaming."""
    core: DaemonCore = app.state.core
    agent_file = Path(req.agent_file).expanduser() if req.agent_file else None
    try:
        async with core.lock:
            await core.mirror.start(
                stay_awake=req.stay_awake,
                power_off_on_close=req.power_off_on_close,
                agent_file=agent_file,
            )
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", **core.mirror.status()}


@app.post("/mirror/stop", response_model=None)
async def mirror_stop() -> EndpointResponse:
    """Tear down the mirror session."""
    core: DaemonCore = app.state.core
    async with core.lock:
        stopped = await core.mirror.stop()
    return {"status": "done", "stopped": stopped, **core.mirror.status()}


@app.get("/mirror")
async def mirror_status() -> dict[str, Any]:
    """Mirror phase and stream counters."""
    core: DaemonCore = app.state.core
    return {"status": "done", **core.mirror.status()}


@app.post("/mirror/touch", response_model=None)
async def mirror_touch(req: TouchRequest) -> EndpointResponse:
    """Send one touch record scaled from the given element size."""
    core: DaemonCore = app.state.core
    if not core.connection.is_connected:
        return _error_response(no_active_session_error())
    try:
        record = await core.mirror.send_touch(
            InputAction.parse(req.action), req.x, req.y, req.width, req.height
        )
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", "action": req.action, "x": record.x, "y": record.y}


@app.post("/mirror/key", response_model=None)
async def mirror_key(req: KeyRequest) -> EndpointResponse:
    """Send one key record."""
    core: DaemonCore = app.state.core
    if not core.connection.is_connected:
        return _error_response(no_active_session_error())
    try:
        record = await core.mirror.send_key(InputAction.parse(req.action), req.key_code)
    except ConsoleError as e:
        return _error_response(e)
    return {"status": "done", "action": req.action, "key_code": record.key_code}


@app.get("/events")
async def events(limit: int = 50) -> dict[str, Any]:
    """Recent status and log events, oldest first."""
    core: DaemonCore = app.state.core
    return {"events": [event.to_dict() for event in core.event_log.recent(limit)]}
