"""Daemon core - the session context wiring every subsystem together."""

from __future__ import annotations

import asyncio

import structlog

from adb_console.config import Settings
from adb_console.db.models import Database
from adb_console.device.backend import AdbBackend
from adb_console.device.executor import CommandExecutor
from adb_console.device.identity import IdentityCache
from adb_console.device.manager import ConnectionManager
from adb_console.events import EventBus, EventLog
from adb_console.mirror.controller import MirrorSessionController

logger = structlog.get_logger()


class DaemonCore:
    """Central daemon coordinator.

    Owns the single device lock that serializes connect, disconnect, command
    execution, mirror start/stop and watcher actions.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self.database = Database(self.settings.db_path)
        self.events = EventBus()
        self.event_log = EventLog()
        self.events.subscribe(self.event_log)
        self.lock = asyncio.Lock()
        self.backend = AdbBackend()
        self.identity_cache = IdentityCache(self.database)
        self.connection = ConnectionManager(
            self.backend,
            self.identity_cache,
            self.events,
            lock=self.lock,
            watch_interval=self.settings.watch_interval if self.settings.watch_enabled else 0,
        )
        self.executor = CommandExecutor(self.connection)
        self.mirror = MirrorSessionController(self.connection, self.settings, self.events)
        self.connection.add_disconnect_hook(self.mirror.stop)
        self._running = False

    async def start(self) -> None:
        """Open the state database and try a silent reconnect."""
        logger.info("daemon_core_starting", state_dir=str(self.settings.state_dir))
        await self.database.connect()
        await self.connection.start()
        self._running = True
        logger.info("daemon_core_started", state=self.connection.state.value)

    async def stop(self) -> None:
        """Stop mirroring, release the device and close the database."""
        logger.info("daemon_core_stopping")
        self._running = False
        await self.connection.stop()
        await self.database.disconnect()
        logger.info("daemon_core_stopped")

    @property
    def is_running(self) -> bool:
        return self._running
