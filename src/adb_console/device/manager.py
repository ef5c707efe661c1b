"""Connection manager - discovery, selection, authentication and reconnection."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

import structlog

from adb_console.config import AUTHORIZE_HINT_DELAY_SECS
from adb_console.device.backend import DeviceCandidate
from adb_console.device.identity import DeviceIdentity, IdentityCache
from adb_console.device.transport import TransportSession
from adb_console.errors import device_choice_required_error, device_not_found_error
from adb_console.events import EventBus

logger = structlog.get_logger()


class ConnectionState(Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    REQUESTING = "requesting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


class DeviceBackend(Protocol):
    async def list_candidates(self) -> list[DeviceCandidate]: ...

    async def open(self, candidate: DeviceCandidate) -> TransportSession: ...


DeviceChooser = Callable[[list[DeviceCandidate]], Awaitable[DeviceCandidate | None]]
DisconnectHook = Callable[[], Awaitable[None]]


async def first_available(candidates: list[DeviceCandidate]) -> DeviceCandidate | None:
    """Pick the first authorized device, else the first device at all."""
    for candidate in candidates:
        if candidate.authorized:
            return candidate
    return candidates[0] if candidates else None


class SerialChooser:
    """Chooser driven by an explicit serial, for non-interactive callers.

    Without a serial it only resolves an unambiguous choice and otherwise
    raises ERR_DEVICE_CHOICE_REQUIRED so the caller can prompt the user.
    """

    def __init__(self, serial: str | None = None) -> None:
        self._serial = serial

    async def __call__(self, candidates: list[DeviceCandidate]) -> DeviceCandidate | None:
        if self._serial:
            return next((c for c in candidates if c.serial == self._serial), None)
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]
        raise device_choice_required_error([c.serial for c in candidates])


def find_cached_match(
    cached: DeviceIdentity, candidates: list[DeviceCandidate]
) -> DeviceCandidate | None:
    """Return the first authorized candidate the cached identity describes."""
    for candidate in candidates:
        if candidate.authorized and cached.matches(candidate.identity):
            return candidate
    return None


class ConnectionManager:
    """Drives a single TransportSession through its lifecycle."""

    def __init__(
        self,
        backend: DeviceBackend,
        cache: IdentityCache,
        events: EventBus | None = None,
        *,
        chooser: DeviceChooser = first_available,
        lock: asyncio.Lock | None = None,
        watch_interval: float = 5.0,
        hint_delay: float = AUTHORIZE_HINT_DELAY_SECS,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._events = events or EventBus()
        self._chooser = chooser
        self.lock = lock or asyncio.Lock()
        self._watch_interval = watch_interval
        self._hint_delay = hint_delay
        self._state = ConnectionState.DISCONNECTED
        self._session: TransportSession | None = None
        self._disconnect_hooks: list[DisconnectHook] = []
        self._known_serials: set[str] = set()
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> TransportSession | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._session is not None

    def add_disconnect_hook(self, hook: DisconnectHook) -> None:
        """Register a coroutine run before the transport is closed."""
        self._disconnect_hooks.append(hook)

    async def list_candidates(self) -> list[DeviceCandidate]:
        return await self._backend.list_candidates()

    async def connect(self, chooser: DeviceChooser | None = None) -> TransportSession:
        """Select one device and authenticate against it.

        A cached identity matching an authorized device skips the chooser.

        Raises:
            ConsoleError: ERR_DEVICE_NOT_FOUND, ERR_PERMISSION_DENIED or
                ERR_AUTH_REQUIRED; the manager is DISCONNECTED afterwards.
        """
        if self._session is not None:
            logger.info("already_connected", serial=self._session.serial)
            return self._session

        self._set_state(ConnectionState.REQUESTING)
        self._events.log("Requesting USB device access...")
        try:
            candidates = await self._backend.list_candidates()
            target: DeviceCandidate | None = None
            cached = await self._cache.load()
            if cached is not None:
                target = find_cached_match(cached, candidates)
            if target is None:
                target = await (chooser or self._chooser)(candidates)
            if target is None:
                raise device_not_found_error()
            return await self._open(target)
        except Exception:
            self._reset()
            raise

    async def auto_reconnect(self) -> TransportSession | None:
        """Reconnect silently to the cached device, never prompting.

        Evicts the cached identity when no authorized device matches it or
        when the reconnect attempt fails.
        """
        cached = await self._cache.load()
        if cached is None:
            return None
        if self._session is not None:
            return self._session

        try:
            candidates = await self._backend.list_candidates()
        except Exception as exc:
            logger.warning("auto_reconnect_failed", error=str(exc))
            await self._cache.evict()
            return None

        match = find_cached_match(cached, candidates)
        if match is None:
            logger.info("auto_reconnect_no_match", serial=cached.serial_number)
            await self._cache.evict()
            return None

        self._set_state(ConnectionState.REQUESTING)
        try:
            return await self._open(match)
        except Exception as exc:
            self._reset()
            logger.warning("auto_reconnect_failed", serial=match.serial, error=str(exc))
            self._events.log(f"Auto-connect failed: {exc}", level="warning")
            await self._cache.evict()
            return None

    async def disconnect(self, reason: str = "requested") -> bool:
        """Tear down the session. Returns False if nothing was connected."""
        session = self._session
        if session is None:
            self._reset()
            return False

        for hook in list(self._disconnect_hooks):
            try:
                await hook()
            except Exception:
                logger.exception("disconnect_hook_error")

        try:
            await session.close()
        except Exception as exc:
            logger.debug("transport_close_error", serial=session.serial, error=str(exc))

        self._reset()
        logger.info("device_disconnected", serial=session.serial, reason=reason)
        self._events.status("Device disconnected", state=self._state.value, reason=reason)
        return True

    async def start(self) -> None:
        """Try a silent reconnect and begin watching for device arrival/removal."""
        async with self.lock:
            try:
                self._known_serials = {c.serial for c in await self._backend.list_candidates()}
            except Exception as exc:
                logger.warning("device_watch_seed_failed", error=str(exc))
            await self.auto_reconnect()
        if self._watch_interval > 0:
            self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info("connection_manager_started", state=self._state.value)

    async def stop(self) -> None:
        """Stop watching and release the session."""
        if self._watch_task:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
        async with self.lock:
            await self.disconnect(reason="shutdown")
        logger.info("connection_manager_stopped")

    async def check_devices(self) -> None:
        """Handle device arrival and removal since the previous check."""
        async with self.lock:
            candidates = await self._backend.list_candidates()
            current = {c.serial for c in candidates}
            arrived = current - self._known_serials
            self._known_serials = current

            if self._session is not None:
                if self._session.serial not in current:
                    logger.warning("device_removed", serial=self._session.serial)
                    self._events.log("USB device disconnected", level="warning")
                    await self.disconnect(reason="device_removed")
                return

            if arrived and self._state is ConnectionState.DISCONNECTED:
                logger.info("device_arrived", serials=sorted(arrived))
                self._events.log("USB device connected")
                await self.auto_reconnect()

    async def _watch_loop(self) -> None:
        """Periodic poll replacing USB hotplug notifications."""
        while True:
            await asyncio.sleep(self._watch_interval)
            try:
                await self.check_devices()
            except Exception:
                logger.exception("device_watch_error")

    async def _open(self, target: DeviceCandidate) -> TransportSession:
        self._set_state(ConnectionState.AUTHENTICATING)
        loop = asyncio.get_running_loop()
        hint = loop.call_later(
            self._hint_delay,
            self._events.log,
            'Tap "Allow" on your device to authorize this computer',
            "warning",
        )
        try:
            session = await self._backend.open(target)
        finally:
            hint.cancel()

        try:
            await self._cache.save(session.identity)
        except Exception as exc:
            logger.warning("identity_cache_write_failed", error=str(exc))

        self._session = session
        self._set_state(ConnectionState.CONNECTED)
        logger.info("device_connected", serial=session.serial)
        self._events.status("Device connected and ready", state=self._state.value, **session.describe())
        return session

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("connection_state", previous=self._state.value, state=state.value)
        self._state = state

    def _reset(self) -> None:
        self._session = None
        self._set_state(ConnectionState.DISCONNECTED)
