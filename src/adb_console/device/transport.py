"""Transport session - one authenticated channel to a device."""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from adb_console.device.identity import DeviceIdentity

if TYPE_CHECKING:
    from adbutils import AdbConnection, AdbDevice

logger = structlog.get_logger()

LOCAL_HOST = "127.0.0.1"


@dataclass
class DeviceInfo:
    """Device information read after the handshake."""

    serial: str
    model: str
    android_version: str
    build_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "serial": self.serial,
            "model": self.model,
            "android_version": self.android_version,
            "build_id": self.build_id,
        }


class AgentProcess:
    """Handle on a remote process spawned through a streaming shell connection."""

    def __init__(self, connection: AdbConnection, argv: list[str]) -> None:
        self._connection = connection
        self.argv = argv
        self._terminated = False

    @property
    def is_running(self) -> bool:
        return not self._terminated

    async def terminate(self) -> None:
        """Close the shell stream, which kills the remote process."""
        if self._terminated:
            return
        self._terminated = True
        await asyncio.to_thread(self._connection.close)


class TransportSession:
    """Owns one authenticated ADB channel and exposes command/socket primitives."""

    def __init__(
        self,
        device: AdbDevice,
        identity: DeviceIdentity,
        info: DeviceInfo,
        *,
        host: str = LOCAL_HOST,
    ) -> None:
        self._device = device
        self.identity = identity
        self.info = info
        self._host = host
        self._closed = False

    @property
    def serial(self) -> str:
        return self.info.serial

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def shell(self, command: str) -> str:
        """Run a shell command and return its raw text output."""

        def _run() -> str:
            return str(self._device.shell(command, timeout=None, rstrip=False))

        return await asyncio.to_thread(_run)

    async def install(self, path: str) -> None:
        """Install a local APK."""
        await asyncio.to_thread(self._device.install, path)

    async def push(self, data: bytes, remote_path: str) -> None:
        """Write a byte payload to a file on the device."""

        def _push() -> None:
            self._device.sync.push(io.BytesIO(data), remote_path)

        await asyncio.to_thread(_push)
        logger.info("payload_pushed", serial=self.serial, path=remote_path, size=len(data))

    async def spawn(self, argv: list[str]) -> AgentProcess:
        """Start a long-running remote process and return its handle."""

        def _spawn() -> AdbConnection:
            return self._device.shell(argv, stream=True)

        connection = await asyncio.to_thread(_spawn)
        logger.info("process_spawned", serial=self.serial, argv=argv)
        return AgentProcess(connection, argv)

    async def forward(self, local_port: int, remote_port: int) -> None:
        """Install a tcp forward from a host port to a device port."""
        await asyncio.to_thread(
            self._device.forward, f"tcp:{local_port}", f"tcp:{remote_port}"
        )
        logger.info("tunnel_installed", serial=self.serial, local=local_port, remote=remote_port)

    async def remove_forward(self, local_port: int) -> None:
        """Remove a tcp forward installed by `forward`."""

        def _remove() -> None:
            connection = self._device.open_transport(f"killforward:tcp:{local_port}")
            connection.close()

        await asyncio.to_thread(_remove)
        logger.info("tunnel_removed", serial=self.serial, local=local_port)

    async def open_socket(self, port: int) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Open a TCP socket to a tunneled host port."""
        return await asyncio.open_connection(self._host, port)

    async def close(self) -> None:
        """Release the channel. Further primitives must not be used."""
        if self._closed:
            return
        self._closed = True
        logger.info("transport_closed", serial=self.serial)

    def describe(self) -> dict[str, Any]:
        return {
            **self.info.to_dict(),
            "vendor_id": self.identity.vendor_id,
            "product_id": self.identity.product_id,
        }
