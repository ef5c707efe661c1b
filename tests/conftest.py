"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from adb_console.device.backend import DeviceCandidate
from adb_console.device.identity import DeviceIdentity
from adb_console.device.transport import DeviceInfo

PIXEL = DeviceIdentity(vendor_id=0x18D1, product_id=0x4EE7, serial_number="ABC123")
GALAXY = DeviceIdentity(vendor_id=0x04E8, product_id=0x6860, serial_number="R58M")


def make_candidate(identity: DeviceIdentity, state: str = "device") -> DeviceCandidate:
    assert identity.serial_number is not None
    return DeviceCandidate(serial=identity.serial_number, state=state, identity=identity)


class FakeWriter:
    """StreamWriter stand-in; closing it ends the paired reader."""

    def __init__(self, reader: asyncio.StreamReader | None = None) -> None:
        self.reader = reader
        self.data = bytearray()
        self.closed = False
        self.fail_close = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("writer closed")
        self.data.extend(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        if self.fail_close:
            raise OSError("close failed")
        self.closed = True
        if self.reader is not None and not self.reader.at_eof():
            self.reader.feed_eof()

    async def wait_closed(self) -> None:
        return None


class FakeProcess:
    def __init__(self, argv: list[str]) -> None:
        self.argv = argv
        self.terminated = False

    @property
    def is_running(self) -> bool:
        return not self.terminated

    async def terminate(self) -> None:
        self.terminated = True


class FakeTransport:
    """In-memory TransportSession."""

    def __init__(self, identity: DeviceIdentity = PIXEL) -> None:
        assert identity.serial_number is not None
        self.identity = identity
        self.info = DeviceInfo(
            serial=identity.serial_number,
            model="Pixel 7",
            android_version="14",
            build_id="UQ1A.240205.004",
        )
        self.outputs: dict[str, str] = {}
        self.shell_error: Exception | None = None
        self.commands: list[str] = []
        self.installed: list[str] = []
        self.pushed: list[tuple[bytes, str]] = []
        self.push_error: Exception | None = None
        self.spawn_error: Exception | None = None
        self.processes: list[FakeProcess] = []
        self.forwards: list[int] = []
        self.forward_errors: dict[int, Exception] = {}
        self.removed_forwards: list[int] = []
        self.socket_errors: dict[int, Exception] = {}
        self.readers: dict[int, asyncio.StreamReader] = {}
        self.writers: dict[int, FakeWriter] = {}
        self.closed = False

    @property
    def serial(self) -> str:
        return self.info.serial

    @property
    def is_closed(self) -> bool:
        return self.closed

    async def shell(self, command: str) -> str:
        self.commands.append(command)
        if self.shell_error is not None:
            raise self.shell_error
        return self.outputs.get(command, "")

    async def install(self, path: str) -> None:
        self.installed.append(path)

    async def push(self, data: bytes, remote_path: str) -> None:
        if self.push_error is not None:
            raise self.push_error
        self.pushed.append((data, remote_path))

    async def spawn(self, argv: list[str]) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess(argv)
        self.processes.append(process)
        return process

    async def forward(self, local_port: int, remote_port: int) -> None:
        if local_port in self.forward_errors:
            raise self.forward_errors[local_port]
        self.forwards.append(local_port)

    async def remove_forward(self, local_port: int) -> None:
        self.removed_forwards.append(local_port)
        self.forwards.remove(local_port)

    async def open_socket(self, port: int) -> tuple[asyncio.StreamReader, FakeWriter]:
        if port in self.socket_errors:
            raise self.socket_errors[port]
        reader = asyncio.StreamReader()
        writer = FakeWriter(reader)
        self.readers[port] = reader
        self.writers[port] = writer
        return reader, writer

    async def close(self) -> None:
        self.closed = True

    def describe(self) -> dict[str, Any]:
        return {
            **self.info.to_dict(),
            "vendor_id": self.identity.vendor_id,
            "product_id": self.identity.product_id,
        }


class FakeBackend:
    """DeviceBackend serving a fixed candidate list."""

    def __init__(self, candidates: list[DeviceCandidate] | None = None) -> None:
        self.candidates = list(candidates or [])
        self.open_errors: dict[str, Exception] = {}
        self.opened: list[str] = []
        self.transports: dict[str, FakeTransport] = {}
        self.open_delay = 0.0

    async def list_candidates(self) -> list[DeviceCandidate]:
        return list(self.candidates)

    async def open(self, candidate: DeviceCandidate) -> FakeTransport:
        self.opened.append(candidate.serial)
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if candidate.serial in self.open_errors:
            raise self.open_errors[candidate.serial]
        transport = FakeTransport(candidate.identity)
        self.transports[candidate.serial] = transport
        return transport


class MemoryIdentityCache:
    """IdentityCache kept in memory."""

    def __init__(self, identity: DeviceIdentity | None = None) -> None:
        self.identity = identity
        self.saves = 0
        self.evictions = 0
        self.fail_save = False

    async def load(self) -> DeviceIdentity | None:
        return self.identity

    async def save(self, identity: DeviceIdentity) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.saves += 1
        self.identity = identity

    async def evict(self) -> None:
        self.evictions += 1
        self.identity = None


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend([make_candidate(PIXEL)])


@pytest.fixture
def identity_cache() -> MemoryIdentityCache:
    return MemoryIdentityCache()
