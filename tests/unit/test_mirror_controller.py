"""Tests for MirrorSessionController."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from conftest import FakeBackend, FakeTransport, MemoryIdentityCache

from adb_console.config import Settings
from adb_console.device.manager import ConnectionManager
from adb_console.errors import ConsoleError
from adb_console.mirror import controller as controller_module
from adb_console.mirror.agent import AgentProvider
from adb_console.mirror.controller import (
    MirrorOptions,
    MirrorPhase,
    MirrorSessionController,
    ProvidersFactory,
    build_agent_args,
)
from adb_console.mirror.input import InputAction
from adb_console.mirror.video import FrameInfo, PlaceholderRenderer, RendererFactory


class StaticProvider:
    name = "local-file"
    functional = True

    async def fetch(self) -> bytes:
        return b"JAR"


class FailingProvider:
    name = "latest-release"
    functional = True

    async def fetch(self) -> bytes:
        raise RuntimeError("Download failed: 503")


class CountingRenderer:
    """Emits one frame per chunk."""

    name = "counting"

    def __init__(self) -> None:
        self.count = 0

    def feed(self, chunk: bytes) -> list[FrameInfo]:
        self.count += 1
        return [FrameInfo(index=self.count - 1, width=1920, height=1080)]

    def close(self) -> None:
        pass


def _providers(agent_file: Path | None) -> list[AgentProvider]:
    return [StaticProvider()]


def _failing_providers(agent_file: Path | None) -> list[AgentProvider]:
    return [FailingProvider()]


async def _connected(
    backend: FakeBackend, cache: MemoryIdentityCache
) -> tuple[ConnectionManager, FakeTransport]:
    manager = ConnectionManager(backend, cache, watch_interval=0)
    await manager.connect()
    return manager, backend.transports["ABC123"]


def _controller(
    manager: ConnectionManager,
    *,
    providers_factory: ProvidersFactory = _providers,
    renderer_factory: RendererFactory = PlaceholderRenderer,
) -> MirrorSessionController:
    return MirrorSessionController(
        manager,
        Settings(agent_startup_delay=0),
        providers_factory=providers_factory,
        renderer_factory=renderer_factory,
    )


def test_agent_args_exact() -> None:
    """Should build the launch argv in fixed order with lowercase booleans."""
    options = MirrorOptions(stay_awake=True, power_off_on_close=False)
    assert build_agent_args(options) == [
        "CLASSPATH=/data/local/tmp/scrcpy-server.jar",
        "app_process",
        "/",
        "com.genymobile.scrcpy.Server",
        "2.7",
        "log_level=info",
        "bit_rate=8000000",
        "max_size=1920",
        "max_fps=60",
        "stay_awake=true",
        "power_off_on_close=false",
        "tunnel_forward=true",
        "send_frame_meta=false",
        "send_codec_meta=false",
        "send_dummy_byte=false",
    ]


class TestStart:
    """Tests for start."""

    @pytest.mark.asyncio
    async def test_start_streams(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should push, spawn, tunnel and reach STREAMING."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)

        session = await mirror.start(stay_awake=False, power_off_on_close=True)

        assert mirror.phase is MirrorPhase.STREAMING
        assert transport.pushed == [(b"JAR", "/data/local/tmp/scrcpy-server.jar")]
        argv = transport.processes[0].argv
        assert "stay_awake=false" in argv
        assert "power_off_on_close=true" in argv
        assert transport.forwards == [27183, 27184]
        assert session.agent_strategy == "local-file"
        status = mirror.status()
        assert status["phase"] == "streaming"
        assert status["renderer"] == "placeholder"

        await mirror.stop()

    @pytest.mark.asyncio
    async def test_start_while_running(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should fail AlreadyRunning without touching the session."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)
        session = await mirror.start()

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_ALREADY_RUNNING"
        assert mirror.phase is MirrorPhase.STREAMING
        assert mirror.session is session
        assert len(transport.pushed) == 1
        assert len(transport.processes) == 1

        await mirror.stop()

    @pytest.mark.asyncio
    async def test_start_without_device(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should fail NoActiveSession."""
        mirror = _controller(ConnectionManager(backend, identity_cache))

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_NO_ACTIVE_SESSION"
        assert mirror.phase is MirrorPhase.IDLE

    @pytest.mark.asyncio
    async def test_acquisition_failure(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should surface the aggregate failure and return to IDLE."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager, providers_factory=_failing_providers)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_AGENT_ACQUISITION"
        assert exc_info.value.context["failures"] == [
            {"strategy": "latest-release", "reason": "Download failed: 503"}
        ]
        assert mirror.phase is MirrorPhase.IDLE
        assert transport.pushed == []

    @pytest.mark.asyncio
    async def test_spawn_failure(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should fail AgentSpawn without installing tunnels."""
        manager, transport = await _connected(backend, identity_cache)
        transport.spawn_error = RuntimeError("app_process not found")
        mirror = _controller(manager)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_AGENT_SPAWN"
        assert transport.forwards == []
        assert mirror.phase is MirrorPhase.IDLE
        assert mirror.session is None

    @pytest.mark.asyncio
    async def test_push_failure(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should report a failed push as AgentSpawn."""
        manager, transport = await _connected(backend, identity_cache)
        transport.push_error = OSError("read-only file system")
        mirror = _controller(manager)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_AGENT_SPAWN"
        assert transport.processes == []

    @pytest.mark.asyncio
    async def test_control_tunnel_failure_tears_down(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should remove the video tunnel and kill the agent."""
        manager, transport = await _connected(backend, identity_cache)
        transport.forward_errors[27184] = RuntimeError("cannot bind")
        mirror = _controller(manager)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_TUNNEL"
        assert exc_info.value.context["port"] == 27184
        assert transport.removed_forwards == [27183]
        assert transport.forwards == []
        assert transport.processes[0].terminated
        assert mirror.phase is MirrorPhase.IDLE

    @pytest.mark.asyncio
    async def test_video_socket_failure(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should fail Tunnel when the agent is not listening."""
        manager, transport = await _connected(backend, identity_cache)
        transport.socket_errors[27183] = ConnectionRefusedError("refused")
        mirror = _controller(manager)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.start()

        assert exc_info.value.code == "ERR_TUNNEL"
        assert sorted(transport.removed_forwards) == [27183, 27184]
        assert mirror.phase is MirrorPhase.IDLE


class TestStop:
    """Tests for stop and teardown."""

    @pytest.mark.asyncio
    async def test_stop_releases_everything(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should kill the agent, close both sockets and remove both tunnels."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)
        session = await mirror.start()
        video_task = session.video_task

        assert await mirror.stop() is True

        assert transport.processes[0].terminated
        assert transport.writers[27183].closed
        assert transport.writers[27184].closed
        assert transport.forwards == []
        assert video_task is not None and video_task.done()
        assert mirror.phase is MirrorPhase.IDLE
        assert mirror.session is None

    @pytest.mark.asyncio
    async def test_stop_idempotent(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should be a no-op when idle."""
        manager, _ = await _connected(backend, identity_cache)
        mirror = _controller(manager)

        assert await mirror.stop() is False
        await mirror.start()
        assert await mirror.stop() is True
        assert await mirror.stop() is False

    @pytest.mark.asyncio
    async def test_failed_step_does_not_block_teardown(
        self,
        backend: FakeBackend,
        identity_cache: MemoryIdentityCache,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Should continue past a failing step and still end IDLE."""
        monkeypatch.setattr(controller_module, "_STREAM_DRAIN_SECS", 0.01)
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)
        session = await mirror.start()
        transport.writers[27183].fail_close = True

        await mirror.stop()

        assert mirror.phase is MirrorPhase.IDLE
        assert transport.writers[27184].closed
        assert transport.forwards == []
        assert session.video_task is not None and session.video_task.done()

    @pytest.mark.asyncio
    async def test_disconnect_stops_mirroring(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should tear down mirroring through the disconnect hook."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)
        manager.add_disconnect_hook(mirror.stop)
        await mirror.start()

        await manager.disconnect()

        assert mirror.phase is MirrorPhase.IDLE
        assert transport.removed_forwards == [27183, 27184]
        assert transport.closed


class TestStreaming:
    """Tests for input and video while streaming."""

    @pytest.mark.asyncio
    async def test_touch_written_to_control(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should write the scaled touch record."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager)
        await mirror.start()

        record = await mirror.send_touch(InputAction.DOWN, 200, 300, 400, 600)
        await mirror.send_key(InputAction.UP, 66)

        assert (record.x, record.y) == (960, 540)
        data = bytes(transport.writers[27184].data)
        assert len(data) == 16 + 8
        assert data[:16] == record.encode()
        assert mirror.status()["inputs_sent"] == 2

        await mirror.stop()

    @pytest.mark.asyncio
    async def test_input_without_streaming(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should refuse input when not streaming."""
        manager, _ = await _connected(backend, identity_cache)
        mirror = _controller(manager)

        with pytest.raises(ConsoleError) as exc_info:
            await mirror.send_key(InputAction.DOWN, 3)

        assert exc_info.value.code == "ERR_MIRROR_NOT_RUNNING"

    @pytest.mark.asyncio
    async def test_frames_reach_subscribers(
        self, backend: FakeBackend, identity_cache: MemoryIdentityCache
    ) -> None:
        """Should deliver decoded frames to frame subscribers."""
        manager, transport = await _connected(backend, identity_cache)
        mirror = _controller(manager, renderer_factory=CountingRenderer)
        frames: list[FrameInfo] = []
        mirror.subscribe_frames(frames.append)
        await mirror.start()

        transport.readers[27183].feed_data(b"\x00\x00\x00\x01\x67")
        for _ in range(100):
            if frames:
                break
            await asyncio.sleep(0.01)

        assert len(frames) == 1
        assert mirror.status()["frames"] == 1

        await mirror.stop()
