"""Mirror session controller - agent bootstrap, tunnels, video and input."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from adb_console.config import (
    AGENT_ENTRY_CLASS,
    CONTROL_PORT,
    REMOTE_AGENT_PATH,
    VIDEO_PORT,
    Settings,
)
from adb_console.device.manager import ConnectionManager
from adb_console.device.transport import AgentProcess
from adb_console.errors import (
    ConsoleError,
    agent_spawn_error,
    already_running_error,
    mirror_not_running_error,
    no_active_session_error,
    teardown_error,
    tunnel_error,
)
from adb_console.events import EventBus
from adb_console.mirror.agent import AgentAcquirer, AgentProvider, default_providers
from adb_console.mirror.input import ControlChannel, InputAction, InputRecord
from adb_console.mirror.video import (
    FrameInfo,
    FrameSubscriber,
    H264Decoder,
    RendererFactory,
    VideoStream,
    create_renderer,
)

logger = structlog.get_logger()

_STREAM_DRAIN_SECS = 1.0


class MirrorPhase(Enum):
    """Mirror session phases."""

    IDLE = "idle"
    PREPARING_AGENT = "preparing_agent"
    AGENT_RUNNING = "agent_running"
    STREAMING = "streaming"
    SHUTTING_DOWN = "shutting_down"


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class MirrorOptions:
    """Per-session agent options."""

    agent_version: str = "2.7"
    log_level: str = "info"
    bit_rate: int = 8_000_000
    max_size: int = 1920
    max_fps: int = 60
    stay_awake: bool = True
    power_off_on_close: bool = False

    @classmethod
    def from_settings(
        cls, settings: Settings, *, stay_awake: bool = True, power_off_on_close: bool = False
    ) -> MirrorOptions:
        return cls(
            agent_version=settings.agent_version,
            log_level=settings.log_level,
            bit_rate=settings.bit_rate,
            max_size=settings.max_size,
            max_fps=settings.max_fps,
            stay_awake=stay_awake,
            power_off_on_close=power_off_on_close,
        )


def build_agent_args(options: MirrorOptions) -> list[str]:
    """Argument vector that launches the agent from the pushed payload."""
    return [
        f"CLASSPATH={REMOTE_AGENT_PATH}",
        "app_process",
        "/",
        AGENT_ENTRY_CLASS,
        options.agent_version,
        f"log_level={options.log_level}",
        f"bit_rate={options.bit_rate}",
        f"max_size={options.max_size}",
        f"max_fps={options.max_fps}",
        f"stay_awake={_flag(options.stay_awake)}",
        f"power_off_on_close={_flag(options.power_off_on_close)}",
        "tunnel_forward=true",
        "send_frame_meta=false",
        "send_codec_meta=false",
        "send_dummy_byte=false",
    ]


@dataclass
class MirrorSession:
    """Resources held by one mirroring session."""

    serial: str
    options: MirrorOptions
    remote_agent_path: str = REMOTE_AGENT_PATH
    video_port: int = VIDEO_PORT
    control_port: int = CONTROL_PORT
    agent_strategy: str | None = None
    agent_functional: bool = True
    process: AgentProcess | None = None
    tunnels: list[int] = field(default_factory=list)
    video_writer: asyncio.StreamWriter | None = None
    stream: VideoStream | None = None
    video_task: asyncio.Task[None] | None = None
    control: ControlChannel | None = None

    def to_dict(self) -> dict[str, Any]:
        stream = self.stream
        return {
            "serial": self.serial,
            "remote_agent_path": self.remote_agent_path,
            "video_port": self.video_port,
            "control_port": self.control_port,
            "agent_strategy": self.agent_strategy,
            "agent_functional": self.agent_functional,
            "tunnels": list(self.tunnels),
            "renderer": stream.renderer.name if stream else None,
            "frames": stream.frames if stream else 0,
            "bytes_read": stream.bytes_read if stream else 0,
            "decode_errors": stream.decode_errors if stream else 0,
            "inputs_sent": self.control.records_sent if self.control else 0,
        }


ProvidersFactory = Callable[[Path | None], list[AgentProvider]]


class MirrorSessionController:
    """Owns at most one MirrorSession and walks it through its phases.

    Callers serialize start/stop with the connection lock; stop also runs as a
    disconnect hook while that lock is held, so neither method takes it.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        settings: Settings | None = None,
        events: EventBus | None = None,
        *,
        providers_factory: ProvidersFactory | None = None,
        renderer_factory: RendererFactory = H264Decoder,
    ) -> None:
        self._connection = connection
        self._settings = settings or Settings()
        self._events = events or EventBus()
        self._providers_factory = providers_factory or self._default_providers
        self._renderer_factory = renderer_factory
        self._phase = MirrorPhase.IDLE
        self._session: MirrorSession | None = None
        self._frame_subscribers: list[FrameSubscriber] = []

    @property
    def phase(self) -> MirrorPhase:
        return self._phase

    @property
    def session(self) -> MirrorSession | None:
        return self._session

    def subscribe_frames(self, subscriber: FrameSubscriber) -> Callable[[], None]:
        self._frame_subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._frame_subscribers:
                self._frame_subscribers.remove(subscriber)

        return _unsubscribe

    async def start(
        self,
        *,
        stay_awake: bool = True,
        power_off_on_close: bool = False,
        agent_file: Path | None = None,
    ) -> MirrorSession:
        """Bootstrap the agent and begin streaming.

        Raises:
            ConsoleError: ERR_ALREADY_RUNNING (nothing touched),
                ERR_NO_ACTIVE_SESSION, ERR_AGENT_ACQUISITION, ERR_AGENT_SPAWN
                or ERR_TUNNEL. Anything established before the failure is
                torn down and the controller is IDLE again.
        """
        if self._phase is not MirrorPhase.IDLE:
            raise already_running_error(self._phase.value)
        transport = self._connection.session
        if transport is None or not self._connection.is_connected:
            raise no_active_session_error()

        options = MirrorOptions.from_settings(
            self._settings, stay_awake=stay_awake, power_off_on_close=power_off_on_close
        )
        mirror = MirrorSession(serial=transport.serial, options=options)
        self._session = mirror
        self._set_phase(MirrorPhase.PREPARING_AGENT)
        self._events.log("Preparing mirroring agent...")

        try:
            payload = await AgentAcquirer(self._providers_factory(agent_file)).acquire()
            mirror.agent_strategy = payload.strategy
            mirror.agent_functional = payload.functional
            if not payload.functional:
                self._events.log(
                    f"Using non-functional {payload.strategy} agent; no video will arrive",
                    level="warning",
                )

            try:
                await transport.push(payload.data, mirror.remote_agent_path)
                mirror.process = await transport.spawn(build_agent_args(options))
            except ConsoleError:
                raise
            except Exception as exc:
                raise agent_spawn_error(str(exc)) from exc
            self._set_phase(MirrorPhase.AGENT_RUNNING)

            for port in (mirror.video_port, mirror.control_port):
                try:
                    await transport.forward(port, port)
                except Exception as exc:
                    raise tunnel_error(port, str(exc)) from exc
                mirror.tunnels.append(port)

            if self._settings.agent_startup_delay > 0:
                await asyncio.sleep(self._settings.agent_startup_delay)

            reader, mirror.video_writer = await self._open(transport, mirror.video_port)
            mirror.stream = VideoStream(
                reader, create_renderer(self._renderer_factory), self._dispatch_frame
            )
            mirror.video_task = asyncio.create_task(mirror.stream.run())
            mirror.video_task.add_done_callback(self._on_stream_done)

            _, control_writer = await self._open(transport, mirror.control_port)
            mirror.control = ControlChannel(control_writer)
        except BaseException as exc:
            logger.warning("mirror_start_failed", phase=self._phase.value, error=str(exc))
            await self._teardown()
            raise

        self._set_phase(MirrorPhase.STREAMING)
        logger.info("mirror_started", **mirror.to_dict())
        self._events.status("Mirroring started", phase=self._phase.value, serial=mirror.serial)
        return mirror

    async def stop(self) -> bool:
        """Tear the session down. Returns False when already idle."""
        if self._session is None and self._phase is MirrorPhase.IDLE:
            return False
        await self._teardown()
        return True

    async def send_touch(
        self, action: InputAction, x: float, y: float, width: float, height: float
    ) -> InputRecord:
        record = InputRecord.touch(action, x, y, width, height)
        await self._send(record)
        return record

    async def send_key(self, action: InputAction, key_code: int) -> InputRecord:
        record = InputRecord.key(action, key_code)
        await self._send(record)
        return record

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {"phase": self._phase.value}
        if self._session is not None:
            status.update(self._session.to_dict())
        return status

    async def _send(self, record: InputRecord) -> None:
        mirror = self._session
        if self._phase is not MirrorPhase.STREAMING or mirror is None or mirror.control is None:
            raise mirror_not_running_error()
        try:
            await mirror.control.send(record)
        except (ConnectionError, OSError) as exc:
            raise tunnel_error(mirror.control_port, str(exc)) from exc

    async def _open(
        self, transport: Any, port: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            return await transport.open_socket(port)
        except OSError as exc:
            raise tunnel_error(port, str(exc)) from exc

    def _dispatch_frame(self, frame: FrameInfo) -> None:
        for subscriber in list(self._frame_subscribers):
            subscriber(frame)

    def _on_stream_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning("video_stream_failed", error=str(task.exception()))
        if self._phase is MirrorPhase.STREAMING:
            self._events.log("Video stream ended", level="warning")

    async def _teardown(self) -> None:
        mirror = self._session
        if mirror is None:
            self._set_phase(MirrorPhase.IDLE)
            return

        self._set_phase(MirrorPhase.SHUTTING_DOWN)
        await self._step("terminate_agent", self._terminate_process, mirror)
        await self._step("close_video", self._close_video, mirror)
        await self._step("close_control", self._close_control, mirror)
        transport = self._connection.session
        for port in list(mirror.tunnels):
            if transport is not None:
                await self._step(f"remove_tunnel:{port}", transport.remove_forward, port)
            mirror.tunnels.remove(port)

        self._session = None
        self._set_phase(MirrorPhase.IDLE)
        logger.info("mirror_stopped", serial=mirror.serial)
        self._events.status("Mirroring stopped", phase=self._phase.value, serial=mirror.serial)

    async def _step(
        self, name: str, action: Callable[..., Awaitable[None]], *args: Any
    ) -> None:
        try:
            await action(*args)
        except Exception as exc:
            error = teardown_error(name, str(exc))
            logger.warning("mirror_teardown_step_failed", step=name, error=error.message)

    async def _terminate_process(self, mirror: MirrorSession) -> None:
        if mirror.process is not None:
            await mirror.process.terminate()

    async def _close_video(self, mirror: MirrorSession) -> None:
        task = mirror.video_task
        try:
            if mirror.video_writer is not None:
                mirror.video_writer.close()
                await mirror.video_writer.wait_closed()
        finally:
            if task is not None and not task.done():
                await asyncio.wait([task], timeout=_STREAM_DRAIN_SECS)
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

    async def _close_control(self, mirror: MirrorSession) -> None:
        if mirror.control is not None:
            await mirror.control.close()

    def _default_providers(self, agent_file: Path | None) -> list[AgentProvider]:
        return default_providers(self._settings, agent_file=agent_file)

    def _set_phase(self, phase: MirrorPhase) -> None:
        if phase is not self._phase:
            logger.debug("mirror_phase", previous=self._phase.value, phase=phase.value)
        self._phase = phase
