"""Video stream reader and H.264 renderers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import av
import structlog

from adb_console.errors import stream_decode_error

logger = structlog.get_logger()

READ_CHUNK_SIZE = 0x10000


@dataclass(frozen=True)
class FrameInfo:
    """A decoded frame as seen by frame subscribers."""

    index: int
    width: int
    height: int
    pts: int | None = None
    image: Any = None


class Renderer(Protocol):
    name: str

    def feed(self, chunk: bytes) -> list[FrameInfo]: ...

    def close(self) -> None: ...


class H264Decoder:
    """Raw Annex-B H.264 decoder backed by PyAV.

    Chunks are split into packets by the codec parser, so partial NAL units
    may span reads.
    """

    name = "h264"

    def __init__(self, codec_name: str = "h264") -> None:
        self._codec: av.CodecContext | None = av.CodecContext.create(codec_name, "r")
        self._frames = 0

    @property
    def frames_decoded(self) -> int:
        return self._frames

    def feed(self, chunk: bytes) -> list[FrameInfo]:
        """Decode one chunk.

        Raises:
            ConsoleError: ERR_STREAM_DECODE for a corrupt chunk.
        """
        codec = self._codec
        if codec is None:
            raise stream_decode_error("decoder closed")
        frames: list[FrameInfo] = []
        try:
            for packet in codec.parse(chunk):
                for frame in codec.decode(packet):
                    frames.append(
                        FrameInfo(
                            index=self._frames,
                            width=frame.width,
                            height=frame.height,
                            pts=frame.pts,
                            image=frame,
                        )
                    )
                    self._frames += 1
        except av.error.FFmpegError as exc:
            raise stream_decode_error(str(exc)) from exc
        return frames

    def close(self) -> None:
        # PyAV frees the context with its last reference
        self._codec = None


class PlaceholderRenderer:
    """Stand-in when no decoder is available. Counts bytes, yields no frames."""

    name = "placeholder"

    def __init__(self) -> None:
        self.bytes_received = 0

    def feed(self, chunk: bytes) -> list[FrameInfo]:
        self.bytes_received += len(chunk)
        return []

    def close(self) -> None:
        pass


RendererFactory = Callable[[], Renderer]


def create_renderer(factory: RendererFactory = H264Decoder) -> Renderer:
    """Build the decoder, falling back to the placeholder for the session."""
    try:
        return factory()
    except Exception as exc:
        logger.warning("decoder_unavailable", error=str(exc), fallback="placeholder")
        return PlaceholderRenderer()


FrameSubscriber = Callable[[FrameInfo], None]


class VideoStream:
    """Long-lived read loop from the video socket into a renderer.

    Ends when the socket reaches EOF or is closed.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        renderer: Renderer,
        on_frame: FrameSubscriber | None = None,
        *,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._reader = reader
        self.renderer = renderer
        self._on_frame = on_frame
        self._chunk_size = chunk_size
        self.frames = 0
        self.bytes_read = 0
        self.decode_errors = 0

    async def run(self) -> None:
        logger.info("video_stream_started", renderer=self.renderer.name)
        try:
            while True:
                try:
                    chunk = await self._reader.read(self._chunk_size)
                except (ConnectionError, OSError) as exc:
                    logger.info("video_stream_closed", error=str(exc))
                    break
                if not chunk:
                    break
                self.bytes_read += len(chunk)
                await self._render(chunk)
        finally:
            self.renderer.close()
            logger.info(
                "video_stream_ended",
                frames=self.frames,
                bytes=self.bytes_read,
                decode_errors=self.decode_errors,
            )

    async def _render(self, chunk: bytes) -> None:
        try:
            frames = await asyncio.to_thread(self.renderer.feed, chunk)
        except Exception as exc:
            self.decode_errors += 1
            logger.warning("video_decode_error", error=str(exc), size=len(chunk))
            return
        for frame in frames:
            self.frames += 1
            if self._on_frame is not None:
                try:
                    self._on_frame(frame)
                except Exception:
                    logger.exception("frame_subscriber_error")
