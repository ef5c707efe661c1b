"""Input encoding - host pointer/key events to fixed-size control records."""

from __future__ import annotations

import asyncio
import math
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum

import structlog

from adb_console.config import TARGET_HEIGHT, TARGET_WIDTH
from adb_console.errors import invalid_input_error

logger = structlog.get_logger()

_UINT32_MAX = 0xFFFFFFFF

# action, 3 reserved, x, y, 4 trailing pad
_TOUCH_FORMAT = struct.Struct("<B3xII4x")
# action, 3 reserved, key code
_KEY_FORMAT = struct.Struct("<B3xI")

TOUCH_RECORD_SIZE = _TOUCH_FORMAT.size
KEY_RECORD_SIZE = _KEY_FORMAT.size


class InputKind(Enum):
    TOUCH = "touch"
    KEY = "key"


class InputAction(Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"

    @classmethod
    def parse(cls, value: str) -> InputAction:
        try:
            return cls(value.lower())
        except ValueError:
            raise invalid_input_error("action", value) from None


class WireAction(IntEnum):
    """Action byte of a control record."""

    TOUCH_DOWN = 0
    TOUCH_UP = 1
    TOUCH_MOVE = 2
    KEY_DOWN = 3
    KEY_UP = 4


_TOUCH_ACTIONS = {
    InputAction.DOWN: WireAction.TOUCH_DOWN,
    InputAction.UP: WireAction.TOUCH_UP,
    InputAction.MOVE: WireAction.TOUCH_MOVE,
}
_KEY_ACTIONS = {
    InputAction.DOWN: WireAction.KEY_DOWN,
    InputAction.UP: WireAction.KEY_UP,
}


def _clamp_u32(value: int) -> int:
    return max(0, min(_UINT32_MAX, value))


def _round_half_up(value: float) -> int:
    if math.isnan(value):
        return 0
    if math.isinf(value):
        return _UINT32_MAX if value > 0 else 0
    return math.floor(value + 0.5)


def scale_point(
    local_x: float,
    local_y: float,
    width: float,
    height: float,
    target: tuple[int, int] = (TARGET_WIDTH, TARGET_HEIGHT),
) -> tuple[int, int]:
    """Map a point inside a width x height element to target-resolution pixels."""
    target_w, target_h = target
    x = _round_half_up(local_x * target_w / width) if width > 0 else 0
    y = _round_half_up(local_y * target_h / height) if height > 0 else 0
    return _clamp_u32(x), _clamp_u32(y)


@dataclass(frozen=True)
class InputRecord:
    """One ephemeral input event in device coordinates."""

    kind: InputKind
    action: InputAction
    x: int = 0
    y: int = 0
    key_code: int = 0

    def __post_init__(self) -> None:
        actions = _TOUCH_ACTIONS if self.kind is InputKind.TOUCH else _KEY_ACTIONS
        if self.action not in actions:
            raise invalid_input_error("action", self.action.value)

    @classmethod
    def touch(
        cls,
        action: InputAction,
        local_x: float,
        local_y: float,
        width: float,
        height: float,
    ) -> InputRecord:
        x, y = scale_point(local_x, local_y, width, height)
        return cls(kind=InputKind.TOUCH, action=action, x=x, y=y)

    @classmethod
    def key(cls, action: InputAction, key_code: int) -> InputRecord:
        return cls(kind=InputKind.KEY, action=action, key_code=key_code)

    def encode(self) -> bytes:
        """Serialize to the 16-byte touch or 8-byte key wire record."""
        if self.kind is InputKind.TOUCH:
            return _TOUCH_FORMAT.pack(
                _TOUCH_ACTIONS[self.action], _clamp_u32(self.x), _clamp_u32(self.y)
            )
        return _KEY_FORMAT.pack(_KEY_ACTIONS[self.action], self.key_code & _UINT32_MAX)


def encode_touch(
    action: InputAction, local_x: float, local_y: float, width: float, height: float
) -> bytes:
    return InputRecord.touch(action, local_x, local_y, width, height).encode()


def encode_key(action: InputAction, key_code: int) -> bytes:
    return InputRecord.key(action, key_code).encode()


class ControlChannel:
    """Exclusive writer over the control socket.

    Records from independent events are written whole, one at a time.
    """

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer
        self._lock = asyncio.Lock()
        self._closed = False
        self.records_sent = 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, record: InputRecord) -> None:
        data = record.encode()
        async with self._lock:
            if self._closed:
                raise ConnectionError("control channel closed")
            self._writer.write(data)
            await self._writer.drain()
            self.records_sent += 1

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        await self._writer.wait_closed()
