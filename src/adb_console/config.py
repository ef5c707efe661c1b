"""Runtime settings and fixed protocol constants."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

STATE_DIR = Path.home() / ".adb-console"

# Fixed mirroring protocol values
VIDEO_PORT = 27183
CONTROL_PORT = 27184
REMOTE_AGENT_PATH = "/data/local/tmp/scrcpy-server.jar"
AGENT_ENTRY_CLASS = "com.genymobile.scrcpy.Server"
TARGET_WIDTH = 1920
TARGET_HEIGHT = 1080

IDENTITY_CACHE_KEY = "adbDevice"
AUTHORIZE_HINT_DELAY_SECS = 1.0

_ENV_PREFIX = "ADB_CONSOLE_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{_ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(f"{_ENV_PREFIX}{name}")
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Daemon settings, overridable through ADB_CONSOLE_* environment variables."""

    state_dir: Path = STATE_DIR
    agent_repo: str = "Genymobile/scrcpy"
    agent_version: str = "2.7"
    agent_file: Path | None = None
    download_timeout: float = 20.0
    watch_interval: float = 5.0
    watch_enabled: bool = True
    agent_startup_delay: float = 1.0
    log_level: str = "info"
    bit_rate: int = 8_000_000
    max_size: int = 1920
    max_fps: int = 60

    @property
    def db_path(self) -> Path:
        return self.state_dir / "state.db"

    @classmethod
    def from_env(cls) -> Settings:
        agent_file = os.environ.get(f"{_ENV_PREFIX}AGENT_FILE")
        return cls(
            state_dir=Path(_env("STATE_DIR", str(STATE_DIR))).expanduser(),
            agent_repo=_env("AGENT_REPO", "Genymobile/scrcpy"),
            agent_version=_env("AGENT_VERSION", "2.7"),
            agent_file=Path(agent_file).expanduser() if agent_file else None,
            download_timeout=float(_env("DOWNLOAD_TIMEOUT", "20")),
            watch_interval=float(_env("WATCH_INTERVAL", "5")),
            watch_enabled=_env_bool("WATCH_ENABLED", True),
            agent_startup_delay=float(_env("AGENT_STARTUP_DELAY", "1")),
            log_level=_env("AGENT_LOG_LEVEL", "info"),
            bit_rate=int(_env("BIT_RATE", "8000000")),
            max_size=int(_env("MAX_SIZE", "1920")),
            max_fps=int(_env("MAX_FPS", "60")),
        )
