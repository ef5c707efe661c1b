"""Mirroring agent acquisition - an ordered chain of provider strategies."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from adb_console.config import Settings
from adb_console.errors import agent_acquisition_error

logger = structlog.get_logger()

_GITHUB_API = "https://api.github.com"
_GITHUB = "https://github.com"
_ASSET_PREFIX = "scrcpy-server"

DEMO_PAYLOAD = b"DEMO_SCRCPY_SERVER_JAR"


class AgentProvider(Protocol):
    """One way of obtaining the agent payload. Raises on failure."""

    name: str
    functional: bool

    async def fetch(self) -> bytes: ...


@dataclass(frozen=True)
class ProviderResult:
    """Explicit outcome of one provider attempt."""

    strategy: str
    payload: bytes | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.payload is not None

    def to_dict(self) -> dict[str, str]:
        return {"strategy": self.strategy, "reason": self.error or ""}


@dataclass
class AgentPayload:
    """The bytes to push plus how they were obtained."""

    data: bytes
    strategy: str
    functional: bool = True
    failures: list[ProviderResult] = field(default_factory=list)


class _HttpProvider:
    """Shared download plumbing for the GitHub-backed strategies."""

    def __init__(
        self,
        repo: str,
        *,
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._repo = repo
        self._timeout = timeout
        self._client = client

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            response = await self._client.get(url)
        else:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True
            ) as client:
                response = await client.get(url)
        if response.status_code != 200:
            raise RuntimeError(f"Download failed: {response.status_code}")
        return response


class LatestReleaseProvider(_HttpProvider):
    """Reads the latest release metadata and downloads the server asset."""

    name = "latest-release"
    functional = True

    async def fetch(self) -> bytes:
        response = await self._get(f"{_GITHUB_API}/repos/{self._repo}/releases/latest")
        release: dict[str, Any] = response.json()
        asset = next(
            (
                a
                for a in release.get("assets", [])
                if str(a.get("name", "")).startswith(_ASSET_PREFIX)
            ),
            None,
        )
        if asset is None:
            raise RuntimeError("Server asset not found in release")
        logger.info("agent_downloading", asset=asset["name"], tag=release.get("tag_name"))
        download = await self._get(asset["browser_download_url"])
        return download.content


class PinnedReleaseProvider(_HttpProvider):
    """Downloads a fixed agent version directly."""

    name = "pinned-release"
    functional = True

    def __init__(
        self,
        repo: str,
        version: str,
        *,
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(repo, timeout=timeout, client=client)
        self._version = version

    @property
    def url(self) -> str:
        return (
            f"{_GITHUB}/{self._repo}/releases/download/"
            f"v{self._version}/{_ASSET_PREFIX}-v{self._version}"
        )

    async def fetch(self) -> bytes:
        response = await self._get(self.url)
        return response.content


class LocalFileProvider:
    """Uses an agent file supplied by the user."""

    name = "local-file"
    functional = True

    def __init__(self, path: Path | None) -> None:
        self._path = path

    async def fetch(self) -> bytes:
        if self._path is None:
            raise RuntimeError("No manual server file uploaded")
        if not self._path.is_file():
            raise RuntimeError(f"Server file not found: {self._path}")
        logger.info("agent_local_file", path=str(self._path))
        return await asyncio.to_thread(self._path.read_bytes)


class DemoPayloadProvider:
    """Non-functional demo payload.

    Lets the bootstrap workflow run end to end offline; the pushed bytes
    cannot start a real agent on the device.
    """

    name = "demo-placeholder"
    functional = False

    async def fetch(self) -> bytes:
        logger.warning("agent_demo_payload", note="non-functional demo payload")
        return DEMO_PAYLOAD


def default_providers(
    settings: Settings, *, agent_file: Path | None = None
) -> list[AgentProvider]:
    """The standard chain: latest release, pinned release, local file, demo."""
    return [
        LatestReleaseProvider(settings.agent_repo, timeout=settings.download_timeout),
        PinnedReleaseProvider(
            settings.agent_repo, settings.agent_version, timeout=settings.download_timeout
        ),
        LocalFileProvider(agent_file or settings.agent_file),
        DemoPayloadProvider(),
    ]


async def attempt(provider: AgentProvider) -> ProviderResult:
    """Run one provider and turn its outcome into a result record."""
    try:
        payload = await provider.fetch()
    except Exception as exc:
        return ProviderResult(strategy=provider.name, error=str(exc) or type(exc).__name__)
    return ProviderResult(strategy=provider.name, payload=payload)


class AgentAcquirer:
    """Tries providers in order; the first success wins."""

    def __init__(self, providers: list[AgentProvider]) -> None:
        self.providers = providers

    async def acquire(self) -> AgentPayload:
        """Return the first successful payload.

        Raises:
            ConsoleError: ERR_AGENT_ACQUISITION with every failure, in order,
                under context["failures"].
        """
        failures: list[ProviderResult] = []
        for index, provider in enumerate(self.providers, start=1):
            result = await attempt(provider)
            if result.ok and result.payload is not None:
                logger.info(
                    "agent_acquired",
                    strategy=provider.name,
                    size=len(result.payload),
                    failed_before=len(failures),
                )
                return AgentPayload(
                    data=result.payload,
                    strategy=provider.name,
                    functional=provider.functional,
                    failures=failures,
                )
            logger.warning(
                "agent_provider_failed", method=index, strategy=provider.name, error=result.error
            )
            failures.append(result)

        raise agent_acquisition_error([f.to_dict() for f in failures])
