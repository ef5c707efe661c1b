"""Device backend - discovery through the ADB server and the transport handshake."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
import usb.core
from adbutils import AdbError, adb

from adb_console.device.identity import DeviceIdentity
from adb_console.device.transport import DeviceInfo, TransportSession
from adb_console.errors import (
    authentication_required_error,
    device_not_found_error,
    permission_denied_error,
)

if TYPE_CHECKING:
    from adbutils import AdbDevice

logger = structlog.get_logger()

STATE_AUTHORIZED = "device"
STATE_UNAUTHORIZED = "unauthorized"
STATE_OFFLINE = "offline"
STATE_NO_PERMISSIONS = "no permissions"


@dataclass(frozen=True)
class DeviceCandidate:
    """A device visible to the host, authorized or not."""

    serial: str
    state: str
    identity: DeviceIdentity
    tags: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def authorized(self) -> bool:
        return self.state == STATE_AUTHORIZED

    @property
    def permission_denied(self) -> bool:
        return self.state.startswith(STATE_NO_PERMISSIONS)

    def to_dict(self) -> dict[str, object]:
        return {
            "serial": self.serial,
            "state": self.state,
            "authorized": self.authorized,
            "vendor_id": self.identity.vendor_id,
            "product_id": self.identity.product_id,
            "model": self.tags.get("model", ""),
        }


def usb_identities() -> dict[str, tuple[int, int]]:
    """Map USB serial numbers to (vendor id, product id) for attached devices."""
    try:
        devices = list(usb.core.find(find_all=True))
    except usb.core.NoBackendError:
        logger.debug("usb_backend_unavailable")
        return {}

    identities: dict[str, tuple[int, int]] = {}
    for dev in devices:
        try:
            serial = dev.serial_number
        except (usb.core.USBError, ValueError, NotImplementedError):
            # Reading string descriptors needs device access
            continue
        if serial:
            identities[serial] = (int(dev.idVendor), int(dev.idProduct))
    return identities


class AdbBackend:
    """Lists candidate devices and performs the handshake that yields a TransportSession."""

    async def list_candidates(self) -> list[DeviceCandidate]:
        """List every device the ADB server reports, in server order."""

        def _list() -> tuple[list[object], dict[str, tuple[int, int]]]:
            return list(adb.list(extended=True)), usb_identities()

        try:
            infos, identities = await asyncio.to_thread(_list)
        except AdbError as exc:
            raise device_not_found_error(f"adb server unavailable ({exc})") from exc

        candidates: list[DeviceCandidate] = []
        for info in infos:
            serial = getattr(info, "serial", "")
            if not serial:
                logger.warning("device_missing_serial")
                continue
            vendor_id, product_id = identities.get(serial, (0, 0))
            candidates.append(
                DeviceCandidate(
                    serial=serial,
                    state=str(getattr(info, "state", "")),
                    identity=DeviceIdentity(vendor_id, product_id, serial),
                    tags=dict(getattr(info, "tags", None) or {}),
                )
            )
        return candidates

    async def open(self, candidate: DeviceCandidate) -> TransportSession:
        """Authenticate against a candidate and return a ready session.

        The ADB server owns the key exchange; a device that has not accepted
        the host key reports `unauthorized` and is surfaced as ERR_AUTH_REQUIRED.
        """
        if candidate.permission_denied:
            raise permission_denied_error(candidate.serial, candidate.state)

        def _handshake() -> tuple[AdbDevice, str]:
            device = adb.device(serial=candidate.serial)
            return device, device.get_state()

        try:
            device, state = await asyncio.to_thread(_handshake)
        except AdbError as exc:
            message = str(exc)
            if STATE_UNAUTHORIZED in message:
                raise authentication_required_error(candidate.serial, message) from exc
            if STATE_NO_PERMISSIONS in message:
                raise permission_denied_error(candidate.serial, message) from exc
            raise device_not_found_error(message) from exc

        if state != STATE_AUTHORIZED:
            raise authentication_required_error(candidate.serial, state)

        info = await self._read_device_info(device, candidate.serial)
        logger.info("device_authenticated", serial=candidate.serial, model=info.model)
        return TransportSession(device, candidate.identity, info)

    async def _read_device_info(self, device: AdbDevice, serial: str) -> DeviceInfo:
        def _props() -> dict[str, str]:
            return {
                "model": str(device.shell("getprop ro.product.model")).strip(),
                "release": str(device.shell("getprop ro.build.version.release")).strip(),
                "build": str(device.shell("getprop ro.build.display.id")).strip(),
            }

        props = await asyncio.to_thread(_props)
        return DeviceInfo(
            serial=serial,
            model=props["model"] or "unknown",
            android_version=props["release"] or "unknown",
            build_id=props["build"] or "unknown",
        )
