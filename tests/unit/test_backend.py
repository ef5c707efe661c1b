"""Tests for AdbBackend."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from adbutils import AdbError

from adb_console.device.backend import AdbBackend, DeviceCandidate
from adb_console.device.identity import DeviceIdentity
from adb_console.errors import ConsoleError


def _candidate(state: str = "device") -> DeviceCandidate:
    return DeviceCandidate(
        serial="ABC123", state=state, identity=DeviceIdentity(0x18D1, 0x4EE7, "ABC123")
    )


class TestListCandidates:
    """Tests for list_candidates."""

    @pytest.mark.asyncio
    async def test_joins_usb_ids(self) -> None:
        """Should attach vendor/product ids found on the USB bus."""
        infos = [
            SimpleNamespace(serial="ABC123", state="device", tags={"model": "Pixel_7"}),
            SimpleNamespace(serial="emulator-5554", state="unauthorized", tags={}),
        ]
        with (
            patch("adb_console.device.backend.adb") as mock_adb,
            patch(
                "adb_console.device.backend.usb_identities",
                return_value={"ABC123": (0x18D1, 0x4EE7)},
            ),
        ):
            mock_adb.list.return_value = infos
            candidates = await AdbBackend().list_candidates()

        assert [c.serial for c in candidates] == ["ABC123", "emulator-5554"]
        assert candidates[0].identity == DeviceIdentity(0x18D1, 0x4EE7, "ABC123")
        assert candidates[0].authorized
        assert candidates[0].to_dict()["model"] == "Pixel_7"
        assert candidates[1].identity.vendor_id == 0
        assert not candidates[1].authorized

    @pytest.mark.asyncio
    async def test_server_unavailable(self) -> None:
        """Should report DeviceNotFound when the ADB server cannot be reached."""
        with patch("adb_console.device.backend.adb") as mock_adb:
            mock_adb.list.side_effect = AdbError("connection refused")
            with pytest.raises(ConsoleError) as exc_info:
                await AdbBackend().list_candidates()

        assert exc_info.value.code == "ERR_DEVICE_NOT_FOUND"


class TestOpen:
    """Tests for the handshake."""

    @pytest.mark.asyncio
    async def test_permission_denied_state(self) -> None:
        """Should refuse devices the host cannot access."""
        with pytest.raises(ConsoleError) as exc_info:
            await AdbBackend().open(_candidate("no permissions (user in plugdev group)"))

        assert exc_info.value.code == "ERR_PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        """Should require on-device authorization."""
        device = MagicMock()
        device.get_state.return_value = "unauthorized"
        with patch("adb_console.device.backend.adb") as mock_adb:
            mock_adb.device.return_value = device
            with pytest.raises(ConsoleError) as exc_info:
                await AdbBackend().open(_candidate("unauthorized"))

        assert exc_info.value.code == "ERR_AUTH_REQUIRED"

    @pytest.mark.asyncio
    async def test_unauthorized_error_message(self) -> None:
        """Should map the server's unauthorized error to ERR_AUTH_REQUIRED."""
        device = MagicMock()
        device.get_state.side_effect = AdbError("device unauthorized.")
        with patch("adb_console.device.backend.adb") as mock_adb:
            mock_adb.device.return_value = device
            with pytest.raises(ConsoleError) as exc_info:
                await AdbBackend().open(_candidate())

        assert exc_info.value.code == "ERR_AUTH_REQUIRED"

    @pytest.mark.asyncio
    async def test_success_reads_device_info(self) -> None:
        """Should return a session carrying the device properties."""
        device = MagicMock()
        device.get_state.return_value = "device"
        device.shell.side_effect = lambda cmd: {
            "getprop ro.product.model": "Pixel 7\n",
            "getprop ro.build.version.release": "14\n",
            "getprop ro.build.display.id": "UQ1A\n",
        }[cmd]
        with patch("adb_console.device.backend.adb") as mock_adb:
            mock_adb.device.return_value = device
            session = await AdbBackend().open(_candidate())

        assert session.serial == "ABC123"
        assert session.info.model == "Pixel 7"
        assert session.info.android_version == "14"
        assert session.describe()["vendor_id"] == 0x18D1
