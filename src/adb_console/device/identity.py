"""Device identity and the persisted last-device cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from adb_console.config import IDENTITY_CACHE_KEY
from adb_console.db.models import Database

logger = structlog.get_logger()


@dataclass(frozen=True)
class DeviceIdentity:
    """USB identity of a device, used as the reconnect cache key."""

    vendor_id: int
    product_id: int
    serial_number: str | None = None

    def matches(self, other: DeviceIdentity) -> bool:
        """Return True if `other` is the device this cached identity describes.

        A cached identity without a serial number matches any device with the
        same vendor and product ids.
        """
        if self.vendor_id != other.vendor_id or self.product_id != other.product_id:
            return False
        return not self.serial_number or self.serial_number == other.serial_number

    def to_record(self) -> dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "serialNumber": self.serial_number,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DeviceIdentity:
        return cls(
            vendor_id=int(record["vendorId"]),
            product_id=int(record["productId"]),
            serial_number=record.get("serialNumber") or None,
        )


class IdentityCache:
    """Persists the identity of the last successfully authenticated device."""

    def __init__(self, database: Database, key: str = IDENTITY_CACHE_KEY) -> None:
        self._db = database
        self._key = key

    async def load(self) -> DeviceIdentity | None:
        """Return the cached identity, evicting it if the record is unreadable."""
        record = await self._db.get_value(self._key)
        if record is None:
            return None
        try:
            return DeviceIdentity.from_record(record)
        except (KeyError, TypeError, ValueError):
            logger.warning("identity_cache_corrupt", record=record)
            await self.evict()
            return None

    async def save(self, identity: DeviceIdentity) -> None:
        await self._db.set_value(self._key, identity.to_record())
        logger.info(
            "identity_cached",
            vendor_id=identity.vendor_id,
            product_id=identity.product_id,
            serial=identity.serial_number,
        )

    async def evict(self) -> None:
        await self._db.delete_value(self._key)
        logger.info("identity_evicted")
