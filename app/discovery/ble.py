"""
BLE scanner for unprovisioned locks.

A lock without Wi-Fi credentials advertises the provisioning service UUID.
Every advertisement either refreshes the matching ``new_unprovisioned`` entry
(timestamp and BLEDevice handle) or inserts it.  The provisioning engine stops
the scanner while it holds a GATT connection and starts it again afterwards.
"""

import logging
from typing import Any

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from app.config import settings
from app.discovery.registry import DeviceEntry, DeviceRegistry, ProvisioningState

logger = logging.getLogger(__name__)

ID_PREFIX = "ble:"
DEFAULT_NAME = "Lobster Lock"


class BleScanner:
    def __init__(
        self,
        registry: DeviceRegistry,
        service_uuid: str = settings.ble_service_uuid,
    ) -> None:
        self._registry = registry
        self._service_uuid = service_uuid
        self._scanner: BleakScanner | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        if self._scanner is None:
            self._scanner = BleakScanner(
                detection_callback=self._on_advertisement,
                service_uuids=[self._service_uuid],
            )
        await self._scanner.start()
        self._running = True
        logger.info("BLE scan started for service %s", self._service_uuid)

    async def stop(self) -> None:
        if not self._running or self._scanner is None:
            return
        await self._scanner.stop()
        self._running = False
        logger.info("BLE scan stopped")

    def _on_advertisement(self, device: BLEDevice, adv: AdvertisementData) -> None:
        self.handle_advertisement(device.address, adv.local_name or device.name, device)

    def handle_advertisement(
        self, address: str, local_name: str | None, handle: Any
    ) -> DeviceEntry:
        return self._registry.upsert(
            ID_PREFIX + address,
            name=local_name or DEFAULT_NAME,
            state=ProvisioningState.NEW_UNPROVISIONED,
            address=address,
            mac=address,
            handle=handle,
        )
