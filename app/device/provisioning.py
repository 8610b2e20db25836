"""
BLE provisioning engine.

Hands Wi-Fi credentials and deterrent settings to a lock that is still in
``new_unprovisioned`` state.

Sequence
--------
1. Stop the BLE scan (the adapter cannot scan and hold a connection reliably).
2. Connect to the advertised BLEDevice.
3. Resolve the provisioning service and all of its characteristics.
4. Match every required characteristic id (case/format-insensitive).  If any
   is missing, abort before writing anything and report which ones.
5. Write the fields in ``FIELD_ORDER``.
6. Disconnect and remove the entry; the lock reboots and re-appears over mDNS.

Whatever happens, scanning is resumed.  On failure the connection is closed
best-effort and ``ProvisioningError`` is raised.
"""

import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Any, Callable

from bleak import BleakClient
from bleak.exc import BleakError

from app.config import settings
from app.discovery.registry import DeviceRegistry, ProvisioningState
from app.errors import DeviceNotFoundError, ProvisioningError

logger = logging.getLogger(__name__)

PROV_SERVICE_UUID = settings.ble_service_uuid


def _char_uuid(index: int) -> str:
    return f"5a16{index:04x}-8334-469b-a316-c340cf29188f"


# Field name → characteristic id, in write order.
FIELD_ORDER: tuple[tuple[str, str], ...] = (
    ("ssid", _char_uuid(0x01)),
    ("pass", _char_uuid(0x02)),
    ("abort_delay_seconds", _char_uuid(0x03)),
    ("count_streaks", _char_uuid(0x04)),
    ("enable_time_payback", _char_uuid(0x05)),
    ("abort_payback_minutes", _char_uuid(0x06)),
    ("enable_reward_code", _char_uuid(0x07)),
    ("ch1_enabled", _char_uuid(0x08)),
    ("ch2_enabled", _char_uuid(0x09)),
    ("ch3_enabled", _char_uuid(0x0A)),
    ("ch4_enabled", _char_uuid(0x0B)),
)


@dataclass(frozen=True)
class ProvisioningData:
    ssid: str
    passphrase: str
    abort_delay_seconds: int
    count_streaks: bool
    enable_time_payback: bool
    abort_payback_minutes: int
    enable_reward_code: bool = True
    ch1_enabled: bool = True
    ch2_enabled: bool = True
    ch3_enabled: bool = True
    ch4_enabled: bool = True


def normalize_uuid(uuid: str) -> str:
    return uuid.lower().replace("-", "")


def encode_fields(data: ProvisioningData) -> list[tuple[str, str, bytes]]:
    """
    Return ``(field, characteristic_uuid, payload)`` triples in write order.

    Strings are UTF-8, booleans a single byte, the abort delay an unsigned
    32-bit and the payback minutes an unsigned 16-bit little-endian integer.
    """
    values: dict[str, bytes] = {
        "ssid": data.ssid.encode("utf-8"),
        "pass": data.passphrase.encode("utf-8"),
        "abort_delay_seconds": struct.pack("<I", data.abort_delay_seconds),
        "count_streaks": struct.pack("<B", int(data.count_streaks)),
        "enable_time_payback": struct.pack("<B", int(data.enable_time_payback)),
        "abort_payback_minutes": struct.pack("<H", data.abort_payback_minutes),
        "enable_reward_code": struct.pack("<B", int(data.enable_reward_code)),
        "ch1_enabled": struct.pack("<B", int(data.ch1_enabled)),
        "ch2_enabled": struct.pack("<B", int(data.ch2_enabled)),
        "ch3_enabled": struct.pack("<B", int(data.ch3_enabled)),
        "ch4_enabled": struct.pack("<B", int(data.ch4_enabled)),
    }
    return [(name, uuid, values[name]) for name, uuid in FIELD_ORDER]


def resolve_characteristics(characteristics: list[Any]) -> tuple[dict[str, Any], list[str]]:
    """Match advertised characteristics against ``FIELD_ORDER``; returns (found, missing)."""
    by_uuid = {normalize_uuid(str(c.uuid)): c for c in characteristics}
    found: dict[str, Any] = {}
    missing: list[str] = []
    for _name, uuid in FIELD_ORDER:
        char = by_uuid.get(normalize_uuid(uuid))
        if char is None:
            missing.append(uuid)
        else:
            found[uuid] = char
    return found, missing


class ProvisioningEngine:
    """Writes ``ProvisioningData`` to an unprovisioned lock over GATT."""

    def __init__(
        self,
        registry: DeviceRegistry,
        scanner: Any,
        client_factory: Callable[[Any], Any] | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._registry = registry
        self._scanner = scanner
        self._client_factory = client_factory or (
            lambda handle: BleakClient(handle, timeout=connect_timeout)
        )

    async def provision(self, device_id: str, data: ProvisioningData) -> None:
        entry = self._registry.get(device_id)
        if (
            entry is None
            or entry.state is not ProvisioningState.NEW_UNPROVISIONED
            or entry.handle is None
        ):
            raise DeviceNotFoundError("Device not found or is not a BLE device.")

        logger.info("Attempting to provision device: %s", entry.name)
        client = None
        try:
            try:
                await self._scanner.stop()
                client = self._client_factory(entry.handle)
                await self._write_all(client, data)
            except ProvisioningError as exc:
                logger.error("Provisioning %s failed: %s", device_id, exc)
                await self._disconnect_quietly(client)
                raise
            except (BleakError, asyncio.TimeoutError, OSError) as exc:
                logger.error("Provisioning %s failed: %s", device_id, exc)
                await self._disconnect_quietly(client)
                raise ProvisioningError(f"Provisioning failed: {exc}") from exc
        finally:
            await self._resume_scan()

        self._registry.remove(device_id)
        logger.info("Credentials sent to %s; waiting for it to re-appear on Wi-Fi", device_id)

    async def _write_all(self, client: Any, data: ProvisioningData) -> None:
        await client.connect()
        logger.info("Connected. Resolving provisioning service...")

        service = client.services.get_service(PROV_SERVICE_UUID)
        if service is None:
            raise ProvisioningError(
                f"Provisioning service {PROV_SERVICE_UUID} not found on device."
            )

        chars, missing = resolve_characteristics(list(service.characteristics))
        if missing:
            raise ProvisioningError(
                "Could not find all required provisioning characteristics. "
                f"Missing: {', '.join(missing)}"
            )

        logger.info("Writing credentials and settings...")
        for name, uuid, payload in encode_fields(data):
            logger.debug("Writing %s (%d bytes)", name, len(payload))
            await client.write_gatt_char(chars[uuid], payload, response=False)

        await client.disconnect()

    async def _disconnect_quietly(self, client: Any) -> None:
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as exc:
            logger.debug("Best-effort disconnect failed: %s", exc)

    async def _resume_scan(self) -> None:
        try:
            await self._scanner.start()
        except Exception as exc:
            logger.error("Failed to resume BLE scan: %s", exc)
