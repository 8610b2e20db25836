"""
Device management endpoints: discovery list, provisioning and maintenance.

Every endpoint except ``GET /devices``, ``provision`` and ``keepalive``
requires the device to be a ``ready`` (mDNS) entry and forwards one HTTP call
to it through the ``CommandForwarder``.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import Field

from app.api.deps import get_forwarder, get_mdns_listener, get_provisioner, get_registry
from app.device import forwarder as commands
from app.device.forwarder import CommandForwarder
from app.device.provisioning import ProvisioningData, ProvisioningEngine
from app.discovery.mdns import MdnsListener
from app.discovery.registry import DeviceRegistry
from app.errors import DeviceNotFoundError, DeviceUnreachableError, LockError
from app.lock.schemas import CamelModel, DeviceDetails, MessageResponse, WifiCredentials

logger = logging.getLogger(__name__)

router = APIRouter()


class DeviceListItem(CamelModel):
    id: str
    name: str
    state: str
    address: str
    port: int
    mac: str | None = None
    last_seen: float


class ProvisionRequest(CamelModel):
    ssid: str = Field(min_length=1)
    passphrase: str = Field(alias="pass")
    abort_delay_seconds: int = Field(ge=0, le=0xFFFFFFFF)
    count_streaks: bool
    enable_time_payback: bool
    abort_payback_minutes: int = Field(ge=0, le=0xFFFF)
    enable_reward_code: bool = True
    ch1_enabled: bool = True
    ch2_enabled: bool = True
    ch3_enabled: bool = True
    ch4_enabled: bool = True

    def to_data(self) -> ProvisioningData:
        return ProvisioningData(**self.model_dump(by_alias=False))


@router.get("/devices", response_model=list[DeviceListItem])
def list_devices(registry: DeviceRegistry = Depends(get_registry)) -> list[DeviceListItem]:
    """
    List every device currently in the registry, in both provisioning states.
    """
    return [
        DeviceListItem(
            id=entry.id,
            name=entry.name,
            state=entry.state.value,
            address=entry.address,
            port=entry.port,
            mac=entry.mac or None,
            last_seen=entry.last_seen,
        )
        for entry in registry.snapshot()
    ]


@router.post("/devices/{device_id}/provision", response_model=MessageResponse)
async def provision_device(
    device_id: str,
    body: ProvisionRequest,
    provisioner: ProvisioningEngine = Depends(get_provisioner),
) -> MessageResponse:
    """
    Send Wi-Fi credentials and deterrent settings to a new (BLE) lock.

    On success the entry leaves the registry; the lock reboots and comes back
    as a ``ready`` mDNS device.
    """
    await provisioner.provision(device_id, body.to_data())
    return MessageResponse(
        status="success",
        message="Credentials sent. Device is rebooting onto the network.",
    )


@router.post("/devices/{device_id}/update-wifi", response_model=MessageResponse)
async def update_wifi(
    device_id: str,
    body: WifiCredentials,
    forwarder: CommandForwarder = Depends(get_forwarder),
) -> MessageResponse:
    result = await forwarder.send(
        device_id, commands.UPDATE_WIFI, body.model_dump(by_alias=True)
    )
    data = result.body or {}
    return MessageResponse(
        status=data.get("status", "success"),
        message=data.get("message", "Wi-Fi credentials updated."),
    )


@router.post("/devices/{device_id}/factory-reset", response_model=MessageResponse)
async def factory_reset(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    forwarder: CommandForwarder = Depends(get_forwarder),
    listener: MdnsListener = Depends(get_mdns_listener),
) -> MessageResponse:
    """
    Make the lock forget its credentials and reboot.

    The entry is dropped right away and a radar sweep is forced so the
    registry reflects the lock's new state without waiting for the pruner.
    """
    await forwarder.send(device_id, commands.FACTORY_RESET)
    registry.remove(device_id)
    logger.info("Device %s reset and removed from registry", device_id)
    if listener.running:
        try:
            await listener.sweep()
        except Exception as exc:
            logger.warning("Radar sweep after factory reset failed: %s", exc)
    return MessageResponse(
        status="success", message="Reset command sent. Device is rebooting."
    )


@router.get("/devices/{device_id}/log", response_class=PlainTextResponse)
async def get_log(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> str:
    result = await forwarder.send(device_id, commands.LOG)
    return result.body or ""


@router.get(
    "/devices/{device_id}/details",
    response_model=DeviceDetails,
    response_model_exclude_none=True,
)
async def get_details(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> DeviceDetails:
    """
    Static configuration of a ready lock.  ``id`` is replaced with the
    registry id so clients can use it for further calls.
    """
    result = await forwarder.send(device_id, commands.DETAILS)
    data: dict[str, Any] = dict(result.body or {})
    data["id"] = device_id
    data.setdefault("name", device_id)
    return DeviceDetails.model_validate(data)


@router.get("/devices/{device_id}/health", response_model=MessageResponse)
async def get_health(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    forwarder: CommandForwarder = Depends(get_forwarder),
) -> MessageResponse:
    """
    One-off reachability probe.  **503** if the lock does not answer.
    """
    entry = registry.require_ready(device_id)
    try:
        await forwarder.send_to_entry(entry, commands.STATUS)
    except LockError as exc:
        logger.warning("[Health] Device %s is unreachable: %s", device_id, exc.message)
        raise DeviceUnreachableError("Device is unreachable.", status_code=503) from exc
    return MessageResponse(status="ok", message="Device is reachable.")


@router.post("/devices/{device_id}/keepalive", response_model=MessageResponse)
async def keepalive(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    forwarder: CommandForwarder = Depends(get_forwarder),
) -> MessageResponse:
    """
    Refresh the registry entry and pet the lock's watchdog.
    """
    entry = registry.get(device_id)
    if entry is None:
        raise DeviceNotFoundError("Device not in registry.")
    registry.touch(device_id)
    if entry.is_ready:
        await forwarder.send_to_entry(entry, commands.KEEPALIVE)
    return MessageResponse(status="ok", message="Keepalive sent.")
