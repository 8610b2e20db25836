"""
GET /status — proxy health: registry counts and discovery transport state.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_ble_scanner, get_mdns_listener, get_registry
from app.discovery.ble import BleScanner
from app.discovery.mdns import MdnsListener
from app.discovery.registry import DeviceRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    status: str
    devices: dict
    transports: dict


@router.get("/status", response_model=StatusResponse)
def get_status(
    registry: DeviceRegistry = Depends(get_registry),
    listener: MdnsListener = Depends(get_mdns_listener),
    scanner: BleScanner = Depends(get_ble_scanner),
) -> StatusResponse:
    """
    Returns the overall proxy status.

    - **status**: ``"ok"`` if at least one discovery transport is running,
      ``"degraded"`` otherwise.
    - **devices**: number of registry entries, total and per provisioning state.
    - **transports**: whether the mDNS browser and the BLE scan are running.
    """
    entries = registry.snapshot()
    ready = sum(1 for entry in entries if entry.is_ready)
    mdns_ok = listener.running
    ble_ok = scanner.running

    return StatusResponse(
        status="ok" if (mdns_ok or ble_ok) else "degraded",
        devices={
            "total": len(entries),
            "ready": ready,
            "new_unprovisioned": len(entries) - ready,
        },
        transports={
            "mdns": mdns_ok,
            "ble": ble_ok,
        },
    )
