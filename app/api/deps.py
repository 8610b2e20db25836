"""
Shared FastAPI dependencies.

The registry, transports, forwarder and provisioning engine are created once
in ``app.main`` and stored on ``app.state``; routes reach them through these
getters so tests can swap any of them on the app.
"""

from fastapi import Request

from app.device.forwarder import CommandForwarder
from app.device.provisioning import ProvisioningEngine
from app.discovery.ble import BleScanner
from app.discovery.mdns import MdnsListener
from app.discovery.registry import DeviceRegistry


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


def get_forwarder(request: Request) -> CommandForwarder:
    return request.app.state.forwarder


def get_provisioner(request: Request) -> ProvisioningEngine:
    return request.app.state.provisioner


def get_mdns_listener(request: Request) -> MdnsListener:
    return request.app.state.mdns_listener


def get_ble_scanner(request: Request) -> BleScanner:
    return request.app.state.ble_scanner
