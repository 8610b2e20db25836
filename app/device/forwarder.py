"""
Command forwarder — translate control-surface calls into device HTTP calls.

Each call resolves the registry entry, builds the device URL, performs one
httpx exchange and maps the outcome:

- 2xx                  → ``ForwardResult`` (JSON body, or text for ``/log``)
- 400 / 409            → ``InvalidRequestError`` / ``DeviceBusyError``
- any other 4xx / 5xx  → ``DeviceResponseError`` with the device's status
- timeout / transport  → ``DeviceUnreachableError``

``factory-reset`` makes the device reboot mid-response, so a timeout or a
504 for that command counts as success.

Every successful exchange refreshes the entry's ``last_seen``, which doubles
as a passive keepalive for the staleness pruner.  Nothing here cancels an
in-flight request when the registry changes; a late result for an evicted
entry is simply not recorded.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.discovery.registry import DeviceEntry, DeviceRegistry
from app.errors import (
    DeviceBusyError,
    DeviceResponseError,
    DeviceUnreachableError,
    InvalidRequestError,
)

logger = logging.getLogger(__name__)


def build_target_url(address: str, port: int, path: str) -> str:
    """Return ``http://host:port/path``, bracket-wrapping IPv6 literals."""
    try:
        is_v6 = ipaddress.ip_address(address.split("%", 1)[0]).version == 6
    except ValueError:
        is_v6 = ":" in address
    host = f"[{address}]" if is_v6 else address
    return f"http://{host}:{port}{path}"


@dataclass(frozen=True)
class DeviceCommand:
    method: str
    path: str
    timeout: float
    text: bool = False
    reboots: bool = False


STATUS = DeviceCommand("GET", "/status", 2.0)
DETAILS = DeviceCommand("GET", "/details", 3.0)
ARM = DeviceCommand("POST", "/arm", 5.0)
ABORT = DeviceCommand("POST", "/abort", 3.0)
START_TEST = DeviceCommand("POST", "/start-test", 3.0)
KEEPALIVE = DeviceCommand("POST", "/keepalive", 2.0)
REWARD = DeviceCommand("GET", "/reward", 2.0)
LOG = DeviceCommand("GET", "/log", 2.0, text=True)
UPDATE_WIFI = DeviceCommand("POST", "/update-wifi", 5.0)
FACTORY_RESET = DeviceCommand("POST", "/factory-reset", 2.0, reboots=True)


@dataclass
class ForwardResult:
    status_code: int
    body: Any


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"Device returned HTTP {response.status_code}"
    if isinstance(data, dict):
        detail = data.get("detail", data)
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
        if data.get("message"):
            return str(data["message"])
    return f"Device returned HTTP {response.status_code}"


class CommandForwarder:
    """Stateless per-request proxy towards ``ready`` devices."""

    def __init__(
        self,
        registry: DeviceRegistry,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = registry
        self._transport = transport

    async def send(
        self,
        device_id: str,
        command: DeviceCommand,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ForwardResult:
        entry = self._registry.require_ready(device_id)
        return await self.send_to_entry(entry, command, payload, timeout)

    async def send_to_entry(
        self,
        entry: DeviceEntry,
        command: DeviceCommand,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ForwardResult:
        url = build_target_url(entry.address, entry.port, command.path)
        if command.method == "POST" and payload is None:
            payload = {}
        logger.debug("Forwarding %s %s", command.method, url)

        try:
            async with httpx.AsyncClient(
                timeout=timeout or command.timeout, transport=self._transport
            ) as client:
                response = await client.request(command.method, url, json=payload)
        except httpx.TimeoutException as exc:
            if command.reboots:
                logger.info(
                    "Device %s did not respond to %s (timeout), expected during reboot",
                    entry.id,
                    command.path,
                )
                return ForwardResult(status_code=200, body=None)
            raise DeviceUnreachableError(
                f"Timed out talking to the lock device ({command.path})."
            ) from exc
        except httpx.HTTPError as exc:
            raise DeviceUnreachableError(
                f"Failed to communicate with the lock device: {exc}"
            ) from exc

        if command.reboots and response.status_code == 504:
            logger.info("Device %s gateway timeout on %s, treating as reboot", entry.id, command.path)
            return ForwardResult(status_code=200, body=None)

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "Device %s rejected %s with %d: %s",
                entry.id,
                command.path,
                response.status_code,
                message,
            )
            if response.status_code == 400:
                raise InvalidRequestError(message)
            if response.status_code == 409:
                raise DeviceBusyError(message)
            raise DeviceResponseError(message, status_code=response.status_code)

        self._registry.touch(entry.id)

        if command.text:
            return ForwardResult(status_code=response.status_code, body=response.text)
        try:
            body = response.json()
        except ValueError:
            body = None
        return ForwardResult(status_code=response.status_code, body=body)
