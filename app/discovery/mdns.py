"""
mDNS listener for provisioned ("ready") locks.

Locks that joined Wi-Fi announce ``_lobster-lock._tcp.local.``.  The listener
browses for that type with the zeroconf asyncio API, resolves every added or
updated service and upserts it into the registry.

Two deliberate behaviours:

- ``Removed`` (graceful leave) notifications are ignored.  Eviction is left to
  the health monitor and the staleness pruner so a brief radio drop does not
  make the device flicker out of the list.
- ``sweep()`` cancels the browser and starts a new one.  A fresh browser sends
  a new query, which finds peers that joined silently and never announced.
  The radar sweep worker calls it on an interval.
"""

import asyncio
import ipaddress
import logging

from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from app.config import settings
from app.discovery.registry import DeviceEntry, DeviceRegistry, ProvisioningState

logger = logging.getLogger(__name__)

ID_PREFIX = "mdns:"


def pick_address(addresses: list[str]) -> str | None:
    """Prefer the first IPv4 address, fall back to the first of any family."""
    for addr in addresses:
        try:
            if ipaddress.ip_address(addr).version == 4:
                return addr
        except ValueError:
            continue
    return addresses[0] if addresses else None


class MdnsListener:
    """Browses for lock announcements and feeds the registry."""

    def __init__(
        self,
        registry: DeviceRegistry,
        service_type: str = settings.mdns_service_type,
        resolve_timeout_ms: int = settings.mdns_resolve_timeout_ms,
    ) -> None:
        self._registry = registry
        self._service_type = service_type
        self._resolve_timeout_ms = resolve_timeout_ms
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._browser is not None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._browser is not None:
            return
        if self._aiozc is None:
            self._aiozc = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._aiozc.zeroconf,
            [self._service_type],
            handlers=[self._on_state_change],
        )
        logger.info("mDNS browser started for %s", self._service_type)

    async def stop(self) -> None:
        await self._cancel_browser()
        for task in list(self._pending):
            task.cancel()
        if self._aiozc is not None:
            await self._aiozc.async_close()
            self._aiozc = None
        logger.info("mDNS listener stopped")

    async def sweep(self) -> None:
        """Restart the browser to force a fresh query on the network."""
        logger.debug("Radar sweep: restarting mDNS browser")
        await self._cancel_browser()
        await self.start()

    async def _cancel_browser(self) -> None:
        if self._browser is not None:
            browser, self._browser = self._browser, None
            await browser.async_cancel()

    # ── Browser events ────────────────────────────────────────────────────────

    def _on_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed:
            logger.debug("Ignoring graceful leave for %s", name)
            return
        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, self._resolve_timeout_ms):
            logger.debug("Could not resolve %s", name)
            return
        self.handle_service(name, info.parsed_addresses(), info.port or 0)

    def handle_service(
        self, fqdn: str, addresses: list[str], port: int
    ) -> DeviceEntry | None:
        """Upsert a resolved announcement.  Returns None if it had no address."""
        address = pick_address(addresses)
        if address is None:
            logger.warning("Service %s resolved without an address", fqdn)
            return None
        display_name = fqdn.removesuffix("." + self._service_type)
        return self._registry.upsert(
            ID_PREFIX + fqdn,
            name=display_name,
            state=ProvisioningState.READY,
            address=address,
            port=port,
        )
