"""
mDNS announcement of the reference lock under ``_lobster-lock._tcp.local.``.
"""

import logging
import socket

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)


class LockAnnouncer:
    """Registers this lock on the local network so the proxy's radar finds it."""

    def __init__(
        self,
        device_id: str,
        port: int,
        service_type: str,
        version: str = "",
    ) -> None:
        self.device_id = device_id
        self.port = port
        self.service_type = service_type
        self.version = version
        self._zeroconf: AsyncZeroconf | None = None
        self._info: ServiceInfo | None = None

    @property
    def running(self) -> bool:
        return self._zeroconf is not None

    def build_info(self, local_ip: str) -> ServiceInfo:
        return ServiceInfo(
            self.service_type,
            f"{self.device_id}.{self.service_type}",
            addresses=[socket.inet_aton(local_ip)],
            port=self.port,
            properties={"id": self.device_id, "version": self.version},
            server=f"{self.device_id.lower()}.local.",
        )

    async def start(self) -> None:
        local_ip = _get_local_ip()
        self._info = self.build_info(local_ip)
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._info)
        logger.info("mDNS: announcing %s at %s:%d", self.device_id, local_ip, self.port)

    async def stop(self) -> None:
        if self._zeroconf is None:
            return
        if self._info is not None:
            await self._zeroconf.async_unregister_service(self._info)
        await self._zeroconf.async_close()
        self._zeroconf = None
        self._info = None
        logger.info("mDNS: stopped announcing")


def _get_local_ip() -> str:
    """Get this machine's LAN IP address."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.settimeout(2)
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
