"""
Lobster Lock control proxy — FastAPI application entry point.

Run with:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 3001
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from bleak.exc import BleakError
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from zeroconf import Error as ZeroconfError

from app.api.routes import devices as devices_router
from app.api.routes import session as session_router
from app.api.routes import status as status_router
from app.config import settings
from app.device.forwarder import CommandForwarder
from app.device.provisioning import ProvisioningEngine
from app.discovery.ble import BleScanner
from app.discovery.mdns import MdnsListener
from app.discovery.registry import DeviceRegistry
from app.errors import install_error_handlers
from app.workers.health_monitor import run_health_monitor
from app.workers.radar_sweep import run_radar_sweep
from app.workers.stale_pruner import run_stale_pruner

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


class _ProbeNoiseFilter(logging.Filter):
    """Drop the per-request INFO lines httpx emits for every forwarded call.

    The health monitor probes every ready lock every few seconds, which would
    otherwise bury the proxy's own log lines.  Warnings and errors from httpx
    still pass.
    """

    _LOGGERS = frozenset(["httpx", "httpcore"])

    def filter(self, record: logging.LogRecord) -> bool:
        return not (record.name in self._LOGGERS and record.levelno <= logging.INFO)


async def _start_transports(app: FastAPI) -> None:
    """Start whichever discovery transports are enabled; a failure is not fatal."""
    if settings.enable_mdns:
        try:
            await app.state.mdns_listener.start()
        except (OSError, ZeroconfError) as exc:
            logger.warning("mDNS discovery unavailable: %s", exc)
    if settings.enable_ble:
        try:
            await app.state.ble_scanner.start()
        except (OSError, BleakError) as exc:
            logger.warning("BLE discovery unavailable: %s", exc)


async def _stop_transports(app: FastAPI) -> None:
    try:
        await app.state.ble_scanner.stop()
    except (OSError, BleakError) as exc:
        logger.warning("Failed to stop BLE scan: %s", exc)
    await app.state.mdns_listener.stop()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start discovery and background workers on startup; cancel them on shutdown."""
    _filter = _ProbeNoiseFilter()
    for handler in logging.root.handlers:
        handler.addFilter(_filter)

    await _start_transports(app)

    tasks = [
        asyncio.create_task(
            run_health_monitor(app.state.registry, app.state.forwarder),
            name="health_monitor",
        ),
        asyncio.create_task(run_stale_pruner(app.state.registry), name="stale_pruner"),
    ]
    if app.state.mdns_listener.running:
        tasks.append(
            asyncio.create_task(
                run_radar_sweep(app.state.mdns_listener), name="radar_sweep"
            )
        )
    logger.info("Background workers started")
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await _stop_transports(app)
        logger.info("Background workers stopped")


app = FastAPI(
    title="Lobster Lock Control Proxy",
    description="Discovers Lobster Locks over mDNS and BLE, provisions them and proxies session commands.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Shared state ─────────────────────────────────────────────────────────────
app.state.registry = DeviceRegistry()
app.state.forwarder = CommandForwarder(app.state.registry)
app.state.mdns_listener = MdnsListener(app.state.registry)
app.state.ble_scanner = BleScanner(app.state.registry)
app.state.provisioner = ProvisioningEngine(app.state.registry, app.state.ble_scanner)

install_error_handlers(app)

# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(status_router.router, tags=["health"])
app.include_router(devices_router.router, tags=["devices"])
app.include_router(session_router.router, tags=["session"])
