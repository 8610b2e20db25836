"""
Staleness pruner — backstop eviction for entries no producer has refreshed.

Runs on a slower cadence than the health monitor and drops any entry, ready or
unprovisioned, whose ``last_seen`` is older than ``STALE_AFTER`` seconds.
Ready locks are normally evicted earlier by failed health probes; this mostly
catches BLE advertisers that went away and entries that never exchange
traffic.
"""

import asyncio
import logging

from app.config import settings
from app.discovery.registry import DeviceRegistry

logger = logging.getLogger(__name__)


async def run_stale_pruner(registry: DeviceRegistry) -> None:
    """Long-running coroutine: prune every ``PRUNE_INTERVAL`` seconds."""
    interval = settings.prune_interval
    max_age = settings.stale_after
    logger.info(
        "Stale pruner starting (interval=%.0fs, stale_after=%.0fs)", interval, max_age
    )

    while True:
        try:
            await asyncio.sleep(interval)
            pruned = registry.prune_stale(max_age)
            if pruned:
                logger.info("Pruned %d stale device(s)", len(pruned))

        except asyncio.CancelledError:
            logger.info("Stale pruner cancelled — shutting down")
            break

        except Exception as exc:
            logger.error("Prune cycle failed: %s", exc)

    logger.info("Stale pruner stopped")
