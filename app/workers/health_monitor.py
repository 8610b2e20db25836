"""
Health monitor — background task that actively probes every ``ready`` lock.

Design
------
- Every ``HEALTH_CHECK_INTERVAL`` seconds, one ``GET /status`` is sent to each
  ``ready`` entry.  Probes run concurrently and are gathered with wait-all
  semantics, each bounded by ``HEALTH_CHECK_TIMEOUT``, so one slow lock never
  delays the others.
- Success resets the entry's strike counter and refreshes ``last_seen``.
- Failure adds a strike; at ``HEALTH_FAILURE_THRESHOLD`` strikes the entry is
  evicted right away, without waiting for the staleness window.
- The registry is snapshotted before fanning out; an entry removed while its
  probe is in flight is simply skipped when the result arrives.
- Unexpected errors back off exponentially (2 s → 4 s … 60 s).
"""

import asyncio
import logging

from app.config import settings
from app.device.forwarder import STATUS, CommandForwarder
from app.discovery.registry import DeviceEntry, DeviceRegistry
from app.errors import LockError

logger = logging.getLogger(__name__)

_BACKOFF_BASE: float = 2.0
_BACKOFF_MAX: float = 60.0


async def _probe(forwarder: CommandForwarder, entry: DeviceEntry, timeout: float) -> bool:
    try:
        await forwarder.send_to_entry(entry, STATUS, timeout=timeout)
        return True
    except LockError as exc:
        logger.info(
            "Device %s (ID: %s) failed health check: %s", entry.name, entry.id, exc
        )
        return False


async def check_all_devices(
    registry: DeviceRegistry,
    forwarder: CommandForwarder,
    timeout: float = settings.health_check_timeout,
    threshold: int = settings.health_failure_threshold,
) -> dict[str, int]:
    """
    Probe all ``ready`` entries once.

    Returns counts: ``{"healthy": n, "failed": n, "evicted": n}``.
    """
    entries = registry.ready_entries()
    counts = {"healthy": 0, "failed": 0, "evicted": 0}
    if not entries:
        return counts

    results = await asyncio.gather(
        *(_probe(forwarder, entry, timeout) for entry in entries)
    )

    for entry, ok in zip(entries, results):
        if ok:
            registry.record_probe_success(entry.id)
            counts["healthy"] += 1
        else:
            counts["failed"] += 1
            if registry.record_probe_failure(entry.id, threshold):
                counts["evicted"] += 1

    return counts


async def run_health_monitor(
    registry: DeviceRegistry, forwarder: CommandForwarder
) -> None:
    """
    Long-running coroutine: probe devices every ``HEALTH_CHECK_INTERVAL`` seconds.

    Intended to be launched as a background task from the FastAPI lifespan and
    cancelled on shutdown.
    """
    interval = settings.health_check_interval
    logger.info("Health monitor starting (interval=%.0fs)", interval)
    backoff: float = _BACKOFF_BASE

    while True:
        try:
            counts = await check_all_devices(registry, forwarder)
            if counts["failed"]:
                logger.info(
                    "Health cycle: %d healthy, %d failed, %d evicted",
                    counts["healthy"],
                    counts["failed"],
                    counts["evicted"],
                )
            backoff = _BACKOFF_BASE
            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Health monitor cancelled — shutting down")
            break

        except Exception as exc:
            logger.error("Health cycle failed: %s — retrying in %.0fs", exc, backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _BACKOFF_MAX)

    logger.info("Health monitor stopped")
