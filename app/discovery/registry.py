"""
In-memory device registry shared by both discovery transports.

Producers
---------
- The mDNS listener upserts ``ready`` entries (``mdns:<fqdn>``).
- The BLE scanner upserts ``new_unprovisioned`` entries (``ble:<address>``).

Consumers
---------
- The health monitor records probe results and evicts on repeated failure.
- The staleness pruner evicts anything not seen within a window.
- The command forwarder refreshes ``last_seen`` after each successful exchange.

Everything runs on one event loop, so no locking is needed; callers that
iterate while awaiting must use ``snapshot()`` because entries may be removed
between two awaits.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from app.errors import DeviceNotFoundError

logger = logging.getLogger(__name__)


class ProvisioningState(str, Enum):
    READY = "ready"
    NEW_UNPROVISIONED = "new_unprovisioned"


@dataclass
class DeviceEntry:
    """A device sighted by either transport."""

    id: str
    name: str
    state: ProvisioningState
    address: str
    port: int = 0
    mac: str = ""
    last_seen: float = 0.0
    failed_attempts: int = 0
    # bleak BLEDevice; only meaningful while the advertisement is fresh
    handle: Any = field(default=None, repr=False, compare=False)

    @property
    def is_ready(self) -> bool:
        return self.state is ProvisioningState.READY


class DeviceRegistry:
    """Mapping of device id → ``DeviceEntry`` with merge-on-sighting semantics."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, DeviceEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._entries

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get(self, device_id: str) -> DeviceEntry | None:
        return self._entries.get(device_id)

    def require_ready(self, device_id: str) -> DeviceEntry:
        """Return the entry if it can receive forwarded commands."""
        entry = self._entries.get(device_id)
        if entry is None or not entry.is_ready:
            raise DeviceNotFoundError("Device not found or not ready.")
        return entry

    def snapshot(self) -> list[DeviceEntry]:
        """Copy of all entries, safe to iterate across awaits."""
        return list(self._entries.values())

    def ready_entries(self) -> list[DeviceEntry]:
        return [e for e in self._entries.values() if e.is_ready]

    # ── Producers ─────────────────────────────────────────────────────────────

    def upsert(
        self,
        device_id: str,
        *,
        name: str,
        state: ProvisioningState,
        address: str,
        port: int = 0,
        mac: str = "",
        handle: Any = None,
    ) -> DeviceEntry:
        """
        Insert a new entry or merge a sighting into an existing one.

        Address and port are only rewritten when they actually changed;
        ``last_seen`` is always refreshed.  A sighting under a different
        provisioning state replaces the entry instead of mutating it.
        """
        now = self._clock()
        entry = self._entries.get(device_id)

        if entry is not None and entry.state is not state:
            logger.info(
                "Device %s changed state %s -> %s, re-creating entry",
                device_id,
                entry.state.value,
                state.value,
            )
            del self._entries[device_id]
            entry = None

        if entry is None:
            entry = DeviceEntry(
                id=device_id,
                name=name,
                state=state,
                address=address,
                port=port,
                mac=mac,
                last_seen=now,
                handle=handle,
            )
            self._entries[device_id] = entry
            logger.info(
                "Found new %s device: %s (ID: %s) at %s:%d",
                state.value,
                name,
                device_id,
                address,
                port,
            )
            return entry

        if entry.address != address or entry.port != port:
            logger.info(
                "Device %s moved %s:%d -> %s:%d",
                device_id,
                entry.address,
                entry.port,
                address,
                port,
            )
            entry.address = address
            entry.port = port
        if handle is not None:
            entry.handle = handle
        entry.last_seen = now
        return entry

    # ── Freshness & eviction ──────────────────────────────────────────────────

    def touch(self, device_id: str) -> bool:
        """Refresh ``last_seen``; returns False if the entry is gone."""
        entry = self._entries.get(device_id)
        if entry is None:
            return False
        entry.last_seen = self._clock()
        return True

    def record_probe_success(self, device_id: str) -> None:
        entry = self._entries.get(device_id)
        if entry is None:
            return
        entry.failed_attempts = 0
        entry.last_seen = self._clock()

    def record_probe_failure(self, device_id: str, threshold: int) -> bool:
        """
        Count one strike against the entry.

        Returns True when the strike reached *threshold* and the entry was
        evicted.
        """
        entry = self._entries.get(device_id)
        if entry is None:
            return False
        entry.failed_attempts += 1
        if entry.failed_attempts >= threshold:
            del self._entries[device_id]
            logger.warning(
                "Evicting %s (ID: %s) after %d failed health checks",
                entry.name,
                device_id,
                entry.failed_attempts,
            )
            return True
        return False

    def remove(self, device_id: str) -> DeviceEntry | None:
        return self._entries.pop(device_id, None)

    def prune_stale(self, max_age: float) -> list[str]:
        """Drop every entry not seen for more than *max_age* seconds."""
        cutoff = self._clock() - max_age
        pruned = []
        for device_id, entry in list(self._entries.items()):
            if entry.last_seen < cutoff:
                logger.info(
                    "Pruning stale %s device: %s (ID: %s)",
                    entry.state.value,
                    entry.name,
                    device_id,
                )
                del self._entries[device_id]
                pruned.append(device_id)
        return pruned
