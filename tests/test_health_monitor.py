"""
Tests for the registry upkeep workers: health monitor and staleness pruner.
"""

import asyncio
from unittest.mock import patch

import httpx
import pytest

from app.device.forwarder import CommandForwarder
from app.discovery.registry import DeviceRegistry, ProvisioningState
from app.workers.health_monitor import check_all_devices
from app.workers.stale_pruner import run_stale_pruner


def _registry_with(*hosts: str) -> DeviceRegistry:
    registry = DeviceRegistry()
    for host in hosts:
        registry.upsert(
            f"mdns:{host}._lobster-lock._tcp.local.",
            name=host,
            state=ProvisioningState.READY,
            address=host,
            port=80,
        )
    return registry


def _forwarder(registry: DeviceRegistry, down: set[str]) -> CommandForwarder:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host in down:
            raise httpx.ConnectError("unreachable", request=request)
        return httpx.Response(200, json={"status": "ready"})

    return CommandForwarder(registry, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestCheckAllDevices:
    async def test_all_healthy(self):
        registry = _registry_with("10.0.0.1", "10.0.0.2")
        fwd = _forwarder(registry, down=set())

        counts = await check_all_devices(registry, fwd, timeout=1.0, threshold=3)

        assert counts == {"healthy": 2, "failed": 0, "evicted": 0}

    async def test_failure_adds_strike(self):
        registry = _registry_with("10.0.0.1", "10.0.0.2")
        fwd = _forwarder(registry, down={"10.0.0.2"})

        counts = await check_all_devices(registry, fwd, timeout=1.0, threshold=3)

        assert counts == {"healthy": 1, "failed": 1, "evicted": 0}
        assert registry.get("mdns:10.0.0.2._lobster-lock._tcp.local.").failed_attempts == 1

    async def test_three_strikes_evicts(self):
        registry = _registry_with("10.0.0.1")
        fwd = _forwarder(registry, down={"10.0.0.1"})

        for _ in range(2):
            await check_all_devices(registry, fwd, timeout=1.0, threshold=3)
        assert len(registry) == 1
        counts = await check_all_devices(registry, fwd, timeout=1.0, threshold=3)

        assert counts["evicted"] == 1
        assert len(registry) == 0

    async def test_success_resets_strikes(self):
        registry = _registry_with("10.0.0.1")
        down = {"10.0.0.1"}
        fwd = _forwarder(registry, down=down)

        await check_all_devices(registry, fwd, timeout=1.0, threshold=3)
        await check_all_devices(registry, fwd, timeout=1.0, threshold=3)
        down.clear()
        await check_all_devices(registry, fwd, timeout=1.0, threshold=3)

        assert registry.get("mdns:10.0.0.1._lobster-lock._tcp.local.").failed_attempts == 0

    async def test_unprovisioned_entries_are_not_probed(self):
        registry = DeviceRegistry()
        registry.upsert(
            "ble:AA",
            name="Lobster Lock",
            state=ProvisioningState.NEW_UNPROVISIONED,
            address="AA",
        )
        fwd = _forwarder(registry, down={"AA"})

        counts = await check_all_devices(registry, fwd, timeout=1.0, threshold=1)

        assert counts == {"healthy": 0, "failed": 0, "evicted": 0}
        assert "ble:AA" in registry

    async def test_entry_removed_mid_probe_is_skipped(self):
        registry = _registry_with("10.0.0.1")
        device_id = "mdns:10.0.0.1._lobster-lock._tcp.local."

        def handler(request: httpx.Request) -> httpx.Response:
            registry.remove(device_id)
            raise httpx.ConnectError("gone", request=request)

        fwd = CommandForwarder(registry, transport=httpx.MockTransport(handler))
        counts = await check_all_devices(registry, fwd, timeout=1.0, threshold=1)

        assert counts["failed"] == 1
        assert counts["evicted"] == 0
        assert len(registry) == 0


@pytest.mark.asyncio
class TestStalePruner:
    async def test_prunes_and_stops_on_cancel(self):
        now = [1_000.0]
        registry = DeviceRegistry(clock=lambda: now[0])
        registry.upsert(
            "ble:AA",
            name="Lobster Lock",
            state=ProvisioningState.NEW_UNPROVISIONED,
            address="AA",
        )
        now[0] += 400

        with (
            patch("app.workers.stale_pruner.settings.prune_interval", 0.01),
            patch("app.workers.stale_pruner.settings.stale_after", 300.0),
        ):
            task = asyncio.create_task(run_stale_pruner(registry))
            await asyncio.sleep(0.05)
            task.cancel()
            await task

        assert len(registry) == 0
        assert task.done()
