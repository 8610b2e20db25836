"""
Tests for the discovery transports (app.discovery.mdns, app.discovery.ble).

zeroconf and bleak are patched out; only the registry side effects and the
browser/scanner lifecycle are exercised.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from zeroconf import ServiceStateChange

from app.discovery.ble import BleScanner
from app.discovery.mdns import MdnsListener, pick_address
from app.discovery.registry import DeviceRegistry, ProvisioningState

SERVICE_TYPE = "_lobster-lock._tcp.local."


# ── pick_address ──────────────────────────────────────────────────────────────


def test_pick_address_prefers_ipv4():
    assert pick_address(["fe80::1", "192.168.1.7"]) == "192.168.1.7"


def test_pick_address_falls_back_to_first():
    assert pick_address(["fe80::1", "fe80::2"]) == "fe80::1"


def test_pick_address_empty():
    assert pick_address([]) is None


# ── mDNS listener ─────────────────────────────────────────────────────────────


class TestMdnsHandleService:
    def test_upserts_ready_entry(self):
        registry = DeviceRegistry()
        listener = MdnsListener(registry, service_type=SERVICE_TYPE)

        entry = listener.handle_service(
            f"Lobster-1A2B.{SERVICE_TYPE}", ["192.168.1.50"], 80
        )

        assert entry.id == f"mdns:Lobster-1A2B.{SERVICE_TYPE}"
        assert entry.name == "Lobster-1A2B"
        assert entry.state is ProvisioningState.READY
        assert entry.address == "192.168.1.50"
        assert entry.port == 80

    def test_no_address_is_skipped(self):
        registry = DeviceRegistry()
        listener = MdnsListener(registry, service_type=SERVICE_TYPE)

        assert listener.handle_service(f"x.{SERVICE_TYPE}", [], 80) is None
        assert len(registry) == 0

    def test_repeat_announcement_merges(self):
        registry = DeviceRegistry()
        listener = MdnsListener(registry, service_type=SERVICE_TYPE)
        fqdn = f"Lobster-1A2B.{SERVICE_TYPE}"

        listener.handle_service(fqdn, ["192.168.1.50"], 80)
        listener.handle_service(fqdn, ["192.168.1.51"], 80)

        assert len(registry) == 1
        assert registry.get("mdns:" + fqdn).address == "192.168.1.51"


@pytest.mark.asyncio
class TestMdnsBrowserEvents:
    async def test_removed_notification_is_ignored(self):
        registry = DeviceRegistry()
        listener = MdnsListener(registry, service_type=SERVICE_TYPE)
        listener.handle_service(f"a.{SERVICE_TYPE}", ["10.0.0.2"], 80)

        with patch.object(listener, "_resolve", new=AsyncMock()) as resolve:
            listener._on_state_change(
                MagicMock(), SERVICE_TYPE, f"a.{SERVICE_TYPE}", ServiceStateChange.Removed
            )
            await asyncio.sleep(0)

        resolve.assert_not_awaited()
        assert len(registry) == 1

    async def test_added_notification_resolves(self):
        listener = MdnsListener(DeviceRegistry(), service_type=SERVICE_TYPE)
        zc = MagicMock()

        with patch.object(listener, "_resolve", new=AsyncMock()) as resolve:
            listener._on_state_change(
                zc, SERVICE_TYPE, f"a.{SERVICE_TYPE}", ServiceStateChange.Added
            )
            await asyncio.sleep(0)

        resolve.assert_awaited_once_with(zc, SERVICE_TYPE, f"a.{SERVICE_TYPE}")

    async def test_sweep_recreates_browser(self):
        listener = MdnsListener(DeviceRegistry(), service_type=SERVICE_TYPE)
        first, second = MagicMock(), MagicMock()
        first.async_cancel = AsyncMock()

        with (
            patch("app.discovery.mdns.AsyncZeroconf"),
            patch(
                "app.discovery.mdns.AsyncServiceBrowser", side_effect=[first, second]
            ) as browser_cls,
        ):
            await listener.start()
            assert listener.running
            await listener.sweep()

        first.async_cancel.assert_awaited_once()
        assert browser_cls.call_count == 2
        assert listener._browser is second


# ── BLE scanner ───────────────────────────────────────────────────────────────


class TestBleScanner:
    def test_advertisement_inserts_unprovisioned_entry(self):
        registry = DeviceRegistry()
        scanner = BleScanner(registry)
        handle = object()

        entry = scanner.handle_advertisement("AA:BB:CC:DD:EE:FF", None, handle)

        assert entry.id == "ble:AA:BB:CC:DD:EE:FF"
        assert entry.name == "Lobster Lock"
        assert entry.mac == "AA:BB:CC:DD:EE:FF"
        assert entry.state is ProvisioningState.NEW_UNPROVISIONED
        assert entry.handle is handle

    def test_callback_uses_local_name(self):
        registry = DeviceRegistry()
        scanner = BleScanner(registry)
        device = MagicMock(address="11:22:33:44:55:66")
        device.name = "fallback"
        adv = MagicMock(local_name="Lobster-Setup")

        scanner._on_advertisement(device, adv)

        entry = registry.get("ble:11:22:33:44:55:66")
        assert entry.name == "Lobster-Setup"
        assert entry.handle is device


@pytest.mark.asyncio
class TestBleScannerLifecycle:
    async def test_start_stop(self):
        scanner = BleScanner(DeviceRegistry(), service_uuid="5a160000-8334-469b-a316-c340cf29188f")
        mock_bleak = MagicMock()
        mock_bleak.start = AsyncMock()
        mock_bleak.stop = AsyncMock()

        with patch("app.discovery.ble.BleakScanner", return_value=mock_bleak) as cls:
            await scanner.start()
            await scanner.start()
            assert scanner.running
            await scanner.stop()

        assert cls.call_args.kwargs["service_uuids"] == [
            "5a160000-8334-469b-a316-c340cf29188f"
        ]
        mock_bleak.start.assert_awaited_once()
        mock_bleak.stop.assert_awaited_once()
        assert not scanner.running
