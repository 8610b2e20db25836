"""
Tests for the reference lock's mDNS announcement (app.lock.announce).
"""

import socket
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.lock.announce import LockAnnouncer

SERVICE_TYPE = "_lobster-lock._tcp.local."


def test_service_info():
    announcer = LockAnnouncer("Mock-LobsterLock", 3003, SERVICE_TYPE, version="v1.4-mock")
    info = announcer.build_info("192.168.1.10")

    assert info.type == SERVICE_TYPE
    assert info.name == f"Mock-LobsterLock.{SERVICE_TYPE}"
    assert info.port == 3003
    assert info.addresses == [socket.inet_aton("192.168.1.10")]
    assert info.properties[b"version"] == b"v1.4-mock"


@pytest.mark.asyncio
async def test_start_and_stop_register_and_withdraw():
    announcer = LockAnnouncer("Mock-LobsterLock", 3003, SERVICE_TYPE)
    aiozc = MagicMock()
    aiozc.async_register_service = AsyncMock()
    aiozc.async_unregister_service = AsyncMock()
    aiozc.async_close = AsyncMock()

    with (
        patch("app.lock.announce.AsyncZeroconf", return_value=aiozc),
        patch("app.lock.announce._get_local_ip", return_value="192.168.1.10"),
    ):
        await announcer.start()
        assert announcer.running
        await announcer.stop()

    aiozc.async_register_service.assert_awaited_once()
    aiozc.async_unregister_service.assert_awaited_once()
    aiozc.async_close.assert_awaited_once()
    assert not announcer.running


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    await LockAnnouncer("x", 1, SERVICE_TYPE).stop()
