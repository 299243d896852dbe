"""Unit tests for fanlink.arbiter and the firmware catalog."""

from __future__ import annotations

import asyncio

import pytest

from fanlink.arbiter import SessionArbiter
from fanlink.catalog import FIRMWARE_OPTIONS, select_profile
from fanlink.flash.models import FirmwareProfile
from fanlink.flash.orchestrator import SUCCESS_LINE
from fanlink.monitor.keys import KeyEvent
from fanlink.monitor.session import MonitorState


@pytest.fixture
def arbiter(port_provider, byte_source_factory, sample_profile, sample_images, sink, device, flasher_recorder):
    return SessionArbiter(
        port_provider,
        byte_source_factory(sample_images),
        sink,
        catalog=(sample_profile,),
        connection_factory=device.factory,
        flasher_factory=flasher_recorder,
    )


class TestToggleMonitor:
    @pytest.mark.asyncio
    async def test_toggle_starts_then_stops(self, arbiter, sink):
        await arbiter.toggle_monitor()
        assert arbiter.monitor.state is MonitorState.ACTIVE

        await arbiter.toggle_monitor()
        assert arbiter.monitor.is_idle
        assert sink.lines[-1] == "> MONITOR: stopped."

    @pytest.mark.asyncio
    async def test_refused_while_flashing(self, arbiter, port_provider, sink, device):
        port_provider.gate = asyncio.Event()
        flashing = asyncio.create_task(arbiter.flash(0))
        for _ in range(10):
            await asyncio.sleep(0)
        assert arbiter.orchestrator.is_running

        await arbiter.toggle_monitor()
        assert "> MONITOR: flashing in progress; monitor unavailable." in sink.lines
        assert arbiter.monitor.is_idle

        port_provider.gate.set()
        assert await asyncio.wait_for(flashing, timeout=1) is True
        assert len(device.connections) == 1

    @pytest.mark.asyncio
    async def test_shutdown_stops_monitor(self, arbiter, device):
        await arbiter.toggle_monitor()
        await arbiter.shutdown()

        assert arbiter.monitor.is_idle
        assert device.connection.closed


class TestFlash:
    @pytest.mark.asyncio
    async def test_flash_preempts_monitor(self, arbiter, sink, device):
        await arbiter.toggle_monitor()
        monitor_connection = device.connection

        assert await arbiter.flash(0) is True
        assert monitor_connection.closed
        assert arbiter.monitor.is_idle
        assert "> NOTE: Serial monitor paused for flashing." in sink.lines
        assert SUCCESS_LINE in sink.lines

    @pytest.mark.asyncio
    async def test_unknown_index_uses_first_profile(self, arbiter, sink):
        assert await arbiter.flash(7) is True
        assert "> TARGET: Test Firmware" in sink.lines

    @pytest.mark.asyncio
    async def test_empty_catalog(self, port_provider, byte_source_factory, sink, device, flasher_recorder):
        arbiter = SessionArbiter(
            port_provider,
            byte_source_factory({}),
            sink,
            catalog=(),
            connection_factory=device.factory,
            flasher_factory=flasher_recorder,
        )
        assert await arbiter.flash(0) is False
        assert sink.lines == ["> ERR: No firmware configuration defined."]


class TestSendKey:
    @pytest.mark.asyncio
    async def test_dropped_when_monitor_idle(self, arbiter, device):
        assert await arbiter.send_key(KeyEvent("a")) is False
        assert device.connections == []

    @pytest.mark.asyncio
    async def test_forwarded_when_active(self, arbiter, device):
        await arbiter.toggle_monitor()
        assert await arbiter.send_key(KeyEvent("a")) is True
        assert device.connection.writable.writes == [b"a"]
        await arbiter.shutdown()

    @pytest.mark.asyncio
    async def test_modified_keys_dropped(self, arbiter, device):
        await arbiter.toggle_monitor()
        assert await arbiter.send_key(KeyEvent("c", ctrl=True)) is False
        assert device.connection.writable.writes == []
        await arbiter.shutdown()


class TestSelectProfile:
    def test_default_is_first(self):
        assert select_profile(None) is FIRMWARE_OPTIONS[0]

    @pytest.mark.parametrize("index", [-1, 5, "abc", "0"])
    def test_fallback_to_first(self, index):
        assert select_profile(index) is FIRMWARE_OPTIONS[0]

    def test_in_range(self):
        options = (FirmwareProfile(display_name="A"), FirmwareProfile(display_name="B"))
        assert select_profile("1", options).display_name == "B"

    def test_empty_catalog(self):
        assert select_profile(0, ()) is None

    def test_builtin_layout(self):
        addresses = [c.address for c in FIRMWARE_OPTIONS[0].components]
        assert addresses == [0x1000, 0x8000, 0x10000, 0x290000]
