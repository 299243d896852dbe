"""Pytest configuration and shared fakes.

The fakes stand in for the serial port, the chip flasher and the firmware
byte source so that session logic runs without hardware.
"""

from __future__ import annotations

import asyncio

import pytest

from fanlink.exceptions import CloseError, NetworkFetchFailed, ProtocolError
from fanlink.flash.models import Component, FirmwareProfile
from fanlink.sinks import BufferLogSink


class FakeByteReader:
    """Byte reader fed by the test through ``FakeDevice``."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancelled = False

    async def read(self) -> bytes | None:
        if self.cancelled:
            return None
        item = await self.queue.get()
        if item is None or self.cancelled:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def cancel(self) -> None:
        self.cancelled = True
        self.queue.put_nowait(None)


class FakeWriter:
    def __init__(self) -> None:
        self.writes: list[bytes] = []
        self.released = False
        self.error: Exception | None = None
        self.release_error: Exception | None = None

    async def write(self, data: bytes) -> int:
        if self.error is not None:
            raise self.error
        self.writes.append(data)
        return len(data)

    def release(self) -> None:
        self.released = True
        if self.release_error is not None:
            raise self.release_error


class FakeConnection:
    def __init__(self, port: str, config, device: FakeDevice) -> None:
        self.port = port
        self.config = config
        self.raw = object()
        self._device = device
        self._reader = FakeByteReader()
        self._writer = FakeWriter()
        self.opened = False
        self.closed = False

    @property
    def readable(self) -> FakeByteReader:
        return self._reader

    @property
    def writable(self) -> FakeWriter | None:
        return self._writer if self._device.writable else None

    async def open(self) -> None:
        self._device.events.append(f"open:{self.port}")
        if self._device.open_gate is not None:
            await self._device.open_gate.wait()
        if self._device.open_error is not None:
            raise self._device.open_error
        self.opened = True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._reader.cancel()
        self._device.close_calls += 1
        self._device.events.append(f"close:{self.port}")
        if self._device.close_error is not None:
            raise self._device.close_error


class FakeDevice:
    """Hands out FakeConnections and records what happened to them."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.events: list[str] = []
        self.open_error: Exception | None = None
        self.close_error: Exception | None = None
        self.open_gate: asyncio.Event | None = None
        self.writable = True
        self.close_calls = 0

    def factory(self, port: str, config) -> FakeConnection:
        connection = FakeConnection(port, config, self)
        self.connections.append(connection)
        return connection

    @property
    def connection(self) -> FakeConnection:
        return self.connections[-1]

    def emit(self, item: bytes | Exception | None) -> None:
        """Queue bytes, a read error, or end of stream (None)."""
        self.connection.readable.queue.put_nowait(item)


class FakePortProvider:
    def __init__(self, events: list[str], port: str | None = "/dev/ttyFAKE0") -> None:
        self.port = port
        self.error: Exception | None = None
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self._events = events

    async def request_port(self) -> str | None:
        self.calls += 1
        self._events.append("request_port")
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.port


class FakeFlasher:
    """Records the calls the orchestrator makes; can fail at any step."""

    def __init__(self, connection, sink, fail_at: str | None = None, progress=None) -> None:
        self.connection = connection
        self.sink = sink
        self.fail_at = fail_at
        self.progress = progress or []
        self.calls: list[str] = []
        self.files = []
        self.write_options: dict = {}
        self.disconnect_error: Exception | None = None

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_at == name:
            raise ProtocolError(f"{name} failed")

    async def connect(self) -> str:
        self._step("connect")
        return "ESP32"

    async def run_stub(self) -> None:
        self._step("run_stub")

    def encode(self, data: bytes) -> bytes:
        return data

    async def write_flash(self, files, *, report_progress=None, **options) -> None:
        self.files = list(files)
        self.write_options = options
        self._step("write_flash")
        for report in self.progress:
            report_progress(*report)

    async def after(self, reset_kind: str = "hard_reset") -> None:
        self._step(f"after:{reset_kind}")

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        if self.disconnect_error is not None:
            raise self.disconnect_error
        await self.connection.close()


class FakeByteSource:
    def __init__(self, images: dict[str, bytes], failures: dict[str, int] | None = None) -> None:
        self.images = images
        self.failures = failures or {}
        self.fetched: list[str] = []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self) -> FakeByteSource:
        self.entered += 1
        return self

    async def __aexit__(self, *args: object) -> None:
        self.exited += 1

    async def fetch(self, identifier: str) -> bytes:
        self.fetched.append(identifier)
        if identifier in self.failures:
            raise NetworkFetchFailed(identifier, self.failures[identifier], "Not Found")
        return self.images[identifier]


@pytest.fixture
def sink() -> BufferLogSink:
    return BufferLogSink()


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def port_provider(device: FakeDevice) -> FakePortProvider:
    return FakePortProvider(device.events)


@pytest.fixture
def byte_source_factory():
    return FakeByteSource


@pytest.fixture
def flasher_recorder():
    """Factory for FakeFlashers; every flasher built is kept in ``.built``."""

    class Recorder:
        def __init__(self) -> None:
            self.built: list[FakeFlasher] = []
            self.fail_at: str | None = None
            self.progress: list[tuple[int, int, int]] = []
            self.disconnect_error: Exception | None = None

        def __call__(self, connection, sink) -> FakeFlasher:
            flasher = FakeFlasher(connection, sink, self.fail_at, self.progress)
            flasher.disconnect_error = self.disconnect_error
            self.built.append(flasher)
            return flasher

        @property
        def last(self) -> FakeFlasher:
            return self.built[-1]

    return Recorder()


@pytest.fixture
def close_error() -> CloseError:
    return CloseError("Failed to close /dev/ttyFAKE0: I/O error")


@pytest.fixture
def sample_profile() -> FirmwareProfile:
    """Three-component profile sized 100 / 300 / 50 bytes by ``sample_images``."""
    return FirmwareProfile(
        display_name="Test Firmware",
        components=(
            Component(display_name="Bootloader", binary_id="bootloader.bin", address=0x1000),
            Component(display_name="Application", binary_id="firmware.bin", address=0x10000),
            Component(display_name="SPIFFS", binary_id="spiffs.bin", address=0x290000),
        ),
    )


@pytest.fixture
def sample_images() -> dict[str, bytes]:
    return {
        "bootloader.bin": b"\x01" * 100,
        "firmware.bin": b"\x02" * 300,
        "spiffs.bin": b"\x03" * 50,
    }
