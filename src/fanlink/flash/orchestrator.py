"""Multi-component firmware flash orchestration.

A run fetches every component first and only then writes them in a single
bulk operation, so no fallible network I/O happens once writing has begun.
The connection is always released at the end, whatever happened before.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from fanlink.exceptions import FanlinkError, PortSelectionCancelled
from fanlink.flash.esptool_flasher import esptool_flasher
from fanlink.flash.flasher import FlasherFactory, FlashFile, Flasher
from fanlink.flash.models import FirmwareProfile, PreparedFile, ProgressVector
from fanlink.flash.sources import ByteSource
from fanlink.monitor.session import MonitorSession, StopCause
from fanlink.sinks import LogSink
from fanlink.transport.base import PortProvider, SerialConfig
from fanlink.transport.serial_port import Connection
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)

SUCCESS_LINE = "> SUCCESS: Flash complete. Fan rebooting."


class FlashOrchestrator:
    """Sequences fetch, write and reset for one firmware profile.

    If a monitor session holds the port, it is stopped (cause ``flash``) and
    fully torn down before a new connection is requested.
    """

    def __init__(
        self,
        port_provider: PortProvider | None,
        byte_source: ByteSource,
        sink: LogSink,
        monitor: MonitorSession | None = None,
        config: SerialConfig | None = None,
        connection_factory: Callable[[str, SerialConfig], Connection] = Connection,
        flasher_factory: FlasherFactory = esptool_flasher,
    ) -> None:
        self._provider = port_provider
        self._source = byte_source
        self._sink = sink
        self._monitor = monitor
        self._config = config or SerialConfig()
        self._connection_factory = connection_factory
        self._flasher_factory = flasher_factory
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, profile: FirmwareProfile | None) -> bool:
        """Flash ``profile``. Returns True on success; failures are logged."""
        async with self._lock:
            return await self._run(profile)

    async def _run(self, profile: FirmwareProfile | None) -> bool:
        if profile is None:
            self._sink.append_line("> ERR: No firmware configuration defined.")
            return False
        if not profile.components:
            self._sink.append_line(
                f"> ERR: No component configuration found for {profile.display_name}"
            )
            return False

        monitor_was_active = self._monitor is not None and not self._monitor.is_idle
        if monitor_was_active:
            await self._monitor.stop(StopCause.FLASH)
            await self._monitor.wait_idle()

        self._sink.append_line("> ACTION: CONNECT & FLASH")
        self._sink.append_line(f"> TARGET: {profile.display_name}")
        if monitor_was_active:
            self._sink.append_line("> NOTE: Serial monitor paused for flashing.")

        if self._provider is None:
            self._sink.append_line("> ERR: serial support is not available on this host.")
            return False

        logger.info("flash_started", profile=profile.display_name, components=len(profile.components))
        connection: Connection | None = None
        flasher: Flasher | None = None
        try:
            self._sink.append_line("> Requesting serial port...")
            port = await self._provider.request_port()
            if not port:
                raise PortSelectionCancelled("Port selection cancelled")
            connection = self._connection_factory(port, self._config)
            await connection.open()
            flasher = self._flasher_factory(connection, self._sink)

            self._sink.append_line("> Connecting to chip...")
            chip_name = await flasher.connect()
            self._sink.append_line(f"> Detected chip: {chip_name or 'unknown'}")

            self._sink.append_line("> Preparing flasher stub...")
            await flasher.run_stub()
            self._sink.append_line("> Stub active.")

            files = await self._prepare_files(profile, flasher)
            await self._write_files(files, flasher)

            self._sink.append_line("> Resetting device...")
            await flasher.after("hard_reset")
            self._sink.append_line(SUCCESS_LINE, emphasis=True)
            logger.info("flash_completed", profile=profile.display_name, chip=chip_name)
            return True
        except FanlinkError as exc:
            logger.error("flash_failed", error=str(exc), kind=type(exc).__name__)
            self._sink.append_line(f"> FAIL: {exc}")
            return False
        finally:
            await self._release(connection, flasher)

    async def _prepare_files(self, profile: FirmwareProfile, flasher: Flasher) -> list[PreparedFile]:
        async with self._source:
            return await self._fetch_components(profile, flasher)

    async def _fetch_components(self, profile: FirmwareProfile, flasher: Flasher) -> list[PreparedFile]:
        files: list[PreparedFile] = []
        for component in profile.components:
            self._sink.append_line(
                f"> Fetching {component.display_name} ({component.binary_id})..."
            )
            data = await self._source.fetch(component.binary_id)
            prepared = PreparedFile(
                label=component.display_name,
                path=component.binary_id,
                address=component.address,
                byte_length=len(data),
                payload=flasher.encode(data),
            )
            files.append(prepared)
            self._sink.append_line(
                f"> Prepared {prepared.label} @ {prepared.address_hex} ({prepared.byte_length} bytes)."
            )
        return files

    async def _write_files(self, files: list[PreparedFile], flasher: Flasher) -> None:
        progress = ProgressVector([f.byte_length for f in files])
        self._sink.append_line(f"> Writing image set ({progress.total_bytes:,} bytes total)...")

        def report(file_index: int, written: int, total_for_file: int) -> None:
            percent = progress.update(file_index, written, total_for_file)
            if percent is not None:
                self._sink.append_line(f"> PROGRESS: {percent}%")

        await flasher.write_flash(
            [FlashFile(data=f.payload, address=f.address) for f in files],
            flash_size="keep",
            flash_mode="keep",
            flash_freq="keep",
            erase_all=False,
            compress=True,
            report_progress=report,
        )

    async def _release(self, connection: Connection | None, flasher: Flasher | None) -> None:
        if connection is None:
            return
        self._sink.append_line("> Closing port.")
        try:
            if flasher is not None:
                await flasher.disconnect()
            else:
                await connection.close()
        except FanlinkError as exc:
            logger.warning("flash_close_failed", error=str(exc))
            self._sink.append_line(f"> WARN: {exc}")
