"""Exclusive access to the device's serial port.

The monitor and the flasher never hold a connection at the same time: the
flasher preempts the monitor, and the monitor refuses to start while a
flash run owns the port.
"""

from __future__ import annotations

from typing import Callable

from fanlink.catalog import FIRMWARE_OPTIONS, select_profile
from fanlink.exceptions import FanlinkError
from fanlink.flash.esptool_flasher import esptool_flasher
from fanlink.flash.flasher import FlasherFactory
from fanlink.flash.models import FirmwareProfile
from fanlink.flash.orchestrator import FlashOrchestrator
from fanlink.flash.sources import ByteSource
from fanlink.monitor.keys import KeyEvent
from fanlink.monitor.session import MonitorSession, MonitorState, StopCause
from fanlink.sinks import LogSink
from fanlink.transport.base import PortProvider, SerialConfig
from fanlink.transport.serial_port import Connection
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)


class SessionArbiter:
    """Entry point for the presentation layer.

    Owns the single MonitorSession and the FlashOrchestrator that share one
    port provider and one sink.
    """

    def __init__(
        self,
        port_provider: PortProvider | None,
        byte_source: ByteSource,
        sink: LogSink,
        config: SerialConfig | None = None,
        catalog: tuple[FirmwareProfile, ...] = FIRMWARE_OPTIONS,
        connection_factory: Callable[[str, SerialConfig], Connection] = Connection,
        flasher_factory: FlasherFactory = esptool_flasher,
        on_monitor_state: Callable[[MonitorState], None] | None = None,
    ) -> None:
        self._sink = sink
        self._catalog = catalog
        self._monitor = MonitorSession(
            port_provider,
            sink,
            config=config,
            connection_factory=connection_factory,
            on_state_change=on_monitor_state,
        )
        self._orchestrator = FlashOrchestrator(
            port_provider,
            byte_source,
            sink,
            monitor=self._monitor,
            config=config,
            connection_factory=connection_factory,
            flasher_factory=flasher_factory,
        )

    @property
    def monitor(self) -> MonitorSession:
        return self._monitor

    @property
    def orchestrator(self) -> FlashOrchestrator:
        return self._orchestrator

    @property
    def catalog(self) -> tuple[FirmwareProfile, ...]:
        return self._catalog

    async def toggle_monitor(self) -> None:
        """Start the monitor when idle, otherwise stop it."""
        if self._orchestrator.is_running:
            self._sink.append_line("> MONITOR: flashing in progress; monitor unavailable.")
            return
        try:
            if self._monitor.is_idle:
                await self._monitor.start()
            else:
                await self._monitor.stop(StopCause.USER)
        except FanlinkError as exc:
            logger.warning("monitor_toggle_failed", error=str(exc))
            self._sink.append_line(f"> MONITOR FAIL: {exc}")

    async def stop_monitor(self, cause: StopCause = StopCause.USER) -> None:
        await self._monitor.stop(cause)

    async def flash(self, profile_index: int | str | None = None) -> bool:
        """Flash the selected profile, preempting the monitor if it runs."""
        profile = select_profile(profile_index, self._catalog)
        return await self._orchestrator.run(profile)

    async def send_key(self, event: KeyEvent) -> bool:
        """Forward a key press, only while the monitor reports itself active."""
        if not self._monitor.accepts_keys:
            return False
        return await self._monitor.send_key(event)

    async def shutdown(self) -> None:
        await self._monitor.stop(StopCause.USER)
