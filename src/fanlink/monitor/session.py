"""Interactive serial monitor session.

One ``MonitorSession`` instance lives for the lifetime of the tool. Each
start/stop cycle opens a fresh ``Connection``, streams decoded device output
line by line into the ``LogSink`` and forwards keystrokes back to the device.

State machine::

    IDLE -> REQUESTING -> OPEN -> ACTIVE -> CLOSING -> IDLE

Every path back to IDLE goes through a single-flight cleanup, so resources
are released exactly once and exactly one terminal line is written per
session that actually started.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Callable

from fanlink.exceptions import (
    DeviceDisconnected,
    FanlinkError,
    PermissionDenied,
    PortBusy,
    PortSelectionCancelled,
    PortUnreadable,
    StreamDecodingUnsupported,
)
from fanlink.monitor.decoder import LineBufferedDecoder, TextStreamReader
from fanlink.monitor.keys import KeyEvent, map_key
from fanlink.sinks import LogSink
from fanlink.transport.base import PortProvider, SerialConfig
from fanlink.transport.serial_port import Connection, SerialWriter
from fanlink.utils.concurrency import SingleFlight
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)

PREFIX = "> MONITOR:"


class MonitorState(StrEnum):
    """Lifecycle states of a monitor session."""
    IDLE = "idle"
    REQUESTING = "requesting"
    OPEN = "open"
    ACTIVE = "active"
    CLOSING = "closing"


class StopCause(StrEnum):
    """Why a monitor session ended."""
    USER = "user"
    FLASH = "flash"
    ERROR = "error"
    DEVICE = "device"


# None means the cause is announced elsewhere (the flasher logs the pause).
_TERMINAL_LINES: dict[StopCause, str | None] = {
    StopCause.USER: "stopped.",
    StopCause.FLASH: None,
    StopCause.ERROR: "stopped (serial error).",
    StopCause.DEVICE: "device disconnected.",
}
_DEFAULT_TERMINAL_LINE = "ended."

# Checked in order; DeviceDisconnected never occurs while opening.
_OPEN_FAILURE_LINES: tuple[tuple[type[FanlinkError], str], ...] = (
    (PortSelectionCancelled, "no port selected."),
    (PortBusy, "selected port is busy."),
    (PortUnreadable, "unable to read from selected port."),
    (PermissionDenied, "access denied to serial port."),
)


def terminal_line(cause: StopCause | None) -> str | None:
    """Return the closing line for a session that ended with ``cause``."""
    if cause in _TERMINAL_LINES:
        return _TERMINAL_LINES[cause]
    return _DEFAULT_TERMINAL_LINE


class MonitorSession:
    """Streams device output to a LogSink and forwards keystrokes.

    Usage:
        session = MonitorSession(SerialPortProvider("/dev/ttyUSB0"), sink)
        await session.start()
        await session.send_key(KeyEvent("Enter"))
        await session.stop()
    """

    def __init__(
        self,
        port_provider: PortProvider | None,
        sink: LogSink,
        config: SerialConfig | None = None,
        connection_factory: Callable[[str, SerialConfig], Connection] = Connection,
        on_state_change: Callable[[MonitorState], None] | None = None,
    ) -> None:
        self._provider = port_provider
        self._sink = sink
        self._config = config or SerialConfig()
        self._connection_factory = connection_factory
        self._on_state_change = on_state_change
        self._cleanup = SingleFlight(self._do_cleanup)
        self._idle = asyncio.Event()
        self._idle.set()
        self._state = MonitorState.IDLE

        self._connection: Connection | None = None
        self._reader: TextStreamReader | None = None
        self._writer: SerialWriter | None = None
        self._decoder = LineBufferedDecoder()
        self._read_task: asyncio.Task | None = None
        self._active = False
        self._session_started = False
        self._stop_cause: StopCause | None = None
        self._abort_requested = False

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is MonitorState.IDLE

    @property
    def is_active(self) -> bool:
        return self._state is MonitorState.ACTIVE and self._active

    @property
    def accepts_keys(self) -> bool:
        return self.is_active and self._writer is not None

    @property
    def stop_cause(self) -> StopCause | None:
        return self._stop_cause

    @property
    def connection(self) -> Connection | None:
        return self._connection

    def _set_state(self, state: MonitorState) -> None:
        if state is self._state:
            return
        logger.debug("monitor_state", old=self._state.value, new=state.value)
        self._state = state
        if state is MonitorState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        if self._on_state_change is not None:
            self._on_state_change(state)

    async def wait_idle(self) -> None:
        await self._idle.wait()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Open the port and begin streaming.

        Called while a session is running, this stops it instead.
        """
        if self._state is not MonitorState.IDLE:
            await self.stop(StopCause.USER)
            return
        if self._provider is None:
            self._sink.append_line("> MONITOR ERR: serial support is not available on this host.")
            return

        self._stop_cause = None
        self._abort_requested = False
        self._set_state(MonitorState.REQUESTING)
        baud = self._config.baud_rate
        try:
            self._sink.append_line(f"{PREFIX} requesting serial port...")
            port = await self._provider.request_port()
            if not port:
                self._sink.append_line(f"{PREFIX} port selection cancelled.")
                await self._cleanup()
                return
            if self._abort_requested:
                await self._cleanup()
                return

            self._sink.append_line(f"{PREFIX} opening {port} @ {baud}...")
            self._connection = self._connection_factory(port, self._config)
            await self._connection.open()
            self._set_state(MonitorState.OPEN)
            if self._abort_requested:
                await self._cleanup()
                return

            try:
                self._reader = TextStreamReader(self._connection.readable, self._config.encoding)
            except StreamDecodingUnsupported as exc:
                self._sink.append_line(f"> MONITOR ERR: {exc}")
                self._stop_cause = StopCause.ERROR
                await self._cleanup()
                return
            self._reader.start()
            self._writer = self._connection.writable
            self._session_started = True
            self._active = True
            self._set_state(MonitorState.ACTIVE)
            logger.info("monitor_started", port=port, baud=baud, writable=self._writer is not None)
            self._sink.append_line(f"{PREFIX} listening @ {baud}.")
            if self._writer is not None:
                self._sink.append_line(f"{PREFIX} keyboard control enabled (press keys to send).")
            self._read_task = asyncio.create_task(self._read_loop())
            self._read_task.add_done_callback(self._read_loop_done)
        except FanlinkError as exc:
            logger.warning("monitor_open_failed", error=str(exc), kind=type(exc).__name__)
            self._sink.append_line(self._open_failure_line(exc))
            self._stop_cause = None
            await self._cleanup()
        except asyncio.CancelledError:
            # The half-built session must still go back to Idle, port closed.
            logger.info("monitor_start_cancelled", state=self._state.value)
            if self._state is not MonitorState.ACTIVE:
                await self._cleanup()
            raise

    @staticmethod
    def _open_failure_line(exc: FanlinkError) -> str:
        for exc_type, text in _OPEN_FAILURE_LINES:
            if isinstance(exc, exc_type):
                return f"{PREFIX} {text}"
        return f"> MONITOR FAIL: {exc}"

    async def stop(self, cause: StopCause = StopCause.USER) -> None:
        """Stop the running session and wait until it is fully torn down."""
        if self._cleanup.in_flight:
            await self._cleanup()
            return
        if self._state is MonitorState.IDLE:
            return
        if self._state is MonitorState.REQUESTING:
            # The start attempt owns the half-built session; it checks this
            # flag once the port request or open returns.
            self._stop_cause = cause
            self._abort_requested = True
            await self._idle.wait()
            return

        logger.info("monitor_stopping", cause=cause.value)
        self._stop_cause = cause
        self._active = False
        self._set_state(MonitorState.CLOSING)
        read_task = self._read_task
        if self._reader is not None:
            try:
                self._reader.cancel()
            except Exception as exc:
                logger.debug("monitor_cancel_failed", error=str(exc))
        await self._cleanup()
        if read_task is not None and read_task is not asyncio.current_task():
            # Only waits on cleanup, which is done; never raises here.
            await asyncio.wait({read_task})

    async def _read_loop(self) -> None:
        try:
            while self._active and self._reader is not None:
                chunk = await self._reader.read()
                if chunk is None:
                    break
                self._log_output(chunk)
        except FanlinkError as exc:
            if self._active:
                if self._stop_cause is None:
                    self._stop_cause = (
                        StopCause.DEVICE if isinstance(exc, DeviceDisconnected) else StopCause.ERROR
                    )
                logger.warning("monitor_read_failed", error=str(exc))
                self._sink.append_line(f"> MONITOR FAIL: {exc}")
        finally:
            # A loop left over from an already cleaned-up session must not
            # tear down whatever session runs now.
            if self._read_task is asyncio.current_task():
                await self._cleanup()

    @staticmethod
    def _read_loop_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("monitor_read_loop_crashed", error=str(exc), kind=type(exc).__name__)

    def _log_output(self, chunk: str) -> None:
        for line in self._decoder.feed(chunk):
            if line:
                self._sink.append_line(f"{PREFIX} {line}")

    async def _do_cleanup(self) -> None:
        if self._state is not MonitorState.IDLE:
            self._set_state(MonitorState.CLOSING)
        self._active = False

        reader, self._reader = self._reader, None
        writer, self._writer = self._writer, None
        connection, self._connection = self._connection, None

        # Each step runs even when an earlier one failed.
        if reader is not None:
            try:
                reader.release()
            except Exception as exc:
                logger.warning("monitor_reader_release_failed", error=str(exc))
        if writer is not None:
            try:
                writer.release()
            except Exception as exc:
                logger.warning("monitor_writer_release_failed", error=str(exc))
        if reader is not None:
            try:
                await reader.wait_closed()
            except Exception as exc:
                logger.warning("monitor_stream_close_failed", error=str(exc))
        if connection is not None:
            try:
                await connection.close()
            except Exception as exc:
                logger.warning("monitor_close_failed", error=str(exc), kind=type(exc).__name__)

        fragment = self._decoder.flush()
        if fragment:
            self._sink.append_line(f"{PREFIX} {fragment}")

        if self._session_started:
            line = terminal_line(self._stop_cause)
            if line is not None:
                self._sink.append_line(f"{PREFIX} {line}")
            logger.info(
                "monitor_ended",
                cause=self._stop_cause.value if self._stop_cause else None,
            )

        self._stop_cause = None
        self._session_started = False
        self._abort_requested = False
        self._read_task = None
        self._decoder = LineBufferedDecoder()
        self._set_state(MonitorState.IDLE)

    # --- Input ---

    async def send_key(self, event: KeyEvent) -> bool:
        """Forward one key press. Returns True when bytes were written."""
        if not self.accepts_keys:
            return False
        payload = map_key(event)
        if payload is None:
            return False
        return await self.send_text(payload)

    async def send_text(self, text: str) -> bool:
        """Write literal text to the device. Failures are logged, not raised."""
        writer = self._writer
        if not self._active or writer is None:
            return False
        try:
            await writer.write(text.encode(self._config.encoding, errors="replace"))
        except FanlinkError as exc:
            logger.warning("monitor_write_failed", error=str(exc))
            self._sink.append_line(f"> MONITOR FAIL: {exc}")
            return False
        return True
