"""pyserial-backed connection to the device.

The blocking pyserial calls are pushed to worker threads so the event loop
stays free for the monitor's read loop and keystroke forwarding.
"""

from __future__ import annotations

import asyncio
import errno
from typing import Any, Callable

import serial
from serial.tools.list_ports import comports

from fanlink.exceptions import (
    CloseError,
    DeviceDisconnected,
    PermissionDenied,
    PortBusy,
    PortSelectionCancelled,
    PortUnavailable,
    PortUnreadable,
    TransportError,
)
from fanlink.transport.base import SerialConfig
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)

_BUSY_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.EWOULDBLOCK}
_DENIED_ERRNOS = {errno.EACCES, errno.EPERM}
_MISSING_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO}


def classify_open_error(port: str, exc: Exception) -> TransportError:
    """Map a pyserial/OS open failure onto the transport taxonomy."""
    code = getattr(exc, "errno", None)
    text = str(exc)
    lowered = text.lower()
    if code in _BUSY_ERRNOS or "exclusively lock" in lowered or "resource busy" in lowered:
        return PortBusy(f"Port {port} is busy: {text}", status_code=code)
    if code in _DENIED_ERRNOS or "permission" in lowered or "access is denied" in lowered:
        return PermissionDenied(f"Access denied to {port}: {text}", status_code=code)
    if code in _MISSING_ERRNOS or "no such file" in lowered or "filenotfound" in lowered:
        return PortUnavailable(f"Port {port} not found: {text}", status_code=code)
    return PortUnreadable(f"Unable to open {port}: {text}", status_code=code)


class SerialByteReader:
    """Readable side of an open port.

    ``read`` polls with the port's short timeout so that ``cancel`` takes
    effect within one timeout period even where pyserial has no
    ``cancel_read``.
    """

    def __init__(self, handle: Any, read_size: int = 1024) -> None:
        self._handle = handle
        self._read_size = read_size
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def read(self) -> bytes | None:
        """Return the next non-empty chunk, or None once cancelled."""
        while not self._cancelled:
            try:
                data = await asyncio.to_thread(self._read_once)
            except serial.SerialException as exc:
                if self._cancelled:
                    return None
                raise DeviceDisconnected(f"Serial read failed: {exc}") from exc
            except OSError as exc:
                if self._cancelled:
                    return None
                raise PortUnreadable(f"Serial read failed: {exc}") from exc
            if data:
                return bytes(data)
        return None

    def _read_once(self) -> bytes:
        waiting = self._handle.in_waiting
        return self._handle.read(max(1, min(waiting, self._read_size)))

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        cancel_read = getattr(self._handle, "cancel_read", None)
        if cancel_read is None:
            return
        try:
            cancel_read()
        except (serial.SerialException, OSError, AttributeError) as exc:
            logger.debug("serial_cancel_read_failed", error=str(exc))


class SerialWriter:
    """Writable side of an open port."""

    def __init__(self, handle: Any) -> None:
        self._handle = handle
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def write(self, data: bytes) -> int:
        if self._released:
            raise TransportError("Writer has been released")
        try:
            written = await asyncio.to_thread(self._handle.write, data)
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Serial write failed: {exc}") from exc
        return written or 0

    def release(self) -> None:
        self._released = True


class Connection:
    """Exclusive owner of one serial port handle.

    Usage:
        async with Connection("/dev/ttyUSB0") as conn:
            chunk = await conn.readable.read()
    """

    def __init__(
        self,
        port: str,
        config: SerialConfig | None = None,
        serial_factory: Callable[..., Any] = serial.Serial,
    ) -> None:
        self._port = port
        self._config = config or SerialConfig()
        self._serial_factory = serial_factory
        self._handle: Any = None
        self._reader: SerialByteReader | None = None
        self._writer: SerialWriter | None = None
        self._closed = False

    @property
    def port(self) -> str:
        return self._port

    @property
    def config(self) -> SerialConfig:
        return self._config

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._closed

    @property
    def raw(self) -> Any:
        """The underlying pyserial handle."""
        self._require_open()
        return self._handle

    @property
    def readable(self) -> SerialByteReader:
        self._require_open()
        if self._reader is None:
            self._reader = SerialByteReader(self._handle, self._config.read_size)
        return self._reader

    @property
    def writable(self) -> SerialWriter | None:
        self._require_open()
        if self._config.read_only:
            return None
        if self._writer is None:
            self._writer = SerialWriter(self._handle)
        return self._writer

    def _require_open(self) -> None:
        if not self.is_open:
            raise TransportError(f"Port {self._port} is not open")

    async def open(self) -> None:
        """Open the port at the configured baud rate."""
        if self._closed:
            raise TransportError(f"Connection to {self._port} was already closed")
        if self._handle is not None:
            return
        logger.info("serial_opening", port=self._port, baud=self._config.baud_rate)
        try:
            self._handle = await asyncio.to_thread(self._open_handle)
        except (serial.SerialException, OSError, ValueError) as exc:
            raise classify_open_error(self._port, exc) from exc
        logger.info("serial_opened", port=self._port)

    def _open_handle(self) -> Any:
        return self._serial_factory(
            port=self._port,
            baudrate=self._config.baud_rate,
            timeout=self._config.read_timeout,
            exclusive=self._config.exclusive,
        )

    async def close(self) -> None:
        """Close the port. Only the first call does any work."""
        if self._closed:
            return
        self._closed = True
        handle, self._handle = self._handle, None
        if self._reader is not None:
            self._reader.cancel()
        if self._writer is not None:
            self._writer.release()
        if handle is None:
            return
        logger.info("serial_closing", port=self._port)
        try:
            await asyncio.to_thread(handle.close)
        except (serial.SerialException, OSError) as exc:
            raise CloseError(f"Failed to close {self._port}: {exc}") from exc
        logger.info("serial_closed", port=self._port)

    async def __aenter__(self) -> Connection:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def list_serial_ports() -> list[str]:
    """List serial port device names known to the OS."""
    return sorted(p.device for p in comports())


class SerialPortProvider:
    """Port-selection capability backed by pyserial enumeration.

    A configured port always wins. Otherwise a single detected port is used
    directly, and several are handed to ``chooser`` (usually a CLI prompt).
    """

    def __init__(
        self,
        port: str | None = None,
        chooser: Callable[[list[str]], str | None] | None = None,
        lister: Callable[[], list[str]] = list_serial_ports,
    ) -> None:
        self._port = port
        self._chooser = chooser
        self._lister = lister

    def list_ports(self) -> list[str]:
        return self._lister()

    async def request_port(self) -> str | None:
        if self._port:
            return self._port

        candidates = await asyncio.to_thread(self._lister)
        logger.debug("serial_candidates", ports=candidates)
        if not candidates:
            raise PortSelectionCancelled("No serial ports found")
        if len(candidates) == 1:
            return candidates[0]
        if self._chooser is None:
            raise PortSelectionCancelled(
                f"{len(candidates)} serial ports found; pick one explicitly"
            )
        return await asyncio.to_thread(self._chooser, candidates)
