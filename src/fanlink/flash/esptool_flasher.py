"""Flasher implementation on top of the esptool package.

esptool is synchronous and prints its own status to stdout. Each call runs
in a worker thread with stdout redirected into the LogSink.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import zlib
from typing import Any, Callable, Sequence

import serial
from esptool.cmds import detect_chip
from esptool.util import FatalError

from fanlink.exceptions import ProtocolError
from fanlink.flash.flasher import FlashFile, ProgressCallback
from fanlink.sinks import LogSink
from fanlink.transport.serial_port import Connection
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)

KEEP = "keep"
RESET_KINDS = ("hard_reset", "soft_reset", "no_reset")


class _SinkStream(io.TextIOBase):
    """Text stream forwarding writes to ``LogSink.append_raw``."""

    def __init__(self, sink: LogSink) -> None:
        self._sink = sink

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if text:
            self._sink.append_raw(text)
        return len(text)


class EsptoolFlasher:
    """Flash Espressif chips through an already-open Connection."""

    def __init__(self, connection: Connection, sink: LogSink, baud_rate: int | None = None) -> None:
        self._connection = connection
        self._sink = sink
        self._baud_rate = baud_rate or connection.config.baud_rate
        self._esp: Any = None

    @property
    def chip_name(self) -> str:
        if self._esp is None:
            return "unknown"
        return getattr(self._esp, "CHIP_NAME", "unknown")

    def _require_esp(self) -> Any:
        if self._esp is None:
            raise ProtocolError("Chip not connected. Call connect() first.")
        return self._esp

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def run() -> Any:
            # redirect_stdout swaps sys.stdout process-wide while esptool runs.
            with contextlib.redirect_stdout(_SinkStream(self._sink)):
                return func(*args, **kwargs)

        try:
            return await asyncio.to_thread(run)
        except ProtocolError:
            raise
        except (FatalError, serial.SerialException, OSError) as exc:
            raise ProtocolError(str(exc)) from exc
        except Exception as exc:
            raise ProtocolError(f"esptool failed: {exc}") from exc

    async def connect(self) -> str:
        logger.info("esptool_connecting", port=self._connection.port, baud=self._baud_rate)
        self._esp = await self._call(detect_chip, self._connection.raw, self._baud_rate)
        logger.info("esptool_connected", chip=self.chip_name)
        return self.chip_name

    async def run_stub(self) -> None:
        esp = self._require_esp()
        self._esp = await self._call(esp.run_stub)

    def encode(self, data: bytes) -> bytes:
        return bytes(data)

    async def write_flash(
        self,
        files: Sequence[FlashFile],
        *,
        flash_size: str = KEEP,
        flash_mode: str = KEEP,
        flash_freq: str = KEEP,
        erase_all: bool = False,
        compress: bool = True,
        report_progress: ProgressCallback | None = None,
    ) -> None:
        if (flash_size, flash_mode, flash_freq) != (KEEP, KEEP, KEEP):
            raise ProtocolError("Only 'keep' flash size/mode/frequency is supported")
        await self._call(self._write_files, list(files), erase_all, compress, report_progress)

    def _write_files(
        self,
        files: list[FlashFile],
        erase_all: bool,
        compress: bool,
        report_progress: ProgressCallback | None,
    ) -> None:
        esp = self._require_esp()
        if erase_all:
            esp.erase_flash()

        block_size = esp.FLASH_WRITE_SIZE
        for index, file in enumerate(files):
            image = bytes(file.data)
            image_size = len(image)
            if compress:
                blob = zlib.compress(image, 9)
                esp.flash_defl_begin(image_size, len(blob), file.address)
            else:
                blob = image
                esp.flash_begin(image_size, file.address)

            logger.debug(
                "esptool_write_begin",
                index=index,
                address=f"0x{file.address:08x}",
                size=image_size,
                transfer_size=len(blob),
            )
            sent = 0
            seq = 0
            while sent < len(blob):
                block = blob[sent:sent + block_size]
                if compress:
                    esp.flash_defl_block(block, seq)
                else:
                    esp.flash_block(block + b"\xff" * (block_size - len(block)), seq)
                sent += len(block)
                seq += 1
                if report_progress is not None:
                    report_progress(index, image_size * sent // len(blob), image_size)
            if report_progress is not None and not blob:
                report_progress(index, 0, 0)

        if esp.IS_STUB:
            # Stub only: finishing through the ROM loader starts user code.
            esp.flash_begin(0, 0)
            if compress:
                esp.flash_defl_finish(False)
            else:
                esp.flash_finish(False)

    async def after(self, reset_kind: str = "hard_reset") -> None:
        if reset_kind not in RESET_KINDS:
            raise ProtocolError(f"Unknown reset kind: {reset_kind}")
        esp = self._require_esp()
        if reset_kind == "hard_reset":
            await self._call(esp.hard_reset)
        elif reset_kind == "soft_reset":
            await self._call(esp.soft_reset, False)

    async def disconnect(self) -> None:
        self._esp = None
        await self._connection.close()


def esptool_flasher(connection: Connection, sink: LogSink) -> EsptoolFlasher:
    """Default FlasherFactory."""
    return EsptoolFlasher(connection, sink)
