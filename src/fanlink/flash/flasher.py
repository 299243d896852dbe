"""Flasher capability consumed by the flash orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from fanlink.sinks import LogSink
from fanlink.transport.serial_port import Connection

ProgressCallback = Callable[[int, int, int], None]


@dataclass(frozen=True)
class FlashFile:
    """One image handed to ``Flasher.write_flash``."""
    data: Any
    address: int


class Flasher(Protocol):
    """Chip flashing protocol bound to one open connection."""

    async def connect(self) -> str:
        """Handshake with the chip and return its name."""
        ...

    async def run_stub(self) -> None:
        ...

    async def write_flash(
        self,
        files: Sequence[FlashFile],
        *,
        flash_size: str = "keep",
        flash_mode: str = "keep",
        flash_freq: str = "keep",
        erase_all: bool = False,
        compress: bool = True,
        report_progress: ProgressCallback | None = None,
    ) -> None:
        ...

    async def after(self, reset_kind: str = "hard_reset") -> None:
        ...

    def encode(self, data: bytes) -> Any:
        """Convert raw image bytes to the form ``write_flash`` expects."""
        ...

    async def disconnect(self) -> None:
        """Close the transport the flasher runs over."""
        ...


FlasherFactory = Callable[[Connection, LogSink], Flasher]
