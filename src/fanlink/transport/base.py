"""Serial transport configuration and port-selection capability."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

MONITOR_BAUD_RATE = 115200


@dataclass(frozen=True)
class SerialConfig:
    """Settings used when opening a serial connection."""
    baud_rate: int = MONITOR_BAUD_RATE
    read_timeout: float = 0.1
    read_size: int = 1024
    encoding: str = "utf-8"
    read_only: bool = False
    exclusive: bool = True


@runtime_checkable
class PortProvider(Protocol):
    """Capability that hands out serial port names.

    ``request_port`` returns the chosen port, or ``None`` when the selection
    produced nothing. It raises ``PortSelectionCancelled`` when the user
    declines or no port exists.
    """

    async def request_port(self) -> str | None:
        ...
