"""Firmware profile and flash progress models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

MAX_FLASH_ADDRESS = 0xFFFFFFFF


class Component(BaseModel):
    """One binary image and the flash offset it is written to."""
    model_config = {"frozen": True}

    display_name: str = Field(description="Human-readable component name")
    binary_id: str = Field(description="Identifier passed to the byte source")
    address: int = Field(ge=0, le=MAX_FLASH_ADDRESS, description="Flash offset")


class FirmwareProfile(BaseModel):
    """A named firmware build made of ordered components."""
    model_config = {"frozen": True}

    display_name: str
    components: tuple[Component, ...] = ()


@dataclass(frozen=True)
class PreparedFile:
    """A fetched component ready for the flasher."""
    label: str
    path: str
    address: int
    byte_length: int
    payload: Any

    @property
    def address_hex(self) -> str:
        return f"0x{self.address:06x}"


class ProgressVector:
    """Aggregates per-file write progress into one overall percentage.

    Each slot only ever grows, so the overall percentage never goes backwards.
    ``update`` returns the new percentage only when it differs from the last
    one it returned.
    """

    def __init__(self, sizes: list[int]) -> None:
        self._sizes = list(sizes)
        self._written = [0] * len(sizes)
        self._total = sum(sizes)
        self._last_percent: int | None = None

    @property
    def total_bytes(self) -> int:
        return self._total

    @property
    def written(self) -> list[int]:
        return list(self._written)

    @property
    def percent(self) -> int:
        if not self._total:
            return 100
        return min(100, sum(self._written) * 100 // self._total)

    def update(self, index: int, written: int | None, total_for_file: int | None) -> int | None:
        if 0 <= index < len(self._written):
            limit = total_for_file if isinstance(total_for_file, int) and total_for_file > 0 else self._sizes[index]
            value = written if isinstance(written, int) and written >= 0 else 0
            if limit:
                value = min(value, limit)
            self._written[index] = max(self._written[index], value)

        percent = self.percent
        if percent == self._last_percent:
            return None
        self._last_percent = percent
        return percent
