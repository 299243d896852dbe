"""Built-in firmware catalog."""

from __future__ import annotations

from fanlink.flash.models import Component, FirmwareProfile

FIRMWARE_OPTIONS: tuple[FirmwareProfile, ...] = (
    FirmwareProfile(
        display_name="Fan Firmware v0.1 [ALPHA]",
        components=(
            Component(display_name="Bootloader", binary_id="bootloader.bin", address=0x00001000),
            Component(display_name="Partition Table", binary_id="partitions.bin", address=0x00008000),
            Component(display_name="Application", binary_id="firmware.bin", address=0x00010000),
            Component(display_name="SPIFFS", binary_id="spiffs.bin", address=0x00290000),
        ),
    ),
)


def select_profile(
    index: int | str | None,
    options: tuple[FirmwareProfile, ...] = FIRMWARE_OPTIONS,
) -> FirmwareProfile | None:
    """Return the profile at ``index``, falling back to the first one.

    Returns None only when ``options`` is empty.
    """
    if not options:
        return None
    try:
        position = int(index) if index is not None else 0
    except (TypeError, ValueError):
        return options[0]
    if 0 <= position < len(options):
        return options[position]
    return options[0]
