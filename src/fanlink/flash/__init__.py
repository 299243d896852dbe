"""Firmware flashing: profiles, byte sources and orchestration."""

from fanlink.flash.flasher import FlashFile, Flasher, FlasherFactory
from fanlink.flash.models import Component, FirmwareProfile, PreparedFile, ProgressVector
from fanlink.flash.orchestrator import FlashOrchestrator
from fanlink.flash.sources import ByteSource, DirectoryByteSource, HttpByteSource, byte_source_for

__all__ = [
    "ByteSource",
    "Component",
    "DirectoryByteSource",
    "FirmwareProfile",
    "FlashFile",
    "FlashOrchestrator",
    "Flasher",
    "FlasherFactory",
    "HttpByteSource",
    "PreparedFile",
    "ProgressVector",
    "byte_source_for",
]
