"""Transport layer for the device's serial link."""

from fanlink.transport.base import MONITOR_BAUD_RATE, PortProvider, SerialConfig
from fanlink.transport.serial_port import (
    Connection,
    SerialByteReader,
    SerialPortProvider,
    SerialWriter,
    list_serial_ports,
)

__all__ = [
    "MONITOR_BAUD_RATE",
    "Connection",
    "PortProvider",
    "SerialByteReader",
    "SerialConfig",
    "SerialPortProvider",
    "SerialWriter",
    "list_serial_ports",
]
