"""Exception hierarchy for serial sessions and firmware flashing."""

from __future__ import annotations


class FanlinkError(Exception):
    """Base exception for all fanlink errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CapabilityUnavailable(FanlinkError):
    """No serial support is available on this host."""


class TransportError(FanlinkError):
    """Error in the serial transport layer."""


class PortSelectionCancelled(TransportError):
    """The user declined to pick a serial port, or none was found."""


class PortUnavailable(TransportError):
    """The selected serial port does not exist (anymore)."""


class PortBusy(TransportError):
    """The selected serial port is held by another process."""


class PortUnreadable(TransportError):
    """The selected serial port could not be opened or read."""


class DeviceDisconnected(PortUnreadable):
    """The device vanished while the port was open."""


class PermissionDenied(TransportError):
    """Access to the serial port was refused by the OS."""


class StreamDecodingUnsupported(FanlinkError):
    """The configured text encoding is not available."""


class CloseError(TransportError):
    """Closing a serial port failed. Always non-fatal."""


class FlashError(FanlinkError):
    """Base exception for firmware flashing failures."""


class NetworkFetchFailed(FlashError):
    """A firmware binary could not be fetched."""

    def __init__(self, path: str, status_code: int | None = None, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        detail = f"{status_code} {reason}".strip() if status_code is not None else reason
        super().__init__(f"Failed to fetch {path}: {detail}", status_code=status_code)


class ProtocolError(FlashError):
    """The flasher failed while talking to the chip."""
