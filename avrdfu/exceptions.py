"""
Exception hierarchy for avrdfu.

All exceptions inherit from AvrDfuError, providing a clean hierarchy
for error handling:

1. Session errors (no device selected, device gone) are distinct from
   transfer errors raised by the USB channel
2. Decode errors carry the offending byte value for debugging
3. Image errors carry the rejected firmware length

The pure protocol functions raise these exceptions directly. The DfuClient
catches them at each operation boundary and returns them inside a DfuResult.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from avrdfu.models.records import DfuStatus


class AvrDfuError(Exception):
    """
    Base exception for all avrdfu errors.

    All library-specific exceptions inherit from this class, allowing
    callers to catch all avrdfu errors with a single except clause.
    """

    pass


class DeviceNotSelectedError(AvrDfuError):
    """
    No device has been selected.

    Raised when pairing or connecting finds no matching device, or when
    the device selected for opening is absent.
    """

    def __init__(self, message: str = "No device selected") -> None:
        super().__init__(message)


class DeviceNotConnectedError(AvrDfuError):
    """
    No open device handle.

    Raised by every transfer issued before pair()/connect() succeeded or
    after restart()/disconnect() cleared the handle.
    """

    def __init__(self, message: str = "No device connected") -> None:
        super().__init__(message)


class TransportError(AvrDfuError):
    """
    Channel-level error.

    Raised by device channels for low-level issues:
    - Device cannot be opened or claimed
    - Control transfer stalled or timed out
    - libusb backend errors
    """

    pass


class TransferFailedError(AvrDfuError):
    """
    A DFU exchange failed.

    Wraps the underlying cause (usually a TransportError). When the
    bootloader itself reported an error state, ``status`` carries the
    decoded status that caused the failure.
    """

    def __init__(
        self,
        message: str = "Transfer failed",
        *,
        cause: BaseException | None = None,
        status: DfuStatus | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


class NoResponseError(AvrDfuError):
    """
    The device returned no data, or fewer bytes than the response needs.
    """

    def __init__(
        self,
        message: str = "No response received",
        *,
        expected: int | None = None,
        received: int | None = None,
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.received = received

    def __str__(self) -> str:
        base = super().__str__()
        if self.expected is not None and self.received is not None:
            return f"{base} (expected {self.expected} bytes, got {self.received})"
        return base


class UnknownCodeError(AvrDfuError, ValueError):
    """
    A status or state byte that is not defined by the protocol.
    """

    kind = "code"

    def __init__(self, value: int, message: str | None = None) -> None:
        self.value = value
        super().__init__(message or f"Unknown {self.kind} 0x{value:02X}")


class UnknownStatusCodeError(UnknownCodeError):
    """bStatus value outside 0x00-0x0F."""

    kind = "status code"


class UnknownStateCodeError(UnknownCodeError):
    """bState value outside 0x00-0x0A."""

    kind = "state code"


class InvalidFirmwareLengthError(AvrDfuError, ValueError):
    """
    Firmware that cannot be described by the 16-bit image header.

    The header stores ``length - 1``, so valid lengths are 1..0x10000.
    """

    def __init__(self, length: int) -> None:
        self.length = length
        super().__init__(f"Invalid firmware length {length} (must be 1-65536 bytes)")
