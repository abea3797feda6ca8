"""
DFU request codes, bootloader command identifiers and protocol constants.

Covers the USB DFU 1.1 class requests together with the Atmel (vendor ID
0x03EB) FLIP bootloader command set used on AVR parts.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final

VENDOR_ID: Final[int] = 0x03EB
"""Atmel USB vendor ID; device selection is restricted to it."""


class DfuRequest(IntEnum):
    """
    DFU class-specific bRequest codes.

    All requests are class requests addressed to the DFU interface.
    """

    DFU_DETACH = 0x00
    """Leave runtime mode (wValue carries the detach timeout)."""

    DFU_DNLOAD = 0x01
    """Host-to-device data block."""

    DFU_UPLOAD = 0x02
    """Device-to-host data block."""

    DFU_GETSTATUS = 0x03
    """Read the 6-byte status response."""

    DFU_CLRSTATUS = 0x04
    """Clear an error status and return to dfuIDLE."""

    DFU_GETSTATE = 0x05
    """Read the 1-byte state response."""

    DFU_ABORT = 0x06
    """Abort the current transfer and return to dfuIDLE."""


class CommandIdentifier(IntEnum):
    """First byte of every bootloader command carried in a DFU_DNLOAD."""

    PROGRAM_START = 0x01
    DISPLAY_DATA = 0x03
    WRITE_COMMAND = 0x04
    READ_COMMAND = 0x05
    CHANGE_BASE_ADDRESS = 0x06


class DfuStatusCode(IntEnum):
    """bStatus values reported in the DFU_GETSTATUS response."""

    OK = 0x00
    errTARGET = 0x01
    errFILE = 0x02
    errWRITE = 0x03
    errERASE = 0x04
    errCHECK_ERASED = 0x05
    errPROG = 0x06
    errVERIFY = 0x07
    errADDRESS = 0x08
    errNOTDONE = 0x09
    errFIRMWARE = 0x0A
    errVENDOR = 0x0B
    errUSBR = 0x0C
    errPOR = 0x0D
    errUNKNOWN = 0x0E
    errSTALLEDPKT = 0x0F


class DfuStateCode(IntEnum):
    """bState values reported by DFU_GETSTATUS and DFU_GETSTATE."""

    appIDLE = 0x00
    appDETACH = 0x01
    dfuIDLE = 0x02
    dfuDNLOAD_SYNC = 0x03
    dfuDNBUSY = 0x04
    dfuDNLOAD_IDLE = 0x05
    dfuMANIFEST_SYNC = 0x06
    dfuMANIFEST = 0x07
    dfuMANIFEST_WAITRESET = 0x08
    dfuUPLOAD_IDLE = 0x09
    dfuERROR = 0x0A


class ProtocolConstants:
    """
    DFU protocol constants.

    Contains USB addressing, response sizes, image layout and timing values
    used throughout the protocol implementation.
    """

    # ===== USB Addressing =====

    INTERFACE_NUMBER: Final[int] = 0
    """DFU interface claimed on the bootloader."""

    CONFIGURATION_NUMBER: Final[int] = 1
    """Configuration selected before claiming the interface."""

    # ===== Response Sizes =====

    STATUS_LENGTH: Final[int] = 6
    """DFU_GETSTATUS response: bStatus, 3-byte poll timeout, bState, iString."""

    STATE_LENGTH: Final[int] = 1
    """DFU_GETSTATE response."""

    UPLOAD_FIELD_LENGTH: Final[int] = 1
    """DFU_UPLOAD length used to fetch a single read-field value."""

    # ===== Image Layout =====

    HEADER_SIZE: Final[int] = 32
    """Image header; only the first 6 bytes are meaningful."""

    SUFFIX_SIZE: Final[int] = 16
    """Trailing DFU suffix."""

    MAX_FIRMWARE_LENGTH: Final[int] = 0x10000
    """Largest payload the 16-bit ``length - 1`` header field can describe."""

    MAX_POLL_TIMEOUT: Final[int] = 0xFFFFFF
    """bwPollTimeOut is a 24-bit millisecond count."""

    # ===== Timing Constants =====

    DEFAULT_TRANSFER_TIMEOUT_MS: Final[int] = 5000
    """Control transfer timeout handed to libusb."""

    DEFAULT_DETACH_TIMEOUT_MS: Final[int] = 1000
    """wValue sent with DFU_DETACH."""


DFU_SUFFIX: Final[bytes] = bytes([
    0x00, 0x00, 0x00, 0x00,  # bcdDevice, idProduct
    0x10, 0x44, 0x46, 0x55,  # idVendor, "DFU" signature
    0x01, 0x10, 0xFF, 0xFF,  # bcdDFU, CRC placeholder
    0xFF, 0xFF, 0xFF, 0xFF,
])
"""Fixed suffix appended to every firmware image."""


STATUS_DESCRIPTIONS: Final[dict[DfuStatusCode, str]] = {
    DfuStatusCode.OK: "No error condition is present.",
    DfuStatusCode.errTARGET: "File is not targeted for use by this device.",
    DfuStatusCode.errFILE: "File is for this device but fails some vendor-specific verification test.",
    DfuStatusCode.errWRITE: "Device is unable to write memory.",
    DfuStatusCode.errERASE: "Memory erase function failed.",
    DfuStatusCode.errCHECK_ERASED: "Memory erase check failed.",
    DfuStatusCode.errPROG: "Program memory function failed.",
    DfuStatusCode.errVERIFY: "Programmed memory failed verification.",
    DfuStatusCode.errADDRESS: "Cannot program memory due to received address that is out of range.",
    DfuStatusCode.errNOTDONE: "Received DFU_DNLOAD with wLength = 0, but device does not think it has all of the data yet.",
    DfuStatusCode.errFIRMWARE: "Device's firmware is corrupt. It cannot return to run-time (non-DFU) operations.",
    DfuStatusCode.errVENDOR: "iString indicates a vendor-specific error.",
    DfuStatusCode.errUSBR: "Device detected unexpected USB reset signaling.",
    DfuStatusCode.errPOR: "Device detected unexpected power on reset.",
    DfuStatusCode.errUNKNOWN: "Something went wrong, but the device does not know what it was.",
    DfuStatusCode.errSTALLEDPKT: "Device stalled an unexpected request.",
}

STATE_DESCRIPTIONS: Final[dict[DfuStateCode, str]] = {
    DfuStateCode.appIDLE: "Device is running its normal application.",
    DfuStateCode.appDETACH: "Device has received DFU_DETACH and is waiting for a USB reset.",
    DfuStateCode.dfuIDLE: "Device is in DFU mode and waiting for requests.",
    DfuStateCode.dfuDNLOAD_SYNC: "Device has received a block and is waiting for DFU_GETSTATUS.",
    DfuStateCode.dfuDNBUSY: "Device is programming a control-write block into its memory.",
    DfuStateCode.dfuDNLOAD_IDLE: "Device is processing a download operation and expects DFU_DNLOAD requests.",
    DfuStateCode.dfuMANIFEST_SYNC: "Device has received the final block and is waiting for DFU_GETSTATUS to begin manifestation.",
    DfuStateCode.dfuMANIFEST: "Device is in the manifestation phase.",
    DfuStateCode.dfuMANIFEST_WAITRESET: "Device has programmed its memories and is waiting for a USB reset.",
    DfuStateCode.dfuUPLOAD_IDLE: "Device is processing an upload operation and expects DFU_UPLOAD requests.",
    DfuStateCode.dfuERROR: "An error has occurred. Awaiting the DFU_CLRSTATUS request.",
}
