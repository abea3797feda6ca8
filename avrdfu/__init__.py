"""
avrdfu - Python library for flashing Atmel AVR parts over their USB DFU bootloader.

This library provides an async protocol engine that drives an Atmel DFU
bootloader through erase, download, status polling and restart, using
pyusb for device access.

Example:
    >>> from avrdfu import DfuClient
    >>> from avrdfu.transport import PyUsbDeviceProvider
    >>>
    >>> async def main(firmware: bytes):
    ...     async with DfuClient(PyUsbDeviceProvider()) as client:
    ...         if await client.pair():
    ...             result = await client.flash(firmware)
    ...             print(result.ok, result.value)
"""

from avrdfu.client import ClientState, DfuClient
from avrdfu.exceptions import (
    AvrDfuError,
    DeviceNotConnectedError,
    DeviceNotSelectedError,
    InvalidFirmwareLengthError,
    NoResponseError,
    TransferFailedError,
    TransportError,
    UnknownCodeError,
    UnknownStateCodeError,
    UnknownStatusCodeError,
)
from avrdfu.models.records import DeviceStatus, DfuResult, DfuStatus, ErrorKind
from avrdfu.protocol.commands import Command
from avrdfu.protocol.constants import VENDOR_ID, DfuRequest, DfuStateCode, DfuStatusCode
from avrdfu.protocol.image import build_image
from avrdfu.protocol.status import decode_state, decode_status, describe_state, describe_status
from avrdfu.transport import AbstractDeviceChannel, AbstractDeviceProvider, PyUsbDeviceProvider

__version__ = "0.1.0"
__all__ = [
    # Client
    "DfuClient",
    "ClientState",
    # Models
    "DfuStatus",
    "DeviceStatus",
    "DfuResult",
    "ErrorKind",
    # Protocol
    "VENDOR_ID",
    "Command",
    "DfuRequest",
    "DfuStatusCode",
    "DfuStateCode",
    "build_image",
    "decode_status",
    "decode_state",
    "describe_status",
    "describe_state",
    # Exceptions
    "AvrDfuError",
    "DeviceNotSelectedError",
    "DeviceNotConnectedError",
    "TransportError",
    "TransferFailedError",
    "NoResponseError",
    "UnknownCodeError",
    "UnknownStatusCodeError",
    "UnknownStateCodeError",
    "InvalidFirmwareLengthError",
    # Transport
    "AbstractDeviceChannel",
    "AbstractDeviceProvider",
    "PyUsbDeviceProvider",
    # Version
    "__version__",
]
