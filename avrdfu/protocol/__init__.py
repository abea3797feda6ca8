"""
Protocol layer for DFU communication.

This module contains the byte-level protocol handling:
- DFU request codes, status/state codes and protocol constants
- The bootloader command catalog
- Firmware image construction

Status decoding lives in ``avrdfu.protocol.status`` and is imported
explicitly, since it produces the models from ``avrdfu.models``.
"""

from avrdfu.protocol.commands import (
    EMPTY,
    ERASE,
    READ_BOOT_ID1,
    READ_BOOT_ID2,
    READ_BOOTLOADER_VERSION,
    READ_COMMANDS,
    READ_FAMILY_CODE,
    READ_MANUFACTURER_CODE,
    READ_PRODUCT_NAME,
    READ_PRODUCT_REVISION,
    RESTART,
    Command,
    describe_read_command,
)
from avrdfu.protocol.constants import (
    DFU_SUFFIX,
    VENDOR_ID,
    CommandIdentifier,
    DfuRequest,
    DfuStateCode,
    DfuStatusCode,
    ProtocolConstants,
)
from avrdfu.protocol.image import build_image, image_length

__all__ = [
    # Constants
    "VENDOR_ID",
    "DFU_SUFFIX",
    "DfuRequest",
    "CommandIdentifier",
    "DfuStatusCode",
    "DfuStateCode",
    "ProtocolConstants",
    # Commands
    "Command",
    "EMPTY",
    "ERASE",
    "RESTART",
    "READ_BOOTLOADER_VERSION",
    "READ_BOOT_ID1",
    "READ_BOOT_ID2",
    "READ_MANUFACTURER_CODE",
    "READ_FAMILY_CODE",
    "READ_PRODUCT_NAME",
    "READ_PRODUCT_REVISION",
    "READ_COMMANDS",
    "describe_read_command",
    # Image
    "build_image",
    "image_length",
]
