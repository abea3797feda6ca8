"""
Firmware image builder.

Image layout (all offsets in bytes):

    0       program start opcode (0x01)
    1       0x00
    2-3     start address, big-endian
    4-5     firmware length - 1, big-endian
    6-31    zero padding
    32      raw firmware
    32+L    16-byte DFU suffix
"""

from __future__ import annotations

import struct

from avrdfu.exceptions import InvalidFirmwareLengthError
from avrdfu.protocol.constants import DFU_SUFFIX, CommandIdentifier, ProtocolConstants

_HEADER_FORMAT = ">BBHH"


def build_image(firmware: bytes, start_address: int = 0) -> bytes:
    """
    Assemble a flashable image from raw firmware.

    Args:
        firmware: Raw firmware bytes (1-65536 bytes).
        start_address: 16-bit flash address the payload is written to.

    Returns:
        ``32 + len(firmware) + 16`` bytes.

    Raises:
        InvalidFirmwareLengthError: If firmware is empty or too long.
        ValueError: If start_address does not fit in 16 bits.

    Example:
        >>> image = build_image(bytes([0xAA, 0xBB]))
        >>> len(image), image[4], image[5]
        (50, 0, 1)
    """
    length = len(firmware)
    if not 1 <= length <= ProtocolConstants.MAX_FIRMWARE_LENGTH:
        raise InvalidFirmwareLengthError(length)
    if not 0 <= start_address <= 0xFFFF:
        raise ValueError(f"Start address out of range: {start_address:#x}")

    image = bytearray(ProtocolConstants.HEADER_SIZE + length + ProtocolConstants.SUFFIX_SIZE)
    struct.pack_into(
        _HEADER_FORMAT,
        image,
        0,
        CommandIdentifier.PROGRAM_START,
        0x00,
        start_address,
        length - 1,
    )

    offset = ProtocolConstants.HEADER_SIZE
    image[offset:offset + length] = firmware
    image[offset + length:] = DFU_SUFFIX
    return bytes(image)


def image_length(firmware_length: int) -> int:
    """Total image size for a payload of ``firmware_length`` bytes."""
    return ProtocolConstants.HEADER_SIZE + firmware_length + ProtocolConstants.SUFFIX_SIZE
