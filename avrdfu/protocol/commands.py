"""
Bootloader command catalog.

Every command is a fixed byte sequence sent as the data stage of a
DFU_DNLOAD request. Action commands (erase, restart) use the write
command identifier; read commands select one field by group and index and
the value is then fetched with DFU_UPLOAD.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from avrdfu.protocol.constants import CommandIdentifier


@dataclass(frozen=True)
class Command:
    """
    An immutable bootloader command.

    Attributes:
        name: Stable identifier (e.g. "read_product_name").
        label: Human readable description used in logs.
        data: Bytes sent in the DFU_DNLOAD data stage.
    """

    name: str
    label: str
    data: bytes

    def __len__(self) -> int:
        return len(self.data)

    def __bytes__(self) -> bytes:
        return self.data


def _write(name: str, label: str, *payload: int) -> Command:
    return Command(name, label, bytes([CommandIdentifier.WRITE_COMMAND, *payload]))


def _read(name: str, label: str, group: int, index: int) -> Command:
    return Command(name, label, bytes([CommandIdentifier.READ_COMMAND, group, index]))


EMPTY: Final[Command] = Command("empty", "Empty command", b"")

ERASE: Final[Command] = _write("erase", "Full chip erase", 0x00, 0xFF, 0x00, 0x00, 0x00)

RESTART: Final[Command] = _write("restart", "Start application", 0x03, 0x01, 0x00, 0x00, 0x00)

# ===== Read Commands =====

READ_BOOTLOADER_VERSION: Final[Command] = _read(
    "read_bootloader_version", "Bootloader version", 0x00, 0x00
)
READ_BOOT_ID1: Final[Command] = _read("read_boot_id1", "Boot ID 1", 0x00, 0x01)
READ_BOOT_ID2: Final[Command] = _read("read_boot_id2", "Boot ID 2", 0x00, 0x02)
READ_MANUFACTURER_CODE: Final[Command] = _read(
    "read_manufacturer_code", "Manufacturer code", 0x01, 0x30
)
READ_FAMILY_CODE: Final[Command] = _read("read_family_code", "Family code", 0x01, 0x31)
READ_PRODUCT_NAME: Final[Command] = _read("read_product_name", "Product name", 0x01, 0x60)
READ_PRODUCT_REVISION: Final[Command] = _read(
    "read_product_revision", "Product revision", 0x01, 0x61
)

READ_COMMANDS: Final[tuple[Command, ...]] = (
    READ_BOOTLOADER_VERSION,
    READ_BOOT_ID1,
    READ_BOOT_ID2,
    READ_MANUFACTURER_CODE,
    READ_FAMILY_CODE,
    READ_PRODUCT_NAME,
    READ_PRODUCT_REVISION,
)

UNKNOWN_FIELD_DESCRIPTION: Final[str] = "Unknown field"

_READ_LABELS: Final[dict[bytes, str]] = {cmd.data: cmd.label for cmd in READ_COMMANDS}


def describe_read_command(command: Command | bytes) -> str:
    """
    Describe the field selected by a read command.

    Read commands form an open set, so unrecognised commands fall back to
    a generic description instead of raising.

    Args:
        command: A Command or its raw bytes.

    Returns:
        The field label, or "Unknown field".
    """
    data = command.data if isinstance(command, Command) else bytes(command)
    return _READ_LABELS.get(data, UNKNOWN_FIELD_DESCRIPTION)
