"""
Status and state decoding.

DFU_GETSTATUS response layout (6 bytes):

    [bStatus][bwPollTimeOut (24-bit little-endian)][bState][iString]

DFU_GETSTATE response layout (1 byte):

    [bState]

Undefined status or state bytes are decode errors; there is no default.
"""

from __future__ import annotations

from avrdfu.exceptions import NoResponseError, UnknownStateCodeError, UnknownStatusCodeError
from avrdfu.models.records import DfuStatus
from avrdfu.protocol.constants import (
    STATE_DESCRIPTIONS,
    STATUS_DESCRIPTIONS,
    DfuStateCode,
    DfuStatusCode,
    ProtocolConstants,
)


def to_status_code(value: int) -> DfuStatusCode:
    """
    Convert a raw bStatus byte.

    Raises:
        UnknownStatusCodeError: If the value is not a defined status.
    """
    try:
        return DfuStatusCode(value)
    except ValueError:
        raise UnknownStatusCodeError(value) from None


def to_state_code(value: int) -> DfuStateCode:
    """
    Convert a raw bState byte.

    Raises:
        UnknownStateCodeError: If the value is not a defined state.
    """
    try:
        return DfuStateCode(value)
    except ValueError:
        raise UnknownStateCodeError(value) from None


def decode_status(data: bytes) -> DfuStatus:
    """
    Decode a DFU_GETSTATUS response.

    Args:
        data: At least 6 response bytes; extra bytes are ignored.

    Returns:
        Decoded DfuStatus.

    Raises:
        NoResponseError: If fewer than 6 bytes were received.
        UnknownStatusCodeError: If bStatus is undefined.
        UnknownStateCodeError: If bState is undefined.

    Example:
        >>> decode_status(bytes([0x00, 0x0A, 0x00, 0x00, 0x02, 0x00]))
        DfuStatus(bStatus=<DfuStatusCode.OK: 0>, bwPollTimeOut=10, ...)
    """
    if len(data) < ProtocolConstants.STATUS_LENGTH:
        raise NoResponseError(
            "Incomplete status response",
            expected=ProtocolConstants.STATUS_LENGTH,
            received=len(data),
        )

    return DfuStatus(
        bStatus=to_status_code(data[0]),
        bwPollTimeOut=int.from_bytes(data[1:4], "little"),
        bState=to_state_code(data[4]),
        iString=data[5],
    )


def decode_state(data: bytes) -> DfuStateCode:
    """
    Decode a DFU_GETSTATE response.

    Raises:
        NoResponseError: If the response is empty.
        UnknownStateCodeError: If the state byte is undefined.
    """
    if len(data) < ProtocolConstants.STATE_LENGTH:
        raise NoResponseError(
            "Empty state response",
            expected=ProtocolConstants.STATE_LENGTH,
            received=len(data),
        )
    return to_state_code(data[0])


def describe_status(code: int) -> str:
    """
    Fixed description of a bStatus value.

    Raises:
        UnknownStatusCodeError: If the value is not a defined status.
    """
    return STATUS_DESCRIPTIONS[to_status_code(code)]


def describe_state(code: int) -> str:
    """
    Fixed description of a bState value.

    Raises:
        UnknownStateCodeError: If the value is not a defined state.
    """
    return STATE_DESCRIPTIONS[to_state_code(code)]
