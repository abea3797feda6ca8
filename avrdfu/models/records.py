"""
Pydantic models and result types for DFU sessions.

Design principles:
- Decoded device data is immutable (frozen Pydantic models)
- Status and state fields are typed enums, never raw integers
- Operation outcomes are explicit DfuResult values rather than exceptions
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from avrdfu.exceptions import (
    AvrDfuError,
    DeviceNotConnectedError,
    DeviceNotSelectedError,
    InvalidFirmwareLengthError,
    NoResponseError,
    TransferFailedError,
    UnknownStateCodeError,
    UnknownStatusCodeError,
)
from avrdfu.protocol.constants import (
    STATE_DESCRIPTIONS,
    STATUS_DESCRIPTIONS,
    DfuStateCode,
    DfuStatusCode,
    ProtocolConstants,
)

T = TypeVar("T")


class DfuStatus(BaseModel):
    """
    Decoded DFU_GETSTATUS response.

    Example:
        >>> status = DfuStatus(
        ...     bStatus=DfuStatusCode.OK,
        ...     bwPollTimeOut=10,
        ...     bState=DfuStateCode.dfuIDLE,
        ...     iString=0,
        ... )
        >>> status.poll_timeout_seconds
        0.01
    """

    model_config = ConfigDict(frozen=True)

    bStatus: DfuStatusCode = Field(description="Result of the last operation")
    bwPollTimeOut: int = Field(
        ge=0,
        le=ProtocolConstants.MAX_POLL_TIMEOUT,
        description="Minimum wait in ms before the next DFU_GETSTATUS",
    )
    bState: DfuStateCode = Field(description="State the device enters next")
    iString: int = Field(ge=0, le=0xFF, description="Index of a status description string")

    @property
    def is_error(self) -> bool:
        """True if the device reports an error status or the dfuERROR state."""
        return self.bStatus != DfuStatusCode.OK or self.bState == DfuStateCode.dfuERROR

    @property
    def poll_timeout_seconds(self) -> float:
        """Poll timeout converted to seconds."""
        return self.bwPollTimeOut / 1000.0

    def describe(self) -> str:
        """One-line summary of status and state."""
        return (
            f"{self.bStatus.name}: {STATUS_DESCRIPTIONS[self.bStatus]} "
            f"[{self.bState.name}: {STATE_DESCRIPTIONS[self.bState]}]"
        )

    def __str__(self) -> str:
        return f"{self.bStatus.name}/{self.bState.name} (poll {self.bwPollTimeOut} ms)"


class DeviceStatus(BaseModel):
    """
    Snapshot of the session as last observed by a DfuClient.

    Updated on pair/connect, on every decoded status, and when the device
    handle is cleared.
    """

    model_config = ConfigDict(frozen=True)

    connected: bool = False
    status: DfuStatusCode = DfuStatusCode.OK
    state: DfuStateCode = DfuStateCode.appDETACH
    product_name: int | None = Field(default=None, ge=0, le=0xFF)


class ErrorKind(Enum):
    """Failure categories reported in a DfuResult."""

    DEVICE_NOT_SELECTED = auto()
    DEVICE_NOT_CONNECTED = auto()
    TRANSFER_FAILED = auto()
    NO_RESPONSE = auto()
    UNKNOWN_STATUS_CODE = auto()
    UNKNOWN_STATE_CODE = auto()
    INVALID_FIRMWARE_LENGTH = auto()


_ERROR_KINDS: tuple[tuple[type[AvrDfuError], ErrorKind], ...] = (
    (DeviceNotSelectedError, ErrorKind.DEVICE_NOT_SELECTED),
    (DeviceNotConnectedError, ErrorKind.DEVICE_NOT_CONNECTED),
    (NoResponseError, ErrorKind.NO_RESPONSE),
    (UnknownStatusCodeError, ErrorKind.UNKNOWN_STATUS_CODE),
    (UnknownStateCodeError, ErrorKind.UNKNOWN_STATE_CODE),
    (InvalidFirmwareLengthError, ErrorKind.INVALID_FIRMWARE_LENGTH),
    (TransferFailedError, ErrorKind.TRANSFER_FAILED),
)


def classify_error(error: AvrDfuError) -> ErrorKind:
    """Map an exception to its ErrorKind (TRANSFER_FAILED if unlisted)."""
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(error, exc_type):
            return kind
    return ErrorKind.TRANSFER_FAILED


@dataclass(frozen=True)
class DfuResult(Generic[T]):
    """
    Outcome of a DfuClient operation.

    Exactly one of ``value`` (on success) or ``error`` (on failure) is
    meaningful. Operations without a return value succeed with ``None``.

    Example:
        >>> result = await client.get_state()
        >>> if result.ok:
        ...     print(result.value.name)
        ... else:
        ...     print(result.error_kind, result.error)
    """

    value: T | None = None
    error: AvrDfuError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> DfuResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AvrDfuError) -> DfuResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.error is None:
            return None
        return classify_error(self.error)

    def unwrap(self) -> T | None:
        """
        Return the value, or raise the carried error.

        Raises:
            AvrDfuError: The failure this result carries.
        """
        if self.error is not None:
            raise self.error
        return self.value

    def __bool__(self) -> bool:
        return self.ok
