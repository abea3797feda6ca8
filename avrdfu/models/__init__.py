"""
Data models for DFU sessions.

This module contains the Pydantic models and result types returned by
the DfuClient:

- DfuStatus (decoded DFU_GETSTATUS response)
- DeviceStatus (session snapshot)
- DfuResult and ErrorKind (explicit operation outcomes)
"""

from avrdfu.models.records import (
    DeviceStatus,
    DfuResult,
    DfuStatus,
    ErrorKind,
    classify_error,
)

__all__ = [
    # Records
    "DfuStatus",
    "DeviceStatus",
    # Results
    "DfuResult",
    "ErrorKind",
    "classify_error",
]
