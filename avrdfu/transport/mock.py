"""
Mock device channel for testing.

This module provides a mock channel implementation that allows testing
the DfuClient without actual hardware. IN transfers are answered from
pre-configured responses; every transfer is recorded for verification.

Example:
    >>> from avrdfu.transport import MockDeviceChannel, MockDeviceProvider
    >>> from avrdfu import DfuClient
    >>>
    >>> channel = MockDeviceChannel()
    >>> channel.add_response(bytes([0x00, 0x0A, 0x00, 0x00, 0x02, 0x00]))
    >>>
    >>> client = DfuClient(MockDeviceProvider(channel))
    >>> await client.pair()
    >>> await client.get_status()
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable

from avrdfu.exceptions import DeviceNotSelectedError, TransportError
from avrdfu.protocol.constants import VENDOR_ID
from avrdfu.transport.abc import AbstractDeviceChannel, AbstractDeviceProvider


@dataclass(frozen=True)
class Transfer:
    """
    A recorded control transfer.

    Attributes:
        direction: "out" or "in".
        request: bRequest code.
        value: wValue.
        index: wIndex.
        data: Bytes sent (out) or returned (in).
        length: Requested wLength (in only).
    """

    direction: str
    request: int
    value: int
    index: int
    data: bytes = b""
    length: int = 0


class MockDeviceChannel(AbstractDeviceChannel):
    """
    Mock device channel for testing without hardware.

    Attributes:
        transfers: All recorded control transfers, in order.
        calls: Names of lifecycle calls (open, select_configuration, ...).

    Example:
        >>> channel = MockDeviceChannel()
        >>> channel.add_response(b"\\x02")  # dfuIDLE
        >>>
        >>> async with channel:
        ...     data = await channel.control_transfer_in(0x05, 0, 0, 1)
        ...     assert data == b"\\x02"
    """

    def __init__(self, name: str = "mock://dfu", vendor_id: int = VENDOR_ID) -> None:
        self._name = name
        self._vendor_id = vendor_id
        self._is_open = False
        self._responses: deque[bytes] = deque()
        self._transfers: list[Transfer] = []
        self._calls: list[str] = []
        self._response_callback: Callable[[Transfer], bytes | None] | None = None
        self._failures: dict[str, Exception] = {}

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def name(self) -> str:
        return self._name

    @property
    def vendor_id(self) -> int:
        return self._vendor_id

    @property
    def transfers(self) -> list[Transfer]:
        """Get all recorded transfers."""
        return self._transfers.copy()

    @property
    def requests(self) -> list[tuple[str, int]]:
        """(direction, bRequest) of every recorded transfer."""
        return [(t.direction, t.request) for t in self._transfers]

    @property
    def calls(self) -> list[str]:
        return self._calls.copy()

    def add_response(self, response: bytes) -> None:
        """
        Queue a response for the next IN transfer.

        Responses are returned in FIFO order and truncated to the
        requested length.
        """
        self._responses.append(response)

    def add_responses(self, *responses: bytes) -> None:
        for response in responses:
            self._responses.append(response)

    def set_response_callback(
        self,
        callback: Callable[[Transfer], bytes | None] | None,
    ) -> None:
        """
        Set a callback to generate IN responses dynamically.

        The callback receives the pending IN transfer (with empty data). If it
        returns None, the next queued response is used instead.
        """
        self._response_callback = callback

    def fail_on(self, operation: str, error: Exception | None = None) -> None:
        """
        Make an operation raise.

        Args:
            operation: One of "open", "select_configuration",
                "claim_interface", "release_interface", "out", "in".
            error: Exception to raise (default: TransportError).
        """
        self._failures[operation] = error or TransportError(f"Mock {operation} failure")

    def clear_failures(self) -> None:
        self._failures.clear()

    def clear(self) -> None:
        """Clear recorded transfers, calls and pending responses."""
        self._transfers.clear()
        self._calls.clear()
        self._responses.clear()

    def _check(self, operation: str, *, require_open: bool = True) -> None:
        self._calls.append(operation)
        if operation in self._failures:
            raise self._failures[operation]
        if require_open and not self._is_open:
            raise TransportError("Mock device not open")

    async def open(self) -> None:
        self._check("open", require_open=False)
        self._is_open = True

    async def close(self) -> None:
        self._calls.append("close")
        self._is_open = False

    async def select_configuration(self, configuration_number: int) -> None:
        self._check("select_configuration")

    async def claim_interface(self, interface_number: int) -> None:
        self._check("claim_interface")

    async def release_interface(self, interface_number: int) -> None:
        self._check("release_interface")

    async def control_transfer_out(
        self,
        request: int,
        value: int,
        index: int,
        data: bytes,
    ) -> int:
        self._check("out")
        self._transfers.append(Transfer("out", request, value, index, bytes(data)))
        return len(data)

    async def control_transfer_in(
        self,
        request: int,
        value: int,
        index: int,
        length: int,
    ) -> bytes:
        self._check("in")

        response: bytes | None = None
        if self._response_callback:
            response = self._response_callback(Transfer("in", request, value, index, b"", length))
        if response is None:
            response = self._responses.popleft() if self._responses else b""

        data = bytes(response[:length])
        self._transfers.append(Transfer("in", request, value, index, data, length))
        return data

    def assert_requests(self, expected: list[tuple[str, int]]) -> None:
        """
        Assert the exact sequence of (direction, bRequest) pairs.

        Raises:
            AssertionError: If the sequence doesn't match.
        """
        actual = self.requests
        if actual != expected:
            raise AssertionError(f"Transfer mismatch: expected {expected!r}, got {actual!r}")


class MockDeviceProvider(AbstractDeviceProvider):
    """
    Provider returning pre-built mock channels.

    ``request_device`` and ``get_devices`` only return channels whose
    vendor ID matches the filter.
    """

    def __init__(self, *channels: MockDeviceChannel) -> None:
        self._channels = list(channels)
        self.request_count = 0

    def add_channel(self, channel: MockDeviceChannel) -> None:
        self._channels.append(channel)

    async def get_devices(self, vendor_id: int) -> list[AbstractDeviceChannel]:
        return [ch for ch in self._channels if ch.vendor_id == vendor_id]

    async def request_device(self, vendor_id: int) -> AbstractDeviceChannel:
        self.request_count += 1
        channels = await self.get_devices(vendor_id)
        if not channels:
            raise DeviceNotSelectedError(f"No mock device with vendor ID 0x{vendor_id:04X}")
        return channels[0]
