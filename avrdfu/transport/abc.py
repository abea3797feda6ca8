"""
Abstract device channel interface for DFU communication.

This module defines the abstract base classes for USB access. Channels
wrap a single USB device; providers find devices to wrap.

The channel layer is responsible for:
- Opening/closing the device
- Selecting a configuration and claiming an interface
- Class control transfers addressed to the claimed interface

Implementations:
- PyUsbDeviceChannel: pyusb (libusb) based channel
- MockDeviceChannel: For testing without hardware
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType


class AbstractDeviceChannel(ABC):
    """
    Abstract base class for USB device channels.

    Channels provide async control transfers against one USB device. All
    channel implementations must inherit from this class and implement all
    abstract methods. Every request is a class request with an interface
    recipient, which is what DFU uses.

    Channels support async context manager protocol for safe resource
    management:

        async with channel:
            await channel.select_configuration(1)
            await channel.claim_interface(0)
            status = await channel.control_transfer_in(0x03, 0, 0, 6)

    Attributes:
        is_open: Whether the device is currently open.
        name: Identifier for the device (bus/address or a mock label).
        vendor_id: USB idVendor of the device.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """
        Check if the device is currently open.

        Returns:
            True if opened and ready for transfers, False otherwise.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Get the device identifier.

        Returns:
            Identifier string (e.g., "usb:001:004").
        """
        ...

    @property
    @abstractmethod
    def vendor_id(self) -> int:
        """USB vendor ID reported by the device descriptor."""
        ...

    @abstractmethod
    async def open(self) -> None:
        """
        Open the device.

        Raises:
            TransportError: If the device cannot be opened.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the device and release its resources.

        Safe to call multiple times (idempotent).
        """
        ...

    @abstractmethod
    async def select_configuration(self, configuration_number: int) -> None:
        """
        Select a device configuration.

        Raises:
            TransportError: If the device is not open or the request fails.
        """
        ...

    @abstractmethod
    async def claim_interface(self, interface_number: int) -> None:
        """
        Claim an interface for exclusive use.

        Raises:
            TransportError: If the device is not open or the claim fails.
        """
        ...

    @abstractmethod
    async def release_interface(self, interface_number: int) -> None:
        """
        Release a previously claimed interface.

        Raises:
            TransportError: If the release fails.
        """
        ...

    @abstractmethod
    async def control_transfer_out(
        self,
        request: int,
        value: int,
        index: int,
        data: bytes,
    ) -> int:
        """
        Send a class control transfer to an interface.

        Args:
            request: bRequest code.
            value: wValue.
            index: wIndex (the interface number).
            data: Data stage bytes (may be empty).

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If the device is not open or the transfer fails.
        """
        ...

    @abstractmethod
    async def control_transfer_in(
        self,
        request: int,
        value: int,
        index: int,
        length: int,
    ) -> bytes:
        """
        Receive a class control transfer from an interface.

        Args:
            request: bRequest code.
            value: wValue.
            index: wIndex (the interface number).
            length: Maximum number of bytes to receive (wLength).

        Returns:
            The received bytes (may be shorter than length).

        Raises:
            TransportError: If the device is not open or the transfer fails.
        """
        ...

    async def __aenter__(self) -> AbstractDeviceChannel:
        """Async context manager entry - opens the device."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the device."""
        await self.close()


class AbstractDeviceProvider(ABC):
    """
    Source of device channels.

    ``request_device`` corresponds to pairing a new device and
    ``get_devices`` to listing devices the host is already allowed to use.
    """

    @abstractmethod
    async def request_device(self, vendor_id: int) -> AbstractDeviceChannel:
        """
        Select a device matching the vendor filter.

        Raises:
            DeviceNotSelectedError: If no matching device is available.
            TransportError: If enumeration fails.
        """
        ...

    @abstractmethod
    async def get_devices(self, vendor_id: int) -> list[AbstractDeviceChannel]:
        """
        List available devices matching the vendor filter.

        Raises:
            TransportError: If enumeration fails.
        """
        ...
