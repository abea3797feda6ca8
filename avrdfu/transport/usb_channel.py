"""
USB device channel using pyusb.

This module provides the hardware channel implementation for talking to
DFU bootloaders through libusb. pyusb is blocking, so every call is run in
a worker thread with ``asyncio.to_thread`` and the event loop never blocks
on USB I/O.

Example:
    >>> provider = PyUsbDeviceProvider()
    >>> channel = await provider.request_device(0x03EB)
    >>> async with channel:
    ...     await channel.select_configuration(1)
    ...     await channel.claim_interface(0)
    ...     data = await channel.control_transfer_in(0x03, 0, 0, 6)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

import usb.core
import usb.util

from avrdfu.exceptions import DeviceNotSelectedError, TransportError
from avrdfu.protocol.constants import ProtocolConstants
from avrdfu.transport.abc import AbstractDeviceChannel, AbstractDeviceProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_TYPE_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)
REQUEST_TYPE_IN = usb.util.build_request_type(
    usb.util.CTRL_IN, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)


class PyUsbDeviceChannel(AbstractDeviceChannel):
    """
    Device channel backed by a ``usb.core.Device``.

    Attributes:
        name: "usb:<bus>:<address>" of the wrapped device.
        is_open: Whether open() has succeeded and close() has not been called.
    """

    def __init__(
        self,
        device: usb.core.Device,
        timeout_ms: int = ProtocolConstants.DEFAULT_TRANSFER_TIMEOUT_MS,
    ) -> None:
        """
        Initialize the channel.

        Args:
            device: pyusb device to wrap.
            timeout_ms: Control transfer timeout in milliseconds.
        """
        self._device = device
        self._timeout_ms = timeout_ms
        self._is_open = False
        self._claimed: set[int] = set()

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def name(self) -> str:
        return f"usb:{self._device.bus:03d}:{self._device.address:03d}"

    @property
    def vendor_id(self) -> int:
        return self._device.idVendor

    @property
    def product_id(self) -> int:
        return self._device.idProduct

    async def _call(self, description: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except usb.core.USBError as e:
            raise TransportError(f"{description} failed on {self.name}: {e}") from e

    def _ensure_open(self) -> None:
        if not self._is_open:
            raise TransportError(f"Device {self.name} is not open")

    async def open(self) -> None:
        """
        Open the device.

        pyusb opens the libusb handle lazily; this detaches a kernel driver
        bound to the DFU interface where the platform supports it.

        Raises:
            TransportError: If the kernel driver cannot be detached.
        """
        if self._is_open:
            return

        interface = ProtocolConstants.INTERFACE_NUMBER
        try:
            active = await self._call(
                "Kernel driver query", self._device.is_kernel_driver_active, interface
            )
        except NotImplementedError:
            # Not supported by the backend (Windows, macOS)
            active = False

        if active:
            logger.debug("Detaching kernel driver from %s interface %d", self.name, interface)
            await self._call(
                "Kernel driver detach", self._device.detach_kernel_driver, interface
            )

        self._is_open = True
        logger.debug("Opened %s", self.name)

    async def close(self) -> None:
        """Release claimed interfaces and libusb resources. Idempotent."""
        if not self._is_open:
            return

        for interface in sorted(self._claimed):
            try:
                await self._call(
                    "Interface release", usb.util.release_interface, self._device, interface
                )
            except TransportError as e:
                logger.debug("Ignoring release error on close: %s", e)
        self._claimed.clear()

        await asyncio.to_thread(usb.util.dispose_resources, self._device)
        self._is_open = False
        logger.debug("Closed %s", self.name)

    async def select_configuration(self, configuration_number: int) -> None:
        self._ensure_open()
        await self._call(
            "Configuration select", self._device.set_configuration, configuration_number
        )

    async def claim_interface(self, interface_number: int) -> None:
        self._ensure_open()
        await self._call(
            "Interface claim", usb.util.claim_interface, self._device, interface_number
        )
        self._claimed.add(interface_number)

    async def release_interface(self, interface_number: int) -> None:
        self._ensure_open()
        await self._call(
            "Interface release", usb.util.release_interface, self._device, interface_number
        )
        self._claimed.discard(interface_number)

    async def control_transfer_out(
        self,
        request: int,
        value: int,
        index: int,
        data: bytes,
    ) -> int:
        self._ensure_open()
        return await self._call(
            f"Control transfer out (bRequest 0x{request:02X})",
            self._device.ctrl_transfer,
            REQUEST_TYPE_OUT,
            request,
            value,
            index,
            bytes(data),
            self._timeout_ms,
        )

    async def control_transfer_in(
        self,
        request: int,
        value: int,
        index: int,
        length: int,
    ) -> bytes:
        self._ensure_open()
        data = await self._call(
            f"Control transfer in (bRequest 0x{request:02X})",
            self._device.ctrl_transfer,
            REQUEST_TYPE_IN,
            request,
            value,
            index,
            length,
            self._timeout_ms,
        )
        return bytes(data)

    def __repr__(self) -> str:
        status = "open" if self._is_open else "closed"
        return f"PyUsbDeviceChannel({self.name!r}, vid=0x{self.vendor_id:04X}, {status})"


class PyUsbDeviceProvider(AbstractDeviceProvider):
    """
    Finds bootloaders on the local USB bus.

    There is no device picker: ``request_device`` selects the first device
    matching the vendor filter, optionally narrowed to one product ID.
    """

    def __init__(
        self,
        product_id: int | None = None,
        timeout_ms: int = ProtocolConstants.DEFAULT_TRANSFER_TIMEOUT_MS,
    ) -> None:
        self._product_id = product_id
        self._timeout_ms = timeout_ms

    def _find(self, vendor_id: int) -> list[usb.core.Device]:
        match: dict[str, int] = {"idVendor": vendor_id}
        if self._product_id is not None:
            match["idProduct"] = self._product_id
        return list(usb.core.find(find_all=True, **match))

    async def get_devices(self, vendor_id: int) -> list[AbstractDeviceChannel]:
        try:
            devices = await asyncio.to_thread(self._find, vendor_id)
        except (usb.core.USBError, usb.core.NoBackendError) as e:
            raise TransportError(f"USB enumeration failed: {e}") from e

        logger.debug("Found %d device(s) with vendor ID 0x%04X", len(devices), vendor_id)
        return [PyUsbDeviceChannel(dev, self._timeout_ms) for dev in devices]

    async def request_device(self, vendor_id: int) -> AbstractDeviceChannel:
        channels = await self.get_devices(vendor_id)
        if not channels:
            raise DeviceNotSelectedError(f"No USB device with vendor ID 0x{vendor_id:04X} found")
        return channels[0]
