"""
Device channel layer for DFU communication.

This package provides channel implementations for talking to DFU
bootloaders over USB.

Available channels:
- PyUsbDeviceChannel / PyUsbDeviceProvider: libusb access using pyusb
- MockDeviceChannel / MockDeviceProvider: Mock channel for testing without hardware

Example:
    >>> from avrdfu.transport import PyUsbDeviceProvider
    >>> provider = PyUsbDeviceProvider()
    >>> channel = await provider.request_device(0x03EB)

Testing Example:
    >>> from avrdfu.transport import MockDeviceChannel
    >>> mock = MockDeviceChannel()
    >>> mock.add_response(bytes([0x02]))  # dfuIDLE
"""

from avrdfu.transport.abc import AbstractDeviceChannel, AbstractDeviceProvider
from avrdfu.transport.mock import MockDeviceChannel, MockDeviceProvider, Transfer
from avrdfu.transport.usb_channel import PyUsbDeviceChannel, PyUsbDeviceProvider

__all__ = [
    "AbstractDeviceChannel",
    "AbstractDeviceProvider",
    "MockDeviceChannel",
    "MockDeviceProvider",
    "Transfer",
    "PyUsbDeviceChannel",
    "PyUsbDeviceProvider",
]
