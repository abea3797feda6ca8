"""
DFU bootloader client.

This module provides the protocol engine for reprogramming Atmel AVR
parts through their USB DFU bootloader.

The client tracks the lifecycle of its device handle:
    UNPAIRED -> pair()/connect() -> CONNECTED
    CONNECTED -> restart()/disconnect() -> DISCONNECTED
    DISCONNECTED -> pair()/connect() -> CONNECTED

The bootloader's own DFU state machine (dfuIDLE, dfuDNLOAD_IDLE, dfuERROR,
...) is reported through get_status()/get_state() and is never enforced
here: a dfuERROR state is data for the caller, who may clear_status().

Every public operation returns a DfuResult and never raises for device or
protocol faults. Operations are serialised by one asyncio lock, so at most
one control transfer is in flight per client.

Example:
    >>> from avrdfu import DfuClient
    >>> from avrdfu.protocol import READ_PRODUCT_NAME
    >>> from avrdfu.transport import PyUsbDeviceProvider
    >>>
    >>> async def main(firmware: bytes):
    ...     async with DfuClient(PyUsbDeviceProvider()) as client:
    ...         if not await client.pair():
    ...             return
    ...         await client.erase()
    ...         result = await client.download(firmware)
    ...         print(result.value.describe())
    ...         await client.restart()
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from avrdfu.exceptions import (
    AvrDfuError,
    DeviceNotConnectedError,
    DeviceNotSelectedError,
    NoResponseError,
    TransferFailedError,
    TransportError,
)
from avrdfu.models.records import DeviceStatus, DfuResult, DfuStatus
from avrdfu.protocol.commands import EMPTY, ERASE, READ_PRODUCT_NAME, RESTART, Command
from avrdfu.protocol.constants import (
    VENDOR_ID,
    DfuRequest,
    DfuStateCode,
    ProtocolConstants,
)
from avrdfu.protocol.image import build_image
from avrdfu.protocol.status import decode_state, decode_status

if TYPE_CHECKING:
    from avrdfu.transport.abc import AbstractDeviceChannel, AbstractDeviceProvider

# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

StatusListener = Callable[[DfuStatus], None]


class ClientState(Enum):
    """Device handle lifecycle states."""

    UNPAIRED = auto()
    """No device has been opened yet."""

    CONNECTED = auto()
    """A device is open, configured and its DFU interface claimed."""

    DISCONNECTED = auto()
    """The handle was cleared by restart() or disconnect()."""


class DfuClient:
    """
    Protocol engine for an Atmel DFU bootloader session.

    The client owns at most one device channel at a time. It is created by
    pair()/connect() and cleared by restart()/disconnect().

    Attributes:
        state: Current handle lifecycle state.
        channel: The open device channel, or None.
        device_status: Snapshot of the last observed device status.
    """

    def __init__(
        self,
        provider: AbstractDeviceProvider,
        *,
        interface_number: int = ProtocolConstants.INTERFACE_NUMBER,
        configuration_number: int = ProtocolConstants.CONFIGURATION_NUMBER,
        vendor_id: int = VENDOR_ID,
        honor_poll_timeout: bool = True,
    ) -> None:
        """
        Initialize the client.

        Args:
            provider: Source of device channels.
            interface_number: DFU interface to claim (also wIndex).
            configuration_number: Configuration selected on open.
            vendor_id: Vendor filter used when selecting devices.
            honor_poll_timeout: Wait for the bootloader's bwPollTimeOut
                between consecutive DFU_GETSTATUS requests.
        """
        self._provider = provider
        self._interface_number = interface_number
        self._configuration_number = configuration_number
        self._vendor_id = vendor_id
        self._honor_poll_timeout = honor_poll_timeout

        self._channel: AbstractDeviceChannel | None = None
        self._state = ClientState.UNPAIRED
        self._device_status = DeviceStatus()
        self._listeners: list[StatusListener] = []
        self._lock = asyncio.Lock()
        self._next_poll_at: float | None = None

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._channel is not None

    @property
    def channel(self) -> AbstractDeviceChannel | None:
        return self._channel

    @property
    def device_status(self) -> DeviceStatus:
        return self._device_status

    # ===== Status listeners =====

    def add_status_listener(self, listener: StatusListener) -> None:
        """
        Register a callback invoked with every status from get_status().

        Listeners run in registration order. A listener that raises is
        logged and skipped.
        """
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        """Unregister a status callback. Unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, status: DfuStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.warning("Status listener %r failed", listener, exc_info=True)

    def _update_device_status(self, **changes: Any) -> None:
        self._device_status = self._device_status.model_copy(update=changes)

    # ===== Public operations =====

    async def pair(self) -> DfuResult[None]:
        """
        Select a device matching the vendor filter and open it.

        Any previously open device is released first.

        Returns:
            Successful DfuResult if the device was opened; truthy on success.
        """
        return await self._run("Pairing", self._pair)

    async def connect(self) -> DfuResult[None]:
        """
        Open the first already-available device without a new selection.

        On success the product name field is read once and stored in
        device_status; failure of that read does not fail the connect.
        """
        return await self._run("Connecting", self._connect)

    async def disconnect(self) -> DfuResult[None]:
        """
        Release the interface and close the device without restarting it.

        Safe to call when no device is open.
        """
        return await self._run("Disconnecting", self._disconnect)

    async def download(self, firmware: bytes, start_address: int = 0) -> DfuResult[DfuStatus]:
        """
        Send a firmware image and poll the result once.

        Issues exactly one DFU_DNLOAD carrying the built image followed by
        one DFU_GETSTATUS. The target is not erased first; call erase()
        beforehand where the part requires it.

        Args:
            firmware: Raw firmware (1-65536 bytes).
            start_address: 16-bit flash start address.

        Returns:
            DfuResult carrying the status reported after the download.
        """
        return await self._run("Download", self._download, firmware, start_address)

    async def erase(self) -> DfuResult[None]:
        """Send the full chip erase command."""
        return await self._run("Erase", self._erase)

    async def read(self, command: Command) -> DfuResult[int]:
        """
        Read one bootloader field.

        Sequence: DFU_DNLOAD(command), DFU_GETSTATUS, DFU_UPLOAD(1 byte).

        Args:
            command: A read command such as READ_MANUFACTURER_CODE.

        Returns:
            DfuResult carrying the received byte.
        """
        return await self._run(f"Read {command.label}", self._read, command)

    async def get_state(self) -> DfuResult[DfuStateCode]:
        """Issue DFU_GETSTATE and decode the 1-byte response."""
        return await self._run("DFU_GETSTATE", self._get_state)

    async def get_status(self) -> DfuResult[DfuStatus]:
        """
        Issue DFU_GETSTATUS, decode it and notify status listeners.

        When honor_poll_timeout is set, waits until the previous status'
        bwPollTimeOut has elapsed before sending the request.
        """
        return await self._run("DFU_GETSTATUS", self._get_status)

    async def abort(self) -> DfuResult[None]:
        """Send DFU_ABORT with an empty payload."""
        return await self._run("DFU_ABORT", self._abort)

    async def clear_status(self) -> DfuResult[None]:
        """Send DFU_CLRSTATUS, leaving the dfuERROR state."""
        return await self._run("DFU_CLRSTATUS", self._clear_status)

    async def detach(
        self,
        timeout_ms: int = ProtocolConstants.DEFAULT_DETACH_TIMEOUT_MS,
    ) -> DfuResult[None]:
        """Send DFU_DETACH with wValue set to the detach timeout."""
        return await self._run("DFU_DETACH", self._detach, timeout_ms)

    async def restart(self) -> DfuResult[None]:
        """
        Start the application and clear the device handle.

        Sends the restart command then the empty command. The handle is
        cleared even if sending fails; later operations fail with
        DeviceNotConnectedError until pair()/connect() is called again.
        """
        return await self._run("Restart", self._restart)

    async def flash(
        self,
        firmware: bytes,
        *,
        start_address: int = 0,
        erase: bool = True,
        restart: bool = True,
    ) -> DfuResult[DfuStatus]:
        """
        Erase, download and restart in one serialised operation.

        Stops at the first failing step. A status reporting an error after
        the download fails the operation with TransferFailedError carrying
        that status, and the device is not restarted.

        Returns:
            DfuResult carrying the status reported after the download.
        """
        return await self._run("Flash", self._flash, firmware, start_address, erase, restart)

    # ===== Operation bodies (called with the lock held) =====

    async def _run(
        self,
        description: str,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> DfuResult[T]:
        async with self._lock:
            try:
                value = await operation(*args)
            except AvrDfuError as e:
                logger.error("%s failed: %s", description, e)
                return DfuResult.failure(e)
            return DfuResult.success(value)

    async def _pair(self) -> None:
        await self._drop_channel()
        logger.info("Requesting USB devices...")
        try:
            channel = await self._provider.request_device(self._vendor_id)
        except TransportError as e:
            raise TransferFailedError("Device request failed", cause=e) from e
        await self._open(channel)

    async def _connect(self) -> None:
        await self._drop_channel()
        logger.info("Requesting paired USB device...")
        try:
            channels = await self._provider.get_devices(self._vendor_id)
        except TransportError as e:
            raise TransferFailedError("Device enumeration failed", cause=e) from e
        await self._open(channels[0] if channels else None)

        try:
            product_name = await self._read(READ_PRODUCT_NAME)
        except AvrDfuError as e:
            logger.warning("Could not read product name: %s", e)
        else:
            self._update_device_status(product_name=product_name)

    async def _open(self, channel: AbstractDeviceChannel | None) -> None:
        if channel is None:
            raise DeviceNotSelectedError()

        logger.info("Connecting to device %s...", channel.name)
        try:
            await channel.open()
            await channel.select_configuration(self._configuration_number)
            await channel.claim_interface(self._interface_number)
        except TransportError as e:
            await self._close_channel(channel)
            raise TransferFailedError(f"Error connecting to {channel.name}", cause=e) from e

        self._channel = channel
        self._state = ClientState.CONNECTED
        self._next_poll_at = None
        self._update_device_status(connected=True)
        logger.info("Device connected")

    async def _disconnect(self) -> None:
        channel = self._channel
        if channel is None:
            return

        logger.info("Disconnecting from %s", channel.name)
        self._clear_channel()
        try:
            await channel.release_interface(self._interface_number)
        except TransportError as e:
            logger.warning("Interface release failed: %s", e)
        await self._close_channel(channel)

    async def _download(self, firmware: bytes, start_address: int) -> DfuStatus:
        logger.info("Start firmware upload")
        image = build_image(firmware, start_address)

        logger.info("Sending firmware (%d bytes)...", len(firmware))
        await self._send(DfuRequest.DFU_DNLOAD, image)
        status = await self._get_status()

        logger.info("Firmware upload completed: %s", status)
        return status

    async def _erase(self) -> None:
        logger.info("Sending full chip erase...")
        await self._send(DfuRequest.DFU_DNLOAD, ERASE.data)

    async def _read(self, command: Command) -> int:
        logger.info("Reading %s...", command.label)
        await self._send(DfuRequest.DFU_DNLOAD, command.data)
        await self._get_status()

        data = await self._receive(DfuRequest.DFU_UPLOAD, ProtocolConstants.UPLOAD_FIELD_LENGTH)
        if not data:
            raise NoResponseError(
                f"No value received for {command.label}",
                expected=ProtocolConstants.UPLOAD_FIELD_LENGTH,
                received=0,
            )

        logger.info("%s: 0x%02X", command.label, data[0])
        return data[0]

    async def _get_state(self) -> DfuStateCode:
        logger.info("Sending DFU_GETSTATE command...")
        data = await self._receive(DfuRequest.DFU_GETSTATE, ProtocolConstants.STATE_LENGTH)
        state = decode_state(data)
        self._update_device_status(state=state)
        return state

    async def _get_status(self) -> DfuStatus:
        loop = asyncio.get_running_loop()
        if self._honor_poll_timeout and self._next_poll_at is not None:
            delay = self._next_poll_at - loop.time()
            if delay > 0:
                logger.debug("Waiting %.3fs before polling status", delay)
                await asyncio.sleep(delay)

        logger.info("Sending DFU_GETSTATUS command...")
        data = await self._receive(DfuRequest.DFU_GETSTATUS, ProtocolConstants.STATUS_LENGTH)
        status = decode_status(data)
        self._next_poll_at = loop.time() + status.poll_timeout_seconds

        if status.is_error:
            logger.warning("Device reported %s", status.describe())
        else:
            logger.debug("Device status: %s", status)

        self._update_device_status(status=status.bStatus, state=status.bState)
        self._notify(status)
        return status

    async def _abort(self) -> None:
        logger.info("Sending DFU_ABORT command...")
        await self._send(DfuRequest.DFU_ABORT, EMPTY.data)

    async def _clear_status(self) -> None:
        logger.info("Sending DFU_CLRSTATUS command...")
        await self._send(DfuRequest.DFU_CLRSTATUS, EMPTY.data)

    async def _detach(self, timeout_ms: int) -> None:
        logger.info("Sending DFU_DETACH command (timeout %d ms)...", timeout_ms)
        await self._send(DfuRequest.DFU_DETACH, EMPTY.data, value=timeout_ms)

    async def _restart(self) -> None:
        channel = self._require_channel()
        logger.info("Restarting device...")
        try:
            await self._send(DfuRequest.DFU_DNLOAD, RESTART.data)
            await self._send(DfuRequest.DFU_DNLOAD, EMPTY.data)
        finally:
            self._clear_channel()
            await self._close_channel(channel)

    async def _flash(
        self,
        firmware: bytes,
        start_address: int,
        erase: bool,
        restart: bool,
    ) -> DfuStatus:
        if erase:
            await self._erase()

        status = await self._download(firmware, start_address)
        if status.is_error:
            raise TransferFailedError(f"Bootloader rejected firmware: {status.describe()}", status=status)

        if restart:
            await self._restart()
        return status

    # ===== Transfers =====

    async def _send(self, request: DfuRequest, data: bytes, value: int = 0) -> int:
        channel = self._require_channel()
        logger.debug("%s wValue=%d data=%s", request.name, value, data.hex())
        try:
            return await channel.control_transfer_out(
                int(request), value, self._interface_number, data
            )
        except TransportError as e:
            raise TransferFailedError(f"Error sending {request.name}", cause=e) from e

    async def _receive(self, request: DfuRequest, length: int) -> bytes:
        channel = self._require_channel()
        try:
            data = await channel.control_transfer_in(
                int(request), 0, self._interface_number, length
            )
        except TransportError as e:
            raise TransferFailedError(f"Error receiving {request.name}", cause=e) from e

        logger.debug("%s response=%s", request.name, data.hex())
        return data

    # ===== Handle management =====

    def _require_channel(self) -> AbstractDeviceChannel:
        if self._channel is None:
            raise DeviceNotConnectedError()
        return self._channel

    def _clear_channel(self) -> None:
        self._channel = None
        self._state = ClientState.DISCONNECTED
        self._next_poll_at = None
        self._update_device_status(connected=False)

    async def _drop_channel(self) -> None:
        channel = self._channel
        if channel is not None:
            logger.debug("Releasing previous device %s", channel.name)
            self._clear_channel()
            await self._close_channel(channel)

    async def _close_channel(self, channel: AbstractDeviceChannel) -> None:
        try:
            await channel.close()
        except TransportError as e:
            logger.debug("Ignoring close error on %s: %s", channel.name, e)

    async def __aenter__(self) -> DfuClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - release the device if still open."""
        if self._channel is not None:
            await self.disconnect()

    def __repr__(self) -> str:
        name = self._channel.name if self._channel else "None"
        return f"DfuClient(state={self._state.name}, device={name})"
