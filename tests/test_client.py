"""Tests for DfuClient."""

import asyncio

import pytest
import pytest_asyncio

from avrdfu import ClientState, DfuClient
from avrdfu.exceptions import TransferFailedError
from avrdfu.models.records import ErrorKind
from avrdfu.protocol.commands import EMPTY, ERASE, READ_MANUFACTURER_CODE, READ_PRODUCT_NAME, RESTART
from avrdfu.protocol.constants import DfuRequest, DfuStateCode, DfuStatusCode
from avrdfu.protocol.image import build_image
from avrdfu.transport.mock import MockDeviceChannel, MockDeviceProvider

DNLOAD = ("out", DfuRequest.DFU_DNLOAD)
UPLOAD = ("in", DfuRequest.DFU_UPLOAD)
GETSTATUS = ("in", DfuRequest.DFU_GETSTATUS)
GETSTATE = ("in", DfuRequest.DFU_GETSTATE)

STATUS_IDLE = bytes([0x00, 0x00, 0x00, 0x00, 0x02, 0x00])
STATUS_ERROR = bytes([0x06, 0x00, 0x00, 0x00, 0x0A, 0x00])


def status_bytes(poll_ms: int, state: int = 0x02) -> bytes:
    return bytes([0x00]) + poll_ms.to_bytes(3, "little") + bytes([state, 0x00])


class CountingChannel(MockDeviceChannel):
    """Mock channel that tracks overlapping control transfers."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def _track(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1

    async def control_transfer_out(self, request, value, index, data):
        await self._track()
        return await super().control_transfer_out(request, value, index, data)

    async def control_transfer_in(self, request, value, index, length):
        await self._track()
        return await super().control_transfer_in(request, value, index, length)


@pytest.fixture
def channel():
    """Create a MockDeviceChannel instance."""
    return MockDeviceChannel()


@pytest.fixture
def provider(channel):
    """Create a provider offering the mock channel."""
    return MockDeviceProvider(channel)


@pytest.fixture
def client(provider):
    """Create a DfuClient that does not wait between status polls."""
    return DfuClient(provider, honor_poll_timeout=False)


@pytest_asyncio.fixture
async def paired(client, channel):
    """A client with the mock channel already paired."""
    result = await client.pair()
    assert result.ok
    channel.clear()
    return client


class TestPairing:
    """Tests for pair(), connect() and disconnect()."""

    def test_initial_state(self, client):
        """Test client starts unpaired with no device."""
        assert client.state == ClientState.UNPAIRED
        assert client.is_connected is False
        assert client.channel is None
        assert client.device_status.connected is False

    @pytest.mark.asyncio
    async def test_pair_success(self, client, channel, provider):
        """Test pairing opens, configures and claims the device."""
        result = await client.pair()

        assert result.ok
        assert bool(result) is True
        assert provider.request_count == 1
        assert channel.calls == ["open", "select_configuration", "claim_interface"]
        assert client.state == ClientState.CONNECTED
        assert client.channel is channel
        assert client.device_status.connected is True

    @pytest.mark.asyncio
    async def test_pair_filters_vendor(self):
        """Test devices from other vendors are never selected."""
        client = DfuClient(MockDeviceProvider(MockDeviceChannel(vendor_id=0x2341)))
        result = await client.pair()

        assert not result.ok
        assert result.error_kind == ErrorKind.DEVICE_NOT_SELECTED
        assert client.state == ClientState.UNPAIRED

    @pytest.mark.asyncio
    async def test_pair_open_failure_leaves_no_handle(self, client, channel):
        """Test a failed claim releases the device and leaves no handle."""
        channel.fail_on("claim_interface")

        result = await client.pair()

        assert result.error_kind == ErrorKind.TRANSFER_FAILED
        assert client.channel is None
        assert not channel.is_open
        assert "close" in channel.calls

        erase = await client.erase()
        assert erase.error_kind == ErrorKind.DEVICE_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_pair_again_releases_previous(self, paired, channel):
        """Test pairing again closes the previous handle first."""
        result = await paired.pair()

        assert result.ok
        assert channel.calls[0] == "close"
        assert channel.calls[1:] == ["open", "select_configuration", "claim_interface"]

    @pytest.mark.asyncio
    async def test_connect_reads_product_name(self, client, channel):
        """Test connect opens the first device and reads its product name."""
        channel.add_responses(STATUS_IDLE, bytes([0x2F]))

        result = await client.connect()

        assert result.ok
        assert client.is_connected
        channel.assert_requests([DNLOAD, GETSTATUS, UPLOAD])
        assert channel.transfers[0].data == READ_PRODUCT_NAME.data
        assert client.device_status.product_name == 0x2F

    @pytest.mark.asyncio
    async def test_connect_survives_product_name_failure(self, client, channel):
        """Test a failed product name read does not fail connect."""
        result = await client.connect()

        assert result.ok
        assert client.is_connected
        assert client.device_status.product_name is None

    @pytest.mark.asyncio
    async def test_connect_without_devices(self):
        """Test connect with nothing available reports no selection."""
        client = DfuClient(MockDeviceProvider())
        result = await client.connect()
        assert result.error_kind == ErrorKind.DEVICE_NOT_SELECTED

    @pytest.mark.asyncio
    async def test_disconnect(self, paired, channel):
        """Test disconnect releases the interface and closes the device."""
        result = await paired.disconnect()

        assert result.ok
        assert channel.calls == ["release_interface", "close"]
        assert paired.state == ClientState.DISCONNECTED
        assert paired.device_status.connected is False

    @pytest.mark.asyncio
    async def test_disconnect_when_unpaired_is_noop(self, client, channel):
        """Test disconnect without a device does nothing."""
        result = await client.disconnect()
        assert result.ok
        assert channel.calls == []

    @pytest.mark.asyncio
    async def test_context_manager(self, provider, channel):
        """Test async context manager releases the device."""
        async with DfuClient(provider) as client:
            assert (await client.pair()).ok
        assert not client.is_connected
        assert not channel.is_open


class TestOperations:
    """Tests for individual DFU operations."""

    @pytest.mark.asyncio
    async def test_operations_require_device(self, client):
        """Test every transfer fails before pairing."""
        for result in (
            await client.erase(),
            await client.abort(),
            await client.clear_status(),
            await client.get_state(),
            await client.get_status(),
            await client.read(READ_MANUFACTURER_CODE),
            await client.download(b"\x00"),
            await client.restart(),
        ):
            assert result.ok is False
            assert result.error_kind == ErrorKind.DEVICE_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_download(self, paired, channel):
        """Test download sends one image then polls status once."""
        firmware = bytes([0xAA, 0xBB])
        channel.add_response(STATUS_IDLE)

        result = await paired.download(firmware)

        assert result.ok
        assert result.value.bState == DfuStateCode.dfuIDLE
        channel.assert_requests([DNLOAD, GETSTATUS])
        sent = channel.transfers[0]
        assert sent.data == build_image(firmware)
        assert sent.value == 0
        assert sent.index == 0
        assert channel.transfers[1].length == 6

    @pytest.mark.asyncio
    async def test_download_does_not_erase(self, paired, channel):
        """Test download never sends the erase command."""
        channel.add_response(STATUS_IDLE)
        await paired.download(b"\x01")
        assert all(t.data != ERASE.data for t in channel.transfers)

    @pytest.mark.asyncio
    async def test_download_invalid_firmware(self, paired, channel):
        """Test invalid firmware fails before any transfer."""
        result = await paired.download(b"")

        assert result.error_kind == ErrorKind.INVALID_FIRMWARE_LENGTH
        assert channel.transfers == []
        assert paired.is_connected

    @pytest.mark.asyncio
    async def test_download_error_state_is_data(self, paired, channel):
        """Test a dfuERROR status is returned, not treated as a failure."""
        channel.add_response(STATUS_ERROR)

        result = await paired.download(b"\x01\x02")

        assert result.ok
        assert result.value.bStatus == DfuStatusCode.errPROG
        assert result.value.bState == DfuStateCode.dfuERROR

    @pytest.mark.asyncio
    async def test_erase(self, paired, channel):
        """Test erase sends the erase command via DFU_DNLOAD."""
        result = await paired.erase()

        assert result.ok
        channel.assert_requests([DNLOAD])
        assert channel.transfers[0].data == bytes([0x04, 0x00, 0xFF, 0x00, 0x00, 0x00])

    @pytest.mark.asyncio
    async def test_read(self, paired, channel):
        """Test read sends the command, polls status, then uploads one byte."""
        channel.add_responses(STATUS_IDLE, bytes([0x1E]))

        result = await paired.read(READ_MANUFACTURER_CODE)

        assert result.ok
        assert result.value == 0x1E
        channel.assert_requests([DNLOAD, GETSTATUS, UPLOAD])
        assert channel.transfers[0].data == bytes([0x05, 0x01, 0x30])
        assert channel.transfers[2].length == 1

    @pytest.mark.asyncio
    async def test_read_without_value(self, paired, channel):
        """Test an empty upload is reported as no response."""
        channel.add_response(STATUS_IDLE)
        result = await paired.read(READ_MANUFACTURER_CODE)
        assert result.error_kind == ErrorKind.NO_RESPONSE

    @pytest.mark.asyncio
    async def test_get_state(self, paired, channel):
        """Test get_state decodes the 1-byte response."""
        channel.add_response(b"\x05")

        result = await paired.get_state()

        assert result.value == DfuStateCode.dfuDNLOAD_IDLE
        channel.assert_requests([GETSTATE])
        assert channel.transfers[0].length == 1
        assert paired.device_status.state == DfuStateCode.dfuDNLOAD_IDLE

    @pytest.mark.asyncio
    async def test_get_state_unknown(self, paired, channel):
        """Test an undefined state is a decode failure."""
        channel.add_response(b"\xff")
        result = await paired.get_state()
        assert result.error_kind == ErrorKind.UNKNOWN_STATE_CODE

    @pytest.mark.asyncio
    async def test_get_state_no_response(self, paired):
        """Test an empty response is reported as no response."""
        result = await paired.get_state()
        assert result.error_kind == ErrorKind.NO_RESPONSE

    @pytest.mark.asyncio
    async def test_get_status(self, paired, channel):
        """Test get_status decodes and records the status."""
        channel.add_response(bytes([0x00, 0x0A, 0x00, 0x00, 0x02, 0x00]))

        result = await paired.get_status()

        assert result.value.bStatus == DfuStatusCode.OK
        assert result.value.bwPollTimeOut == 10
        assert result.value.bState == DfuStateCode.dfuIDLE
        assert result.value.iString == 0

    @pytest.mark.asyncio
    async def test_get_status_unknown(self, paired, channel):
        """Test an undefined status is a decode failure."""
        channel.add_response(bytes([0xFF, 0x00, 0x00, 0x00, 0x02, 0x00]))
        result = await paired.get_status()
        assert result.error_kind == ErrorKind.UNKNOWN_STATUS_CODE

    @pytest.mark.asyncio
    async def test_abort(self, paired, channel):
        """Test abort sends DFU_ABORT with an empty payload."""
        assert (await paired.abort()).ok
        channel.assert_requests([("out", DfuRequest.DFU_ABORT)])
        assert channel.transfers[0].data == b""

    @pytest.mark.asyncio
    async def test_clear_status(self, paired, channel):
        """Test clear_status sends DFU_CLRSTATUS with an empty payload."""
        assert (await paired.clear_status()).ok
        channel.assert_requests([("out", DfuRequest.DFU_CLRSTATUS)])
        assert channel.transfers[0].data == b""

    @pytest.mark.asyncio
    async def test_detach(self, paired, channel):
        """Test detach sends the timeout in wValue."""
        assert (await paired.detach(timeout_ms=500)).ok
        channel.assert_requests([("out", DfuRequest.DFU_DETACH)])
        assert channel.transfers[0].value == 500

    @pytest.mark.asyncio
    async def test_restart(self, paired, channel):
        """Test restart sends restart then empty command and drops the device."""
        result = await paired.restart()

        assert result.ok
        channel.assert_requests([DNLOAD, DNLOAD])
        assert channel.transfers[0].data == RESTART.data
        assert channel.transfers[1].data == EMPTY.data
        assert paired.state == ClientState.DISCONNECTED
        assert paired.channel is None
        assert not channel.is_open

        erase = await paired.erase()
        assert erase.error_kind == ErrorKind.DEVICE_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_restart_failure_still_drops_device(self, paired, channel):
        """Test the handle is cleared even if the restart command fails."""
        channel.fail_on("out")

        result = await paired.restart()

        assert result.error_kind == ErrorKind.TRANSFER_FAILED
        assert paired.channel is None

    @pytest.mark.asyncio
    async def test_pair_after_restart(self, paired, channel):
        """Test the session can be re-established after restart."""
        await paired.restart()
        result = await paired.pair()
        assert result.ok
        assert paired.state == ClientState.CONNECTED

    @pytest.mark.asyncio
    async def test_transfer_failure_keeps_session(self, paired, channel):
        """Test a failed transfer does not end the session."""
        channel.fail_on("out")
        failed = await paired.erase()
        assert failed.error_kind == ErrorKind.TRANSFER_FAILED
        assert isinstance(failed.error, TransferFailedError)
        assert failed.error.cause is not None

        channel.clear_failures()
        assert (await paired.erase()).ok
        assert paired.is_connected


class TestFlash:
    """Tests for the flash() sequence."""

    @pytest.mark.asyncio
    async def test_flash(self, paired, channel):
        """Test flash erases, downloads and restarts."""
        channel.add_response(STATUS_IDLE)

        result = await paired.flash(b"\x0c\x94")

        assert result.ok
        channel.assert_requests([DNLOAD, DNLOAD, GETSTATUS, DNLOAD, DNLOAD])
        assert channel.transfers[0].data == ERASE.data
        assert channel.transfers[1].data == build_image(b"\x0c\x94")
        assert channel.transfers[3].data == RESTART.data
        assert paired.state == ClientState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_flash_without_erase_or_restart(self, paired, channel):
        """Test flash steps can be skipped."""
        channel.add_response(STATUS_IDLE)

        result = await paired.flash(b"\x00", erase=False, restart=False)

        assert result.ok
        channel.assert_requests([DNLOAD, GETSTATUS])
        assert paired.is_connected

    @pytest.mark.asyncio
    async def test_flash_error_status(self, paired, channel):
        """Test an error status stops the sequence before restart."""
        channel.add_response(STATUS_ERROR)

        result = await paired.flash(b"\x00")

        assert result.error_kind == ErrorKind.TRANSFER_FAILED
        assert result.error.status.bState == DfuStateCode.dfuERROR
        channel.assert_requests([DNLOAD, DNLOAD, GETSTATUS])
        assert paired.is_connected


class TestStatusListeners:
    """Tests for status notifications."""

    @pytest.mark.asyncio
    async def test_listener_receives_status(self, paired, channel):
        """Test every get_status notifies listeners."""
        received = []
        paired.add_status_listener(received.append)
        channel.add_responses(STATUS_IDLE, STATUS_ERROR)

        await paired.get_status()
        await paired.get_status()

        assert [s.bState for s in received] == [DfuStateCode.dfuIDLE, DfuStateCode.dfuERROR]
        assert paired.device_status.status == DfuStatusCode.errPROG
        assert paired.device_status.state == DfuStateCode.dfuERROR

    @pytest.mark.asyncio
    async def test_download_notifies(self, paired, channel):
        """Test status polled by download is also emitted."""
        received = []
        paired.add_status_listener(received.append)
        channel.add_response(STATUS_IDLE)

        await paired.download(b"\x00")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, paired, channel):
        """Test a raising listener does not fail the operation."""
        received = []

        def broken(status):
            raise RuntimeError("listener bug")

        paired.add_status_listener(broken)
        paired.add_status_listener(received.append)
        channel.add_response(STATUS_IDLE)

        result = await paired.get_status()

        assert result.ok
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_remove_listener(self, paired, channel):
        """Test removed listeners are not called."""
        received = []
        paired.add_status_listener(received.append)
        paired.remove_status_listener(received.append)
        paired.remove_status_listener(received.append)
        channel.add_response(STATUS_IDLE)

        await paired.get_status()

        assert received == []


class TestSequencing:
    """Tests for poll timing and transfer serialisation."""

    @pytest.mark.asyncio
    async def test_poll_timeout_honored(self, channel, provider):
        """Test the next status poll waits for the reported poll timeout."""
        client = DfuClient(provider, honor_poll_timeout=True)
        await client.pair()
        channel.add_responses(status_bytes(50), status_bytes(0))
        loop = asyncio.get_running_loop()

        await client.get_status()
        start = loop.time()
        await client.get_status()

        assert loop.time() - start >= 0.04

    @pytest.mark.asyncio
    async def test_poll_timeout_ignored_when_disabled(self, paired, channel):
        """Test polls are back-to-back when the timeout is not honored."""
        channel.add_responses(status_bytes(10_000), status_bytes(0))
        loop = asyncio.get_running_loop()

        await paired.get_status()
        start = loop.time()
        await paired.get_status()

        assert loop.time() - start < 1.0

    @pytest.mark.asyncio
    async def test_transfers_never_overlap(self):
        """Test concurrent callers are serialised."""
        channel = CountingChannel()
        client = DfuClient(MockDeviceProvider(channel), honor_poll_timeout=False)
        await client.pair()
        channel.add_responses(STATUS_IDLE, b"\x1e", b"\x02", STATUS_IDLE)

        read, state, status = await asyncio.gather(
            client.read(READ_MANUFACTURER_CODE),
            client.get_state(),
            client.get_status(),
        )

        assert channel.max_in_flight == 1
        assert read.value == 0x1E
        assert state.value == DfuStateCode.dfuIDLE
        assert status.ok
        assert channel.requests[:3] == [DNLOAD, GETSTATUS, UPLOAD]

    def test_repr(self, client):
        """Test string representation."""
        assert "UNPAIRED" in repr(client)
        assert "None" in repr(client)
