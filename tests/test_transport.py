"""Tests for the pyftdi-backed transport, with pyftdi mocked out."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from pyftdi.ftdi import FtdiError
from pyftdi.spi import SpiIOError
from pyftdi.usbtools import UsbToolsError

from spi_flash_programmer.protocol import transport as transport_mod
from spi_flash_programmer.protocol.transport import (
    FtdiSpiTransport,
    TransportError,
    ChannelNotOpen,
)


def _devices(sn="FT1234", interfaces=2):
    desc = SimpleNamespace(
        vid=0x0403, pid=0x6010, bus=1, address=5, sn=sn, index=0,
        description="Dual RS232-HS",
    )
    return [(desc, interfaces)]


@pytest.fixture
def list_devices():
    with patch.object(transport_mod.Ftdi, "list_devices", return_value=_devices()) as mock:
        yield mock


@pytest.fixture
def controller_cls():
    with patch.object(transport_mod, "SpiController") as mock:
        yield mock


@pytest.fixture
def opened(list_devices, controller_cls):
    transport = FtdiSpiTransport()
    transport.open(0)
    return transport


class TestEnumeration:

    def test_each_interface_is_a_channel(self, list_devices):
        transport = FtdiSpiTransport()

        assert transport.channel_count() == 2
        info = transport.channel_info(1)
        assert info.index == 1
        assert info.interface == 2
        assert info.serial_number == "FT1234"
        assert info.url == "ftdi://0x0403:0x6010:FT1234/2"

    def test_url_without_serial_number(self):
        with patch.object(transport_mod.Ftdi, "list_devices", return_value=_devices(sn=None)):
            info = FtdiSpiTransport().channel_info(0)
        assert info.url == "ftdi://0x0403:0x6010/1"
        assert info.serial_number == ""

    def test_no_devices(self):
        with patch.object(transport_mod.Ftdi, "list_devices", return_value=[]):
            transport = FtdiSpiTransport()
            assert transport.channel_count() == 0
            with pytest.raises(TransportError):
                transport.channel_info(0)

    def test_usb_errors_are_wrapped(self):
        with patch.object(transport_mod.Ftdi, "list_devices", side_effect=UsbToolsError("no backend")):
            with pytest.raises(TransportError):
                FtdiSpiTransport().channel_count()

    def test_channel_info_lines(self, list_devices):
        lines = FtdiSpiTransport().channel_info(0).to_lines()
        assert lines[0] == "Channel 0:"
        assert "  ID: 0x0403:0x6010" in lines


class TestOpenClose:

    def test_open_configures_controller(self, opened, controller_cls):
        controller = controller_cls.return_value

        controller_cls.assert_called_once_with(cs_count=1)
        controller.configure.assert_called_once_with(
            "ftdi://0x0403:0x6010:FT1234/1", frequency=10_000_000, latency=16,
        )
        controller.get_port.assert_called_once_with(cs=0, freq=10_000_000, mode=0)
        assert opened.is_open

    def test_open_twice_fails(self, opened):
        with pytest.raises(TransportError):
            opened.open(0)

    def test_open_failure_closes_controller(self, list_devices, controller_cls):
        controller = controller_cls.return_value
        controller.configure.side_effect = FtdiError("device busy")
        transport = FtdiSpiTransport()

        with pytest.raises(TransportError):
            transport.open(0)
        controller.close.assert_called_once_with()
        assert not transport.is_open

    def test_close(self, opened, controller_cls):
        opened.close()
        opened.close()

        controller_cls.return_value.close.assert_called_once_with()
        assert not opened.is_open


class TestConfigure:

    def test_only_mode_zero(self):
        with pytest.raises(TransportError):
            FtdiSpiTransport().configure(mode=3)

    def test_only_active_low_chip_select(self):
        with pytest.raises(TransportError):
            FtdiSpiTransport().configure(cs_active_low=False)

    def test_settings_stored_while_closed(self):
        transport = FtdiSpiTransport()
        transport.configure(clock_rate=1_000_000, latency_timer=2)
        assert transport.clock_rate == 1_000_000
        assert transport.latency_timer == 2

    def test_settings_applied_while_open(self, opened, controller_cls):
        controller = controller_cls.return_value
        port = controller.get_port.return_value

        opened.configure(clock_rate=1_000_000, latency_timer=8)

        port.set_frequency.assert_called_once_with(1_000_000)
        port.set_mode.assert_called_once_with(0)
        controller.ftdi.set_latency_timer.assert_called_once_with(8)


class TestTransfers:

    def test_write_passes_chip_select_flags(self, opened, controller_cls):
        port = controller_cls.return_value.get_port.return_value

        assert opened.write(b"\x9F", start=True, stop=False) == 1
        port.write.assert_called_once_with(b"\x9F", start=True, stop=False)

    def test_read_returns_bytes(self, opened, controller_cls):
        port = controller_cls.return_value.get_port.return_value
        port.read.return_value = bytearray(b"\x20\x20\x16")

        data = opened.read(3, start=False, stop=True)

        assert data == b"\x20\x20\x16"
        assert isinstance(data, bytes)
        port.read.assert_called_once_with(3, start=False, stop=True)

    def test_transfer_errors_are_wrapped(self, opened, controller_cls):
        port = controller_cls.return_value.get_port.return_value
        port.write.side_effect = SpiIOError("timeout")
        port.read.side_effect = FtdiError("usb gone")

        with pytest.raises(TransportError):
            opened.write(b"\x05")
        with pytest.raises(TransportError):
            opened.read(1)

    def test_closed_channel(self):
        transport = FtdiSpiTransport()
        with pytest.raises(ChannelNotOpen):
            transport.write(b"\x05")
        with pytest.raises(ChannelNotOpen):
            transport.read(1)
