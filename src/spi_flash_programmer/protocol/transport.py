"""
USB-to-SPI Transport Layer

Handles low-level SPI communication through FTDI MPSSE bridges.

This module provides:
- The transport contract used by the flash protocol engine
- Channel enumeration and channel information
- Channel open/configure/close
- Chip-select bracketed byte writes and reads
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

try:
    from pyftdi.ftdi import Ftdi, FtdiError
    from pyftdi.spi import SpiController, SpiIOError
    from pyftdi.usbtools import UsbToolsError
    from usb.core import USBError
except ImportError:
    raise ImportError("pyftdi required: pip install pyftdi")

logger = logging.getLogger(__name__)

# Defaults for the MPSSE channel
DEFAULT_CLOCK_RATE = 10_000_000
DEFAULT_LATENCY_TIMER = 16
SPI_MODE0 = 0


class TransportError(Exception):
    """Base exception for transport layer errors"""
    pass


class ChannelNotOpen(TransportError):
    """Operation attempted on a closed channel"""
    pass


@dataclass
class ChannelInfo:
    """Description of one SPI capable channel of a USB bridge."""
    index: int
    description: str = ""
    serial_number: str = ""
    vendor_id: int = 0
    product_id: int = 0
    bus: Optional[int] = None
    address: Optional[int] = None
    interface: int = 1
    url: str = ""

    def to_lines(self) -> List[str]:
        """Render the channel as indented 'key: value' lines."""
        return [
            f"Channel {self.index}:",
            f"  Description: {self.description}",
            f"  SerialNumber: {self.serial_number}",
            f"  ID: 0x{self.vendor_id:04X}:0x{self.product_id:04X}",
            f"  Location: {self.bus}:{self.address}",
            f"  Interface: {self.interface}",
            f"  URL: {self.url}",
        ]


class SpiTransport(ABC):
    """
    Contract between the flash protocol engine and a SPI bridge.

    Every method raises TransportError (or a subclass) on failure.
    `start` asserts chip select before the first byte, `stop` releases
    it after the last byte.
    """

    @abstractmethod
    def channel_count(self) -> int:
        """Number of SPI channels available."""

    @abstractmethod
    def channel_info(self, index: int) -> ChannelInfo:
        """Describe channel `index`."""

    @abstractmethod
    def open(self, index: int) -> None:
        """Open channel `index`."""

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Closing a closed channel does nothing."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while a channel is open."""

    @abstractmethod
    def configure(
        self,
        clock_rate: int = DEFAULT_CLOCK_RATE,
        latency_timer: int = DEFAULT_LATENCY_TIMER,
        mode: int = SPI_MODE0,
        cs_active_low: bool = True,
    ) -> None:
        """Set electrical parameters of the channel."""

    @abstractmethod
    def write(self, data: bytes, start: bool = True, stop: bool = True) -> int:
        """Write `data`, return the number of bytes transferred."""

    @abstractmethod
    def read(self, length: int, start: bool = True, stop: bool = True) -> bytes:
        """Read up to `length` bytes."""


class FtdiSpiTransport(SpiTransport):
    """
    SPI transport over an FTDI MPSSE bridge (FT2232/FT4232/FT232H).

    Handles:
    - Enumeration of FTDI interfaces as numbered channels
    - Channel open/close with a single chip select (CS0)
    - Clock rate and latency timer configuration
    - Chip-select bracketed transfers

    Example:
        transport = FtdiSpiTransport()
        transport.open(0)
        transport.configure(clock_rate=10_000_000)
        transport.write(b"\\x05", stop=False)
        status = transport.read(1, start=False)
        transport.close()
    """

    def __init__(
        self,
        clock_rate: int = DEFAULT_CLOCK_RATE,
        latency_timer: int = DEFAULT_LATENCY_TIMER,
    ):
        """
        Initialize transport layer.

        Args:
            clock_rate: SPI clock in Hz (default 10 MHz)
            latency_timer: USB latency timer in ms (default 16)
        """
        self.clock_rate = clock_rate
        self.latency_timer = latency_timer
        self.mode = SPI_MODE0
        self._controller: Optional[SpiController] = None
        self._port = None
        self._url = ""

    def _list_channels(self) -> List[ChannelInfo]:
        try:
            devices = Ftdi.list_devices()
        except (FtdiError, UsbToolsError, USBError, ValueError) as e:
            raise TransportError(f"Cannot enumerate USB devices: {e}")

        channels: List[ChannelInfo] = []
        for desc, interfaces in devices:
            for interface in range(1, interfaces + 1):
                if desc.sn:
                    url = f"ftdi://0x{desc.vid:04x}:0x{desc.pid:04x}:{desc.sn}/{interface}"
                else:
                    url = f"ftdi://0x{desc.vid:04x}:0x{desc.pid:04x}/{interface}"
                channels.append(ChannelInfo(
                    index=len(channels),
                    description=desc.description or "",
                    serial_number=desc.sn or "",
                    vendor_id=desc.vid,
                    product_id=desc.pid,
                    bus=desc.bus,
                    address=desc.address,
                    interface=interface,
                    url=url,
                ))
        return channels

    def channel_count(self) -> int:
        return len(self._list_channels())

    def channel_info(self, index: int) -> ChannelInfo:
        channels = self._list_channels()
        if not 0 <= index < len(channels):
            raise TransportError(
                f"Could not get info for channel {index} "
                f"({len(channels)} channel(s) found)"
            )
        return channels[index]

    @property
    def is_open(self) -> bool:
        return self._port is not None

    def open(self, index: int) -> None:
        """
        Open channel `index` as a SPI master with one chip select.

        Raises:
            TransportError: If the channel cannot be opened
        """
        if self.is_open:
            raise TransportError(f"Channel already open ({self._url})")

        info = self.channel_info(index)
        controller = SpiController(cs_count=1)
        try:
            controller.configure(
                info.url,
                frequency=self.clock_rate,
                latency=self.latency_timer,
            )
            self._port = controller.get_port(cs=0, freq=self.clock_rate, mode=self.mode)
        except (FtdiError, SpiIOError, UsbToolsError, USBError, ValueError) as e:
            controller.close()
            raise TransportError(f"Could not open channel {index}: {e}")

        self._controller = controller
        self._url = info.url
        logger.debug(
            f"Opened {self._url} at {self.clock_rate} Hz "
            f"(latency={self.latency_timer}ms, mode={self.mode})"
        )

    def close(self) -> None:
        """Close the channel."""
        if self._controller is None:
            return
        try:
            self._controller.close()
        except (FtdiError, UsbToolsError, USBError) as e:
            raise TransportError(f"Could not close channel: {e}")
        finally:
            self._controller = None
            self._port = None
        logger.debug(f"Closed {self._url}")

    def configure(
        self,
        clock_rate: int = DEFAULT_CLOCK_RATE,
        latency_timer: int = DEFAULT_LATENCY_TIMER,
        mode: int = SPI_MODE0,
        cs_active_low: bool = True,
    ) -> None:
        """
        Apply channel settings. Stored for the next open when closed.

        Only SPI mode 0 with an active-low chip select is supported.

        Raises:
            TransportError: If the settings are rejected
        """
        if mode != SPI_MODE0:
            raise TransportError(f"Unsupported SPI mode {mode} (only mode 0)")
        if not cs_active_low:
            raise TransportError("Only active-low chip select is supported")

        self.clock_rate = clock_rate
        self.latency_timer = latency_timer
        self.mode = mode

        if not self.is_open:
            return
        try:
            self._port.set_frequency(clock_rate)
            self._port.set_mode(mode)
            self._controller.ftdi.set_latency_timer(latency_timer)
        except (FtdiError, SpiIOError, UsbToolsError, USBError, ValueError) as e:
            raise TransportError(f"Could not initialize channel: {e}")
        logger.debug(f"Configured {self._url}: {clock_rate} Hz, latency {latency_timer}ms")

    def write(self, data: bytes, start: bool = True, stop: bool = True) -> int:
        """
        Send raw bytes.

        Returns:
            Number of bytes transferred

        Raises:
            ChannelNotOpen: If no channel is open
            TransportError: If the USB transfer fails
        """
        if not self.is_open:
            raise ChannelNotOpen("SPI channel not open")

        try:
            self._port.write(data, start=start, stop=stop)
        except (FtdiError, SpiIOError, UsbToolsError, USBError) as e:
            raise TransportError(f"Write error: {e}")
        logger.debug(f">>> {bytes(data[:32]).hex().upper()}" + ("..." if len(data) > 32 else ""))
        return len(data)

    def read(self, length: int, start: bool = True, stop: bool = True) -> bytes:
        """
        Receive raw bytes.

        Raises:
            ChannelNotOpen: If no channel is open
            TransportError: If the USB transfer fails
        """
        if not self.is_open:
            raise ChannelNotOpen("SPI channel not open")

        try:
            data = bytes(self._port.read(length, start=start, stop=stop))
        except (FtdiError, SpiIOError, UsbToolsError, USBError) as e:
            raise TransportError(f"Read error: {e}")
        logger.debug(f"<<< {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))
        return data
