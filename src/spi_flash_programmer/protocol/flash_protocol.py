"""
Serial NOR Flash Command Protocol

Implements the classic JEDEC command set used by 25-series SPI NOR flash
memories on top of a SpiTransport.

Command frames (all addresses 24-bit, big-endian):
    0x05                      read status register (1 byte answer)
    0x06 / 0x04               write enable / write disable
    0x9F                      read JEDEC ID (3 byte answer)
    0xC7                      bulk (chip) erase
    0x02 | A2 A1 A0 | data    page program (at most one packet)
    0x03 | A2 A1 A0           read data (at most one packet per transfer)

Status register:
    bit 0  WIP  write/erase in progress
    bit 1  WEL  write enable latch

Every write-class command is preceded by a write enable whose latch is
read back before the command goes out. Erase and program are followed by
status polling until WIP clears.
"""

import logging
import time
from dataclasses import dataclass
from enum import IntFlag
from typing import Callable, Iterator, Optional, Tuple

from spi_flash_programmer.devices import FlashDeviceConfig, MAX_ADDRESSABLE, get_default_device
from .transport import SpiTransport, TransportError, SPI_MODE0

logger = logging.getLogger(__name__)

# Opcodes
CMD_WRITE_DISABLE = 0x04
CMD_WRITE_ENABLE = 0x06
CMD_READ_STATUS = 0x05
CMD_READ_ID = 0x9F
CMD_BULK_ERASE = 0xC7
CMD_PAGE_PROGRAM = 0x02
CMD_READ_DATA = 0x03

# Status register bits
STATUS_BUSY = 0x01
STATUS_WEL = 0x02

ERASED_VALUE = 0xFF
ADDRESS_BYTES = 3


class FlashProtocolError(Exception):
    """Errors raised by flash protocol operations."""


class DeviceBusy(FlashProtocolError):
    """A command was attempted while the device reported WIP."""


class WriteEnableNotSet(FlashProtocolError):
    """The write enable latch did not read back as set."""


class LengthMismatch(FlashProtocolError):
    """The transport moved a different number of bytes than requested."""


class SizeExceeded(FlashProtocolError, ValueError):
    """A request is larger than the device."""


class PollLimitExceeded(FlashProtocolError):
    """The device stayed busy for more polls than the configured limit."""


class StatusRegister(IntFlag):
    """Named bits of the status register."""
    BUSY = STATUS_BUSY
    WEL = STATUS_WEL


def describe_status(status: int) -> str:
    """Render a status value as '0x03 (BUSY|WEL)'."""
    names = [flag.name for flag in StatusRegister if status & flag]
    return f"0x{status:02X} ({'|'.join(names) if names else 'READY'})"


@dataclass(frozen=True)
class ProgressEvent:
    """
    Progress notification for a reporting sink.

    Spinner ticks (bulk erase polls) carry percent=None and the tick count
    in `done`. Transfers carry bytes done/total and the integer percentage.
    """
    operation: str
    done: int = 0
    total: int = 0
    percent: Optional[int] = None
    finished: bool = False


ProgressCallback = Callable[[ProgressEvent], None]


def reverse_bits(value: int) -> int:
    """
    Reverse the bit order of one byte (bit 7 <-> bit 0, bit 6 <-> bit 1, ...).

    Used for memories wired with reversed bit order on the bus.
    """
    if not 0 <= value <= 0xFF:
        raise ValueError(f"Not a byte value: {value}")
    result = 0
    for _ in range(8):
        result = (result << 1) | (value & 1)
        value >>= 1
    return result


BIT_REVERSE_TABLE = bytes(reverse_bits(i) for i in range(256))


def encode_address(address: int) -> bytes:
    """Encode a flash address as 3 bytes, most significant first."""
    if not 0 <= address < MAX_ADDRESSABLE:
        raise ValueError(f"Address 0x{address:X} not addressable with 3 bytes")
    return address.to_bytes(ADDRESS_BYTES, "big")


def iter_pages(length: int, packet_size: int, start: int = 0) -> Iterator[Tuple[int, int]]:
    """
    Split `length` bytes starting at `start` into (address, size) packets.

    Every packet but the last is exactly `packet_size` bytes.
    """
    if packet_size <= 0:
        raise ValueError("packet_size must be positive")
    address = start
    end = start + length
    while address < end:
        size = min(packet_size, end - address)
        yield address, size
        address += size


class SpiFlashMemory:
    """
    Command engine for one SPI NOR flash behind a SpiTransport.

    Owns the channel of its transport: use it as a context manager so the
    channel is released on every exit path.

    Example:
        with SpiFlashMemory(FtdiSpiTransport(), get_device("M25P32")) as flash:
            print(flash.read_id().hex())
            flash.bulk_erase()
            flash.write_page(0, b"\\x00" * 256)
    """

    def __init__(
        self,
        transport: SpiTransport,
        config: Optional[FlashDeviceConfig] = None,
        bit_swap: bool = False,
        progress_cb: Optional[ProgressCallback] = None,
        channel: int = 0,
    ):
        """
        Args:
            transport: SPI bridge implementation
            config: Part parameters (default: the 4 MiB M25P32)
            bit_swap: Reverse bit order of every payload byte
            progress_cb: Receives ProgressEvent notifications
            channel: Channel opened by the context manager
        """
        self.transport = transport
        self.config = config or get_default_device()
        self.bit_swap = bit_swap
        self.progress_cb = progress_cb
        self.channel = channel

    def __enter__(self) -> "SpiFlashMemory":
        self.open_channel(self.channel)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_channel()

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def open_channel(self, index: int = 0) -> None:
        """Open and configure channel `index`; close it again if configuration fails."""
        self.transport.open(index)
        try:
            self.transport.configure(
                clock_rate=self.config.clock_rate,
                latency_timer=self.config.latency_timer,
                mode=SPI_MODE0,
                cs_active_low=True,
            )
        except BaseException:
            self.transport.close()
            raise
        logger.info(f"Opened channel {index} for {self.config.name}")

    def close_channel(self) -> None:
        self.transport.close()

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    @property
    def memory_size(self) -> int:
        return self.config.capacity

    def emit(self, event: ProgressEvent) -> None:
        if self.progress_cb is not None:
            self.progress_cb(event)

    # ------------------------------------------------------------------
    # Primitive commands
    # ------------------------------------------------------------------

    def _command(self, frame: bytes) -> int:
        """Send one chip-select bracketed frame."""
        return self.transport.write(frame, start=True, stop=True)

    def _query(self, frame: bytes, length: int) -> bytes:
        """Send `frame` with chip select held, then read `length` bytes and release."""
        self.transport.write(frame, start=True, stop=False)
        try:
            return self.transport.read(length, start=False, stop=True)
        except BaseException:
            self._release_chip_select()
            raise

    def _release_chip_select(self) -> None:
        """Deassert chip select after a transaction aborted mid-way."""
        try:
            self.transport.read(0, start=False, stop=True)
        except TransportError as e:
            logger.warning(f"Could not release chip select: {e}")

    def read_status(self) -> int:
        """Read the status register."""
        data = self._query(bytes([CMD_READ_STATUS]), 1)
        if len(data) != 1:
            raise LengthMismatch(f"Status read returned {len(data)} bytes")
        return data[0]

    def is_busy(self) -> bool:
        return bool(self.read_status() & STATUS_BUSY)

    def enable_write(self) -> None:
        """Set the write enable latch."""
        self._command(bytes([CMD_WRITE_ENABLE]))

    def disable_write(self) -> None:
        """Clear the write enable latch."""
        self._command(bytes([CMD_WRITE_DISABLE]))

    def read_id(self) -> bytes:
        """Read the JEDEC manufacturer/device ID."""
        return self._query(bytes([CMD_READ_ID]), self.config.id_length)

    # ------------------------------------------------------------------
    # Protocol discipline
    # ------------------------------------------------------------------

    def _require_ready(self) -> None:
        status = self.read_status()
        if status & STATUS_BUSY:
            raise DeviceBusy(f"Device is busy (status {describe_status(status)})")

    def _enable_write_checked(self) -> None:
        self.enable_write()
        status = self.read_status()
        if not status & STATUS_WEL:
            raise WriteEnableNotSet(
                f"Write enable flag not set (status {describe_status(status)})"
            )

    def wait_ready(self, interval: float, spin_operation: Optional[str] = None) -> int:
        """
        Poll the status register every `interval` seconds until WIP clears.

        Unbounded unless the config sets max_poll_iterations. When
        `spin_operation` is given, a spinner event is emitted per busy poll.

        Returns:
            The final (ready) status value

        Raises:
            PollLimitExceeded: If the poll limit is reached while still busy
        """
        limit = self.config.max_poll_iterations
        polls = 0
        while True:
            status = self.read_status()
            if not status & STATUS_BUSY:
                return status
            polls += 1
            if limit is not None and polls >= limit:
                raise PollLimitExceeded(
                    f"Device still busy after {polls} status polls"
                )
            if spin_operation is not None:
                self.emit(ProgressEvent(spin_operation, done=polls))
            time.sleep(interval)

    # ------------------------------------------------------------------
    # Erase / program / read
    # ------------------------------------------------------------------

    def bulk_erase(self) -> None:
        """
        Erase the whole device to 0xFF.

        Blocks until the device reports ready; this takes tens of seconds
        on real parts.
        """
        self._require_ready()
        self._enable_write_checked()

        logger.info("Erasing...")
        started = time.monotonic()
        self._command(bytes([CMD_BULK_ERASE]))

        self.emit(ProgressEvent("erase", done=0))
        time.sleep(self.config.bulk_erase_wait)
        self.wait_ready(self.config.bulk_erase_wait, spin_operation="erase")

        self.emit(ProgressEvent("erase", finished=True))
        logger.info(f"Erasing done ({time.monotonic() - started:.1f}s)")

    def write_page(self, address: int, chunk: bytes) -> None:
        """
        Program at most one packet of data at `address`.

        Raises:
            ValueError: If the chunk is larger than the packet size
            SizeExceeded: If the chunk runs past the end of the device
        """
        size = len(chunk)
        if size > self.config.packet_size:
            raise ValueError(
                f"Chunk of {size} bytes exceeds packet size {self.config.packet_size}"
            )
        if address + size > self.config.capacity:
            raise SizeExceeded(
                f"Write of {size} bytes at 0x{address:06X} exceeds memory size "
                f"{self.config.capacity}"
            )
        if size == 0:
            return

        self._require_ready()
        self._enable_write_checked()

        payload = bytes(chunk)
        if self.bit_swap:
            payload = payload.translate(BIT_REVERSE_TABLE)

        frame = bytes([CMD_PAGE_PROGRAM]) + encode_address(address) + payload
        sent = self._command(frame)
        if sent != len(frame):
            raise LengthMismatch(
                f"Page program at 0x{address:06X}: sent {sent}/{len(frame)} bytes"
            )

        time.sleep(self.config.page_program_wait)
        self.wait_ready(self.config.page_program_wait)
        logger.debug(f"Programmed {size} bytes at 0x{address:06X}")

    def read_page(self, address: int, length: int) -> bytes:
        """
        Read at most one packet of data from `address`.

        Raises:
            ValueError: If length is larger than the packet size
            SizeExceeded: If the read runs past the end of the device
        """
        if length > self.config.packet_size:
            raise ValueError(
                f"Read of {length} bytes exceeds packet size {self.config.packet_size}"
            )
        if address + length > self.config.capacity:
            raise SizeExceeded(
                f"Read of {length} bytes at 0x{address:06X} exceeds memory size "
                f"{self.config.capacity}"
            )
        if length == 0:
            return b""

        self._require_ready()

        header = bytes([CMD_READ_DATA]) + encode_address(address)
        sent = self.transport.write(header, start=True, stop=False)
        try:
            if sent != len(header):
                raise LengthMismatch(
                    f"Read command at 0x{address:06X}: sent {sent}/{len(header)} bytes"
                )
            data = self.transport.read(length, start=False, stop=True)
        except BaseException:
            self._release_chip_select()
            raise

        if len(data) != length:
            raise LengthMismatch(
                f"Read at 0x{address:06X}: got {len(data)}/{length} bytes"
            )

        if self.bit_swap:
            data = bytes(data).translate(BIT_REVERSE_TABLE)
        return bytes(data)
