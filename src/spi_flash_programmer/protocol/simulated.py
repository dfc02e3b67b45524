"""
Simulated SPI NOR flash

An in-memory 25-series flash chip exposed through the SpiTransport
contract, so the protocol engine can run without hardware.

Behaviour modelled:
- Erased state is 0xFF; page program can only clear bits
- Page program wraps inside the addressed programming page
- Write enable latch, ignored write commands when the latch is clear
- WIP (busy) for a configurable number of status polls after erase/program
- Continuous reads across the whole array

Fault injection for tests and dry runs:
- stuck_wel_clear: the write enable latch never sets
- force_busy: every status read reports WIP
- corrupt_reads: {address: xor_mask} applied to data read back
- short_write / short_read: bytes missing from page program / data read transfers
- fail_transfers: every transfer raises TransportError
"""

import logging
from typing import Dict, List, Optional, Tuple

from .transport import (
    SpiTransport,
    ChannelInfo,
    TransportError,
    ChannelNotOpen,
    DEFAULT_CLOCK_RATE,
    DEFAULT_LATENCY_TIMER,
    SPI_MODE0,
)

logger = logging.getLogger(__name__)

SIM_VENDOR_ID = 0x0403
SIM_PRODUCT_ID = 0x6010

_OP_WRITE_DISABLE = 0x04
_OP_READ_STATUS = 0x05
_OP_WRITE_ENABLE = 0x06
_OP_PAGE_PROGRAM = 0x02
_OP_READ_DATA = 0x03
_OP_READ_ID = 0x9F
_OP_BULK_ERASE = 0xC7

_WIP = 0x01
_WEL = 0x02


class SimulatedSpiFlash(SpiTransport):
    """
    SpiTransport backed by a simulated flash chip.

    Example:
        sim = SimulatedSpiFlash(capacity=1024)
        with SpiFlashMemory(sim, config) as flash:
            flash.write_page(0, b"\\x11\\x22")
        assert sim.memory[:2] == b"\\x11\\x22"
    """

    def __init__(
        self,
        capacity: int = 4 * 1024 * 1024,
        jedec_id: bytes = b"\x20\x20\x16",
        page_size: int = 256,
        erase_polls: int = 3,
        program_polls: int = 1,
        channels: int = 1,
    ):
        """
        Args:
            capacity: Size of the memory array in bytes
            jedec_id: Answer to the read ID command
            page_size: Programming page size (address wrap boundary)
            erase_polls: Status reads reporting WIP after a bulk erase
            program_polls: Status reads reporting WIP after a page program
            channels: Number of channels reported by enumeration
        """
        self.memory = bytearray([0xFF]) * capacity
        self.jedec_id = jedec_id
        self.page_size = page_size
        self.erase_polls = erase_polls
        self.program_polls = program_polls
        self.channels = channels

        self.clock_rate = DEFAULT_CLOCK_RATE
        self.latency_timer = DEFAULT_LATENCY_TIMER
        self.mode = SPI_MODE0

        # Fault injection
        self.stuck_wel_clear = False
        self.force_busy = False
        self.corrupt_reads: Dict[int, int] = {}
        self.short_write = 0
        self.short_read = 0
        self.fail_transfers = False

        # Observation
        self.commands: List[Tuple[int, Optional[int], int]] = []
        self.transfers = 0
        self.open_count = 0
        self.close_count = 0

        self._status = 0
        self._busy_polls = 0
        self._clear_wel_when_ready = False
        self._open = False
        self._txn: Optional[bytearray] = None
        self._read_cursor: Optional[int] = None

    @classmethod
    def for_device(cls, config, **kwargs) -> "SimulatedSpiFlash":
        """Build a simulated chip matching a FlashDeviceConfig."""
        return cls(capacity=config.capacity, jedec_id=config.jedec_id, **kwargs)

    # ------------------------------------------------------------------
    # Helpers for tests
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return len(self.memory)

    def load(self, data: bytes, address: int = 0) -> None:
        """Place raw bytes into the array, bypassing the protocol."""
        self.memory[address:address + len(data)] = data

    def opcodes(self) -> List[int]:
        """Opcodes of every completed transaction, in order."""
        return [opcode for opcode, _, _ in self.commands]

    def page_programs(self) -> List[Tuple[int, int]]:
        """(address, length) of every page program transaction."""
        return [(addr, size) for opcode, addr, size in self.commands if opcode == _OP_PAGE_PROGRAM]

    # ------------------------------------------------------------------
    # SpiTransport
    # ------------------------------------------------------------------

    def channel_count(self) -> int:
        return self.channels

    def channel_info(self, index: int) -> ChannelInfo:
        if not 0 <= index < self.channels:
            raise TransportError(f"Could not get info for channel {index}")
        return ChannelInfo(
            index=index,
            description="Simulated SPI flash",
            serial_number=f"SIM{index:04d}",
            vendor_id=SIM_VENDOR_ID,
            product_id=SIM_PRODUCT_ID,
            interface=index + 1,
            url=f"sim://{index}",
        )

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, index: int) -> None:
        if self._open:
            raise TransportError("Channel already open")
        self.channel_info(index)
        self._open = True
        self.open_count += 1
        logger.debug(f"Opened simulated channel {index}")

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._txn = None
        self.close_count += 1
        logger.debug("Closed simulated channel")

    def configure(
        self,
        clock_rate: int = DEFAULT_CLOCK_RATE,
        latency_timer: int = DEFAULT_LATENCY_TIMER,
        mode: int = SPI_MODE0,
        cs_active_low: bool = True,
    ) -> None:
        if mode != SPI_MODE0 or not cs_active_low:
            raise TransportError("Simulated channel supports mode 0, active-low CS only")
        self.clock_rate = clock_rate
        self.latency_timer = latency_timer
        self.mode = mode

    def _check_transfer(self, start: bool) -> None:
        if not self._open:
            raise ChannelNotOpen("SPI channel not open")
        if self.fail_transfers:
            raise TransportError("Simulated USB failure")
        self.transfers += 1
        if start:
            self._txn = bytearray()
            self._read_cursor = None
        elif self._txn is None:
            raise TransportError("Transfer without chip select asserted")

    def write(self, data: bytes, start: bool = True, stop: bool = True) -> int:
        self._check_transfer(start)
        self._txn.extend(data)
        short = self.short_write if self._txn[:1] == bytes([_OP_PAGE_PROGRAM]) else 0
        if stop:
            self._release()
        return max(0, len(data) - short)

    def read(self, length: int, start: bool = True, stop: bool = True) -> bytes:
        self._check_transfer(start)
        txn = self._txn
        opcode = txn[0] if txn else None

        if opcode == _OP_READ_STATUS:
            data = bytes([self._status_byte()]) * length
        elif opcode == _OP_READ_ID:
            data = (self.jedec_id + bytes(length))[:length]
        elif opcode == _OP_READ_DATA and len(txn) >= 4:
            data = self._read_array(length)
        else:
            data = b"\xFF" * length

        if stop:
            self._release()
        if opcode == _OP_READ_DATA:
            data = data[:max(0, length - self.short_read)]
        return data

    # ------------------------------------------------------------------
    # Chip model
    # ------------------------------------------------------------------

    @property
    def _busy(self) -> bool:
        return self.force_busy or self._busy_polls > 0

    def _status_byte(self) -> int:
        if self.force_busy:
            return self._status | _WIP
        if self._busy_polls > 0:
            self._busy_polls -= 1
            return self._status | _WIP
        if self._clear_wel_when_ready:
            self._status &= ~_WEL
            self._clear_wel_when_ready = False
        return self._status

    def _start_operation(self, polls: int) -> None:
        self._busy_polls = polls
        self._clear_wel_when_ready = True

    def _read_array(self, length: int) -> bytes:
        if self._read_cursor is None:
            self._read_cursor = int.from_bytes(self._txn[1:4], "big")
        first = self._read_cursor % self.capacity
        out = bytearray()
        while len(out) < length:
            start = self._read_cursor % self.capacity
            end = min(self.capacity, start + length - len(out))
            out += self.memory[start:end]
            self._read_cursor = end
        for addr, mask in self.corrupt_reads.items():
            offset = (addr - first) % self.capacity
            if offset < length:
                out[offset] ^= mask
        return bytes(out)

    def _release(self) -> None:
        """Chip select released: execute the clocked-in transaction."""
        txn = bytes(self._txn)
        self._txn = None
        if not txn:
            return

        opcode = txn[0]
        address = int.from_bytes(txn[1:4], "big") if len(txn) >= 4 else None
        payload_len = max(0, len(txn) - 4) if opcode == _OP_PAGE_PROGRAM else 0
        self.commands.append((opcode, address, payload_len))

        if opcode == _OP_WRITE_ENABLE:
            if not self._busy and not self.stuck_wel_clear:
                self._status |= _WEL
        elif opcode == _OP_WRITE_DISABLE:
            if not self._busy:
                self._status &= ~_WEL
        elif opcode == _OP_BULK_ERASE:
            if self._status & _WEL and not self._busy:
                self.memory[:] = b"\xFF" * self.capacity
                self._start_operation(self.erase_polls)
            else:
                logger.debug("Bulk erase ignored (latch clear or busy)")
        elif opcode == _OP_PAGE_PROGRAM and address is not None:
            if self._status & _WEL and not self._busy:
                self._program(address, txn[4:])
                self._start_operation(self.program_polls)
            else:
                logger.debug(f"Page program at 0x{address:06X} ignored (latch clear or busy)")

    def _program(self, address: int, payload: bytes) -> None:
        page_base = address - (address % self.page_size)
        offset = address - page_base
        for i, value in enumerate(payload):
            addr = (page_base + (offset + i) % self.page_size) % self.capacity
            self.memory[addr] &= value
