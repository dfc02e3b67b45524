"""
Whole-device program and verify.

Drives SpiFlashMemory page primitives over buffers of any size up to the
device capacity.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from spi_flash_programmer.protocol.flash_protocol import (
    SpiFlashMemory,
    ProgressEvent,
    SizeExceeded,
    ERASED_VALUE,
    iter_pages,
)

logger = logging.getLogger(__name__)


class VerifyOutcome(Enum):
    """Verdict of a program-and-verify cycle."""
    SUCCESS = "SUCCESS"
    MISMATCH = "FAILURE"


class FlashProgrammer:
    """
    Program, read back and verify a flash image.

    Example:
        with SpiFlashMemory(transport, config) as flash:
            outcome = FlashProgrammer(flash).program_and_verify(image)
    """

    def __init__(self, flash: SpiFlashMemory):
        self.flash = flash
        # (first differing offset, differing byte count) of the last mismatch
        self.last_mismatch: Optional[Tuple[int, int]] = None

    @property
    def capacity(self) -> int:
        return self.flash.memory_size

    def _check_size(self, length: int) -> None:
        if length > self.capacity:
            raise SizeExceeded(
                f"Memory size exceeded: {length} bytes requested, "
                f"device holds {self.capacity}"
            )

    def _percent_reporter(self, operation: str, total: int):
        last = -1

        def report(done: int) -> None:
            nonlocal last
            percent = done * 100 // total if total else 100
            if percent != last:
                last = percent
                self.flash.emit(ProgressEvent(operation, done, total, percent))

        return report

    def write_all(self, buffer: bytes) -> None:
        """
        Program `buffer` starting at address 0, one packet at a time.

        Raises:
            SizeExceeded: Before any transfer if the buffer is larger than the device
        """
        total = len(buffer)
        self._check_size(total)

        logger.info(f"Writing {total} bytes...")
        report = self._percent_reporter("write", total)
        view = memoryview(buffer)
        for address, size in iter_pages(total, self.flash.config.packet_size):
            self.flash.write_page(address, view[address:address + size])
            report(address + size)

        self.flash.emit(ProgressEvent("write", total, total, 100, finished=True))
        logger.info("Writing done")

    def read_all(self, length: int, operation: str = "read") -> bytes:
        """
        Read `length` bytes starting at address 0.

        Raises:
            SizeExceeded: Before any transfer if length is larger than the device
        """
        self._check_size(length)

        logger.info(f"Reading {length} bytes...")
        report = self._percent_reporter(operation, length)
        data = bytearray()
        for address, size in iter_pages(length, self.flash.config.packet_size):
            data += self.flash.read_page(address, size)
            report(address + size)

        self.flash.emit(ProgressEvent(operation, length, length, 100, finished=True))
        logger.info("Reading done")
        return bytes(data)

    def is_empty(self) -> bool:
        """
        True if every byte of the device reads as 0xFF.

        Read failures propagate instead of being reported as "not empty".
        """
        data = self.read_all(self.capacity, operation="blank-check")
        return data.count(ERASED_VALUE) == len(data)

    def program_and_verify(self, image: bytes) -> VerifyOutcome:
        """
        Erase the device, write `image`, read it back and compare.

        Raises:
            SizeExceeded: Before the erase if the image is larger than the device
        """
        self._check_size(len(image))
        self.last_mismatch = None

        self.flash.bulk_erase()
        self.write_all(image)
        readback = self.read_all(len(image))

        if readback == bytes(image):
            logger.info("Verify: read back matches image")
            return VerifyOutcome.SUCCESS

        diffs = [i for i, (a, b) in enumerate(zip(readback, image)) if a != b]
        self.last_mismatch = (diffs[0], len(diffs))
        logger.warning(
            f"Verify: {len(diffs)} byte(s) differ, first at 0x{diffs[0]:06X}"
        )
        return VerifyOutcome.MISMATCH
