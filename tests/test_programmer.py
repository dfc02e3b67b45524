"""Tests for whole-device program, read back and verify."""

import pytest

from spi_flash_programmer.core.programmer import FlashProgrammer, VerifyOutcome
from spi_flash_programmer.protocol import (
    SpiFlashMemory,
    SizeExceeded,
    TransportError,
)
from spi_flash_programmer.protocol.flash_protocol import CMD_BULK_ERASE

IMAGE_10 = bytes(range(0x11, 0x1B))


def test_write_all_chunks_two_packets_plus_one(flash, sim):
    """2*packet+1 bytes go out as two full packets and a 1-byte tail."""
    FlashProgrammer(flash).write_all(b"\x00" * 9)
    assert sim.page_programs() == [(0, 4), (4, 4), (8, 1)]


def test_program_and_verify_ten_bytes(flash, sim):
    """Erase, three page programs at 0/4/8, read back, SUCCESS."""
    outcome = FlashProgrammer(flash).program_and_verify(IMAGE_10)

    assert outcome is VerifyOutcome.SUCCESS
    assert outcome.value == "SUCCESS"
    assert sim.opcodes().count(CMD_BULK_ERASE) == 1
    assert sim.page_programs() == [(0, 4), (4, 4), (8, 2)]
    assert bytes(sim.memory[:10]) == IMAGE_10
    assert bytes(sim.memory[10:]) == b"\xFF" * (1024 - 10)


def test_corrupted_read_back_is_failure(flash, sim):
    sim.corrupt_reads = {5: 0x01}
    programmer = FlashProgrammer(flash)

    outcome = programmer.program_and_verify(IMAGE_10)

    assert outcome is VerifyOutcome.MISMATCH
    assert outcome.value == "FAILURE"
    assert programmer.last_mismatch == (5, 1)
    assert bytes(sim.memory[:10]) == IMAGE_10


def test_previous_contents_are_erased_first(flash, sim):
    sim.load(b"\x00" * 32, 0)
    assert FlashProgrammer(flash).program_and_verify(IMAGE_10) is VerifyOutcome.SUCCESS
    assert bytes(sim.memory[10:32]) == b"\xFF" * 22


def test_oversized_image_rejected_before_any_transfer(flash, sim):
    with pytest.raises(SizeExceeded):
        FlashProgrammer(flash).program_and_verify(b"\x00" * 1025)
    assert sim.transfers == 0
    assert sim.commands == []


def test_write_all_oversize_rejected_before_any_transfer(flash, sim):
    with pytest.raises(SizeExceeded):
        FlashProgrammer(flash).write_all(b"\x00" * 1025)
    assert sim.transfers == 0
    assert sim.commands == []


def test_oversized_read_rejected_before_any_transfer(flash, sim):
    with pytest.raises(SizeExceeded):
        FlashProgrammer(flash).read_all(2048)
    assert sim.transfers == 0


def test_write_then_read_returns_same_bytes(flash):
    data = bytes((i * 7) & 0xFF for i in range(100))
    programmer = FlashProgrammer(flash)

    programmer.write_all(data)

    assert programmer.read_all(len(data)) == data


def test_full_capacity_image(flash):
    data = bytes(i & 0xFF for i in range(1024))
    assert FlashProgrammer(flash).program_and_verify(data) is VerifyOutcome.SUCCESS


def test_read_all_zero_length(flash, sim):
    assert FlashProgrammer(flash).read_all(0) == b""
    assert sim.transfers == 0


class TestIsEmpty:

    def test_erased_device_is_empty(self, flash):
        assert FlashProgrammer(flash).is_empty()

    def test_one_programmed_byte_is_not_empty(self, flash, sim):
        sim.load(b"\xFE", 1023)
        assert not FlashProgrammer(flash).is_empty()

    def test_read_errors_propagate(self, flash, sim):
        """A failed read is an error, not a 'not empty' answer."""
        sim.fail_transfers = True
        with pytest.raises(TransportError):
            FlashProgrammer(flash).is_empty()


class TestProgress:

    def test_write_reports_percent_steps(self, sim, small_config, events):
        with SpiFlashMemory(sim, small_config, progress_cb=events.append) as flash:
            FlashProgrammer(flash).write_all(IMAGE_10)

        steps = [e.percent for e in events if e.operation == "write" and not e.finished]
        assert steps == [40, 80, 100]
        assert events[-1].finished
        assert events[-1].done == events[-1].total == 10

    def test_blank_check_reports_under_its_own_name(self, sim, small_config, events):
        with SpiFlashMemory(sim, small_config, progress_cb=events.append) as flash:
            FlashProgrammer(flash).is_empty()

        assert {e.operation for e in events} == {"blank-check"}
        percents = [e.percent for e in events if not e.finished]
        assert percents == sorted(set(percents))
        assert percents[-1] == 100

    def test_program_reports_each_phase(self, sim, small_config, events):
        with SpiFlashMemory(sim, small_config, progress_cb=events.append) as flash:
            FlashProgrammer(flash).program_and_verify(IMAGE_10)

        finished = [e.operation for e in events if e.finished]
        assert finished == ["erase", "write", "read"]
