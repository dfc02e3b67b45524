"""Shared fixtures: a small flash part with zero waits and its simulated chip."""

import pytest

from spi_flash_programmer.devices import FlashDeviceConfig
from spi_flash_programmer.protocol import SimulatedSpiFlash, SpiFlashMemory


@pytest.fixture
def small_config() -> FlashDeviceConfig:
    """1 KiB part with 4-byte packets, M25P32 identity and no sleeping."""
    return FlashDeviceConfig(
        name="TEST1K",
        vendor="Test",
        jedec_id=b"\x20\x20\x16",
        capacity=1024,
        packet_size=4,
        page_program_wait=0.0,
        bulk_erase_wait=0.0,
    )


@pytest.fixture
def sim(small_config) -> SimulatedSpiFlash:
    return SimulatedSpiFlash.for_device(small_config)


@pytest.fixture
def flash(sim, small_config):
    """Open engine on the simulated chip; the channel is closed after the test."""
    with SpiFlashMemory(sim, small_config) as engine:
        yield engine


@pytest.fixture
def events():
    """Collected ProgressEvent notifications."""
    return []
