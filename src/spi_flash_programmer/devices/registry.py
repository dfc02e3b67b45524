"""
Device registry for serial NOR flash parts.

Provides a single source of truth for:
- Geometry (capacity, page/packet size, ID length)
- Bus settings (SPI clock, USB latency timer)
- Timing of the busy-wait loops (page program, bulk erase)
- Identification (JEDEC manufacturer/device bytes)

Usage:
    from spi_flash_programmer.devices import (
        list_devices, get_device, detect_device
    )

    config = get_device("M25P32")
    config = detect_device(jedec_id)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

# 3-byte addressing ceiling of the classic command set
MAX_ADDRESSABLE = 1 << 24


def MiB(n: int) -> int:
    return n << 20


@dataclass(frozen=True)
class FlashDeviceConfig:
    """
    Fixed parameters of one flash part, owned by each engine instance.

    Attributes:
        name: Part name used on the command line
        vendor: Manufacturer name
        jedec_id: Expected answer to the 0x9F command
        capacity: Total size in bytes
        packet_size: Largest payload of a single page program/read transfer
        id_length: Number of ID bytes returned by 0x9F
        clock_rate: SPI clock in Hz
        latency_timer: FTDI latency timer in ms
        page_program_wait: Poll interval after a page program, in seconds
        bulk_erase_wait: Poll interval during bulk erase, in seconds
        max_poll_iterations: Status polls allowed per busy-wait, None for unbounded
    """
    name: str
    vendor: str = ""
    jedec_id: bytes = b""
    capacity: int = MiB(4)
    packet_size: int = 256
    id_length: int = 3
    clock_rate: int = 10_000_000
    latency_timer: int = 16
    page_program_wait: float = 0.001
    bulk_erase_wait: float = 0.5
    max_poll_iterations: Optional[int] = None

    def __post_init__(self):
        if not 0 < self.capacity <= MAX_ADDRESSABLE:
            raise ValueError(
                f"{self.name}: capacity {self.capacity} outside 1..{MAX_ADDRESSABLE} bytes"
            )
        if self.packet_size <= 0:
            raise ValueError(f"{self.name}: packet size must be positive")
        if self.max_poll_iterations is not None and self.max_poll_iterations <= 0:
            raise ValueError(f"{self.name}: poll limit must be positive or None")


# ============================================================================
# DEVICE REGISTRY - All known parts
# ============================================================================

_DEVICE_REGISTRY: Dict[str, FlashDeviceConfig] = {}

DEFAULT_DEVICE = "M25P32"


def _register_device(config: FlashDeviceConfig) -> None:
    """Register a device configuration."""
    _DEVICE_REGISTRY[config.name.upper()] = config


def _init_registry() -> None:
    """Initialize the registry with known parts."""

    # Micron/ST M25P family
    _register_device(FlashDeviceConfig(
        name="M25P16", vendor="Micron", jedec_id=b"\x20\x20\x15", capacity=MiB(2),
    ))
    _register_device(FlashDeviceConfig(
        name="M25P32", vendor="Micron", jedec_id=b"\x20\x20\x16", capacity=MiB(4),
    ))
    _register_device(FlashDeviceConfig(
        name="M25P64", vendor="Micron", jedec_id=b"\x20\x20\x17", capacity=MiB(8),
    ))
    # Bulk erase of the 128 Mbit part takes minutes
    _register_device(FlashDeviceConfig(
        name="M25P128", vendor="Micron", jedec_id=b"\x20\x20\x18", capacity=MiB(16),
        clock_rate=20_000_000, bulk_erase_wait=1.0,
    ))

    # Winbond W25Q family (chip erase 0xC7 on all parts)
    _register_device(FlashDeviceConfig(
        name="W25Q32", vendor="Winbond", jedec_id=b"\xEF\x40\x16", capacity=MiB(4),
    ))
    _register_device(FlashDeviceConfig(
        name="W25Q64", vendor="Winbond", jedec_id=b"\xEF\x40\x17", capacity=MiB(8),
    ))
    _register_device(FlashDeviceConfig(
        name="W25Q128", vendor="Winbond", jedec_id=b"\xEF\x40\x18", capacity=MiB(16),
    ))

    # Macronix / Spansion
    _register_device(FlashDeviceConfig(
        name="MX25L3206E", vendor="Macronix", jedec_id=b"\xC2\x20\x16", capacity=MiB(4),
    ))
    _register_device(FlashDeviceConfig(
        name="S25FL032P", vendor="Spansion", jedec_id=b"\x01\x02\x15", capacity=MiB(4),
    ))


# Initialize registry on module load
_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_devices() -> List[str]:
    """
    List all registered part names.

    Returns:
        Sorted list of part names.
    """
    return sorted(config.name for config in _DEVICE_REGISTRY.values())


def get_device(name: str) -> Optional[FlashDeviceConfig]:
    """
    Get configuration for a part.

    Args:
        name: Part name (case-insensitive)

    Returns:
        FlashDeviceConfig or None if not found.
    """
    return _DEVICE_REGISTRY.get(name.strip().upper())


def get_default_device() -> FlashDeviceConfig:
    """Configuration of the default 4 MiB target part."""
    return _DEVICE_REGISTRY[DEFAULT_DEVICE]


def detect_device(jedec_id: bytes) -> Optional[FlashDeviceConfig]:
    """
    Match a JEDEC ID read from the device against registered parts.

    Returns:
        Matching FlashDeviceConfig, or None if no match.
    """
    for config in _DEVICE_REGISTRY.values():
        if config.jedec_id and bytes(jedec_id[:len(config.jedec_id)]) == config.jedec_id:
            return config
    return None
