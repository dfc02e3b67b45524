"""
SPI Flash Programmer - program 25-series serial NOR flash over FTDI USB-to-SPI bridges

Erase, write, read back and verify raw images.
"""

__version__ = "0.1.0"

from spi_flash_programmer.protocol import FtdiSpiTransport, SimulatedSpiFlash, SpiFlashMemory
from spi_flash_programmer.core.programmer import FlashProgrammer

__all__ = [
    "FtdiSpiTransport",
    "SimulatedSpiFlash",
    "SpiFlashMemory",
    "FlashProgrammer",
    "__version__",
]
