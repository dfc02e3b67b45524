"""SPI protocol layer - USB-to-SPI transports and the flash command engine."""

from .transport import (
    SpiTransport,
    FtdiSpiTransport,
    ChannelInfo,
    TransportError,
    ChannelNotOpen,
)
from .simulated import SimulatedSpiFlash
from .flash_protocol import (
    SpiFlashMemory,
    ProgressEvent,
    ProgressCallback,
    StatusRegister,
    FlashProtocolError,
    DeviceBusy,
    WriteEnableNotSet,
    LengthMismatch,
    SizeExceeded,
    PollLimitExceeded,
    describe_status,
    reverse_bits,
    iter_pages,
    ERASED_VALUE,
)

__all__ = [
    # Transport
    "SpiTransport",
    "FtdiSpiTransport",
    "SimulatedSpiFlash",
    "ChannelInfo",
    "TransportError",
    "ChannelNotOpen",
    # Flash protocol
    "SpiFlashMemory",
    "ProgressEvent",
    "ProgressCallback",
    "StatusRegister",
    "FlashProtocolError",
    "DeviceBusy",
    "WriteEnableNotSet",
    "LengthMismatch",
    "SizeExceeded",
    "PollLimitExceeded",
    "describe_status",
    "reverse_bits",
    "iter_pages",
    "ERASED_VALUE",
]
