"""
Device registry for serial NOR flash parts.

Provides a unified layer for part lookup, identification and parameters.
"""

from .registry import (
    FlashDeviceConfig,
    DEFAULT_DEVICE,
    MAX_ADDRESSABLE,
    list_devices,
    get_device,
    get_default_device,
    detect_device,
)

__all__ = [
    "FlashDeviceConfig",
    "DEFAULT_DEVICE",
    "MAX_ADDRESSABLE",
    "list_devices",
    "get_device",
    "get_default_device",
    "detect_device",
]
