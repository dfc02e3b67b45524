"""
Core module for the SPI flash programmer.

This module provides the single source of truth for:
- Numeric option parsing (parsing.py)
- Result objects (results.py)
- Whole-device program/read/verify (programmer.py)
- Workflows used by the CLI (actions.py)
- Standardized error codes and messages (messages.py)

The CLI calls into this module rather than driving the protocol engine
itself.
"""

from .parsing import parse_int, parse_size, parse_frequency
from .results import OperationResult
from .messages import (
    MessageLevel,
    ErrorCode,
    MessageItem,
    ERROR_REMEDIATIONS,
    error_code_for,
    result_to_messages,
)
from .programmer import FlashProgrammer, VerifyOutcome
from .actions import (
    list_channels,
    identify,
    program_image,
    read_flash,
    erase_flash,
    blank_check,
)

__all__ = [
    # Parsing
    "parse_int",
    "parse_size",
    "parse_frequency",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "ErrorCode",
    "MessageItem",
    "ERROR_REMEDIATIONS",
    "error_code_for",
    "result_to_messages",
    # Programmer
    "FlashProgrammer",
    "VerifyOutcome",
    # Actions
    "list_channels",
    "identify",
    "program_image",
    "read_flash",
    "erase_flash",
    "blank_check",
]
