"""
Standardized error and message system for the SPI flash programmer.

Maps every failure category to a stable code and a one-line remediation
hint so the CLI prints a single consistent diagnostic per failure.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from .results import OperationResult


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorCode(Enum):
    """Stable codes for known failure categories."""
    E_TRANSPORT = "E_TRANSPORT"
    E_CHANNEL_NOT_OPEN = "E_CHANNEL_NOT_OPEN"
    E_NO_CHANNEL = "E_NO_CHANNEL"
    E_DEVICE_BUSY = "E_DEVICE_BUSY"
    E_WRITE_ENABLE = "E_WRITE_ENABLE"
    E_LENGTH_MISMATCH = "E_LENGTH_MISMATCH"
    E_SIZE_EXCEEDED = "E_SIZE_EXCEEDED"
    E_POLL_LIMIT = "E_POLL_LIMIT"
    E_VERIFY_MISMATCH = "E_VERIFY_MISMATCH"
    E_FILE = "E_FILE"
    E_UNKNOWN = "E_UNKNOWN"

    # Non-blocking
    W_ID_MISMATCH = "W_ID_MISMATCH"
    W_SIMULATED = "W_SIMULATED"
    W_UNKNOWN = "W_UNKNOWN"


ERROR_REMEDIATIONS: Dict[ErrorCode, str] = {
    ErrorCode.E_TRANSPORT:
        "Check the USB cable and that no other program holds the FTDI device.",
    ErrorCode.E_CHANNEL_NOT_OPEN:
        "Open the channel before issuing flash commands.",
    ErrorCode.E_NO_CHANNEL:
        "No SPI channel found. Run 'channels' to list attached bridges.",
    ErrorCode.E_DEVICE_BUSY:
        "The flash reported busy at the start of a command. Power cycle the target.",
    ErrorCode.E_WRITE_ENABLE:
        "Write enable latch did not set. Check WP#/HOLD# pins and wiring.",
    ErrorCode.E_LENGTH_MISMATCH:
        "The bridge transferred fewer bytes than requested. Lower --clock.",
    ErrorCode.E_SIZE_EXCEEDED:
        "Image is larger than the flash. Check --device.",
    ErrorCode.E_POLL_LIMIT:
        "Device stayed busy too long. Raise --poll-limit or check the part.",
    ErrorCode.E_VERIFY_MISMATCH:
        "Read back differs from the image. Check --bit-swap and signal integrity.",
    ErrorCode.E_FILE:
        "Check the file path and permissions.",
    ErrorCode.E_UNKNOWN:
        "Check logs for more details.",
    ErrorCode.W_ID_MISMATCH:
        "JEDEC ID differs from the selected part. Check --device.",
    ErrorCode.W_SIMULATED:
        "No hardware was touched. Drop --simulate to program a real device.",
    ErrorCode.W_UNKNOWN:
        "Check logs for more details.",
}


@dataclass
class MessageItem:
    """
    Structured message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable code for programmatic handling
        title: Short, user-facing title
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: ErrorCode
    title: str
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in ERROR_REMEDIATIONS:
            self.remediation = ERROR_REMEDIATIONS[self.code]

    @classmethod
    def warn(cls, code: ErrorCode, title: str) -> "MessageItem":
        """Create a WARN-level message."""
        return cls(MessageLevel.WARN, code, title)

    @classmethod
    def error(cls, code: ErrorCode, title: str) -> "MessageItem":
        """Create an ERROR-level message."""
        return cls(MessageLevel.ERROR, code, title)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        line = f"[{self.code.value}] {self.title}"
        if verbose and self.remediation:
            return f"{line}\n   → {self.remediation}"
        return line


def error_code_for(exc: BaseException) -> ErrorCode:
    """Map an exception raised by the protocol layers to its ErrorCode."""
    # Import here to avoid circular imports
    from spi_flash_programmer.protocol import (
        TransportError,
        ChannelNotOpen,
        DeviceBusy,
        WriteEnableNotSet,
        LengthMismatch,
        SizeExceeded,
        PollLimitExceeded,
    )

    mapping = [
        (ChannelNotOpen, ErrorCode.E_CHANNEL_NOT_OPEN),
        (TransportError, ErrorCode.E_TRANSPORT),
        (DeviceBusy, ErrorCode.E_DEVICE_BUSY),
        (WriteEnableNotSet, ErrorCode.E_WRITE_ENABLE),
        (LengthMismatch, ErrorCode.E_LENGTH_MISMATCH),
        (SizeExceeded, ErrorCode.E_SIZE_EXCEEDED),
        (PollLimitExceeded, ErrorCode.E_POLL_LIMIT),
        (OSError, ErrorCode.E_FILE),
    ]
    for exc_type, code in mapping:
        if isinstance(exc, exc_type):
            return code
    return ErrorCode.E_UNKNOWN


def warning_code_for(message: str) -> ErrorCode:
    """Guess the code of a plain warning string."""
    msg_lower = message.lower()
    if "jedec" in msg_lower:
        return ErrorCode.W_ID_MISMATCH
    if "simulat" in msg_lower:
        return ErrorCode.W_SIMULATED
    return ErrorCode.W_UNKNOWN


def result_to_messages(result: "OperationResult") -> List[MessageItem]:
    """
    Convert a result's warnings and errors to MessageItem list.

    The first error carries the result's error code.
    """
    items = [
        MessageItem.warn(warning_code_for(warning), warning)
        for warning in result.warnings
    ]
    for i, err in enumerate(result.errors):
        code = result.error_code if i == 0 and result.error_code else ErrorCode.E_UNKNOWN
        items.append(MessageItem.error(code, err))
    return items
