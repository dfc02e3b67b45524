"""
Core workflow actions for the SPI flash programmer.

Each action opens the channel, runs one workflow and returns an
OperationResult. Protocol and transport exceptions are converted into
failed results here and nowhere else.
"""

import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Union

from spi_flash_programmer.devices import FlashDeviceConfig, detect_device
from spi_flash_programmer.protocol import (
    SpiTransport,
    SpiFlashMemory,
    ProgressCallback,
    TransportError,
    FlashProtocolError,
    SizeExceeded,
    describe_status,
)
from .messages import ErrorCode, error_code_for
from .programmer import FlashProgrammer, VerifyOutcome
from .results import OperationResult

logger = logging.getLogger(__name__)

_HANDLED_ERRORS = (TransportError, FlashProtocolError, OSError)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "spi_flash_programmer"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _failure(operation: str, exc: BaseException, config: FlashDeviceConfig) -> OperationResult:
    logger.error(f"{operation} failed: {exc}")
    return OperationResult.failure(
        operation=operation,
        error=str(exc),
        code=error_code_for(exc),
        device=config.name,
    )


def _require_channel(transport: SpiTransport, channel: int) -> Optional[OperationResult]:
    """Log channel info, or return a failure when no usable channel exists."""
    count = transport.channel_count()
    if count == 0:
        return OperationResult.failure(
            operation="open_channel",
            error="No device found",
            code=ErrorCode.E_NO_CHANNEL,
        )
    info = transport.channel_info(channel)
    for line in info.to_lines():
        logger.info(line)
    return None


def _record_identity(flash: SpiFlashMemory, result: OperationResult) -> None:
    """Read JEDEC ID and status into the result; warn when the ID is unexpected."""
    jedec_id = flash.read_id()
    status = flash.read_status()
    result.metadata["jedec_id"] = jedec_id.hex().upper()
    result.metadata["status"] = describe_status(status)
    logger.info("Memory ID: " + " ".join(f"0x{b:02X}" for b in jedec_id))
    logger.info(f"Memory status: {describe_status(status)}")

    expected = flash.config.jedec_id
    if expected and bytes(jedec_id[:len(expected)]) != expected:
        detected = detect_device(jedec_id)
        hint = f" (looks like {detected.name})" if detected else ""
        result.add_warning(
            f"JEDEC ID {jedec_id.hex().upper()} does not match "
            f"{flash.config.name} ({expected.hex().upper()}){hint}"
        )


def list_channels(transport: SpiTransport) -> OperationResult:
    """
    Enumerate SPI channels.

    Returns:
        OperationResult with metadata["channels"]: list of ChannelInfo
    """
    with _capture_logs() as logs:
        try:
            count = transport.channel_count()
            channels = [transport.channel_info(i) for i in range(count)]
        except TransportError as e:
            logger.error(f"channel enumeration failed: {e}")
            result = OperationResult.failure("channels", str(e), code=error_code_for(e))
            result.logs = logs
            return result

        result = OperationResult.success(operation="channels")
        result.metadata["channels"] = channels
        if not channels:
            result.add_warning("No SPI channels found")
        result.logs = logs
        return result


def identify(
    transport: SpiTransport,
    config: FlashDeviceConfig,
    channel: int = 0,
) -> OperationResult:
    """
    Read JEDEC ID and status register.

    Returns:
        OperationResult with:
            - metadata["jedec_id"]: hex string
            - metadata["status"]: decoded status register
            - metadata["detected"]: name of the matching known part, if any
    """
    with _capture_logs() as logs:
        try:
            missing = _require_channel(transport, channel)
            if missing is not None:
                missing.logs = logs
                return missing

            result = OperationResult.success(operation="info", device=config.name)
            with SpiFlashMemory(transport, config, channel=channel) as flash:
                _record_identity(flash, result)
                detected = detect_device(bytes.fromhex(result.metadata["jedec_id"]))
                result.metadata["detected"] = detected.name if detected else None
        except _HANDLED_ERRORS as e:
            result = _failure("info", e, config)

        result.logs = logs
        return result


def program_image(
    image_path: Union[str, Path],
    transport: SpiTransport,
    config: FlashDeviceConfig,
    channel: int = 0,
    bit_swap: bool = False,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Erase the device, write a raw image, read it back and compare.

    Args:
        image_path: Raw binary image, at most the device capacity
        transport: SPI bridge
        config: Flash part parameters
        channel: Channel index to open
        bit_swap: Reverse bit order of every byte on the bus
        progress_cb: Optional ProgressEvent sink

    Returns:
        OperationResult with:
            - ok: True only when the read back equals the image
            - metadata["verdict"]: "SUCCESS" or "FAILURE"
            - metadata["mismatch_offset"] / ["mismatch_count"] on FAILURE
            - hashes["sha256"]: hash of the image
    """
    with _capture_logs() as logs:
        try:
            path = Path(image_path)
            image = path.read_bytes()
            logger.info(f"File name: {path}")
            logger.info(f"File size: {len(image)} bytes")

            if len(image) > config.capacity:
                raise SizeExceeded(
                    f"Memory size exceeded: image is {len(image)} bytes, "
                    f"{config.name} holds {config.capacity}"
                )

            missing = _require_channel(transport, channel)
            if missing is not None:
                missing.logs = logs
                return missing

            result = OperationResult.success(
                operation="program",
                device=config.name,
                region=(0, len(image)),
                bytes_len=len(image),
            )
            result.hashes["sha256"] = hashlib.sha256(image).hexdigest()

            with SpiFlashMemory(
                transport, config, bit_swap=bit_swap, progress_cb=progress_cb, channel=channel
            ) as flash:
                _record_identity(flash, result)
                programmer = FlashProgrammer(flash)
                outcome = programmer.program_and_verify(image)

            result.metadata["verdict"] = outcome.value
            if outcome is VerifyOutcome.MISMATCH:
                offset, count = programmer.last_mismatch
                result.metadata["mismatch_offset"] = offset
                result.metadata["mismatch_count"] = count
                result.add_error(
                    f"Verify failed: {count} byte(s) differ, first at 0x{offset:06X}",
                    ErrorCode.E_VERIFY_MISMATCH,
                )
        except _HANDLED_ERRORS as e:
            result = _failure("program", e, config)

        result.logs = logs
        return result


def read_flash(
    output_path: Union[str, Path],
    transport: SpiTransport,
    config: FlashDeviceConfig,
    length: Optional[int] = None,
    channel: int = 0,
    bit_swap: bool = False,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Dump `length` bytes (default: whole device) from address 0 into a file.

    Returns:
        OperationResult with hashes["sha256"] of the data read
    """
    length = config.capacity if length is None else length
    with _capture_logs() as logs:
        try:
            if length > config.capacity:
                raise SizeExceeded(
                    f"Memory size exceeded: {length} bytes requested, "
                    f"{config.name} holds {config.capacity}"
                )

            missing = _require_channel(transport, channel)
            if missing is not None:
                missing.logs = logs
                return missing

            with SpiFlashMemory(
                transport, config, bit_swap=bit_swap, progress_cb=progress_cb, channel=channel
            ) as flash:
                data = FlashProgrammer(flash).read_all(length)

            Path(output_path).write_bytes(data)
            logger.info(f"Saved {len(data)} bytes to {output_path}")

            result = OperationResult.success(
                operation="read",
                device=config.name,
                region=(0, length),
                bytes_len=len(data),
            )
            result.hashes["sha256"] = hashlib.sha256(data).hexdigest()
            result.metadata["output"] = str(output_path)
        except _HANDLED_ERRORS as e:
            result = _failure("read", e, config)

        result.logs = logs
        return result


def erase_flash(
    transport: SpiTransport,
    config: FlashDeviceConfig,
    channel: int = 0,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Bulk erase the whole device."""
    with _capture_logs() as logs:
        try:
            missing = _require_channel(transport, channel)
            if missing is not None:
                missing.logs = logs
                return missing

            with SpiFlashMemory(
                transport, config, progress_cb=progress_cb, channel=channel
            ) as flash:
                flash.bulk_erase()

            result = OperationResult.success(
                operation="erase",
                device=config.name,
                region=(0, config.capacity),
                bytes_len=config.capacity,
            )
        except _HANDLED_ERRORS as e:
            result = _failure("erase", e, config)

        result.logs = logs
        return result


def blank_check(
    transport: SpiTransport,
    config: FlashDeviceConfig,
    channel: int = 0,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Check that every byte of the device reads 0xFF.

    The result is ok when the check ran; metadata["empty"] holds the answer.
    """
    with _capture_logs() as logs:
        try:
            missing = _require_channel(transport, channel)
            if missing is not None:
                missing.logs = logs
                return missing

            with SpiFlashMemory(
                transport, config, progress_cb=progress_cb, channel=channel
            ) as flash:
                empty = FlashProgrammer(flash).is_empty()

            result = OperationResult.success(
                operation="blank_check",
                device=config.name,
                region=(0, config.capacity),
                bytes_len=config.capacity,
            )
            result.metadata["empty"] = empty
            logger.info("Memory is empty" if empty else "Memory is not empty")
        except _HANDLED_ERRORS as e:
            result = _failure("blank_check", e, config)

        result.logs = logs
        return result
