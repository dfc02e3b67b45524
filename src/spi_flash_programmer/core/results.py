"""
Result objects for core operations.

Every workflow in core.actions returns an OperationResult; the CLI renders
it either as rich text or, with --json, through to_dict().
"""

from dataclasses import dataclass, field, asdict, is_dataclass
from typing import List, Dict, Any, Optional, Tuple

from .messages import ErrorCode


def _jsonable(value: Any) -> Any:
    """Convert metadata values to JSON types; raw bytes are dropped (None)."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return None
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


@dataclass
class OperationResult:
    """
    Outcome of one workflow run.

    Attributes:
        ok: False as soon as any error was added
        operation: Workflow name ("program", "read", "erase", ...)
        device: Flash part name
        region: Flash addresses covered, as (start, end) with end exclusive
        bytes_len: Bytes moved to or from the device
        hashes: Digest name -> hex digest
        warnings: Non-blocking findings (ID mismatch, simulated device)
        errors: Failure descriptions, first one carries error_code
        error_code: Category of the first error
        metadata: Workflow-specific values (verdict, jedec_id, channels, ...)
        logs: Log lines captured while the workflow ran
    """
    ok: bool
    operation: str
    device: str = ""
    region: Optional[Tuple[int, int]] = None
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str, code: ErrorCode = ErrorCode.E_UNKNOWN) -> None:
        """Record an error; the result becomes a failure."""
        self.errors.append(message)
        if self.error_code is None:
            self.error_code = code
        self.ok = False

    @property
    def region_text(self) -> str:
        """Region as a half-open range, e.g. '[0x000000, 0x00000A)'."""
        if self.region is None:
            return ""
        start, end = self.region
        return f"[0x{start:06X}, 0x{end:06X})"

    def to_summary(self) -> str:
        """Multi-line plain text summary."""
        lines = [f"[{'SUCCESS' if self.ok else 'FAILED'}] {self.operation}"]
        details = [
            ("Device", self.device),
            ("Region", self.region_text),
            ("Bytes", f"{self.bytes_len:,}" if self.bytes_len else ""),
        ]
        lines.extend(f"  {label}: {value}" for label, value in details if value)
        lines.extend(f"  {name}: {digest}" for name, digest in self.hashes.items())

        for title, items in (("Warnings", self.warnings), ("Errors", self.errors)):
            if items:
                lines.append(f"  {title}:")
                lines.extend(f"    - {item}" for item in items)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary; raw byte metadata is left out."""
        region = None
        if self.region is not None:
            region = {"start": self.region[0], "end": self.region[1]}
        return {
            "ok": self.ok,
            "operation": self.operation,
            "device": self.device,
            "region": region,
            "bytes_len": self.bytes_len,
            "hashes": dict(self.hashes),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "error_code": self.error_code.value if self.error_code else None,
            "metadata": {
                key: _jsonable(value)
                for key, value in self.metadata.items()
                if not isinstance(value, (bytes, bytearray, memoryview))
            },
            "logs": list(self.logs),
        }

    @classmethod
    def success(cls, operation: str, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        code: ErrorCode = ErrorCode.E_UNKNOWN,
        **kwargs,
    ) -> "OperationResult":
        result = cls(ok=False, operation=operation, **kwargs)
        result.add_error(error, code)
        return result
