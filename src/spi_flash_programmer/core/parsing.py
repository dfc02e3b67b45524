"""
Centralized parsing helpers for numeric command line values.

The CLI imports these helpers rather than re-implementing them.
"""

from typing import Optional

_MULTIPLIERS = {
    "k": 1 << 10,
    "m": 1 << 20,
}

_FREQ_MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000,
}


def parse_int(value: Optional[str], label: str = "value") -> Optional[int]:
    """
    Parse an integer from a string.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None or blank for "not given"

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )


def parse_size(value: Optional[str]) -> Optional[int]:
    """
    Parse a byte count, with optional binary multiplier.

    Accepts everything parse_int does plus "4M" (4 MiB) and "256k" (256 KiB).

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    suffix = text[-1].lower()
    if suffix in _MULTIPLIERS and not text.lower().startswith("0x"):
        number = parse_int(text[:-1], "size")
        if number is None:
            raise ValueError(f"Invalid size '{value}'")
        size = number * _MULTIPLIERS[suffix]
    else:
        size = parse_int(text, "size")

    if size < 0:
        raise ValueError(f"Size must not be negative: '{value}'")
    return size


def parse_frequency(value: Optional[str]) -> Optional[int]:
    """
    Parse a clock frequency in Hz.

    Accepts "10000000", "10M", "10MHz", "500k", "1.5M".

    Raises:
        ValueError: If value cannot be parsed or is not positive.
    """
    if value is None or not value.strip():
        return None

    text = value.strip().lower()
    if text.endswith("hz"):
        text = text[:-2]

    try:
        if text and text[-1] in _FREQ_MULTIPLIERS:
            hz = float(text[:-1]) * _FREQ_MULTIPLIERS[text[-1]]
        else:
            hz = float(text)
    except ValueError:
        raise ValueError(
            f"Invalid frequency '{value}'. Use Hz (10000000) or a suffix (10M, 500k)."
        )

    if hz <= 0:
        raise ValueError(f"Frequency must be positive: '{value}'")
    return int(hz)
