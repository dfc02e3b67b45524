"""Tests for numeric option parsing."""

import pytest

from spi_flash_programmer.core.parsing import parse_int, parse_size, parse_frequency


class TestParseInt:

    def test_formats(self):
        assert parse_int("4096") == 4096
        assert parse_int("0x1000") == 4096
        assert parse_int("0X1000") == 4096
        assert parse_int("1000h") == 4096
        assert parse_int("1000H") == 4096

    def test_not_given(self):
        assert parse_int(None) is None
        assert parse_int("") is None
        assert parse_int("   ") is None

    def test_invalid(self):
        with pytest.raises(ValueError, match="poll limit"):
            parse_int("lots", "poll limit")


class TestParseSize:

    def test_multipliers(self):
        assert parse_size("4M") == 4 * 1024 * 1024
        assert parse_size("256k") == 256 * 1024
        assert parse_size("0x100") == 256
        assert parse_size("100") == 100

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            parse_size("-1")

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_size("k")
        with pytest.raises(ValueError):
            parse_size("ten")


class TestParseFrequency:

    def test_formats(self):
        assert parse_frequency("10000000") == 10_000_000
        assert parse_frequency("10M") == 10_000_000
        assert parse_frequency("10MHz") == 10_000_000
        assert parse_frequency("500k") == 500_000
        assert parse_frequency("1.5M") == 1_500_000

    def test_not_given(self):
        assert parse_frequency(None) is None

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError):
            parse_frequency("0")
        with pytest.raises(ValueError):
            parse_frequency("fast")
