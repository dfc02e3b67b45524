"""CLI tests against the simulated flash chip."""

import json

from typer.testing import CliRunner

from spi_flash_programmer.cli import app

runner = CliRunner()

MiB4 = 4 * 1024 * 1024


def _image(tmp_path, data=bytes(range(0x11, 0x1B))):
    path = tmp_path / "image.bin"
    path.write_bytes(data)
    return str(path)


class TestProgram:

    def test_missing_image_is_usage_error(self):
        result = runner.invoke(app, ["program"])
        assert result.exit_code == 2

    def test_success(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate"])

        assert result.exit_code == 0, result.output
        assert "SUCCESS" in result.output
        assert "W_SIMULATED" in result.output

    def test_bit_swap_round_trips(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "--bit-swap"])
        assert result.exit_code == 0, result.output
        assert "SUCCESS" in result.output

    def test_image_larger_than_device(self, tmp_path):
        path = _image(tmp_path, b"\x00" * (MiB4 + 1))

        result = runner.invoke(app, ["program", path, "--simulate"])

        assert result.exit_code == 1
        assert "E_SIZE_EXCEEDED" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["program", str(tmp_path / "nope.bin"), "--simulate"])

        assert result.exit_code == 1
        assert "E_FILE" in result.output

    def test_missing_channel(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "--channel", "3"])

        assert result.exit_code == 1
        assert "E_TRANSPORT" in result.output


class TestOptions:

    def test_unknown_device(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "-d", "NOPE"])
        assert result.exit_code == 1
        assert "Unknown device" in result.output

    def test_invalid_clock(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "--clock", "fast"])
        assert result.exit_code == 1

    def test_invalid_poll_limit(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "--poll-limit", "0"])
        assert result.exit_code == 1

    def test_other_part(self, tmp_path):
        result = runner.invoke(
            app, ["program", _image(tmp_path), "--simulate", "--device", "W25Q32", "--clock", "20M"]
        )
        assert result.exit_code == 0, result.output


def test_read(tmp_path):
    out = tmp_path / "dump.bin"

    result = runner.invoke(app, ["read", str(out), "--length", "0x100", "--simulate"])

    assert result.exit_code == 0, result.output
    assert out.read_bytes() == b"\xFF" * 256


def test_read_invalid_length(tmp_path):
    result = runner.invoke(app, ["read", str(tmp_path / "dump.bin"), "--length", "lots", "--simulate"])
    assert result.exit_code == 1


def test_erase():
    result = runner.invoke(app, ["erase", "--simulate"])
    assert result.exit_code == 0, result.output


def test_blank_check():
    result = runner.invoke(app, ["blank-check", "--simulate", "--device", "M25P16"])
    assert result.exit_code == 0, result.output
    assert "Memory is empty" in result.output


def test_info():
    result = runner.invoke(app, ["info", "--simulate"])

    assert result.exit_code == 0, result.output
    assert "202016" in result.output
    assert "M25P32" in result.output


def test_channels():
    result = runner.invoke(app, ["channels", "--simulate"])

    assert result.exit_code == 0, result.output
    assert "Channels: 1" in result.output
    assert "sim://0" in result.output


def test_devices():
    result = runner.invoke(app, ["devices"])

    assert result.exit_code == 0
    assert "M25P32" in result.output
    assert "W25Q128" in result.output


def _json_payload(output):
    """Parse the JSON document that ends the command output."""
    return json.loads(output[output.index("{\n"):])


class TestJsonOutput:

    def test_program(self, tmp_path):
        result = runner.invoke(app, ["program", _image(tmp_path), "--simulate", "--json"])

        assert result.exit_code == 0, result.output
        payload = _json_payload(result.output)
        assert payload["ok"] is True
        assert payload["operation"] == "program"
        assert payload["metadata"]["verdict"] == "SUCCESS"
        assert payload["region"] == {"start": 0, "end": 10}
        assert payload["bytes_len"] == 10
        assert any("Memory ID" in line for line in payload["logs"])
        assert [m["code"] for m in payload["messages"]] == ["W_SIMULATED"]

    def test_failure_exits_1_with_error_code(self, tmp_path):
        result = runner.invoke(app, ["program", str(tmp_path / "nope.bin"), "--simulate", "-j"])

        assert result.exit_code == 1
        payload = _json_payload(result.output)
        assert payload["ok"] is False
        assert payload["error_code"] == "E_FILE"
        assert payload["messages"][-1]["level"] == "error"

    def test_channels_serializes_channel_info(self):
        result = runner.invoke(app, ["channels", "--simulate", "--json"])

        assert result.exit_code == 0, result.output
        payload = _json_payload(result.output)
        assert payload["metadata"]["channels"][0]["url"] == "sim://0"
        assert "Channels:" not in result.output

    def test_blank_check(self):
        result = runner.invoke(app, ["blank-check", "--simulate", "--device", "M25P16", "--json"])

        assert result.exit_code == 0, result.output
        assert _json_payload(result.output)["metadata"]["empty"] is True
