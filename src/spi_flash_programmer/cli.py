"""
SPI Flash Programmer CLI

Command-line interface for erasing, programming, reading and verifying
serial NOR flash through an FTDI USB-to-SPI bridge.
"""

import sys
import json
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import (
    Progress,
    SpinnerColumn,
    BarColumn,
    TextColumn,
    TimeElapsedColumn,
    TaskID,
)

from spi_flash_programmer.protocol import (
    SpiTransport,
    FtdiSpiTransport,
    SimulatedSpiFlash,
    ProgressEvent,
)
from spi_flash_programmer.devices import (
    FlashDeviceConfig,
    DEFAULT_DEVICE,
    list_devices as registry_list_devices,
    get_device as registry_get_device,
)
from spi_flash_programmer.core.parsing import parse_int, parse_size, parse_frequency
from spi_flash_programmer.core.results import OperationResult
from spi_flash_programmer.core.messages import MessageLevel, MessageItem, result_to_messages
from spi_flash_programmer.core.actions import (
    list_channels as core_list_channels,
    identify as core_identify,
    program_image as core_program_image,
    read_flash as core_read_flash,
    erase_flash as core_erase_flash,
    blank_check as core_blank_check,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("spi_flash_programmer")

# Setup Rich console
console = Console()

app = typer.Typer(help="🔧 SPI Flash Programmer - erase, program and verify serial NOR flash")

# Poll interval used by --simulate so dry runs finish quickly
SIMULATED_ERASE_WAIT = 0.05

# Options shared by the device commands
ChannelOption = typer.Option(0, "--channel", "-c", help="Channel index (see 'channels')")
DeviceOption = typer.Option(DEFAULT_DEVICE, "--device", "-d", help="Flash part (see 'devices')")
BitSwapOption = typer.Option(False, "--bit-swap", help="Reverse bit order of every data byte")
ClockOption = typer.Option(None, "--clock", help="SPI clock, e.g. 10M or 500k (default: part setting)")
PollLimitOption = typer.Option(None, "--poll-limit", help="Max status polls per busy-wait (default: unbounded)")
SimulateOption = typer.Option(False, "--simulate", help="Use a simulated flash chip instead of hardware")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging and remediation hints")
JsonOption = typer.Option(False, "--json", "-j", help="Output the result as JSON for scripting")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_message(item: MessageItem, verbose: bool = False) -> None:
    """Print a structured message with optional remediation."""
    if item.level == MessageLevel.ERROR:
        print_error(escape(item.to_cli_string(verbose)))
    else:
        print_warning(escape(item.to_cli_string(verbose)))


def print_json(result: OperationResult) -> None:
    """Print a result, its messages and captured logs as one JSON document."""
    payload = result.to_dict()
    payload["messages"] = [item.to_dict() for item in result_to_messages(result)]
    console.print(json.dumps(payload, indent=2), markup=False, highlight=False, soft_wrap=True)


def finish(result: OperationResult, verbose: bool = False, output_json: bool = False) -> None:
    """Print warnings and errors of a result (or the JSON form); exit 1 if it failed."""
    if output_json:
        print_json(result)
    else:
        for item in result_to_messages(result):
            print_message(item, verbose=verbose)
    if not result.ok:
        raise typer.Exit(1)


class RichProgressSink:
    """
    Render ProgressEvent notifications on a rich Progress display.

    Transfers (write/read/blank-check) get a percentage bar; bulk erase,
    which only reports busy polls, gets an indeterminate spinner.
    """

    LABELS = {
        "erase": "Erasing",
        "write": "Writing",
        "read": "Reading",
        "blank-check": "Blank check",
    }

    def __init__(self, progress: Progress):
        self.progress = progress
        self._tasks: Dict[str, TaskID] = {}

    def _task(self, event: ProgressEvent) -> TaskID:
        task = self._tasks.get(event.operation)
        if task is None:
            label = self.LABELS.get(event.operation, event.operation)
            total = event.total if event.percent is not None else None
            task = self.progress.add_task(label, total=total)
            self._tasks[event.operation] = task
        return task

    def __call__(self, event: ProgressEvent) -> None:
        task = self._task(event)
        if event.finished:
            total = event.total or 1
            self.progress.update(task, total=total, completed=total)
        elif event.percent is not None:
            self.progress.update(task, total=event.total, completed=event.done)
        else:
            self.progress.update(task, advance=1)


@contextmanager
def progress_sink(enabled: bool = True) -> Iterator[Optional[RichProgressSink]]:
    """Yield a progress sink, or None when progress output is disabled."""
    if not enabled:
        yield None
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        yield RichProgressSink(progress)


def setup(
    device: str,
    clock: Optional[str] = None,
    poll_limit: Optional[str] = None,
    simulate: bool = False,
    verbose: bool = False,
) -> Tuple[SpiTransport, FlashDeviceConfig]:
    """
    Resolve the flash part, apply option overrides and build the transport.

    Exits with code 1 on unknown parts or malformed option values.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)

    config = registry_get_device(device)
    if config is None:
        print_error(f"Unknown device '{device}'. Known: {', '.join(registry_list_devices())}")
        raise typer.Exit(1)

    overrides = {}
    try:
        clock_rate = parse_frequency(clock)
        limit = parse_int(poll_limit, "poll limit")
        if clock_rate is not None:
            overrides["clock_rate"] = clock_rate
        if limit is not None:
            overrides["max_poll_iterations"] = limit
        if simulate:
            overrides["page_program_wait"] = 0.0
            overrides["bulk_erase_wait"] = SIMULATED_ERASE_WAIT
        config = replace(config, **overrides)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if simulate:
        transport = SimulatedSpiFlash.for_device(config)
    else:
        transport = FtdiSpiTransport(
            clock_rate=config.clock_rate,
            latency_timer=config.latency_timer,
        )
    return transport, config


def _mark_simulated(result: OperationResult, simulate: bool) -> None:
    if simulate:
        result.add_warning("Simulated device: no hardware was touched")


@app.command()
def program(
    image: str = typer.Argument(..., help="Raw binary image to program"),
    channel: int = ChannelOption,
    device: str = DeviceOption,
    bit_swap: bool = BitSwapOption,
    clock: Optional[str] = ClockOption,
    poll_limit: Optional[str] = PollLimitOption,
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """Erase the flash, program IMAGE, read it back and verify."""
    if not output_json:
        print_header("Program SPI Flash")
    transport, config = setup(device, clock, poll_limit, simulate, verbose)

    with progress_sink(enabled=not output_json) as sink:
        result = core_program_image(
            image,
            transport,
            config,
            channel=channel,
            bit_swap=bit_swap,
            progress_cb=sink,
        )
    _mark_simulated(result, simulate)

    if not output_json:
        verdict = result.metadata.get("verdict")
        if verdict == "SUCCESS":
            console.print("SUCCESS", style="bold green")
        elif verdict == "FAILURE":
            console.print("FAILURE", style="bold red")

        if verbose:
            console.print(result.to_summary(), style="dim")
    finish(result, verbose, output_json)


@app.command()
def read(
    output: str = typer.Argument(..., help="File to write the flash contents to"),
    length: Optional[str] = typer.Option(None, "--length", "-l", help="Bytes to read, e.g. 0x1000 or 64k (default: whole device)"),
    channel: int = ChannelOption,
    device: str = DeviceOption,
    bit_swap: bool = BitSwapOption,
    clock: Optional[str] = ClockOption,
    poll_limit: Optional[str] = PollLimitOption,
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """Read flash contents from address 0 into OUTPUT."""
    if not output_json:
        print_header("Read SPI Flash")
    transport, config = setup(device, clock, poll_limit, simulate, verbose)

    try:
        size = parse_size(length)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    with progress_sink(enabled=not output_json) as sink:
        result = core_read_flash(
            output,
            transport,
            config,
            length=size,
            channel=channel,
            bit_swap=bit_swap,
            progress_cb=sink,
        )
    _mark_simulated(result, simulate)

    if result.ok and not output_json:
        print_success(f"Saved {result.bytes_len:,} bytes to {output}")
        console.print(f"SHA-256: {result.hashes['sha256']}")
    finish(result, verbose, output_json)


@app.command()
def erase(
    channel: int = ChannelOption,
    device: str = DeviceOption,
    clock: Optional[str] = ClockOption,
    poll_limit: Optional[str] = PollLimitOption,
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """Bulk erase the whole flash."""
    if not output_json:
        print_header("Erase SPI Flash")
    transport, config = setup(device, clock, poll_limit, simulate, verbose)

    with progress_sink(enabled=not output_json) as sink:
        result = core_erase_flash(transport, config, channel=channel, progress_cb=sink)
    _mark_simulated(result, simulate)

    if result.ok and not output_json:
        print_success(f"Erased {config.name} ({config.capacity:,} bytes)")
    finish(result, verbose, output_json)


@app.command("blank-check")
def blank_check(
    channel: int = ChannelOption,
    device: str = DeviceOption,
    clock: Optional[str] = ClockOption,
    poll_limit: Optional[str] = PollLimitOption,
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """Check that every byte reads 0xFF. Exits 1 when the flash is not blank."""
    if not output_json:
        print_header("Blank Check")
    transport, config = setup(device, clock, poll_limit, simulate, verbose)

    with progress_sink(enabled=not output_json) as sink:
        result = core_blank_check(transport, config, channel=channel, progress_cb=sink)
    _mark_simulated(result, simulate)
    finish(result, verbose, output_json)

    empty = result.metadata.get("empty")
    if not output_json:
        if empty:
            print_success("Memory is empty")
        else:
            print_warning("Memory is not empty")
    if not empty:
        raise typer.Exit(1)


@app.command()
def info(
    channel: int = ChannelOption,
    device: str = DeviceOption,
    clock: Optional[str] = ClockOption,
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """Show JEDEC ID, status register and the matching known part."""
    if not output_json:
        print_header("Flash Information")
    transport, config = setup(device, clock, None, simulate, verbose)

    result = core_identify(transport, config, channel=channel)
    _mark_simulated(result, simulate)

    if result.ok and not output_json:
        table = Table(title="Flash Information")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Selected part", config.name)
        table.add_row("Expected ID", config.jedec_id.hex().upper() or "-")
        table.add_row("JEDEC ID", result.metadata["jedec_id"])
        table.add_row("Status", result.metadata["status"])
        table.add_row("Detected part", result.metadata.get("detected") or "unknown")
        table.add_row("Memory size", f"{config.capacity:,} bytes")

        console.print(table)
    finish(result, verbose, output_json)


@app.command()
def channels(
    simulate: bool = SimulateOption,
    verbose: bool = VerboseOption,
    output_json: bool = JsonOption,
) -> None:
    """List USB-to-SPI channels and their details."""
    transport, _ = setup(DEFAULT_DEVICE, simulate=simulate, verbose=verbose)

    result = core_list_channels(transport)
    if output_json:
        finish(result, verbose, output_json)
        return

    found = result.metadata.get("channels", [])
    if result.ok:
        console.print(f"Channels: {len(found)}")

    if found:
        table = Table(title="SPI Channels")
        table.add_column("#", style="cyan")
        table.add_column("Description", style="green")
        table.add_column("Serial")
        table.add_column("ID")
        table.add_column("Location")
        table.add_column("URL", style="dim")

        for ch in found:
            table.add_row(
                str(ch.index),
                ch.description,
                ch.serial_number,
                f"0x{ch.vendor_id:04X}:0x{ch.product_id:04X}",
                f"{ch.bus}:{ch.address}",
                ch.url,
            )
        console.print(table)
    finish(result, verbose)


@app.command()
def devices() -> None:
    """List known flash parts."""
    table = Table(title="Known Flash Parts")
    table.add_column("Name", style="cyan")
    table.add_column("Vendor")
    table.add_column("JEDEC ID", style="green")
    table.add_column("Capacity", justify="right")
    table.add_column("Packet", justify="right")

    for name in registry_list_devices():
        config = registry_get_device(name)
        marker = " (default)" if name == DEFAULT_DEVICE else ""
        table.add_row(
            f"{name}{marker}",
            config.vendor,
            config.jedec_id.hex().upper(),
            f"{config.capacity:,}",
            str(config.packet_size),
        )

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
