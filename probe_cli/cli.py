from dataclasses import dataclass
from pathlib import Path

import typer

from . import __version__
from .commands import (
    AttachCmd,
    BenchmarkCmd,
    ChipCmd,
    Command,
    DapServerCmd,
    DebugCmd,
    DownloadCmd,
    EraseCmd,
    GdbCmd,
    InfoCmd,
    ItmCmd,
    ListCmd,
    ProbeOptions,
    ProfileCmd,
    ReadCmd,
    ResetCmd,
    RunCmd,
    TestCmd,
    TraceCmd,
    WriteCmd,
)
from .config import FormatOptions
from .errors import UnknownFormatError
from .formats import FormatKind
from .utils import parse_u32, parse_u64

PROG_NAME = "probe-cli"

app = typer.Typer(name=PROG_NAME, help="The probe-cli command line", no_args_is_help=True, add_completion=False)
chip_app = typer.Typer(help="Inspect the chips known to probe-cli", no_args_is_help=True)
app.add_typer(chip_app, name="chip")


@dataclass
class ParsedInvocation:
    log_file: Path | None = None
    log_to_folder: bool = False
    subcommand: Command | None = None


def _parse_format(value: str | None) -> FormatKind | None:
    if value is None:
        return None
    try:
        return FormatKind.parse(value)
    except UnknownFormatError as e:
        raise typer.BadParameter(str(e)) from e


def _option_parser(parse):
    def parser(value):
        try:
            return parse(value)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e

    return parser


CHIP_OPTION = typer.Option(None, "--chip", help="The target chip to attach to")
PROBE_OPTION = typer.Option(None, "--probe", help="Use this probe (VID:PID[:SERIAL])")
SPEED_OPTION = typer.Option(None, "--speed", help="The protocol speed in kHz")
PROTOCOL_OPTION = typer.Option(None, "--protocol", help="The debug protocol to use (swd or jtag)")
CONNECT_UNDER_RESET_OPTION = typer.Option(False, "--connect-under-reset", help="Connect while reset is asserted")

FORMAT_OPTION = typer.Option(
    None,
    "--format",
    help="Image format: bin, hex, elf, idf or uf2. Defaults to the target's preferred format, then ELF",
    callback=_parse_format,
)
BASE_ADDRESS_OPTION = typer.Option(
    None,
    "--base-address",
    help="Where the binary is put in memory; only used with --format bin",
    parser=_option_parser(parse_u64),
)
SKIP_OPTION = typer.Option(
    "0",
    "--skip",
    help="Bytes to skip at the start of the binary; only used with --format bin",
    parser=_option_parser(parse_u32),
)
IDF_BOOTLOADER_OPTION = typer.Option(None, "--idf-bootloader", help="The IDF bootloader image")
IDF_PARTITION_TABLE_OPTION = typer.Option(None, "--idf-partition-table", help="The IDF partition table")


def _probe_options(chip, probe, speed, protocol, connect_under_reset) -> ProbeOptions:
    return ProbeOptions(
        chip=chip,
        probe=probe,
        speed=speed,
        protocol=protocol,
        connect_under_reset=connect_under_reset,
    )


def _format_options(format, base_address, skip, idf_bootloader, idf_partition_table) -> FormatOptions:
    return FormatOptions(
        format=format,
        base_address=base_address,
        skip=skip,
        idf_bootloader=idf_bootloader,
        idf_partition_table=idf_partition_table,
    )


def _select(ctx: typer.Context, subcommand: Command) -> None:
    ctx.find_root().obj.subcommand = subcommand


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{PROG_NAME} {__version__}")
        raise typer.Exit()


@app.callback()
def main_options(
    ctx: typer.Context,
    log_file: Path | None = typer.Option(
        None,
        "--log-file",
        help="Location for the log file. If not given, the behaviour depends on --log-to-folder",
    ),
    log_to_folder: bool = typer.Option(
        False,
        "--log-to-folder",
        help="Log to the default folder. Ignored if --log-file is given",
    ),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
):
    invocation = ctx.ensure_object(ParsedInvocation)
    invocation.log_file = log_file
    invocation.log_to_folder = log_to_folder


@app.command("dap-server")
def dap_server(
    ctx: typer.Context,
    port: int = typer.Option(50000, "--port", help="The TCP port the server listens on"),
    single_session: bool = typer.Option(False, "--single-session", help="Exit after the first session"),
    vscode: bool = typer.Option(False, "--vscode", help="Started by the VS Code extension"),
):
    """Debug Adapter Protocol (DAP) server"""
    _select(ctx, DapServerCmd(port=port, single_session=single_session, vscode=vscode))


@app.command("list")
def list_probes(ctx: typer.Context):
    """List all connected debug probes"""
    _select(ctx, ListCmd())


@app.command("info")
def info(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
):
    """Get info about the selected debug probe and connected target"""
    _select(ctx, InfoCmd(probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset)))


@app.command("reset")
def reset(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    halt: bool = typer.Option(False, "--halt", help="Halt the core after the reset"),
):
    """Reset the target attached to the selected debug probe"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(ctx, ResetCmd(probe_options=probe_options, halt=halt))


@app.command("gdb")
def gdb(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    gdb_connection_string: str | None = typer.Option(
        None, "--gdb-connection-string", help="Where the GDB server listens, e.g. 127.0.0.1:1337"
    ),
    reset_halt: bool = typer.Option(False, "--reset-halt", help="Reset and halt the core before serving"),
):
    """Run a GDB server"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(
        ctx,
        GdbCmd(probe_options=probe_options, gdb_connection_string=gdb_connection_string, reset_halt=reset_halt),
    )


@app.command("debug")
def debug(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    exe: Path | None = typer.Option(None, "--exe", help="ELF file with debug information"),
):
    """Basic command line debugger"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(ctx, DebugCmd(probe_options=probe_options, exe=exe))


@app.command("download")
def download(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="The image to download"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    format: str | None = FORMAT_OPTION,
    base_address: int | None = BASE_ADDRESS_OPTION,
    skip: int = SKIP_OPTION,
    idf_bootloader: Path | None = IDF_BOOTLOADER_OPTION,
    idf_partition_table: Path | None = IDF_PARTITION_TABLE_OPTION,
    verify: bool = typer.Option(False, "--verify", help="Verify the memory after flashing"),
    chip_erase: bool = typer.Option(False, "--chip-erase", help="Erase the whole chip before flashing"),
    disable_progressbars: bool = typer.Option(False, "--disable-progressbars", help="Do not show progress bars"),
):
    """Download memory to the attached target"""
    _select(
        ctx,
        DownloadCmd(
            path=path,
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            format_options=_format_options(format, base_address, skip, idf_bootloader, idf_partition_table),
            verify=verify,
            chip_erase=chip_erase,
            disable_progressbars=disable_progressbars,
        ),
    )


@app.command("erase")
def erase(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    allow_erase_all: bool = typer.Option(False, "--allow-erase-all", help="Allow erasing security settings"),
):
    """Erase all nonvolatile memory of the attached target"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(ctx, EraseCmd(probe_options=probe_options, allow_erase_all=allow_erase_all))


@app.command("run")
def run(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="The program to flash and run"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    format: str | None = FORMAT_OPTION,
    base_address: int | None = BASE_ADDRESS_OPTION,
    skip: int = SKIP_OPTION,
    idf_bootloader: Path | None = IDF_BOOTLOADER_OPTION,
    idf_partition_table: Path | None = IDF_PARTITION_TABLE_OPTION,
    chip_erase: bool = typer.Option(False, "--chip-erase", help="Erase the whole chip before flashing"),
    catch_reset: bool = typer.Option(False, "--catch-reset", help="Halt when the core resets"),
    catch_hardfault: bool = typer.Option(False, "--catch-hardfault", help="Halt on a hard fault"),
    no_location: bool = typer.Option(False, "--no-location", help="Omit file locations from log output"),
):
    """Flash and run a program"""
    _select(
        ctx,
        RunCmd(
            path=path,
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            format_options=_format_options(format, base_address, skip, idf_bootloader, idf_partition_table),
            chip_erase=chip_erase,
            catch_reset=catch_reset,
            catch_hardfault=catch_hardfault,
            no_location=no_location,
        ),
    )


@app.command("attach")
def attach(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="The program running on the target"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    no_location: bool = typer.Option(False, "--no-location", help="Omit file locations from log output"),
):
    """Attach to RTT logging"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(ctx, AttachCmd(path=path, probe_options=probe_options, no_location=no_location))


@app.command("trace")
def trace(
    ctx: typer.Context,
    locations: list[str] = typer.Argument(..., help="Memory locations to trace"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
):
    """Trace a memory location on the target"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    addresses = tuple(_option_parser(parse_u64)(location) for location in locations)
    _select(ctx, TraceCmd(probe_options=probe_options, locations=addresses))


@app.command("itm")
def itm(
    ctx: typer.Context,
    source: str = typer.Argument("tpiu", help="Where ITM packets are read from: tpiu or swo"),
    duration_ms: int = typer.Option(1000, "--duration-ms", help="How long to collect packets"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
):
    """Configure and monitor ITM trace packets from the target"""
    probe_options = _probe_options(chip, probe, speed, protocol, connect_under_reset)
    _select(ctx, ItmCmd(probe_options=probe_options, source=source, duration_ms=duration_ms))


@chip_app.command("list")
def chip_list(ctx: typer.Context):
    """List all known chips"""
    _select(ctx, ChipCmd(action="list"))


@chip_app.command("info")
def chip_info(ctx: typer.Context, name: str = typer.Argument(..., help="The chip to describe")):
    """Show what is known about a chip"""
    _select(ctx, ChipCmd(action="info", chip=name))


@app.command("benchmark")
def benchmark(
    ctx: typer.Context,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    address: int | None = typer.Option(
        None, "--address", help="RAM address used for the test", parser=_option_parser(parse_u64)
    ),
    size: int = typer.Option("0x1000", "--size", help="Bytes transferred per test", parser=_option_parser(parse_u32)),
    min_speed: int | None = typer.Option(None, "--min-speed", help="Lowest speed to test, in kHz"),
    max_speed: int | None = typer.Option(None, "--max-speed", help="Highest speed to test, in kHz"),
):
    """Measure the throughput of the selected debug probe"""
    _select(
        ctx,
        BenchmarkCmd(
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            address=address,
            size=size,
            min_speed=min_speed,
            max_speed=max_speed,
        ),
    )


@app.command("profile")
def profile(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="The program to profile"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    format: str | None = FORMAT_OPTION,
    base_address: int | None = BASE_ADDRESS_OPTION,
    skip: int = SKIP_OPTION,
    idf_bootloader: Path | None = IDF_BOOTLOADER_OPTION,
    idf_partition_table: Path | None = IDF_PARTITION_TABLE_OPTION,
    duration: int = typer.Option(5, "--duration", help="Seconds to sample for"),
    core: int = typer.Option(0, "--core", help="The core to sample"),
):
    """Profile on-target runtime performance of a program"""
    _select(
        ctx,
        ProfileCmd(
            path=path,
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            format_options=_format_options(format, base_address, skip, idf_bootloader, idf_partition_table),
            duration=duration,
            core=core,
        ),
    )


WIDTH_OPTION = typer.Option("b32", "--width", help="Word width: b8, b16, b32 or b64")


@app.command("read")
def read(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="The address to read from"),
    words: str = typer.Argument("1", help="Number of words to read"),
    width: str = WIDTH_OPTION,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
):
    """Read memory from the target"""
    _select(
        ctx,
        ReadCmd(
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            width=_check_width(width),
            address=_option_parser(parse_u64)(address),
            words=_option_parser(parse_u64)(words),
        ),
    )


@app.command("write")
def write(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="The address to write to"),
    values: list[str] = typer.Argument(..., help="The words to write"),
    width: str = WIDTH_OPTION,
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
):
    """Write memory on the target"""
    _select(
        ctx,
        WriteCmd(
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            width=_check_width(width),
            address=_option_parser(parse_u64)(address),
            values=tuple(_option_parser(parse_u64)(value) for value in values),
        ),
    )


@app.command("test")
def test(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="The test binary"),
    filters: list[str] | None = typer.Argument(None, help="Only run tests whose names contain these"),
    chip: str | None = CHIP_OPTION,
    probe: str | None = PROBE_OPTION,
    speed: int | None = SPEED_OPTION,
    protocol: str | None = PROTOCOL_OPTION,
    connect_under_reset: bool = CONNECT_UNDER_RESET_OPTION,
    format: str | None = FORMAT_OPTION,
    base_address: int | None = BASE_ADDRESS_OPTION,
    skip: int = SKIP_OPTION,
    idf_bootloader: Path | None = IDF_BOOTLOADER_OPTION,
    idf_partition_table: Path | None = IDF_PARTITION_TABLE_OPTION,
    list_tests: bool = typer.Option(False, "--list", help="List the tests instead of running them"),
    exact: bool = typer.Option(False, "--exact", help="Match filters exactly"),
):
    """Execute a test binary that uses embedded-test"""
    _select(
        ctx,
        TestCmd(
            path=path,
            probe_options=_probe_options(chip, probe, speed, protocol, connect_under_reset),
            format_options=_format_options(format, base_address, skip, idf_bootloader, idf_partition_table),
            filters=tuple(filters or ()),
            list_tests=list_tests,
            exact=exact,
        ),
    )


def _check_width(width: str) -> str:
    if width not in ("b8", "b16", "b32", "b64"):
        raise typer.BadParameter(f"unknown word width {width!r}", param_hint="--width")
    return width


def run_app(typer_app: typer.Typer, args: list[str], prog_name: str, obj) -> int:
    """Run `typer_app` on `args` and return its exit status.

    Standalone mode lets typer report usage errors and handle --help and
    --version itself; it always finishes by exiting, so the exit is caught.
    """
    command = typer.main.get_command(typer_app)
    try:
        command.main(args=args, prog_name=prog_name, standalone_mode=True, obj=obj)
    except SystemExit as e:
        if e.code is None:
            return 0
        if isinstance(e.code, int):
            return e.code
        typer.echo(e.code, err=True)
        return 1
    return 0


def parse_invocation(args: list[str]) -> ParsedInvocation | int:
    """Parse the process arguments (including the program name).

    Returns the exit code instead when nothing is left to run: after --help
    or --version, or after a usage error has been reported.
    """
    invocation = ParsedInvocation()
    code = run_app(app, list(args[1:]), PROG_NAME, invocation)
    if code != 0 or invocation.subcommand is None:
        return code
    return invocation
