"""Subcommands of the primary command line.

Every subcommand is a dataclass holding its parsed options and exposing
``run(context) -> int``. Only ``list`` and ``chip`` are implemented here; all
other subcommands hand over to a handler installed through
:func:`register_handler` or the ``probe_cli.commands`` entry point group.
"""

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import ClassVar

import typer

from .config import FormatOptions
from .errors import CommandUnavailableError
from .formats import ResolvedFormat
from .logger_setup import get_logger
from .probes import Lister
from .targets import BUILTIN_TARGETS, Target, families, lookup_target
from .timecontext import TimeContext

COMMAND_GROUP = "probe_cli.commands"

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandContext:
    lister: Lister
    time: TimeContext | None = None
    target: Target | None = None
    format: ResolvedFormat | None = None
    echo: Callable[[str], None] = typer.echo


Handler = Callable[["Command", CommandContext], "int | None"]

_handlers: dict[str, Handler] = {}


def register_handler(name: str, handler: Handler) -> None:
    _handlers[name] = handler


def unregister_handler(name: str) -> None:
    _handlers.pop(name, None)


def get_handler(name: str) -> Handler:
    if name in _handlers:
        return _handlers[name]
    for entry_point in metadata.entry_points().select(group=COMMAND_GROUP, name=name):
        handler = entry_point.load()
        _handlers[name] = handler
        return handler
    raise CommandUnavailableError(
        f"no handler is installed for the '{name}' subcommand; install a backend providing "
        f"the '{COMMAND_GROUP}' entry point '{name}'"
    )


@dataclass(frozen=True)
class ProbeOptions:
    chip: str | None = None
    probe: str | None = None
    speed: int | None = None
    protocol: str | None = None
    connect_under_reset: bool = False


@dataclass(frozen=True)
class Command:
    name: ClassVar[str] = ""
    uses_time: ClassVar[bool] = False

    def run(self, context: CommandContext) -> int:
        handler = get_handler(self.name)
        logger.debug("Dispatching %s to %r", self.name, handler)
        result = handler(self, context)
        return 0 if result is None else int(result)


@dataclass(frozen=True)
class FlashingCommand(Command):
    """A command loading an image; its target and format are resolved first."""

    path: Path = Path()
    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    format_options: FormatOptions = field(default_factory=FormatOptions)

    def resolve_target(self) -> Target | None:
        if self.probe_options.chip is None:
            logger.debug("No chip given; the target's preferred format is unknown")
            return None
        return lookup_target(self.probe_options.chip)

    def run(self, context: CommandContext) -> int:
        target = self.resolve_target()
        image_format = self.format_options.into_format(target)
        logger.info("Loading %s as %s", self.path, image_format.kind.value)
        return super().run(dataclasses.replace(context, target=target, format=image_format))


@dataclass(frozen=True)
class DapServerCmd(Command):
    name: ClassVar[str] = "dap-server"
    uses_time: ClassVar[bool] = True

    port: int = 50000
    single_session: bool = False
    vscode: bool = False


@dataclass(frozen=True)
class ListCmd(Command):
    name: ClassVar[str] = "list"

    def run(self, context: CommandContext) -> int:
        probes = context.lister.list_all()
        if not probes:
            context.echo("No debug probes were found.")
            return 0
        context.echo("The following debug probes were found:")
        for index, probe in enumerate(probes):
            context.echo(f"[{index}]: {probe}")
        return 0


@dataclass(frozen=True)
class InfoCmd(Command):
    name: ClassVar[str] = "info"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)


@dataclass(frozen=True)
class ResetCmd(Command):
    name: ClassVar[str] = "reset"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    halt: bool = False


@dataclass(frozen=True)
class GdbCmd(Command):
    name: ClassVar[str] = "gdb"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    gdb_connection_string: str | None = None
    reset_halt: bool = False


@dataclass(frozen=True)
class DebugCmd(Command):
    name: ClassVar[str] = "debug"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    exe: Path | None = None


@dataclass(frozen=True)
class DownloadCmd(FlashingCommand):
    name: ClassVar[str] = "download"

    verify: bool = False
    chip_erase: bool = False
    disable_progressbars: bool = False


@dataclass(frozen=True)
class EraseCmd(Command):
    name: ClassVar[str] = "erase"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    allow_erase_all: bool = False


@dataclass(frozen=True)
class RunCmd(FlashingCommand):
    name: ClassVar[str] = "run"
    uses_time: ClassVar[bool] = True

    chip_erase: bool = False
    catch_reset: bool = False
    catch_hardfault: bool = False
    no_location: bool = False


@dataclass(frozen=True)
class AttachCmd(Command):
    name: ClassVar[str] = "attach"
    uses_time: ClassVar[bool] = True

    path: Path = Path()
    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    no_location: bool = False


@dataclass(frozen=True)
class TraceCmd(Command):
    name: ClassVar[str] = "trace"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    locations: tuple[int, ...] = ()


@dataclass(frozen=True)
class ItmCmd(Command):
    name: ClassVar[str] = "itm"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    source: str = "tpiu"
    duration_ms: int = 1000


@dataclass(frozen=True)
class ChipCmd(Command):
    name: ClassVar[str] = "chip"

    action: str = "list"
    chip: str | None = None

    def run(self, context: CommandContext) -> int:
        if self.action == "info":
            target = lookup_target(self.chip or "")
            default_format = target.default_format.value if target.default_format else "none"
            context.echo(target.name)
            context.echo(f"  Family: {target.family}")
            context.echo(f"  Default format: {default_format}")
            return 0

        for family, targets in families(BUILTIN_TARGETS).items():
            context.echo(family)
            context.echo("    Variants:")
            for target in targets:
                context.echo(f"        {target.name}")
        return 0


@dataclass(frozen=True)
class BenchmarkCmd(Command):
    name: ClassVar[str] = "benchmark"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    address: int | None = None
    size: int = 0x1000
    min_speed: int | None = None
    max_speed: int | None = None


@dataclass(frozen=True)
class ProfileCmd(FlashingCommand):
    name: ClassVar[str] = "profile"

    duration: int = 5
    core: int = 0


@dataclass(frozen=True)
class ReadCmd(Command):
    name: ClassVar[str] = "read"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    width: str = "b32"
    address: int = 0
    words: int = 1


@dataclass(frozen=True)
class WriteCmd(Command):
    name: ClassVar[str] = "write"

    probe_options: ProbeOptions = field(default_factory=ProbeOptions)
    width: str = "b32"
    address: int = 0
    values: tuple[int, ...] = ()


@dataclass(frozen=True)
class TestCmd(FlashingCommand):
    name: ClassVar[str] = "test"
    uses_time: ClassVar[bool] = True
    __test__: ClassVar[bool] = False

    filters: tuple[str, ...] = ()
    list_tests: bool = False
    exact: bool = False
