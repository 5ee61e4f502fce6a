"""The cargo-flash and cargo-embed identities of the multicall binary.

These parse their own arguments and hand over to their installed handler.
The logging and format pipeline of the primary command line is not used.
"""

from dataclasses import dataclass, field
from pathlib import Path

import typer
from pydantic import ValidationError

from .cli import run_app
from .commands import CommandContext, get_handler
from .config import Config, load_config
from .errors import ProbeCliError
from .multicall import Alias
from .probes import Lister

CARGO_FLASH = "cargo-flash"
CARGO_EMBED = "cargo-embed"
DEFAULT_EMBED_CONFIG = Path("Embed.toml")


@dataclass(frozen=True)
class CargoOptions:
    chip: str | None = None
    probe: str | None = None
    release: bool = False
    example: str | None = None
    package: str | None = None
    features: tuple[str, ...] = ()


@dataclass(frozen=True)
class CargoFlashInvocation:
    cargo: CargoOptions
    reset_halt: bool = False


@dataclass(frozen=True)
class CargoEmbedInvocation:
    cargo: CargoOptions
    config: Config = field(default_factory=Config)
    profile: str = "default"


flash_app = typer.Typer(name=CARGO_FLASH, help="Flash a cargo project onto a target", add_completion=False)
embed_app = typer.Typer(name=CARGO_EMBED, help="Flash and debug a cargo project", add_completion=False)


def _cargo_options(chip, probe, release, example, package, features) -> CargoOptions:
    return CargoOptions(
        chip=chip,
        probe=probe,
        release=release,
        example=example,
        package=package,
        features=tuple(features or ()),
    )


@flash_app.command()
def cargo_flash(
    ctx: typer.Context,
    chip: str | None = typer.Option(None, "--chip", help="The target chip"),
    probe: str | None = typer.Option(None, "--probe", help="Use this probe (VID:PID[:SERIAL])"),
    release: bool = typer.Option(False, "--release", help="Build in release mode"),
    example: str | None = typer.Option(None, "--example", help="Flash this example"),
    package: str | None = typer.Option(None, "--package", "-p", help="Package to flash"),
    features: list[str] | None = typer.Option(None, "--features", help="Cargo features to enable"),
    reset_halt: bool = typer.Option(False, "--reset-halt", help="Halt the core after flashing"),
):
    ctx.obj["invocation"] = CargoFlashInvocation(
        cargo=_cargo_options(chip, probe, release, example, package, features),
        reset_halt=reset_halt,
    )


@embed_app.command()
def cargo_embed(
    ctx: typer.Context,
    profile: str = typer.Argument("default", help="The configuration profile to use"),
    chip: str | None = typer.Option(None, "--chip", help="The target chip"),
    probe: str | None = typer.Option(None, "--probe", help="Use this probe (VID:PID[:SERIAL])"),
    release: bool = typer.Option(False, "--release", help="Build in release mode"),
    example: str | None = typer.Option(None, "--example", help="Flash this example"),
    package: str | None = typer.Option(None, "--package", "-p", help="Package to flash"),
    features: list[str] | None = typer.Option(None, "--features", help="Cargo features to enable"),
    config_file: Path = typer.Option(DEFAULT_EMBED_CONFIG, "--config", help="Path to TOML/JSON config file"),
):
    config = Config()
    if config_file.exists():
        try:
            config = load_config(config_file)
        except (ValidationError, ValueError) as e:
            raise typer.BadParameter(f"invalid config file {config_file}: {e}", param_hint="--config") from e
    ctx.obj["invocation"] = CargoEmbedInvocation(
        cargo=_cargo_options(chip, probe, release, example, package, features),
        config=config,
        profile=profile,
    )


def _run_alias(app: typer.Typer, name: str, args: list[str]) -> int:
    # The first element is the program name or the alias token itself; cargo
    # also passes its own subcommand name ("flash", "embed") first.
    rest = list(args[1:])
    if rest and rest[0] == name.removeprefix("cargo-"):
        rest = rest[1:]

    state: dict = {}
    code = run_app(app, rest, name, state)
    invocation = state.get("invocation")
    if code != 0 or invocation is None:
        return code
    try:
        result = get_handler(name)(invocation, CommandContext(lister=Lister()))
    except ProbeCliError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        return 1
    return 0 if result is None else int(result)


def cargo_flash_main(args: list[str]) -> int:
    return _run_alias(flash_app, CARGO_FLASH, args)


def cargo_embed_main(args: list[str]) -> int:
    return _run_alias(embed_app, CARGO_EMBED, args)


# In priority order.
ALIASES = (
    Alias(CARGO_FLASH, cargo_flash_main),
    Alias(CARGO_EMBED, cargo_embed_main),
)
