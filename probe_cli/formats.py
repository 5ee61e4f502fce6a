"""Resolution of the binary format an image is loaded with.

The format kind comes from the first available source, in order: the user's
explicit choice, the target's declared default, and finally ELF.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Union

from .errors import FormatResolutionError, PartitionTableError, UnknownFormatError
from .logger_setup import get_logger
from .partition_table import PartitionTable

if TYPE_CHECKING:
    from .config import FormatOptions

logger = get_logger(__name__)


class FormatKind(str, Enum):
    BIN = "bin"
    HEX = "hex"
    ELF = "elf"
    IDF = "idf"
    UF2 = "uf2"

    @classmethod
    def parse(cls, value: "str | FormatKind") -> "FormatKind":
        if isinstance(value, FormatKind):
            return value
        kind = _FORMAT_ALIASES.get(str(value).strip().lower())
        if kind is None:
            raise UnknownFormatError(
                f"Format '{value}' is unknown. Known formats: {', '.join(k.value for k in cls)}"
            )
        return kind


_FORMAT_ALIASES = {
    "bin": FormatKind.BIN,
    "binary": FormatKind.BIN,
    "hex": FormatKind.HEX,
    "ihex": FormatKind.HEX,
    "intelhex": FormatKind.HEX,
    "elf": FormatKind.ELF,
    "uf2": FormatKind.UF2,
    "idf": FormatKind.IDF,
    "esp-idf": FormatKind.IDF,
    "espidf": FormatKind.IDF,
}


class BinaryFormat(str, Enum):
    """The format a target declares as its preferred one."""

    RAW = "raw"
    IDF = "idf"


DEFAULT_FORMAT = FormatKind.ELF

# RAW declares no preference of its own.
_TARGET_DEFAULTS = {
    BinaryFormat.RAW: None,
    BinaryFormat.IDF: FormatKind.IDF,
}


@dataclass(frozen=True)
class BinFormat:
    base_address: int | None = None
    skip: int = 0

    kind = FormatKind.BIN


@dataclass(frozen=True)
class HexFormat:
    kind = FormatKind.HEX


@dataclass(frozen=True)
class ElfFormat:
    kind = FormatKind.ELF


@dataclass(frozen=True)
class IdfFormat:
    bootloader: bytes | None = None
    partition_table: PartitionTable | None = None

    kind = FormatKind.IDF


@dataclass(frozen=True)
class Uf2Format:
    kind = FormatKind.UF2


ResolvedFormat = Union[BinFormat, HexFormat, ElfFormat, IdfFormat, Uf2Format]


def select_format_kind(explicit: FormatKind | None, target_default: BinaryFormat | None) -> FormatKind:
    """Pick the format kind from the explicit value, the target, or the fallback."""
    candidates = (
        explicit,
        _TARGET_DEFAULTS.get(target_default) if target_default is not None else None,
        DEFAULT_FORMAT,
    )
    return next(kind for kind in candidates if kind is not None)


def resolve_format(options: "FormatOptions", target_default: BinaryFormat | None = None) -> ResolvedFormat:
    kind = select_format_kind(options.format, target_default)
    logger.debug("Resolved format kind %s (explicit=%s, target=%s)", kind.value, options.format, target_default)

    if kind is FormatKind.BIN:
        return BinFormat(base_address=options.base_address, skip=options.skip)
    if kind is FormatKind.HEX:
        return HexFormat()
    if kind is FormatKind.ELF:
        return ElfFormat()
    if kind is FormatKind.UF2:
        return Uf2Format()

    bootloader = None
    if options.idf_bootloader is not None:
        bootloader = _read_artifact(options.idf_bootloader, "IDF bootloader")

    partition_table = None
    if options.idf_partition_table is not None:
        data = _read_artifact(options.idf_partition_table, "IDF partition table")
        try:
            partition_table = PartitionTable.parse(data)
        except PartitionTableError as e:
            raise FormatResolutionError(
                f"failed to parse IDF partition table {str(options.idf_partition_table)!r}: {e}"
            ) from e

    return IdfFormat(bootloader=bootloader, partition_table=partition_table)


def _read_artifact(path: Path, what: str) -> bytes:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise FormatResolutionError(f"failed to read {what} {str(path)!r}: {e}") from e
    logger.debug("Loaded %s from %s (%d bytes)", what, path, len(data))
    return data
