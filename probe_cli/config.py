import json
import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .formats import BinaryFormat, FormatKind, ResolvedFormat, resolve_format
from .utils import parse_u32, parse_u64


class FormatOptions(BaseModel):
    """How the image given to a flashing command is interpreted.

    If a format is provided, use it. If the target has a preferred format, use
    that. Otherwise default to ELF. `base_address` and `skip` are only
    considered for the `bin` format.
    """

    model_config = ConfigDict(frozen=True)

    format: FormatKind | None = Field(default=None)
    base_address: int | None = Field(default=None)
    skip: int = Field(default=0)
    idf_bootloader: Path | None = Field(default=None)
    idf_partition_table: Path | None = Field(default=None)

    @field_validator("format", mode="before")
    @classmethod
    def _parse_format(cls, value):
        if value is None or isinstance(value, FormatKind):
            return value
        if not isinstance(value, str):
            # Non-string values do not name a format.
            return None
        return FormatKind.parse(value)

    @field_validator("base_address", mode="before")
    @classmethod
    def _parse_base_address(cls, value):
        if value is None:
            return None
        return parse_u64(value)

    @field_validator("skip", mode="before")
    @classmethod
    def _parse_skip(cls, value):
        if value is None:
            return 0
        return parse_u32(value)

    def into_format(self, target) -> ResolvedFormat:
        """Resolve the format for `target` (anything with a `default_format`)."""
        default_format: BinaryFormat | None = getattr(target, "default_format", None)
        return resolve_format(self, default_format)


class Config(BaseModel):
    format: FormatOptions = Field(default_factory=FormatOptions)


def load_config(path: Path) -> Config:
    """Load configuration from a TOML or JSON file into a Config.

    Supported formats: .toml, .json
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if path.suffix.lower() == ".toml":
        with path.open("rb") as f:
            data = tomllib.load(f)
    elif path.suffix.lower() == ".json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        raise ValueError("Unsupported config format: use .toml or .json")

    format_section = {}
    if isinstance(data, dict):
        if isinstance(data.get("format"), dict):
            format_section = data["format"]
        elif "flashing" in data and isinstance(data["flashing"], dict):
            format_section = data["flashing"].get("format", {}) or {}
        else:
            for k in ("format", "base_address", "skip", "idf_bootloader", "idf_partition_table"):
                if k in data:
                    format_section[k] = data[k]

    return Config.model_validate({"format": format_section})
