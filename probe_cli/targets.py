from dataclasses import dataclass

from .errors import ChipNotFoundError
from .formats import BinaryFormat


@dataclass(frozen=True)
class Target:
    name: str
    family: str
    default_format: BinaryFormat | None = None


BUILTIN_TARGETS = (
    Target("nRF52832_xxAA", "nRF52", BinaryFormat.RAW),
    Target("nRF52840_xxAA", "nRF52", BinaryFormat.RAW),
    Target("nRF5340_xxAA", "nRF53", BinaryFormat.RAW),
    Target("STM32F103C8", "STM32F1", BinaryFormat.RAW),
    Target("STM32F411RETx", "STM32F4", BinaryFormat.RAW),
    Target("STM32H743ZITx", "STM32H7", BinaryFormat.RAW),
    Target("RP2040", "RP2040", BinaryFormat.RAW),
    Target("ATSAMD21G18A", "SAMD21", BinaryFormat.RAW),
    Target("esp32", "esp32", BinaryFormat.IDF),
    Target("esp32c3", "esp32c3", BinaryFormat.IDF),
    Target("esp32c6", "esp32c6", BinaryFormat.IDF),
    Target("esp32s3", "esp32s3", BinaryFormat.IDF),
)


def lookup_target(name: str, targets: tuple[Target, ...] = BUILTIN_TARGETS) -> Target:
    wanted = name.strip().lower()
    for target in targets:
        if target.name.lower() == wanted:
            return target
    raise ChipNotFoundError(f"no chip named {name!r} is known; run `probe-cli chip list` to see the supported chips")


def families(targets: tuple[Target, ...] = BUILTIN_TARGETS) -> dict[str, list[Target]]:
    grouped: dict[str, list[Target]] = {}
    for target in targets:
        grouped.setdefault(target.family, []).append(target)
    return grouped
