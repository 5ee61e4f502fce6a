"""ESP-IDF partition tables, in their binary and CSV forms."""

import csv
import hashlib
import io
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from .errors import PartitionTableError
from .utils import parse_int

ENTRY_MAGIC = b"\xaa\x50"
MD5_MAGIC = b"\xeb\xeb"
ENTRY_SIZE = 32
MAX_TABLE_SIZE = 0xC00
ENTRY_FORMAT = "<2sBBII16sI"
MAX_NAME_LEN = 16

PARTITION_TABLE_OFFSET = 0x8000
FIRST_PARTITION_OFFSET = PARTITION_TABLE_OFFSET + 0x1000
APP_ALIGNMENT = 0x10000
DATA_ALIGNMENT = 0x1000

FLAG_ENCRYPTED = 1 << 0
FLAG_READONLY = 1 << 1


class PartitionType(IntEnum):
    APP = 0x00
    DATA = 0x01


APP_SUBTYPES = {"factory": 0x00, "test": 0x20, **{f"ota_{n}": 0x10 + n for n in range(16)}}
DATA_SUBTYPES = {
    "ota": 0x00,
    "phy": 0x01,
    "nvs": 0x02,
    "coredump": 0x03,
    "nvs_keys": 0x04,
    "efuse": 0x05,
    "undefined": 0x06,
    "esphttpd": 0x80,
    "fat": 0x81,
    "spiffs": 0x82,
    "littlefs": 0x83,
}
_SUBTYPES = {PartitionType.APP: APP_SUBTYPES, PartitionType.DATA: DATA_SUBTYPES}
_FLAGS = {"encrypted": FLAG_ENCRYPTED, "readonly": FLAG_READONLY}


@dataclass(frozen=True)
class Partition:
    name: str
    type: int
    subtype: int
    offset: int
    size: int
    flags: int = 0

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)

    @property
    def readonly(self) -> bool:
        return bool(self.flags & FLAG_READONLY)

    def to_bytes(self) -> bytes:
        return struct.pack(
            ENTRY_FORMAT,
            ENTRY_MAGIC,
            self.type,
            self.subtype,
            self.offset,
            self.size,
            self.name.encode("utf-8").ljust(MAX_NAME_LEN, b"\x00"),
            self.flags,
        )


@dataclass(frozen=True)
class PartitionTable:
    partitions: tuple[Partition, ...]

    def __iter__(self) -> Iterator[Partition]:
        return iter(self.partitions)

    def __len__(self) -> int:
        return len(self.partitions)

    def find(self, name: str) -> Partition | None:
        for partition in self.partitions:
            if partition.name == name:
                return partition
        return None

    def to_bytes(self) -> bytes:
        body = b"".join(p.to_bytes() for p in self.partitions)
        md5_entry = MD5_MAGIC + b"\xff" * 14 + hashlib.md5(body).digest()
        data = body + md5_entry
        return data + b"\xff" * (MAX_TABLE_SIZE - len(data))

    @classmethod
    def parse(cls, data: bytes) -> "PartitionTable":
        """Parse a table, picking the binary or CSV form from its first bytes."""
        if data[:2] == ENTRY_MAGIC:
            return cls.from_binary(data)
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PartitionTableError(f"partition table is neither binary nor UTF-8 CSV: {e}") from e
        return cls.from_csv(text)

    @classmethod
    def from_binary(cls, data: bytes) -> "PartitionTable":
        if len(data) > MAX_TABLE_SIZE:
            raise PartitionTableError(
                f"binary partition table is {len(data)} bytes, larger than the maximum of {MAX_TABLE_SIZE}"
            )

        partitions = []
        for start in range(0, len(data), ENTRY_SIZE):
            chunk = data[start : start + ENTRY_SIZE]
            if chunk == b"\xff" * len(chunk):
                break
            if len(chunk) < ENTRY_SIZE:
                raise PartitionTableError(f"truncated partition entry at offset {start:#x}")
            if chunk[:2] == MD5_MAGIC:
                expected = chunk[16:]
                actual = hashlib.md5(data[:start]).digest()
                if expected != actual:
                    raise PartitionTableError("partition table MD5 checksum does not match")
                continue
            magic, ptype, subtype, offset, size, raw_name, flags = struct.unpack(ENTRY_FORMAT, chunk)
            if magic != ENTRY_MAGIC:
                raise PartitionTableError(f"invalid partition entry magic at offset {start:#x}")
            try:
                name = raw_name.rstrip(b"\x00").decode("utf-8")
            except UnicodeDecodeError as e:
                raise PartitionTableError(f"invalid partition name at offset {start:#x}") from e
            partitions.append(Partition(name, ptype, subtype, offset, size, flags))

        return cls.validated(partitions)

    @classmethod
    def from_csv(cls, text: str) -> "PartitionTable":
        partitions: list[Partition] = []
        next_offset = FIRST_PARTITION_OFFSET
        lines = [line for line in text.splitlines() if line.strip() and not line.lstrip().startswith("#")]
        for lineno, row in enumerate(csv.reader(io.StringIO("\n".join(lines)), skipinitialspace=True), start=1):
            row = [column.strip() for column in row]
            if len(row) < 5:
                raise PartitionTableError(f"partition table row {lineno} has {len(row)} columns, expected at least 5")
            row += [""] * (6 - len(row))
            name, type_text, subtype_text, offset_text, size_text, flags_text = row[:6]

            ptype = _parse_type(type_text, lineno)
            subtype = _parse_subtype(ptype, subtype_text, lineno)
            alignment = APP_ALIGNMENT if ptype == PartitionType.APP else DATA_ALIGNMENT
            if offset_text:
                offset = _parse_size(offset_text, lineno, "offset")
            else:
                offset = -(-next_offset // alignment) * alignment
            size = _parse_size(size_text, lineno, "size")
            flags = _parse_flags(flags_text, lineno)

            partitions.append(Partition(name, ptype, subtype, offset, size, flags))
            next_offset = offset + size

        return cls.validated(partitions)

    @classmethod
    def validated(cls, partitions: list[Partition]) -> "PartitionTable":
        if not partitions:
            raise PartitionTableError("partition table contains no partitions")

        seen = set()
        for partition in partitions:
            if not partition.name:
                raise PartitionTableError("partition names must not be empty")
            if len(partition.name.encode("utf-8")) > MAX_NAME_LEN:
                raise PartitionTableError(f"partition name {partition.name!r} is longer than {MAX_NAME_LEN} bytes")
            if partition.name in seen:
                raise PartitionTableError(f"duplicate partition name {partition.name!r}")
            seen.add(partition.name)
            if partition.size <= 0:
                raise PartitionTableError(f"partition {partition.name!r} has no size")
            if partition.type == PartitionType.APP and partition.offset % APP_ALIGNMENT:
                raise PartitionTableError(
                    f"app partition {partition.name!r} at {partition.offset:#x} is not aligned to {APP_ALIGNMENT:#x}"
                )

        ordered = sorted(partitions, key=lambda p: p.offset)
        for previous, current in zip(ordered, ordered[1:]):
            if current.offset < previous.end:
                raise PartitionTableError(f"partitions {previous.name!r} and {current.name!r} overlap")

        return cls(tuple(partitions))


def _parse_type(text: str, lineno: int) -> int:
    try:
        return PartitionType[text.upper()]
    except KeyError:
        pass
    try:
        value = parse_int(text)
    except ValueError as e:
        raise PartitionTableError(f"row {lineno}: unknown partition type {text!r}") from e
    if not 0 <= value <= 0xFE:
        raise PartitionTableError(f"row {lineno}: partition type {text!r} is out of range")
    return value


def _parse_subtype(ptype: int, text: str, lineno: int) -> int:
    names = _SUBTYPES.get(ptype, {})
    if text.lower() in names:
        return names[text.lower()]
    try:
        value = parse_int(text)
    except ValueError as e:
        raise PartitionTableError(f"row {lineno}: unknown partition subtype {text!r}") from e
    if not 0 <= value <= 0xFE:
        raise PartitionTableError(f"row {lineno}: partition subtype {text!r} is out of range")
    return value


def _parse_size(text: str, lineno: int, what: str) -> int:
    multiplier = 1
    suffix = text[-1:].upper()
    if suffix in ("K", "M") and not text.lower().startswith("0x"):
        multiplier = 1024 if suffix == "K" else 1024 * 1024
        text = text[:-1]
    try:
        value = parse_int(text) * multiplier
    except ValueError as e:
        raise PartitionTableError(f"row {lineno}: invalid {what} {text!r}") from e
    if not 0 <= value <= 0xFFFF_FFFF:
        raise PartitionTableError(f"row {lineno}: {what} {text!r} is out of range")
    return value


def _parse_flags(text: str, lineno: int) -> int:
    flags = 0
    for name in filter(None, (part.strip().lower() for part in text.split(":"))):
        if name not in _FLAGS:
            raise PartitionTableError(f"row {lineno}: unknown partition flag {name!r}")
        flags |= _FLAGS[name]
    return flags
