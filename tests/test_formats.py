import pytest

from probe_cli.config import FormatOptions
from probe_cli.errors import FormatResolutionError, UnknownFormatError
from probe_cli.formats import (
    BinaryFormat,
    BinFormat,
    ElfFormat,
    FormatKind,
    HexFormat,
    IdfFormat,
    Uf2Format,
    resolve_format,
    select_format_kind,
)
from probe_cli.targets import Target

ESP32C3 = Target("esp32c3", "esp32c3", BinaryFormat.IDF)
NRF52 = Target("nRF52840_xxAA", "nRF52", BinaryFormat.RAW)


@pytest.mark.parametrize(
    "explicit, target_default, expected",
    [
        (None, None, FormatKind.ELF),
        (None, BinaryFormat.RAW, FormatKind.ELF),
        (None, BinaryFormat.IDF, FormatKind.IDF),
        (FormatKind.BIN, BinaryFormat.IDF, FormatKind.BIN),
        (FormatKind.HEX, None, FormatKind.HEX),
        (FormatKind.IDF, BinaryFormat.RAW, FormatKind.IDF),
    ],
)
def test_format_precedence(explicit, target_default, expected):
    assert select_format_kind(explicit, target_default) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("bin", FormatKind.BIN),
        ("Binary", FormatKind.BIN),
        ("ihex", FormatKind.HEX),
        ("IntelHex", FormatKind.HEX),
        ("ELF", FormatKind.ELF),
        ("uf2", FormatKind.UF2),
        ("esp-idf", FormatKind.IDF),
        ("espidf", FormatKind.IDF),
    ],
)
def test_format_tags(text, expected):
    assert FormatKind.parse(text) is expected


def test_unknown_format_tag():
    with pytest.raises(UnknownFormatError, match="'zip' is unknown"):
        FormatKind.parse("zip")


def test_explicit_binary_keeps_parameters():
    options = FormatOptions(format="bin", base_address=0x08000000, skip=16)

    assert resolve_format(options, None) == BinFormat(base_address=0x08000000, skip=16)


def test_explicit_format_ignores_target():
    options = FormatOptions(format="bin", base_address=0x08000000, skip=16)

    assert options.into_format(ESP32C3) == options.into_format(NRF52) == options.into_format(None)


def test_target_default_partitioned_image():
    assert FormatOptions().into_format(ESP32C3) == IdfFormat(bootloader=None, partition_table=None)


def test_raw_target_falls_back_to_elf():
    assert FormatOptions(base_address=0x1000, skip=4).into_format(NRF52) == ElfFormat()


@pytest.mark.parametrize("tag, expected", [("hex", HexFormat()), ("elf", ElfFormat()), ("uf2", Uf2Format())])
def test_parameterless_formats(tag, expected):
    options = FormatOptions(format=tag, base_address=0x1000, idf_bootloader="missing.bin")
    assert options.into_format(ESP32C3) == expected


def test_idf_artifacts_are_loaded(tmp_path):
    bootloader = tmp_path / "bootloader.bin"
    bootloader.write_bytes(b"\xe9bootloader")
    partitions = tmp_path / "partitions.csv"
    partitions.write_text("factory, app, factory, 0x10000, 1M\n", encoding="utf-8")

    resolved = FormatOptions(idf_bootloader=bootloader, idf_partition_table=partitions).into_format(ESP32C3)

    assert resolved.bootloader == b"\xe9bootloader"
    assert resolved.partition_table.find("factory").offset == 0x10000


def test_missing_bootloader_names_path(tmp_path):
    missing = tmp_path / "nope.bin"

    with pytest.raises(FormatResolutionError, match="IDF bootloader") as excinfo:
        FormatOptions(format="idf", idf_bootloader=missing).into_format(None)

    assert str(missing) in str(excinfo.value)


def test_malformed_partition_table_names_path(tmp_path):
    table = tmp_path / "partitions.bin"
    table.write_bytes(b"\xaa\x50garbage")

    with pytest.raises(FormatResolutionError, match="failed to parse IDF partition table") as excinfo:
        FormatOptions(idf_partition_table=table).into_format(ESP32C3)

    assert str(table) in str(excinfo.value)
