import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from probe_cli.config import Config, FormatOptions, load_config
from probe_cli.formats import FormatKind


def test_defaults():
    options = FormatOptions()
    assert options.format is None
    assert options.base_address is None
    assert options.skip == 0
    assert options.idf_bootloader is None
    assert options.idf_partition_table is None


def test_load_toml(tmp_path):
    path = tmp_path / "Embed.toml"
    path.write_text(
        '[format]\nformat = "binary"\nbase_address = "0x0800_0000"\nskip = 16\nidf_bootloader = "boot.bin"\n',
        encoding="utf-8",
    )

    options = load_config(path).format

    assert options.format is FormatKind.BIN
    assert options.base_address == 0x08000000
    assert options.skip == 16
    assert options.idf_bootloader == Path("boot.bin")


def test_load_json_flat_keys(tmp_path):
    path = tmp_path / "probe.json"
    path.write_text(json.dumps({"format": "idf", "idf_partition_table": "partitions.csv"}), encoding="utf-8")

    options = load_config(path).format

    assert options.format is FormatKind.IDF
    assert options.idf_partition_table == Path("partitions.csv")


def test_load_flashing_section(tmp_path):
    path = tmp_path / "Embed.toml"
    path.write_text('[flashing.format]\nformat = "hex"\n', encoding="utf-8")

    assert load_config(path).format.format is FormatKind.HEX


def test_empty_config(tmp_path):
    path = tmp_path / "Embed.toml"
    path.write_text("", encoding="utf-8")

    assert load_config(path) == Config()


def test_unknown_format_rejected_at_load(tmp_path):
    path = tmp_path / "Embed.toml"
    path.write_text('[format]\nformat = "zip"\n', encoding="utf-8")

    with pytest.raises(ValidationError, match="unknown"):
        load_config(path)


def test_non_string_format_is_ignored():
    assert FormatOptions.model_validate({"format": 3}).format is None


@pytest.mark.parametrize("field, value", [("skip", -1), ("skip", 0x1_0000_0000), ("base_address", "nope")])
def test_invalid_numbers(field, value):
    with pytest.raises(ValidationError):
        FormatOptions.model_validate({field: value})


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.toml")


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("format: bin\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Unsupported config format"):
        load_config(path)
