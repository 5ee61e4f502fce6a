import pytest

from probe_cli.multicall import Alias, find_alias, multicall_check


@pytest.mark.parametrize(
    "args",
    [
        ["cargo-flash"],
        ["cargo-flash", "--chip", "nRF52840_xxAA"],
        ["/usr/local/bin/cargo-flash", "flash", "--release"],
        ["C:\\tools\\cargo-flash.exe", "cargo-embed"],
    ],
)
def test_executable_name_forwards_whole_vector(args):
    assert multicall_check(args, "cargo-flash") == args


@pytest.mark.parametrize(
    "args, expected",
    [
        (["probe-cli", "cargo-embed"], ["cargo-embed"]),
        (["probe-cli", "cargo-embed", "--chip", "esp32c3"], ["cargo-embed", "--chip", "esp32c3"]),
        (["/opt/probe-cli", "cargo-embed", "cargo-flash"], ["cargo-embed", "cargo-flash"]),
    ],
)
def test_first_argument_is_stripped(args, expected):
    assert multicall_check(args, "cargo-embed") == expected


@pytest.mark.parametrize(
    "args",
    [
        [],
        ["probe-cli"],
        ["probe-cli", "list"],
        ["probe-cli", "--log-file", "cargo-flash"],
        ["cargo-flash-wrapper", "download"],
    ],
)
def test_no_match(args):
    assert multicall_check(args, "cargo-flash") is None


def test_first_matching_alias_wins():
    seen = []
    aliases = (
        Alias("cargo-flash", lambda args: seen.append(("flash", args)) or 0),
        Alias("cargo-embed", lambda args: seen.append(("embed", args)) or 0),
    )

    match = find_alias(["cargo-flash", "cargo-embed"], aliases)

    assert match.alias.name == "cargo-flash"
    assert match() == 0
    assert seen == [("flash", ["cargo-flash", "cargo-embed"])]


def test_find_alias_without_match():
    aliases = (Alias("cargo-flash", lambda args: 0),)
    assert find_alias(["probe-cli", "list"], aliases) is None
