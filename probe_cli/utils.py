U32_MAX = 0xFFFF_FFFF
U64_MAX = 0xFFFF_FFFF_FFFF_FFFF


def parse_int(value: str | int) -> int:
    """Parse an integer literal, accepting 0x/0o/0b prefixes and underscores."""
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip().replace("_", "")
    if not text:
        raise ValueError("empty integer literal")
    lowered = text.lower()
    if lowered.startswith(("0x", "0o", "0b")):
        return int(text, 0)
    return int(text, 10)


def _parse_bounded(value: str | int, maximum: int, kind: str) -> int:
    try:
        number = parse_int(value)
    except ValueError as e:
        raise ValueError(f"invalid {kind} value {value!r}: {e}") from e
    if number < 0 or number > maximum:
        raise ValueError(f"{kind} value {value!r} is out of range")
    return number


def parse_u32(value: str | int) -> int:
    return _parse_bounded(value, U32_MAX, "u32")


def parse_u64(value: str | int) -> int:
    return _parse_bounded(value, U64_MAX, "u64")
