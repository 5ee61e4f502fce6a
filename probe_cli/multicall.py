from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import PurePath

AliasHandler = Callable[[list[str]], int]


def multicall_check(args: Sequence[str], want: str) -> list[str] | None:
    """Return the arguments for the `want` tool if this invocation targets it.

    A match on the executable name forwards the whole vector; a match on the
    first argument strips everything before it.
    """
    if not args:
        return None

    command = _file_stem(args[0])
    if command == want:
        return list(args)

    if len(args) > 1 and args[1] == want:
        return list(args[1:])

    return None


def _file_stem(argv0: str) -> str:
    # Accept both separators so a Windows-style argv0 is understood everywhere.
    name = PurePath(argv0.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return name
    return PurePath(name).stem


@dataclass(frozen=True)
class Alias:
    name: str
    handler: AliasHandler


@dataclass(frozen=True)
class AliasMatch:
    alias: Alias
    args: list[str]

    def __call__(self) -> int:
        return self.alias.handler(self.args)


def find_alias(args: Sequence[str], aliases: Sequence[Alias]) -> AliasMatch | None:
    """Evaluate the aliases in priority order; the first match wins."""
    for alias in aliases:
        forwarded = multicall_check(args, alias.name)
        if forwarded is not None:
            return AliasMatch(alias=alias, args=forwarded)
    return None
