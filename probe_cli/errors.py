class ProbeCliError(Exception):
    """Base class for every user-facing failure of the command line."""


class TimeOffsetError(ProbeCliError):
    pass


class LogDirectoryError(ProbeCliError):
    pass


class LoggingSetupError(ProbeCliError):
    pass


class UnknownFormatError(ProbeCliError, ValueError):
    pass


class FormatResolutionError(ProbeCliError):
    pass


class PartitionTableError(ProbeCliError, ValueError):
    pass


class ChipNotFoundError(ProbeCliError):
    pass


class CommandUnavailableError(ProbeCliError):
    pass


class CommandError(ProbeCliError):
    """Raised by subcommand handlers to report a failure to the user."""
