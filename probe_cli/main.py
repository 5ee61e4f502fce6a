"""Entry point: multicall dispatch, bootstrap, logging and subcommand dispatch."""

import logging
import sys
from pathlib import Path

import typer

from .aliases import ALIASES
from .cli import ParsedInvocation, parse_invocation
from .commands import CommandContext, DapServerCmd
from .errors import ProbeCliError
from .logfiles import PruneReport, default_logfile_location, prune_logs
from .logger_setup import LoggingContext, get_logger, setup_logging, span
from .multicall import find_alias
from .probes import Lister
from .timecontext import TimeContext, capture_time_context

logger = get_logger(__name__)


def resolve_log_location(invocation: ParsedInvocation) -> tuple[Path | None, PruneReport | None]:
    """Pick the log file: explicit path, then the default folder, then none.

    Old files in the default folder are pruned before the new file exists.
    """
    if invocation.log_file is not None:
        return invocation.log_file, None
    if not invocation.log_to_folder:
        return None, None

    try:
        location = default_logfile_location()
    except ProbeCliError as e:
        raise type(e)(f"Unable to determine default log file location: {e}") from e
    report = prune_logs(location.parent)
    return location, report


def report_pruning(report: PruneReport | None, log: logging.Logger = logger) -> None:
    if report is None:
        return
    for path in report.removed:
        log.debug("Removed old log file %s", path)
    for entry in report.skipped:
        log.warning("Skipped log file %s while pruning: %s", entry.path, entry.reason)
    for entry in report.failed:
        log.warning("Could not remove old log file %s: %s", entry.path, entry.reason)


def dispatch(invocation: ParsedInvocation, lister: Lister, time_context: TimeContext) -> int:
    subcommand = invocation.subcommand
    context = CommandContext(lister=lister, time=time_context if subcommand.uses_time else None)
    with span("subcommand", command=subcommand.name):
        logger.debug("Running %s", subcommand)
        return subcommand.run(context)


def run_with_logging(invocation: ParsedInvocation, lister: Lister, time_context: TimeContext) -> int:
    log_path, report = resolve_log_location(invocation)
    with setup_logging(log_path) as logging_context:
        return _run_logged(logging_context, report, invocation, lister, time_context)


def _run_logged(
    logging_context: LoggingContext,
    report: PruneReport | None,
    invocation: ParsedInvocation,
    lister: Lister,
    time_context: TimeContext,
) -> int:
    logging_context.mark_started()
    report_pruning(report, logging_context.logger(__name__))
    try:
        return dispatch(invocation, lister, time_context)
    finally:
        logging_context.mark_complete()


def run(args: list[str]) -> int:
    alias = find_alias(args, ALIASES)
    if alias is not None:
        return alias()

    time_context = capture_time_context()

    invocation = parse_invocation(args)
    if not isinstance(invocation, ParsedInvocation):
        return invocation

    lister = Lister()

    # The DAP server sets up its own logging.
    if isinstance(invocation.subcommand, DapServerCmd):
        return invocation.subcommand.run(CommandContext(lister=lister, time=time_context))

    return run_with_logging(invocation, lister, time_context)


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv if argv is None else argv)
    try:
        return run(args)
    except ProbeCliError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        return 1


def entrypoint() -> None:
    sys.exit(main())


if __name__ == "__main__":
    entrypoint()
