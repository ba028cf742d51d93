"""
CLI Application - Command line entry point for boardsync.

Commands:
    daemon       Poll Azure DevOps until interrupted
    sync         Run one inbound sync (or sync a single work item)
    push         Push every locally edited story
    create       Create a work item from an unlinked story
    push-state   Push a story status to its work item
    status       Show connection health and engine counters

The PAT is always read from stdin, e.g.:

    echo "$ADO_PAT" | boardsync --org acme --project Web daemon
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import TextIO

from boardsync import __version__
from boardsync.adapters.config import EnvironmentConfigProvider
from boardsync.application import SyncRuntime
from boardsync.core.domain.enums import StoryStatus
from boardsync.core.exceptions import AuthenticationError, ConfigError

from .exit_codes import ExitCode
from .logging import setup_logging
from .output import Console


MIN_PAT_LENGTH = 20

logger = logging.getLogger("boardsync")


def create_parser() -> argparse.ArgumentParser:
    """
    Create the argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="boardsync",
        description="Bidirectional sync between a local story board and Azure DevOps",
        epilog="The Azure DevOps PAT is read from stdin and never stored.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument("--config", "-c", type=str, help="Path to config file")
    config_group.add_argument("--org", dest="organization", type=str, help="ADO organization")
    config_group.add_argument("--project", type=str, help="ADO project")
    config_group.add_argument("--area-path", type=str, help="Only sync items under this area path")
    config_group.add_argument(
        "--iteration-path", type=str, help="Only sync items under this iteration path"
    )
    config_group.add_argument("--db-path", type=str, help="Path to the board database")
    config_group.add_argument(
        "--process-template",
        choices=["agile", "scrum", "basic"],
        help="ADO process template used for state mapping",
    )

    output_group = parser.add_argument_group("Output")
    output_group.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true", help="Only print results")
    output_group.add_argument(
        "--output", "-o", choices=["text", "json"], default="text", help="Result format"
    )
    output_group.add_argument(
        "--log-format", choices=["text", "json"], default="text", help="Log format"
    )
    output_group.add_argument("--log-file", type=str, help="Also write logs to this file")
    output_group.add_argument("--no-color", action="store_true", help="Disable colored output")

    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    daemon = commands.add_parser("daemon", help="Poll Azure DevOps until interrupted")
    daemon.add_argument(
        "--poll-interval", type=float, help="Seconds between inbound syncs (default: 30)"
    )

    sync = commands.add_parser("sync", help="Run one inbound sync")
    sync.add_argument("--id", dest="remote_id", type=int, help="Sync only this work item")

    commands.add_parser("push", help="Push every locally edited story")

    create = commands.add_parser("create", help="Create a work item from a story")
    create.add_argument("story_id", help="Local story id")
    create.add_argument("--type", dest="work_item_type", help="Work item type (default: Issue)")

    push_state = commands.add_parser("push-state", help="Push a story status to ADO")
    push_state.add_argument("story_id", help="Local story id")
    push_state.add_argument(
        "status", choices=[s.value for s in StoryStatus], help="Status to push"
    )

    commands.add_parser("status", help="Show connection health and counters")

    return parser


def read_pat(stream: TextIO | None = None) -> str:
    """
    Read the PAT from a piped stream.

    Raises:
        ConfigError: If the stream is a terminal, empty, or the token is too short.
    """
    stream = stream or sys.stdin
    if stream.isatty():
        raise ConfigError(
            "PAT must be piped on stdin, not typed in a terminal. "
            'Example: echo "$ADO_PAT" | boardsync --org acme --project Web daemon'
        )

    pat = stream.read().strip()
    if not pat:
        raise ConfigError("PAT is required but stdin was empty")
    if len(pat) < MIN_PAT_LENGTH:
        raise ConfigError("PAT appears to be too short. Azure DevOps PATs are typically 52 characters")
    return pat


# =============================================================================
# Commands
# =============================================================================


def run_daemon(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    """Start polling and block until SIGINT or SIGTERM."""
    stop = threading.Event()

    def request_stop(signum: int, _frame: object) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop.set()

    previous = {sig: signal.signal(sig, request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        runtime.start()
        console.success(
            f"Polling every {runtime.config.sync.poll_interval:.0f}s, press Ctrl+C to stop"
        )
        while not stop.wait(1.0):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return ExitCode.SUCCESS


def run_sync(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    if args.remote_id is not None:
        item = runtime.inbound.sync_one(args.remote_id)
        if item is None:
            status = runtime.inbound.get_status()
            console.error(status.last_error or f"Work item {args.remote_id} was not synced")
            return ExitCode.SYNC_ERROR
        console.success(f"Synced work item {item.id} ({item.state})")
        return ExitCode.SUCCESS

    result = runtime.inbound.sync_now()
    console.sync_result(result)
    return _result_exit_code(result.success, bool(result.errors))


def run_push(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    result = runtime.outbound.push_pending_changes()
    console.sync_result(result)
    return _result_exit_code(result.success, bool(result.errors))


def run_create(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    result = runtime.outbound.create_work_item_from_story(args.story_id, args.work_item_type)
    console.create_result(result)
    return ExitCode.SUCCESS if result.success else ExitCode.SYNC_ERROR


def run_push_state(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    result = runtime.outbound.push_state_change(args.story_id, StoryStatus(args.status))
    console.push_result(result)
    return ExitCode.SUCCESS if result.success else ExitCode.SYNC_ERROR


def run_status(runtime: SyncRuntime, console: Console, args: argparse.Namespace) -> int:
    console.status(runtime.get_state())
    return ExitCode.SUCCESS


COMMANDS = {
    "daemon": run_daemon,
    "sync": run_sync,
    "push": run_push,
    "create": run_create,
    "push-state": run_push_state,
    "status": run_status,
}


def _result_exit_code(success: bool, has_errors: bool) -> int:
    if not success:
        return ExitCode.SYNC_ERROR
    if has_errors:
        return ExitCode.PARTIAL_SUCCESS
    return ExitCode.SUCCESS


def run_command(
    console: Console,
    args: argparse.Namespace,
    stdin: TextIO | None = None,
) -> int:
    """
    Load configuration, build the runtime and run the selected command.

    Args:
        console: Console instance for output.
        args: Parsed command-line arguments.
        stdin: Stream the PAT is read from (default: sys.stdin).

    Returns:
        Exit code.
    """
    config_file = Path(args.config) if args.config else None
    config_provider = EnvironmentConfigProvider(
        config_file=config_file,
        cli_overrides=vars(args),
    )
    errors = config_provider.validate()

    if errors:
        console.config_errors(errors)
        return ExitCode.CONFIG_ERROR

    config = config_provider.load()
    if config_provider.config_file_path:
        console.info(f"Config: {config_provider.config_file_path}")

    pat = read_pat(stdin)
    runtime = SyncRuntime.build(config, pat)

    with runtime:
        if args.command != "daemon":
            # the daemon checks the connection in runtime.start()
            if not runtime.tracker.test_connection():
                console.connection_error(config.connection.organization)
                return ExitCode.CONNECTION_ERROR

        try:
            return COMMANDS[args.command](runtime, console, args)
        except AuthenticationError as e:
            console.connection_error(config.connection.organization)
            logger.error(str(e))
            return ExitCode.CONNECTION_ERROR


def main(argv: list[str] | None = None, stdin: TextIO | None = None) -> int:
    """
    Main entry point for the boardsync CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    log_format = args.log_format
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_format=log_format,
        log_file=args.log_file,
        static_fields={"service": "boardsync"} if log_format == "json" else None,
    )

    console = Console(
        color=not args.no_color,
        verbose=args.verbose,
        quiet=args.quiet,
        json_mode=(args.output == "json"),
    )

    try:
        return run_command(console, args, stdin=stdin)

    except KeyboardInterrupt:
        console.print()
        console.warning("Interrupted by user")
        return ExitCode.SIGINT

    except ConfigError as e:
        console.error(e.message)
        return ExitCode.CONFIG_ERROR

    except Exception as e:
        console.error(str(e))
        if args.verbose:
            logger.exception("Unhandled error")
        return ExitCode.from_exception(e)


def run() -> None:
    """Entry point for the console script."""
    sys.exit(main())


if __name__ == "__main__":
    run()
