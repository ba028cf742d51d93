"""
Output - Console output formatting for the boardsync CLI.

Provides pretty-printed output with colors, or JSON for scripting.
"""

from __future__ import annotations

import json
import sys
from typing import Any

from boardsync.application.sync import CreateWorkItemResult, OutboundSyncResult, SyncResult


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


class Symbols:
    """Unicode symbols for terminal output."""

    CHECK = "✓"
    CROSS = "✗"
    ARROW = "→"
    DOT = "•"
    WARN = "⚠"
    INFO = "ℹ"
    BOX_H = "─"


class Console:
    """
    Console output helper with colors and formatting.

    Attributes:
        color: Whether to use ANSI color codes.
        verbose: Whether to print debug messages.
        quiet: Whether to suppress most output (for scripting).
        json_mode: Whether results are printed as JSON.
    """

    def __init__(
        self,
        color: bool = True,
        verbose: bool = False,
        quiet: bool = False,
        json_mode: bool = False,
    ):
        """
        Initialize the console output helper.

        Args:
            color: Enable colored output. Automatically disabled if stdout is not a TTY.
            verbose: Enable verbose debug output.
            quiet: Suppress most output, only show errors and results.
            json_mode: Output results as JSON instead of text.
        """
        self.json_mode = json_mode
        self.color = color and sys.stdout.isatty() and not json_mode
        self.verbose = verbose
        self.quiet = quiet or json_mode
        self._json_errors: list[str] = []

        if self.quiet:
            self.verbose = False

    def _c(self, text: str, *codes: str) -> str:
        if not self.color:
            return text
        return "".join(codes) + text + Colors.RESET

    def print(self, text: str = "", force: bool = False) -> None:
        """
        Print text to stdout.

        Args:
            text: Text to print. Defaults to empty string for blank line.
            force: Print even in quiet mode.
        """
        if self.quiet and not force:
            return
        print(text)

    def header(self, text: str) -> None:
        if self.quiet:
            return
        width = max(len(text) + 4, 50)
        border = self._c(Symbols.BOX_H * width, Colors.CYAN) if self.color else "-" * width

        self.print()
        self.print(border)
        self.print(self._c(f"  {text}", Colors.BOLD, Colors.CYAN))
        self.print(border)
        self.print()

    def section(self, text: str) -> None:
        if self.quiet:
            return
        self.print()
        self.print(self._c(f"{Symbols.ARROW} {text}", Colors.BOLD, Colors.BLUE))

    def success(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.CHECK} {text}", Colors.GREEN))

    def error(self, text: str) -> None:
        """
        Print an error message with cross symbol.

        Always prints, even in quiet mode. Collected in JSON mode.
        """
        if self.json_mode:
            self._json_errors.append(text)
            return
        print(self._c(f"  {Symbols.CROSS} {text}", Colors.RED))

    def warning(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.WARN} {text}", Colors.YELLOW))

    def info(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.INFO} {text}", Colors.CYAN))

    def detail(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"    {text}", Colors.DIM))

    def config_errors(self, errors: list[str]) -> None:
        """
        Print configuration errors with a hint on where settings come from.

        Args:
            errors: List of configuration error messages.
        """
        if self.json_mode:
            self._json_errors.extend(errors)
            self.emit_json({"success": False, "errors": list(self._json_errors)})
            return

        print(self._c("Configuration errors:", Colors.BOLD, Colors.RED))
        for error in errors:
            print(self._c(f"  {Symbols.CROSS} {error}", Colors.RED))
        print()
        print(
            "Settings are read from .boardsync.yaml, .env, the environment "
            "(ADO_ORG, ADO_PROJECT, ...) and command line options."
        )

    def connection_error(self, organization: str = "") -> None:
        target = f" ({organization})" if organization else ""
        self.error(f"Failed to connect to Azure DevOps{target}")
        if not self.json_mode:
            print("  Check that the PAT is valid, not expired and has Work Items read/write scope.")

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """
        Print a formatted table with headers.

        Args:
            headers: List of column header strings.
            rows: List of rows, where each row is a list of cell values.
        """
        if self.quiet:
            return
        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(cell)))

        self.print(
            "  " + "  ".join(self._c(h.ljust(widths[i]), Colors.BOLD) for i, h in enumerate(headers))
        )
        self.print("  " + "  ".join("-" * w for w in widths))
        for row in rows:
            self.print("  " + "  ".join(str(cell).ljust(widths[i]) for i, cell in enumerate(row)))

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def emit_json(self, data: dict[str, Any]) -> None:
        print(json.dumps(data, indent=2))

    def sync_result(self, result: SyncResult) -> None:
        """
        Print a sync run summary.

        In JSON mode the result's ``to_dict()`` is printed; in quiet mode a
        single ``key=value`` line.
        """
        if self.json_mode:
            data = result.to_dict()
            if self._json_errors:
                data["cliErrors"] = list(self._json_errors)
            self.emit_json(data)
            return

        status = "OK" if result.success and not result.errors else "FAILED"
        if self.quiet:
            print(
                f"status={status} direction={result.direction.value} "
                f"processed={result.items_processed} created={result.items_created} "
                f"updated={result.items_updated} skipped={result.items_skipped} "
                f"errors={len(result.errors)}"
            )
            return

        self.section(f"{result.direction.value.capitalize()} sync")
        self.table(
            ["Processed", "Created", "Updated", "Skipped", "Errors"],
            [
                [
                    str(result.items_processed),
                    str(result.items_created),
                    str(result.items_updated),
                    str(result.items_skipped),
                    str(len(result.errors)),
                ]
            ],
        )
        for item_error in result.errors:
            label = f"#{item_error.remote_id}" if item_error.remote_id else "run"
            self.error(f"{label}: {item_error.error} [{item_error.code.value}]")

        self.print()
        if status == "OK":
            self.success("Sync completed")
        else:
            self.warning("Sync finished with errors")

    def push_result(self, result: OutboundSyncResult) -> None:
        if self.json_mode:
            self.emit_json(result.to_dict())
            return
        if not result.success:
            self.error(f"{result.error} [{result.error_code.value if result.error_code else '?'}]")
            return
        if result.previous_state == result.new_state:
            self.info(f"Work item {result.work_item_id} already '{result.new_state}'")
        else:
            self.success(
                f"Work item {result.work_item_id}: "
                f"'{result.previous_state}' {Symbols.ARROW} '{result.new_state}'"
            )

    def create_result(self, result: CreateWorkItemResult) -> None:
        if self.json_mode:
            self.emit_json(result.to_dict())
            return
        if not result.success:
            self.error(f"{result.error} [{result.error_code.value if result.error_code else '?'}]")
            return
        self.success(f"Created work item {result.remote_work_item_id}")
        if result.url:
            self.detail(result.url)

    def status(self, state: dict[str, Any]) -> None:
        if self.json_mode:
            self.emit_json(state)
            return

        sections = (("Health", "health"), ("Inbound", "inboundSync"), ("Outbound", "outboundSync"))
        for title, key in sections:
            values = state.get(key) or {}
            self.section(title)
            for name, value in values.items():
                self.detail(f"{name}: {'-' if value is None else value}")
