"""Console output for the CLI, with optional JSON mode."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats command output for humans (rich) or scripts (JSON).

    Informational messages go to stderr in JSON mode so stdout stays
    machine-readable.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False)
        self.err_console = Console(stderr=True, highlight=False)

    def _info_console(self) -> Console:
        return self.err_console if self.json_output else self.console

    def info(self, message: str) -> None:
        if not self.quiet:
            self._info_console().print(message)

    def success(self, message: str) -> None:
        if not self.quiet:
            self._info_console().print(f"[green]{escape(message)}[/green]")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {escape(message)}")

    def print(self, message: str) -> None:
        """Print regardless of quiet mode (primary command output)."""
        if self.json_output:
            return
        self.console.print(message)

    def format_size(self, size_bytes: int) -> str:
        return format_size(size_bytes)

    def output_json(self, data: Any) -> None:
        sys.stdout.write(json.dumps(data, indent=2, sort_keys=True) + "\n")
        sys.stdout.flush()

    def output_table(
        self,
        rows: list[dict],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table, or as a JSON list in JSON mode.

        Args:
            rows: One dict per row
            columns: Keys to display, in order
            headers: Optional column key -> header label
        """
        if self.json_output:
            self.output_json([{col: row.get(col) for col in columns} for row in rows])
            return

        headers = headers or {}
        table = Table(show_header=True, header_style="bold")
        for col in columns:
            table.add_column(headers.get(col, col))
        for row in rows:
            table.add_row(*("" if row.get(col) is None else str(row[col]) for col in columns))
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled key/value summary block."""
        if self.json_output:
            self.output_json({key: value for key, value in items})
            return
        if self.quiet:
            return
        self.console.print(f"\n[bold]{title}[/bold]")
        for key, value in items:
            self.console.print(f"  {key}: {value}")
