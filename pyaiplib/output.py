"""Output formatting for the CLI."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Prints CLI messages, tables and JSON.

    In JSON mode only ``output_json`` writes to stdout; messages go to
    stderr so the output stays machine readable.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    @property
    def _message_console(self) -> Console:
        return self.err_console if self.json_output else self.console

    def print(self, message: str = "") -> None:
        if not self.quiet:
            self._message_console.print(message, highlight=False)

    def info(self, message: str) -> None:
        if not self.quiet:
            self._message_console.print(message, highlight=False)

    def success(self, message: str) -> None:
        if not self.quiet:
            self._message_console.print(f"[green]{message}[/green]", highlight=False)

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]{message}[/yellow]", highlight=False)

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error: {message}[/red]", highlight=False)

    def output_json(self, data: Any) -> None:
        sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a two-column summary table."""
        if self.quiet:
            return
        table = Table(title=title, show_header=False, title_justify="left")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, value)
        self._message_console.print(table)

    def print_table(
        self,
        columns: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        if self.quiet:
            return
        table = Table(title=title, title_justify="left")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self._message_console.print(table)
