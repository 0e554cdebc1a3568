"""Console output formatting for the n8n stack tools.

Provides colour-coded status markers for diagnostics, banner/section
headings, and aligned tables for listings such as backups and nodes.
"""

import os
import sys
from typing import List, Any, Optional, TextIO

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
CYAN = "\033[36m"
RESET = "\033[0m"

BANNER_WIDTH = 42


def colour_enabled(stream: TextIO) -> bool:
    """Colour only for interactive terminals, and never when NO_COLOR is set."""
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class Console:
    """Prints diagnostics with bracketed status markers.

    Markers are ``[OK]``, ``[FAIL]``, ``[WARN]`` and ``[INFO]`` so output
    stays greppable when colour is off.
    """

    def __init__(self, stream: Optional[TextIO] = None, colour: Optional[bool] = None):
        self._stream = stream
        self.colour = colour_enabled(self.stream) if colour is None else colour

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def paint(self, text: str, colour: str) -> str:
        if not self.colour:
            return text
        return f"{colour}{text}{RESET}"

    def line(self, text: str = "") -> None:
        print(text, file=self.stream, flush=True)

    def ok(self, text: str) -> None:
        self.line(self.paint(f"[OK] {text}", GREEN))

    def fail(self, text: str) -> None:
        self.line(self.paint(f"[FAIL] {text}", RED))

    def warn(self, text: str) -> None:
        self.line(self.paint(f"[WARN] {text}", YELLOW))

    def info(self, text: str) -> None:
        self.line(self.paint(f"[INFO] {text}", BLUE))

    def status(self, passed: bool, text: str) -> None:
        if passed:
            self.ok(text)
        else:
            self.fail(text)

    def detail(self, text: str) -> None:
        self.line(f"  {text}")

    def section(self, title: str) -> None:
        """Numbered step heading, e.g. ``[3] Checking Docker Swarm nodes...``."""
        self.line()
        self.line(self.paint(title, YELLOW))

    def banner(self, title: str) -> None:
        rule = "=" * BANNER_WIDTH
        self.line(self.paint(rule, BLUE))
        self.line(self.paint(title, BLUE))
        self.line(self.paint(rule, BLUE))

    def command_hint(self, text: str) -> str:
        return self.paint(text, BLUE)


class TableFormatter:
    """Formats data as aligned tabular output."""

    def __init__(self, columns: List[str], column_widths: Optional[List[int]] = None):
        """Initialize table formatter.

        Args:
            columns: List of column headers
            column_widths: Optional list of column widths (auto-calculated if None)
        """
        self.columns = columns
        self.column_widths = column_widths or [len(col) for col in columns]
        self.rows: List[List[str]] = []

    def add_row(self, values: List[Any]) -> None:
        """Add a row to the table.

        Raises:
            ValueError: If value count doesn't match column count
        """
        if len(values) != len(self.columns):
            raise ValueError(f"Expected {len(self.columns)} values, got {len(values)}")

        str_values = []
        for i, val in enumerate(values):
            str_val = str(val) if val is not None else "-"
            str_values.append(str_val)
            if len(str_val) > self.column_widths[i]:
                self.column_widths[i] = len(str_val)

        self.rows.append(str_values)

    def _format_row(self, values: List[str], is_header: bool = False) -> str:
        cells = []
        for i, val in enumerate(values):
            width = self.column_widths[i]
            if is_header:
                cells.append(val.ljust(width))
            else:
                try:
                    float(val)
                    cells.append(val.rjust(width))
                except ValueError:
                    cells.append(val.ljust(width))

        return "  ".join(cells).rstrip()

    def to_string(self, show_header: bool = True, show_separator: bool = True) -> str:
        lines = []

        if show_header:
            lines.append(self._format_row(self.columns, is_header=True))
            if show_separator:
                sep = "  ".join("-" * w for w in self.column_widths)
                lines.append(sep)

        for row in self.rows:
            lines.append(self._format_row(row))

        return "\n".join(lines)
