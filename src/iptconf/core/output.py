"""Console output for iptconf.

Every message goes through one Rich console pair (stdout and stderr)
and is filtered by verbosity. The same object is handed to ``RuleSet``
and the parser as their observer, so rejected mutations and parse
progress show up at debug level.
"""

from enum import IntEnum
from typing import Any, Optional

from rich import box
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


# (label, style, minimum verbosity, to stderr)
_LEVELS: dict[str, tuple[str, str, Optional[Verbosity], bool]] = {
    "info": ("INFO", "green", Verbosity.NORMAL, False),
    "success": ("OK", "green", Verbosity.NORMAL, False),
    "warn": ("WARN", "yellow", None, True),
    "error": ("ERROR", "red", None, True),
    "debug": ("DEBUG", "cyan", Verbosity.DEBUG, False),
}


def _make_rich(no_color: bool, stderr: bool = False) -> RichConsole:
    return RichConsole(stderr=stderr, highlight=False, no_color=no_color)


class Console:
    """Verbosity-aware wrapper around two Rich consoles."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._out = _make_rich(False)
        self._err = _make_rich(False, stderr=True)

    def configure(
        self,
        verbosity: int = Verbosity.NORMAL,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply the flags of the current invocation."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self._out = _make_rich(no_color)
            self._err = _make_rich(no_color, stderr=True)
        self.no_color = no_color

    def _enabled(self, minimum: Optional[Verbosity]) -> bool:
        return minimum is None or self.verbosity >= minimum

    def _emit(self, level: str, message: str) -> None:
        label, style, minimum, to_stderr = _LEVELS[level]
        if not self._enabled(minimum):
            return
        target = self._err if to_stderr else self._out
        target.print(f"[{style}]\\[{label}][/{style}] {message}")

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def warn(self, message: str) -> None:
        """Warnings always reach stderr, even with --quiet."""
        self._emit("warn", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def debug(self, message: str) -> None:
        """Observer hook used by ``RuleSet`` and the parser."""
        self._emit("debug", message)

    def verbose(self, message: str) -> None:
        if self._enabled(Verbosity.VERBOSE):
            self._out.print(f"[dim]{message}[/dim]")

    def step(self, message: str) -> None:
        if self._enabled(Verbosity.NORMAL):
            self._out.print(f"[blue]->[/blue] {message}")

    def dry_run_msg(self, message: str) -> None:
        """Describe an action skipped because of --dry-run."""
        if self.dry_run:
            self._out.print(f"[blue]\\[DRY-RUN][/blue] Would: {message}")

    def hint(self, message: str) -> None:
        self._err.print(f"[cyan]Hint:[/cyan] {message}")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print text or a Rich renderable unconditionally."""
        self._out.print(message, **kwargs)

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        box_style: box.Box = box.SIMPLE_HEAD,
    ) -> None:
        """Print rows under a header. Cells are markup, so escape user text."""
        grid = Table(title=title, box=box_style)
        for name in columns:
            grid.add_column(name)
        for row in rows:
            grid.add_row(*row)
        self._out.print(grid)

    def _panel(self, text: str, lexer: str, title: str, numbered: bool, border: str) -> None:
        syntax = Syntax(text, lexer, theme="ansi_dark", line_numbers=numbered, word_wrap=False)
        self._out.print(Panel(syntax, title=title, border_style=border))

    def rules_text(self, text: str, title: str = "Rules") -> None:
        """Show save-format text with line numbers."""
        self._panel(text, "text", title, True, "blue")

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        self._panel(yaml_text, "yaml", title, False, "cyan")

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Show key/value pairs in a panel; booleans render as yes/no."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                shown = "[green]yes[/green]" if value else "[red]no[/red]"
            else:
                shown = str(value)
            lines.append(f"[bold]{key}:[/bold] {shown}")
        self._out.print(Panel("\n".join(lines), title=title, border_style="blue"))


console = Console()
