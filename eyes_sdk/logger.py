"""Rich-backed logger used by every component.

Output goes through a ``rich.console.Console`` writing to stderr, or to a
log file when one is configured. ``extend`` derives child loggers whose
label is prefixed with the parent's, so a line reads like
``[Eyes/VG/chrome] render submitted``.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO

from rich.console import Console
from rich.markup import escape


class Logger:
    """Leveled logger with labels and sticky context tags."""

    def __init__(
        self,
        label: str = "Eyes",
        show_logs: bool = False,
        verbose: bool = False,
        log_file: str | Path | None = None,
        console: Console | None = None,
    ) -> None:
        self.label = label
        self.show_logs = show_logs
        self.verbose_enabled = verbose
        self.log_file = Path(log_file) if log_file else None
        self._tags: dict[str, str] = {}
        self._handle: IO[str] | None = None
        self._console = console
        self._parent: Logger | None = None

    # ------------------------------------------------------------------
    # Output channel
    # ------------------------------------------------------------------

    @property
    def console(self) -> Console:
        if self._parent is not None:
            return self._parent.console
        if self._console is None or (self.log_file and self._handle is None):
            if self.log_file:
                self._handle = self.log_file.open("a", encoding="utf-8")
                self._console = Console(file=self._handle, no_color=True, width=200)
            else:
                self._console = Console(stderr=True)
        return self._console

    def close(self) -> None:
        """Release the log file. A later write reopens it in append mode."""
        if self._parent is not None:
            return
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._console = None

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def extend(self, label: str) -> Logger:
        child = Logger(
            label=f"{self.label}/{label}",
            show_logs=self.show_logs,
            verbose=self.verbose_enabled,
        )
        child._parent = self
        child._tags = dict(self._tags)
        return child

    def tag(self, key: str, value: object) -> None:
        self._tags[key] = str(value)

    def _prefix(self) -> str:
        tags = " ".join(f"{k}={v}" for k, v in self._tags.items())
        return escape(f"[{self.label}]" + (f" ({tags})" if tags else ""))

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def log(self, message: str) -> None:
        if self.show_logs:
            self.console.print(f"[dim]{self._prefix()}[/dim] {escape(message)}")

    def verbose(self, message: str) -> None:
        if self.verbose_enabled:
            self.console.print(f"[dim]{self._prefix()} {escape(message)}[/dim]")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]{self._prefix()} WARNING[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]{self._prefix()} ERROR[/red] {escape(message)}")
