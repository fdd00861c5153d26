"""Console reporting for sync runs.

The sync engine never prints. It reports through a SyncOutputter, which
decides from the configured OutputLevel what reaches the terminal.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)


class OutputLevel(Enum):
    """Output verbosity level."""

    QUIET = 0  # errors only
    NORMAL = 1  # messages and a progress bar
    VERBOSE = 2  # per-file details instead of a progress bar


class SyncOutputter:
    """Reports the progress of a repository sync."""

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL, console: Console | None = None):
        """Initialize sync outputter.

        Args:
            level: Output verbosity level
            console: Console for regular output (default: stdout)
        """
        self.level = level
        self.console = console or Console()
        self.err_console = Console(stderr=True)
        self.progress: Progress | None = None
        self.task: TaskID | None = None

    def _show(self, minimum: OutputLevel) -> bool:
        return self.level.value >= minimum.value

    def _print(self, message: str, minimum: OutputLevel = OutputLevel.NORMAL, **kwargs: Any) -> None:
        if self._show(minimum):
            self.console.print(message, **kwargs)

    def header(self, repo_id: str, feed_url: str, **kwargs: Any) -> None:
        """Announce the repository being synced.

        Extra keyword arguments are listed below the feed URL, keys title-cased.
        """
        self._print(f"Syncing RPM repository: {repo_id}", style="bold")
        self._print(f"Feed URL: {feed_url}")
        for key, value in kwargs.items():
            self._print(f"{key.replace('_', ' ').title()}: {value}")
        self._print("")

    def phase(self, name: str, number: int | None = None) -> None:
        title = f"Phase {number}: {name}" if number is not None else name
        self._print(f"\n=== {title} ===", style="bold cyan")

    def start_progress(
        self, total: int, description: str = "Processing", unit: str = "items"
    ) -> None:
        """Show a progress bar over total items.

        Only in NORMAL mode; VERBOSE lists every item instead.
        """
        if self.level is not OutputLevel.NORMAL or total == 0:
            return

        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[unit]}"),
            TimeRemainingColumn(),
            console=self.console,
        )
        self.progress.start()
        self.task = self.progress.add_task(description, total=total, unit=unit)

    def update_progress(self, advance: int = 1) -> None:
        if self.progress is not None and self.task is not None:
            self.progress.update(self.task, advance=advance)

    def finish_progress(self) -> None:
        if self.progress is not None:
            self.progress.stop()
        self.progress = None
        self.task = None

    def info(self, message: str) -> None:
        self._print(message)

    def verbose(self, message: str) -> None:
        self._print(message, OutputLevel.VERBOSE)

    def success(self, message: str) -> None:
        self._print(f"✓ {message}", style="green")

    def warning(self, message: str) -> None:
        self._print(f"⚠️  {message}", style="yellow")

    def error(self, message: str) -> None:
        """Report an error on stderr, regardless of level."""
        self.err_console.print(f"✗ {message}", style="red")

    def downloading(self, path: str, current: int, total: int) -> None:
        self._print(f"→ Package {current}/{total}: {path}", OutputLevel.VERBOSE)

    def summary(self, **stats: Any) -> None:
        """Print the final statistics of a sync."""
        self._print("\n=== Summary ===", style="bold")
        for key, value in stats.items():
            self._print(f"  {key.replace('_', ' ').title()}: {value}")
