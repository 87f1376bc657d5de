"""Live progress display for registration runs."""

from __future__ import annotations

import threading

from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from icebridge.cli.common.output import console

_MAX_SUBJECT_WIDTH = 48
_DONE = {"done", "granted"}
_FAILED = {"failed"}


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _style_for(message: str) -> str:
    if message in _DONE:
        return "green"
    if message in _FAILED:
        return "red"
    return "yellow"


class RunProgress:
    """
    One spinner row per mount or table, updated from orchestrator callbacks.

    Rows stop (spinner and timer freeze) when they reach ``done``,
    ``granted`` or ``failed``. ``update`` may be called from worker threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, int] = {}
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[subject]}[/]"),
            TextColumn("[{task.fields[style]}]{task.fields[status]}[/{task.fields[style]}]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._live = Live(self.progress, console=console, refresh_per_second=10, transient=False)

    def __enter__(self) -> RunProgress:
        self._live.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        self._live.__exit__(*exc_info)

    def update(self, subject: str, message: str) -> None:
        """Set the status text of ``subject``'s row, creating it if needed."""
        with self._lock:
            task_id = self._rows.get(subject)
            if task_id is None:
                task_id = self.progress.add_task(
                    "",
                    total=1,
                    subject=_truncate(subject, _MAX_SUBJECT_WIDTH).ljust(_MAX_SUBJECT_WIDTH),
                    status=message,
                    style=_style_for(message),
                )
                self._rows[subject] = task_id
            finished = message in _DONE or message in _FAILED
            self.progress.update(
                task_id,
                status=message,
                style=_style_for(message),
                completed=1 if finished else 0,
            )
