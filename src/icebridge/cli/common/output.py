"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from icebridge.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM
from icebridge.core.models import (
    MetadataSnapshot,
    MountSpec,
    ReadPath,
    TableOutcome,
    TableSpec,
    VolumeDescriptor,
    WritePath,
)

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)


def _mode_label(spec: TableSpec) -> str:
    if isinstance(spec.mode, WritePath):
        return f"write -> {spec.mode.base_location}"
    if isinstance(spec.mode, ReadPath):
        return f"read <- {spec.mode.table_path}"
    return "?"


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Ask the user for a yes/no confirmation."""
        console.print("[meta]Use y/n then Enter[/]")
        prompt = questionary.confirm(
            f"[icebridge] {message}",
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="❄",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def mounts_table(self, mounts: Iterable[MountSpec], title: str = "Mounts") -> None:
        """Render configured mounts."""
        t = Table(title=title, show_lines=False)
        t.add_column("Volume", style="ok", no_wrap=True)
        t.add_column("Provider", style="meta")
        t.add_column("Base URL")
        t.add_column("Access", style="meta")

        for m in mounts:
            t.add_row(m.name, m.provider, m.base_url, "read-only" if m.read_only else "read/write")

        console.print(t)

    def table_specs_table(self, specs: Iterable[TableSpec], title: str = "Tables") -> None:
        """Render configured tables with their registration mode."""
        t = Table(title=title, show_lines=False)
        t.add_column("Table", style="ok")
        t.add_column("Volume", style="meta")
        t.add_column("Mode")
        t.add_column("Columns", style="meta")
        t.add_column("Shortcut", style="meta")

        for s in specs:
            t.add_row(
                s.qualified_name,
                s.mount_ref,
                _mode_label(s),
                str(len(s.columns)) if s.columns else "",
                s.shortcut.name if s.shortcut else "",
            )

        console.print(t)

    def volumes_table(
        self,
        volumes: Mapping[str, VolumeDescriptor],
        principals: Mapping[str, Any],
        title: str = "Volumes",
    ) -> None:
        """Render created volumes with their principal and consent state."""
        t = Table(title=title, show_lines=False)
        t.add_column("Volume", style="ok", no_wrap=True)
        t.add_column("Principal")
        t.add_column("Consent")

        for name, v in volumes.items():
            principal = principals.get(name)
            display = getattr(principal, "display_name", "") or ""
            state = getattr(getattr(principal, "consent_state", None), "value", "")
            style = "ok" if state == "GRANTED" else "err"
            t.add_row(name, display, f"[{style}]{state}[/{style}]" if state else "")

        console.print(t)

    def outcomes_table(
        self, outcomes: Iterable[TableOutcome], title: str = "Results"
    ) -> None:
        """Render per-table registration and validation results."""
        t = Table(title=title, show_lines=False)
        t.add_column("Table", style="ok")
        t.add_column("Registered")
        t.add_column("Rows", justify="right")
        t.add_column("Result")

        for o in outcomes:
            rows = ""
            if o.validation is not None and o.validation.row_count is not None:
                rows = str(o.validation.row_count)
            if o.ok:
                warnings = o.validation.warnings if o.validation else ()
                result = "[ok]OK[/]" + (f" [warn]{'; '.join(warnings)}[/]" if warnings else "")
            else:
                err = o.error or (o.validation.error if o.validation else "") or ""
                kind = f"{o.error_type}: " if o.error_type else ""
                result = f"[err]FAIL[/] {kind}{err}"
            t.add_row(o.table, "yes" if o.registered else "no", rows, result)

        console.print(t)

    def snapshot(self, snap: MetadataSnapshot) -> None:
        """Print a metadata snapshot."""
        self.kv(
            {
                "Table path": snap.table_path,
                "Generation": snap.generation_number,
                "Metadata file": snap.file_path,
            }
        )


out = Out()
