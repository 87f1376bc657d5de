"""Logging setup for the CLI.

Library modules only create loggers; the CLI decides where records go. They
are rendered through rich on the same console as the rest of the output so
log lines and live progress do not fight over the terminal.
"""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from icebridge.cli.common.output import console

_NOISY_LOGGERS = ("snowflake.connector", "urllib3")


def configure_logging(verbose: bool = False) -> None:
    """Install a rich handler on the root logger (idempotent)."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console,
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
