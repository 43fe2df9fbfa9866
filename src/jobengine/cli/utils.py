"""
CLI utility helpers — consoles and settings rendering.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def settings_table(values: dict[str, Any], *, prefix: str = "JOBENGINE_") -> Table:
    """Render settings as a two-column table with their environment names."""
    table = Table(show_lines=False, pad_edge=False)
    table.add_column("Setting")
    table.add_column("Environment")
    table.add_column("Value", overflow="fold")
    for key, value in sorted(values.items()):
        table.add_row(key, f"{prefix}{key.upper()}", "" if value is None else str(value))
    return table
