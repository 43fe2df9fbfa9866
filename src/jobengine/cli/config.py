"""
CLI: ``jobengine config`` — show the effective settings.
"""

from __future__ import annotations

import typer

from jobengine.cli.utils import console, settings_table


def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective engine configuration."""
    from jobengine.core.settings import get_settings

    settings = get_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"JOBENGINE_{key.upper()}={'' if value is None else value}")
        return

    console.print(settings_table(settings.model_dump()))
