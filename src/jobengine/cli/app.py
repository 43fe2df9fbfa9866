"""
Root Typer application for the jobengine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from jobengine.cli.config import show_config
from jobengine.cli.run import run_command

app = Typer(
    name="jobengine",
    help="jobengine — run deployment commands one at a time per project.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from jobengine import __version__

        typer.echo(f"jobengine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override JOBENGINE_LOG_LEVEL"),  # noqa: UP007
) -> None:
    """jobengine CLI — run and follow deployment commands."""
    from jobengine.core.logging import configure_logging
    from jobengine.core.settings import get_settings

    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.json_logs,
    )


app.command("run", context_settings={"allow_interspersed_args": False})(run_command)
app.command("config")(show_config)


def entry_point() -> None:
    app()


if __name__ == "__main__":
    entry_point()
