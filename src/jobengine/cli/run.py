"""
CLI: ``jobengine run`` — run one command through the engine and follow it.
"""

from __future__ import annotations

import sys

import typer

from jobengine.cli.utils import err_console

_STATE_STYLE = {
    "succeeded": "bold green",
    "failed": "bold red",
    "cancelled": "yellow",
    "errored": "bold red",
}


def run_command(
    command: list[str] | None = typer.Argument(None, help="Program and arguments to run"),  # noqa: UP007
    step: list[str] | None = typer.Option(  # noqa: UP007
        None, "--step", "-s", help="Script line; repeat to compose a multi-step job"
    ),
    project: str = typer.Option("default", "--project", "-p", help="Project key"),
    cwd: str = typer.Option(".", "--cwd", "-C", help="Working directory"),
    reference: str | None = typer.Option(None, "--ref", help="Commit or branch being deployed"),  # noqa: UP007
    grace: float | None = typer.Option(  # noqa: UP007
        None, "--grace", help="Seconds between SIGTERM and SIGKILL on cancel"
    ),
) -> None:
    """Run a command, streaming its output, and exit with its status.

    Example::

        jobengine run --project web -- cap staging deploy
        jobengine run -s "bundle install" -s "cap staging deploy" --cwd /srv/web
    """
    from jobengine.core.errors import EngineError
    from jobengine.core.settings import get_settings
    from jobengine.execution import ExecutionContext, JobEngine, combine_commands

    if bool(command) == bool(step):
        err_console.print("[red]Pass either a command or one or more --step options[/red]")
        raise typer.Exit(code=2)

    settings = get_settings()
    if grace is not None:
        settings = settings.model_copy(update={"grace_period_seconds": grace})

    engine = JobEngine(settings)
    context = ExecutionContext(working_directory=cwd, reference=reference)
    try:
        execution = engine.start_execution(
            project,
            command if command else combine_commands(step or []),
            context,
            requester="cli",
        )
    except (EngineError, ValueError) as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    subscription = engine.subscribe(execution.id)
    while True:
        try:
            for chunk in subscription:
                sys.stdout.write(chunk)
                sys.stdout.flush()
            break
        except KeyboardInterrupt:
            err_console.print("\n[yellow]Cancelling…[/yellow]")
            try:
                engine.cancel_execution(execution.id, requester="cli")
            except EngineError:
                pass  # finished while we were interrupted

    final = engine.wait(execution.id)
    style = _STATE_STYLE.get(final.state.value, "bold")
    detail = f" ({final.exit_status})" if final.exit_status else ""
    err_console.print(f"[{style}]{final.state.value}[/{style}]{detail}")
    raise typer.Exit(code=exit_code(final))


def exit_code(snapshot) -> int:
    """Map a terminal snapshot to a process exit code."""
    status = snapshot.exit_status
    if snapshot.state.value == "succeeded":
        return 0
    if snapshot.state.value == "failed" and status is not None:
        return 128 + status.signal if status.killed_by_signal else status.code
    return 1
