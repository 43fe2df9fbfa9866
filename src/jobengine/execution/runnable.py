"""Runnable protocol — what a job kind must provide to be executed.

The Process Runner only needs an argv and a working directory; every kind
of triggerable command implements :class:`Runnable` rather than the engine
type-checking on command shapes.

Implementors
------------
* ``Command``      — a single program invocation, exec'd directly
* ``ShellScript``  — a script (multi-line, or using shell syntax) run through
                     the configured shell

Usage::

    runnable = as_runnable("cap staging deploy", ExecutionContext("/srv/app"))
    runnable.argv()          # ['cap', 'staging', 'deploy']

    script = combine_commands(["bundle install", "cap staging deploy"])
    as_runnable(script).argv()  # ['/bin/sh', '-c', 'bundle install\\ncap staging deploy']
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .models import ExecutionContext

# operators, expansions and globs only a shell interprets
_SHELL_SYNTAX = re.compile(r"[|&;<>()$`*?\[\]{}~]")


@runtime_checkable
class Runnable(Protocol):
    """Anything the Process Runner can spawn."""

    @property
    def working_directory(self) -> str: ...

    @property
    def env(self) -> dict[str, str]: ...

    def argv(self) -> list[str]:
        """Return the argument vector to exec."""
        ...

    def describe(self) -> str:
        """Human readable command text (stored on the execution)."""
        ...


@dataclass(frozen=True)
class Command:
    """A single program invocation.

    A missing executable surfaces as a spawn failure rather than a shell
    exit code of 127.
    """

    args: tuple[str, ...]
    working_directory: str = "."
    env: dict[str, str] = field(default_factory=dict)

    def argv(self) -> list[str]:
        return list(self.args)

    def describe(self) -> str:
        return shlex.join(self.args)


@dataclass(frozen=True)
class ShellScript:
    """A script of one or more lines run through ``shell -c``."""

    script: str
    working_directory: str = "."
    env: dict[str, str] = field(default_factory=dict)
    shell: str = "/bin/sh"

    def argv(self) -> list[str]:
        return [self.shell, "-c", self.script]

    def describe(self) -> str:
        return self.script


def combine_commands(commands: Iterable[str]) -> str:
    """Join stored commands into one script, keeping their order."""
    return "\n".join(c.strip("\n") for c in commands if c and c.strip())


def as_runnable(
    command: str | Sequence[str] | Runnable,
    context: ExecutionContext | None = None,
    *,
    shell: str = "/bin/sh",
) -> Runnable:
    """Coerce user input into a :class:`Runnable`.

    - a ``Runnable`` is returned unchanged
    - a sequence of strings is an argv
    - a multi-line string is a :class:`ShellScript`
    - a single-line string using shell syntax (``cd app && cap deploy``,
      pipes, redirection, globs, ``$VAR``) is a :class:`ShellScript` too
    - any other single-line string is tokenised with :mod:`shlex` and
      exec'd directly, so a missing program is a spawn failure

    Raises:
        ValueError: If the command is empty.
    """
    if isinstance(command, Runnable):
        return command

    context = context or ExecutionContext()
    if isinstance(command, str):
        text = command.strip()
        if not text:
            raise ValueError("Command must not be empty")
        if "\n" in text or _SHELL_SYNTAX.search(text):
            return ShellScript(text, context.working_directory, dict(context.env), shell)
        args = tuple(shlex.split(text))
    else:
        args = tuple(command)

    if not args:
        raise ValueError("Command must not be empty")
    return Command(args, context.working_directory, dict(context.env))
