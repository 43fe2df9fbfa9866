"""Process runner — spawns one command and exposes its live output.

ARCHITECTURE
────────────
::

    ProcessRunner(inherit_env=True)
      └── .start(runnable, env=None) ─ spawn → ProcessHandle
                                       (raises SpawnError)

    ProcessHandle
      ├── .output()     ─ lazy iterator of decoded lines (stdout + stderr)
      ├── .wait()       ─ block until exit → ExitStatus
      ├── .terminate()  ─ SIGTERM to the process group (idempotent)
      └── .kill()       ─ SIGKILL to the process group (idempotent)

The child runs in its own session so signals reach everything a shell
script started, not just the shell. stderr is merged into stdout so the
transcript keeps the interleaving the user would see in a terminal.
"""

from __future__ import annotations

import os
import signal
import subprocess
from collections.abc import Iterator

from ..core.errors import SpawnError
from ..core.logging import get_logger
from .models import ExitStatus
from .runnable import Runnable

logger = get_logger(__name__)

_POSIX = os.name == "posix"


class ProcessHandle:
    """A running (or exited) child process and its process group.

    On POSIX the child leads its own process group, so ``terminate`` and
    ``kill`` reach everything it started, including descendants that are
    still holding the output pipe after the leader itself has exited.
    """

    def __init__(self, process: subprocess.Popen, argv: list[str]):
        self._process = process
        self.argv = argv
        self.pgid: int | None = process.pid if _POSIX else None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    def output(self) -> Iterator[str]:
        """Yield output lines until every writer closes the output pipe.

        Lines keep their trailing newline; bytes that are not valid UTF-8
        are replaced rather than aborting the stream.
        """
        stream = self._process.stdout
        if stream is None:
            return
        with stream:
            for raw in iter(stream.readline, b""):
                yield raw.decode("utf-8", errors="replace")

    def wait(self, timeout: float | None = None) -> ExitStatus:
        """Block until the group leader exits.

        Raises:
            subprocess.TimeoutExpired: If *timeout* elapses first.
        """
        return ExitStatus(self._process.wait(timeout=timeout))

    def terminate(self) -> None:
        """Send SIGTERM to the process group. No-op once the group is gone."""
        self._signal(signal.SIGTERM if _POSIX else None)

    def kill(self) -> None:
        """Send SIGKILL to the process group, whether or not the leader
        already exited. No-op once the group is gone."""
        self._signal(signal.SIGKILL if _POSIX else None)

    def _signal(self, signum: int | None) -> None:
        if self.pgid is None or signum is None:
            if self._process.poll() is None:
                self._process.kill()
            return
        try:
            os.killpg(self.pgid, signum)
        except ProcessLookupError:
            pass  # no member of the group is left

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} returncode={self.returncode}>"


class ProcessRunner:
    """Spawns :class:`Runnable` commands as local OS processes.

    Example:
        >>> runner = ProcessRunner()
        >>> handle = runner.start(Command(("echo", "hi")))
        >>> list(handle.output())
        ['hi\\n']
        >>> handle.wait()
        ExitStatus(code=0)
    """

    def __init__(self, *, inherit_env: bool = True) -> None:
        self._inherit_env = inherit_env

    def start(self, runnable: Runnable, env: dict[str, str] | None = None) -> ProcessHandle:
        """Spawn *runnable* in its working directory.

        Args:
            runnable: What to run.
            env: Extra variables layered over the runnable's own env.

        Raises:
            SpawnError: If the command cannot be launched.
        """
        argv = runnable.argv()
        cwd = runnable.working_directory
        if not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}").with_context(
                command=runnable.describe(), working_directory=cwd,
            )

        child_env = dict(os.environ) if self._inherit_env else {}
        child_env.update(runnable.env)
        if env:
            child_env.update(env)

        try:
            process = subprocess.Popen(
                argv,
                cwd=cwd,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=_POSIX,
            )
        except OSError as exc:
            raise SpawnError(
                f"Failed to start {argv[0]!r}: {exc.strerror or exc}",
                cause=exc,
            ).with_context(command=runnable.describe(), working_directory=cwd) from exc

        logger.debug("process_spawned", pid=process.pid, argv=argv, cwd=cwd)
        return ProcessHandle(process, argv)
