"""Job execution engine — run deployment commands and stream their output.

ARCHITECTURE
────────────
::

    JobEngine (facade)                              engine.py
      ├── EngineSwitch      ─ global enabled flag
      └── Dispatcher        ─ per-project FIFO, one running per key    dispatcher.py
            └── ExecutionStateMachine  ─ lifecycle + worker thread     machine.py
                  ├── ProcessRunner    ─ spawn / terminate / kill      process.py
                  ├── OutputChannel    ─ transcript + live fan-out     broadcast.py
                  └── JobRepository    ─ durable record (external)     repository.py

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. models.py      ─ Execution, ExecutionState, transitions
  2. runnable.py    ─ Runnable, Command, ShellScript
  3. process.py     ─ ProcessRunner, ProcessHandle
  4. broadcast.py   ─ OutputChannel, Subscription
  5. machine.py     ─ ExecutionStateMachine
  6. dispatcher.py  ─ ProjectQueue, Dispatcher
  7. engine.py      ─ JobEngine
  8. repository.py  ─ JobRepository + in-memory / sqlite implementations
"""

from .broadcast import ChannelClosed, OutputChannel, Subscription
from .dispatcher import Dispatcher, ProjectQueue
from .engine import EngineSwitch, JobEngine
from .machine import ExecutionStateMachine
from .models import (
    EXECUTION_VALID_TRANSITIONS,
    TERMINAL_STATES,
    Execution,
    ExecutionContext,
    ExecutionSnapshot,
    ExecutionState,
    ExitStatus,
    validate_execution_transition,
)
from .process import ProcessHandle, ProcessRunner
from .repository import InMemoryJobRepository, JobRepository, SqliteJobRepository
from .runnable import Command, Runnable, ShellScript, as_runnable, combine_commands

__all__ = [
    # Facade
    "JobEngine",
    "EngineSwitch",
    # Dispatch
    "Dispatcher",
    "ProjectQueue",
    "ExecutionStateMachine",
    # Models
    "Execution",
    "ExecutionContext",
    "ExecutionSnapshot",
    "ExecutionState",
    "ExitStatus",
    "EXECUTION_VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_execution_transition",
    # Process
    "ProcessHandle",
    "ProcessRunner",
    "Runnable",
    "Command",
    "ShellScript",
    "as_runnable",
    "combine_commands",
    # Output
    "OutputChannel",
    "Subscription",
    "ChannelClosed",
    # Repository
    "JobRepository",
    "InMemoryJobRepository",
    "SqliteJobRepository",
]
