"""
jobengine - run deployment commands per project, one at a time, with live output.

- jobengine.core: errors, logging, settings
- jobengine.execution: the engine (queueing, processes, output fan-out)
- jobengine.cli: command line front-end
"""

__version__ = "0.1.0"

from jobengine.core.errors import (  # noqa: E402
    AlreadyTerminal,
    EngineDisabled,
    EngineError,
    ExecutionNotFound,
    IllegalStateTransition,
    NotFound,
    SpawnError,
)
from jobengine.execution import (  # noqa: E402
    ExecutionContext,
    ExecutionSnapshot,
    ExecutionState,
    JobEngine,
)

__all__ = [
    "__version__",
    "AlreadyTerminal",
    "EngineDisabled",
    "EngineError",
    "ExecutionContext",
    "ExecutionNotFound",
    "ExecutionSnapshot",
    "ExecutionState",
    "IllegalStateTransition",
    "JobEngine",
    "NotFound",
    "SpawnError",
]
