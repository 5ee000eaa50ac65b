"""
batchsync - scheduled multi-step batch synchronization runs.

A ``Sync`` runs an ordered list of ``Step`` objects once, under a lock that
keeps two runs of the same sync from overlapping, measures every step and
fans its log out to a file, console mirrors and alert channels.

Example:
    >>> from batchsync import Step, Sync
    >>> class Hello(Step):
    ...     def perform(self):
    ...         self.logger.info("hello")
    >>> report = Sync("hello").set_log_dir("/tmp/hello").set_steps([Hello]).perform()
    >>> report.state.value
    'done'
"""

from batchsync.core.errors import (
    ConfigurationError,
    DependencyOrderError,
    InvalidSyncNameError,
    MissingDependencyError,
    OverlapError,
    StepTypeError,
    SyncError,
    UnexpectedStepError,
    UnknownStepError,
)
from batchsync.orchestration import (
    RunReport,
    RunState,
    SharedContext,
    Step,
    StepOutcome,
    StepRegistry,
    StepSignal,
    StepStatus,
    Sync,
    register_step,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Sync",
    "Step",
    "StepOutcome",
    "StepSignal",
    "StepStatus",
    "StepRegistry",
    "register_step",
    "SharedContext",
    "RunReport",
    "RunState",
    "SyncError",
    "ConfigurationError",
    "InvalidSyncNameError",
    "StepTypeError",
    "UnknownStepError",
    "MissingDependencyError",
    "DependencyOrderError",
    "OverlapError",
    "UnexpectedStepError",
]
