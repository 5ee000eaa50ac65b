"""Step model, validation, instrumentation and the run orchestrator."""

from batchsync.orchestration.context import SharedContext
from batchsync.orchestration.instrumentation import (
    InstrumentationCollector,
    InstrumentationSnapshot,
    QueryLogEntry,
    QueryLogSource,
    format_bytes,
    format_elapsed,
)
from batchsync.orchestration.outcomes import OutcomeKind, StepOutcome, StepSignal, StepStatus
from batchsync.orchestration.registry import (
    StepRegistry,
    default_registry,
    normalize_steps,
    prepare_steps,
    register_step,
    validate_steps,
)
from batchsync.orchestration.step import Step
from batchsync.orchestration.sync import RunReport, RunState, StepRecord, Sync

__all__ = [
    "SharedContext",
    "InstrumentationCollector",
    "InstrumentationSnapshot",
    "QueryLogEntry",
    "QueryLogSource",
    "format_bytes",
    "format_elapsed",
    "OutcomeKind",
    "StepOutcome",
    "StepSignal",
    "StepStatus",
    "StepRegistry",
    "default_registry",
    "normalize_steps",
    "prepare_steps",
    "register_step",
    "validate_steps",
    "Step",
    "RunReport",
    "RunState",
    "StepRecord",
    "Sync",
]
