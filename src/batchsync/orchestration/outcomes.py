"""
Step outcomes.

A step ends in exactly one of five ways:

=========  ===========  ==========================================
Kind       Step status  Effect on the run
=========  ===========  ==========================================
CONTINUE   finished     next step runs
SKIPPED    skipped      message logged, next step runs
FINISHED   finished     message logged, next step runs
FAILED     failed       message logged at ERROR, next step runs
ABORT      failed       remaining steps never run
=========  ===========  ==========================================

A step reports its outcome either by returning a ``StepOutcome`` from
``perform`` or by raising ``StepSignal`` from any depth of its call stack
(``Step.stop_as_skipped`` and friends do this). The orchestrator turns both
forms into a ``StepOutcome`` and dispatches on its kind.

Examples:
    >>> StepOutcome.skipped("nothing to import").status
    <StepStatus.SKIPPED: 'skipped'>
    >>> StepOutcome.abort("source offline").is_run_scoped
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StepStatus(str, Enum):
    """Terminal status of a step; ``PENDING`` until it has run."""

    PENDING = "pending"
    FINISHED = "finished"
    SKIPPED = "skipped"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    CONTINUE = "continue"
    SKIPPED = "skipped"
    FINISHED = "finished"
    FAILED = "failed"
    ABORT = "abort"


_STATUS_BY_KIND = {
    OutcomeKind.CONTINUE: StepStatus.FINISHED,
    OutcomeKind.SKIPPED: StepStatus.SKIPPED,
    OutcomeKind.FINISHED: StepStatus.FINISHED,
    OutcomeKind.FAILED: StepStatus.FAILED,
    OutcomeKind.ABORT: StepStatus.FAILED,
}


@dataclass(frozen=True)
class StepOutcome:
    """How a step ended, with the message it gave."""

    kind: OutcomeKind
    message: str = ""

    @classmethod
    def proceed(cls) -> StepOutcome:
        return cls(OutcomeKind.CONTINUE)

    @classmethod
    def skipped(cls, message: str = "") -> StepOutcome:
        return cls(OutcomeKind.SKIPPED, message)

    @classmethod
    def finished(cls, message: str = "") -> StepOutcome:
        return cls(OutcomeKind.FINISHED, message)

    @classmethod
    def failed(cls, message: str = "") -> StepOutcome:
        return cls(OutcomeKind.FAILED, message)

    @classmethod
    def abort(cls, message: str = "") -> StepOutcome:
        return cls(OutcomeKind.ABORT, message)

    @property
    def status(self) -> StepStatus:
        return _STATUS_BY_KIND[self.kind]

    @property
    def is_run_scoped(self) -> bool:
        """True when the rest of the run must not execute."""
        return self.kind is OutcomeKind.ABORT

    @property
    def is_early_stop(self) -> bool:
        """True for the step-scoped stops that carry a message."""
        return self.kind in (OutcomeKind.SKIPPED, OutcomeKind.FINISHED, OutcomeKind.FAILED)


class StepSignal(Exception):
    """Raised inside a step to end it early with ``outcome``."""

    def __init__(self, outcome: StepOutcome):
        if outcome.kind is OutcomeKind.CONTINUE:
            raise ValueError("StepSignal needs a stopping outcome, not CONTINUE")
        super().__init__(outcome.message)
        self.outcome = outcome

    def __repr__(self) -> str:
        return f"StepSignal({self.outcome.kind.value}, {self.outcome.message!r})"


__all__ = ["StepStatus", "OutcomeKind", "StepOutcome", "StepSignal"]
