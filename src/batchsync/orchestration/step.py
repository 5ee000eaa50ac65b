"""
Step base class.

Subclass ``Step`` and implement ``perform``::

    class ImportUsers(Step):
        name = "import_users"

        def perform(self):
            users = fetch_users()
            if not users:
                self.stop_as_skipped("no users changed")
            self.shared["user_ids"] = save(users)


    class ImportOrders(Step):
        name = "import_orders"
        depends_on = ("import_users",)

        def perform(self):
            for user_id in self.shared["user_ids"]:
                ...

The orchestrator attaches the run logger, the instrumentation collector and
the shared context right before the step runs, then drives its lifecycle:

    on_before_log_start -> log_start -> on_after_log_start -> perform
    -> on_before_log_finish -> log_finish -> on_after_log_finish
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from batchsync.orchestration.context import SharedContext
from batchsync.orchestration.instrumentation import (
    InstrumentationCollector,
    InstrumentationSnapshot,
    Probe,
)
from batchsync.orchestration.outcomes import StepOutcome, StepSignal, StepStatus


class Step(ABC):
    """A unit of work executed once per run."""

    #: Identifier used in logs and in other steps' ``depends_on``.
    #: Defaults to the class name.
    name: ClassVar[str] = ""

    #: Identifiers of steps that must appear earlier in the run.
    depends_on: ClassVar[tuple[str, ...]] = ()

    # Instance state; class-level defaults so subclasses need not call super().__init__()
    status: StepStatus = StepStatus.PENDING
    snapshot: InstrumentationSnapshot | None = None
    _name: str | None = None
    _logger: Any = None
    _instrumentation: InstrumentationCollector | None = None
    _shared: SharedContext | None = None
    _probe: Probe | None = None

    @abstractmethod
    def perform(self) -> StepOutcome | None:
        """Do the work. Return nothing, return an outcome, or raise one via ``stop_*``."""

    # ------------------------------------------------------------------ #
    # Identity
    # ------------------------------------------------------------------ #

    @property
    def identifier(self) -> str:
        return self._name or self.name or type(self).__name__

    def rename(self, identifier: str) -> None:
        """Give this instance an identifier, e.g. the registry key it came from."""
        self._name = identifier

    # ------------------------------------------------------------------ #
    # Injected collaborators
    # ------------------------------------------------------------------ #

    def attach(
        self,
        *,
        logger: Any,
        instrumentation: InstrumentationCollector,
        shared: SharedContext,
    ) -> Step:
        self._logger = logger.bind(step=self.identifier)
        self._instrumentation = instrumentation
        self._shared = shared
        return self

    @property
    def logger(self) -> Any:
        if self._logger is None:
            raise RuntimeError(f"Step {self.identifier!r} has not been attached to a run")
        return self._logger

    @property
    def shared(self) -> SharedContext:
        if self._shared is None:
            raise RuntimeError(f"Step {self.identifier!r} has not been attached to a run")
        return self._shared

    # ------------------------------------------------------------------ #
    # Early stops
    # ------------------------------------------------------------------ #

    def stop_as_skipped(self, message: str = "") -> None:
        raise StepSignal(StepOutcome.skipped(message))

    def stop_as_finished(self, message: str = "") -> None:
        raise StepSignal(StepOutcome.finished(message))

    def stop_as_failed(self, message: str = "") -> None:
        raise StepSignal(StepOutcome.failed(message))

    def stop_everything(self, message: str = "") -> None:
        """Abort the whole run; later steps never start."""
        raise StepSignal(StepOutcome.abort(message))

    # ------------------------------------------------------------------ #
    # Lifecycle hooks
    # ------------------------------------------------------------------ #

    def on_before_log_start(self) -> None:
        pass

    def on_after_log_start(self) -> None:
        pass

    def on_before_log_finish(self) -> None:
        pass

    def on_after_log_finish(self) -> None:
        pass

    def log_start(self) -> None:
        self.logger.info("==============================================")
        self.logger.info(f'Step "{self.identifier}" started')
        self._probe = self._instrumentation.begin()

    def log_finish(self) -> None:
        self.logger.info(f'Step "{self.identifier}" finished', status=self.status.value)
        if self._probe is None:
            return
        self.snapshot = self._instrumentation.finish(self._probe, self.identifier)
        self._instrumentation.log(self.snapshot, self.logger)
        self._instrumentation.flush()
        self._probe = None

    def log_finish_with_hooks(self) -> None:
        self.on_before_log_finish()
        self.log_finish()
        self.on_after_log_finish()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identifier!r} status={self.status.value}>"


__all__ = ["Step"]
