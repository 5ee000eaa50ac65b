"""
Sync orchestrator.

A ``Sync`` is one named, multi-step batch job. It is configured fluently and
run once with ``perform()``::

    report = (
        Sync("nightly")
        .set_steps([ImportUsers, "import_orders", BuildIndex()])
        .email_alerts_to(["ops@example.com"])
        .send_alerts_to_telegram(bot_token, chat_id)
        .email_final_log_to("reports@example.com")
        .perform()
    )

Run protocol:

1. Open ``<log_dir>/<Y_m_d_H_M_S>.log`` and install the configured sinks.
2. ``adjust_environment()``: widen ``wait_timeout`` on registered MySQL
   engines (override to tune anything else the steps share).
3. Acquire the overlap guard; ``OverlapError`` if another run holds it.
4. Purge run logs older than the retention window.
5. Normalize and validate the step list (``ConfigurationError``).
6. Enable query-log sources when SQL profiling is on.
7. Run each step: attach logger, instrumentation and shared context, call
   the start hooks, ``perform``, record the outcome, call the finish hooks.
   An abort or an unexpected exception ends the loop.
8. Log completion and total elapsed time, e-mail the final log.
9. Detach query-log sources, undo ``adjust_environment()``, release the
   lock, close the sinks, return a ``RunReport``.

Fatal errors in steps 3 and 5 are logged at CRITICAL before they propagate;
the lock is released on every path out of ``perform``.

States:
    INITIALIZING -> VALIDATING -> EXECUTING -> FINALIZING -> DONE
                                      |
                                      +-> ABORTED
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from rich.console import Console
from sqlalchemy.engine import Engine

from batchsync.alerts.channels import EmailChannel, TelegramChannel
from batchsync.alerts.fanout import RunLog
from batchsync.core.errors import (
    ConfigurationError,
    InvalidSyncNameError,
    OverlapError,
    SyncError,
    UnexpectedStepError,
)
from batchsync.core.logging import get_logger
from batchsync.core.retention import purge_old_logs
from batchsync.core.settings import SyncSettings, get_settings
from batchsync.execution.lock import OverlapGuard, lock_path_for
from batchsync.orchestration.context import SharedContext
from batchsync.orchestration.instrumentation import (
    InstrumentationCollector,
    QueryLogSource,
    format_elapsed,
)
from batchsync.orchestration.outcomes import OutcomeKind, StepOutcome, StepSignal, StepStatus
from batchsync.orchestration.registry import StepRegistry, default_registry, prepare_steps
from batchsync.orchestration.step import Step
from batchsync.sql.querylog import CursorQueryTracker, restore_idle_timeout, widen_idle_timeout

logger = get_logger(__name__)

SYNC_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
LOG_FILE_FORMAT = "%Y_%m_%d_%H_%M_%S"
SEPARATOR = "=============================================="


class RunState(str, Enum):
    INITIALIZING = "initializing"
    VALIDATING = "validating"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class StepRecord:
    identifier: str
    status: StepStatus
    message: str = ""


@dataclass
class RunReport:
    """Summary of a finished run."""

    name: str
    env: str
    started_at: datetime
    elapsed: float
    state: RunState
    status: StepStatus | None  # Status of the last step reached
    steps: list[StepRecord] = field(default_factory=list)
    log_file: Path | None = None
    error: SyncError | None = None

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED

    def to_dict(self) -> dict[str, Any]:
        result = {
            "name": self.name,
            "env": self.env,
            "started_at": self.started_at.isoformat(),
            "elapsed": round(self.elapsed, 3),
            "state": self.state.value,
            "status": self.status.value if self.status else None,
            "steps": [
                {"step": record.identifier, "status": record.status.value, "message": record.message}
                for record in self.steps
            ],
            "log_file": str(self.log_file) if self.log_file else None,
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


_STOP_HELPERS = frozenset(
    helper.__code__
    for helper in (Step.stop_as_skipped, Step.stop_as_finished, Step.stop_as_failed, Step.stop_everything)
)


def signal_origin(signal: StepSignal) -> tuple[str | None, int | None]:
    """File and line that raised ``signal``, skipping the ``stop_*`` helper frame."""
    origin: tuple[str | None, int | None] = (None, None)
    tb = signal.__traceback__
    while tb is not None:
        code = tb.tb_frame.f_code
        if code not in _STOP_HELPERS:
            origin = (code.co_filename, tb.tb_lineno)
        tb = tb.tb_next
    return origin


def _as_list(emails: str | Iterable[str] | None) -> list[str]:
    if not emails:
        return []
    if isinstance(emails, str):
        return [email.strip() for email in emails.split(",") if email.strip()]
    return list(emails)


class Sync:
    """A named sequence of steps run under an overlap lock."""

    def __init__(
        self,
        name: str,
        *,
        settings: SyncSettings | None = None,
        registry: StepRegistry | None = None,
    ):
        if not isinstance(name, str) or not SYNC_NAME_PATTERN.fullmatch(name):
            raise InvalidSyncNameError(str(name))

        self.name = name
        self.settings = settings or get_settings()
        self.registry = registry or default_registry
        self.state = RunState.INITIALIZING
        self.shared = SharedContext()
        self.run_log = RunLog(name, self.settings.log_level)
        self.report: RunReport | None = None

        self._steps: list[Any] = []
        self._log_dir: Path | None = None
        self._env = self.settings.env
        self._allow_overlap = self.settings.allow_overlapping
        self._profile_sql = self.settings.profile_sql
        self._clean_old_logs = self.settings.clean_old_logs
        self._echo = self.settings.send_output_to_echo
        self._email_alerts_to = list(self.settings.email_alerts_to)
        self._email_final_log_to = list(self.settings.email_final_log_to)
        self._telegram: tuple[str, str, str | None] | None = None
        if self.settings.telegram_enabled:
            self._telegram = (
                self.settings.telegram_bot_token,
                self.settings.telegram_chat_id,
                self.settings.telegram_proxy,
            )
        self._console: tuple[Console, int] | None = None
        self._engines: list[Engine] = []
        self._query_sources: list[QueryLogSource] = []

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def set_steps(self, steps: Iterable[Any]) -> Sync:
        """Steps as instances, ``Step`` subclasses or registered identifiers."""
        self._steps = list(steps)
        return self

    def set_env(self, env: str) -> Sync:
        self._env = env
        return self

    def set_shared_data(self, data: Mapping[str, Any]) -> Sync:
        """Initial contents of the shared context."""
        self.shared.reset(data)
        return self

    def allow_overlapping(self, value: bool = True) -> Sync:
        self._allow_overlap = value
        return self

    def profile_sql(self, value: bool = True) -> Sync:
        self._profile_sql = value
        return self

    def email_alerts_to(self, emails: str | Iterable[str]) -> Sync:
        self._email_alerts_to = _as_list(emails)
        return self

    def send_alerts_to_telegram(self, bot_token: str, chat_id: str, proxy: str | None = None) -> Sync:
        self._telegram = (bot_token, chat_id, proxy)
        return self

    def email_final_log_to(self, emails: str | Iterable[str]) -> Sync:
        self._email_final_log_to = _as_list(emails)
        return self

    def clean_old_logs(self, days: int = 30) -> Sync:
        """Delete run logs older than ``days`` days; 0 keeps everything."""
        self._clean_old_logs = days
        return self

    def set_log_dir(self, path: str | Path) -> Sync:
        self._log_dir = Path(path)
        return self

    def send_output_to_echo(self, value: bool = True) -> Sync:
        """Mirror the run log to stdout."""
        self._echo = value
        return self

    def send_output_to_console(self, console: Console, level: int = logging.INFO) -> Sync:
        """Mirror the run log to a rich console."""
        self._console = (console, level)
        return self

    def push_log_handler(self, handler: logging.Handler) -> Sync:
        self.run_log.add_handler(handler)
        return self

    def add_query_source(self, source: QueryLogSource) -> Sync:
        self._query_sources.append(source)
        return self

    def use_engine(self, engine: Engine, *, track_queries: bool = True) -> Sync:
        """Register an engine for idle-timeout tuning and, optionally, query tracking."""
        self._engines.append(engine)
        if track_queries:
            self.add_query_source(CursorQueryTracker(engine))
        return self

    # ------------------------------------------------------------------ #
    # Derived values
    # ------------------------------------------------------------------ #

    @property
    def logger(self) -> Any:
        return self.run_log.logger

    @property
    def env(self) -> str:
        return self._env

    @property
    def log_dir(self) -> Path:
        return self._log_dir or self.settings.log_root / self.name

    @property
    def lock_path(self) -> Path:
        return lock_path_for(self.log_dir, self.name)

    @property
    def alert_title(self) -> str:
        return f'{self.settings.site_name}, {self._env}: sync "{self.name}" failed'

    @property
    def final_log_subject(self) -> str:
        return f'{self.settings.site_name}, {self._env}: sync "{self.name}" finished'

    def _email_channel(self, name: str, recipients: list[str]) -> EmailChannel:
        settings = self.settings
        return EmailChannel(
            name,
            settings.smtp_host,
            settings.email_from,
            recipients,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            min_severity=settings.alert_severity,
        )

    # ------------------------------------------------------------------ #
    # Run
    # ------------------------------------------------------------------ #

    def apply_configuration(self) -> None:
        """Open the run log file and install the configured sinks."""
        self.run_log.open_file(self.log_dir / f"{datetime.now():{LOG_FILE_FORMAT}}.log")
        if self._echo:
            self.run_log.mirror_to_stream()
        if self._console is not None:
            console, level = self._console
            self.run_log.mirror_to_console(console, level)
        if self._email_alerts_to:
            self.run_log.add_channel(
                self._email_channel("email_alerts", self._email_alerts_to),
                title=self.alert_title,
            )
        if self._telegram is not None:
            bot_token, chat_id, proxy = self._telegram
            self.run_log.add_channel(
                TelegramChannel(
                    "telegram",
                    bot_token,
                    chat_id,
                    proxy=proxy,
                    min_severity=self.settings.alert_severity,
                ),
                title=self.alert_title,
            )

    def adjust_environment(self) -> None:
        """Tune shared resources before any step runs."""
        for engine in self._engines:
            widen_idle_timeout(engine, self.settings.idle_timeout_seconds)

    def restore_environment(self) -> None:
        """Undo ``adjust_environment`` once the run is over."""
        for engine in self._engines:
            restore_idle_timeout(engine)

    def perform(self) -> RunReport:
        """Run every step once, in order."""
        if self.report is not None or self.run_log.log_file is not None:
            raise RuntimeError(f"Sync {self.name!r} has already been performed")

        started_at = datetime.now(UTC)
        started = time.perf_counter()
        self.state = RunState.INITIALIZING
        self.apply_configuration()
        log = self.logger
        log.info("Sync started", env=self._env)

        guard = OverlapGuard(
            self.name,
            self.lock_path,
            run_logger=log,
            allow_overlap=self._allow_overlap,
        )
        collector: InstrumentationCollector | None = None
        try:
            self.adjust_environment()
            try:
                guard.acquire()
            except OverlapError as e:
                log.critical(e.message, error=e.to_dict())
                raise

            if self._clean_old_logs:
                purge_old_logs(self.log_dir, self._clean_old_logs)

            self.state = RunState.VALIDATING
            try:
                steps = prepare_steps(self._steps, self.registry)
            except ConfigurationError as e:
                e.with_context(sync=self.name)
                log.critical(e.message, error=e.to_dict())
                raise

            collector = InstrumentationCollector(self._query_sources if self._profile_sql else ())
            if self._profile_sql:
                collector.enable_sources()

            self.state = RunState.EXECUTING
            records, aborted, error = self._run_steps(steps, collector)
            self.state = RunState.ABORTED if aborted else RunState.FINALIZING

            elapsed = time.perf_counter() - started
            log.info(SEPARATOR)
            log.info("Sync finished", aborted=aborted)
            log.info(f"Elapsed time: {format_elapsed(elapsed)}")
            self._email_final_log()

            if not aborted:
                self.state = RunState.DONE
            reached = [r for r in records if r.status is not StepStatus.PENDING]
            self.report = RunReport(
                name=self.name,
                env=self._env,
                started_at=started_at,
                elapsed=elapsed,
                state=self.state,
                status=reached[-1].status if reached else None,
                steps=records,
                log_file=self.run_log.log_file,
                error=error,
            )
            logger.info("sync_completed", sync=self.name, state=self.state.value, elapsed=round(elapsed, 3))
            return self.report
        finally:
            if collector is not None:
                collector.detach_sources()
            self.restore_environment()
            guard.release()
            self.run_log.close()

    def _run_steps(
        self, steps: list[Step], collector: InstrumentationCollector
    ) -> tuple[list[StepRecord], bool, SyncError | None]:
        records = [StepRecord(step.identifier, step.status) for step in steps]
        error: SyncError | None = None
        aborted = False

        for index, step in enumerate(steps):
            step.attach(logger=self.logger, instrumentation=collector, shared=self.shared)
            outcome, error, origin = self._execute_step(step)
            step.status = outcome.status
            self._log_outcome(step, outcome, error, origin)

            try:
                step.log_finish_with_hooks()
            except Exception as exc:
                if error is None:
                    error = self._unexpected(step, exc)
                    step.status = StepStatus.FAILED

            records[index] = StepRecord(step.identifier, step.status, outcome.message)
            if outcome.is_run_scoped or error is not None:
                aborted = True
                break

        return records, aborted, error

    def _execute_step(self, step: Step) -> tuple[StepOutcome, SyncError | None, tuple[str | None, int | None]]:
        try:
            step.on_before_log_start()
            step.log_start()
            step.on_after_log_start()
            result = step.perform()
        except StepSignal as signal:
            return signal.outcome, None, signal_origin(signal)
        except Exception as exc:
            error = self._unexpected(step, exc)
            return StepOutcome.abort(error.message), error, error.location
        if isinstance(result, StepOutcome):
            return result, None, (None, None)
        return StepOutcome.proceed(), None, (None, None)

    def _unexpected(self, step: Step, exc: Exception) -> UnexpectedStepError:
        error = UnexpectedStepError(step.identifier, exc)
        error.with_context(sync=self.name)
        step.logger.critical(
            "Unhandled exception, sync stopped",
            exc_info=exc,
            **error.diagnostics(),
        )
        return error

    def _log_outcome(
        self,
        step: Step,
        outcome: StepOutcome,
        error: SyncError | None,
        origin: tuple[str | None, int | None],
    ) -> None:
        if error is not None or outcome.kind is OutcomeKind.CONTINUE:
            return
        if outcome.is_run_scoped:
            file, line = origin
            step.logger.critical("Step requested to stop the sync", message=outcome.message, file=file, line=line)
        elif outcome.kind is OutcomeKind.FAILED:
            step.logger.error("Step ended as failed", message=outcome.message)
        else:
            step.logger.info(f"Step ended as {outcome.status.value}", message=outcome.message)

    def _email_final_log(self) -> None:
        if not self._email_final_log_to:
            return

        self.run_log.flush()
        path = self.run_log.log_file
        try:
            body = path.read_text(encoding="utf-8")
        except OSError:
            body = ""
        if not body:
            body = f"Could not retrieve log file {path}"

        channel = self._email_channel("final_log", self._email_final_log_to)
        result = channel.send_text(self.final_log_subject, body)
        if not result.success:
            self.logger.warning("Could not email the final log", error=result.message)

    def __repr__(self) -> str:
        return f"<Sync {self.name!r} state={self.state.value}>"


__all__ = ["Sync", "RunReport", "RunState", "StepRecord", "SYNC_NAME_PATTERN"]
