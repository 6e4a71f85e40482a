"""Reporter interface for pipeline progress.

The runner only talks to a :class:`Reporter`; plain log output, the rich
terminal view and the run log are interchangeable implementations.
"""
from __future__ import annotations
import logging
from typing import Iterable
from kessel.core.runlog import RunLogger
from kessel.core.tasks import Task
from kessel.core.workflow import Phase, PhaseResult, TaskRecord

log = logging.getLogger(__name__)


class Reporter:
    def on_phase_start(self, phase: Phase) -> None:
        pass

    def on_task_start(self, task: Task) -> None:
        pass

    def on_task_complete(self, task: Task, record: TaskRecord) -> None:
        pass

    def on_task_skip(self, task: Task, record: TaskRecord) -> None:
        pass

    def on_task_error(self, task: Task, record: TaskRecord, error: BaseException) -> None:
        pass

    def on_phase_complete(self, result: PhaseResult) -> None:
        pass


class LogReporter(Reporter):
    """Plain console output through the logging module."""

    def on_phase_start(self, phase):
        log.info(f"Phase {phase.value} started", extra={"phase": phase.value})

    def on_task_start(self, task):
        log.info(f"{task.title}...", extra={"task": task.title})

    def on_task_complete(self, task, record):
        if record.skip_reason:
            log.info(f"{record.title} (skipped: {record.skip_reason})", extra={"task": task.title})
        else:
            log.info(f"{record.title} done", extra={"task": task.title})

    def on_task_skip(self, task, record):
        log.info(f"{record.title} skipped", extra={"task": task.title})

    def on_task_error(self, task, record, error):
        log.error(f"{record.title} failed: {error}", extra={"task": task.title})

    def on_phase_complete(self, result):
        log.info(f"Phase {result.phase.value} finished ok={result.ok}", extra={"phase": result.phase.value})


class RunLogReporter(Reporter):
    """Mirrors every task transition into the run's audit log."""

    def __init__(self, run_log: RunLogger):
        self.run_log = run_log

    def on_phase_start(self, phase):
        self.run_log.info(f"Phase started: {phase.value}")

    def on_task_start(self, task):
        self.run_log.task(f"Started: {task.title}")

    def on_task_complete(self, task, record):
        if record.skip_reason:
            self.run_log.skip(f"Skipped: {record.title}", reason=record.skip_reason)
        else:
            self.run_log.ok(f"Completed: {record.title}")

    def on_task_skip(self, task, record):
        self.run_log.skip(f"Skipped: {record.title}", reason="skip predicate")

    def on_task_error(self, task, record, error):
        self.run_log.error(f"Failed: {record.title}", error=str(error))

    def on_phase_complete(self, result):
        self.run_log.info(f"Phase finished: {result.phase.value}", ok=result.ok)


class CompositeReporter(Reporter):
    def __init__(self, reporters: Iterable[Reporter]):
        self.reporters = list(reporters)

    def on_phase_start(self, phase):
        for r in self.reporters:
            r.on_phase_start(phase)

    def on_task_start(self, task):
        for r in self.reporters:
            r.on_task_start(task)

    def on_task_complete(self, task, record):
        for r in self.reporters:
            r.on_task_complete(task, record)

    def on_task_skip(self, task, record):
        for r in self.reporters:
            r.on_task_skip(task, record)

    def on_task_error(self, task, record, error):
        for r in self.reporters:
            r.on_task_error(task, record, error)

    def on_phase_complete(self, result):
        for r in self.reporters:
            r.on_phase_complete(result)
