from __future__ import annotations
import logging
from typing import Sequence
from kessel.core.context import RunContext
from kessel.core.reporting import Reporter
from kessel.core.tasks import Task, TaskHandle
from kessel.core.workflow import Phase, PhaseResult, TaskRecord, TaskStatus

log = logging.getLogger(__name__)


class PipelineRunner:
    """Runs one task list to completion against a shared context.

    Tasks run strictly in order. The first task that raises stops the list;
    the failed PhaseResult is appended to ``history`` and the original
    exception is re-raised unchanged.
    """

    def __init__(self, reporter: Reporter | None = None):
        self.reporter = reporter or Reporter()
        self.history: list[PhaseResult] = []

    async def run(self, phase: Phase, tasks: Sequence[Task], context: RunContext) -> PhaseResult:
        self.reporter.on_phase_start(phase)
        records = [TaskRecord(title=t.title) for t in tasks]
        result = PhaseResult(phase=phase, ok=False, records=records)

        for task, record in zip(tasks, records):
            handle = TaskHandle(task.title)
            try:
                if task.skip is not None and task.skip():
                    record.status = TaskStatus.SKIPPED
                    log.debug("Task skipped by predicate", extra={"phase": phase.value, "task": task.title})
                    self.reporter.on_task_skip(task, record)
                    continue

                record.status = TaskStatus.RUNNING
                self.reporter.on_task_start(task)
                view = context.view(task.reads, task.writes, restricted=task.declares_capabilities)
                await task.action(view, handle)
            except Exception as exc:
                record.title = handle.title
                record.status = TaskStatus.ERROR
                record.message = str(exc)
                result.error = exc
                self.history.append(result)
                log.error(f"Task failed: {exc}", extra={"phase": phase.value, "task": task.title})
                self.reporter.on_task_error(task, record, exc)
                self.reporter.on_phase_complete(result)
                raise

            record.title = handle.title
            record.status = TaskStatus.COMPLETED
            record.skip_reason = handle.skip_reason
            self.reporter.on_task_complete(task, record)

        result.ok = True
        self.history.append(result)
        self.reporter.on_phase_complete(result)
        return result
