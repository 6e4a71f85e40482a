from dataclasses import dataclass, field
from enum import Enum

class Phase(str, Enum):
    PRECHECKS = "prechecks"
    SETUP = "setup"
    CREATION = "creation"

PHASE_ORDER = (Phase.PRECHECKS, Phase.SETUP, Phase.CREATION)

class RunState(str, Enum):
    PENDING = "pending"
    RUNNING_PRECHECKS = "running:prechecks"
    RUNNING_SETUP = "running:setup"
    RUNNING_CREATION = "running:creation"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @staticmethod
    def running(phase: Phase) -> "RunState":
        return RunState(f"running:{phase.value}")

class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"

@dataclass
class TaskRecord:
    title: str
    status: TaskStatus = TaskStatus.PENDING
    message: str = ""
    skip_reason: str | None = None

@dataclass
class PhaseResult:
    phase: Phase
    ok: bool
    records: list[TaskRecord] = field(default_factory=list)
    error: BaseException | None = None

    def titles(self, status: TaskStatus) -> list[str]:
        return [r.title for r in self.records if r.status == status]
