from __future__ import annotations
import logging
from dataclasses import dataclass, field
from kessel.core.context import ContextKey, RunContext
from kessel.core.reporting import CompositeReporter, Reporter, RunLogReporter
from kessel.core.runner import PipelineRunner
from kessel.core.tasks import RunOptions
from kessel.core.workflow import PHASE_ORDER, PhaseResult, RunState
from kessel.phases.base import Services
from kessel.phases.registry import PhaseRegistry
from kessel.schemas.config import ProjectConfig

log = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    state: RunState
    config: ProjectConfig
    context: RunContext
    phases: list[PhaseResult] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.state == RunState.SUCCEEDED

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


class PhaseSequencer:
    """Chains pre-checks, setup and creation over one shared context."""

    def __init__(
        self,
        services: Services,
        options: RunOptions = RunOptions(),
        reporter: Reporter | None = None,
        registry: PhaseRegistry | None = None,
    ):
        self.services = services
        self.options = options
        self.registry = registry or PhaseRegistry.default()
        self.reporter = reporter or Reporter()
        self.runner: PipelineRunner | None = None
        self.state = RunState.PENDING

    def _set_state(self, state: RunState) -> None:
        log.debug(f"Run state {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, config: ProjectConfig, context: RunContext | None = None) -> RunOutcome:
        context = context if context is not None else RunContext()
        if self.services.run_log.closed:
            self.services.run_log = self.services.run_log.fresh()
        run_log = self.services.run_log
        self.runner = PipelineRunner(CompositeReporter([self.reporter, RunLogReporter(run_log)]))
        self.state = RunState.PENDING
        outcome = RunOutcome(state=self.state, config=config, context=context, phases=self.runner.history)

        try:
            for phase in PHASE_ORDER:
                self._set_state(RunState.running(phase))
                log.info("Running phase", extra={"phase": phase.value})
                # built lazily so a failed phase never constructs the next one
                tasks = self.registry.build(phase, config, self.services, self.options)
                await self.runner.run(phase, tasks, context)
        except Exception as e:
            log.error(f"Run failed: {e}", extra={"phase": self.state.value})
            if not self.options.dry_run and not run_log.closed and config.project_path.is_dir():
                run_log.open(config.project_path, config.project_name)
            run_log.error("Run failed", state=self.state.value, error=str(e))
            self._set_state(RunState.FAILED)
            outcome.error = e
        else:
            self._set_state(RunState.SUCCEEDED)
        finally:
            path = run_log.close()
            if path is not None and ContextKey.LOG_FILE_PATH not in context:
                context.set(ContextKey.LOG_FILE_PATH, path)

        outcome.state = self.state
        return outcome
