from dataclasses import dataclass
from typing import Dict, List
from kessel.core.tasks import RunOptions, Task
from kessel.core.workflow import Phase
from kessel.phases.base import PhaseBuilder, Services
from kessel.phases.creation import build_creation_tasks
from kessel.phases.prechecks import build_precheck_tasks
from kessel.phases.setup import build_setup_tasks
from kessel.schemas.config import ProjectConfig


@dataclass
class PhaseRegistry:
    mapping: Dict[Phase, PhaseBuilder]

    def get(self, phase: Phase) -> PhaseBuilder:
        return self.mapping[phase]

    def build(self, phase: Phase, config: ProjectConfig, services: Services, options: RunOptions) -> List[Task]:
        return self.get(phase)(config, services, options)

    @staticmethod
    def default() -> "PhaseRegistry":
        return PhaseRegistry(mapping={
            Phase.PRECHECKS: build_precheck_tasks,
            Phase.SETUP: build_setup_tasks,
            Phase.CREATION: build_creation_tasks,
        })
