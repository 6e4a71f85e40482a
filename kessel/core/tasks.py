from __future__ import annotations
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from kessel.core.context import ContextKey, ContextView

Action = Callable[[ContextView, "TaskHandle"], Awaitable[None]]


@dataclass(frozen=True)
class RunOptions:
    verbose: bool = False
    dry_run: bool = False
    interactive: bool = False


@dataclass
class Task:
    """One unit of work inside a phase.

    ``skip`` is evaluated synchronously before the action runs and must not
    depend on the context. Tasks that declare neither ``reads`` nor ``writes``
    get unrestricted context access.
    """
    title: str
    action: Action
    skip: Optional[Callable[[], bool]] = None
    reads: frozenset[ContextKey] = field(default_factory=frozenset)
    writes: frozenset[ContextKey] = field(default_factory=frozenset)

    @property
    def declares_capabilities(self) -> bool:
        return bool(self.reads or self.writes)


class TaskHandle:
    def __init__(self, title: str):
        self.title = title
        self.skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def skip(self, reason: str) -> None:
        # the action is expected to return right after calling this
        self.skip_reason = reason
