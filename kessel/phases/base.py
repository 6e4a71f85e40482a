from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional
import httpx
from kessel.core.config import Settings, settings as default_settings
from kessel.core.github import GitHubClient
from kessel.core.runlog import RunLogger
from kessel.core.shell import CommandRunner
from kessel.core.supabase import SupabaseCli, SupabaseClient
from kessel.core.tasks import RunOptions, Task
from kessel.schemas.config import ProjectConfig
from kessel.template.strategies import MaterializationStrategy, default_strategies


@dataclass
class Services:
    """External collaborators handed to every phase builder."""
    shell: CommandRunner
    supabase_cli: SupabaseCli
    github: Callable[[str], GitHubClient]
    supabase: Callable[[str, str], SupabaseClient]
    materializers: List[MaterializationStrategy] = field(default_factory=default_strategies)
    run_log: RunLogger = field(default_factory=RunLogger)
    settings: Settings = field(default_factory=lambda: default_settings)
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    @staticmethod
    def default(settings: Settings = default_settings) -> "Services":
        shell = CommandRunner(default_timeout=settings.probe_timeout)
        return Services(
            shell=shell,
            supabase_cli=SupabaseCli(shell, timeout=settings.probe_timeout),
            github=lambda token: GitHubClient(token=token, api_base=settings.github_api_base),
            supabase=lambda url, key: SupabaseClient(url=url, key=key, timeout=settings.http_timeout),
            run_log=RunLogger(settings.run_log_dir),
            settings=settings,
        )


PhaseBuilder = Callable[[ProjectConfig, Services, RunOptions], List[Task]]
