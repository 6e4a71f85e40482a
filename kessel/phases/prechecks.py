"""Pre-checks: everything a run needs before touching anything remote."""
from __future__ import annotations
import logging
from typing import List
from kessel.core.context import ContextKey, ContextView
from kessel.core.credentials import verify_key_for_project
from kessel.core.supabase import check_reachable
from kessel.core.tasks import RunOptions, Task, TaskHandle
from kessel.core.toolchain import (
    check_github_cli,
    check_supabase_cli,
    check_vercel_cli,
    detect_package_manager,
)
from kessel.phases.base import Services
from kessel.schemas.config import ProjectConfig

log = logging.getLogger(__name__)


def build_precheck_tasks(config: ProjectConfig, services: Services, options: RunOptions) -> List[Task]:
    shell = services.shell
    run_log = services.run_log

    async def credentials(ctx: ContextView, task: TaskHandle) -> None:
        verify_key_for_project(config.service_role_key, config.infra_db.project_ref)
        task.title = f"Service-role key matches INFRA-DB ({config.infra_db.project_ref})"

    async def github_cli(ctx: ContextView, task: TaskHandle) -> None:
        token = await check_github_cli(shell, interactive=options.interactive)
        ctx.set(ContextKey.GITHUB_TOKEN, token)
        task.title = "GitHub CLI authenticated"

    async def vercel_cli(ctx: ContextView, task: TaskHandle) -> None:
        try:
            user = await check_vercel_cli(shell)
        except Exception as e:
            ctx.set(ContextKey.VERCEL_INSTALLED, False)
            ctx.warn(f"Vercel CLI unavailable, linking will be skipped: {e}")
            run_log.warn("Vercel CLI unavailable", error=str(e))
            task.title = "Vercel CLI unavailable (optional)"
            return
        ctx.set(ContextKey.VERCEL_INSTALLED, True)
        task.title = f"Vercel CLI logged in as {user}" if user else "Vercel CLI available"

    async def supabase_cli(ctx: ContextView, task: TaskHandle) -> None:
        version = await check_supabase_cli(shell)
        task.title = f"Supabase CLI {version}".strip()

    async def package_manager(ctx: ContextView, task: TaskHandle) -> None:
        pm = await detect_package_manager(shell)
        ctx.set(ContextKey.PACKAGE_MANAGER, pm)
        task.title = f"Package manager: {pm.name}"

    def reachability(label: str, url: str):
        async def action(ctx: ContextView, task: TaskHandle) -> None:
            status = await check_reachable(
                url, timeout=services.settings.reachability_timeout, transport=services.http_transport
            )
            log.debug(f"{label} answered {status}", extra={"task": task.title})
            task.title = f"{label} reachable ({url})"
        return action

    return [
        Task("Service-role key matches INFRA-DB", credentials),
        Task("GitHub CLI", github_cli, writes=frozenset({ContextKey.GITHUB_TOKEN})),
        Task(
            "Vercel CLI",
            vercel_cli,
            skip=lambda: not config.link_vercel,
            writes=frozenset({ContextKey.VERCEL_INSTALLED}),
        ),
        Task("Supabase CLI", supabase_cli),
        Task("Package manager", package_manager, writes=frozenset({ContextKey.PACKAGE_MANAGER})),
        Task("INFRA-DB reachable", reachability("INFRA-DB", config.infra_db.url)),
        Task("DEV-DB reachable", reachability("DEV-DB", config.dev_db.url)),
    ]
