from __future__ import annotations
import logging
from typing import List
from kessel.core.context import ContextKey, ContextView
from kessel.core.logging import mask_secret
from kessel.core.tasks import RunOptions, Task, TaskHandle
from kessel.phases.base import Services
from kessel.schemas.config import ProjectConfig

log = logging.getLogger(__name__)


def build_setup_tasks(config: ProjectConfig, services: Services, options: RunOptions) -> List[Task]:
    cli = services.supabase_cli
    run_log = services.run_log
    project_ref = config.infra_db.project_ref

    async def schema_name(ctx: ContextView, task: TaskHandle) -> None:
        ctx.set(ContextKey.SCHEMA_NAME, config.schema_name)
        task.title = f"Schema: {config.schema_name}"

    async def anon_key(ctx: ContextView, task: TaskHandle) -> None:
        key = await cli.fetch_anon_key(project_ref)
        source = "Supabase CLI"
        if not key and config.anon_key:
            key, source = config.anon_key, "configuration"
        if not key:
            ctx.warn("Anon key could not be fetched; it will be retried before writing .env.local")
            run_log.warn("Anon key not available", project_ref=project_ref)
            task.title = "Anon key not available (will retry)"
            return
        ctx.set(ContextKey.ANON_KEY, key)
        log.debug(f"Anon key {mask_secret(key)} from {source}")
        task.title = f"Anon key loaded from {source}"

    async def service_role_key(ctx: ContextView, task: TaskHandle) -> None:
        key = await cli.fetch_service_role_key(project_ref)
        source = "Supabase CLI"
        if not key:
            key, source = config.service_role_key, "configuration"
        ctx.set(ContextKey.SERVICE_ROLE_KEY, key)
        log.debug(f"Service role key {mask_secret(key)} from {source}")
        task.title = f"Service role key loaded from {source}"

    async def management_token(ctx: ContextView, task: TaskHandle) -> None:
        pat = services.settings.supabase_pat
        if not pat:
            run_log.info("SUPABASE_PAT not set, falling back to the CLI login session")
            task.title = "Management token not set (using CLI session)"
            return
        ctx.set(ContextKey.SUPABASE_PAT, pat)
        task.title = "Management token loaded"

    return [
        Task("Schema name", schema_name, writes=frozenset({ContextKey.SCHEMA_NAME})),
        Task("Anon key", anon_key, writes=frozenset({ContextKey.ANON_KEY})),
        Task("Service role key", service_role_key, writes=frozenset({ContextKey.SERVICE_ROLE_KEY})),
        Task("Management token", management_token, writes=frozenset({ContextKey.SUPABASE_PAT})),
    ]
