"""Creation phase: the steps that actually build the project.

Every step is safe to re-run against the same target and backend. Optional
steps degrade to a warning instead of failing the run; the warning lands
both on the context and in the run log.
"""
from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import List, Optional
import httpx
from git import Repo
from kessel.core.context import ContextKey, ContextView
from kessel.core.github import GitHubError
from kessel.core.tasks import RunOptions, Task, TaskHandle
from kessel.generators.env_files import (
    BOOTSTRAP_ENV,
    PUBLIC_ENV,
    GeneratedFile,
    display_name,
    ensure_gitignore,
    merge_secrets_into_env,
    render_bootstrap_env,
    render_public_env,
    write_files,
    write_mcp_config,
)
from kessel.phases.base import Services
from kessel.schemas.config import ProjectConfig
from kessel.template.strategies import is_existing_project, materialize, rewrite_manifest

log = logging.getLogger(__name__)

MIGRATION_SCRIPT = Path("scripts") / "apply-migrations-to-schema.mjs"
SEED_USERS_SCRIPT = Path("scripts") / "create-test-users.mjs"
IGNORED_FILES = (BOOTSTRAP_ENV, PUBLIC_ENV, ".kessel/")


def _keys(*keys: ContextKey) -> frozenset:
    return frozenset(keys)


def build_creation_tasks(config: ProjectConfig, services: Services, options: RunOptions) -> List[Task]:
    settings = services.settings
    run_log = services.run_log
    shell = services.shell
    target = config.project_path
    dry_run = options.dry_run

    def degrade(ctx: ContextView, message: str, **fields) -> None:
        log.warning(message)
        ctx.warn(message)
        run_log.warn(message, **fields)

    def would(task: TaskHandle, description: str) -> None:
        task.title = f"[dry run] {description}"
        run_log.info(f"Dry run: {description}")

    def service_role_key(ctx: ContextView) -> str:
        return ctx.get(ContextKey.SERVICE_ROLE_KEY) or config.service_role_key

    def schema(ctx: ContextView) -> str:
        return ctx.get(ContextKey.SCHEMA_NAME) or config.schema_name

    def script_env(ctx: ContextView) -> dict:
        return {
            "NEXT_PUBLIC_SUPABASE_URL": config.infra_db.url,
            "SUPABASE_SERVICE_ROLE_KEY": service_role_key(ctx),
            "NEXT_PUBLIC_PROJECT_SCHEMA": schema(ctx),
        }

    # 1
    async def remote_repository(ctx: ContextView, task: TaskHandle) -> None:
        visibility = config.create_remote_repo
        if visibility == "none":
            task.skip("remote repository disabled")
            return
        if dry_run:
            would(task, f"create {visibility} GitHub repository {config.project_name}")
            return
        token = ctx.get(ContextKey.GITHUB_TOKEN)
        if not token:
            degrade(ctx, "No GitHub token available, remote repository not created")
            return

        gh = services.github(token)
        try:
            user = await gh.get_authenticated_user(timeout=settings.http_timeout)
        except httpx.TimeoutException:
            degrade(ctx, "GitHub did not answer in time, repository state unknown")
            return
        login = user["login"]
        ctx.set(ContextKey.GITHUB_LOGIN, login)
        fallback_url = f"{settings.github_web_base}/{login}/{config.project_name}"

        try:
            existing = await gh.get_repo(login, config.project_name, timeout=settings.repo_check_timeout)
        except httpx.TimeoutException:
            degrade(ctx, "Repository lookup timed out, trying to create it")
            existing = None
        if existing:
            ctx.set(ContextKey.REPO_URL, existing.get("html_url") or fallback_url)
            run_log.info("Reusing existing repository", repo=f"{login}/{config.project_name}")
            task.title = f"Using existing repository {login}/{config.project_name}"
            return

        try:
            created = await gh.create_repo(
                config.project_name, private=visibility == "private", timeout=settings.http_timeout
            )
        except httpx.TimeoutException:
            degrade(ctx, "Repository creation timed out, check GitHub before re-running")
            return
        except GitHubError as e:
            if not e.already_exists:
                raise
            degrade(ctx, f"Repository {login}/{config.project_name} already exists, reusing it")
            ctx.set(ContextKey.REPO_URL, fallback_url)
            return
        ctx.set(ContextKey.REPO_URL, created.get("html_url") or fallback_url)
        run_log.ok("Repository created", repo=f"{login}/{config.project_name}", visibility=visibility)
        task.title = f"Created {visibility} repository {login}/{config.project_name}"

    # 2
    async def template(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, f"materialize {settings.template_repo}@{settings.template_branch} into {target}")
            return
        if is_existing_project(target):
            ctx.set(ContextKey.PROJECT_REUSED, True)
            run_log.open(target, config.project_name)
            run_log.skip("Template not cloned, project already exists", path=str(target))
            task.skip(f"existing project at {target}")
            return

        if target.is_dir():
            run_log.open(target, config.project_name)
        strategy = await materialize(services.materializers, target, ctx.get(ContextKey.GITHUB_TOKEN))
        ctx.set(ContextKey.PROJECT_REUSED, False)
        run_log.open(target, config.project_name)
        await asyncio.to_thread(rewrite_manifest, target, config.project_name)
        run_log.ok("Template materialized", strategy=strategy, path=str(target))
        task.title = f"Template materialized ({strategy})"

    # 3
    async def bootstrap_env(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, f"write {BOOTSTRAP_ENV}")
            return
        content = render_bootstrap_env(config, service_role_key(ctx))
        write_files([GeneratedFile(Path(BOOTSTRAP_ENV), content)], target)
        run_log.ok(f"{BOOTSTRAP_ENV} written")
        task.title = f"{BOOTSTRAP_ENV} written"

    # 4
    async def public_env(ctx: ContextView, task: TaskHandle) -> None:
        anon_key = ctx.get(ContextKey.ANON_KEY)
        if not anon_key and not dry_run:
            anon_key = await services.supabase_cli.fetch_anon_key(config.infra_db.project_ref) or config.anon_key
        if dry_run:
            if not anon_key:
                degrade(ctx, "Anon key missing, a real run would fail here")
            would(task, f"write {PUBLIC_ENV}")
            return
        if not anon_key:
            raise RuntimeError(
                f"Anon key for project {config.infra_db.project_ref} could not be retrieved; "
                f"cannot write {PUBLIC_ENV}"
            )
        ctx.set(ContextKey.ANON_KEY, anon_key)
        content = render_public_env(config, anon_key, service_role_key(ctx))
        write_files([GeneratedFile(Path(PUBLIC_ENV), content)], target)
        run_log.ok(f"{PUBLIC_ENV} written")
        task.title = f"{PUBLIC_ENV} written"

    # 5
    def _init_git(repo_url: Optional[str]) -> bool:
        created = False
        if (target / ".git").exists():
            repo = Repo(target)
        else:
            repo = Repo.init(target)
            repo.git.symbolic_ref("HEAD", "refs/heads/main")
            created = True
        if repo_url:
            if "origin" in [r.name for r in repo.remotes]:
                repo.delete_remote("origin")
            repo.create_remote("origin", f"{repo_url}.git")
        return created

    async def local_git(ctx: ContextView, task: TaskHandle) -> None:
        repo_url = ctx.get(ContextKey.REPO_URL)
        if dry_run:
            would(task, "initialize git repository" + (f" with origin {repo_url}" if repo_url else ""))
            return
        created = await asyncio.to_thread(_init_git, repo_url)
        run_log.ok("Git repository ready", initialized=created, origin=repo_url)
        task.title = "Git initialized" if created else "Git repository already present"

    # 6
    async def dependencies(ctx: ContextView, task: TaskHandle) -> None:
        pm = ctx.require(ContextKey.PACKAGE_MANAGER)
        command = list(pm.install_command)
        if dry_run:
            would(task, f"run {' '.join(command)}")
            return
        await shell.run_inherit(command, cwd=target)
        run_log.ok("Dependencies installed", command=" ".join(command))
        task.title = f"Dependencies installed ({pm.name})"

    # 7
    async def vault_secrets(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, f"pull vault secrets into {BOOTSTRAP_ENV}")
            return
        client = services.supabase(config.infra_db.url, service_role_key(ctx))
        try:
            secrets = await client.fetch_vault_secrets()
            added = merge_secrets_into_env(target / BOOTSTRAP_ENV, secrets)
        except Exception as e:
            ctx.set(ContextKey.SECRETS_SYNCED, False)
            degrade(ctx, f"Vault secrets not synced ({e}); run 'kessel secrets pull' in the project later")
            task.title = "Vault secrets not synced"
            return
        ctx.set(ContextKey.SECRETS_SYNCED, True)
        run_log.ok("Vault secrets synced", added=len(added))
        task.title = f"Vault secrets synced ({len(added)} new)"

    # 8
    async def supabase_link(ctx: ContextView, task: TaskHandle) -> None:
        ref = config.infra_db.project_ref
        if dry_run:
            would(task, f"supabase link --project-ref {ref}")
            return
        try:
            await services.supabase_cli.link(ref, cwd=target)
        except Exception as e:
            degrade(ctx, f"supabase link failed: {e}")
            task.title = "Supabase link failed (optional)"
            return
        run_log.ok("Supabase project linked", project_ref=ref)
        task.title = f"Linked Supabase project {ref}"

    # 9
    async def tenant(ctx: ContextView, task: TaskHandle) -> None:
        slug = schema(ctx)
        if dry_run:
            would(task, f"find or create tenant {slug}")
            return
        client = services.supabase(config.infra_db.url, service_role_key(ctx))
        tenant_id, created = await client.ensure_tenant(slug, display_name(config.project_name))
        ctx.set(ContextKey.TENANT_ID, tenant_id)
        ctx.set(ContextKey.TENANT_CREATED, created)
        run_log.ok("Tenant ready", slug=slug, tenant_id=tenant_id, created=created)

        try:
            copied = await client.copy_theme_assets(settings.theme_bucket, settings.default_theme, slug)
        except Exception as e:
            ctx.set(ContextKey.THEMES_COPIED, False)
            degrade(ctx, f"Theme assets not copied for tenant {slug}: {e}")
        else:
            ctx.set(ContextKey.THEMES_COPIED, True)
            run_log.ok("Theme assets copied", count=copied)
        task.title = f"Tenant {slug} {'created' if created else 'reused'}"

    # 10
    async def migrations(ctx: ContextView, task: TaskHandle) -> None:
        slug = schema(ctx)
        command = f"node {MIGRATION_SCRIPT.as_posix()} {slug}"
        if dry_run:
            would(task, f"apply migrations to schema {slug}")
            return
        if not (target / MIGRATION_SCRIPT).is_file():
            task.skip("no migration script in template")
            return
        password = config.db_password or settings.supabase_db_password
        if not password:
            ctx.set(ContextKey.MIGRATION_PENDING, True)
            ctx.set(ContextKey.MIGRATION_SCRIPT, command)
            run_log.info("Migrations deferred, no database password", command=command)
            task.title = "Migrations deferred (run after setup)"
            return
        env = {**script_env(ctx), "SUPABASE_DB_PASSWORD": password}
        try:
            await shell.run_inherit(["node", MIGRATION_SCRIPT.as_posix(), slug], cwd=target, env=env)
        except Exception as e:
            ctx.set(ContextKey.MIGRATION_PENDING, True)
            ctx.set(ContextKey.MIGRATION_SCRIPT, command)
            degrade(ctx, f"Migrations failed, run '{command}' manually: {e}")
            task.title = "Migrations pending"
            return
        ctx.set(ContextKey.MIGRATION_PENDING, False)
        run_log.ok("Migrations applied", schema=slug)
        task.title = f"Migrations applied to {slug}"

    # 11
    async def seed_users(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, "create test users")
            return
        if not (target / SEED_USERS_SCRIPT).is_file():
            task.skip("no seed script in template")
            return
        try:
            await shell.run_inherit(["node", SEED_USERS_SCRIPT.as_posix()], cwd=target, env=script_env(ctx))
        except Exception as e:
            degrade(ctx, f"Test users not created: {e}")
            task.title = "Test users not created (optional)"
            return
        run_log.ok("Test users created")
        task.title = "Test users created"

    # 12
    async def vercel_link(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, "vercel link --yes")
            return
        if not ctx.get(ContextKey.VERCEL_INSTALLED):
            task.skip("Vercel CLI not installed")
            return
        try:
            await shell.run_inherit(["vercel", "link", "--yes"], cwd=target)
        except Exception as e:
            degrade(ctx, f"Vercel link failed: {e}")
            task.title = "Vercel link failed (optional)"
            return
        run_log.ok("Vercel project linked")
        task.title = "Linked with Vercel"

    # 13
    async def mcp_config(ctx: ContextView, task: TaskHandle) -> None:
        if dry_run:
            would(task, "update .cursor/mcp.json")
            return
        path = write_mcp_config(target, schema(ctx), config.dev_db.project_ref)
        run_log.ok("MCP configuration updated", path=str(path))
        task.title = "MCP configuration updated"

    # 14
    def _commit(push: bool) -> tuple[bool, Optional[str]]:
        ensure_gitignore(target, IGNORED_FILES)
        repo = Repo(target)
        repo.git.add(all=True)
        committed = False
        if not repo.head.is_valid() or repo.is_dirty(untracked_files=True):
            repo.index.commit(f"Initial commit for {config.project_name}")
            committed = True
        if not push:
            return committed, None
        try:
            repo.git.push("origin", "main", set_upstream=True)
        except Exception as e:
            return committed, str(e)
        return committed, None

    async def initial_commit(ctx: ContextView, task: TaskHandle) -> None:
        repo_url = ctx.get(ContextKey.REPO_URL)
        push = config.do_push and bool(repo_url)
        if dry_run:
            would(task, "create initial commit" + (" and push to origin" if push else ""))
            return
        committed, push_error = await asyncio.to_thread(_commit, push)
        if push_error:
            degrade(ctx, f"Push to {repo_url} failed: {push_error}")
        run_log.ok("Initial commit", committed=committed, pushed=push and not push_error)
        task.title = "Initial commit created" if committed else "Nothing to commit"

    # 15
    async def finalize_log(ctx: ContextView, task: TaskHandle) -> None:
        run_log.info(
            "Project creation finished",
            project=config.project_name,
            path=str(target),
            schema=schema(ctx),
            infra_db=config.infra_db.url,
            dev_db=config.dev_db.url,
            repository=ctx.get(ContextKey.REPO_URL),
            tenant=ctx.get(ContextKey.TENANT_ID),
            migration_pending=bool(ctx.get(ContextKey.MIGRATION_PENDING)),
            warnings=len(ctx.warnings),
            dry_run=dry_run or None,
        )
        path = run_log.close()
        if path is not None:
            ctx.set(ContextKey.LOG_FILE_PATH, path)
            task.title = f"Log written to {path}"
        else:
            task.title = "Log finalized"

    return [
        Task("Remote repository", remote_repository,
             reads=_keys(ContextKey.GITHUB_TOKEN),
             writes=_keys(ContextKey.REPO_URL, ContextKey.GITHUB_LOGIN)),
        Task("Template", template,
             reads=_keys(ContextKey.GITHUB_TOKEN), writes=_keys(ContextKey.PROJECT_REUSED)),
        Task(f"Bootstrap credentials ({BOOTSTRAP_ENV})", bootstrap_env,
             reads=_keys(ContextKey.SERVICE_ROLE_KEY)),
        Task(f"Public credentials ({PUBLIC_ENV})", public_env,
             reads=_keys(ContextKey.SERVICE_ROLE_KEY), writes=_keys(ContextKey.ANON_KEY)),
        Task("Local git repository", local_git, reads=_keys(ContextKey.REPO_URL)),
        Task("Install dependencies", dependencies,
             skip=lambda: not config.auto_install_deps, reads=_keys(ContextKey.PACKAGE_MANAGER)),
        Task("Vault secrets", vault_secrets,
             reads=_keys(ContextKey.SERVICE_ROLE_KEY), writes=_keys(ContextKey.SECRETS_SYNCED)),
        Task("Supabase link", supabase_link),
        Task("Tenant", tenant,
             reads=_keys(ContextKey.SERVICE_ROLE_KEY, ContextKey.SCHEMA_NAME),
             writes=_keys(ContextKey.TENANT_ID, ContextKey.TENANT_CREATED, ContextKey.THEMES_COPIED)),
        Task("Schema migrations", migrations,
             reads=_keys(ContextKey.SERVICE_ROLE_KEY, ContextKey.SCHEMA_NAME),
             writes=_keys(ContextKey.MIGRATION_PENDING, ContextKey.MIGRATION_SCRIPT)),
        Task("Test users", seed_users, reads=_keys(ContextKey.SERVICE_ROLE_KEY, ContextKey.SCHEMA_NAME)),
        Task("Vercel link", vercel_link,
             skip=lambda: not config.link_vercel, reads=_keys(ContextKey.VERCEL_INSTALLED)),
        Task("MCP configuration", mcp_config, reads=_keys(ContextKey.SCHEMA_NAME)),
        Task("Initial commit", initial_commit,
             skip=lambda: not config.do_initial_commit, reads=_keys(ContextKey.REPO_URL)),
        Task("Finalize log", finalize_log,
             reads=_keys(ContextKey.SCHEMA_NAME, ContextKey.REPO_URL, ContextKey.TENANT_ID,
                         ContextKey.MIGRATION_PENDING),
             writes=_keys(ContextKey.LOG_FILE_PATH)),
    ]
