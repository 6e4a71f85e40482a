"""kessel command line interface."""
from __future__ import annotations
import asyncio
import os
from pathlib import Path
from typing import Optional
import typer
from pydantic import ValidationError
from kessel.cli.answers import AnswersError, build_config, load_answers
from kessel.cli.output import (
    RichReporter,
    console,
    print_error,
    print_info,
    print_secrets,
    print_status,
    print_success,
    print_summary,
    print_tenants,
    print_warning,
)
from kessel.core.config import settings
from kessel.core.context import ContextKey
from kessel.core.engine import PhaseSequencer
from kessel.core.logging import configure_logging
from kessel.core.shell import CommandError
from kessel.core.status import collect_status
from kessel.core.tasks import RunOptions
from kessel.generators.env_files import BOOTSTRAP_ENV, merge_secrets_into_env, parse_env
from kessel.phases.base import Services

app = typer.Typer(
    name="kessel",
    help="Scaffold a new project on the Kessel multi-tenant backend.",
    no_args_is_help=True,
)
tenants_app = typer.Typer(name="tenants", help="Manage tenants on the INFRA-DB.")
secrets_app = typer.Typer(name="secrets", help="Sync vault secrets into a project.")
app.add_typer(tenants_app, name="tenants")
app.add_typer(secrets_app, name="secrets")


def build_services() -> Services:
    return Services.default(settings)


@app.command()
def init(
    project_name: Optional[str] = typer.Argument(None, help="Project name (overrides the answers file)"),
    answers: Optional[Path] = typer.Option(None, "--answers", "-a", help="YAML file with wizard answers"),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Parent directory for the project"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report every step without side effects"),
    interactive: bool = typer.Option(False, "--interactive", help="Allow login prompts of external CLIs"),
) -> None:
    """Create a new project: pre-checks, setup, creation."""
    configure_logging(verbose)
    try:
        config = build_config(load_answers(answers), project_name=project_name, base_path=path)
    except (AnswersError, ValidationError) as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    services = build_services()
    options = RunOptions(verbose=verbose, dry_run=dry_run, interactive=interactive)
    sequencer = PhaseSequencer(services, options, reporter=RichReporter(verbose=verbose))
    print_info(f"Creating {config.project_name} in {config.project_path}")

    try:
        outcome = asyncio.run(sequencer.run(config))
    except KeyboardInterrupt:
        print_warning("Interrupted, nothing is rolled back; re-run to resume")
        raise typer.Exit(130)

    if not outcome.ok:
        print_error(f"Run failed: {outcome.error}")
        log_path = outcome.context.get(ContextKey.LOG_FILE_PATH)
        if log_path:
            print_info(f"Log: {log_path}")
        raise typer.Exit(1)

    print_summary(outcome, dry_run=dry_run)

    if config.start_dev_server and not dry_run:
        pm = outcome.context.get(ContextKey.PACKAGE_MANAGER)
        command = list(pm.dev_command) if pm else ["npm", "run", "dev"]
        print_info(f"Starting dev server: {' '.join(command)}")
        try:
            asyncio.run(services.shell.run_inherit(command, cwd=config.project_path))
        except CommandError as e:
            print_warning(f"Dev server exited: {e}")
        except KeyboardInterrupt:
            pass


@app.command()
def version() -> None:
    """Show the CLI version."""
    console.print(f"{settings.app_name} {settings.app_version}")


def _service_role_key(key: Optional[str]) -> str:
    key = key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SERVICE_ROLE_KEY")
    if not key:
        print_error("A service role key is required (--key or SUPABASE_SERVICE_ROLE_KEY)")
        raise typer.Exit(1)
    return key


@tenants_app.command("ensure")
def tenants_ensure(
    slug: str = typer.Argument(..., help="Tenant slug (schema name)"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
    url: str = typer.Option(settings.infra_db_url, "--url", help="INFRA-DB URL"),
    key: Optional[str] = typer.Option(None, "--key", help="Service role key"),
) -> None:
    """Find or create a tenant by slug."""
    client = build_services().supabase(url, _service_role_key(key))
    try:
        tenant_id, created = asyncio.run(client.ensure_tenant(slug, name))
    except Exception as e:
        print_error(f"Tenant {slug} could not be ensured: {e}")
        raise typer.Exit(1)
    print_success(f"Tenant {slug} {'created' if created else 'already exists'} ({tenant_id})")


@tenants_app.command("list")
def tenants_list(
    url: str = typer.Option(settings.infra_db_url, "--url", help="INFRA-DB URL"),
    key: Optional[str] = typer.Option(None, "--key", help="Service role key"),
) -> None:
    """List tenants on the INFRA-DB."""
    client = build_services().supabase(url, _service_role_key(key))
    try:
        tenants = asyncio.run(client.list_tenants())
    except Exception as e:
        print_error(f"Could not list tenants: {e}")
        raise typer.Exit(1)
    print_tenants(tenants)


@secrets_app.command("pull")
def secrets_pull(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project directory"),
) -> None:
    """Merge vault secrets into the project's .env without overriding existing keys."""
    env_path = path / BOOTSTRAP_ENV
    if not env_path.is_file():
        print_error(f"{env_path} not found")
        raise typer.Exit(1)
    env = parse_env(env_path.read_text(encoding="utf-8"))
    url, key = env.get("NEXT_PUBLIC_SUPABASE_URL"), env.get("SERVICE_ROLE_KEY")
    if not url or not key:
        print_error(f"{env_path} must define NEXT_PUBLIC_SUPABASE_URL and SERVICE_ROLE_KEY")
        raise typer.Exit(1)
    client = build_services().supabase(url, key)
    try:
        secrets = asyncio.run(client.fetch_vault_secrets())
    except Exception as e:
        print_error(f"Vault secrets could not be fetched: {e}")
        raise typer.Exit(1)
    added = merge_secrets_into_env(env_path, secrets)
    print_success(f"{len(added)} new secrets written to {env_path}")


def _vault_client(path: Path, url: Optional[str], key: Optional[str]):
    env_path = path / BOOTSTRAP_ENV
    env = parse_env(env_path.read_text(encoding="utf-8")) if env_path.is_file() else {}
    url = url or env.get("NEXT_PUBLIC_SUPABASE_URL") or settings.infra_db_url
    key = key or env.get("SERVICE_ROLE_KEY") or _service_role_key(None)
    return build_services().supabase(url, key)


@secrets_app.command("get")
def secrets_get(
    name: Optional[str] = typer.Argument(None, help="Secret name (all secrets when omitted)"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    as_env: bool = typer.Option(False, "--env", help="Print in .env format"),
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project directory holding .env"),
    url: Optional[str] = typer.Option(None, "--url", help="INFRA-DB URL"),
    key: Optional[str] = typer.Option(None, "--key", help="Service role key"),
) -> None:
    """Show vault secrets from the INFRA-DB."""
    client = _vault_client(path, url, key)
    try:
        secrets = asyncio.run(client.fetch_vault_secrets())
    except Exception as e:
        print_error(f"Vault secrets could not be fetched: {e}")
        raise typer.Exit(1)
    if name is not None:
        if not secrets.get(name):
            print_error(f"Secret {name} not found")
            raise typer.Exit(1)
        secrets = {name: secrets[name]}
    print_secrets(secrets, "json" if as_json else "env" if as_env else "table")


@app.command()
def status(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Show tool, database, secret and MCP status for a project directory."""
    configure_logging(verbose)
    services = build_services()
    project_dir = path.resolve()
    sections = asyncio.run(collect_status(
        project_dir,
        services.shell,
        infra_default=services.settings.infra_db_url,
        dev_default=services.settings.dev_db_url,
        timeout=services.settings.reachability_timeout,
        transport=services.http_transport,
    ))
    print_status(project_dir.name, sections)


if __name__ == "__main__":
    app()
