"""Rich console output for the kessel CLI."""
from __future__ import annotations
from typing import Optional
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from kessel.core.context import ContextKey
from kessel.core.engine import RunOutcome
from kessel.core.reporting import Reporter
from kessel.core.workflow import Phase

console = Console()
error_console = Console(stderr=True)

PHASE_LABELS = {
    Phase.PRECHECKS: "Pre-checks",
    Phase.SETUP: "Setup",
    Phase.CREATION: "Project creation",
}


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    error_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]→[/blue] {message}")


class RichReporter(Reporter):
    """Task list rendering: one line per task transition."""

    def __init__(self, out: Optional[Console] = None, verbose: bool = False):
        self.console = out or console
        self.verbose = verbose

    def on_phase_start(self, phase):
        self.console.rule(f"[bold cyan]{PHASE_LABELS.get(phase, phase.value)}[/bold cyan]")

    def on_task_start(self, task):
        if self.verbose:
            self.console.print(f"[dim]… {task.title}[/dim]")

    def on_task_complete(self, task, record):
        if record.skip_reason:
            self.console.print(f"[dim]↷ {record.title} ({record.skip_reason})[/dim]")
        else:
            self.console.print(f"[green]✓[/green] {record.title}")

    def on_task_skip(self, task, record):
        self.console.print(f"[dim]↷ {record.title}[/dim]")

    def on_task_error(self, task, record, error):
        self.console.print(f"[red]✗[/red] {record.title}: [red]{error}[/red]")

    def on_phase_complete(self, result):
        if not result.ok:
            self.console.print(f"[red]{PHASE_LABELS.get(result.phase, result.phase.value)} failed[/red]")


def print_summary(outcome: RunOutcome, dry_run: bool = False) -> None:
    config = outcome.config
    ctx = outcome.context

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Project", config.project_name)
    table.add_row("Path", str(config.project_path))
    table.add_row("Schema", config.schema_name)
    table.add_row("INFRA-DB", config.infra_db.url)
    table.add_row("DEV-DB", config.dev_db.url)
    if ctx.get(ContextKey.REPO_URL):
        table.add_row("Repository", ctx.get(ContextKey.REPO_URL))
    if ctx.get(ContextKey.TENANT_ID):
        table.add_row("Tenant", str(ctx.get(ContextKey.TENANT_ID)))
    if ctx.get(ContextKey.LOG_FILE_PATH):
        table.add_row("Log", str(ctx.get(ContextKey.LOG_FILE_PATH)))

    title = "[bold yellow]Dry run finished[/bold yellow]" if dry_run else "[bold green]Project created[/bold green]"
    console.print(Panel(table, title=title, border_style="yellow" if dry_run else "green", padding=(1, 2)))

    for warning in ctx.warnings:
        print_warning(warning)

    pm = ctx.get(ContextKey.PACKAGE_MANAGER)
    dev_command = " ".join(pm.dev_command) if pm else "npm run dev"
    steps = [f"cd {config.project_path}"]
    if ctx.get(ContextKey.MIGRATION_PENDING):
        steps.append(ctx.get(ContextKey.MIGRATION_SCRIPT) or "apply pending migrations")
    if not config.auto_install_deps:
        steps.append(" ".join(pm.install_command) if pm else "npm install")
    steps.append(dev_command)

    console.print("\n[bold]Next steps:[/bold]")
    for i, step in enumerate(steps, 1):
        console.print(f"  {i}. [cyan]{step}[/cyan]")


def print_tenants(tenants: list[dict]) -> None:
    if not tenants:
        print_info("No tenants found.")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("ID", style="dim")
    for t in tenants:
        table.add_row(str(t.get("slug", "")), str(t.get("name", "")), str(t.get("id", "")))
    console.print(table)


STATUS_STYLES = {"ok": "[green]✓[/green]", "warning": "[yellow]![/yellow]", "error": "[red]✗[/red]"}


def print_status(project_name: str, sections: dict) -> None:
    console.print(Panel(f"[bold]{project_name}[/bold]", title="[bold cyan]Kessel status[/bold cyan]",
                        border_style="cyan", expand=False))
    for title, items in sections.items():
        table = Table(title=title, title_justify="left", show_header=False, box=None, padding=(0, 2))
        table.add_column(width=2)
        table.add_column(style="bold")
        table.add_column(style="dim")
        for item in items:
            table.add_row(STATUS_STYLES.get(item.status, "?"), item.name, item.detail)
        console.print(table)
        console.print()


def print_secrets(secrets: dict, fmt: str = "table") -> None:
    entries = sorted(secrets.items())
    if fmt == "json":
        console.print_json(data=dict(entries))
    elif fmt == "env":
        for key, value in entries:
            console.print(f"{key}={value}", markup=False, highlight=False, soft_wrap=True)
    else:
        table = Table(title=f"Secrets ({len(entries)})", title_justify="left", header_style="bold")
        table.add_column("Name", style="cyan")
        table.add_column("Value", style="dim")
        for key, value in entries:
            table.add_row(Text(key), Text(value if len(value) <= 50 else f"{value[:50]}..."))
        console.print(table)
