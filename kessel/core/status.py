"""Health report for a working directory: tools, databases, local secrets and MCP.

Nothing here raises for an unhealthy item; every check ends up as a
:class:`StatusItem` so the whole report can always be rendered.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
import httpx
from kessel.core.shell import CommandError, CommandRunner
from kessel.core.supabase import EndpointUnreachableError, check_reachable
from kessel.core.toolchain import (
    ToolMissingError,
    ToolNotAuthenticatedError,
    check_github_cli,
    check_supabase_cli,
    check_vercel_cli,
    detect_package_manager,
)
from kessel.generators.env_files import BOOTSTRAP_ENV, MCP_CONFIG, PUBLIC_ENV, parse_env

log = logging.getLogger(__name__)

OK = "ok"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class StatusItem:
    name: str
    status: str
    detail: str


async def toolchain_status(shell: CommandRunner) -> List[StatusItem]:
    items = []
    try:
        await check_github_cli(shell)
        items.append(StatusItem("GitHub CLI", OK, "authenticated"))
    except ToolMissingError:
        items.append(StatusItem("GitHub CLI", ERROR, "not installed"))
    except ToolNotAuthenticatedError:
        items.append(StatusItem("GitHub CLI", WARNING, "not authenticated (gh auth login)"))
    except CommandError as e:
        items.append(StatusItem("GitHub CLI", ERROR, str(e)))

    try:
        version = await check_supabase_cli(shell)
        items.append(StatusItem("Supabase CLI", OK, version or "installed"))
    except ToolMissingError:
        items.append(StatusItem("Supabase CLI", ERROR, "not installed"))

    try:
        user = await check_vercel_cli(shell)
        items.append(StatusItem("Vercel CLI", OK, f"logged in as {user}" if user else "installed"))
    except ToolMissingError:
        items.append(StatusItem("Vercel CLI", WARNING, "not installed (optional)"))
    except ToolNotAuthenticatedError:
        items.append(StatusItem("Vercel CLI", WARNING, "not logged in (vercel login)"))
    except CommandError as e:
        items.append(StatusItem("Vercel CLI", WARNING, str(e)))

    try:
        pm = await detect_package_manager(shell)
        items.append(StatusItem("Package manager", OK if pm.name == "pnpm" else WARNING, pm.name))
    except ToolMissingError:
        items.append(StatusItem("Package manager", ERROR, "neither pnpm nor npm found"))
    return items


async def database_status(
    targets: Dict[str, str],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[StatusItem]:
    items = []
    for label, url in targets.items():
        try:
            await check_reachable(url, timeout=timeout, transport=transport)
        except EndpointUnreachableError as e:
            log.debug(f"{label} unreachable: {e}")
            items.append(StatusItem(label, ERROR, f"not reachable ({url})"))
        else:
            items.append(StatusItem(label, OK, url))
    return items


def _env_status(path: Path, key: str, label: str) -> StatusItem:
    if not path.is_file():
        return StatusItem(label, ERROR, f"{path.name} not found")
    if parse_env(path.read_text(encoding="utf-8")).get(key):
        return StatusItem(label, OK, f"in {path.name}")
    return StatusItem(label, WARNING, f"missing in {path.name}")


def secrets_status(project_dir: Path) -> List[StatusItem]:
    return [
        _env_status(project_dir / BOOTSTRAP_ENV, "SERVICE_ROLE_KEY", "SERVICE_ROLE_KEY"),
        _env_status(project_dir / PUBLIC_ENV, "NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY", "ANON_KEY"),
    ]


def mcp_status(project_dir: Path) -> List[StatusItem]:
    path = project_dir / MCP_CONFIG
    if not path.is_file():
        return [StatusItem("MCP config", WARNING, f"{MCP_CONFIG.as_posix()} not found")]
    try:
        servers = json.loads(path.read_text(encoding="utf-8")).get("mcpServers") or {}
    except (ValueError, AttributeError):
        return [StatusItem("MCP config", ERROR, "invalid JSON")]
    supabase = [name for name in servers if "supabase" in name.lower()]
    if not supabase:
        return [StatusItem("MCP config", WARNING, "no Supabase MCP server configured")]
    return [StatusItem("MCP config", OK, ", ".join(sorted(supabase)))]


def database_targets(project_dir: Path, infra_default: str, dev_default: str) -> Dict[str, str]:
    """INFRA/DEV URLs from the project's ``.env.local``, else the given defaults."""
    env = {}
    path = project_dir / PUBLIC_ENV
    if path.is_file():
        env = parse_env(path.read_text(encoding="utf-8"))
    return {
        "INFRA-DB": env.get("NEXT_PUBLIC_SUPABASE_URL") or infra_default,
        "DEV-DB": env.get("NEXT_PUBLIC_DEV_SUPABASE_URL") or dev_default,
    }


async def collect_status(
    project_dir: Path,
    shell: CommandRunner,
    infra_default: str,
    dev_default: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, List[StatusItem]]:
    targets = database_targets(project_dir, infra_default, dev_default)
    return {
        "Infrastructure": await toolchain_status(shell),
        "Database": await database_status(targets, timeout, transport),
        "Secrets": secrets_status(project_dir),
        "MCP / integrations": mcp_status(project_dir),
    }
