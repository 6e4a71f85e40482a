"""Checks for the external command line tools a run depends on."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from kessel.core.shell import CommandError, CommandRunner

log = logging.getLogger(__name__)

GH_INSTALL_URL = "https://cli.github.com/"
VERCEL_INSTALL_URL = "https://vercel.com/docs/cli"
SUPABASE_INSTALL_URL = "https://supabase.com/docs/guides/cli"
PNPM_INSTALL_URL = "https://pnpm.io/installation"


class ToolMissingError(RuntimeError):
    def __init__(self, tool: str, install_url: str):
        self.tool = tool
        self.install_url = install_url
        super().__init__(f"{tool} is not installed. Install it from {install_url}")


class ToolNotAuthenticatedError(RuntimeError):
    def __init__(self, tool: str, login_command: str):
        self.tool = tool
        self.login_command = login_command
        super().__init__(f"{tool} is not authenticated. Run: {login_command}")


@dataclass(frozen=True)
class PackageManager:
    name: str
    command: str
    install_command: tuple[str, ...]
    dev_command: tuple[str, ...]


PNPM = PackageManager("pnpm", "pnpm", ("pnpm", "install"), ("pnpm", "dev"))
NPM = PackageManager("npm", "npm", ("npm", "install"), ("npm", "run", "dev"))


async def check_github_cli(shell: CommandRunner, interactive: bool = False) -> str:
    """Return the GitHub token held by the ``gh`` CLI."""
    if not await shell.probe(["gh", "--version"]):
        raise ToolMissingError("GitHub CLI", GH_INSTALL_URL)

    result = await shell.capture(["gh", "auth", "token"])
    if not result.ok or not result.stdout.strip():
        if not interactive:
            raise ToolNotAuthenticatedError("GitHub CLI", "gh auth login")
        log.info("GitHub CLI not authenticated, starting gh auth login")
        await shell.run_inherit(["gh", "auth", "login"])
        result = await shell.capture(["gh", "auth", "token"])
        if not result.ok or not result.stdout.strip():
            raise ToolNotAuthenticatedError("GitHub CLI", "gh auth login")
    return result.stdout.strip()


async def check_vercel_cli(shell: CommandRunner) -> str:
    """Return the logged-in Vercel user; raise when the CLI is absent or logged out."""
    if not await shell.probe(["vercel", "--version"]):
        raise ToolMissingError("Vercel CLI", VERCEL_INSTALL_URL)
    result = await shell.capture(["vercel", "whoami"])
    if not result.ok:
        raise ToolNotAuthenticatedError("Vercel CLI", "vercel login")
    lines = [l.strip() for l in result.stdout.splitlines() if l.strip()]
    return lines[-1] if lines else ""


async def check_supabase_cli(shell: CommandRunner) -> str:
    try:
        result = await shell.capture(["supabase", "--version"])
    except CommandError:
        raise ToolMissingError("Supabase CLI", SUPABASE_INSTALL_URL) from None
    if not result.ok:
        raise ToolMissingError("Supabase CLI", SUPABASE_INSTALL_URL)
    return result.stdout.strip()


async def detect_package_manager(shell: CommandRunner) -> PackageManager:
    """Prefer pnpm, fall back to npm."""
    for pm in (PNPM, NPM):
        if await shell.probe([pm.command, "--version"]):
            return pm
    raise ToolMissingError("pnpm or npm", PNPM_INSTALL_URL)
