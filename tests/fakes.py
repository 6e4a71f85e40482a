"""In-memory stand-ins for the external collaborators (no network, no real CLIs)."""
import base64
import json
from pathlib import Path
from typing import Optional
import httpx
from kessel.core.config import Settings
from kessel.core.github import GitHubError
from kessel.core.runlog import RunLogger
from kessel.core.shell import CommandError, CommandResult, CommandRunner
from kessel.core.supabase import SupabaseCli
from kessel.phases.base import Services
from kessel.schemas.config import ProjectConfig
from kessel.template.strategies import MaterializationStrategy

INFRA_REF = "ufqlocxqizmiaozkashi"
DEV_REF = "jpmhwyjiuodsvjowddsm"
INFRA_URL = f"https://{INFRA_REF}.supabase.co"
DEV_URL = f"https://{DEV_REF}.supabase.co"


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def make_jwt(claims: dict) -> str:
    header = _b64(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    payload = _b64(json.dumps(claims).encode())
    return f"{header}.{payload}.c2lnbmF0dXJl"


SERVICE_KEY = make_jwt({"ref": INFRA_REF, "role": "service_role"})
ANON_KEY = make_jwt({"ref": INFRA_REF, "role": "anon"})

API_KEYS_JSON = json.dumps([
    {"name": "anon", "api_key": ANON_KEY},
    {"name": "service_role", "api_key": SERVICE_KEY},
])
API_KEYS_TABLE = (
    "  NAME         │ KEY VALUE\n"
    "  ─────────────┼──────────────────\n"
    f"  anon         │ {ANON_KEY}\n"
    f"  service_role │ {SERVICE_KEY}\n"
)


def make_config(tmp_path: Path, **overrides) -> ProjectConfig:
    data = dict(
        username="jane",
        project_name="my-app",
        project_path=tmp_path / "my-app",
        infra_db={"url": INFRA_URL},
        dev_db={"url": DEV_URL},
        service_role_key=SERVICE_KEY,
        anon_key=None,
        create_remote_repo="none",
        auto_install_deps=False,
        link_vercel=False,
        do_initial_commit=False,
        do_push=False,
    )
    data.update(overrides)
    return ProjectConfig.model_validate(data)


def default_results() -> dict:
    return {
        ("gh", "--version"): (0, "gh version 2.40.1\n"),
        ("gh", "auth", "token"): (0, "gho_testtoken\n"),
        ("supabase", "--version"): (0, "1.200.3\n"),
        ("pnpm", "--version"): (0, "8.15.0\n"),
        ("npm", "--version"): (0, "10.2.0\n"),
        ("vercel", "--version"): (0, "Vercel CLI 33.0.0\n"),
        ("vercel", "whoami"): (0, "jane\n"),
        ("supabase", "projects", "api-keys", "--project-ref", INFRA_REF, "--output", "json"): (0, API_KEYS_JSON),
        ("supabase", "projects", "api-keys", "--project-ref", INFRA_REF): (0, API_KEYS_TABLE),
        ("supabase", "link"): (0, "Finished supabase link.\n"),
    }


class FakeShell(CommandRunner):
    """Answers commands by longest matching prefix; unknown commands are 'not found'."""

    def __init__(self, results: Optional[dict] = None, failing: tuple = ()):
        super().__init__()
        self.results = default_results() if results is None else results
        self.failing = [tuple(f) for f in failing]
        self.calls = []
        self.inherited = []

    async def capture(self, command, cwd=None, env=None, timeout=None):
        self.calls.append(list(command))
        key = tuple(command)
        for prefix in sorted(self.results, key=len, reverse=True):
            if key[:len(prefix)] == prefix:
                outcome = self.results[prefix]
                if isinstance(outcome, Exception):
                    raise outcome
                code, out = outcome
                return CommandResult(list(command), code, out, "")
        raise CommandError(command, None, "No such file or directory")

    async def run_inherit(self, command, cwd=None, env=None):
        self.inherited.append({"command": list(command), "cwd": cwd, "env": dict(env or {})})
        if any(tuple(command[:len(f)]) == f for f in self.failing):
            raise CommandError(command, 1)


class FakeBackend:
    """Tenant, storage and vault state of the INFRA-DB."""

    def __init__(self, tenants=None, secrets=None, theme_error=None, tenant_error=None):
        self.tenants = dict(tenants or {})
        if isinstance(secrets, Exception):
            self.secrets = secrets
        else:
            self.secrets = dict(secrets or {"OPENAI_API_KEY": "sk-test"})
        self.theme_error = theme_error
        self.tenant_error = tenant_error
        self.created = []
        self.theme_copies = []

    async def find_tenant(self, slug):
        if slug in self.tenants:
            return {"id": self.tenants[slug], "slug": slug}
        return None

    async def ensure_tenant(self, slug, name=None):
        if self.tenant_error:
            raise self.tenant_error
        if slug in self.tenants:
            return self.tenants[slug], False
        tenant_id = f"tenant-{len(self.tenants) + 1}"
        self.tenants[slug] = tenant_id
        self.created.append(slug)
        return tenant_id, True

    async def list_tenants(self):
        return [{"id": i, "slug": s, "name": s} for s, i in sorted(self.tenants.items())]

    async def copy_theme_assets(self, bucket, source_prefix, target_prefix):
        if self.theme_error:
            raise self.theme_error
        self.theme_copies.append((bucket, source_prefix, target_prefix))
        return 3

    async def fetch_vault_secrets(self):
        if isinstance(self.secrets, Exception):
            raise self.secrets
        return dict(self.secrets)


class FakeGitHub:
    def __init__(self, login="jane", repos=None, timeout_on=(), create_error=None):
        self.login = login
        self.repos = set(repos or ())
        self.timeout_on = set(timeout_on)
        self.create_error = create_error
        self.created = []

    def _maybe_timeout(self, op):
        if op in self.timeout_on:
            raise httpx.ReadTimeout(f"{op} timed out")

    async def get_authenticated_user(self, timeout=None):
        self._maybe_timeout("user")
        return {"login": self.login}

    async def get_repo(self, owner, repo, timeout=None):
        self._maybe_timeout("get_repo")
        if repo in self.repos:
            return {"html_url": f"https://github.com/{owner}/{repo}"}
        return None

    async def create_repo(self, name, private=True, timeout=None):
        self._maybe_timeout("create_repo")
        if self.create_error:
            raise self.create_error
        if name in self.repos:
            raise GitHubError(422, '{"message": "name already exists on this account"}')
        self.repos.add(name)
        self.created.append((name, private))
        return {"html_url": f"https://github.com/{self.login}/{name}"}


class FakeTemplate(MaterializationStrategy):
    name = "fake"

    def __init__(self, error=None, scripts=()):
        super().__init__("acme/boilerplate", "main")
        self.error = error
        self.scripts = scripts
        self.calls = 0

    async def materialize(self, target, token=None):
        self.calls += 1
        if self.error:
            raise self.error
        target.mkdir(parents=True, exist_ok=True)
        (target / "package.json").write_text(
            json.dumps({"name": "kessel-boilerplate", "version": "2.0.0", "private": True}), encoding="utf-8"
        )
        for script in self.scripts:
            path = target / "scripts" / script
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("// script\n", encoding="utf-8")


def reachable_transport(status: int = 401) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status))


def make_settings(**overrides) -> Settings:
    base = Settings(_env_file=None)
    return base.model_copy(update={"supabase_pat": None, "supabase_db_password": None, **overrides})


def make_services(
    shell=None, backend=None, github=None, materializers=None, settings=None, transport=None
) -> Services:
    shell = shell or FakeShell()
    backend = backend or FakeBackend()
    github = github or FakeGitHub()
    return Services(
        shell=shell,
        supabase_cli=SupabaseCli(shell),
        github=lambda token: github,
        supabase=lambda url, key: backend,
        materializers=materializers if materializers is not None else [FakeTemplate()],
        run_log=RunLogger(),
        settings=settings or make_settings(),
        http_transport=transport or reachable_transport(),
    )
