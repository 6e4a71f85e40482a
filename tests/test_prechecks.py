"""Pre-checks phase: toolchain detection and backend reachability."""
import httpx
import pytest
from fakes import FakeShell, default_results, make_config, make_jwt, make_services, reachable_transport
from kessel.core.context import ContextKey, RunContext
from kessel.core.credentials import CredentialMismatchError
from kessel.core.runner import PipelineRunner
from kessel.core.supabase import EndpointUnreachableError, check_reachable, classify_reachability
from kessel.core.tasks import RunOptions
from kessel.core.toolchain import NPM, PNPM, ToolMissingError, ToolNotAuthenticatedError
from kessel.core.workflow import Phase, TaskStatus
from kessel.phases.prechecks import build_precheck_tasks
from kessel.schemas.config import ProjectConfig


async def run_prechecks(config, services, options=RunOptions(), context=None):
    context = context or RunContext()
    tasks = build_precheck_tasks(config, services, options)
    result = await PipelineRunner().run(Phase.PRECHECKS, tasks, context)
    return result, context


@pytest.mark.parametrize("status,reachable", [
    (200, True), (401, True), (404, False), (500, False), (503, False),
])
def test_classify_reachability(status, reachable):
    assert classify_reachability(status) is reachable


@pytest.mark.asyncio
async def test_check_reachable_sends_invalid_key():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(401)

    status = await check_reachable("https://abc.supabase.co", transport=httpx.MockTransport(handler))
    assert status == 401
    assert seen == {"url": "https://abc.supabase.co/rest/v1/", "apikey": "test"}


@pytest.mark.asyncio
async def test_check_reachable_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(EndpointUnreachableError):
        await check_reachable("https://abc.supabase.co", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_happy_path_populates_context(tmp_path):
    result, context = await run_prechecks(make_config(tmp_path), make_services())

    assert result.ok
    assert context.get(ContextKey.GITHUB_TOKEN) == "gho_testtoken"
    assert context.get(ContextKey.PACKAGE_MANAGER) == PNPM
    # vercel check is skipped unless linking is requested
    assert result.records[2].status == TaskStatus.SKIPPED


@pytest.mark.asyncio
async def test_missing_github_cli_is_fatal(tmp_path):
    results = default_results()
    del results[("gh", "--version")]
    shell = FakeShell(results)

    with pytest.raises(ToolMissingError) as exc_info:
        await run_prechecks(make_config(tmp_path), make_services(shell=shell))
    assert "cli.github.com" in str(exc_info.value)
    # nothing after the GitHub check ran
    assert ["supabase", "--version"] not in shell.calls


@pytest.mark.asyncio
async def test_unauthenticated_github_cli_is_fatal_when_silent(tmp_path):
    results = default_results()
    results[("gh", "auth", "token")] = (1, "")
    with pytest.raises(ToolNotAuthenticatedError):
        await run_prechecks(make_config(tmp_path), make_services(shell=FakeShell(results)))


@pytest.mark.asyncio
async def test_interactive_mode_runs_gh_login(tmp_path):
    results = default_results()
    results[("gh", "auth", "token")] = (1, "")

    class LoginShell(FakeShell):
        async def run_inherit(self, command, cwd=None, env=None):
            await super().run_inherit(command, cwd, env)
            self.results[("gh", "auth", "token")] = (0, "gho_fresh\n")

    shell = LoginShell(results)
    _, context = await run_prechecks(
        make_config(tmp_path), make_services(shell=shell), RunOptions(interactive=True)
    )
    assert shell.inherited[0]["command"] == ["gh", "auth", "login"]
    assert context.get(ContextKey.GITHUB_TOKEN) == "gho_fresh"


@pytest.mark.asyncio
async def test_missing_supabase_cli_is_fatal(tmp_path):
    results = default_results()
    del results[("supabase", "--version")]
    with pytest.raises(ToolMissingError):
        await run_prechecks(make_config(tmp_path), make_services(shell=FakeShell(results)))


@pytest.mark.asyncio
async def test_package_manager_falls_back_to_npm(tmp_path):
    results = default_results()
    del results[("pnpm", "--version")]
    _, context = await run_prechecks(make_config(tmp_path), make_services(shell=FakeShell(results)))
    assert context.get(ContextKey.PACKAGE_MANAGER) == NPM


@pytest.mark.asyncio
async def test_no_package_manager_is_fatal(tmp_path):
    results = default_results()
    del results[("pnpm", "--version")]
    del results[("npm", "--version")]
    with pytest.raises(ToolMissingError):
        await run_prechecks(make_config(tmp_path), make_services(shell=FakeShell(results)))


@pytest.mark.asyncio
async def test_missing_vercel_cli_only_warns(tmp_path):
    results = default_results()
    del results[("vercel", "--version")]
    result, context = await run_prechecks(
        make_config(tmp_path, link_vercel=True), make_services(shell=FakeShell(results))
    )
    assert result.ok
    assert context.get(ContextKey.VERCEL_INSTALLED) is False
    assert any("Vercel" in w for w in context.warnings)


@pytest.mark.asyncio
async def test_unreachable_backend_is_fatal(tmp_path):
    with pytest.raises(EndpointUnreachableError) as exc_info:
        await run_prechecks(make_config(tmp_path), make_services(transport=reachable_transport(503)))
    assert "HTTP 503" in str(exc_info.value)


@pytest.mark.asyncio
async def test_credential_mismatch_fails_before_any_tool_check(tmp_path):
    good = make_config(tmp_path)
    # bypass validation to simulate a configuration assembled elsewhere
    bad = ProjectConfig.model_construct(**{**dict(good), "service_role_key": make_jwt({"ref": "anotherproject"})})
    shell = FakeShell()

    with pytest.raises(CredentialMismatchError):
        await run_prechecks(bad, make_services(shell=shell))
    assert shell.calls == []
