"""Status report: every check becomes an item, nothing raises."""
import json
import httpx
import pytest
from fakes import DEV_URL, INFRA_URL, FakeShell, default_results, reachable_transport
from kessel.core.status import (
    ERROR,
    OK,
    WARNING,
    collect_status,
    database_targets,
    mcp_status,
    secrets_status,
    toolchain_status,
)


def by_name(items):
    return {item.name: item for item in items}


@pytest.mark.asyncio
async def test_toolchain_all_present():
    items = by_name(await toolchain_status(FakeShell()))
    assert items["GitHub CLI"].status == OK
    assert items["Supabase CLI"].detail == "1.200.3"
    assert items["Vercel CLI"].detail == "logged in as jane"
    assert items["Package manager"].detail == "pnpm"


@pytest.mark.asyncio
async def test_toolchain_missing_and_logged_out_tools():
    results = default_results()
    del results[("supabase", "--version")]
    del results[("vercel", "--version")]
    del results[("pnpm", "--version")]
    results[("gh", "auth", "token")] = (1, "")

    items = by_name(await toolchain_status(FakeShell(results)))

    assert items["GitHub CLI"].status == WARNING
    assert items["Supabase CLI"].status == ERROR
    assert items["Vercel CLI"].status == WARNING
    assert (items["Package manager"].status, items["Package manager"].detail) == (WARNING, "npm")


def test_secrets_status(tmp_path):
    (tmp_path / ".env").write_text("SERVICE_ROLE_KEY=abc\n")
    (tmp_path / ".env.local").write_text("NEXT_PUBLIC_SUPABASE_URL=x\n")
    items = by_name(secrets_status(tmp_path))
    assert items["SERVICE_ROLE_KEY"].status == OK
    assert items["ANON_KEY"].status == WARNING

    items = by_name(secrets_status(tmp_path / "missing"))
    assert items["SERVICE_ROLE_KEY"].status == ERROR


def test_mcp_status(tmp_path):
    assert mcp_status(tmp_path)[0].status == WARNING

    path = tmp_path / ".cursor" / "mcp.json"
    path.parent.mkdir()
    path.write_text("{not json")
    assert mcp_status(tmp_path)[0].status == ERROR

    path.write_text(json.dumps({"mcpServers": {"supabase_DEV_my_app": {}, "linear": {}}}))
    item = mcp_status(tmp_path)[0]
    assert (item.status, item.detail) == (OK, "supabase_DEV_my_app")


def test_database_targets_prefer_project_env(tmp_path):
    assert database_targets(tmp_path, INFRA_URL, DEV_URL) == {"INFRA-DB": INFRA_URL, "DEV-DB": DEV_URL}
    (tmp_path / ".env.local").write_text("NEXT_PUBLIC_SUPABASE_URL=https://other.supabase.co\n")
    assert database_targets(tmp_path, INFRA_URL, DEV_URL)["INFRA-DB"] == "https://other.supabase.co"


@pytest.mark.asyncio
async def test_collect_status_marks_unreachable_database(tmp_path):
    def handler(request):
        if request.url.host.startswith("jpmh"):
            raise httpx.ConnectError("refused")
        return httpx.Response(401)

    sections = await collect_status(
        tmp_path, FakeShell(), INFRA_URL, DEV_URL, timeout=1.0, transport=httpx.MockTransport(handler)
    )

    assert list(sections) == ["Infrastructure", "Database", "Secrets", "MCP / integrations"]
    db = by_name(sections["Database"])
    assert db["INFRA-DB"].status == OK
    assert db["DEV-DB"].status == ERROR


@pytest.mark.asyncio
async def test_collect_status_all_reachable(tmp_path):
    sections = await collect_status(tmp_path, FakeShell(), INFRA_URL, DEV_URL, 1.0, reachable_transport(200))
    assert all(item.status == OK for item in sections["Database"])
