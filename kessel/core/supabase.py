"""Clients for the multi-tenant backend.

``SupabaseClient`` speaks PostgREST, RPC and storage over httpx.
``SupabaseCli`` wraps the ``supabase`` command line for key lookup and
project linking. Neither decides whether a failure is fatal; that is up to
the calling task.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
import httpx
from kessel.core.config import settings
from kessel.core.credentials import clean_key
from kessel.core.shell import CommandError, CommandRunner

log = logging.getLogger(__name__)

INFRA_PROFILE = "infra"
REACHABLE_STATUSES = (200, 401)


class SupabaseError(RuntimeError):
    def __init__(self, status: int, body: str, message: str = ""):
        self.status = status
        self.body = body
        super().__init__(message or f"Supabase returned {status}: {body[:300]}")


class EndpointUnreachableError(RuntimeError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url} is not reachable: {reason}")


def classify_reachability(status: int) -> bool:
    """A REST root answering 200 or 401 is up; the invalid key is expected."""
    return status in REACHABLE_STATUSES


async def check_reachable(
    url: str,
    timeout: float = settings.reachability_timeout,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    endpoint = f"{url.rstrip('/')}/rest/v1/"
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            r = await client.get(endpoint, headers={"apikey": "test"})
    except httpx.HTTPError as e:
        raise EndpointUnreachableError(url, f"{type(e).__name__}: {e}") from e
    if not classify_reachability(r.status_code):
        raise EndpointUnreachableError(url, f"HTTP {r.status_code}")
    return r.status_code


@dataclass
class SupabaseClient:
    url: str
    key: str
    timeout: float = settings.http_timeout
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self, profile: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if profile:
            headers["Accept-Profile"] = profile
            headers["Content-Profile"] = profile
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.url.rstrip("/"), timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _check(r: httpx.Response) -> None:
        if r.status_code >= 400:
            raise SupabaseError(r.status_code, r.text)

    async def run_rpc(self, function: str, params: Optional[dict] = None, profile: Optional[str] = None) -> Any:
        async with self._client() as client:
            r = await client.post(f"/rest/v1/rpc/{function}", headers=self._headers(profile), json=params or {})
            self._check(r)
            return r.json() if r.content else None

    async def find_tenant(self, slug: str) -> Optional[dict]:
        async with self._client() as client:
            r = await client.get(
                "/rest/v1/tenants",
                headers=self._headers(INFRA_PROFILE),
                params={"slug": f"eq.{slug}", "select": "id,slug,name"},
            )
            self._check(r)
            rows = r.json()
        return rows[0] if rows else None

    async def list_tenants(self) -> list[dict]:
        async with self._client() as client:
            r = await client.get(
                "/rest/v1/tenants",
                headers=self._headers(INFRA_PROFILE),
                params={"select": "id,slug,name", "order": "slug.asc"},
            )
            self._check(r)
            return r.json()

    async def ensure_tenant(self, slug: str, name: Optional[str] = None) -> tuple[str, bool]:
        """Return ``(tenant_id, created)``; an existing slug is reused."""
        existing = await self.find_tenant(slug)
        if existing:
            log.info(f"Tenant {slug} already exists ({existing['id']})")
            return str(existing["id"]), False

        await self.run_rpc("ensure_tenant_schema", {"p_schema_name": slug}, profile=INFRA_PROFILE)
        async with self._client() as client:
            r = await client.post(
                "/rest/v1/tenants",
                headers=self._headers(INFRA_PROFILE),
                json={"slug": slug, "name": name or slug},
            )
            if r.status_code == 409:
                # created concurrently between lookup and insert
                row = await self.find_tenant(slug)
                if row:
                    return str(row["id"]), False
            self._check(r)
            rows = r.json()
        row = rows[0] if isinstance(rows, list) else rows
        log.info(f"Created tenant {slug} ({row['id']})")
        return str(row["id"]), True

    async def copy_theme_assets(self, bucket: str, source_prefix: str, target_prefix: str) -> int:
        """Copy every object under ``source_prefix`` to ``target_prefix``; returns the number copied."""
        async with self._client() as client:
            r = await client.post(
                f"/storage/v1/object/list/{bucket}",
                headers=self._headers(),
                json={"prefix": source_prefix, "limit": 1000, "offset": 0},
            )
            self._check(r)
            entries = [e for e in r.json() if e.get("id")]

            copied = 0
            for entry in entries:
                r = await client.post(
                    "/storage/v1/object/copy",
                    headers=self._headers(),
                    json={
                        "bucketId": bucket,
                        "sourceKey": f"{source_prefix}/{entry['name']}",
                        "destinationKey": f"{target_prefix}/{entry['name']}",
                    },
                )
                if r.status_code in (400, 409) and "exists" in r.text.lower():
                    log.debug(f"Theme asset {entry['name']} already present")
                    continue
                self._check(r)
                copied += 1
        return copied

    async def fetch_vault_secrets(self) -> dict[str, str]:
        data = await self.run_rpc("get_all_secrets_for_env")
        if isinstance(data, dict):
            return {str(k): str(v) for k, v in data.items() if v is not None}
        secrets = {}
        for row in data or []:
            name = row.get("name") or row.get("key")
            value = row.get("secret", row.get("value"))
            if name and value is not None:
                secrets[str(name)] = str(value)
        return secrets


def parse_anon_key(output: str) -> Optional[str]:
    text = clean_key(output)
    if not text:
        return None
    try:
        keys = json.loads(text)
    except json.JSONDecodeError:
        return _parse_table_key(text, ("anon", "public"))

    if isinstance(keys, list):
        match = next(
            (k for k in keys if "anon" in ((k.get("name") or "").lower(), (k.get("id") or "").lower())),
            None,
        )
        if match is None:
            match = next((k for k in keys if (k.get("type") or "").lower() == "publishable"), None)
        if match and match.get("api_key"):
            return clean_key(match["api_key"])
        return None
    if isinstance(keys, dict):
        for name in ("anon_key", "anon", "public", "api_key"):
            if keys.get(name):
                return clean_key(keys[name])
    return None


def parse_service_role_key(output: str) -> Optional[str]:
    return _parse_table_key(clean_key(output), ("service_role",))


def _parse_table_key(text: str, names: tuple[str, ...]) -> Optional[str]:
    for line in text.splitlines():
        parts = [p.strip() for p in line.strip().split("│")]
        if len(parts) < 2:
            continue
        name, value = parts[0].lower(), clean_key(parts[1])
        if any(n in name for n in names) and len(value) > 20:
            return value
    return None


class SupabaseCli:
    def __init__(self, shell: CommandRunner, timeout: float = settings.probe_timeout):
        self.shell = shell
        self.timeout = timeout

    async def _api_keys(self, project_ref: str, as_json: bool) -> str:
        cmd = ["supabase", "projects", "api-keys", "--project-ref", project_ref]
        if as_json:
            cmd += ["--output", "json"]
        try:
            result = await self.shell.capture(cmd, timeout=self.timeout)
        except CommandError as e:
            log.debug(f"supabase api-keys failed: {e}")
            return ""
        # the CLI sometimes prints the table and still exits non-zero
        return result.stdout or result.stderr

    async def fetch_anon_key(self, project_ref: str) -> Optional[str]:
        return parse_anon_key(await self._api_keys(project_ref, as_json=True))

    async def fetch_service_role_key(self, project_ref: str) -> Optional[str]:
        return parse_service_role_key(await self._api_keys(project_ref, as_json=False))

    async def link(self, project_ref: str, cwd=None) -> None:
        await self.shell.check_output(
            ["supabase", "link", "--project-ref", project_ref], cwd=cwd, timeout=self.timeout
        )
