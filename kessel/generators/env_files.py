"""Renderers and writers for the local files a new project gets."""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping
from kessel.core.config import settings
from kessel.core.credentials import clean_key
from kessel.schemas.config import ProjectConfig

log = logging.getLogger(__name__)

BOOTSTRAP_ENV = ".env"
PUBLIC_ENV = ".env.local"
MCP_CONFIG = Path(".cursor") / "mcp.json"


@dataclass
class GeneratedFile:
    path: Path
    content: str


def strip_ansi(value: str) -> str:
    return clean_key(value)


def display_name(project_name: str) -> str:
    return " ".join(w.capitalize() for w in project_name.replace("_", "-").split("-") if w)


def render_bootstrap_env(config: ProjectConfig, service_role_key: str) -> str:
    return (
        "# Bootstrap credentials, just enough to pull the remaining secrets from the vault\n"
        f"NEXT_PUBLIC_SUPABASE_URL={config.infra_db.url}\n"
        f"SERVICE_ROLE_KEY={strip_ansi(service_role_key)}\n"
    )


def render_public_env(config: ProjectConfig, anon_key: str, service_role_key: str) -> str:
    """
    Render ``.env.local`` for the Next.js client.

    INFRA-DB holds auth, vault and tenants; DEV-DB holds app data. The
    project schema doubles as the tenant slug.
    """
    return "\n".join([
        "# INFRA-DB: auth, vault, multi-tenant",
        f"NEXT_PUBLIC_SUPABASE_URL={config.infra_db.url}",
        f"NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY={strip_ansi(anon_key)}",
        f"NEXT_PUBLIC_PROJECT_SCHEMA={config.schema_name}",
        f"NEXT_PUBLIC_TENANT_SLUG={config.schema_name}",
        f"NEXT_PUBLIC_APP_NAME={display_name(config.project_name)}",
        "",
        "# DEV-DB: app data",
        f"NEXT_PUBLIC_DEV_SUPABASE_URL={config.dev_db.url}",
        "",
        "# Server-side only",
        f"SUPABASE_SERVICE_ROLE_KEY={strip_ansi(service_role_key)}",
        "",
        "NEXT_PUBLIC_AUTH_BYPASS=true",
        "",
    ])


def parse_env(text: str) -> dict[str, str]:
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


def merge_secrets_into_env(path: Path, secrets: Mapping[str, str]) -> List[str]:
    """Append secrets whose keys are not in the file yet; returns the added keys."""
    existing_text = path.read_text(encoding="utf-8") if path.exists() else ""
    existing = parse_env(existing_text)
    added = [k for k in sorted(secrets) if k not in existing]
    if not added:
        return []
    lines = [existing_text.rstrip("\n"), "", "# Pulled from vault"] if existing_text else ["# Pulled from vault"]
    lines += [f"{k}={secrets[k]}" for k in added]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return added


def mcp_server_name(schema_name: str) -> str:
    return f"supabase_DEV_{schema_name}"


def update_mcp_config(current: Mapping, schema_name: str, dev_project_ref: str) -> dict:
    """Drop every supabase server entry and register the DEV-DB one."""
    config = dict(current)
    servers = {k: v for k, v in (config.get("mcpServers") or {}).items() if "supabase" not in k.lower()}
    servers[mcp_server_name(schema_name)] = {
        "type": "http",
        "url": f"{settings.mcp_base_url}?project_ref={dev_project_ref}",
    }
    config["mcpServers"] = servers
    return config


def write_mcp_config(project_path: Path, schema_name: str, dev_project_ref: str) -> Path:
    path = project_path / MCP_CONFIG
    current = {}
    if path.exists():
        try:
            current = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            log.warning(f"{path} is not valid JSON, replacing it")
    updated = update_mcp_config(current, schema_name, dev_project_ref)
    write_files([GeneratedFile(MCP_CONFIG, json.dumps(updated, indent=2) + "\n")], project_path)
    return path


def ensure_gitignore(project_path: Path, entries: Iterable[str]) -> List[str]:
    path = project_path / ".gitignore"
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    present = {line.strip() for line in text.splitlines()}
    missing = [e for e in entries if e not in present]
    if missing:
        if text and not text.endswith("\n"):
            text += "\n"
        path.write_text(text + "\n".join(missing) + "\n", encoding="utf-8")
    return missing


def write_files(files: Iterable[GeneratedFile], out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for file in files:
        file_path = out_dir / file.path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(file.content, encoding="utf-8")
