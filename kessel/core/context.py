"""Run-scoped context shared by every task of a pipeline run.

The context is a typed key-value store. Each task sees it through a
:class:`ContextView` limited to the keys the task declares, so a task only
needs to know the part of the context it reads or writes.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Iterable


class ContextKey(str, Enum):
    GITHUB_TOKEN = "github_token"
    GITHUB_LOGIN = "github_login"
    VERCEL_INSTALLED = "vercel_installed"
    PACKAGE_MANAGER = "package_manager"
    SCHEMA_NAME = "schema_name"
    ANON_KEY = "anon_key"
    SERVICE_ROLE_KEY = "service_role_key"
    SUPABASE_PAT = "supabase_pat"
    REPO_URL = "repo_url"
    PROJECT_REUSED = "project_reused"
    TENANT_ID = "tenant_id"
    TENANT_CREATED = "tenant_created"
    THEMES_COPIED = "themes_copied"
    SECRETS_SYNCED = "secrets_synced"
    MIGRATION_PENDING = "migration_pending"
    MIGRATION_SCRIPT = "migration_script"
    LOG_FILE_PATH = "log_file_path"


class ContextAccessError(KeyError):
    """A task touched a context key outside its declared capabilities."""


class RunContext:
    def __init__(self, initial: dict[ContextKey, Any] | None = None):
        self._values: dict[ContextKey, Any] = dict(initial or {})
        self.warnings: list[str] = []

    def get(self, key: ContextKey, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: ContextKey, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def snapshot(self) -> dict[str, Any]:
        return {k.value: v for k, v in self._values.items()}

    def view(self, reads: Iterable[ContextKey] = (), writes: Iterable[ContextKey] = (),
             restricted: bool = True) -> "ContextView":
        return ContextView(self, frozenset(reads), frozenset(writes), restricted)


class ContextView:
    """Capability-limited access to a :class:`RunContext`.

    Keys listed in ``writes`` are readable as well. An unrestricted view
    (used for tasks that declare nothing) passes every access through.
    """

    def __init__(self, context: RunContext, reads: frozenset, writes: frozenset, restricted: bool = True):
        self._context = context
        self._reads = reads | writes
        self._writes = writes
        self._restricted = restricted

    def _check(self, key: ContextKey, allowed: frozenset, verb: str) -> None:
        if self._restricted and key not in allowed:
            raise ContextAccessError(f"task may not {verb} context key '{key.value}'")

    def get(self, key: ContextKey, default: Any = None) -> Any:
        self._check(key, self._reads, "read")
        return self._context.get(key, default)

    def require(self, key: ContextKey) -> Any:
        value = self.get(key)
        if value is None:
            raise ContextAccessError(f"context key '{key.value}' has not been set")
        return value

    def set(self, key: ContextKey, value: Any) -> None:
        self._check(key, self._writes, "write")
        self._context.set(key, value)

    def warn(self, message: str) -> None:
        self._context.warn(message)

    @property
    def warnings(self) -> list[str]:
        return list(self._context.warnings)
